"""Lobby membership and player presence.

Creating and joining games, resolving session tokens to players, heartbeats
and leaving. Leaving a running game is routed to progression so the other
player wins by forfeit.
"""
import random
import re
import secrets
import time
from typing import Optional

from flask import current_app

from . import repository
from .errors import GameNotFound, InvalidSession, NotInLobby, ValidationError

GAME_CODE_PATTERN = re.compile(r'^\d{4}$')

AVATAR_SHAPES = ('circle', 'square', 'triangle', 'diamond', 'star', 'hexagon')
AVATAR_COLORS = ('#e74c3c', '#3498db', '#2ecc71', '#f1c40f', '#9b59b6', '#e67e22', '#1abc9c', '#ff6b9d')


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Player name is required')
    name = name.strip()
    limit = int(current_app.config.get('NAME_MAX_LENGTH', 10))
    if len(name) > limit:
        raise ValidationError(f'Player name must be at most {limit} characters', max_length=limit)
    return name


def random_avatar() -> str:
    return f"{random.choice(AVATAR_SHAPES)}:{random.choice(AVATAR_COLORS)}"


def _avatar_or_random(avatar) -> str:
    if isinstance(avatar, str) and avatar.strip():
        return avatar.strip()[:64]
    return random_avatar()


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def create_game(name, avatar=None, now: Optional[float] = None):
    """Open a lobby with its creator as the first player. Returns (game, creator)."""
    now = _now(now)
    name = validate_name(name)
    game, creator = repository.open_lobby(
        {'status': 'waiting', 'created_at': now},
        {
            'name': name,
            'avatar': _avatar_or_random(avatar),
            'session_token': new_session_token(),
            'joined_at': now,
            'last_seen': now,
        },
    )
    current_app.logger.info(f"[lobby-open] game={game.id} code={game.game_code} creator={creator.id}")
    return game, creator


def join_game(game_code, name, avatar=None, now: Optional[float] = None):
    """Take the second seat of a waiting game by its join code. Returns (game, player)."""
    now = _now(now)
    code = str(game_code or '').strip()
    if not GAME_CODE_PATTERN.match(code):
        raise ValidationError('Game code must be 4 digits')
    name = validate_name(name)
    game = repository.get_game_by_code(code)
    if game is None:
        raise GameNotFound(game_code=code)
    player = repository.add_player_if_room(
        game.id,
        int(current_app.config.get('MAX_PLAYERS', 2)),
        name=name,
        avatar=_avatar_or_random(avatar),
        session_token=new_session_token(),
        joined_at=now,
        last_seen=now,
    )
    current_app.logger.info(f"[lobby-join] game={game.id} player={player.id}")
    return repository.get_game(game.id), player


def resolve_player(game, session_token):
    """The player holding ``session_token`` in ``game``."""
    if not session_token:
        raise InvalidSession()
    player = repository.get_player_by_token(session_token)
    if player is None or player.game_id != game.id:
        raise InvalidSession()
    return player


def identify(game_id: int, session_token: str):
    """Resolve (game, player) for a request acting as a player in ``game_id``."""
    game = repository.get_game(game_id)
    if game is None:
        raise GameNotFound(game_id=game_id)
    return game, resolve_player(game, session_token)


def leave_game(game_id: int, session_token: str) -> str:
    """Leave a game; returns what happened: closed, left, forfeited or ignored.

    A creator leaving the lobby closes it, a guest leaving frees the seat,
    and anyone leaving a running game forfeits it to the other player.
    """
    from .progression import abandon_game, close_lobby

    game, player = identify(game_id, session_token)

    if game.status == 'waiting':
        if player.id == game.creator_id:
            outcome = 'closed' if close_lobby(game_id) else 'ignored'
        else:
            outcome = 'left' if repository.remove_player(game_id, session_token) else 'ignored'
    elif game.status in ('playing', 'showing_results'):
        outcome = 'forfeited' if abandon_game(game_id, player.id) else 'ignored'
    else:
        outcome = 'ignored'
    current_app.logger.info(f"[leave] game={game_id} player={player.id} status={game.status} outcome={outcome}")
    return outcome


def heartbeat(game_id: int, session_token: str, now: Optional[float] = None):
    """Keep a lobby seat alive. Only accepted while the game is waiting."""
    now = _now(now)
    game, player = identify(game_id, session_token)
    if game.status != 'waiting':
        raise NotInLobby(status=game.status)
    repository.touch_player(player.id, now)
    return player


def check_opponent(game_id: int, session_token: str, now: Optional[float] = None) -> dict:
    """Report whether the other player is still around.

    An opponent silent for longer than ``HEARTBEAT_TIMEOUT_SEC`` is treated
    as having left: a stale guest loses the lobby seat, a stale creator closes
    the lobby, and a running game ends in the caller's favour.
    """
    from .progression import abandon_game, close_lobby

    now = _now(now)
    game, player = identify(game_id, session_token)
    repository.touch_player(player.id, now)

    opponent = next((p for p in repository.list_players(game_id) if p.id != player.id), None)
    if opponent is None:
        return {'opponent_active': False, 'game_status': game.status}

    timeout = float(current_app.config.get('HEARTBEAT_TIMEOUT_SEC', 30))
    last_seen = opponent.last_seen or opponent.joined_at or 0
    if now - last_seen <= timeout:
        return {'opponent_active': True, 'game_status': game.status}

    current_app.logger.warning(f"[opponent-timeout] game={game_id} player={opponent.id} silent={now - last_seen:.1f}s")
    if game.status == 'waiting':
        if opponent.id == game.creator_id:
            close_lobby(game_id)
        else:
            repository.remove_player(game_id, opponent.session_token)
    elif game.status in ('playing', 'showing_results'):
        abandon_game(game_id, opponent.id)
    game = repository.get_game(game_id)
    return {'opponent_active': False, 'game_status': game.status}
