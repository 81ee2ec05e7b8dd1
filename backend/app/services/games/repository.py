"""Storage collaborator for the game services.

Each public function is one unit of work: it commits (or rolls back) before
returning, and transient database failures are retried with a linear backoff
before surfacing as ``StorageUnavailable``.
"""
import functools
import time
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError

from app import db
from app.models import Answer, Game, Player, Round
from .errors import AlreadyAnswered, AlreadyStarted, GameFull, GameNotFound, StorageUnavailable

TRANSIENT_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


def with_retry(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        retries = max(1, int(current_app.config.get('STORAGE_RETRIES', 3)))
        backoff = float(current_app.config.get('STORAGE_RETRY_BACKOFF_SEC', 1.0))
        for attempt in range(1, retries + 1):
            try:
                return fn(*args, **kwargs)
            except TRANSIENT_ERRORS as exc:
                db.session.rollback()
                if attempt == retries:
                    current_app.logger.error(f"[storage-failed] op={fn.__name__} attempts={attempt} error={exc}")
                    raise StorageUnavailable(operation=fn.__name__) from exc
                current_app.logger.warning(f"[storage-retry] op={fn.__name__} attempt={attempt} error={exc}")
                time.sleep(backoff * attempt)
    return wrapper


def _conditions(game_id: int, expected: Dict[str, Any]):
    conditions = [Game.id == game_id]
    for field, value in expected.items():
        column = getattr(Game, field)
        if isinstance(value, (list, tuple, set, frozenset)):
            conditions.append(column.in_(list(value)))
        else:
            conditions.append(column == value)
    return conditions


def _compare_and_set(game_id: int, expected: Dict[str, Any], values: Dict[str, Any]) -> bool:
    stmt = (
        update(Game)
        .where(*_conditions(game_id, expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


# ---- Games ----

@with_retry
def open_lobby(game_fields: Dict[str, Any], creator_fields: Dict[str, Any]):
    """Create a waiting game together with its creator."""
    try:
        game = Game(**game_fields)
        db.session.add(game)
        db.session.flush()
        creator = Player(game_id=game.id, **creator_fields)
        db.session.add(creator)
        db.session.flush()
        game.creator_id = creator.id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return game, creator


@with_retry
def get_game(game_id: int) -> Optional[Game]:
    game = db.session.get(Game, game_id)
    if game is not None:
        db.session.refresh(game)
    return game


@with_retry
def get_game_by_code(code: str) -> Optional[Game]:
    return Game.query.filter_by(game_code=code).first()


@with_retry
def transition_game(game_id: int, expected: Dict[str, Any], **values) -> bool:
    """Apply ``values`` only if the game still matches ``expected``."""
    try:
        changed = _compare_and_set(game_id, expected, values)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return changed


@with_retry
def claim_processing(game_id: int, now: float, stale_after: float) -> bool:
    """Set the in-progress marker unless another live evaluation holds it."""
    stmt = (
        update(Game)
        .where(
            Game.id == game_id,
            or_(
                Game.processing == False,  # noqa: E712
                Game.processing_since.is_(None),
                Game.processing_since < now - stale_after,
            ),
        )
        .values(processing=True, processing_since=now)
        .execution_options(synchronize_session=False)
    )
    try:
        claimed = db.session.execute(stmt).rowcount == 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return claimed


@with_retry
def release_processing(game_id: int) -> None:
    stmt = (
        update(Game)
        .where(Game.id == game_id)
        .values(processing=False, processing_since=None)
        .execution_options(synchronize_session=False)
    )
    try:
        db.session.execute(stmt)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


@with_retry
def settle_round(game_id: int, expected: Dict[str, Any], game_values: Dict[str, Any],
                 round_fields: Dict[str, Any]) -> Optional[Round]:
    """Move the game into its round results, record the round and award the winner, atomically.

    Returns None (and changes nothing) when the game no longer matches ``expected``.
    """
    try:
        if not _compare_and_set(game_id, expected, game_values):
            db.session.rollback()
            return None
        record = Round(game_id=game_id, **round_fields)
        db.session.add(record)
        winner_id = round_fields.get('winner_id')
        if winner_id is not None:
            db.session.execute(
                update(Player)
                .where(Player.id == winner_id, Player.game_id == game_id)
                .values(score=Player.score + 1)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return record


# ---- Players ----

@with_retry
def add_player_if_room(game_id: int, max_players: int, **fields) -> Player:
    """Join a waiting game, holding the game row so two joiners cannot both take the last seat."""
    try:
        game = Game.query.filter_by(id=game_id).with_for_update().first()
        if game is None:
            raise GameNotFound(game_id=game_id)
        if game.status != 'waiting':
            raise AlreadyStarted(game_id=game_id)
        if Player.query.filter_by(game_id=game_id).count() >= max_players:
            raise GameFull(game_id=game_id)
        player = Player(game_id=game_id, **fields)
        db.session.add(player)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return player


@with_retry
def list_players(game_id: int) -> List[Player]:
    players = Player.query.filter_by(game_id=game_id).order_by(Player.id).all()
    for player in players:
        db.session.refresh(player)
    return players


@with_retry
def get_player_by_token(session_token: str) -> Optional[Player]:
    return Player.query.filter_by(session_token=session_token).first()


@with_retry
def touch_player(player_id: int, now: float) -> None:
    player = db.session.get(Player, player_id)
    if player is None:
        return
    player.last_seen = now
    db.session.commit()


@with_retry
def remove_player(game_id: int, session_token: str) -> bool:
    """Remove a player from a game that has not started yet."""
    try:
        game = db.session.get(Game, game_id)
        if game is None or game.status != 'waiting':
            return False
        removed = Player.query.filter_by(game_id=game_id, session_token=session_token).delete()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return removed > 0


# ---- Answers ----

@with_retry
def create_answer(**fields) -> Answer:
    answer = Answer(**fields)
    db.session.add(answer)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise AlreadyAnswered(round=fields.get('round'), question=fields.get('question')) from exc
    return answer


@with_retry
def list_answers(game_id: int, round_number: Optional[int] = None,
                 question_number: Optional[int] = None) -> List[Answer]:
    query = Answer.query.filter_by(game_id=game_id)
    if round_number is not None:
        query = query.filter_by(round=round_number)
    if question_number is not None:
        query = query.filter_by(question=question_number)
    return query.order_by(Answer.round, Answer.question, Answer.submitted_at, Answer.id).all()


# ---- Rounds ----

@with_retry
def list_rounds(game_id: int) -> List[Round]:
    return Round.query.filter_by(game_id=game_id).order_by(Round.round_number).all()
