from flask_socketio import join_room, leave_room, emit
from app import socketio
from flask import current_app, request
from app.services.games import presence
from app.services.games.errors import GameError, InvalidSession
from typing import Dict, Any

NAMESPACE = '/ws'

# Socket presence only: game state is never pushed, clients poll it over HTTP
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_player_sockets: Dict[str, int] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore


def _emit_error(exc: GameError) -> None:
    emit('error', exc.to_dict())


def _token_for(data) -> str:
    ctx = _sid_to_ctx.get(_get_sid()) or {}
    return (data or {}).get('session_token') or ctx.get('session_token')


def _game_id_for(data):
    ctx = _sid_to_ctx.get(_get_sid()) or {}
    game_id = (data or {}).get('game_id', ctx.get('game_id'))
    try:
        return int(game_id)
    except (TypeError, ValueError):
        return None


def _bind(sid: str, game_id: int, player_id: int, session_token: str) -> None:
    previous = _sid_to_ctx.get(sid)
    if previous and previous['session_token'] == session_token:
        return
    if previous:
        _unbind(sid)
    _sid_to_ctx[sid] = {'game_id': game_id, 'player_id': player_id, 'session_token': session_token}
    _player_sockets[session_token] = _player_sockets.get(session_token, 0) + 1


def _unbind(sid: str):
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return None
    token = ctx['session_token']
    remaining = max(0, _player_sockets.get(token, 0) - 1)
    if remaining:
        _player_sockets[token] = remaining
    else:
        _player_sockets.pop(token, None)
    return ctx


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_join_game(data):
    game_id = _game_id_for(data)
    token = _token_for(data)
    if game_id is None:
        _emit_error(InvalidSession('game_id is required'))
        return
    try:
        game, player = presence.identify(game_id, token)
    except GameError as exc:
        _emit_error(exc)
        return
    room = f"game:{game.id}"
    join_room(room)
    _bind(_get_sid(), game.id, player.id, token)
    current_app.logger.info(f"[socket-join] game={game.id} player={player.id} sid={_get_sid()}")
    emit('joined', {'room': room, 'game_id': game.id, 'player_id': player.id})


def handle_heartbeat(data=None):
    game_id = _game_id_for(data)
    if game_id is None:
        _emit_error(InvalidSession('game_id is required'))
        return
    try:
        player = presence.heartbeat(game_id, _token_for(data))
    except GameError as exc:
        _emit_error(exc)
        return
    emit('heartbeat_ack', {'game_id': game_id, 'player_id': player.id, 'last_seen': player.last_seen})


def handle_leave_game(data=None):
    game_id = _game_id_for(data)
    if game_id is None:
        _emit_error(InvalidSession('game_id is required'))
        return
    try:
        outcome = presence.leave_game(game_id, _token_for(data))
    except GameError as exc:
        _emit_error(exc)
        return
    room = f"game:{game_id}"
    leave_room(room)
    # An explicit leave is final; the later disconnect must not leave again
    _unbind(_get_sid())
    emit('left', {'room': room, 'outcome': outcome})


def handle_disconnect(reason=None):
    ctx = _unbind(_get_sid())
    if not ctx or _player_sockets.get(ctx['session_token'], 0) > 0:
        return
    app = current_app._get_current_object()
    app.logger.info(f"[socket-disconnect] game={ctx['game_id']} player={ctx['player_id']} reason={reason}")
    # In tests, leave immediately for determinism; in prod, allow a grace period to reconnect
    if app.config.get('TESTING'):
        _leave_for_disconnect(app, ctx)
        return
    grace = float(app.config.get('DISCONNECT_GRACE_SEC', 5))
    socketio.start_background_task(_leave_after_grace, app, ctx, grace)


def _leave_after_grace(app, ctx: Dict[str, Any], grace: float) -> None:
    socketio.sleep(grace)
    if _player_sockets.get(ctx['session_token'], 0) > 0:
        app.logger.info(f"[socket-reconnected] game={ctx['game_id']} player={ctx['player_id']}")
        return
    with app.app_context():
        _leave_for_disconnect(app, ctx)


def _leave_for_disconnect(app, ctx: Dict[str, Any]) -> None:
    try:
        outcome = presence.leave_game(ctx['game_id'], ctx['session_token'])
    except GameError as exc:
        # Already gone (removed from the lobby or game deleted)
        app.logger.info(f"[socket-leave-skip] game={ctx['game_id']} player={ctx['player_id']} kind={exc.kind}")
        return
    except Exception:
        app.logger.exception(f"[socket-leave-error] game={ctx['game_id']} player={ctx['player_id']}")
        return
    app.logger.info(f"[socket-leave] game={ctx['game_id']} player={ctx['player_id']} outcome={outcome}")


def register_socketio_handlers() -> None:
    """Register the presence channel handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('heartbeat', handle_heartbeat, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
