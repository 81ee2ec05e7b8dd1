from app.services.games import progression, repository
from conftest import T0


def events(sio_client, name):
    return [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == name]


def test_socket_connect_and_join(sio_client, lobby):
    assert sio_client.is_connected('/ws')
    assert events(sio_client, 'connected')

    sio_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    [joined] = events(sio_client, 'joined')
    assert joined == {'room': f'game:{lobby.game_id}', 'game_id': lobby.game_id, 'player_id': lobby.y}


def test_join_with_foreign_token_is_rejected(sio_client, lobby):
    sio_client.get_received('/ws')
    sio_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': 'forged'}, namespace='/ws')
    [error] = events(sio_client, 'error')
    assert error['kind'] == 'invalid_session'


def test_heartbeat_uses_bound_session(sio_client, lobby):
    sio_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    sio_client.get_received('/ws')
    sio_client.emit('heartbeat', {}, namespace='/ws')
    [ack] = events(sio_client, 'heartbeat_ack')
    assert ack['player_id'] == lobby.y
    assert ack['last_seen'] > T0


def test_heartbeat_outside_lobby_reports_error(sio_client, lobby):
    sio_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    sio_client.get_received('/ws')
    sio_client.emit('heartbeat', {}, namespace='/ws')
    [error] = events(sio_client, 'error')
    assert error['kind'] == 'not_in_lobby'


def test_explicit_leave_frees_lobby_seat(sio_client, lobby):
    sio_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    sio_client.get_received('/ws')
    sio_client.emit('leave_game', {}, namespace='/ws')
    [left] = events(sio_client, 'left')
    assert left['outcome'] == 'left'
    assert [p.id for p in repository.list_players(lobby.game_id)] == [lobby.x]


def test_disconnect_mid_game_forfeits(flask_app, lobby):
    from app import socketio

    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    guest_client = socketio.test_client(flask_app, namespace='/ws')
    guest_client.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    guest_client.disconnect(namespace='/ws')

    game = repository.get_game(lobby.game_id)
    assert (game.status, game.stage, game.winner_id) == ('finished', 'abandoned', lobby.x)


def test_disconnect_with_another_socket_open_is_not_a_leave(flask_app, lobby):
    from app import socketio

    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    first = socketio.test_client(flask_app, namespace='/ws')
    second = socketio.test_client(flask_app, namespace='/ws')
    for sock in (first, second):
        sock.emit('join_game', {'game_id': lobby.game_id, 'session_token': lobby.y_token}, namespace='/ws')
    first.disconnect(namespace='/ws')
    assert repository.get_game(lobby.game_id).status == 'playing'

    second.disconnect(namespace='/ws')
    assert repository.get_game(lobby.game_id).status == 'finished'
