import re

import pytest

from app.services.games import presence, progression, repository
from app.services.games.errors import (
    AlreadyStarted,
    GameFull,
    GameNotFound,
    InvalidSession,
    NotInLobby,
    ValidationError,
)
from conftest import T0


def test_create_game_opens_lobby_with_creator(flask_app):
    game, creator = presence.create_game('  Xena ', now=T0)
    assert game.status == 'waiting'
    assert re.fullmatch(r'\d{4}', game.game_code)
    assert game.creator_id == creator.id
    assert creator.name == 'Xena'
    assert creator.score == 0
    assert re.fullmatch(r'[a-z]+:#[0-9a-f]{6}', creator.avatar)
    assert 'session_token' not in creator.to_dict()


def test_client_avatar_is_kept(flask_app):
    _, creator = presence.create_game('Xena', avatar='star:#000000', now=T0)
    assert creator.avatar == 'star:#000000'


@pytest.mark.parametrize('name', ['', '   ', None, 'ElevenChars'])
def test_invalid_names_are_rejected(flask_app, name):
    with pytest.raises(ValidationError):
        presence.create_game(name, now=T0)


def test_join_fills_second_seat_then_rejects(flask_app, lobby):
    players = repository.list_players(lobby.game_id)
    assert [p.name for p in players] == ['Xena', 'Yuri']
    assert lobby.x_token != lobby.y_token
    with pytest.raises(GameFull):
        presence.join_game(lobby.code, 'Zed', now=T0)


@pytest.mark.parametrize('code', ['abc', '12345', '', None])
def test_join_rejects_malformed_codes(flask_app, code):
    with pytest.raises(ValidationError):
        presence.join_game(code, 'Zed', now=T0)


def test_join_unknown_code(flask_app):
    with pytest.raises(GameNotFound):
        presence.join_game('0000', 'Zed', now=T0)


def test_join_after_start_is_rejected(flask_app, lobby):
    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    with pytest.raises(AlreadyStarted):
        presence.join_game(lobby.code, 'Zed', now=T0)


def test_tokens_are_bound_to_their_game(flask_app, lobby):
    other, _ = presence.create_game('Other', now=T0)
    with pytest.raises(InvalidSession):
        presence.identify(other.id, lobby.x_token)
    with pytest.raises(InvalidSession):
        presence.identify(lobby.game_id, None)
    with pytest.raises(GameNotFound):
        presence.identify(999, lobby.x_token)
    game, player = presence.identify(lobby.game_id, lobby.y_token)
    assert player.id == lobby.y


def test_creator_leaving_lobby_closes_it(flask_app, lobby):
    assert presence.leave_game(lobby.game_id, lobby.x_token) == 'closed'
    game = repository.get_game(lobby.game_id)
    assert (game.status, game.stage, game.winner_id) == ('finished', 'closed', None)


def test_guest_leaving_lobby_frees_the_seat(flask_app, lobby):
    assert presence.leave_game(lobby.game_id, lobby.y_token) == 'left'
    assert [p.id for p in repository.list_players(lobby.game_id)] == [lobby.x]
    assert repository.get_game(lobby.game_id).status == 'waiting'
    _, newcomer = presence.join_game(lobby.code, 'Zed', now=T0 + 1)
    assert newcomer.game_id == lobby.game_id


def test_leaving_a_finished_game_is_ignored(flask_app, lobby):
    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    presence.leave_game(lobby.game_id, lobby.y_token)
    assert presence.leave_game(lobby.game_id, lobby.x_token) == 'ignored'
    assert repository.get_game(lobby.game_id).winner_id == lobby.x


def test_heartbeat_only_in_lobby(flask_app, lobby):
    player = presence.heartbeat(lobby.game_id, lobby.y_token, now=T0 + 5)
    assert player.last_seen == T0 + 5
    progression.start_game(lobby.game_id, lobby.x_token, now=T0 + 6)
    with pytest.raises(NotInLobby):
        presence.heartbeat(lobby.game_id, lobby.y_token, now=T0 + 7)


def test_check_opponent_reports_active_opponent(flask_app, lobby):
    result = presence.check_opponent(lobby.game_id, lobby.x_token, now=T0 + 10)
    assert result == {'opponent_active': True, 'game_status': 'waiting'}


def test_stale_guest_loses_lobby_seat(flask_app, lobby):
    presence.heartbeat(lobby.game_id, lobby.x_token, now=T0 + 40)
    result = presence.check_opponent(lobby.game_id, lobby.x_token, now=T0 + 40)
    assert result == {'opponent_active': False, 'game_status': 'waiting'}
    assert [p.id for p in repository.list_players(lobby.game_id)] == [lobby.x]


def test_stale_creator_closes_lobby(flask_app, lobby):
    result = presence.check_opponent(lobby.game_id, lobby.y_token, now=T0 + 40)
    assert result == {'opponent_active': False, 'game_status': 'finished'}
    assert repository.get_game(lobby.game_id).stage == 'closed'


def test_stale_opponent_mid_game_forfeits(flask_app, lobby):
    progression.start_game(lobby.game_id, lobby.x_token, now=T0)
    presence.check_opponent(lobby.game_id, lobby.y_token, now=T0 + 20)
    result = presence.check_opponent(lobby.game_id, lobby.y_token, now=T0 + 45)
    assert result == {'opponent_active': False, 'game_status': 'finished'}
    game = repository.get_game(lobby.game_id)
    assert (game.stage, game.winner_id) == ('abandoned', lobby.y)
