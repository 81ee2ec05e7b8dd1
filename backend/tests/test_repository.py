import pytest
from sqlalchemy.exc import OperationalError

from app.services.games import repository
from app.services.games.errors import AlreadyAnswered, StorageUnavailable
from conftest import T0


def _transient():
    return OperationalError('SELECT 1', {}, Exception('server closed the connection unexpectedly'))


def test_transient_failures_are_retried(flask_app):
    calls = []

    @repository.with_retry
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _transient()
        return 'ok'

    assert flaky() == 'ok'
    assert len(calls) == 3


def test_persistent_failures_surface_as_storage_unavailable(flask_app):
    calls = []

    @repository.with_retry
    def broken():
        calls.append(1)
        raise _transient()

    with pytest.raises(StorageUnavailable) as excinfo:
        broken()
    assert len(calls) == flask_app.config['STORAGE_RETRIES']
    assert excinfo.value.status_code == 503
    assert excinfo.value.to_dict()['operation'] == 'broken'


def test_transition_is_compare_and_set(flask_app, lobby):
    assert not repository.transition_game(lobby.game_id, {'status': 'playing'}, stage='question')
    assert repository.transition_game(lobby.game_id, {'status': ('waiting', 'playing'), 'stage': None},
                                      status='playing', stage='question')
    game = repository.get_game(lobby.game_id)
    assert (game.status, game.stage) == ('playing', 'question')


def test_settle_round_is_all_or_nothing(flask_app, lobby):
    expected = {'status': 'playing', 'stage': 'question', 'current_round': 1, 'current_question': 1}
    fields = {'round_number': 1, 'winner_id': lobby.x, 'decided_on_question': 1,
              'decided_by': 'single_correct', 'completed_at': T0}
    values = {'status': 'showing_results', 'stage': 'round_result', 'last_round_winner_id': lobby.x}

    # Still waiting: nothing happens
    assert repository.settle_round(lobby.game_id, expected, values, fields) is None
    assert repository.list_rounds(lobby.game_id) == []
    assert {p.id: p.score for p in repository.list_players(lobby.game_id)}[lobby.x] == 0

    repository.transition_game(lobby.game_id, {'status': 'waiting'}, status='playing', stage='question')
    assert repository.settle_round(lobby.game_id, expected, values, fields) is not None
    assert {p.id: p.score for p in repository.list_players(lobby.game_id)} == {lobby.x: 1, lobby.y: 0}
    # A second settlement of the same state cannot happen
    assert repository.settle_round(lobby.game_id, expected, values, fields) is None
    assert len(repository.list_rounds(lobby.game_id)) == 1


def test_processing_marker(flask_app, lobby):
    assert repository.claim_processing(lobby.game_id, T0, 30)
    assert not repository.claim_processing(lobby.game_id, T0 + 10, 30)
    # Older than the stale bound: reclaimable
    assert repository.claim_processing(lobby.game_id, T0 + 31, 30)
    repository.release_processing(lobby.game_id)
    game = repository.get_game(lobby.game_id)
    assert not game.processing
    assert game.processing_since is None


def test_duplicate_answer_is_rejected_by_the_store(flask_app, lobby):
    fields = dict(game_id=lobby.game_id, player_id=lobby.x, round=1, question=1, value='Mars',
                  option_index=1, submitted_at=T0, is_correct=True)
    repository.create_answer(**fields)
    with pytest.raises(AlreadyAnswered):
        repository.create_answer(**dict(fields, value='Earth', option_index=0))
    assert [a.value for a in repository.list_answers(lobby.game_id, 1, 1)] == ['Mars']


def test_players_can_only_be_removed_from_a_waiting_game(flask_app, lobby):
    repository.transition_game(lobby.game_id, {'status': 'waiting'}, status='playing', stage='question')
    assert not repository.remove_player(lobby.game_id, lobby.y_token)
    assert len(repository.list_players(lobby.game_id)) == 2
