from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.services.games import presence, progression, repository
from app.services.games.errors import GameNotFound


games = Blueprint('games', __name__)


def json_object(req):
    """The JSON body when it is an object; anything else reads as empty."""
    data = req.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _lobby_payload(game, player, status_code):
    return jsonify({
        'game': game.to_dict(),
        'player': player.to_dict(),
        # Only ever sent to the client that owns it
        'session_token': player.session_token,
    }), status_code


@games.route('', methods=['POST'])
def create_game():
    data = json_object(request)
    game, player = presence.create_game(data.get('name'), avatar=data.get('avatar'))
    return _lobby_payload(game, player, 201)


@games.route('/join', methods=['POST'])
def join_game():
    data = json_object(request)
    game, player = presence.join_game(data.get('game_code'), data.get('name'), avatar=data.get('avatar'))
    return _lobby_payload(game, player, 201)


@games.route('/<int:game_id>', methods=['GET'])
def get_game_state(game_id):
    return jsonify(progression.get_game_state(game_id))


@games.route('/code/<string:game_code>', methods=['GET'])
def get_game_by_code(game_code):
    game = repository.get_game_by_code(game_code.strip())
    if game is None:
        raise GameNotFound(game_code=game_code)
    return jsonify(progression.get_game_state(game.id))


@games.route('/<int:game_id>/start', methods=['POST'])
@login_required
def start_game(game_id):
    progression.start_game(game_id, current_user.session_token)
    return jsonify(progression.get_game_state(game_id))


@games.route('/<int:game_id>/answer', methods=['POST'])
@login_required
def submit_answer(game_id):
    data = json_object(request)
    answer = progression.submit_answer(game_id, current_user.session_token, data.get('answer'))
    return jsonify({'message': 'Answer submitted', 'answer_id': answer.id}), 201


@games.route('/<int:game_id>/process', methods=['POST'])
def process_game(game_id):
    # Manual re-trigger for stuck games; a no-op unless something is overdue
    outcome = progression.recover_game(game_id)
    return jsonify({'outcome': outcome, 'game': progression.require_game(game_id).to_dict()})


@games.route('/<int:game_id>/leave', methods=['POST'])
@login_required
def leave_game(game_id):
    outcome = presence.leave_game(game_id, current_user.session_token)
    return jsonify({'outcome': outcome})


@games.route('/<int:game_id>/heartbeat', methods=['POST'])
@login_required
def heartbeat(game_id):
    presence.heartbeat(game_id, current_user.session_token)
    return jsonify({'status': 'ok'})


@games.route('/<int:game_id>/check-opponent', methods=['POST'])
@login_required
def check_opponent(game_id):
    return jsonify(presence.check_opponent(game_id, current_user.session_token))


@games.route('/<int:game_id>/answers', methods=['GET'])
def get_answers(game_id):
    answers = progression.get_answers(
        game_id,
        request.args.get('round', type=int),
        request.args.get('question', type=int),
    )
    return jsonify([a.to_dict() for a in answers])
