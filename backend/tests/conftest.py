import json
import os
import sys
from types import SimpleNamespace

import pytest
from flask import g

# Ensure the backend root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from app import create_app, db, socketio
from config import Config

# Simulated clock origin for service-level tests
T0 = 1000.0


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = 'DEBUG'
    QUESTION_DURATION_SEC = 15
    RESULTS_DURATION_SEC = 4
    FINAL_SCREEN_DURATION_SEC = 3
    WIN_SCORE = 5
    MAX_IDLE_ROUNDS = 3
    MAX_PLAYERS = 2
    NAME_MAX_LENGTH = 10
    QUESTION_BATCH_SIZE = 9
    HEARTBEAT_TIMEOUT_SEC = 30
    PROCESSING_STALE_SEC = 30
    GUARD_RETRY_SEC = 1
    RECOVERY_GRACE_SEC = 2
    STORAGE_RETRIES = 3
    STORAGE_RETRY_BACKOFF_SEC = 0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import app.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    # flask_app holds one app context for the whole test, so every request shares
    # one `g`; drop Flask-Login's cached user so each request resolves its own token
    @flask_app.before_request
    def _reset_login_user():
        g.pop('_login_user', None)

    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def question_bank(flask_app):
    """Fill the bank with known questions so a game's questions are predictable.

    ``choice`` items are (text, options, correct_index); ``integer`` items are (text, answer).
    """
    from app.models import Question

    def _add(choice=(), integer=()):
        for text, options, correct_index in choice:
            db.session.add(Question(text=text, type='choice', options=json.dumps(options),
                                    correct_answer=str(correct_index), category='Test'))
        for text, answer in integer:
            db.session.add(Question(text=text, type='integer', correct_answer=str(answer), category='Test'))
        db.session.commit()

    return _add


@pytest.fixture()
def lobby(flask_app):
    """A waiting game with creator Xena and guest Yuri."""
    from app.services.games import presence

    game, creator = presence.create_game('Xena', now=T0)
    game, guest = presence.join_game(game.game_code, 'Yuri', now=T0)
    return SimpleNamespace(
        game_id=game.id,
        code=game.game_code,
        x=creator.id,
        y=guest.id,
        x_token=creator.session_token,
        y_token=guest.session_token,
    )
