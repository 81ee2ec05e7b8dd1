from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
import time
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from app.main import main
    flask_app.register_blueprint(main)

    from app.api.games import games, json_object
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from app.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from app.services.games.errors import GameError, InvalidSession

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        flask_app.logger.info(f"[rejected] path={request.path} kind={exc.kind} message={exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    # Session tokens are the only credential: a player is resolved per request
    from app.models import Player

    @login_manager.user_loader
    def load_player(session_token):
        return Player.query.filter_by(session_token=session_token).first()

    @login_manager.request_loader
    def load_player_from_request(req):
        token = req.headers.get('X-Session-Token')
        if not token:
            token = json_object(req).get('session_token')
        if not token:
            token = req.args.get('session_token')
        if not token:
            return None
        return Player.query.filter_by(session_token=str(token)).first()

    @login_manager.unauthorized_handler
    def unauthorized():
        raise InvalidSession()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from app.services.games.questions import seed_questions
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            added = seed_questions()
            print(f'Database has been reset and seeded with {added} questions!')

    @click.command('seed-questions')
    def seed_questions_command():
        """Adds the built-in question pool when the bank is empty."""
        from app.services.games.questions import seed_questions
        with flask_app.app_context():
            added = seed_questions()
            print(f'Seeded {added} questions.')

    @click.command('recover-games')
    def recover_games_command():
        """Re-runs overdue evaluations and continuations for unfinished games."""
        from app.models import Game
        from app.services.games.progression import recover_game
        with flask_app.app_context():
            now = time.time()
            for game in Game.query.filter(Game.status.in_(('playing', 'showing_results'))).all():
                outcome = recover_game(game.id, now=now)
                print(f'game={game.id} code={game.game_code} -> {outcome}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_questions_command)
    flask_app.cli.add_command(recover_games_command)

    return flask_app
