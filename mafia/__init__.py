from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
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

DEMO_USERS = ['alice', 'bob', 'carol', 'dave', 'erin', 'frank']


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from mafia.identity import verifier
    verifier.init_app(flask_app)

    from mafia.services.rate_limit import RateLimiter
    RateLimiter.from_config(flask_app.config).init_app(flask_app)

    from mafia.errors import register_error_handlers
    register_error_handlers(flask_app)

    from mafia.main import main
    flask_app.register_blueprint(main)

    from mafia.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from mafia.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Importing here ensures the handlers bind to the initialized socketio instance
    from mafia.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from mafia.errors import AuthError
    from mafia.models import User

    @login_manager.request_loader
    def load_user_from_request(req):
        header = req.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return None
        try:
            identity = verifier.verify(header[len('Bearer '):].strip())
        except AuthError:
            return None
        return db.session.get(User, identity.id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'message': 'Authentication required', 'code': AuthError.code}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            for name in DEMO_USERS:
                db.session.add(User(username=name, display_name=name.capitalize()))

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('issue-token')
    @click.argument('username')
    def issue_token_command(username):
        """Prints an identity token for an existing user."""
        with flask_app.app_context():
            user = User.query.filter_by(username=username).first()
            if user is None:
                raise click.ClickException(f'No user named {username}')
            print(verifier.issue(user))

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(issue_token_command)

    return flask_app
