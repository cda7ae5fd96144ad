import os
import sys
import pytest

# Ensure the project root (containing the `mafia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from flask import g

from mafia import create_app, db, socketio
from mafia.identity import verifier
from mafia.models import User


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    TOKEN_MAX_AGE_SEC = 3600
    MIN_PLAYERS = 5
    MAX_PLAYERS = 15
    DEFAULT_DAY_DURATION_SEC = 120
    DEFAULT_NIGHT_DURATION_SEC = 30
    VOTE_DURATION_SEC = 60
    VOTE_TIE_POLICY = 'none'
    ROOM_TTL_SEC = 3600
    RATE_LIMIT_MAX_EVENTS = 0
    RATE_LIMIT_WINDOW_SEC = 10
    CHAT_MAX_LENGTH = 500


DEFAULT_SETTINGS = {
    'max_players': 5,
    'role_counts': {'MAFIA': 1, 'DETECTIVE': 1, 'DOCTOR': 1, 'VILLAGER': 2},
}


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    @application.before_request
    def _fresh_login_user():
        # requests share the fixture's app context, and so its `g`
        g.pop('_login_user', None)

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    counter = {'n': 0}

    def _make(name=None):
        counter['n'] += 1
        name = name or f"player{counter['n']}"
        user = User(username=name, display_name=name.capitalize())
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def users(make_user):
    return [make_user(n) for n in ('alice', 'bob', 'carol', 'dave', 'erin')]


@pytest.fixture()
def token_for(flask_app):
    def _token(user):
        return verifier.issue(user)
    return _token


@pytest.fixture()
def auth_headers(token_for):
    def _headers(user):
        return {'Authorization': f'Bearer {token_for(user)}'}
    return _headers


@pytest.fixture()
def sio_for(flask_app, token_for):
    """Factory for authenticated Socket.IO test clients on '/ws'."""
    clients = []

    def _connect(user):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth={'token': token_for(user)},
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def lobby(flask_app, users):
    """A full, all-ready five player room hosted by the first user."""
    from mafia.services.games import rooms

    host = users[0]
    room = rooms.create_room(host.id, DEFAULT_SETTINGS)
    for u in users[1:]:
        rooms.join_room(room.code, u.id)
    for u in users:
        rooms.set_ready(room.code, u.id, True)
    return room
