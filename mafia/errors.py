"""Error taxonomy shared by the Socket.IO coordinator and the HTTP API.

Every failure a participant can cause is a ``GameError``. The coordinator turns
one into a private ``error`` event for the sender; the HTTP layer turns one into
a JSON response with ``status``.
"""
from datetime import datetime, timezone

from flask import jsonify, request


class GameError(Exception):
    code = 'GAME_ERROR'
    status = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'message': self.message, 'code': self.code}


class ValidationError(GameError):
    code = 'VALIDATION_ERROR'
    status = 400


class AuthError(GameError):
    code = 'AUTH_ERROR'
    status = 401


class GamePermissionError(GameError):
    code = 'PERMISSION_ERROR'
    status = 403


class NotFoundError(GameError):
    code = 'NOT_FOUND'
    status = 404


class CapacityError(GameError):
    code = 'CAPACITY_ERROR'
    status = 409


class StateError(GameError):
    code = 'STATE_ERROR'
    status = 409


class RateLimitError(GameError):
    code = 'RATE_LIMITED'
    status = 429


def register_error_handlers(flask_app):
    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        body = exc.to_dict()
        body.update({
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'path': request.path,
            'method': request.method,
        })
        return jsonify(body), exc.status
