"""Identity Verifier: turns an opaque bearer token into a trusted identity.

Tokens are itsdangerous signatures over ``{'id': user_id}`` keyed by the app's
``SECRET_KEY``. Issuing tokens is a dev/test convenience; in production the
tokens come from whatever service owns accounts.
"""
from dataclasses import dataclass

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from mafia import db
from mafia.errors import AuthError

TOKEN_SALT = 'mafia-identity'


@dataclass(frozen=True)
class Identity:
    id: int
    display_name: str

    def to_dict(self):
        return {'id': self.id, 'display_name': self.display_name}


class TokenVerifier:
    def init_app(self, flask_app):
        flask_app.extensions['identity_verifier'] = self

    def _serializer(self):
        return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)

    def issue(self, user):
        return self._serializer().dumps({'id': user.id})

    def verify(self, token):
        if not token or not isinstance(token, str):
            raise AuthError('Authentication required')
        max_age = int(current_app.config.get('TOKEN_MAX_AGE_SEC', 30 * 24 * 3600))
        try:
            payload = self._serializer().loads(token, max_age=max_age)
        except SignatureExpired as exc:
            raise AuthError('Token expired') from exc
        except BadSignature as exc:
            raise AuthError('Invalid token') from exc
        user_id = payload.get('id') if isinstance(payload, dict) else None
        if not isinstance(user_id, int):
            raise AuthError('Invalid token')
        from mafia.models import User
        user = db.session.get(User, user_id)
        if user is None:
            raise AuthError('User not found')
        return Identity(id=user.id, display_name=user.display_name)


verifier = TokenVerifier()


def get_verifier():
    return current_app.extensions['identity_verifier']
