import pytest
from itsdangerous import URLSafeTimedSerializer

from mafia.errors import AuthError
from mafia.identity import TOKEN_SALT, Identity, get_verifier


def test_issue_and_verify(users):
    verifier = get_verifier()
    identity = verifier.verify(verifier.issue(users[0]))
    assert identity == Identity(id=users[0].id, display_name='Alice')
    assert identity.to_dict() == {'id': users[0].id, 'display_name': 'Alice'}


@pytest.mark.parametrize('token', [None, '', 'garbage', 42])
def test_verify_rejects_malformed(flask_app, token):
    with pytest.raises(AuthError):
        get_verifier().verify(token)


def test_verify_rejects_foreign_signature(users):
    forged = URLSafeTimedSerializer('some-other-secret', salt=TOKEN_SALT).dumps({'id': users[0].id})
    with pytest.raises(AuthError):
        get_verifier().verify(forged)


def test_verify_rejects_unknown_user(flask_app):
    token = URLSafeTimedSerializer(flask_app.config['SECRET_KEY'], salt=TOKEN_SALT).dumps({'id': 4242})
    with pytest.raises(AuthError):
        get_verifier().verify(token)


def test_verify_rejects_expired(users, flask_app):
    token = get_verifier().issue(users[0])
    flask_app.config['TOKEN_MAX_AGE_SEC'] = -1
    with pytest.raises(AuthError):
        get_verifier().verify(token)
