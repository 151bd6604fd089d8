"""Tests for the JWT identity gate."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from fellowship_chat.errors import AuthenticationError
from fellowship_chat.identity.gate import INVALID_TOKEN_MESSAGE, JwtIdentityGate
from fellowship_chat.identity.schemas import Identity, UserRole, has_role, is_admin

SECRET = "unit-secret"


@pytest.fixture
def gate():
    return JwtIdentityGate(secret_key=SECRET)


def _encode(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


class TestAuthenticate:
    def test_issued_token_round_trips(self, gate):
        identity = Identity(id="u1", display_name="Grace", role=UserRole.ADMIN, email="g@church.org")
        assert gate.authenticate(gate.issue_token(identity)) == identity

    def test_missing_token(self, gate):
        with pytest.raises(AuthenticationError, match="not logged in"):
            gate.authenticate(None)

    def test_wrong_signature(self, gate):
        token = _encode({"id": "u1"}, secret="other")
        with pytest.raises(AuthenticationError) as excinfo:
            gate.authenticate(token)
        assert excinfo.value.message == INVALID_TOKEN_MESSAGE

    def test_garbage_token(self, gate):
        with pytest.raises(AuthenticationError):
            gate.authenticate("not-a-jwt")

    def test_expired_token(self, gate):
        token = gate.issue_token(Identity(id="u1"), expires_in=timedelta(seconds=-10))
        with pytest.raises(AuthenticationError, match="expired"):
            gate.authenticate(token)

    def test_missing_id_claim(self, gate):
        with pytest.raises(AuthenticationError):
            gate.authenticate(_encode({"fullName": "Nobody"}))

    def test_unknown_role(self, gate):
        with pytest.raises(AuthenticationError):
            gate.authenticate(_encode({"id": "u1", "role": "Bishop"}))

    def test_display_name_falls_back_to_email(self, gate):
        identity = gate.authenticate(_encode({"id": "u1", "email": "m@church.org"}))
        assert identity.display_name == "m@church.org"
        assert identity.role == UserRole.USER

    def test_display_name_defaults_to_anonymous(self, gate):
        assert gate.authenticate(_encode({"id": "u1"})).display_name == "Anonymous"

    def test_token_without_exp_accepted(self, gate):
        token = _encode({"id": "u1", "iat": datetime.now(timezone.utc)})
        assert gate.authenticate(token).id == "u1"


class TestRoles:
    def test_is_admin(self):
        assert not is_admin(Identity(id="u"))
        assert is_admin(Identity(id="a", role=UserRole.ADMIN))
        assert is_admin(Identity(id="s", role=UserRole.SUPER_ADMIN))

    def test_has_role(self):
        identity = Identity(id="s", role=UserRole.SUPER_ADMIN)
        assert has_role(identity, UserRole.SUPER_ADMIN)
        assert not has_role(identity, UserRole.USER, UserRole.ADMIN)
