from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from app.errors import AuthenticationError
from app.models import Role
from app.security import TokenService, hash_password, parse_authorization_header, verify_password


def test_password_hash_roundtrip():
    h = hash_password("correct horse", rounds=4)
    assert h != "correct horse"
    assert verify_password("correct horse", h)
    assert not verify_password("wrong horse", h)


def test_verify_password_rejects_non_bcrypt_hash():
    assert not verify_password("x", "plain-sha256-hex")
    assert not verify_password("x", None)


def test_issued_token_carries_role_and_user(world, tokens):
    token = tokens.issue(world.cardio_admin)
    claims = tokens.validate(token)
    assert claims.user_id == world.cardio_admin.id
    assert claims.role is Role.DEPARTMENT_ADMIN
    assert claims.expires_at - claims.issued_at == timedelta(hours=2)

    raw = jwt.get_unverified_claims(token)
    assert raw["sub"] == str(world.cardio_admin.id)
    assert raw["role"] == "department_admin"


def test_token_expires_after_two_hours(world, tokens, clock):
    token = tokens.issue(world.alice)
    clock.advance(hours=1, minutes=59)
    assert tokens.validate(token).user_id == world.alice.id

    clock.advance(minutes=1)
    with pytest.raises(AuthenticationError) as exc:
        tokens.validate(token)
    assert exc.value.reason == AuthenticationError.TOKEN_EXPIRED
    assert exc.value.status_code == 401


def test_tampered_or_foreign_token_is_invalid(world, tokens, clock):
    token = tokens.issue(world.alice)
    other = TokenService("another-secret", clock=clock)
    for bad in (token.rsplit(".", 1)[0] + ".AAAA", other.issue(world.alice), "not-a-jwt"):
        with pytest.raises(AuthenticationError) as exc:
            tokens.validate(bad)
        assert exc.value.reason == AuthenticationError.TOKEN_INVALID


def test_missing_token(tokens):
    with pytest.raises(AuthenticationError) as exc:
        tokens.validate("   ")
    assert exc.value.reason == AuthenticationError.TOKEN_MISSING


def test_refresh_issues_later_expiry(world, tokens, clock):
    token = tokens.issue(world.admin)
    first = tokens.expiry_of(token)
    clock.advance(minutes=90)
    renewed = tokens.refresh(token)
    assert tokens.expiry_of(renewed) == first + timedelta(minutes=90)


def test_refresh_of_expired_token_fails(world, tokens, clock):
    token = tokens.issue(world.admin)
    clock.advance(hours=3)
    with pytest.raises(AuthenticationError) as exc:
        tokens.refresh(token)
    assert exc.value.reason == AuthenticationError.TOKEN_EXPIRED


@pytest.mark.parametrize(
    "header, reason",
    [
        (None, AuthenticationError.TOKEN_MISSING),
        ("", AuthenticationError.TOKEN_MISSING),
        ("Bearer", AuthenticationError.TOKEN_MISSING),
        ("Token abc", AuthenticationError.TOKEN_INVALID),
        ("Bearer a b", AuthenticationError.TOKEN_INVALID),
    ],
)
def test_authorization_header_parsing(header, reason):
    with pytest.raises(AuthenticationError) as exc:
        parse_authorization_header(header)
    assert exc.value.reason == reason


def test_authorization_header_accepts_bearer():
    assert parse_authorization_header("Bearer abc.def.ghi") == "abc.def.ghi"
    assert parse_authorization_header("bearer abc") == "abc"
