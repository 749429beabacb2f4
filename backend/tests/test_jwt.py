"""Unit tests for token signing/verification and TTL parsing."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from learning_planner.core.auth import (
    TokenKind,
    TokenSigner,
    expiration_delta,
    new_token_id,
    parse_expiration,
)
from learning_planner.core.errors import InvalidConfiguration, InvalidSignature


def test_access_token_roundtrip(signer: TokenSigner):
    token = signer.sign_access(sub="42", email="u@example.com", ttl=timedelta(minutes=15))
    assert isinstance(token, str)
    payload = signer.verify(token, TokenKind.ACCESS)
    assert payload["sub"] == "42"
    assert payload["email"] == "u@example.com"
    assert payload["exp"] - payload["iat"] == 15 * 60


def test_refresh_token_roundtrip(signer: TokenSigner):
    """Issuing then verifying recovers subject, email, jti and family unchanged."""
    jti, family = new_token_id(), new_token_id()
    token = signer.sign_refresh(sub="7", email="r@example.com", jti=jti, family_id=family, ttl=timedelta(days=7))
    payload = signer.verify(token, TokenKind.REFRESH)
    assert payload["sub"] == "7"
    assert payload["email"] == "r@example.com"
    assert payload["jti"] == jti
    assert payload["family_id"] == family


def test_token_ids_are_unique():
    assert len({new_token_id() for _ in range(100)}) == 100


def test_tampered_token_raises(signer: TokenSigner):
    token = signer.sign_access(sub="1", email="a@b.com", ttl=timedelta(minutes=5))
    header, body, signature = token.split(".")
    # Middle characters carry all six bits; the last one may only differ in ignored padding bits
    mid = len(signature) // 2
    swapped = "A" if signature[mid] != "A" else "B"
    bad_token = ".".join([header, body, signature[:mid] + swapped + signature[mid + 1:]])
    with pytest.raises(InvalidSignature) as exc_info:
        signer.verify(bad_token, TokenKind.ACCESS)
    assert exc_info.value.reason == "invalid"


def test_tampered_payload_raises(signer: TokenSigner):
    token = signer.sign_access(sub="1", email="a@b.com", ttl=timedelta(minutes=5))
    header, _, signature = token.split(".")
    other = signer.sign_access(sub="2", email="a@b.com", ttl=timedelta(minutes=5))
    bad_token = ".".join([header, other.split(".")[1], signature])
    with pytest.raises(InvalidSignature) as exc_info:
        signer.verify(bad_token, TokenKind.ACCESS)
    assert exc_info.value.reason == "invalid"


def test_signing_uses_supplied_clock(signer: TokenSigner):
    issued_at = datetime(2030, 1, 1, tzinfo=timezone.utc)
    token = signer.sign_refresh(
        sub="1", email="a@b.com", jti="j", family_id="f", ttl=timedelta(days=7), now=issued_at
    )
    payload = signer.verify(token, TokenKind.REFRESH)
    assert payload["iat"] == int(issued_at.timestamp())
    assert payload["exp"] == int((issued_at + timedelta(days=7)).timestamp())


def test_expired_token_raises_with_internal_reason(signer: TokenSigner):
    token = signer.sign_access(sub="1", email="a@b.com", ttl=timedelta(minutes=-1))
    with pytest.raises(InvalidSignature) as exc_info:
        signer.verify(token, TokenKind.ACCESS)
    assert exc_info.value.reason == "expired"
    # The public message is the same as for a tampered token
    assert exc_info.value.detail == InvalidSignature().detail


def test_expired_refresh_token_readable_when_expiry_ignored(signer: TokenSigner):
    token = signer.sign_refresh(sub="1", email="a@b.com", jti="j", family_id="f", ttl=timedelta(seconds=-5))
    payload = signer.verify(token, TokenKind.REFRESH, verify_exp=False)
    assert payload["jti"] == "j"


def test_secrets_are_not_interchangeable(signer: TokenSigner):
    access = signer.sign_access(sub="1", email="a@b.com", ttl=timedelta(minutes=5))
    refresh = signer.sign_refresh(sub="1", email="a@b.com", jti="j", family_id="f", ttl=timedelta(days=1))
    with pytest.raises(InvalidSignature):
        signer.verify(access, TokenKind.REFRESH)
    with pytest.raises(InvalidSignature):
        signer.verify(refresh, TokenKind.ACCESS)


def test_refresh_token_missing_claims_is_malformed(auth_config):
    signer = TokenSigner(access_secret=auth_config.access_secret, refresh_secret=auth_config.refresh_secret)
    token = jwt.encode(
        {"sub": "1", "email": "a@b.com", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        auth_config.refresh_secret,
        algorithm="HS256",
    )
    with pytest.raises(InvalidSignature) as exc_info:
        signer.verify(token, TokenKind.REFRESH)
    assert exc_info.value.reason == "malformed"


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", None])
def test_garbage_token_raises(signer: TokenSigner, garbage):
    with pytest.raises(InvalidSignature):
        signer.verify(garbage, TokenKind.REFRESH)


@pytest.mark.parametrize("value,expected_ms", [
    ("15m", 900_000),
    ("7d", 604_800_000),
    ("30s", 30_000),
    ("2h", 7_200_000),
    ("0s", 0),
])
def test_parse_expiration(value, expected_ms):
    assert parse_expiration(value) == expected_ms


@pytest.mark.parametrize("value", ["15", "15x", "m15", "", " 15m", "15m ", "15M", "1.5h", "-5m", "15mm"])
def test_parse_expiration_rejects_other_shapes(value):
    with pytest.raises(InvalidConfiguration):
        parse_expiration(value)


def test_expiration_delta():
    assert expiration_delta("15m") == timedelta(minutes=15)
    assert expiration_delta("7d") == timedelta(days=7)
