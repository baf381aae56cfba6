"""Tests for JWT credential verification."""

import time

import jwt
import pytest

from gateway_common.errors import AuthError
from gateway_server.auth import JWTAuthVerifier, bearer_token
from gateway_server.config import Settings


@pytest.fixture
def jwt_settings():
    return Settings(jwt_secret="test-secret", jwt_leeway_seconds=0)


def _token(claims: dict, secret: str = "test-secret") -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.mark.asyncio
async def test_valid_token_gives_identity(jwt_settings):
    verifier = JWTAuthVerifier(jwt_settings)
    exp = int(time.time()) + 600

    identity = await verifier.verify(
        _token({"sub": "u-1", "name": "Alice", "trust": {"level": 2}, "exp": exp})
    )

    assert identity.user_id == "u-1"
    assert identity.display_name == "Alice"
    assert identity.trust == {"level": 2}
    assert int(identity.expires_at.timestamp()) == exp
    assert not identity.is_expired()


@pytest.mark.asyncio
async def test_user_id_from_fallback_claim(jwt_settings):
    identity = await JWTAuthVerifier(jwt_settings).verify(_token({"_id": 42}))

    assert identity.user_id == "42"
    assert identity.expires_at is None


@pytest.mark.asyncio
async def test_expired_token(jwt_settings):
    token = _token({"sub": "u-1", "exp": int(time.time()) - 60})

    with pytest.raises(AuthError) as exc_info:
        await JWTAuthVerifier(jwt_settings).verify(token)

    assert exc_info.value.code == "auth_expired"


@pytest.mark.asyncio
async def test_wrong_signature(jwt_settings):
    with pytest.raises(AuthError) as exc_info:
        await JWTAuthVerifier(jwt_settings).verify(_token({"sub": "u-1"}, secret="other"))

    assert exc_info.value.code == "auth_failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("credential", [None, "", "not-a-jwt"])
async def test_missing_or_malformed_credential(jwt_settings, credential):
    with pytest.raises(AuthError):
        await JWTAuthVerifier(jwt_settings).verify(credential)


@pytest.mark.asyncio
async def test_token_without_user_id(jwt_settings):
    with pytest.raises(AuthError):
        await JWTAuthVerifier(jwt_settings).verify(_token({"name": "nobody"}))


@pytest.mark.asyncio
async def test_audience_is_checked_when_configured():
    settings = Settings(jwt_secret="test-secret", jwt_audience="community")
    verifier = JWTAuthVerifier(settings)

    identity = await verifier.verify(_token({"sub": "u-1", "aud": "community"}))
    assert identity.user_id == "u-1"

    with pytest.raises(AuthError):
        await verifier.verify(_token({"sub": "u-1", "aud": "other"}))


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected
