"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Time is controlled by injecting a clock callable into TokenService, so the
expiry boundary is tested exactly rather than with sleeps.

Covers:
  - issue -> verify returns the subject
  - exp boundary: valid one tick before exp, expired at exp
  - per-call expiration override
  - bad signature, malformed token, empty token, missing subject
  - every failure raises InvalidTokenError with the same message
"""

from __future__ import annotations

import pytest
from jose import jwt

from auth.tokens import TokenService
from core.errors import InternalError, InvalidTokenError, UnauthorizedError

SECRET = "s" * 64


@pytest.fixture
def tokens(clock) -> TokenService:
    return TokenService(SECRET, 60, clock=clock)


class TestIssueAndVerify:
    def test_round_trip_returns_subject(self, tokens: TokenService) -> None:
        claims = tokens.verify(tokens.issue("user-1"))
        assert claims.sub == "user-1"
        assert claims.exp - claims.iat == 60

    def test_payload_carries_no_roles(self, tokens: TokenService) -> None:
        payload = jwt.get_unverified_claims(tokens.issue("user-1"))
        assert set(payload) == {"sub", "iat", "exp"}

    def test_expiration_override(self, tokens: TokenService) -> None:
        claims = tokens.verify(tokens.issue("user-1", expiration_seconds=5))
        assert claims.exp - claims.iat == 5

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(InternalError):
            TokenService("", 60)


class TestExpiry:
    def test_valid_just_before_exp(self, tokens: TokenService, clock) -> None:
        token = tokens.issue("user-1")
        clock.now += 59.999
        assert tokens.verify(token).sub == "user-1"

    def test_expired_at_exp(self, tokens: TokenService, clock) -> None:
        token = tokens.issue("user-1")
        clock.now += 60
        with pytest.raises(InvalidTokenError) as exc_info:
            tokens.verify(token)
        assert exc_info.value.reason == "expired"

    def test_expired_long_after(self, tokens: TokenService, clock) -> None:
        token = tokens.issue("user-1")
        clock.now += 3600
        with pytest.raises(InvalidTokenError):
            tokens.verify(token)


class TestRejection:
    def test_bad_signature(self, tokens: TokenService, clock) -> None:
        other = TokenService("o" * 64, 60, clock=clock)
        with pytest.raises(InvalidTokenError) as exc_info:
            tokens.verify(other.issue("user-1"))
        assert exc_info.value.reason == "bad_signature"

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, tokens: TokenService, token: str) -> None:
        with pytest.raises(InvalidTokenError) as exc_info:
            tokens.verify(token)
        assert exc_info.value.reason == "malformed"

    def test_missing_subject(self, tokens: TokenService, clock) -> None:
        now = int(clock.now)
        token = jwt.encode({"iat": now, "exp": now + 60}, SECRET, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            tokens.verify(token)

    def test_reasons_share_one_message(self, tokens: TokenService, clock) -> None:
        """Callers cannot tell an expired token from a forged one."""
        messages = set()
        expired = tokens.issue("user-1")
        forged = TokenService("o" * 64, 60, clock=clock).issue("user-1")
        clock.now += 120
        for token in (expired, forged, "garbage"):
            with pytest.raises(InvalidTokenError) as exc_info:
                tokens.verify(token)
            messages.add(exc_info.value.message)
        assert len(messages) == 1

    def test_invalid_token_is_unauthorized(self, tokens: TokenService) -> None:
        with pytest.raises(UnauthorizedError):
            tokens.verify("garbage")
