"""Signing and verification of purpose-scoped JWTs."""

from __future__ import annotations

import logging
import secrets
import time
from enum import Enum
from typing import Any

import jwt

from ..domain.errors import InvalidOrExpiredToken, SigningFailure

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenPurpose(str, Enum):
    auth = "auth"
    refresh = "refresh"
    email_verification = "email_verification"
    forgotten_password = "forgotten_password"


def new_token_id() -> str:
    """Return a random identifier to embed in a token and mirror in the registry."""
    return secrets.token_urlsafe(32)


class TokenCodec:
    """Issue and verify HS256 tokens bound to one audience and issuer."""

    def __init__(self, *, secret: str, audience: str, issuer: str) -> None:
        self._secret = secret
        self._audience = audience
        self._issuer = issuer

    def sign(
        self,
        subject: str,
        purpose: TokenPurpose,
        ttl_seconds: int,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        """Create a signed token for ``subject``.

        Parameters
        ----------
        subject:
            Account identifier stored in the ``sub`` claim.
        purpose:
            Tag restricting which flow may consume the token.
        ttl_seconds:
            Lifetime; the ``exp`` claim is set to now plus this value.
        extra_claims:
            Additional claims such as ``token_id`` or the auth context.

        Raises
        ------
        SigningFailure
            When the signing primitive rejects the claims or the key.
        """
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": subject,
            "purpose": TokenPurpose(purpose).value,
            **(extra_claims or {}),
            "aud": self._audience,
            "iss": self._issuer,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        try:
            return jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        except Exception as exc:
            logger.exception("failed to sign %s token for %s", payload["purpose"], subject)
            raise SigningFailure() from exc

    def verify(self, token: str, purpose: TokenPurpose | None = None) -> dict[str, Any]:
        """Decode ``token`` after checking signature, audience, issuer and expiry.

        The registry is not consulted here; a superseded token still verifies.
        When ``purpose`` is given, tokens minted for another purpose are rejected.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["sub", "exp", "iat", "aud", "iss"]},
            )
        except jwt.PyJWTError as exc:
            logger.info("token verification failed: %s", exc)
            raise InvalidOrExpiredToken() from exc

        if purpose is not None and claims.get("purpose") != TokenPurpose(purpose).value:
            logger.info(
                "token purpose mismatch: expected %s, got %s",
                TokenPurpose(purpose).value,
                claims.get("purpose"),
            )
            raise InvalidOrExpiredToken()
        return claims
