"""Authentication service orchestrating accounts, tokens and notifications."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from .account import Account, ActiveUser, Role
from .contracts import CreateAccountInput, RegisterAccountInput
from .errors import (
    AccountNotEnabled,
    AccountNotFound,
    AlreadyVerified,
    EmailNotVerified,
    IamError,
    InvalidCredentials,
    InvalidOrExpiredToken,
    ServiceFailure,
)
from ..config import Settings
from ..notifications.messages import AccountNotifier
from ..repository import AccountRepository
from ..security.passwords import PasswordHasher
from ..security.token_registry import TokenRegistry
from ..security.tokens import TokenCodec, TokenPurpose, new_token_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _service_boundary(
    failure_message: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Let domain errors through and turn anything else into a generic ``ServiceFailure``."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except IamError:
                raise
            except Exception as exc:
                logger.exception("unexpected error in %s", func.__name__)
                raise ServiceFailure(f"Service Error: {failure_message}") from exc

        return wrapper

    return decorator


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


class AuthService:
    """Registration, login and token lifecycle workflows.

    Tokens other than auth tokens are tracked in the :class:`TokenRegistry`:
    only the most recently issued identifier for an (account, purpose) pair
    validates, and consuming a token deletes its entry. Auth tokens are
    stateless and live until they expire.
    """

    def __init__(
        self,
        *,
        repository: AccountRepository,
        registry: TokenRegistry,
        codec: TokenCodec,
        hasher: PasswordHasher,
        notifier: AccountNotifier,
        settings: Settings,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._registry = registry
        self._codec = codec
        self._hasher = hasher
        self._notifier = notifier
        self._settings = settings
        # compared against when the account is unknown so both login failures cost the same
        self._dummy_hash = hasher.hash("iam-dummy-password")

    @_service_boundary("Failed to register user")
    async def register(self, payload: RegisterAccountInput) -> Account:
        """Create an account and mail it an email verification token.

        The password is hashed before the transaction starts. The row commits
        before the token is issued, so a registry or mail failure afterwards
        fails the call but leaves the account in place.
        """
        password_hash = await asyncio.to_thread(self._hasher.hash, payload.password)
        async with self._repository.transaction() as conn:
            account = await self._repository.create_account(
                CreateAccountInput.from_registration(payload, password_hash), conn=conn
            )
        logger.info(
            "registered account %s in organization %s", account.account_id, account.organization_id
        )

        token = await self._issue_tracked_token(account.account_id, TokenPurpose.email_verification)
        await self._notifier.send_email_verification(account.email, token)
        return account.without_password()

    @_service_boundary("Failed to login")
    async def login(self, email: str, password: str, organization_id: str) -> TokenBundle:
        """Check credentials and account state, then issue an access/refresh pair.

        An unknown account and a wrong password raise the same
        ``InvalidCredentials`` so callers cannot discover which emails exist.
        """
        account = await self._repository.find_by_credentials(email, organization_id)
        stored_hash = account.password_hash if account and account.password_hash else self._dummy_hash
        matches = await asyncio.to_thread(self._hasher.verify, password, stored_hash)
        if account is None or not matches:
            logger.info("login rejected for organization %s: invalid credentials", organization_id)
            raise InvalidCredentials()
        if not account.enabled:
            raise AccountNotEnabled()
        if not account.email_verified:
            raise EmailNotVerified()

        bundle = await self._issue_session(account)
        logger.info("account %s logged in", account.account_id)
        return bundle

    @_service_boundary("Failed to refresh token")
    async def refresh_tokens(self, refresh_token: str) -> TokenBundle:
        """Exchange a live refresh token for a new pair; the old one stops working."""
        claims = self._codec.verify(refresh_token, TokenPurpose.refresh)
        account = await self._load_account(claims["sub"])
        await self._registry.consume(account.account_id, TokenPurpose.refresh, claims.get("token_id"))
        return await self._issue_session(account)

    @_service_boundary("Failed to send email")
    async def send_verify_account_email(self, email: str, organization_id: str) -> None:
        """Mail a fresh verification token; unknown accounts succeed silently."""
        account = await self._repository.find_by_credentials(email, organization_id)
        if account is None:
            logger.info("verification email requested for unknown account in %s", organization_id)
            return None
        if account.email_verified:
            raise AlreadyVerified()

        token = await self._issue_tracked_token(account.account_id, TokenPurpose.email_verification)
        await self._notifier.send_email_verification(account.email, token)
        return None

    @_service_boundary("Failed to resend email")
    async def resend_verify_account_email(self, token: str) -> None:
        """Replace a still-live verification token with a new one and mail it."""
        claims = self._codec.verify(token, TokenPurpose.email_verification)
        account = await self._load_account(claims["sub"])
        if account.email_verified:
            raise AlreadyVerified()
        await self._registry.validate(
            account.account_id, TokenPurpose.email_verification, claims.get("token_id")
        )

        new_token = await self._issue_tracked_token(account.account_id, TokenPurpose.email_verification)
        await self._notifier.send_email_verification(account.email, new_token)

    @_service_boundary("Failed to verify account")
    async def verify_account(self, token: str) -> Account:
        """Consume a verification token and mark the account's email as verified."""
        claims = self._codec.verify(token, TokenPurpose.email_verification)
        account = await self._load_account(claims["sub"])
        if account.email_verified:
            raise AlreadyVerified()
        await self._registry.consume(
            account.account_id, TokenPurpose.email_verification, claims.get("token_id")
        )

        updated = await self._repository.update_account(account.account_id, {"email_verified": True})
        if updated is None:
            raise AccountNotFound()
        logger.info("account %s verified its email", account.account_id)

        await self._notifier.send_welcome(updated.email)
        return updated.without_password()

    @_service_boundary("Failed to send email")
    async def send_reset_password_email(self, email: str, organization_id: str) -> None:
        """Mail a password reset token; unknown accounts succeed silently."""
        account = await self._repository.find_by_credentials(email, organization_id)
        if account is None:
            logger.info("password reset requested for unknown account in %s", organization_id)
            return None

        token = await self._issue_tracked_token(account.account_id, TokenPurpose.forgotten_password)
        await self._notifier.send_password_reset(account.email, token)
        return None

    @_service_boundary("Failed to resend email")
    async def resend_reset_password_email(self, token: str) -> None:
        """Replace a still-live password reset token with a new one and mail it."""
        claims = self._codec.verify(token, TokenPurpose.forgotten_password)
        account = await self._load_account(claims["sub"])
        await self._registry.validate(
            account.account_id, TokenPurpose.forgotten_password, claims.get("token_id")
        )

        new_token = await self._issue_tracked_token(account.account_id, TokenPurpose.forgotten_password)
        await self._notifier.send_password_reset(account.email, new_token)

    @_service_boundary("Failed to reset password")
    async def reset_password(self, token: str, new_password: str) -> None:
        """Consume a password reset token and store the new password hash."""
        claims = self._codec.verify(token, TokenPurpose.forgotten_password)
        account = await self._load_account(claims["sub"])
        await self._registry.consume(
            account.account_id, TokenPurpose.forgotten_password, claims.get("token_id")
        )

        password_hash = await asyncio.to_thread(self._hasher.hash, new_password)
        updated = await self._repository.update_account(
            account.account_id, {"password_hash": password_hash}
        )
        if updated is None:
            raise AccountNotFound()
        logger.info("account %s reset its password", account.account_id)

    def authenticate(self, access_token: str) -> ActiveUser:
        """Resolve the caller identity from an auth token without touching the store."""
        claims = self._codec.verify(access_token, TokenPurpose.auth)
        try:
            return ActiveUser(
                account_id=claims["sub"],
                organization_id=claims["organization_id"],
                email=claims["email"],
                role=Role(claims["role"]),
            )
        except (KeyError, ValueError) as exc:
            logger.info("auth token is missing identity claims")
            raise InvalidOrExpiredToken() from exc

    async def _load_account(self, account_id: str) -> Account:
        account = await self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFound()
        return account

    async def _issue_tracked_token(self, account_id: str, purpose: TokenPurpose) -> str:
        """Sign a token carrying a fresh identifier and make that identifier the live one."""
        ttl = self._settings.token_ttl(purpose)
        token_id = new_token_id()
        token = self._codec.sign(account_id, purpose, ttl, {"token_id": token_id})
        await self._registry.insert(account_id, purpose, token_id, ttl)
        return token

    async def _issue_session(self, account: Account) -> TokenBundle:
        access_ttl = self._settings.token_ttl(TokenPurpose.auth)
        access_token = self._codec.sign(
            account.account_id,
            TokenPurpose.auth,
            access_ttl,
            {
                "organization_id": account.organization_id,
                "email": account.email,
                "role": Role(account.role).value,
            },
        )
        refresh_token = await self._issue_tracked_token(account.account_id, TokenPurpose.refresh)
        return TokenBundle(
            access_token=access_token,
            access_expires_in=access_ttl,
            refresh_token=refresh_token,
            refresh_expires_in=self._settings.token_ttl(TokenPurpose.refresh),
        )
