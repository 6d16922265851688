from __future__ import annotations

import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from urllib.parse import unquote

from fakeredis import aioredis as fake_aioredis
import pytest

from iam.config import Settings
from iam.domain.account import Account, Organization
from iam.domain.contracts import CreateAccountInput
from iam.domain.errors import DuplicateAccount, OrganizationNotFound
from iam.domain.service import AuthService
from iam.notifications.messages import AccountNotifier
from iam.security.passwords import PasswordHasher
from iam.security.token_registry import TokenRegistry
from iam.security.tokens import TokenCodec


class FakeAccountRepository:
    """In-memory repository mimicking Postgres-backed behaviors."""

    def __init__(self) -> None:
        self.organizations: dict[str, Organization] = {}
        self.accounts: dict[str, Account] = {}
        self.create_error: Exception | None = None
        self.transactions = 0

    def add_organization(self, name: str = "Acme") -> Organization:
        now = datetime.now(timezone.utc)
        organization = Organization(
            organization_id=str(uuid.uuid4()), name=name, created_at=now, updated_at=now
        )
        self.organizations[organization.organization_id] = organization
        return organization

    async def create_organization(self, name: str) -> Organization:
        return self.add_organization(name)

    async def get_organization(self, organization_id: str) -> Organization | None:
        return self.organizations.get(organization_id)

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield None

    async def create_account(self, payload: CreateAccountInput, *, conn=None) -> Account:
        if self.create_error is not None:
            raise self.create_error
        if payload.organization_id not in self.organizations:
            raise OrganizationNotFound()
        for existing in self.accounts.values():
            if existing.email == payload.email and existing.organization_id == payload.organization_id:
                raise DuplicateAccount()

        now = datetime.now(timezone.utc)
        account = Account(
            account_id=str(uuid.uuid4()),
            organization_id=payload.organization_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            role=payload.role,
            created_at=now,
            updated_at=now,
            password_hash=payload.password_hash,
        )
        self.accounts[account.account_id] = account
        return replace(account)

    async def find_by_credentials(self, email: str, organization_id: str) -> Account | None:
        for account in self.accounts.values():
            if account.email == email and account.organization_id == organization_id:
                return replace(account)
        return None

    async def get_account(self, account_id: str) -> Account | None:
        account = self.accounts.get(account_id)
        return replace(account) if account else None

    async def update_account(self, account_id: str, changes: dict, *, conn=None) -> Account | None:
        account = self.accounts.get(account_id)
        if account is None:
            return None
        for column, value in changes.items():
            setattr(account, column, value)
        account.updated_at = datetime.now(timezone.utc)
        return replace(account)


@dataclass
class SentMail:
    to: str
    subject: str
    html_body: str


class RecordingMailer:
    """Mailer double keeping every message instead of delivering it."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.error: Exception | None = None

    async def send(self, to: str, subject: str, html_body: str) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append(SentMail(to=to, subject=subject, html_body=html_body))
        return f"<{len(self.sent)}@test.local>"

    def last_token(self) -> str:
        return self.token_in(self.sent[-1])

    @staticmethod
    def token_in(mail: SentMail) -> str:
        match = re.search(r"token=([^\"&]+)", mail.html_body)
        assert match, "no token link in the mail"
        return unquote(match.group(1))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret="test-secret",
        jwt_audience="test-audience",
        jwt_issuer="test-issuer",
        access_token_ttl=3600,
        refresh_token_ttl=86400,
        email_verification_token_ttl=2592000,
        forgotten_password_token_ttl=2592000,
        bcrypt_rounds=4,
        frontend_url="https://frontend.example.com",
        service_api_key="test-api-key",
    )


@pytest.fixture
def redis_client() -> fake_aioredis.FakeRedis:
    return fake_aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def codec(settings: Settings) -> TokenCodec:
    return TokenCodec(
        secret=settings.jwt_secret,
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


@pytest.fixture
def registry(redis_client) -> TokenRegistry:
    return TokenRegistry(redis_client)


@pytest.fixture
def repository() -> FakeAccountRepository:
    return FakeAccountRepository()


@pytest.fixture
def organization(repository: FakeAccountRepository) -> Organization:
    return repository.add_organization("Acme")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(settings, repository, registry, codec, mailer) -> AuthService:
    return AuthService(
        repository=repository,
        registry=registry,
        codec=codec,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        notifier=AccountNotifier(mailer, frontend_url=settings.frontend_url),
        settings=settings,
    )
