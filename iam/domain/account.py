from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    user = "user"


@dataclass(slots=True)
class Organization:
    """Tenant boundary owning many accounts."""

    organization_id: str
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for organization-scoped user identity."""

    account_id: str
    organization_id: str
    first_name: str
    last_name: str
    email: str
    role: Role
    created_at: datetime
    updated_at: datetime
    email_verified: bool = False
    enabled: bool = True
    password_hash: str | None = None

    def without_password(self) -> "Account":
        """Return a copy safe to hand outside the service."""
        return replace(self, password_hash=None)


@dataclass(slots=True)
class ActiveUser:
    """Identity carried by an auth token; no store lookup required."""

    account_id: str
    organization_id: str
    email: str
    role: Role
