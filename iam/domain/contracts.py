"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass

from .account import Role


@dataclass(slots=True)
class RegisterAccountInput:
    """Validated registration data, still holding the raw password."""

    organization_id: str
    first_name: str
    last_name: str
    email: str
    password: str
    role: Role = Role.user


@dataclass(slots=True)
class CreateAccountInput:
    """Row values persisted for a new account; the password is already hashed."""

    organization_id: str
    first_name: str
    last_name: str
    email: str
    password_hash: str
    role: Role = Role.user

    @classmethod
    def from_registration(cls, payload: RegisterAccountInput, password_hash: str) -> "CreateAccountInput":
        return cls(
            organization_id=payload.organization_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            password_hash=password_hash,
            role=payload.role,
        )
