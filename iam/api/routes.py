"""HTTP route definitions for the IAM service."""

from __future__ import annotations

import logging
import secrets
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from ..config import Settings
from ..domain.account import Account, ActiveUser, Role
from ..domain.contracts import RegisterAccountInput
from ..domain.errors import Forbidden, InvalidOrExpiredToken
from ..domain.service import AuthService, TokenBundle

logger = logging.getLogger(__name__)

EMAIL_SENT = "Email sent successfully"
PASSWORD_CHANGED = "Password is successfully changed!"


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate, without its password hash."""

    account_id: str
    organization_id: str
    first_name: str
    last_name: str
    email: EmailStr
    role: Role
    email_verified: bool
    enabled: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            organization_id=account.organization_id,
            first_name=account.first_name,
            last_name=account.last_name,
            email=account.email,
            role=account.role,
            email_verified=account.email_verified,
            enabled=account.enabled,
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat(),
        )


class RegisterRequest(BaseModel):
    """Payload accepted when registering an account inside an organization."""

    organization_id: UUID
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role = Role.user


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    organization_id: UUID


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class SendEmailRequest(BaseModel):
    """Email lookup used by the anti-enumeration send endpoints."""

    email: EmailStr
    organization_id: UUID


class TokenBodyRequest(BaseModel):
    """Body carrying a previously mailed token."""

    token: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int

    @classmethod
    def from_bundle(cls, bundle: TokenBundle) -> "TokenResponse":
        return cls(
            access_token=bundle.access_token,
            expires_in=bundle.access_expires_in,
            refresh_token=bundle.refresh_token,
            refresh_expires_in=bundle.refresh_expires_in,
        )


class MessageResponse(BaseModel):
    message: str


class ActiveUserResponse(BaseModel):
    account_id: str
    organization_id: str
    email: EmailStr
    role: Role


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def require_api_key(
    request: Request,
    api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Reject callers without the shared service key, when one is configured."""
    settings: Settings = request.app.state.settings
    expected = settings.service_api_key
    if not expected:
        return
    if not api_key or not secrets.compare_digest(api_key, expected):
        logger.warning(
            "invalid api key for %s %s from %s",
            request.method,
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        raise Forbidden("Forbidden: Invalid API key")


bearer_scheme = HTTPBearer(auto_error=False)


def get_active_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_service),
) -> ActiveUser:
    """Authenticate the bearer auth token of the request."""
    if credentials is None:
        raise InvalidOrExpiredToken("Unauthorized - Missing token")
    try:
        return service.authenticate(credentials.credentials)
    except InvalidOrExpiredToken as exc:
        raise InvalidOrExpiredToken("Unauthorized - Invalid token") from exc


def require_role(*roles: Role):
    """Build a dependency admitting only active users holding one of ``roles``."""
    allowed = frozenset(Role(role) for role in roles)

    def dependency(active_user: ActiveUser = Depends(get_active_user)) -> ActiveUser:
        if active_user.role not in allowed:
            logger.info(
                "account %s with role %s denied, requires one of %s",
                active_user.account_id,
                active_user.role.value,
                sorted(role.value for role in allowed),
            )
            raise Forbidden("Access denied - Insufficient permissions")
        return active_user

    return dependency


router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(require_api_key)])


@router.post("/register", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_service),
) -> AccountResponse:
    """Register an account and mail it a verification link."""
    account = await service.register(
        RegisterAccountInput(
            organization_id=str(payload.organization_id),
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
        )
    )
    return AccountResponse.from_domain(account)


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_service),
) -> TokenResponse:
    bundle = await service.login(payload.email, payload.password, str(payload.organization_id))
    return TokenResponse.from_bundle(bundle)


@router.post("/refresh-token", response_model=TokenResponse)
async def refresh_token(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_service),
) -> TokenResponse:
    """Rotate a refresh token into a new access/refresh pair."""
    bundle = await service.refresh_tokens(payload.refresh_token)
    return TokenResponse.from_bundle(bundle)


@router.post("/send-verify-account-email", response_model=MessageResponse)
async def send_verify_account_email(
    payload: SendEmailRequest,
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    await service.send_verify_account_email(payload.email, str(payload.organization_id))
    return MessageResponse(message=EMAIL_SENT)


@router.post("/resend-verify-account-email", response_model=MessageResponse)
async def resend_verify_account_email(
    payload: TokenBodyRequest,
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    await service.resend_verify_account_email(payload.token)
    return MessageResponse(message=EMAIL_SENT)


@router.patch("/verify-account", response_model=AccountResponse)
async def verify_account(
    payload: TokenBodyRequest,
    service: AuthService = Depends(get_service),
) -> AccountResponse:
    account = await service.verify_account(payload.token)
    return AccountResponse.from_domain(account)


@router.post("/send-reset-password-email", response_model=MessageResponse)
async def send_reset_password_email(
    payload: SendEmailRequest,
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    await service.send_reset_password_email(payload.email, str(payload.organization_id))
    return MessageResponse(message=EMAIL_SENT)


@router.post("/resend-reset-password-email", response_model=MessageResponse)
async def resend_reset_password_email(
    payload: TokenBodyRequest,
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    await service.resend_reset_password_email(payload.token)
    return MessageResponse(message=EMAIL_SENT)


@router.patch("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    await service.reset_password(payload.token, payload.new_password)
    return MessageResponse(message=PASSWORD_CHANGED)


@router.get("/me", response_model=ActiveUserResponse)
def me(active_user: ActiveUser = Depends(get_active_user)) -> ActiveUserResponse:
    """Return the identity carried by the caller's auth token."""
    return ActiveUserResponse(
        account_id=active_user.account_id,
        organization_id=active_user.organization_id,
        email=active_user.email,
        role=active_user.role,
    )


@router.get("/admin", response_model=MessageResponse)
def admin_only(active_user: ActiveUser = Depends(require_role(Role.admin))) -> MessageResponse:
    """Admin-only endpoint confirming the caller's identity and role."""
    return MessageResponse(
        message=(
            f"User {active_user.email} from org {active_user.organization_id} "
            f"with role {active_user.role.value}"
        )
    )
