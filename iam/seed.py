"""Bootstrap an organization and its first admin account.

Usage:
    # Create a new organization and an admin inside it:
    iam-seed --email admin@example.com --password SecurePassword123 --organization-name Acme

    # Add an admin to an existing organization:
    iam-seed --email admin@example.com --password SecurePassword123 --organization-id <uuid>

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (at least 8 characters)
    POSTGRES_URL: PostgreSQL connection string
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Any

from psycopg_pool import AsyncConnectionPool

from .config import get_settings
from .domain.account import Role
from .domain.contracts import CreateAccountInput
from .domain.errors import IamError, OrganizationNotFound
from .repository import AccountRepository
from .security.passwords import PasswordHasher

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


async def bootstrap_admin(
    repository: AccountRepository,
    hasher: PasswordHasher,
    *,
    email: str,
    password: str,
    organization_id: str | None = None,
    organization_name: str = "Default",
    first_name: str = "Admin",
    last_name: str = "User",
) -> dict[str, Any]:
    """Create or promote a verified admin account.

    Returns:
        dict with organization_id, account_id, email and status
        ('created', 'promoted' or 'already_admin')
    """
    if organization_id:
        organization = await repository.get_organization(organization_id)
        if organization is None:
            raise OrganizationNotFound()
    else:
        organization = await repository.create_organization(organization_name)
        logger.info("created organization %s (%s)", organization.name, organization.organization_id)

    result = {"organization_id": organization.organization_id, "email": email}
    existing = await repository.find_by_credentials(email, organization.organization_id)
    if existing is not None:
        if existing.role == Role.admin:
            return {**result, "account_id": existing.account_id, "status": "already_admin"}
        await repository.update_account(
            existing.account_id, {"role": Role.admin, "email_verified": True, "enabled": True}
        )
        return {**result, "account_id": existing.account_id, "status": "promoted"}

    password_hash = await asyncio.to_thread(hasher.hash, password)
    async with repository.transaction() as conn:
        account = await repository.create_account(
            CreateAccountInput(
                organization_id=organization.organization_id,
                first_name=first_name,
                last_name=last_name,
                email=email,
                password_hash=password_hash,
                role=Role.admin,
            ),
            conn=conn,
        )
        await repository.update_account(account.account_id, {"email_verified": True}, conn=conn)
    return {**result, "account_id": account.account_id, "status": "created"}


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    pool = AsyncConnectionPool(settings.database_url, open=False)
    await pool.open()
    try:
        return await bootstrap_admin(
            AccountRepository(pool),
            PasswordHasher(rounds=settings.bcrypt_rounds),
            email=args.email,
            password=args.password,
            organization_id=args.organization_id,
            organization_name=args.organization_name,
            first_name=args.first_name,
            last_name=args.last_name,
        )
    finally:
        await pool.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Bootstrap an organization admin for the IAM service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"), help="Admin email (or ADMIN_EMAIL)")
    parser.add_argument(
        "--password", default=os.environ.get("ADMIN_PASSWORD"), help="Admin password (or ADMIN_PASSWORD)"
    )
    parser.add_argument("--organization-id", help="Existing organization to add the admin to")
    parser.add_argument("--organization-name", default="Default", help="Name of the organization to create")
    parser.add_argument("--first-name", default="Admin")
    parser.add_argument("--last-name", default="User")
    args = parser.parse_args()

    if not args.email:
        parser.error("--email or ADMIN_EMAIL environment variable required")
    if not args.password or len(args.password) < MIN_PASSWORD_LENGTH:
        parser.error(f"--password or ADMIN_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters")

    logging.basicConfig(level=logging.INFO)
    try:
        result = asyncio.run(_run(args))
    except IamError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    print(f"Admin {result['email']} {result['status']}")
    print(f"  Organization ID: {result['organization_id']}")
    print(f"  Account ID: {result['account_id']}")


if __name__ == "__main__":
    main()
