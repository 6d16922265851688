"""Database repository for organizations and accounts."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from psycopg import AsyncConnection, errors, sql
from psycopg.rows import tuple_row
from psycopg_pool import AsyncConnectionPool

from .domain.account import Account, Organization, Role
from .domain.contracts import CreateAccountInput
from .domain.errors import DuplicateAccount, OrganizationNotFound

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = (
    "account_id, organization_id, first_name, last_name, email, role, "
    "created_at, updated_at, email_verified, enabled, password_hash"
)

_UPDATABLE_COLUMNS = frozenset(
    {"first_name", "last_name", "email", "password_hash", "role", "email_verified", "enabled"}
)


class AccountRepository:
    """Postgres-backed account persistence.

    Every method runs on its own pooled connection unless ``conn`` is given,
    in which case it joins the caller's transaction opened with
    :meth:`transaction`.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Yield a connection inside a transaction committed when the block exits cleanly."""
        async with self._pool.connection() as conn:
            async with conn.transaction():
                yield conn

    @asynccontextmanager
    async def _connection(self, conn: AsyncConnection | None) -> AsyncIterator[AsyncConnection]:
        if conn is not None:
            yield conn
            return
        async with self._pool.connection() as pooled:
            yield pooled

    async def create_account(
        self, payload: CreateAccountInput, *, conn: AsyncConnection | None = None
    ) -> Account:
        """Insert a new account row.

        Raises
        ------
        DuplicateAccount
            When the (email, organization) pair already exists.
        OrganizationNotFound
            When ``payload.organization_id`` references no organization.
        """
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            async with self._connection(conn) as connection:
                async with connection.cursor(row_factory=tuple_row) as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO account (
                            account_id, organization_id, first_name, last_name, email,
                            role, created_at, updated_at, email_verified, enabled, password_hash
                        )
                        VALUES (%s, %s, %s, %s, %s, %s::account_role, %s, %s, false, true, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account_id,
                            payload.organization_id,
                            payload.first_name,
                            payload.last_name,
                            payload.email,
                            Role(payload.role).value,
                            now,
                            now,
                            payload.password_hash,
                        ),
                    )
                    row = await cur.fetchone()
        except errors.UniqueViolation as exc:
            logger.info("account already exists in organization %s", payload.organization_id)
            raise DuplicateAccount() from exc
        except errors.ForeignKeyViolation as exc:
            logger.info("organization %s does not exist", payload.organization_id)
            raise OrganizationNotFound() from exc
        return self._map_account(row)

    async def find_by_credentials(self, email: str, organization_id: str) -> Account | None:
        """Return the account registered with ``email`` inside the organization, or ``None``."""
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=tuple_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM account
                    WHERE email = %s AND organization_id = %s
                    """,
                    (email, organization_id),
                )
                row = await cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    async def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=tuple_row) as cur:
                await cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM account WHERE account_id = %s",
                    (account_id,),
                )
                row = await cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    async def update_account(
        self,
        account_id: str,
        changes: dict[str, Any],
        *,
        conn: AsyncConnection | None = None,
    ) -> Account | None:
        """Apply ``changes`` to the account and return the updated row, or ``None`` if absent."""
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"cannot update account columns: {sorted(unknown)}")
        if not changes:
            return await self.get_account(account_id)

        assignments = []
        params: list[Any] = []
        for column, value in changes.items():
            if column == "role":
                assignments.append(sql.SQL("role = %s::account_role"))
                value = Role(value).value
            else:
                assignments.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)
        assignments.append(sql.SQL("updated_at = %s"))
        params.append(datetime.now(timezone.utc))
        params.append(account_id)

        query = sql.SQL(
            "UPDATE account SET {} WHERE account_id = %s RETURNING " + _ACCOUNT_COLUMNS
        ).format(sql.SQL(", ").join(assignments))

        async with self._connection(conn) as connection:
            async with connection.cursor(row_factory=tuple_row) as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    async def create_organization(self, name: str) -> Organization:
        """Persist a new organization (tenant bootstrap)."""
        organization_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=tuple_row) as cur:
                await cur.execute(
                    """
                    INSERT INTO organization (organization_id, name, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    RETURNING organization_id, name, created_at, updated_at
                    """,
                    (organization_id, name, now, now),
                )
                row = await cur.fetchone()
        return self._map_organization(row)

    async def get_organization(self, organization_id: str) -> Organization | None:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=tuple_row) as cur:
                await cur.execute(
                    """
                    SELECT organization_id, name, created_at, updated_at
                    FROM organization
                    WHERE organization_id = %s
                    """,
                    (organization_id,),
                )
                row = await cur.fetchone()
        if not row:
            return None
        return self._map_organization(row)

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            organization_id=str(row[1]),
            first_name=row[2],
            last_name=row[3],
            email=row[4],
            role=Role(row[5]),
            created_at=row[6],
            updated_at=row[7],
            email_verified=row[8],
            enabled=row[9],
            password_hash=row[10],
        )

    def _map_organization(self, row: tuple) -> Organization:
        return Organization(
            organization_id=str(row[0]),
            name=row[1],
            created_at=row[2],
            updated_at=row[3],
        )
