"""PostgreSQL persistence for accounts."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..organizations.repository import managed_connection
from .models import Account


def _row_to_account(row: dict) -> Account:
    return Account(
        id=str(row["id"]),
        email=row["email"],
        name=row.get("name"),
        password_hash=row["password_hash"],
        email_confirmed=bool(row.get("email_confirmed")),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresAccountRepository:
    """Reads and writes the ``users`` table."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_by_id(self, account_id: str) -> Optional[Account]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = %s", (account_id,))
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_by_email(self, email: str) -> Optional[Account]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM users WHERE LOWER(email) = LOWER(%s)", (email.strip(),))
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def create(self, account: Account) -> Optional[Account]:
        """Insert the account; ``None`` when the email is already registered."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO users (id, email, name, password_hash, email_confirmed, created_at, updated_at)
                VALUES (%(id)s, %(email)s, %(name)s, %(password_hash)s, %(email_confirmed)s,
                        %(created_at)s, %(updated_at)s)
                ON CONFLICT DO NOTHING
                RETURNING *
                """,
                account.model_dump(),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def mark_email_confirmed(self, account_id: str) -> Optional[Account]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET email_confirmed = TRUE, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET password_hash = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (password_hash, account_id),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None


__all__ = ["PostgresAccountRepository"]
