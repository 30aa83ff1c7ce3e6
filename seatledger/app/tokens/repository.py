"""PostgreSQL persistence for hashed tokens."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..organizations.repository import managed_connection
from .models import StoredToken, TokenPurpose


def _row_to_token(row: dict) -> StoredToken:
    return StoredToken(
        id=str(row["id"]),
        purpose=TokenPurpose(row["purpose"]),
        subject_id=str(row["subject_id"]),
        token_hash=row["token_hash"],
        email=row.get("email"),
        expires_at=row["expires_at"],
        used=bool(row["used"]),
        used_at=row.get("used_at"),
        created_at=row["created_at"],
    )


class PostgresTokenRepository:
    """Stores token digests in the ``auth_tokens`` table."""

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

    def save(self, token: StoredToken) -> StoredToken:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO auth_tokens (
                    id, purpose, subject_id, token_hash, email, expires_at, used, created_at
                )
                VALUES (%(id)s, %(purpose)s, %(subject_id)s, %(token_hash)s, %(email)s,
                        %(expires_at)s, %(used)s, %(created_at)s)
                RETURNING *
                """,
                {
                    "id": token.id,
                    "purpose": token.purpose.value,
                    "subject_id": token.subject_id,
                    "token_hash": token.token_hash,
                    "email": token.email,
                    "expires_at": token.expires_at,
                    "used": token.used,
                    "created_at": token.created_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist token")
            return _row_to_token(row)

    def get_by_hash(self, purpose: TokenPurpose, token_hash: str) -> Optional[StoredToken]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM auth_tokens WHERE purpose = %s AND token_hash = %s",
                (purpose.value, token_hash),
            )
            row = cursor.fetchone()
            return _row_to_token(row) if row else None

    def mark_used(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> Optional[StoredToken]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE auth_tokens
                SET used = TRUE,
                    used_at = %(now)s
                WHERE purpose = %(purpose)s
                  AND token_hash = %(token_hash)s
                  AND used = FALSE
                  AND expires_at > %(now)s
                RETURNING *
                """,
                {"purpose": purpose.value, "token_hash": token_hash, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_token(row) if row else None

    def release(self, token_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE auth_tokens SET used = FALSE, used_at = NULL WHERE id = %s",
                (token_id,),
            )

    def revoke_for_subject(self, purpose: TokenPurpose, subject_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM auth_tokens WHERE purpose = %s AND subject_id = %s AND used = FALSE",
                (purpose.value, subject_id),
            )
            return cursor.rowcount

    def delete_expired(self, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM auth_tokens WHERE expires_at <= %s", (now,))
            return cursor.rowcount


__all__ = ["PostgresTokenRepository"]
