"""PostgreSQL implementation of the entitlement store."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import uuid4

import psycopg2
import psycopg2.extras
from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .models import (
    LicensePool,
    LicensePurchase,
    LicenseType,
    Membership,
    MembershipRole,
    MembershipStatus,
    MembershipUpsert,
    NotificationKind,
    NotificationLogEntry,
    Organization,
    PendingOrganization,
    PurchaseCredit,
    RenewalAction,
    RenewalHistoryEntry,
    ScheduledChangeCommit,
    SeatTransition,
)
from .store import MembershipConflict, SeatCapacityExceeded


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_organization(row: dict) -> Organization:
    return Organization(
        id=str(row["id"]),
        name=row["name"],
        owner_id=str(row["owner_id"]) if row.get("owner_id") else None,
        is_trial=bool(row["is_trial"]),
        trial_expires_at=row.get("trial_expires_at"),
        is_personal_trial=bool(row.get("is_personal_trial")),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_membership(row: dict) -> Membership:
    return Membership(
        id=str(row["id"]),
        organization_id=str(row["organization_id"]),
        user_id=str(row["user_id"]) if row.get("user_id") else None,
        email=row.get("email"),
        role=MembershipRole(row["role"]),
        status=MembershipStatus(row["status"]),
        has_license=bool(row["has_license"]),
        invite_token_hash=row.get("invite_token_hash"),
        invitation_sent_at=row.get("invite_token_sent_at"),
        invitation_expires_at=row.get("invitation_expires_at"),
        invited_by=str(row["invited_by"]) if row.get("invited_by") else None,
        invited_at=row.get("invited_at"),
        accepted_at=row.get("accepted_at"),
        removed_at=row.get("removed_at"),
    )


def _row_to_license_pool(row: dict) -> LicensePool:
    return LicensePool(
        id=str(row["id"]),
        organization_id=str(row["organization_id"]),
        total_licenses=int(row["total_licenses"]),
        used_licenses=int(row["used_licenses"]),
        expires_at=row["expires_at"],
        license_type=LicenseType(row.get("license_type") or LicenseType.STANDARD.value),
        subscription_id=row.get("subscription_id"),
        last_transaction_id=row.get("paddle_id"),
        scheduled_total_licenses=row.get("scheduled_total_licenses"),
        scheduled_change_at=row.get("scheduled_change_at"),
        scheduled_change_note=row.get("scheduled_change_note"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_pending_organization(row: dict) -> PendingOrganization:
    return PendingOrganization(
        id=str(row["id"]),
        user_email=row["user_email"],
        user_name=row.get("user_name"),
        organization_name=row["organization_name"],
        user_id=str(row["user_id"]) if row.get("user_id") else None,
        created_at=row["created_at"],
    )


def _row_to_notification(row: dict) -> NotificationLogEntry:
    return NotificationLogEntry(
        id=str(row["id"]),
        license_id=str(row["license_id"]),
        organization_id=str(row["organization_id"]),
        kind=NotificationKind(row["notification_type"]),
        sent_at=row["sent_at"],
        email_sent=bool(row.get("email_sent")),
    )


def _row_to_renewal(row: dict) -> RenewalHistoryEntry:
    return RenewalHistoryEntry(
        organization_id=str(row["organization_id"]),
        license_id=str(row["license_id"]),
        action=RenewalAction(row["action"]),
        previous_quantity=row.get("previous_quantity"),
        new_quantity=int(row["new_quantity"]),
        previous_expires_at=row.get("previous_expires_at"),
        new_expires_at=row.get("new_expires_at"),
        transaction_id=row.get("paddle_transaction_id"),
        note=row.get("note"),
        created_at=row["created_at"],
    )


def _membership_params(membership: Membership) -> dict:
    return {
        "id": membership.id,
        "organization_id": membership.organization_id,
        "user_id": membership.user_id,
        "email": membership.email,
        "role": membership.role.value,
        "status": membership.status.value,
        "has_license": membership.has_license,
        "invite_token_hash": membership.invite_token_hash,
        "invite_token_sent_at": membership.invitation_sent_at,
        "invitation_expires_at": membership.invitation_expires_at,
        "invited_by": membership.invited_by,
        "invited_at": membership.invited_at,
        "accepted_at": membership.accepted_at,
        "removed_at": membership.removed_at,
    }


def _adjust_used_licenses(
    cursor: PgCursor,
    organization_id: str,
    delta: int,
    *,
    enforce_capacity: bool,
) -> None:
    """Move ``used_licenses`` by ``delta`` relative to the stored row."""

    if delta > 0:
        cursor.execute(
            """
            UPDATE organization_licenses
            SET used_licenses = used_licenses + %(delta)s,
                updated_at = NOW()
            WHERE organization_id = %(organization_id)s
              AND (NOT %(enforce)s OR used_licenses + %(delta)s <= total_licenses)
            RETURNING id
            """,
            {"delta": delta, "organization_id": organization_id, "enforce": enforce_capacity},
        )
        if cursor.fetchone() is not None:
            return
        cursor.execute(
            "SELECT 1 FROM organization_licenses WHERE organization_id = %s",
            (organization_id,),
        )
        if cursor.fetchone() is not None:
            raise SeatCapacityExceeded(organization_id)
    elif delta < 0:
        # Never below the number of seats still occupied after the change.
        cursor.execute(
            """
            UPDATE organization_licenses
            SET used_licenses = GREATEST(
                    used_licenses + %(delta)s,
                    (
                        SELECT COUNT(*)
                        FROM organization_members
                        WHERE organization_id = %(organization_id)s
                          AND status = 'active'
                          AND has_license
                    ),
                    0
                ),
                updated_at = NOW()
            WHERE organization_id = %(organization_id)s
            """,
            {"delta": delta, "organization_id": organization_id},
        )


_INSERT_RENEWAL_SQL = """
    INSERT INTO license_renewal_history (
        organization_id,
        license_id,
        action,
        previous_quantity,
        new_quantity,
        previous_expires_at,
        new_expires_at,
        paddle_transaction_id,
        note,
        created_at
    )
    VALUES (%(organization_id)s, %(license_id)s, %(action)s, %(previous_quantity)s,
            %(new_quantity)s, %(previous_expires_at)s, %(new_expires_at)s,
            %(transaction_id)s, %(note)s, %(created_at)s)
"""


def _insert_renewal(cursor: PgCursor, entry: RenewalHistoryEntry) -> None:
    params = entry.model_dump()
    params["action"] = entry.action.value
    cursor.execute(_INSERT_RENEWAL_SQL, params)


class PostgresEntitlementStore:
    """Concrete store persisting entitlement records in PostgreSQL."""

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

    # Organizations

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM organizations WHERE id = %s", (organization_id,))
            row = cursor.fetchone()
            return _row_to_organization(row) if row else None

    def find_organization_by_name(self, name: str) -> Optional[Organization]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organizations
                WHERE name = %s AND NOT is_personal_trial
                ORDER BY created_at
                LIMIT 1
                """,
                (name,),
            )
            row = cursor.fetchone()
            return _row_to_organization(row) if row else None

    def create_organization(
        self,
        organization: Organization,
        *,
        founder: Optional[Membership] = None,
    ) -> Organization:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO organizations (
                    id, name, owner_id, is_trial, trial_expires_at, is_personal_trial
                )
                VALUES (%(id)s, %(name)s, %(owner_id)s, %(is_trial)s,
                        %(trial_expires_at)s, %(is_personal_trial)s)
                RETURNING *
                """,
                organization.model_dump(include={"id", "name", "owner_id", "is_trial", "trial_expires_at", "is_personal_trial"}),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist organization")
            if founder is not None:
                cursor.execute(
                    """
                    INSERT INTO organization_members (
                        id, organization_id, user_id, email, role, status, has_license,
                        invited_at, accepted_at
                    )
                    VALUES (%(id)s, %(organization_id)s, %(user_id)s, %(email)s, %(role)s,
                            %(status)s, %(has_license)s, %(invited_at)s, %(accepted_at)s)
                    """,
                    _membership_params(founder),
                )
            return _row_to_organization(row)

    def mark_organization_paid(self, organization_id: str) -> Optional[Organization]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE organizations
                SET is_trial = FALSE,
                    trial_expires_at = NULL,
                    is_personal_trial = FALSE,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (organization_id,),
            )
            row = cursor.fetchone()
            return _row_to_organization(row) if row else None

    def list_orphaned_personal_trials(self) -> Sequence[Organization]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT o.*
                FROM organizations o
                WHERE o.is_personal_trial
                  AND NOT EXISTS (
                      SELECT 1
                      FROM organization_members m
                      WHERE m.organization_id = o.id
                        AND m.status = 'active'
                  )
                ORDER BY o.created_at
                """
            )
            return [_row_to_organization(row) for row in cursor.fetchall()]

    def delete_orphaned_personal_trial(self, organization_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM organizations o
                WHERE o.id = %s
                  AND o.is_personal_trial
                  AND NOT EXISTS (
                      SELECT 1
                      FROM organization_members m
                      WHERE m.organization_id = o.id
                        AND m.status = 'active'
                  )
                """,
                (organization_id,),
            )
            return cursor.rowcount > 0

    # Memberships

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM organization_members WHERE id = %s", (membership_id,))
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def find_membership(
        self,
        organization_id: str,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[Membership]:
        if user_id is None and email is None:
            raise ValueError("user_id or email is required")
        with self._cursor() as cursor:
            if user_id is not None:
                cursor.execute(
                    """
                    SELECT *
                    FROM organization_members
                    WHERE organization_id = %s AND user_id = %s
                    LIMIT 1
                    """,
                    (organization_id, user_id),
                )
            else:
                cursor.execute(
                    """
                    SELECT *
                    FROM organization_members
                    WHERE organization_id = %s AND LOWER(email) = LOWER(%s)
                    ORDER BY (user_id IS NULL) DESC
                    LIMIT 1
                    """,
                    (organization_id, email),
                )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def list_memberships(
        self,
        organization_id: str,
        *,
        statuses: Optional[Sequence[MembershipStatus]] = None,
    ) -> Sequence[Membership]:
        with self._cursor() as cursor:
            if statuses:
                cursor.execute(
                    """
                    SELECT *
                    FROM organization_members
                    WHERE organization_id = %s AND status = ANY(%s)
                    ORDER BY invited_at NULLS FIRST, id
                    """,
                    (organization_id, [item.value for item in statuses]),
                )
            else:
                cursor.execute(
                    """
                    SELECT *
                    FROM organization_members
                    WHERE organization_id = %s
                    ORDER BY invited_at NULLS FIRST, id
                    """,
                    (organization_id,),
                )
            return [_row_to_membership(row) for row in cursor.fetchall()]

    def list_active_memberships_for_user(self, user_id: str) -> Sequence[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organization_members
                WHERE user_id = %s AND status = 'active'
                ORDER BY accepted_at DESC NULLS LAST
                """,
                (user_id,),
            )
            return [_row_to_membership(row) for row in cursor.fetchall()]

    def insert_or_update_membership(
        self,
        membership: Membership,
        *,
        enforce_capacity: bool = True,
    ) -> MembershipUpsert:
        params = _membership_params(membership)
        with self._cursor() as cursor:
            previous: Optional[Membership] = None
            cursor.execute("SAVEPOINT membership_upsert")
            try:
                cursor.execute(
                    """
                    INSERT INTO organization_members (
                        id, organization_id, user_id, email, role, status, has_license,
                        invite_token_hash, invite_token_sent_at, invitation_expires_at,
                        invited_by, invited_at, accepted_at, removed_at
                    )
                    VALUES (%(id)s, %(organization_id)s, %(user_id)s, %(email)s, %(role)s,
                            %(status)s, %(has_license)s, %(invite_token_hash)s,
                            %(invite_token_sent_at)s, %(invitation_expires_at)s,
                            %(invited_by)s, %(invited_at)s, %(accepted_at)s, %(removed_at)s)
                    RETURNING *
                    """,
                    params,
                )
                row = cursor.fetchone()
                created = True
            except pg_errors.UniqueViolation:
                cursor.execute("ROLLBACK TO SAVEPOINT membership_upsert")
                if membership.user_id is not None:
                    cursor.execute(
                        """
                        SELECT *
                        FROM organization_members
                        WHERE organization_id = %(organization_id)s AND user_id = %(user_id)s
                        FOR UPDATE
                        """,
                        params,
                    )
                else:
                    cursor.execute(
                        """
                        SELECT *
                        FROM organization_members
                        WHERE organization_id = %(organization_id)s
                          AND user_id IS NULL
                          AND LOWER(email) = LOWER(%(email)s)
                        FOR UPDATE
                        """,
                        params,
                    )
                existing = cursor.fetchone()
                if existing is None:
                    raise MembershipConflict(
                        f"Membership conflict in organization {membership.organization_id} without a matching row"
                    )
                previous = _row_to_membership(existing)
                params["id"] = previous.id
                params["email"] = membership.email or previous.email
                cursor.execute(
                    """
                    UPDATE organization_members
                    SET email = %(email)s,
                        role = %(role)s,
                        status = %(status)s,
                        has_license = %(has_license)s,
                        invite_token_hash = %(invite_token_hash)s,
                        invite_token_sent_at = %(invite_token_sent_at)s,
                        invitation_expires_at = %(invitation_expires_at)s,
                        invited_by = COALESCE(%(invited_by)s, invited_by),
                        invited_at = COALESCE(%(invited_at)s, invited_at),
                        accepted_at = COALESCE(%(accepted_at)s, accepted_at),
                        removed_at = %(removed_at)s
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    params,
                )
                row = cursor.fetchone()
                created = False
            else:
                cursor.execute("RELEASE SAVEPOINT membership_upsert")
            if not row:
                raise RuntimeError("Failed to persist membership")
            stored = _row_to_membership(row)
            was_occupying = previous.occupies_seat if previous else False
            delta = int(stored.occupies_seat) - int(was_occupying)
            _adjust_used_licenses(cursor, stored.organization_id, delta, enforce_capacity=enforce_capacity)
            return MembershipUpsert(membership=stored, created=created, seat_delta=delta)

    def apply_seat_transition(self, transition: SeatTransition) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organization_members
                WHERE id = %s AND organization_id = %s
                FOR UPDATE
                """,
                (transition.membership_id, transition.organization_id),
            )
            row = cursor.fetchone()
            if not row:
                return None
            current = _row_to_membership(row)
            if current.status not in transition.expected_statuses:
                return None
            cursor.execute(
                """
                UPDATE organization_members
                SET status = %(status)s,
                    has_license = %(has_license)s,
                    role = COALESCE(%(role)s, role),
                    user_id = COALESCE(%(user_id)s, user_id),
                    accepted_at = COALESCE(%(accepted_at)s, accepted_at),
                    removed_at = %(removed_at)s,
                    invite_token_hash = CASE WHEN %(clear_invitation)s THEN NULL ELSE invite_token_hash END,
                    invite_token_sent_at = CASE WHEN %(clear_invitation)s THEN NULL ELSE invite_token_sent_at END,
                    invitation_expires_at = CASE WHEN %(clear_invitation)s THEN NULL ELSE invitation_expires_at END
                WHERE id = %(membership_id)s
                RETURNING *
                """,
                {
                    "status": transition.status.value,
                    "has_license": transition.has_license,
                    "role": transition.role.value if transition.role else None,
                    "user_id": transition.user_id,
                    "accepted_at": transition.accepted_at,
                    "removed_at": transition.removed_at,
                    "clear_invitation": transition.clear_invitation,
                    "membership_id": transition.membership_id,
                },
            )
            updated = cursor.fetchone()
            if not updated:
                raise RuntimeError("Failed to update membership")
            delta = int(transition.occupies_seat) - int(current.occupies_seat)
            _adjust_used_licenses(
                cursor,
                transition.organization_id,
                delta,
                enforce_capacity=transition.enforce_capacity,
            )
            return _row_to_membership(updated)

    # License pools

    def get_license_pool(self, organization_id: str) -> Optional[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM organization_licenses WHERE organization_id = %s",
                (organization_id,),
            )
            row = cursor.fetchone()
            return _row_to_license_pool(row) if row else None

    def get_license_pool_by_id(self, license_id: str) -> Optional[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM organization_licenses WHERE id = %s", (license_id,))
            row = cursor.fetchone()
            return _row_to_license_pool(row) if row else None

    def record_license_purchase(self, purchase: LicensePurchase) -> PurchaseCredit:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO license_transactions (
                    transaction_id, organization_id, quantity, prorated, occurred_at
                )
                VALUES (%(transaction_id)s, %(organization_id)s, %(quantity)s,
                        %(prorated)s, %(occurred_at)s)
                ON CONFLICT (transaction_id) DO NOTHING
                """,
                purchase.model_dump(include={"transaction_id", "organization_id", "quantity", "prorated", "occurred_at"}),
            )
            if cursor.rowcount == 0:
                cursor.execute(
                    """
                    SELECT l.*
                    FROM license_transactions t
                    JOIN organization_licenses l ON l.organization_id = t.organization_id
                    WHERE t.transaction_id = %s
                    """,
                    (purchase.transaction_id,),
                )
                row = cursor.fetchone()
                if not row:
                    raise RuntimeError(f"Transaction {purchase.transaction_id} recorded without a license pool")
                return PurchaseCredit(pool=_row_to_license_pool(row), applied=False)

            cursor.execute(
                "SELECT * FROM organization_licenses WHERE organization_id = %s FOR UPDATE",
                (purchase.organization_id,),
            )
            existing_row = cursor.fetchone()
            params = {
                "organization_id": purchase.organization_id,
                "quantity": purchase.quantity,
                "prorated": purchase.prorated,
                "term_expires_at": purchase.term_expires_at,
                "subscription_id": purchase.subscription_id,
                "transaction_id": purchase.transaction_id,
            }
            if existing_row:
                previous = _row_to_license_pool(existing_row)
                cursor.execute(
                    """
                    UPDATE organization_licenses
                    SET total_licenses = total_licenses + %(quantity)s,
                        expires_at = CASE WHEN %(prorated)s THEN expires_at ELSE %(term_expires_at)s END,
                        subscription_id = COALESCE(%(subscription_id)s, subscription_id),
                        paddle_id = %(transaction_id)s,
                        license_type = 'standard',
                        updated_at = NOW()
                    WHERE organization_id = %(organization_id)s
                    RETURNING *
                    """,
                    params,
                )
                action = RenewalAction.PRORATED if purchase.prorated else RenewalAction.RENEWAL
            else:
                previous = None
                params["id"] = str(uuid4())
                cursor.execute(
                    """
                    INSERT INTO organization_licenses (
                        id, organization_id, total_licenses, used_licenses, expires_at,
                        license_type, subscription_id, paddle_id
                    )
                    VALUES (
                        %(id)s,
                        %(organization_id)s,
                        %(quantity)s,
                        (
                            SELECT COUNT(*)
                            FROM organization_members
                            WHERE organization_id = %(organization_id)s
                              AND status = 'active'
                              AND has_license
                        ),
                        %(term_expires_at)s,
                        'standard',
                        %(subscription_id)s,
                        %(transaction_id)s
                    )
                    RETURNING *
                    """,
                    params,
                )
                action = RenewalAction.NEW_PURCHASE
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist license pool")
            pool = _row_to_license_pool(row)
            cursor.execute(
                "UPDATE license_transactions SET license_id = %s WHERE transaction_id = %s",
                (pool.id, purchase.transaction_id),
            )
            _insert_renewal(
                cursor,
                RenewalHistoryEntry(
                    organization_id=pool.organization_id,
                    license_id=pool.id,
                    action=action,
                    previous_quantity=previous.total_licenses if previous else None,
                    new_quantity=pool.total_licenses,
                    previous_expires_at=previous.expires_at if previous else None,
                    new_expires_at=pool.expires_at,
                    transaction_id=purchase.transaction_id,
                    created_at=purchase.occurred_at,
                ),
            )
            return PurchaseCredit(pool=pool, applied=True, created=previous is None)

    def schedule_license_change(
        self,
        license_id: str,
        *,
        total_licenses: Optional[int],
        change_at: Optional[datetime],
        note: Optional[str],
    ) -> Optional[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE organization_licenses
                SET scheduled_total_licenses = %s,
                    scheduled_change_at = %s,
                    scheduled_change_note = %s,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (total_licenses, change_at, note, license_id),
            )
            row = cursor.fetchone()
            return _row_to_license_pool(row) if row else None

    def list_due_license_changes(self, now: datetime) -> Sequence[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organization_licenses
                WHERE scheduled_total_licenses IS NOT NULL
                  AND scheduled_change_at <= %s
                ORDER BY scheduled_change_at ASC
                """,
                (now,),
            )
            return [_row_to_license_pool(row) for row in cursor.fetchall()]

    def commit_scheduled_change(self, change: ScheduledChangeCommit) -> Optional[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organization_licenses
                WHERE id = %s
                FOR UPDATE
                """,
                (change.license_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            pool = _row_to_license_pool(row)
            if (
                pool.scheduled_total_licenses != change.expected_scheduled_total
                or pool.scheduled_change_at != change.expected_change_at
            ):
                return None

            released = 0
            if change.release_membership_ids:
                cursor.execute(
                    """
                    UPDATE organization_members
                    SET has_license = FALSE
                    WHERE organization_id = %s
                      AND id = ANY(%s)
                      AND status = 'active'
                      AND has_license
                    """,
                    (change.organization_id, list(change.release_membership_ids)),
                )
                released = cursor.rowcount
            cursor.execute(
                """
                SELECT COUNT(*) AS occupied
                FROM organization_members
                WHERE organization_id = %s AND status = 'active' AND has_license
                """,
                (change.organization_id,),
            )
            occupied = int(cursor.fetchone()["occupied"])
            if occupied > change.new_total:
                raise SeatCapacityExceeded(change.organization_id)

            cursor.execute(
                """
                UPDATE organization_licenses
                SET total_licenses = %(new_total)s,
                    used_licenses = LEAST(GREATEST(used_licenses - %(released)s, %(occupied)s), %(new_total)s),
                    license_type = %(license_type)s,
                    scheduled_total_licenses = NULL,
                    scheduled_change_at = NULL,
                    scheduled_change_note = NULL,
                    updated_at = NOW()
                WHERE id = %(license_id)s
                RETURNING *
                """,
                {
                    "new_total": change.new_total,
                    "released": released,
                    "occupied": occupied,
                    "license_type": change.license_type.value,
                    "license_id": change.license_id,
                },
            )
            updated = cursor.fetchone()
            if not updated:
                raise RuntimeError("Failed to commit scheduled change")
            _insert_renewal(cursor, change.history)
            return _row_to_license_pool(updated)

    def list_license_pools_expiring_between(self, start: datetime, end: datetime) -> Sequence[LicensePool]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM organization_licenses
                WHERE expires_at >= %s AND expires_at < %s
                ORDER BY expires_at
                """,
                (start, end),
            )
            return [_row_to_license_pool(row) for row in cursor.fetchall()]

    def list_renewal_history(self, organization_id: str) -> Sequence[RenewalHistoryEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM license_renewal_history
                WHERE organization_id = %s
                ORDER BY created_at DESC
                """,
                (organization_id,),
            )
            return [_row_to_renewal(row) for row in cursor.fetchall()]

    # Pending organizations

    def save_pending_organization(self, pending: PendingOrganization) -> PendingOrganization:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO pending_organizations (
                    id, user_email, user_name, organization_name, user_id, created_at
                )
                VALUES (%(id)s, %(user_email)s, %(user_name)s, %(organization_name)s,
                        %(user_id)s, %(created_at)s)
                RETURNING *
                """,
                pending.model_dump(),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist pending organization")
            return _row_to_pending_organization(row)

    def list_pending_organizations(self, email: str) -> Sequence[PendingOrganization]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM pending_organizations
                WHERE LOWER(user_email) = LOWER(%s)
                ORDER BY created_at
                """,
                (email,),
            )
            return [_row_to_pending_organization(row) for row in cursor.fetchall()]

    def delete_pending_organization(self, pending_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM pending_organizations WHERE id = %s", (pending_id,))
            return cursor.rowcount > 0

    # Notification log

    def claim_notification(self, entry: NotificationLogEntry, *, since: datetime) -> Optional[NotificationLogEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))",
                (f"{entry.license_id}:{entry.kind.value}",),
            )
            cursor.execute(
                """
                SELECT 1
                FROM license_notifications
                WHERE license_id = %s
                  AND notification_type = %s
                  AND sent_at >= %s
                LIMIT 1
                """,
                (entry.license_id, entry.kind.value, since),
            )
            if cursor.fetchone() is not None:
                return None
            cursor.execute(
                """
                INSERT INTO license_notifications (
                    id, organization_id, license_id, notification_type, sent_at, email_sent
                )
                VALUES (%s, %s, %s, %s, %s, FALSE)
                RETURNING *
                """,
                (entry.id or str(uuid4()), entry.organization_id, entry.license_id, entry.kind.value, entry.sent_at),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to record notification")
            return _row_to_notification(row)

    def mark_notification_sent(self, entry_id: str, *, email_sent: bool) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE license_notifications SET email_sent = %s WHERE id = %s",
                (email_sent, entry_id),
            )


__all__ = ["PostgresEntitlementStore", "managed_connection"]
