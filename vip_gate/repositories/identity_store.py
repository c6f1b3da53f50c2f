"""Identity store - durable storage for subject access records.

Lookups by subject id, time-based queries for lapsed grants, and guarded
single-statement grant/revoke updates.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import and_, delete, func, not_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from vip_gate.models.identity import AccessState, Identity, PlanKind
from vip_gate.repositories.database import IdentityRow, get_database, transaction


class IdentityNotFoundError(Exception):
    """Raised when an identity is not found in the store."""

    pass


@dataclass
class GrantResult:
    """What a grant did to an identity."""

    identity: Identity
    applied: bool  # False when an active perpetual grant was kept


def _to_identity(row: IdentityRow) -> Identity:
    return Identity(
        subject_id=row.subject_id,
        display_name=row.display_name,
        access_state=AccessState(row.access_state),
        plan_kind=PlanKind(row.plan_kind),
        expires_at_millis=row.expires_at_millis,
        admit_pending=bool(row.admit_pending),
    )


class IdentityStore:
    """Durable storage for Identity records."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """Initialize identity store.

        Args:
            session_factory: SQLAlchemy session factory (uses global database if not provided)
        """
        self._session_factory = session_factory or get_database().session_factory

    def find(self, subject_id: str) -> Optional[Identity]:
        """Find identity by subject id (returns None if not found)."""
        with transaction(self._session_factory) as session:
            row = session.scalar(select(IdentityRow).where(IdentityRow.subject_id == subject_id))
            return _to_identity(row) if row else None

    def get(self, subject_id: str) -> Identity:
        """Get identity by subject id.

        Raises:
            IdentityNotFoundError: If subject is unknown
        """
        identity = self.find(subject_id)
        if identity is None:
            raise IdentityNotFoundError(f"Identity not found for subject: {subject_id}")
        return identity

    def ensure(self, subject_id: str, display_name: Optional[str] = None) -> Identity:
        """Return the identity, creating an inactive one on first contact.

        Two concurrent first contacts collapse onto the unique subject index.
        """
        existing = self.find(subject_id)
        if existing is not None:
            return existing
        try:
            with transaction(self._session_factory) as session:
                session.add(
                    IdentityRow(
                        subject_id=subject_id,
                        display_name=display_name,
                        access_state=AccessState.INACTIVE.value,
                        plan_kind=PlanKind.UNSET.value,
                        expires_at_millis=None,
                        admit_pending=False,
                    )
                )
        except IntegrityError:
            pass
        return self.get(subject_id)

    def apply_grant(
        self,
        subject_id: str,
        plan_kind: PlanKind,
        expires_at_millis: Optional[int],
        session: Optional[Session] = None,
    ) -> GrantResult:
        """Activate a subject for a plan, keeping any active perpetual grant.

        A recurring grant is applied only if the subject does not already hold an
        active perpetual grant. A perpetual grant always applies and clears the
        expiry. Sets ``admit_pending`` until the access gate confirms.

        Args:
            subject_id: Subject to activate (must exist, see ensure)
            plan_kind: RECURRING or PERPETUAL
            expires_at_millis: New expiry for recurring grants (ignored for perpetual)
            session: Transaction to join (defaults to a new one)

        Raises:
            IdentityNotFoundError: If the subject has no identity
        """
        if plan_kind == PlanKind.PERPETUAL:
            values = {
                "access_state": AccessState.ACTIVE.value,
                "plan_kind": PlanKind.PERPETUAL.value,
                "expires_at_millis": None,
                "admit_pending": True,
            }
            guard = IdentityRow.subject_id == subject_id
        elif plan_kind == PlanKind.RECURRING:
            if expires_at_millis is None:
                raise ValueError("Recurring grants need an expiry")
            values = {
                "access_state": AccessState.ACTIVE.value,
                "plan_kind": PlanKind.RECURRING.value,
                "expires_at_millis": expires_at_millis,
                "admit_pending": True,
            }
            guard = and_(
                IdentityRow.subject_id == subject_id,
                not_(
                    and_(
                        IdentityRow.plan_kind == PlanKind.PERPETUAL.value,
                        IdentityRow.access_state == AccessState.ACTIVE.value,
                    )
                ),
            )
        else:
            raise ValueError(f"Cannot grant plan kind {plan_kind}")

        with transaction(self._session_factory, session) as session:
            result = session.execute(
                update(IdentityRow)
                .where(guard)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            row = session.scalar(select(IdentityRow).where(IdentityRow.subject_id == subject_id))
            if row is None:
                raise IdentityNotFoundError(f"Identity not found for subject: {subject_id}")
            return GrantResult(identity=_to_identity(row), applied=result.rowcount == 1)

    def list_lapsed(self, now_millis: int) -> List[Identity]:
        """Active recurring identities whose expiry is at or before ``now_millis``."""
        with transaction(self._session_factory) as session:
            rows = session.scalars(
                select(IdentityRow)
                .where(IdentityRow.access_state == AccessState.ACTIVE.value)
                .where(IdentityRow.plan_kind == PlanKind.RECURRING.value)
                .where(IdentityRow.expires_at_millis.is_not(None))
                .where(IdentityRow.expires_at_millis <= now_millis)
                .order_by(IdentityRow.expires_at_millis.asc())
            ).all()
            return [_to_identity(r) for r in rows]

    def revoke_if_lapsed(self, subject_id: str, now_millis: int) -> bool:
        """Deactivate a subject only if its recurring grant is still lapsed.

        Returns:
            True if this call deactivated the subject, False if a concurrent
            renewal (or another sweeper) got there first
        """
        with transaction(self._session_factory) as session:
            result = session.execute(
                update(IdentityRow)
                .where(IdentityRow.subject_id == subject_id)
                .where(IdentityRow.access_state == AccessState.ACTIVE.value)
                .where(IdentityRow.plan_kind == PlanKind.RECURRING.value)
                .where(IdentityRow.expires_at_millis <= now_millis)
                .values(access_state=AccessState.INACTIVE.value, admit_pending=False)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def list_pending_admits(self) -> List[Identity]:
        """Active identities whose grant the access gate has not yet confirmed."""
        with transaction(self._session_factory) as session:
            rows = session.scalars(
                select(IdentityRow)
                .where(IdentityRow.access_state == AccessState.ACTIVE.value)
                .where(IdentityRow.admit_pending.is_(True))
            ).all()
            return [_to_identity(r) for r in rows]

    def mark_admitted(self, subject_id: str) -> None:
        with transaction(self._session_factory) as session:
            session.execute(
                update(IdentityRow)
                .where(IdentityRow.subject_id == subject_id)
                .values(admit_pending=False)
                .execution_options(synchronize_session=False)
            )

    def mark_admit_pending(self, subject_id: str) -> None:
        """Queue an active subject for re-admission by the next sweep."""
        with transaction(self._session_factory) as session:
            session.execute(
                update(IdentityRow)
                .where(IdentityRow.subject_id == subject_id)
                .where(IdentityRow.access_state == AccessState.ACTIVE.value)
                .values(admit_pending=True)
                .execution_options(synchronize_session=False)
            )

    def count_by_state(self, state: AccessState) -> int:
        with transaction(self._session_factory) as session:
            return session.scalar(
                select(func.count())
                .select_from(IdentityRow)
                .where(IdentityRow.access_state == state.value)
            )

    def clear(self) -> None:
        """Delete all identities (tests only)."""
        with transaction(self._session_factory) as session:
            session.execute(delete(IdentityRow))

