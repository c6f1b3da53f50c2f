"""Payment intent store - durable storage for purchase attempts.

Lookup by provider reference (unique), latest pending per subject, and by expiry; the
PENDING -> APPROVED/EXPIRED transitions are compare-and-set updates.
Also holds amount-mismatch review cases.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from vip_gate.models.identity import PlanKind
from vip_gate.models.intent import IntentStatus, PaymentIntent, ReviewCase
from vip_gate.repositories.database import (
    PaymentIntentRow,
    ReviewCaseRow,
    get_database,
    transaction,
)
from vip_gate.utils.money import from_minor_units, to_minor_units


class DuplicateReferenceError(ValueError):
    """Raised when a provider reference or intent id is already recorded."""

    pass


def _to_intent(row: PaymentIntentRow) -> PaymentIntent:
    return PaymentIntent(
        intent_id=row.intent_id,
        subject_id=row.subject_id,
        plan_kind=PlanKind(row.plan_kind),
        amount=from_minor_units(row.amount_cents),
        provider_reference=row.provider_reference,
        status=IntentStatus(row.status),
        created_at_millis=row.created_at_millis,
        expires_at_millis=row.expires_at_millis,
        approved_at_millis=row.approved_at_millis,
    )


def _to_review_case(row: ReviewCaseRow) -> ReviewCase:
    return ReviewCase(
        provider_reference=row.provider_reference,
        subject_id=row.subject_id,
        expected_amount=from_minor_units(row.expected_cents),
        reported_amount=Decimal(row.reported_amount),
        created_at_millis=row.created_at_millis,
    )


class IntentStore:
    """Durable storage for PaymentIntent records."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_database().session_factory

    def add(self, intent: PaymentIntent) -> None:
        """Record a new intent.

        Raises:
            DuplicateReferenceError: If the provider reference or intent id exists
        """
        try:
            with transaction(self._session_factory) as session:
                session.add(
                    PaymentIntentRow(
                        intent_id=intent.intent_id,
                        subject_id=intent.subject_id,
                        plan_kind=intent.plan_kind.value,
                        amount_cents=to_minor_units(intent.amount),
                        provider_reference=intent.provider_reference,
                        status=intent.status.value,
                        created_at_millis=intent.created_at_millis,
                        expires_at_millis=intent.expires_at_millis,
                        approved_at_millis=intent.approved_at_millis,
                    )
                )
        except IntegrityError as e:
            raise DuplicateReferenceError(
                f"Intent with reference '{intent.provider_reference}' already exists"
            ) from e

    def find_by_reference(self, provider_reference: str) -> Optional[PaymentIntent]:
        """Find intent by provider reference (returns None if not found)."""
        with transaction(self._session_factory) as session:
            row = session.scalar(
                select(PaymentIntentRow).where(
                    PaymentIntentRow.provider_reference == provider_reference
                )
            )
            return _to_intent(row) if row else None

    def latest_pending_for(self, subject_id: str) -> Optional[PaymentIntent]:
        """Most recent PENDING intent of a subject."""
        with transaction(self._session_factory) as session:
            row = session.scalars(
                select(PaymentIntentRow)
                .where(PaymentIntentRow.subject_id == subject_id)
                .where(PaymentIntentRow.status == IntentStatus.PENDING.value)
                .order_by(PaymentIntentRow.created_at_millis.desc())
                .limit(1)
            ).first()
            return _to_intent(row) if row else None

    def transition_status(
        self,
        provider_reference: str,
        expected: IntentStatus,
        new_status: IntentStatus,
        at_millis: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> bool:
        """Move an intent from ``expected`` to ``new_status`` if it is still ``expected``.

        Args:
            provider_reference: Intent to transition
            expected: Status the intent must currently have
            new_status: Target status
            at_millis: Transition time, stored as approval time for APPROVED
            session: Transaction to join (defaults to a new one)

        Returns:
            True if this call performed the transition, False otherwise
        """
        values = {"status": new_status.value}
        if new_status == IntentStatus.APPROVED:
            values["approved_at_millis"] = at_millis
        with transaction(self._session_factory, session) as session:
            result = session.execute(
                update(PaymentIntentRow)
                .where(PaymentIntentRow.provider_reference == provider_reference)
                .where(PaymentIntentRow.status == expected.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def list_stale(self, now_millis: int) -> List[PaymentIntent]:
        """PENDING intents whose payment window closed at or before ``now_millis``."""
        with transaction(self._session_factory) as session:
            rows = session.scalars(
                select(PaymentIntentRow)
                .where(PaymentIntentRow.status == IntentStatus.PENDING.value)
                .where(PaymentIntentRow.expires_at_millis <= now_millis)
                .order_by(PaymentIntentRow.expires_at_millis.asc())
            ).all()
            return [_to_intent(r) for r in rows]

    def expire_if_stale(self, provider_reference: str, now_millis: int) -> bool:
        """Mark a PENDING intent EXPIRED if its window has closed."""
        with transaction(self._session_factory) as session:
            result = session.execute(
                update(PaymentIntentRow)
                .where(PaymentIntentRow.provider_reference == provider_reference)
                .where(PaymentIntentRow.status == IntentStatus.PENDING.value)
                .where(PaymentIntentRow.expires_at_millis <= now_millis)
                .values(status=IntentStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def purge_expired(self, provider_reference: str) -> bool:
        """Delete an EXPIRED intent. Never deletes PENDING or APPROVED ones."""
        with transaction(self._session_factory) as session:
            result = session.execute(
                delete(PaymentIntentRow)
                .where(PaymentIntentRow.provider_reference == provider_reference)
                .where(PaymentIntentRow.status == IntentStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def record_review_case(self, case: ReviewCase) -> bool:
        """Store an amount mismatch for manual review.

        Returns:
            False if a case for this provider reference is already on file
        """
        try:
            with transaction(self._session_factory) as session:
                session.add(
                    ReviewCaseRow(
                        provider_reference=case.provider_reference,
                        subject_id=case.subject_id,
                        expected_cents=to_minor_units(case.expected_amount),
                        reported_amount=str(case.reported_amount),
                        created_at_millis=case.created_at_millis,
                    )
                )
        except IntegrityError:
            return False
        return True

    def list_review_cases(self) -> List[ReviewCase]:
        with transaction(self._session_factory) as session:
            rows = session.scalars(
                select(ReviewCaseRow).order_by(ReviewCaseRow.created_at_millis.desc())
            ).all()
            return [_to_review_case(r) for r in rows]

    def clear(self) -> None:
        """Delete all intents and review cases (tests only)."""
        with transaction(self._session_factory) as session:
            session.execute(delete(PaymentIntentRow))
            session.execute(delete(ReviewCaseRow))

