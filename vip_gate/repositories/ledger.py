"""Ledger - the three record stores behind one database, plus settlement.

Settlement is the one multi-record write: the intent's PENDING -> APPROVED
compare-and-set, the revenue increment and the identity grant commit together
or not at all, so a retried notification never finds an approved intent whose
grant was lost.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import sessionmaker

from vip_gate.models.identity import PlanKind
from vip_gate.models.intent import IntentStatus
from vip_gate.repositories.database import get_database, transaction
from vip_gate.repositories.identity_store import GrantResult, IdentityStore
from vip_gate.repositories.intent_store import IntentStore
from vip_gate.repositories.settings_store import SettingsStore


@dataclass
class Settlement:
    """Result of settling an approved payment."""

    won: bool  # False if another reconciliation already approved the intent
    grant: Optional[GrantResult] = None


class Ledger:
    """Durable storage for identities, payment intents and settings."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """Initialize the ledger.

        Args:
            session_factory: SQLAlchemy session factory (uses global database if not provided)
        """
        self._session_factory = session_factory or get_database().session_factory
        self.identities = IdentityStore(self._session_factory)
        self.intents = IntentStore(self._session_factory)
        self.settings = SettingsStore(self._session_factory)

    def settle_approval(
        self,
        provider_reference: str,
        subject_id: str,
        plan_kind: PlanKind,
        amount: Decimal,
        approved_at_millis: int,
        expires_at_millis: Optional[int],
    ) -> Settlement:
        """Approve a pending intent, book its revenue and grant access, atomically.

        Args:
            provider_reference: Intent to approve
            subject_id: Intent owner (identity must exist)
            plan_kind: Plan to grant
            amount: Amount to add to revenue
            approved_at_millis: Approval time
            expires_at_millis: Recurring grant expiry (None for perpetual)

        Returns:
            Settlement with won=False if the intent was no longer PENDING
        """
        with transaction(self._session_factory) as session:
            won = self.intents.transition_status(
                provider_reference,
                expected=IntentStatus.PENDING,
                new_status=IntentStatus.APPROVED,
                at_millis=approved_at_millis,
                session=session,
            )
            if not won:
                return Settlement(won=False)

            self.settings.add_revenue(amount, session=session)
            grant = self.identities.apply_grant(
                subject_id,
                plan_kind,
                expires_at_millis,
                session=session,
            )
            return Settlement(won=True, grant=grant)


# Global ledger instance
_ledger_instance: Optional[Ledger] = None


def get_ledger() -> Ledger:
    """Get global ledger instance (singleton)."""
    global _ledger_instance
    if _ledger_instance is None:
        _ledger_instance = Ledger()
    return _ledger_instance


def reset_ledger() -> None:
    """Drop the global ledger instance (tests)."""
    global _ledger_instance
    _ledger_instance = None
