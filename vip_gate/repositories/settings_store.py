"""Settings store - the deployment's single Settings row and revenue counter."""

import json
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from vip_gate.logging_config import get_logger
from vip_gate.models.app_config import BootstrapSettings
from vip_gate.models.settings import MessageTemplates, Settings
from vip_gate.repositories.database import (
    SETTINGS_ROW_ID,
    SettingsRow,
    get_database,
    transaction,
)
from vip_gate.utils.money import from_minor_units, to_minor_units

logger = get_logger(__name__)


class SettingsNotFoundError(Exception):
    """Raised when settings have not been configured yet."""

    pass


def _cents_or_none(amount: Optional[Decimal]) -> Optional[int]:
    return to_minor_units(amount) if amount is not None else None


def _to_settings(row: SettingsRow) -> Settings:
    return Settings(
        group_id=row.group_id,
        recurring_price=(
            from_minor_units(row.recurring_price_cents)
            if row.recurring_price_cents is not None
            else None
        ),
        perpetual_price=(
            from_minor_units(row.perpetual_price_cents)
            if row.perpetual_price_cents is not None
            else None
        ),
        recurring_duration_days=row.recurring_duration_days,
        currency=row.currency,
        templates=MessageTemplates(**json.loads(row.templates_json or "{}")),
        revenue_total=from_minor_units(row.revenue_cents or 0),
    )


class SettingsStore:
    """Durable storage for the Settings singleton."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_database().session_factory

    def get(self) -> Optional[Settings]:
        """Current settings, or None if not configured."""
        with transaction(self._session_factory) as session:
            row = session.get(SettingsRow, SETTINGS_ROW_ID)
            return _to_settings(row) if row else None

    def require(self) -> Settings:
        """Current settings.

        Raises:
            SettingsNotFoundError: If not configured
        """
        settings = self.get()
        if settings is None:
            raise SettingsNotFoundError("Settings have not been configured")
        return settings

    def save(self, settings: Settings) -> Settings:
        """Create or replace the configurable fields. Revenue is never overwritten."""
        values = {
            "group_id": settings.group_id,
            "recurring_price_cents": _cents_or_none(settings.recurring_price),
            "perpetual_price_cents": _cents_or_none(settings.perpetual_price),
            "recurring_duration_days": settings.recurring_duration_days,
            "currency": settings.currency,
            "templates_json": settings.templates.model_dump_json(),
        }
        with transaction(self._session_factory) as session:
            result = session.execute(
                update(SettingsRow)
                .where(SettingsRow.id == SETTINGS_ROW_ID)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(SettingsRow(id=SETTINGS_ROW_ID, revenue_cents=0, **values))

        logger.info(
            "settings_saved",
            group_id=settings.group_id,
            recurring_price=str(settings.recurring_price),
            perpetual_price=str(settings.perpetual_price),
            recurring_duration_days=settings.recurring_duration_days,
        )
        return self.require()

    def seed_if_absent(self, bootstrap: BootstrapSettings) -> bool:
        """Insert settings from configuration when none exist yet.

        Returns:
            True if settings were created
        """
        if self.get() is not None:
            return False
        try:
            with transaction(self._session_factory) as session:
                session.add(
                    SettingsRow(
                        id=SETTINGS_ROW_ID,
                        group_id=bootstrap.group_id,
                        recurring_price_cents=_cents_or_none(bootstrap.recurring_price),
                        perpetual_price_cents=_cents_or_none(bootstrap.perpetual_price),
                        recurring_duration_days=bootstrap.recurring_duration_days,
                        currency=bootstrap.currency,
                        templates_json=bootstrap.templates.model_dump_json(),
                        revenue_cents=0,
                    )
                )
        except IntegrityError:
            return False
        logger.info("settings_seeded", group_id=bootstrap.group_id)
        return True

    def add_revenue(self, amount: Decimal, session: Optional[Session] = None) -> None:
        """Atomically add ``amount`` to the revenue counter.

        The increment is computed by the database, never read-modify-write here.

        Raises:
            SettingsNotFoundError: If settings do not exist
        """
        with transaction(self._session_factory, session) as session:
            result = session.execute(
                update(SettingsRow)
                .where(SettingsRow.id == SETTINGS_ROW_ID)
                .values(revenue_cents=SettingsRow.revenue_cents + to_minor_units(amount))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise SettingsNotFoundError("Cannot record revenue: settings missing")

    def revenue_total(self) -> Decimal:
        with transaction(self._session_factory) as session:
            cents = session.scalar(
                select(SettingsRow.revenue_cents).where(SettingsRow.id == SETTINGS_ROW_ID)
            )
            return from_minor_units(cents or 0)

    def clear(self) -> None:
        """Delete settings (tests only)."""
        with transaction(self._session_factory) as session:
            row = session.get(SettingsRow, SETTINGS_ROW_ID)
            if row is not None:
                session.delete(row)

