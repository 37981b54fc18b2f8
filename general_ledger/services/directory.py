"""
Collaborators the engine consumes through narrow interfaces.

The chart of accounts, the fiscal calendar, identity facts,
subledger lookups and notification delivery are owned by other
parts of the platform. Each is described by a Protocol and
backed here by a default implementation (SQL over the local
tables, or in-memory for identity) so the engine runs on its own.
"""

import json
from datetime import date
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from general_ledger.config import get_settings
from general_ledger.logging_config import get_logger
from general_ledger.models.base import utcnow
from general_ledger.models.enums import (
    OpenItemStatus,
    PeriodStatus,
    SubledgerType,
)
from general_ledger.models.financial_period import FinancialPeriod
from general_ledger.models.fx import OpenItem
from general_ledger.models.ledger_account import LedgerAccount

logger = get_logger("services.directory")


# --- Account directory ---

class AccountDirectory:
    """Resolves chart-of-accounts references for one session."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_account(self, tenant_id: str, id_or_code) -> LedgerAccount | None:
        if id_or_code is None:
            return None
        query = select(LedgerAccount).where(LedgerAccount.tenant_id == tenant_id)
        if isinstance(id_or_code, int):
            query = query.where(LedgerAccount.id == id_or_code)
        else:
            query = query.where(LedgerAccount.code == str(id_or_code))
        return self.db.execute(query).scalar_one_or_none()


# --- Period service ---

class PeriodService:
    """Fiscal calendar lookups. Posting honors is_open_for_posting()."""

    def __init__(self, db: Session):
        self.db = db

    def get_period(self, tenant_id: str, period_id: int) -> FinancialPeriod | None:
        period = self.db.get(FinancialPeriod, period_id)
        if period is None or period.tenant_id != tenant_id:
            return None
        return period

    def is_open_for_posting(self, tenant_id: str, period_id: int, on: date) -> bool:
        period = self.get_period(tenant_id, period_id)
        return (
            period is not None
            and period.status == PeriodStatus.OPEN
            and period.contains(on)
        )

    def find_period(self, tenant_id: str, on: date) -> FinancialPeriod | None:
        """The period covering a date, whatever its status."""
        return self.db.execute(
            select(FinancialPeriod).where(
                FinancialPeriod.tenant_id == tenant_id,
                FinancialPeriod.start_date <= on,
                FinancialPeriod.end_date >= on,
            ).order_by(FinancialPeriod.start_date.desc())
        ).scalars().first()

    def find_open_period(self, tenant_id: str, on: date) -> FinancialPeriod | None:
        return self.db.execute(
            select(FinancialPeriod).where(
                FinancialPeriod.tenant_id == tenant_id,
                FinancialPeriod.status == PeriodStatus.OPEN,
                FinancialPeriod.start_date <= on,
                FinancialPeriod.end_date >= on,
            ).order_by(FinancialPeriod.start_date.desc())
        ).scalars().first()

    def create_period(
        self,
        tenant_id: str,
        name: str,
        fiscal_year: int,
        fiscal_period: int,
        start_date: date,
        end_date: date,
        status: PeriodStatus = PeriodStatus.OPEN,
        sub_scope_id: str | None = None,
    ) -> FinancialPeriod:
        if end_date < start_date:
            raise ValueError("Period end date must not precede its start date")
        period = FinancialPeriod(
            tenant_id=tenant_id,
            sub_scope_id=sub_scope_id,
            name=name,
            fiscal_year=fiscal_year,
            fiscal_period=fiscal_period,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
        self.db.add(period)
        self.db.flush()
        return period

    def close_period(
        self, period: FinancialPeriod, closed_by: str
    ) -> FinancialPeriod:
        period.status = PeriodStatus.CLOSED
        period.closed_at = utcnow()
        period.closed_by = closed_by
        self.db.flush()
        return period


# --- Identity resolver ---

class IdentityResolver(Protocol):
    def roles_of(self, user_id: str) -> set[str]: ...

    def members_of_role(self, role: str) -> set[str]: ...

    def manager_of(self, user_id: str) -> str | None: ...


class StaticIdentityResolver:
    """
    Identity facts from a fixed mapping.

    ``roles`` maps user id -> role names, ``managers`` maps
    user id -> manager id.
    """

    def __init__(
        self,
        roles: dict[str, list[str]] | None = None,
        managers: dict[str, str] | None = None,
    ):
        self._roles = {user: set(r) for user, r in (roles or {}).items()}
        self._managers = dict(managers or {})

    @classmethod
    def from_file(cls, path: str) -> "StaticIdentityResolver":
        """Load ``{"roles": {...}, "managers": {...}}`` from a JSON file."""
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        return cls(roles=data.get("roles"), managers=data.get("managers"))

    def roles_of(self, user_id: str) -> set[str]:
        return set(self._roles.get(user_id, set()))

    def members_of_role(self, role: str) -> set[str]:
        return {user for user, roles in self._roles.items() if role in roles}

    def manager_of(self, user_id: str) -> str | None:
        return self._managers.get(user_id)


def get_identity_resolver() -> IdentityResolver:
    path = get_settings().IDENTITY_DIRECTORY_PATH
    if path:
        return StaticIdentityResolver.from_file(path)
    return StaticIdentityResolver()


# --- Subledger directory ---

class SubledgerDirectory:
    """
    Checks that a subledger reference points at something real.

    Receivable and payable references must match an open item's
    document number; other subledgers accept any non-empty
    reference.
    """

    _OPEN_ITEM_TYPES = frozenset({
        SubledgerType.ACCOUNTS_RECEIVABLE,
        SubledgerType.ACCOUNTS_PAYABLE,
    })

    def __init__(self, db: Session):
        self.db = db

    def resolve(
        self, tenant_id: str, subledger_type: SubledgerType, reference: str | None
    ) -> bool:
        if not reference or not reference.strip():
            return False
        if subledger_type not in self._OPEN_ITEM_TYPES:
            return True
        found = self.db.execute(
            select(OpenItem.id).where(
                OpenItem.tenant_id == tenant_id,
                OpenItem.document_number == reference.strip(),
                OpenItem.status != OpenItemStatus.CLEARED,
            )
        ).first()
        return found is not None


# --- Notifications ---

class NotificationChannel(Protocol):
    def send(self, event: str, payload: dict) -> None: ...


class LoggingNotificationChannel:
    """Default channel: writes each notification to the log."""

    def send(self, event: str, payload: dict) -> None:
        logger.info("notification", extra={"event": event, **payload})


class NotificationOutbox:
    """
    Notifications queued during a unit of work.

    The caller flushes the outbox only after commit, so a
    rolled-back transition never notifies anyone. Delivery
    failures are logged and dropped.
    """

    def __init__(self):
        self._pending: list[tuple[str, dict]] = []

    def add(self, event: str, payload: dict) -> None:
        self._pending.append((event, payload))

    @property
    def pending(self) -> list[tuple[str, dict]]:
        return list(self._pending)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self, channel: NotificationChannel) -> int:
        """Deliver everything queued; returns the number delivered."""
        pending, self._pending = self._pending, []
        delivered = 0
        for event, payload in pending:
            try:
                channel.send(event, payload)
                delivered += 1
            except Exception:
                logger.warning(
                    "notification_failed",
                    exc_info=True,
                    extra={"event": event},
                )
        return delivered


_default_channel: NotificationChannel = LoggingNotificationChannel()


def get_notification_channel() -> NotificationChannel:
    return _default_channel
