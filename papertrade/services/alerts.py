"""Alert service - create, list, delete and manually trigger price alerts.

Manual triggering uses the same conditional update as the alert monitor
and keeps the record, so an alert is flagged exactly once whichever path
gets there first. Every mutation publishes ``alertsUpdated``.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from papertrade import telemetry
from papertrade.errors import NotFoundError, ValidationError
from papertrade.events import ALERTS_UPDATED, EventBus
from papertrade.models import Alert, AlertCondition
from papertrade.money import parse_money, to_money
from papertrade.services import ledger
from papertrade.services.trading import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass
class TriggerResult:
    """Outcome of a manual trigger."""

    alert: Alert
    triggered_now: bool

    @property
    def message(self) -> str:
        return "Alert triggered!" if self.triggered_now else "Alert already triggered."


def parse_condition(raw: str | AlertCondition | None) -> AlertCondition:
    if isinstance(raw, AlertCondition):
        return raw
    try:
        return AlertCondition((raw or "").strip().lower())
    except ValueError:
        raise ValidationError("Please choose a valid condition.", field="condition") from None


def parse_target_price(raw: str | Decimal | None) -> Decimal:
    """Parse a target price: a finite decimal greater than zero."""
    if isinstance(raw, Decimal):
        value = raw if raw.is_finite() else None
    else:
        value = parse_money(None if raw is None else str(raw))
    if value is None or value <= 0:
        raise ValidationError("Please enter a valid target price.", field="target_price")
    value = to_money(value)
    if value <= 0:
        # Rounds to zero cents
        raise ValidationError("Please enter a valid target price.", field="target_price")
    return value


async def create_alert(
    session: AsyncSession,
    events: EventBus,
    user_id: str,
    symbol: str,
    condition,
    target_price,
) -> Alert:
    """Validate input and store a new pending alert.

    Raises:
        ValidationError: Missing symbol, unknown condition or bad target
    """
    symbol = normalize_symbol(symbol)
    condition = parse_condition(condition)
    target = parse_target_price(target_price)

    alert = await ledger.add_alert(session, user_id, symbol, condition, target)
    await session.commit()

    events.publish(ALERTS_UPDATED)
    logger.info(
        "Alert created",
        extra={
            "alert_id": alert.id,
            "user_id": user_id,
            "symbol": symbol,
            "condition": condition.value,
            "target_price": float(target),
        },
    )
    return alert


async def list_symbol_alerts(session: AsyncSession, user_id: str, symbol: str) -> list[Alert]:
    """A user's alerts on one symbol, newest first."""
    return await ledger.list_alerts(session, user_id, symbol=normalize_symbol(symbol))


async def list_alerts(
    session: AsyncSession, user_id: str, status: str | None = None
) -> list[Alert]:
    """A user's alerts, optionally only ``"triggered"`` or ``"pending"`` ones."""
    if status in (None, "", "all"):
        triggered = None
    elif status == "triggered":
        triggered = True
    elif status == "pending":
        triggered = False
    else:
        raise ValidationError("Unknown alert filter.", field="status")
    return await ledger.list_alerts(session, user_id, triggered=triggered)


async def list_alerts_grouped(session: AsyncSession, user_id: str) -> dict[str, list[Alert]]:
    """A user's alerts keyed by symbol (sorted), newest first within each."""
    grouped: dict[str, list[Alert]] = defaultdict(list)
    for alert in await ledger.list_alerts(session, user_id):
        grouped[alert.symbol].append(alert)
    return dict(sorted(grouped.items()))


async def delete_alert(
    session: AsyncSession,
    events: EventBus,
    user_id: str,
    alert_id: str,
    symbol: str | None = None,
) -> None:
    """Delete one of the user's alerts, optionally requiring it be on ``symbol``.

    Raises:
        NotFoundError: No such alert for this user (and symbol)
    """
    removed = await ledger.delete_alert(session, alert_id, user_id, symbol=symbol)
    if not removed:
        await session.rollback()
        raise NotFoundError("Alert not found.", detail=f"Alert {alert_id} not found for {user_id}")
    await session.commit()

    events.publish(ALERTS_UPDATED)
    logger.info("Alert deleted", extra={"alert_id": alert_id, "user_id": user_id})


async def trigger_alert(
    session: AsyncSession,
    events: EventBus,
    user_id: str,
    alert_id: str,
) -> TriggerResult:
    """Mark one of the user's alerts triggered, keeping the record.

    Raises:
        NotFoundError: No such alert for this user
    """
    alert = await ledger.get_alert(session, alert_id, user_id)
    if alert is None:
        raise NotFoundError("Alert not found.", detail=f"Alert {alert_id} not found for {user_id}")

    triggered_now = await ledger.try_trigger_alert(session, alert_id, user_id)
    alert = await ledger.get_alert(session, alert_id, user_id)
    if alert is None:
        raise NotFoundError("Alert not found.", detail=f"Alert {alert_id} deleted while triggering")

    if triggered_now:
        events.publish(ALERTS_UPDATED)
        telemetry.record_alerts_triggered(alert.symbol, 1, source="manual")
        logger.info(
            "Alert triggered manually",
            extra={"alert_id": alert_id, "user_id": user_id, "symbol": alert.symbol},
        )
    return TriggerResult(alert=alert, triggered_now=triggered_now)
