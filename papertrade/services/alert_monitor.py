"""Alert monitor - background poller that fires price alerts.

Each tick loads every pending alert, groups them by symbol and fetches
one quote per symbol, however many alerts or users watch it. Alerts
whose condition holds are flipped with the ledger's conditional update,
so a tick racing a manual trigger (or another process) can only flag an
alert once. One ``alertsUpdated`` event is published per tick that
triggered anything.

Ticks never overlap: the loop runs a tick to completion, then sleeps for
the interval. A failing tick is logged and the loop carries on.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from papertrade import telemetry
from papertrade.errors import ConfigError, UpstreamError
from papertrade.events import ALERTS_UPDATED, EventBus
from papertrade.models import Alert
from papertrade.services import ledger

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """What one monitor tick did."""

    pending: int = 0
    symbols: int = 0
    quotes_fetched: int = 0
    skipped: list[str] = field(default_factory=list)
    triggered: list[str] = field(default_factory=list)  # alert ids

    @property
    def triggered_count(self) -> int:
        return len(self.triggered)


def group_by_symbol(alerts: list[Alert]) -> dict[str, list[Alert]]:
    grouped: dict[str, list[Alert]] = defaultdict(list)
    for alert in alerts:
        grouped[alert.symbol.upper()].append(alert)
    return dict(grouped)


class AlertMonitor:
    """Runs alert ticks on a fixed interval until stopped."""

    def __init__(
        self,
        session_factory,
        quotes,
        events: EventBus,
        interval: float = 5.0,
    ):
        """Initialize the monitor.

        Args:
            session_factory: Callable returning an AsyncSession context manager
            quotes: Quote gateway (anything with ``async quote(symbol)``)
            events: Bus that receives ``alertsUpdated``
            interval: Seconds to sleep between ticks
        """
        self.session_factory = session_factory
        self.quotes = quotes
        self.events = events
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the polling loop. Returns False if it is already running."""
        if self.running:
            logger.warning("Alert monitor is already running")
            return False

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(self._stop_event))
        logger.info("Alert monitor started", extra={"interval": self.interval})
        return True

    async def stop(self, timeout: float = 10.0) -> bool:
        """Stop the loop, letting the current tick finish for up to ``timeout`` seconds."""
        if self._task is None:
            return False

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Alert monitor did not stop in time; cancelled")
        except asyncio.CancelledError:
            pass

        self._task = None
        self._stop_event = None
        logger.info("Alert monitor stopped")
        return True

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_tick()
                telemetry.record_monitor_tick(ok=True)
            except ConfigError as e:
                logger.warning("Alert monitor tick skipped: %s", e)
                telemetry.record_monitor_tick(ok=False)
            except Exception:
                logger.exception("Alert monitor tick failed")
                telemetry.record_monitor_tick(ok=False)

            # Wait for next tick
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                pass

    async def run_tick(self) -> TickResult:
        """Check every pending alert once.

        Returns:
            TickResult with the ids of alerts this tick flipped
        """
        result = TickResult()

        async with self.session_factory() as session:
            pending = await ledger.list_pending_alerts(session)
            result.pending = len(pending)
            if not pending:
                return result

            by_symbol = group_by_symbol(pending)
            result.symbols = len(by_symbol)

            for symbol, group in by_symbol.items():
                price = await self._fetch_price(symbol, result)
                if price is None:
                    result.skipped.append(symbol)
                    continue

                fired = 0
                for alert in group:
                    if not alert.is_hit(price):
                        continue
                    if await ledger.try_trigger_alert(session, alert.id):
                        result.triggered.append(alert.id)
                        fired += 1
                        logger.info(
                            "Alert triggered",
                            extra={
                                "alert_id": alert.id,
                                "user_id": alert.user_id,
                                "symbol": symbol,
                                "condition": alert.condition.value,
                                "target_price": float(alert.target_price),
                                "price": float(price),
                            },
                        )
                telemetry.record_alerts_triggered(symbol, fired)

        if result.triggered:
            self.events.publish(ALERTS_UPDATED)
        return result

    async def _fetch_price(self, symbol: str, result: TickResult) -> Decimal | None:
        """One quote for a symbol group, or None to skip the group this tick."""
        result.quotes_fetched += 1
        try:
            quote = await self.quotes.quote(symbol)
        except ConfigError:
            # Not retryable this tick for any symbol
            raise
        except UpstreamError as e:
            telemetry.record_quote_error(symbol)
            logger.warning("Quote failed; skipping symbol this tick", extra={"symbol": symbol, "error": str(e)})
            return None

        if not quote.is_usable:
            telemetry.record_quote_error(symbol)
            logger.warning(
                "Unusable price; skipping symbol this tick",
                extra={"symbol": symbol, "price": quote.current},
            )
            return None

        # Exact comparison against the target, no rounding
        return Decimal(str(quote.current))
