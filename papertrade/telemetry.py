"""OpenTelemetry metrics and logs for the paper trading service."""

import logging
import os
from decimal import Decimal

from opentelemetry import metrics
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from papertrade._version import VERSION


# Module-level state
_initialized = False
_meter = None
_log_handler = None

# Counters (cumulative)
_trades_total = None
_trade_value_total = None
_trade_rejections_total = None
_alerts_triggered_total = None
_monitor_ticks_total = None
_monitor_tick_errors_total = None
_quote_errors_total = None
_relay_connections_total = None


def setup_telemetry() -> bool:
    """Initialize OpenTelemetry metrics and log export.

    Returns True if telemetry was initialized, False if disabled.
    """
    global _initialized, _meter, _log_handler
    global _trades_total, _trade_value_total, _trade_rejections_total
    global _alerts_triggered_total, _monitor_ticks_total, _monitor_tick_errors_total
    global _quote_errors_total, _relay_connections_total

    if _initialized:
        return True

    if os.getenv("OTLP_ENABLED", "true").lower() == "false":
        return False

    otlp_endpoint = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/metrics")
    export_interval = int(os.getenv("OTLP_EXPORT_INTERVAL", "5000"))

    resource = Resource.create({
        "service.name": "papertrade",
        "service.version": VERSION,
    })

    exporter = OTLPMetricExporter(endpoint=otlp_endpoint)
    reader = PeriodicExportingMetricReader(
        exporter,
        export_interval_millis=export_interval,
    )
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter("papertrade", VERSION)

    _trades_total = _meter.create_counter(
        "papertrade_trades_total",
        description="Total number of executed paper trades",
        unit="1",
    )
    _trade_value_total = _meter.create_counter(
        "papertrade_trade_value_total",
        description="Total cash value of executed trades",
        unit="currency",
    )
    _trade_rejections_total = _meter.create_counter(
        "papertrade_trade_rejections_total",
        description="Trades rejected by validation or business rules",
        unit="1",
    )
    _alerts_triggered_total = _meter.create_counter(
        "papertrade_alerts_triggered_total",
        description="Price alerts transitioned to triggered",
        unit="1",
    )
    _monitor_ticks_total = _meter.create_counter(
        "papertrade_monitor_ticks_total",
        description="Alert monitor ticks completed",
        unit="1",
    )
    _monitor_tick_errors_total = _meter.create_counter(
        "papertrade_monitor_tick_errors_total",
        description="Alert monitor ticks that failed",
        unit="1",
    )
    _quote_errors_total = _meter.create_counter(
        "papertrade_quote_errors_total",
        description="Failed or unusable quote lookups",
        unit="1",
    )
    _relay_connections_total = _meter.create_counter(
        "papertrade_relay_connections_total",
        description="Realtime trade relay connections opened",
        unit="1",
    )

    # === LOGS ===
    logs_endpoint = otlp_endpoint.replace("/v1/metrics", "/v1/logs")
    log_exporter = OTLPLogExporter(endpoint=logs_endpoint)
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(log_exporter))
    set_logger_provider(logger_provider)

    _log_handler = LoggingHandler(
        level=logging.INFO,
        logger_provider=logger_provider,
    )

    _initialized = True
    return True


def get_log_handler() -> LoggingHandler | None:
    """Get the OTLP logging handler to attach to Python loggers."""
    return _log_handler


def is_enabled() -> bool:
    """Check if telemetry is initialized and enabled."""
    return _initialized


# --- Counter update functions ---

def record_trade(symbol: str, side: str, quantity: int, price: Decimal) -> None:
    """Record an executed trade."""
    if not _initialized:
        return

    attributes = {"symbol": symbol, "side": side}
    _trades_total.add(1, attributes)
    _trade_value_total.add(float(price * quantity), attributes)


def record_trade_rejected(side: str, reason: str) -> None:
    """Record a trade rejected before settlement."""
    if not _initialized:
        return

    _trade_rejections_total.add(1, {"side": side, "reason": reason})


def record_alerts_triggered(symbol: str, count: int, source: str = "monitor") -> None:
    """Record alerts flipped to triggered."""
    if not _initialized or count <= 0:
        return

    _alerts_triggered_total.add(count, {"symbol": symbol, "source": source})


def record_monitor_tick(ok: bool) -> None:
    """Record one alert monitor tick."""
    if not _initialized:
        return

    if ok:
        _monitor_ticks_total.add(1)
    else:
        _monitor_tick_errors_total.add(1)


def record_quote_error(symbol: str) -> None:
    """Record a failed or unusable quote."""
    if not _initialized:
        return

    _quote_errors_total.add(1, {"symbol": symbol})


def record_relay_connection(symbol_count: int) -> None:
    """Record a new realtime relay connection."""
    if not _initialized:
        return

    _relay_connections_total.add(1, {"symbols": str(symbol_count)})
