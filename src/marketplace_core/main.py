"""Application bootstrap.

Wires settings, logging, metrics, storage, the event bus, the outbox
worker and the feature flag service.  CLI commands in ``cli.py`` call
the coroutines defined here.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .core.clock import IClock, WallClock
from .core.config import Settings, load_settings
from .domain.events import ALL_EVENT_TYPES, DomainEvent
from .infrastructure.event_bus import EventBus, EventHandler, OutboxBatchResult
from .infrastructure.feature_flags import FeatureFlagService, FlagContext, IFeatureFlagStore
from .infrastructure.outbox import IOutboxStore, OutboxRecord
from .infrastructure.outbox_worker import OutboxWorker
from .observability.error_sink import PrometheusErrorSink
from .observability.logger import new_correlation_id, setup_logging
from .observability.metrics import start_metrics_server

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    bus: EventBus
    flags: FeatureFlagService
    worker: OutboxWorker | None = None


async def audit_log_handler(event: DomainEvent) -> None:
    """Default subscriber: one log line per delivered event."""
    logger.info(
        "Delivered %s aggregate=%s event_id=%s",
        event.type,
        event.aggregate_id,
        event.event_id,
    )


def default_subscriptions() -> dict[str, list[EventHandler]]:
    return {event_type: [audit_log_handler] for event_type in sorted(ALL_EVENT_TYPES)}


def build_runtime(
    settings: Settings,
    *,
    outbox: IOutboxStore | None = None,
    flag_store: IFeatureFlagStore | None = None,
    subscriptions: Mapping[str, EventHandler | Iterable[EventHandler]] | None = None,
    clock: IClock | None = None,
) -> Runtime:
    """Assemble the bus, flag service and (with an outbox) the worker."""
    clock = clock or WallClock()
    bus = EventBus(
        outbox=outbox if settings.outbox.enabled else None,
        error_sink=PrometheusErrorSink(),
        clock=clock,
    )
    bus.subscribe_all(subscriptions if subscriptions is not None else default_subscriptions())

    flags = FeatureFlagService(
        flag_store,
        cache_ttl_seconds=settings.feature_flags.cache_ttl_seconds,
        env_prefix=settings.feature_flags.env_prefix,
        clock=clock,
    )

    worker = None
    if bus.outbox is not None:
        worker = OutboxWorker(
            bus,
            poll_interval=settings.outbox.poll_interval_seconds,
            batch_size=settings.outbox.batch_size,
            clock=clock,
        )
    return Runtime(settings=settings, bus=bus, flags=flags, worker=worker)


def _bootstrap(config_path: str | None, overrides: dict[str, Any] | None) -> Settings:
    settings = load_settings(config_path=config_path, overrides=overrides)
    setup_logging(settings.observability.log_level, settings.observability.log_format)
    new_correlation_id()
    logger.debug("Settings: %s", settings.safe_dump())
    return settings


async def _postgres_runtime(settings: Settings) -> Runtime:
    from .storage.postgres.connection import init_engine
    from .storage.postgres.repos import PostgresFeatureFlagStore, PostgresOutboxStore

    await init_engine(settings.database)
    return build_runtime(
        settings,
        outbox=PostgresOutboxStore(),
        flag_store=PostgresFeatureFlagStore(),
    )


async def _dispose() -> None:
    from .storage.postgres.connection import dispose

    await dispose()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def process_outbox_once(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> OutboxBatchResult:
    """Drain pending outbox rows once and exit."""
    settings = _bootstrap(config_path, overrides)
    runtime = await _postgres_runtime(settings)
    try:
        if runtime.worker is None:
            logger.warning("Outbox disabled in settings; nothing to process")
            return OutboxBatchResult()
        return await runtime.worker.drain()
    finally:
        await runtime.bus.stop()
        await _dispose()


async def run_worker(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Run the outbox worker until SIGINT/SIGTERM."""
    settings = _bootstrap(config_path, overrides)
    if settings.observability.metrics_enabled:
        start_metrics_server(settings.observability.metrics_port, settings.environment)

    runtime = await _postgres_runtime(settings)
    if runtime.worker is None:
        logger.warning("Outbox disabled in settings; worker not started")
        await _dispose()
        return

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await runtime.bus.start()
    await runtime.worker.start()
    try:
        await stop_event.wait()
    finally:
        await runtime.worker.stop()
        await runtime.bus.stop()
        await _dispose()


async def list_failed_records(
    limit: int = 50,
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> list[OutboxRecord]:
    settings = _bootstrap(config_path, overrides)
    runtime = await _postgres_runtime(settings)
    try:
        if runtime.bus.outbox is None:
            return []
        return await runtime.bus.outbox.fetch_failed(limit)
    finally:
        await _dispose()


async def check_flag(
    name: str,
    context: FlagContext,
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> bool:
    settings = _bootstrap(config_path, overrides)
    runtime = await _postgres_runtime(settings)
    try:
        return await runtime.flags.is_enabled(name, context)
    finally:
        await _dispose()
