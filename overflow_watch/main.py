"""overflow-watch — storm overflow discharge monitor.

This is the application entry point.  It wires the fetcher, adapter
registry, event store, tracker, threshold queue and publishers into a
MonitorService, and exposes its state through a small FastAPI app whose
lifespan starts and stops the service.

Run with ``overflow-watch`` or ``uvicorn overflow_watch.main:app``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from overflow_watch.adapters.registry import AdapterRegistry
from overflow_watch.adapters.storm_overflow_hub import StormOverflowHubAdapter
from overflow_watch.api.status import create_status_router
from overflow_watch.config import Settings, settings
from overflow_watch.fetch.arcgis import ArcGISClient
from overflow_watch.publish.base import CompositePublisher, CyclePublisher
from overflow_watch.publish.site import SiteCyclePublisher
from overflow_watch.publish.social import SocialPublisher, XClient
from overflow_watch.publish.summary import GeminiSummarizer
from overflow_watch.scheduler.publishing_cycle import PublishingCycle
from overflow_watch.scheduler.service import MonitorService
from overflow_watch.scheduler.threshold_queue import ThresholdQueue
from overflow_watch.store.event_store import JsonEventStore
from overflow_watch.store.publish_ledger import PublishLedger
from overflow_watch.store.site_history import load_site_history
from overflow_watch.tracker.event_tracker import EventTracker
from overflow_watch.tracker.poller import SourcePoller

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


# ── Wiring ───────────────────────────────────────────────────────────────────

def build_registry() -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(StormOverflowHubAdapter())
    return registry


def build_service(cfg: Settings, registry: AdapterRegistry) -> MonitorService:
    """Construct every component from settings.  Nothing is started here."""
    sources = cfg.sources
    store = JsonEventStore(cfg.store_path)
    queue = ThresholdQueue(
        min_duration_minutes=cfg.min_duration_minutes,
        retention=cfg.retention,
    )
    tracker = EventTracker(
        store,
        queue,
        sources=sources,
        max_start_age=timedelta(days=cfg.max_start_age_days),
        clock_skew_tolerance=timedelta(seconds=cfg.clock_skew_tolerance_seconds),
        recovery_window=timedelta(hours=cfg.recovery_window_hours),
        site_history=load_site_history(cfg.site_history_path),
    )
    fetcher = ArcGISClient(
        timeout=cfg.request_timeout_seconds,
        page_size=cfg.page_size,
        max_pages=cfg.max_pages,
    )
    poller = SourcePoller(fetcher, registry, tracker, sources)

    closers = [fetcher.aclose]
    publishers: list[CyclePublisher] = [
        SiteCyclePublisher(
            cfg.site_dir,
            summarizer=GeminiSummarizer(
                model=cfg.gemini_model,
                temperature=cfg.gemini_temperature,
                max_output_tokens=cfg.gemini_max_output_tokens,
            ),
        )
    ]
    if cfg.social_enabled:
        x_client = XClient(cfg.x_client_id, cfg.x_client_secret, cfg.x_refresh_token)
        publishers.append(SocialPublisher(x_client, site_base_url=cfg.site_base_url))
        closers.append(x_client.aclose)
    else:
        logger.warning("X credentials not configured; social posting disabled")

    cycle = PublishingCycle(
        queue,
        CompositePublisher(publishers),
        max_publishes_per_day=cfg.max_publishes_per_day,
        ledger=PublishLedger(cfg.publish_ledger_path),
    )
    return MonitorService(
        poller,
        tracker,
        queue,
        cycle,
        store,
        poll_interval_seconds=cfg.poll_interval_seconds,
        publish_interval_seconds=cfg.publish_interval_minutes * 60,
        publish_on_start=cfg.publish_on_start,
        closers=closers,
    )


# ── App ──────────────────────────────────────────────────────────────────────

def create_app(cfg: Settings = settings) -> FastAPI:
    registry = build_registry()
    service = build_service(cfg, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(
        title=cfg.app_name,
        description="Storm overflow discharge monitoring",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.include_router(create_status_router(service, registry))
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
