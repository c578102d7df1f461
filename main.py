"""
FinBoard entry point: starts the FastAPI backend.
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from finboard import api
from finboard.config_loader import AppConfig, load_config
from finboard.fetch_cache import FetchCache
from finboard.scheduler import PollingScheduler, WidgetPoller
from finboard.storage import DashboardStorage
from finboard.widget_data import WidgetDataService
from finboard.widget_store import WidgetStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_cache(cache: FetchCache):
    cache.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start polling on startup, release resources on shutdown."""
    scheduler: PollingScheduler = app.state.scheduler
    poller: WidgetPoller = app.state.poller
    cache: FetchCache = app.state.cache
    config: AppConfig = app.state.config

    poller.start_all()
    scheduler.schedule(
        "__cache_sweep__",
        config.cache.sweep_interval_seconds,
        lambda: sweep_cache(cache),
        run_now=False,
    )
    scheduler.start()
    logger.info(f"Polling {len(app.state.store.list())} widgets")

    yield

    logger.info("Shutting down...")
    await scheduler.stop()
    await cache.aclose()
    app.state.storage.close()


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the FastAPI application and its components."""
    config = config or load_config()

    app = FastAPI(
        title="FinBoard API",
        description="Widget configuration and market data for the finance dashboard",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Core components ───────────────────────────────
    storage = DashboardStorage(config.storage.path, record_name=config.storage.record_name)
    store = WidgetStore(storage)
    store.seed_api_keys(config.resolved_api_keys())

    cache = FetchCache(
        max_entries=config.cache.max_entries,
        default_duration_ms=config.cache.default_duration_seconds * 1000,
        max_age=config.cache.max_age_seconds,
        timeout=config.cache.request_timeout,
    )
    data_service = WidgetDataService(store, cache)
    scheduler = PollingScheduler()
    poller = WidgetPoller(scheduler, store, data_service)

    api.init_api(store=store, data_service=data_service, cache=cache)
    app.include_router(api.router)

    app.state.config = config
    app.state.storage = storage
    app.state.store = store
    app.state.cache = cache
    app.state.scheduler = scheduler
    app.state.poller = poller

    return app


def main():
    config = load_config()
    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.server.port

    logger.info(f"Starting FinBoard backend (port={port})...")

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
