"""Portal Catalog Sync API: FastAPI entry point.

Hosts the sync provider in-process: the lifespan wires config, the
in-memory catalog and the asyncio scheduler, and the routes expose the
current catalog and sync status.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request

from core.catalog.connection import InMemoryCatalogConnection
from core.config import PortalSyncConfig
from core.observability.logging_setup import setup_logging
from core.scheduling.task_scheduler import AsyncioTaskScheduler
from core.sync.orchestrator import PortalEntityProvider

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start token requests and the sync schedule; tear both down on exit."""
    setup_logging()
    config = PortalSyncConfig.from_env()
    catalog = InMemoryCatalogConnection()
    scheduler = AsyncioTaskScheduler(initial_delay_seconds=1.0)
    provider = PortalEntityProvider(config)
    await provider.connect(catalog)
    await provider.start(scheduler)

    app.state.config = config
    app.state.catalog = catalog
    app.state.scheduler = scheduler
    app.state.provider = provider
    logger.info("Portal catalog sync started for %s", config.portal_server_url)
    yield
    provider.stop()
    await scheduler.shutdown()
    logger.info("Portal catalog sync shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Portal Catalog Sync",
    description="Synchronizes an API portal server into the service catalog",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Catalog & sync
# ---------------------------------------------------------------------------

@app.get("/api/catalog/entities")
async def list_entities(request: Request, kind: str | None = None):
    catalog: InMemoryCatalogConnection = request.app.state.catalog
    entities = catalog.entities()
    if kind:
        entities = [e for e in entities if e.get("kind") == kind]
    return {"count": len(entities), "entities": entities}


@app.get("/api/sync/status")
async def sync_status(request: Request):
    provider: PortalEntityProvider = request.app.state.provider
    credential = provider.token_manager.credential
    return {
        "provider": provider.provider_name,
        "sync": provider.status.to_dict(),
        "token": credential.to_dict() if credential else None,
        "portal": provider.normalizer.client.health.to_dict(),
    }


@app.post("/api/sync/run")
async def trigger_sync(request: Request):
    provider: PortalEntityProvider = request.app.state.provider
    if provider.cycle_in_progress:
        raise HTTPException(status_code=409, detail="A sync cycle is already running")
    try:
        await provider.run()
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"Sync failed: {exc}") from exc
    return provider.status.to_dict()


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root(request: Request):
    config: PortalSyncConfig = request.app.state.config
    return {
        "name": "Portal Catalog Sync",
        "version": VERSION,
        "docs": "/docs",
        "portal_server_url": config.portal_server_url,
    }
