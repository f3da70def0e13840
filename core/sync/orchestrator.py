"""
Portal sync orchestrator.

PortalEntityProvider drives one sync cycle at a time:
  token check → discovery + normalization → entity build → full mutation

A failing portal never blocks the mutation: the organizational entities
are always published, with whatever API entities could be built. Only a
failed submission escapes to the scheduler.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
import asyncio
import logging

import httpx

from core.catalog.connection import CatalogConnection
from core.catalog.entity_builder import EntityMutationBuilder
from core.config import PortalSyncConfig
from core.integrations.normalizer import ApiVersionRecord, DialectNormalizer
from core.integrations.oauth_manager import ClientCredentialsConfig, TokenLifecycleManager
from core.integrations.portal_client import PortalRequestError
from core.observability.logging_setup import enable_debug_logging
from core.scheduling.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

EntityTransformation = Callable[[dict[str, Any], ApiVersionRecord], Awaitable[dict[str, Any]]]


@dataclass
class SyncStatus:
    """Outcome of the most recent cycle."""
    runs: int = 0
    skipped_runs: int = 0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_api_count: int = 0
    last_error: str | None = None
    dialect: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "skipped_runs": self.skipped_runs,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_api_count": self.last_api_count,
            "last_error": self.last_error,
            "dialect": self.dialect,
        }


class PortalEntityProvider:
    """Provides API entities from an API portal server."""

    TASK_ID = "run_portal_catalog_refresh"

    def __init__(
        self,
        config: PortalSyncConfig,
        token_manager: Optional[TokenLifecycleManager] = None,
        normalizer: Optional[DialectNormalizer] = None,
        builder: Optional[EntityMutationBuilder] = None,
        entity_transformation: Optional[EntityTransformation] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        if config.debug_logging:
            enable_debug_logging()
        self.token_manager = token_manager or TokenLifecycleManager(
            ClientCredentialsConfig(
                token_url=config.token_endpoint,
                client_id=config.client_id,
                client_secret=config.client_secret,
                timeout=config.http_timeout_seconds,
            ),
            transport=transport,
        )
        self.normalizer = normalizer or DialectNormalizer(
            config.portal_server_url,
            timeout=config.http_timeout_seconds,
            transport=transport,
            max_concurrency=config.max_concurrency,
        )
        self.builder = builder or EntityMutationBuilder(
            location_key=config.location_key,
            portal_server_url=config.portal_server_url,
            group_name=config.group_name,
            service_account_name=config.service_account_name,
            system_name=config.system_name,
        )
        self.entity_transformation = entity_transformation
        self.status = SyncStatus()
        self._connection: CatalogConnection | None = None
        # Serializes cycles so an older batch can never land after a newer one.
        self._cycle_lock = asyncio.Lock()
        logger.info("Initializing %s", self.provider_name)

    @property
    def provider_name(self) -> str:
        return self.config.provider_name

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    async def connect(self, connection: CatalogConnection) -> None:
        self._connection = connection

    # --- Lifecycle ---

    async def start(self, scheduler: TaskScheduler) -> None:
        """Begin token requests and register the sync cycle with ``scheduler``."""
        self.token_manager.start()
        await scheduler.schedule_task(
            self.TASK_ID,
            self.run,
            frequency=self.config.sync_frequency,
            timeout=self.config.sync_timeout,
        )

    def stop(self) -> None:
        self.token_manager.stop()

    # --- Cycle ---

    async def run(self) -> None:
        """Run one sync cycle and submit a full mutation.

        Cycles never overlap: a run started while another is in flight
        waits for it to finish first.
        """
        if self._connection is None:
            raise RuntimeError("Not initialized")

        async with self._cycle_lock:
            await self._run_cycle(self._connection)

    async def _run_cycle(self, connection: CatalogConnection) -> None:
        self.status.runs += 1
        self.status.last_started_at = datetime.utcnow()

        credential = self.token_manager.ensure_fresh()
        if credential is None:
            logger.warning("No access token available; skipping this sync cycle")
            self.token_manager.request_renewal()
            self.status.skipped_runs += 1
            return

        records: list[ApiVersionRecord] = []
        error: str | None = None
        try:
            records = await self.normalizer.fetch_and_normalize(credential.auth_header)
            logger.debug("Normalized %d API versions: %s", len(records), [r.id for r in records])
        except Exception as exc:
            url = getattr(exc, "url", None) or self.normalizer.discovery_endpoint
            logger.error(
                "Could not get APIs from the portal server or transform them into entities (%s): %s",
                url, exc, exc_info=True,
            )
            error = str(exc)
            records = []
            if isinstance(exc, PortalRequestError) and exc.status_code in (401, 403):
                self.token_manager.invalidate()

        self.builder.apis_endpoint = self.normalizer.discovery_endpoint
        api_entities = [await self._build_entity(record) for record in records]
        batch = self.builder.build_from_entities(api_entities)
        logger.debug("Submitting %d entities", len(batch.entities))

        await connection.apply_mutation(batch)

        self.status.last_finished_at = datetime.utcnow()
        self.status.last_api_count = len(api_entities)
        self.status.last_error = error
        self.status.dialect = self.normalizer.dialect.value

    async def _build_entity(self, record: ApiVersionRecord) -> dict[str, Any]:
        entity = self.builder.build_api_entity(record)
        if self.entity_transformation is None:
            return entity
        try:
            return await self.entity_transformation(entity, record)
        except Exception as exc:
            logger.warning("Entity transformation failed for API %s; keeping it untransformed: %s", record.id, exc)
            return entity
