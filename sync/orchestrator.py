"""Sync Orchestrator.

Runs one sync pass over every configured store:

    adapter pages -> normalize_batch -> Upserter

Stores are processed in configuration order. A store's failure is recorded
in its StoreOutcome and the pass moves on to the next store. Only one pass
runs at a time; a second request while one is in flight is rejected.
"""

import asyncio
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Set, Union

from connectors import AdapterSettings, PlatformAdapter, create_adapter
from core.config import Settings, StoreConfig
from core.errors import AdapterError, ConfigError, StorageError, SyncInProgressError
from core.observability import get_logger, get_metrics, with_correlation
from normalization import normalize_batch
from storage.queries import derive_customers_from_orders, get_checkpoint, save_checkpoint
from storage.upsert import Upserter
from sync.results import ENTITY_KINDS, StoreOutcome, SyncMode, SyncRunResult, SyncTrigger

logger = get_logger(__name__)

AdapterFactory = Callable[[StoreConfig, AdapterSettings], PlatformAdapter]


class SyncOrchestrator:
    """Sequences platform adapters across all configured stores.

    Usage:
        orchestrator = SyncOrchestrator(settings)
        result = await orchestrator.run(SyncMode.INCREMENTAL)
    """

    def __init__(
        self,
        settings: Settings,
        upserter: Optional[Upserter] = None,
        adapter_factory: AdapterFactory = create_adapter,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.upserter = upserter or Upserter(settings.db_path)
        self._adapter_factory = adapter_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self.last_result: Optional[SyncRunResult] = None

    @property
    def stores(self) -> List[StoreConfig]:
        return self.settings.stores

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(
        self,
        mode: Union[SyncMode, str] = SyncMode.INCREMENTAL,
        trigger: Union[SyncTrigger, str] = SyncTrigger.MANUAL,
    ) -> SyncRunResult:
        """Run one sync pass.

        Raises:
            SyncInProgressError: Another pass is in flight
        """
        mode = SyncMode(mode)
        trigger = SyncTrigger(trigger)

        if self._lock.locked():
            get_metrics().record_sync_rejected()
            raise SyncInProgressError("A sync run is already in progress")

        async with self._lock:
            result = SyncRunResult(
                run_id=f"sync-{uuid.uuid4().hex[:12]}",
                mode=mode,
                trigger=trigger,
                started_at=self._clock(),
            )
            with with_correlation(sync_run_id=result.run_id, mode=mode.value, trigger=trigger.value):
                logger.info(f"Starting {mode.value} sync of {len(self.stores)} store(s)")
                get_metrics().record_sync_started(mode.value)
                start = time.perf_counter()

                if not self.stores:
                    logger.warning("No stores configured, nothing to sync")

                for store in self.stores:
                    result.stores.append(await self._run_store(store, mode, result.started_at))

                result.finished_at = self._clock()
                duration_ms = (time.perf_counter() - start) * 1000
                get_metrics().record_sync_completed(mode.value, duration_ms)

                totals = result.totals
                logger.info(
                    f"Sync finished: {totals.orders_synced} orders, {totals.products_synced} products, "
                    f"{totals.customers_synced} customers, {len(result.errors)} failed store(s)",
                    extra_fields={"duration_ms": round(duration_ms, 1), "success": result.success},
                )

            self.last_result = result
            return result

    async def _run_store(self, store: StoreConfig, mode: SyncMode, run_started_at: datetime) -> StoreOutcome:
        outcome = StoreOutcome(platform_type=store.platform_type, platform_name=store.platform_name)
        completed: Set[str] = set()
        timeout = self.settings.store_timeout_seconds

        with with_correlation(platform_type=store.platform_type, platform_name=store.platform_name):
            logger.info(f"Syncing {store.label}")
            start = time.perf_counter()
            try:
                await asyncio.wait_for(self._sync_store(store, mode, outcome, completed), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(f"{store.label} sync timed out after {timeout}s")
                outcome.errors.append(f"{store.label} timed out after {timeout}s")
            except Exception as e:
                logger.exception(f"{store.label} sync failed unexpectedly: {e}")
                outcome.errors.append(f"{store.label} failed: {type(e).__name__}: {e}")

            outcome.duration_ms = round((time.perf_counter() - start) * 1000, 1)

            try:
                await asyncio.to_thread(
                    save_checkpoint,
                    store,
                    run_started_at,
                    mode.value,
                    "orders" in completed,
                    outcome.error,
                    self.settings.db_path,
                )
            except StorageError as e:
                logger.error(f"Could not record checkpoint: {e}")
                outcome.errors.append(str(e))

            get_metrics().record_store_outcome(store.label, not outcome.errors, outcome.duration_ms)
            if outcome.errors:
                logger.warning(f"{store.label} finished with errors: {outcome.error}")
            else:
                logger.info(
                    f"{store.label} synced {outcome.orders_synced} orders, "
                    f"{outcome.products_synced} products, {outcome.customers_synced} customers",
                    extra_fields={"duration_ms": outcome.duration_ms},
                )
        return outcome

    async def _since(self, store: StoreConfig, mode: SyncMode) -> Optional[datetime]:
        if mode == SyncMode.FULL:
            return None
        checkpoint = await asyncio.to_thread(get_checkpoint, store, self.settings.db_path)
        if checkpoint is not None:
            return checkpoint
        return self._clock() - timedelta(hours=self.settings.incremental_window_hours)

    async def _sync_store(
        self,
        store: StoreConfig,
        mode: SyncMode,
        outcome: StoreOutcome,
        completed: Set[str],
    ) -> None:
        try:
            adapter = self._adapter_factory(store, AdapterSettings.from_settings(self.settings))
        except ConfigError as e:
            logger.error(f"{store.label} is misconfigured: {e}")
            outcome.errors.append(f"{store.label} config: {e}")
            return

        since = await self._since(store, mode)

        async with adapter:
            try:
                await adapter.authenticate()
            except AdapterError as e:
                logger.error(str(e))
                outcome.errors.append(str(e))
                return

            for kind in ENTITY_KINDS:
                with with_correlation(phase=kind):
                    try:
                        await self._sync_kind(adapter, store, kind, since, outcome)
                        completed.add(kind)
                    except AdapterError as e:
                        logger.error(str(e))
                        outcome.errors.append(str(e))
                        if e.is_auth_failure:
                            return
                    except StorageError as e:
                        logger.error(f"{store.label} {kind} storage failed: {e}")
                        outcome.add_synced(kind, e.written)
                        get_metrics().record_records_synced(kind, e.written)
                        outcome.errors.append(f"{store.label} {kind} storage failed: {e}")

    async def _sync_kind(
        self,
        adapter: PlatformAdapter,
        store: StoreConfig,
        kind: str,
        since: Optional[datetime],
        outcome: StoreOutcome,
    ) -> None:
        if kind == "customers" and adapter.customers_from_orders:
            customers = await asyncio.to_thread(derive_customers_from_orders, store, self.settings.db_path)
            written = await asyncio.to_thread(self.upserter.upsert, kind, customers)
            outcome.add_synced(kind, written)
            get_metrics().record_records_synced(kind, written)
            logger.info(f"Derived {written} customers from orders")
            return

        if kind == "orders":
            pages = adapter.list_orders(since)
        elif kind == "products":
            pages = adapter.list_products()
        else:
            pages = adapter.list_customers()

        async for page in pages:
            normalized = normalize_batch(kind, page, store)
            outcome.add_skipped(kind, normalized.skipped)
            written = await asyncio.to_thread(self.upserter.upsert, kind, normalized.records)
            outcome.add_synced(kind, written)
            get_metrics().record_records_synced(kind, written)

        logger.info(f"{kind}: {getattr(outcome, kind + '_synced')} synced")
