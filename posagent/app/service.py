"""
The agent's long-lived sync service.

Built once at process start (see `agent.main` / `main.create_app`) and handed to the HTTP
layer through `app.state`; nothing imports it as a module-level singleton. It owns the
local store, the connectivity monitor, the sync engine and the background loop task.
"""

import asyncio
import contextlib
from typing import Optional

from .api_client import RemoteApi
from .cart import CartService
from .catalog import CatalogService
from .config import Settings
from .config import settings as default_settings
from .connectivity import ConnectivityMonitor
from .db import HELD_SALES_KEY, MEMORY_PATH, SETTINGS_STORE_KEY, LocalStore
from .errors import NetworkError, RemoteRejected, StorageUnavailable
from .held_sales import HeldSaleManager
from .hydration import CacheHydrator, HydrationResult
from .logs import json_log
from .models import TransactionMutation
from .outbox import Outbox
from .sales import SalesService
from .store_settings import get_store_settings, save_store_settings
from .sync_engine import DrainResult, SyncEngine


class SyncService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[LocalStore] = None,
        api=None,
        monitor: Optional[ConnectivityMonitor] = None,
    ):
        self.settings = settings or default_settings
        self.api = api or RemoteApi(
            self.settings.api_base_url,
            timeout=self.settings.request_timeout_seconds,
            headers=self.settings.device_headers(),
        )
        self.monitor = monitor or ConnectivityMonitor(self.api, health_timeout=self.settings.health_timeout_seconds)
        self.monitor.on_online(self.request_sync)
        self.store = store if store is not None else LocalStore(self.settings.db_path)
        self._task: Optional[asyncio.Task] = None
        self._side_tasks: set = set()
        self.last_hydration: Optional[HydrationResult] = None
        self.storage_error: Optional[str] = None
        self._wire()

    def _wire(self) -> None:
        self.outbox = Outbox(self.store)
        self.cart = CartService(self.store)
        self.held_sales = HeldSaleManager(self.store, self.cart)
        self.catalog = CatalogService(self.store, self.outbox)
        self.sales = SalesService(self.store, self.outbox, self.cart, on_committed=self.request_sync)
        self.engine = SyncEngine(
            self.outbox,
            self.api,
            self.monitor,
            max_attempts=self.settings.sync_max_attempts,
            on_synced=self._on_synced,
        )
        self.hydrator = CacheHydrator(self.store, self.api, self.monitor, self.outbox)

    def open_store(self) -> None:
        try:
            self.store.init()
            return
        except StorageUnavailable as ex:
            self._fall_back_to_memory(ex)

    def _fall_back_to_memory(self, error: Exception) -> None:
        """
        Swap in a memory-only store. Sales keep working and queued mutations are still
        replayed this session; whatever cannot be read from the failing store is lost.
        """
        old = self.store
        carried = {}
        if old.is_initialized():
            for collection in ("products", "customers", "cart", "pendingSync"):
                try:
                    carried[collection] = old.get_all(collection)
                except StorageUnavailable:
                    carried[collection] = []
            try:
                carried_settings = old.get_value(SETTINGS_STORE_KEY)
                carried_held = old.get_value(HELD_SALES_KEY)
            except StorageUnavailable:
                carried_settings = carried_held = None
        else:
            carried_settings = carried_held = None
        json_log("warning", "store.fallback_memory", path=old.path, error=str(error), carried={k: len(v) for k, v in carried.items()})
        self.storage_error = str(error)
        self.store = LocalStore(MEMORY_PATH)
        self.store.init()
        self._wire()
        for collection, rows in carried.items():
            self.store.put_many(collection, rows)
        if carried_settings is not None:
            self.store.set_value(SETTINGS_STORE_KEY, carried_settings)
        if carried_held is not None:
            self.store.set_value(HELD_SALES_KEY, carried_held)
        old.close()

    @property
    def storage_mode(self) -> str:
        return self.store.mode

    async def start(self, run_loop: bool = True) -> None:
        self.open_store()
        await self.monitor.probe()
        if self.monitor.is_online:
            self.last_hydration = await self.hydrator.hydrate()
        if run_loop and self._task is None:
            self._task = asyncio.create_task(self._run(), name="posagent-sync-loop")
        json_log(
            "info",
            "service.started",
            storage_mode=self.storage_mode,
            is_online=self.monitor.is_online,
            pending=self.outbox.count_pending(),
        )

    async def stop(self) -> None:
        tasks = [t for t in [self._task, *self._side_tasks] if t is not None]
        self._task = None
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._side_tasks.clear()
        self.store.close()
        json_log("info", "service.stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last_drain = loop.time()
        last_hydrate = loop.time()
        while True:
            await asyncio.sleep(self.settings.connectivity_poll_seconds)
            try:
                await self.monitor.probe()
                if not self.monitor.is_online:
                    continue
                now = loop.time()
                if now - last_drain >= self.settings.sync_interval_seconds:
                    last_drain = now
                    await self.engine.drain()
                if now - last_hydrate >= self.settings.hydration_interval_seconds:
                    last_hydrate = now
                    self.last_hydration = await self.hydrator.hydrate()
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                # Keep the loop alive; the next tick retries.
                json_log("error", "service.loop_error", error=str(ex))

    def request_sync(self) -> None:
        """Fire-and-forget drain. Dropped when offline, already draining or outside the loop."""
        snap = self.monitor.get_snapshot()
        if not snap.is_online or snap.sync_in_progress:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.engine.drain())
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)

    async def sync_now(self) -> DrainResult:
        if not self.monitor.is_online:
            await self.monitor.probe()
        return await self.engine.drain()

    async def hydrate_now(self) -> HydrationResult:
        if not self.monitor.is_online:
            await self.monitor.probe()
        self.last_hydration = await self.hydrator.hydrate()
        return self.last_hydration

    def _on_synced(self, mutation) -> None:
        if isinstance(mutation, TransactionMutation):
            self.sales.mark_synced(mutation.payload.transaction.id)

    def store_settings(self):
        return get_store_settings(self.store, default_tax_rate=self.settings.default_tax_rate)

    def update_store_settings(self, patch: dict):
        return save_store_settings(self.store, patch, default_tax_rate=self.settings.default_tax_rate)

    def complete_sale(self, customer_id: Optional[str] = None, payment_method: str = "cash", user_id: Optional[str] = None):
        try:
            return self.sales.complete_sale(
                self.store_settings().tax_rate, customer_id=customer_id, payment_method=payment_method, user_id=user_id
            )
        except StorageUnavailable as ex:
            if self.store.mode == "memory":
                raise
            # The batch rolled back, so the cart is still intact. Move everything we can
            # read into memory and record the sale there; the drain still delivers it.
            self._fall_back_to_memory(ex)
        return self.sales.complete_sale(
            self.store_settings().tax_rate, customer_id=customer_id, payment_method=payment_method, user_id=user_id
        )

    async def receipt(self, transaction_id: str) -> dict:
        if self.monitor.is_online:
            try:
                return await asyncio.to_thread(self.api.get_transaction, transaction_id)
            except (NetworkError, RemoteRejected) as ex:
                json_log("info", "receipt.remote_unavailable", transaction_id=transaction_id, error=str(ex)[:300])
        return self.sales.local_receipt(transaction_id)

    def status(self) -> dict:
        snap = self.monitor.get_snapshot()
        out = {
            **snap.to_dict(),
            "storage_mode": self.storage_mode,
            "storage_error": self.storage_error,
            "last_latency_ms": self.monitor.last_latency_ms,
            "pending_count": 0,
            "dead_count": 0,
            "last_probe_error": self.monitor.last_probe_error,
            "last_drain": self.engine.last_result.to_dict() if self.engine.last_result else None,
            "last_hydration": self.last_hydration.to_dict() if self.last_hydration else None,
        }
        try:
            out["pending_count"] = self.outbox.count_pending()
            out["dead_count"] = self.outbox.count_dead()
        except StorageUnavailable as ex:
            out["storage_error"] = str(ex)
        return out
