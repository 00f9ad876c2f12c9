import asyncio
from dataclasses import asdict, dataclass
from typing import Optional

from pydantic import ValidationError as SchemaError

from .connectivity import ConnectivityMonitor
from .db import LocalStore
from .errors import NetworkError, RemoteRejected, StorageUnavailable
from .logs import json_log
from .models import Customer, CustomerMutation, Product, ProductMutation
from .outbox import Outbox


@dataclass
class HydrationResult:
    skipped: bool = False
    reason: Optional[str] = None
    products: int = 0
    customers: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class CacheHydrator:
    """
    Full pull of products and customers from the server into the local cache.

    The server copy wins: each collection is replaced wholesale. The only local rows kept
    are entities created offline whose create is still queued, so the cashier does not lose
    them before the server has acknowledged them.
    """

    def __init__(self, store: LocalStore, api, monitor: ConnectivityMonitor, outbox: Optional[Outbox] = None):
        self.store = store
        self.api = api
        self.monitor = monitor
        self.outbox = outbox or Outbox(store)

    def _pending_creates(self, kind: str) -> list:
        keys = []
        for m in self.outbox.pending():
            if kind == "product" and isinstance(m, ProductMutation) and m.payload.action == "create":
                keys.append(m.payload.product.id)
            elif kind == "customer" and isinstance(m, CustomerMutation) and m.payload.action == "create":
                keys.append(m.payload.customer.id)
        return keys

    def _normalize(self, rows: list, model) -> list:
        out = []
        for r in rows or []:
            try:
                out.append(model.model_validate(r).model_dump(mode="json"))
            except SchemaError as ex:
                json_log("warning", "hydration.row_invalid", model=model.__name__, id=(r or {}).get("id") if isinstance(r, dict) else None, error=str(ex)[:300])
        return out

    async def _pull(self, collection: str, fetch, model, kind: str) -> int:
        rows = await asyncio.to_thread(fetch)
        records = self._normalize(rows, model)
        return self.store.replace_all(collection, records, keep_keys=self._pending_creates(kind))

    async def hydrate(self) -> HydrationResult:
        if not self.store.is_initialized():
            return HydrationResult(skipped=True, reason="store_not_initialized")
        if not self.monitor.is_online:
            return HydrationResult(skipped=True, reason="offline")

        result = HydrationResult()
        for collection, fetch, model, kind in (
            ("products", self.api.list_products, Product, "product"),
            ("customers", self.api.list_customers, Customer, "customer"),
        ):
            try:
                n = await self._pull(collection, fetch, model, kind)
            except (NetworkError, RemoteRejected, StorageUnavailable) as ex:
                result.errors += 1
                json_log("warning", "hydration.failed", collection=collection, error=str(ex)[:500])
                continue
            setattr(result, collection, n)
        json_log("info", "hydration.done", products=result.products, customers=result.customers, errors=result.errors)
        return result
