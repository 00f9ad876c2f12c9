"""
Drains the pending-mutation queue against the upstream API.

One drain cycle: Idle -> Draining -> Idle. A cycle starts only when the monitor reports
online and no other cycle is running; a trigger that arrives mid-drain is dropped and
the next periodic tick picks up whatever is left.

Per mutation, oldest first:
- 2xx (or an "already applied" answer, see `_is_already_applied`) removes it from the queue;
- any other failure, whatever its type, leaves it queued, records the attempt and moves on to the next one.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from .connectivity import ConnectivityMonitor
from .errors import RemoteRejected, StorageUnavailable
from .logs import json_log
from .models import CustomerMutation, ProductMutation, TransactionMutation
from .outbox import Outbox


@dataclass
class DrainResult:
    skipped: bool = False
    reason: Optional[str] = None
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    remaining: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _is_already_applied(action: str, ex: RemoteRejected) -> bool:
    # Creates are keyed by the idempotency key / transaction number server-side: a conflict
    # means an earlier attempt landed. Deleting something already gone is also done.
    if action == "create" and ex.status_code == 409:
        return True
    if action == "delete" and ex.status_code == 404:
        return True
    return False


class SyncEngine:
    def __init__(
        self,
        outbox: Outbox,
        api,
        monitor: ConnectivityMonitor,
        max_attempts: int = 0,
        on_synced: Optional[Callable[[object], None]] = None,
    ):
        self.outbox = outbox
        self.api = api
        self.monitor = monitor
        self.max_attempts = max(0, int(max_attempts or 0))
        self.on_synced = on_synced
        self.last_result: Optional[DrainResult] = None

    async def _call(self, fn, *args, **kwargs):
        # urllib is blocking; run it off the loop so the local API stays responsive.
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _dispatch(self, mutation) -> str:
        key = mutation.idempotency_key
        if isinstance(mutation, TransactionMutation):
            p = mutation.payload.model_dump(mode="json")
            await self._call(self.api.create_transaction, p["transaction"], p["items"], idempotency_key=key)
            return "create"
        if isinstance(mutation, ProductMutation):
            action = mutation.payload.action
            product = mutation.payload.product.model_dump(mode="json")
            if action == "create":
                await self._call(self.api.create_product, product, idempotency_key=key)
            elif action == "update":
                await self._call(self.api.update_product, product, idempotency_key=key)
            elif action == "delete":
                await self._call(self.api.delete_product, product["id"], idempotency_key=key)
            else:
                raise ValueError(f"unknown product action: {action}")
            return action
        if isinstance(mutation, CustomerMutation):
            action = mutation.payload.action
            customer = mutation.payload.customer.model_dump(mode="json")
            if action == "create":
                await self._call(self.api.create_customer, customer, idempotency_key=key)
            elif action == "update":
                await self._call(self.api.update_customer, customer, idempotency_key=key)
            elif action == "delete":
                await self._call(self.api.delete_customer, customer["id"], idempotency_key=key)
            else:
                raise ValueError(f"unknown customer action: {action}")
            return action
        raise ValueError(f"unknown mutation kind: {getattr(mutation, 'kind', None)}")

    def _action_of(self, mutation) -> str:
        if isinstance(mutation, TransactionMutation):
            return "create"
        return mutation.payload.action

    async def drain(self) -> DrainResult:
        if not self.outbox.store.is_initialized():
            return DrainResult(skipped=True, reason="store_not_initialized")
        if not self.monitor.try_begin_sync():
            reason = "offline" if not self.monitor.is_online else "sync_in_progress"
            return DrainResult(skipped=True, reason=reason)

        result = DrainResult()
        try:
            try:
                queue = self.outbox.pending()
            except StorageUnavailable as ex:
                json_log("error", "sync.drain.store_failed", error=str(ex))
                return DrainResult(skipped=True, reason="storage_unavailable")

            json_log("info", "sync.drain.start", pending=len(queue))
            for mutation in queue:
                # Connectivity is re-checked between items only; an in-flight call always settles.
                if not self.monitor.is_online:
                    json_log("info", "sync.drain.went_offline", attempted=result.attempted)
                    break
                result.attempted += 1
                try:
                    await self._dispatch(mutation)
                except RemoteRejected as ex:
                    if _is_already_applied(self._action_of(mutation), ex):
                        json_log("info", "sync.mutation.already_applied", mutation_id=mutation.id, kind=mutation.kind, status_code=ex.status_code)
                    else:
                        self._failed(mutation, ex, result)
                        continue
                except Exception as ex:
                    # NetworkError, a bad payload or anything else escaping the client fails only this item.
                    self._failed(mutation, ex, result)
                    continue
                try:
                    self.outbox.remove(mutation.id)
                except StorageUnavailable as ex:
                    # Server has it; the replay will be deduplicated by the idempotency key.
                    json_log("error", "sync.mutation.remove_failed", mutation_id=mutation.id, error=str(ex))
                    result.failed += 1
                    continue
                result.synced += 1
                json_log("info", "sync.mutation.synced", mutation_id=mutation.id, kind=mutation.kind)
                if self.on_synced is not None:
                    try:
                        self.on_synced(mutation)
                    except StorageUnavailable as ex:
                        json_log("warning", "sync.mutation.post_sync_failed", mutation_id=mutation.id, error=str(ex))

            try:
                result.remaining = self.outbox.count_pending()
            except StorageUnavailable:
                result.remaining = result.attempted - result.synced
            json_log(
                "info",
                "sync.drain.done",
                attempted=result.attempted,
                synced=result.synced,
                failed=result.failed,
                remaining=result.remaining,
            )
            self.last_result = result
            return result
        finally:
            self.monitor.end_sync()

    def _failed(self, mutation, ex: Exception, result: DrainResult) -> None:
        result.failed += 1
        json_log("warning", "sync.mutation.failed", mutation_id=mutation.id, kind=mutation.kind, error=str(ex)[:500])
        try:
            self.outbox.record_failure(mutation, str(ex), max_attempts=self.max_attempts)
        except StorageUnavailable as store_ex:
            json_log("error", "sync.mutation.record_failed", mutation_id=mutation.id, error=str(store_ex))
