from typing import List, Optional

from pydantic import ValidationError as SchemaError

from .db import LocalStore
from .logs import json_log
from .models import (
    Customer,
    CustomerMutation,
    CustomerPayload,
    Product,
    ProductMutation,
    ProductPayload,
    Transaction,
    TransactionItem,
    TransactionMutation,
    TransactionPayload,
    pending_mutation_adapter,
    utcnow,
)

COLLECTION = "pendingSync"


class Outbox:
    """
    The pending-mutation queue. Rows are only ever inserted, updated one at a time or
    deleted by id; nothing rewrites the whole queue, so an enqueue racing a drain
    cannot lose an entry.
    """

    def __init__(self, store: LocalStore):
        self.store = store

    def _add(self, mutation) -> str:
        self.store.put(COLLECTION, mutation.model_dump(mode="json"))
        json_log("info", "outbox.enqueued", mutation_id=mutation.id, kind=mutation.kind)
        return mutation.id

    def enqueue_transaction(self, transaction: Transaction, items: List[TransactionItem]) -> str:
        # The transaction id doubles as the idempotency key: a replay of the same sale
        # always carries the same key no matter how many times it is retried.
        m = TransactionMutation(
            idempotency_key=transaction.id,
            payload=TransactionPayload(transaction=transaction, items=list(items)),
        )
        return self._add(m)

    def enqueue_product(self, action: str, product: Product) -> str:
        return self._add(ProductMutation(payload=ProductPayload(action=action, product=product)))

    def enqueue_customer(self, action: str, customer: Customer) -> str:
        return self._add(CustomerMutation(payload=CustomerPayload(action=action, customer=customer)))

    def _decode(self, raw: dict):
        try:
            return pending_mutation_adapter.validate_python(raw)
        except SchemaError as ex:
            json_log("warning", "outbox.mutation_corrupt", mutation_id=raw.get("id"), error=str(ex)[:500])
            return None

    def all(self) -> list:
        out = []
        for raw in self.store.get_all(COLLECTION):
            m = self._decode(raw)
            if m is not None:
                out.append(m)
        return out

    def pending(self) -> list:
        """Mutations still owed to the server, oldest first."""
        return [m for m in self.all() if m.status == "pending"]

    def list_dead(self) -> list:
        return [m for m in self.all() if m.status == "dead"]

    def get(self, mutation_id: str):
        raw = self.store.get(COLLECTION, mutation_id)
        if raw is None:
            return None
        return self._decode(raw)

    def count_pending(self) -> int:
        return self.store.count(COLLECTION, where={"status": "pending"})

    def count_dead(self) -> int:
        return self.store.count(COLLECTION, where={"status": "dead"})

    def remove(self, mutation_id: str) -> bool:
        return self.store.delete(COLLECTION, mutation_id)

    def record_failure(self, mutation, error: str, max_attempts: int = 0):
        # Re-read the row: it may have been acknowledged by a concurrent "sync now".
        current = self.get(mutation.id)
        if current is None:
            return None
        current.attempt_count += 1
        current.last_error = (error or "")[:1000]
        current.last_attempt_at = utcnow()
        if max_attempts and current.attempt_count >= max_attempts:
            current.status = "dead"
            json_log(
                "warning",
                "outbox.dead_lettered",
                mutation_id=current.id,
                kind=current.kind,
                attempts=current.attempt_count,
                error=current.last_error,
            )
        self.store.put(COLLECTION, current.model_dump(mode="json"))
        return current

    def requeue_dead(self, mutation_id: Optional[str] = None) -> int:
        n = 0
        for m in self.list_dead():
            if mutation_id and m.id != mutation_id:
                continue
            m.status = "pending"
            m.attempt_count = 0
            self.store.put(COLLECTION, m.model_dump(mode="json"))
            n += 1
        return n
