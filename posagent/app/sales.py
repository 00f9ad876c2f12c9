import time
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from .cart import CartService, compute_totals, format_amount
from .db import LocalStore
from .errors import NotFound, ValidationError
from .logs import json_log
from .models import CartItem, Transaction, TransactionItem, utcnow
from .outbox import Outbox


def next_transaction_number() -> str:
    return f"TXN-{int(time.time() * 1000)}"


def build_sale(
    items: List[CartItem],
    tax_rate,
    customer_id: Optional[str] = None,
    payment_method: str = "cash",
    user_id: Optional[str] = None,
) -> Tuple[Transaction, List[TransactionItem]]:
    """
    Turn cart lines into the transaction header + line items sent to POST /transactions.

    Lines embed product id, quantity and prices as they were in the cart, so later cache
    hydration cannot change what gets replayed.
    """
    if not items:
        raise ValidationError("Cart is empty.", field="items")
    totals = compute_totals(items, tax_rate)
    now = utcnow()
    try:
        tx = Transaction(
            transaction_number=next_transaction_number(),
            customer_id=customer_id,
            user_id=user_id,
            subtotal=format_amount(totals.subtotal),
            tax=str(totals.tax),
            total=str(totals.total),
            payment_method=payment_method or "cash",
            created_at=now,
            updated_at=now,
        )
    except SchemaError as ex:
        raise ValidationError(f"invalid sale: {ex.errors()[0].get('msg', 'invalid')}") from ex
    lines = [
        TransactionItem(
            transaction_id=tx.id,
            product_id=i.product.id,
            quantity=i.quantity,
            unit_price=str(i.unit_price),
            total_price=str(i.total_price),
            created_at=now,
        )
        for i in items
    ]
    return tx, lines


class SalesService:
    def __init__(self, store: LocalStore, outbox: Outbox, cart: CartService, on_committed: Optional[Callable[[], None]] = None):
        self.store = store
        self.outbox = outbox
        self.cart = cart
        # Called after a sale is queued; the service uses it to kick a drain when online.
        self.on_committed = on_committed

    def complete_sale(
        self,
        tax_rate,
        customer_id: Optional[str] = None,
        payment_method: str = "cash",
        user_id: Optional[str] = None,
    ) -> Transaction:
        with self.store.batch():
            items = self.cart.items()
            tx, lines = build_sale(items, tax_rate, customer_id=customer_id, payment_method=payment_method, user_id=user_id)
            self.store.save_transaction(tx.model_dump(mode="json"), [ln.model_dump(mode="json") for ln in lines])
            mutation_id = self.outbox.enqueue_transaction(tx, lines)
            self.cart.clear()
        json_log(
            "info",
            "sale.completed",
            transaction_id=tx.id,
            transaction_number=tx.transaction_number,
            mutation_id=mutation_id,
            total=tx.total,
        )
        if self.on_committed is not None:
            self.on_committed()
        return tx

    def list_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        out = []
        for raw in self.store.get_all("transactions"):
            try:
                out.append(Transaction.model_validate(raw))
            except SchemaError:
                json_log("warning", "sale.transaction_corrupt", transaction_id=raw.get("id"))
                continue
            if limit and len(out) >= limit:
                break
        return out

    def mark_synced(self, transaction_id: str) -> None:
        raw = self.store.get("transactions", transaction_id)
        if raw is None:
            return
        raw["synced"] = True
        self.store.put("transactions", raw)

    def local_receipt(self, transaction_id: str) -> dict:
        """Fully hydrated transaction (items + product + customer) from local data only."""
        raw = self.store.get("transactions", transaction_id)
        if raw is None:
            raise NotFound(f"transaction not found: {transaction_id}")
        items = []
        for it in self.store.find_by("transactionItems", "transaction_id", transaction_id):
            items.append({**it, "product": self.store.get("products", it.get("product_id"))})
        customer = None
        if raw.get("customer_id"):
            customer = self.store.get("customers", raw["customer_id"])
        return {**raw, "items": items, "customer": customer}
