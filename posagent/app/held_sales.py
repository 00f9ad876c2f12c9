import time
from typing import List, Optional

from pydantic import ValidationError as SchemaError

from .cart import CartService
from .db import HELD_SALES_KEY, LocalStore
from .errors import NotFound, ValidationError
from .logs import json_log
from .models import CartItem, HeldSale


class HeldSaleManager:
    """
    Parked carts, stored as one list under the `held:sales` key.

    A sale is either active (in the cart) or held, never both: hold and restore each
    move the items in a single store batch.
    """

    def __init__(self, store: LocalStore, cart: CartService):
        self.store = store
        self.cart = cart

    def _load(self) -> List[HeldSale]:
        raw = self.store.get_value(HELD_SALES_KEY, [])
        if not isinstance(raw, list):
            json_log("warning", "held_sales.corrupt")
            return []
        out = []
        for r in raw:
            try:
                out.append(HeldSale.model_validate(r))
            except SchemaError as ex:
                json_log("warning", "held_sales.entry_corrupt", held_id=(r or {}).get("id") if isinstance(r, dict) else None, error=str(ex)[:300])
        return out

    def _save(self, sales: List[HeldSale]) -> None:
        self.store.set_value(HELD_SALES_KEY, [s.model_dump(mode="json") for s in sales])

    def _next_id(self, sales: List[HeldSale]) -> str:
        # Millisecond timestamp ids sort chronologically; bump on collision so they stay unique.
        now_ms = int(time.time() * 1000)
        taken = []
        for s in sales:
            try:
                taken.append(int(s.id))
            except ValueError:
                continue
        if taken and now_ms <= max(taken):
            now_ms = max(taken) + 1
        return str(now_ms)

    def hold(self, customer_id: Optional[str] = None, payment_method: str = "cash", items: Optional[List[CartItem]] = None) -> HeldSale:
        with self.store.batch():
            cart_items = list(items) if items is not None else self.cart.items()
            if not cart_items:
                raise ValidationError("Cart is empty. Add items before holding a sale.", field="items")
            sales = self._load()
            sale = HeldSale(
                id=self._next_id(sales),
                items=cart_items,
                customer_id=customer_id,
                payment_method=payment_method or "cash",
            )
            sales.append(sale)
            self._save(sales)
            self.cart.clear()
        json_log("info", "held_sales.held", held_id=sale.id, items=sale.item_count, total=str(sale.total))
        return sale

    def list(self) -> List[HeldSale]:
        """Newest first."""
        return sorted(self._load(), key=_sort_key, reverse=True)

    def get(self, held_id: str) -> Optional[HeldSale]:
        for s in self._load():
            if s.id == held_id:
                return s
        return None

    def restore(self, held_id: str) -> HeldSale:
        with self.store.batch():
            sales = self._load()
            sale = next((s for s in sales if s.id == held_id), None)
            if sale is None:
                raise NotFound(f"held sale not found: {held_id}")
            self._save([s for s in sales if s.id != held_id])
            self.cart.replace(sale.items)
        json_log("info", "held_sales.restored", held_id=sale.id, items=sale.item_count)
        return sale

    def discard(self, held_id: str) -> None:
        with self.store.batch():
            sales = self._load()
            remaining = [s for s in sales if s.id != held_id]
            if len(remaining) == len(sales):
                raise NotFound(f"held sale not found: {held_id}")
            self._save(remaining)
        json_log("info", "held_sales.discarded", held_id=held_id)


def _sort_key(sale: HeldSale):
    try:
        return (int(sale.id), sale.created_at)
    except ValueError:
        return (0, sale.created_at)


def held_sale_summary(sale: HeldSale) -> dict:
    data = sale.model_dump(mode="json")
    data["item_count"] = sale.item_count
    data["total"] = str(sale.total)
    return data
