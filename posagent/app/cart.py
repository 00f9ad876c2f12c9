from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from pydantic import ValidationError as SchemaError

from .db import LocalStore
from .errors import NotFound, ValidationError
from .logs import json_log
from .models import CartItem, Product

COLLECTION = "cart"
CENT = Decimal("0.01")


def format_amount(value: Decimal) -> str:
    """Plain decimal string without trailing zeros: Decimal("200.00") -> "200", "12.50" -> "12.5"."""
    return format(value.normalize(), "f")


@dataclass(frozen=True)
class CartSummary:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    item_count: int

    def to_dict(self) -> dict:
        return {
            "subtotal": format_amount(self.subtotal),
            "tax": str(self.tax),
            "total": str(self.total),
            "item_count": self.item_count,
        }


def compute_totals(items: Iterable[CartItem], tax_rate) -> CartSummary:
    """Tax rate is a percent (17 -> 17%). Tax and total are rounded half-up to cents."""
    items = list(items or [])
    subtotal = sum((i.total_price for i in items), Decimal("0"))
    rate = Decimal(str(tax_rate or 0)) / Decimal("100")
    tax = (subtotal * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    total = (subtotal + tax).quantize(CENT, rounding=ROUND_HALF_UP)
    return CartSummary(
        subtotal=subtotal,
        tax=tax,
        total=total,
        item_count=sum(i.quantity for i in items),
    )


class CartService:
    """The active cart, persisted line by line so it survives an agent restart."""

    def __init__(self, store: LocalStore):
        self.store = store

    def items(self) -> List[CartItem]:
        out = []
        for raw in self.store.get_all(COLLECTION):
            try:
                out.append(CartItem.model_validate(raw))
            except SchemaError as ex:
                json_log("warning", "cart.item_corrupt", item_id=raw.get("id"), error=str(ex)[:300])
        return out

    def _put(self, item: CartItem) -> None:
        self.store.put(COLLECTION, item.model_dump(mode="json"))

    def add_product(self, product: Product, quantity: int = 1) -> CartItem:
        if quantity <= 0:
            raise ValidationError("quantity must be positive", field="quantity")
        for existing in self.items():
            if existing.product.id == product.id:
                # Unit price stays the one captured when the product first entered the cart.
                item = CartItem(
                    id=existing.id,
                    product=existing.product,
                    quantity=existing.quantity + quantity,
                    unit_price=existing.unit_price,
                )
                self._put(item)
                return item
        item = CartItem(product=product, quantity=quantity, unit_price=product.price)
        self._put(item)
        return item

    def get(self, item_id: str) -> Optional[CartItem]:
        raw = self.store.get(COLLECTION, item_id)
        if raw is None:
            return None
        try:
            return CartItem.model_validate(raw)
        except SchemaError:
            return None

    def update_quantity(self, item_id: str, quantity: int) -> Optional[CartItem]:
        existing = self.get(item_id)
        if existing is None:
            raise NotFound(f"cart item not found: {item_id}")
        if quantity <= 0:
            self.store.delete(COLLECTION, item_id)
            return None
        item = CartItem(id=existing.id, product=existing.product, quantity=quantity, unit_price=existing.unit_price)
        self._put(item)
        return item

    def remove(self, item_id: str) -> None:
        if not self.store.delete(COLLECTION, item_id):
            raise NotFound(f"cart item not found: {item_id}")

    def clear(self) -> None:
        self.store.clear(COLLECTION)

    def replace(self, items: Iterable[CartItem]) -> None:
        self.store.replace_all(COLLECTION, [i.model_dump(mode="json") for i in items])

    def summary(self, tax_rate) -> CartSummary:
        return compute_totals(self.items(), tax_rate)
