from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .validation import CustomerRef, Money, MutationAction, MutationStatus, PaymentMethod, Timestamp


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# Cached reference data mirrors whatever the server returns. Unknown fields are kept so
# a hydration overwrite never silently drops columns the UI may render.
class Product(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    description: Optional[str] = None
    sku: str = ""
    barcode: Optional[str] = None
    category: str = ""
    price: Money = Decimal("0")
    cost: Optional[Money] = None
    stock: int = 0
    min_stock: Optional[int] = 5
    image_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Customer(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    credit_balance: Optional[Money] = Decimal("0")
    total_purchases: Optional[Money] = Decimal("0")
    last_visit: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CartItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product: Product
    quantity: int = Field(gt=0)
    unit_price: Money
    total_price: Money = Decimal("0")

    @model_validator(mode="after")
    def _line_total(self):
        self.total_price = self.unit_price * self.quantity
        return self


class Transaction(BaseModel):
    id: str = Field(default_factory=new_id)
    transaction_number: str
    customer_id: CustomerRef = None
    user_id: Optional[str] = None
    # Amounts travel as decimal strings, the same way the server stores numeric(10,2).
    subtotal: str
    tax: str
    total: str
    payment_method: PaymentMethod = "cash"
    payment_status: str = "completed"
    synced: bool = False
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class TransactionItem(BaseModel):
    id: str = Field(default_factory=new_id)
    transaction_id: str
    product_id: str
    quantity: int = Field(gt=0)
    unit_price: str
    total_price: str
    created_at: Timestamp = Field(default_factory=utcnow)


class HeldSale(BaseModel):
    id: str
    created_at: Timestamp = Field(default_factory=utcnow)
    items: List[CartItem]
    customer_id: CustomerRef = None
    payment_method: PaymentMethod = "cash"

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total(self) -> Decimal:
        return sum((i.total_price for i in self.items), Decimal("0"))


class TransactionPayload(BaseModel):
    transaction: Transaction
    items: List[TransactionItem]


class ProductPayload(BaseModel):
    action: MutationAction
    product: Product


class CustomerPayload(BaseModel):
    action: MutationAction
    customer: Customer


class _MutationBase(BaseModel):
    id: str = Field(default_factory=new_id)
    # Sent as Idempotency-Key on every replay so the server can drop duplicates
    # when an earlier attempt succeeded but its acknowledgement was lost.
    idempotency_key: str = Field(default_factory=new_id)
    enqueued_at: Timestamp = Field(default_factory=utcnow)
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[Timestamp] = None
    status: MutationStatus = "pending"


class TransactionMutation(_MutationBase):
    kind: Literal["transaction"] = "transaction"
    payload: TransactionPayload


class ProductMutation(_MutationBase):
    kind: Literal["product"] = "product"
    payload: ProductPayload


class CustomerMutation(_MutationBase):
    kind: Literal["customer"] = "customer"
    payload: CustomerPayload


PendingMutation = Annotated[
    Union[TransactionMutation, ProductMutation, CustomerMutation],
    Field(discriminator="kind"),
]

pending_mutation_adapter: TypeAdapter = TypeAdapter(PendingMutation)


class StoreSettings(BaseModel):
    store_name: str = "SmartPOS Store"
    store_address: str = ""
    store_phone: str = ""
    gst_number: Optional[str] = None
    # Percent, e.g. 17 means 17%.
    tax_rate: Money = Decimal("17")
