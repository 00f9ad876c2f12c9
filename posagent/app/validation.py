from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Annotated, Literal, Optional

from pydantic import BeforeValidator, PlainSerializer, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_decimal(v):
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        raise ValueError("invalid amount")
    raw = str(v).strip()
    if not raw:
        return Decimal("0")
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ValueError("invalid amount")


def _utc_stamp(v: datetime) -> str:
    # Fixed width so stored stamps sort lexically in time order.
    if v.tzinfo is not None:
        v = v.astimezone(timezone.utc)
    return v.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _to_customer_id(v):
    # The cashier UI sends "walk-in" (or nothing) for sales without a customer record.
    if v is None:
        return None
    s = str(v).strip()
    if not s or s.lower() == "walk-in":
        return None
    return s


# Payment methods are free-form identifiers chosen by the store (cash, card, jazzcash, ...).
# Keep a tight, safe character set so methods are stable identifiers.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

MutationAction = Annotated[Literal["create", "update", "delete"], BeforeValidator(_to_lower_str)]
MutationStatus = Literal["pending", "dead"]

Money = Annotated[Decimal, BeforeValidator(_to_decimal)]
CustomerRef = Annotated[Optional[str], BeforeValidator(_to_customer_id)]

# Timestamps the agent itself mints and orders by (queue position, transaction list).
Timestamp = Annotated[datetime, PlainSerializer(_utc_stamp, when_used="json")]
