from typing import List, Optional

from pydantic import ValidationError as SchemaError

from .db import LocalStore
from .errors import NotFound, ValidationError
from .logs import json_log
from .models import Customer, Product, new_id
from .outbox import Outbox

ACTIONS = ("create", "update", "delete")


def _parse(model, raw: dict):
    try:
        return model.model_validate(raw)
    except SchemaError:
        json_log("warning", "catalog.record_corrupt", model=model.__name__, id=(raw or {}).get("id"))
        return None


class CatalogService:
    """
    Read side of the cached reference data plus the offline write path: every product or
    customer edit is applied to the local cache right away and queued for the server.
    """

    def __init__(self, store: LocalStore, outbox: Outbox):
        self.store = store
        self.outbox = outbox

    def list_products(self, active_only: bool = False) -> List[Product]:
        out = [p for p in (_parse(Product, r) for r in self.store.get_all("products")) if p is not None]
        if active_only:
            out = [p for p in out if p.is_active]
        return out

    def search_products(self, query: str) -> List[Product]:
        q = (query or "").strip().lower()
        products = self.list_products()
        if not q:
            return products
        return [
            p
            for p in products
            if q in (p.name or "").lower() or q in (p.sku or "").lower() or q in (p.barcode or "").lower()
        ]

    def get_product(self, product_id: str) -> Optional[Product]:
        raw = self.store.get("products", product_id)
        return _parse(Product, raw) if raw is not None else None

    def list_customers(self) -> List[Customer]:
        return [c for c in (_parse(Customer, r) for r in self.store.get_all("customers")) if c is not None]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        raw = self.store.get("customers", customer_id)
        return _parse(Customer, raw) if raw is not None else None

    def save_product(self, action: str, data: dict) -> Product:
        return self._save("products", Product, action, data, self.outbox.enqueue_product)

    def save_customer(self, action: str, data: dict) -> Customer:
        return self._save("customers", Customer, action, data, self.outbox.enqueue_customer)

    def _save(self, collection: str, model, action: str, data: dict, enqueue):
        action = (action or "").strip().lower()
        if action not in ACTIONS:
            raise ValidationError(f"unknown action: {action}", field="action")
        data = dict(data or {})

        if action == "delete":
            key = str(data.get("id") or "")
            raw = self.store.get(collection, key) if key else None
            if raw is None:
                raise NotFound(f"{model.__name__.lower()} not found: {key}")
            entity = _parse(model, raw)
            if entity is None:
                raise NotFound(f"{model.__name__.lower()} not found: {key}")
            with self.store.batch():
                self.store.delete(collection, key)
                enqueue(action, entity)
            return entity

        if action == "create" and not data.get("id"):
            data["id"] = new_id()
        if action == "update":
            existing = self.store.get(collection, str(data.get("id") or ""))
            if existing is None:
                raise NotFound(f"{model.__name__.lower()} not found: {data.get('id')}")
            data = {**existing, **data}
        try:
            entity = model.model_validate(data)
        except SchemaError as ex:
            err = ex.errors()[0]
            field = ".".join(str(p) for p in err.get("loc") or ()) or None
            raise ValidationError(f"invalid {model.__name__.lower()}: {err.get('msg', 'invalid')}", field=field) from ex
        with self.store.batch():
            self.store.put(collection, entity.model_dump(mode="json"))
            enqueue(action, entity)
        return entity
