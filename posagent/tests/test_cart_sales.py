import asyncio
from decimal import Decimal

import pytest

from posagent.app.cart import CartService, compute_totals
from posagent.app.errors import NotFound, ValidationError
from posagent.app.models import CartItem
from posagent.app.sales import SalesService, build_sale
from posagent.app.sync_engine import SyncEngine
from posagent.tests.fakes import make_product


def test_compute_totals_rounds_tax_half_up():
    items = [CartItem(product=make_product("p1", price="0.15"), quantity=1, unit_price="0.15")]
    totals = compute_totals(items, 10)
    # 0.015 -> 0.02
    assert totals.tax == Decimal("0.02")
    assert totals.total == Decimal("0.17")
    assert totals.item_count == 1


def test_subtotal_drops_trailing_zeros_but_tax_and_total_keep_cents():
    items = [CartItem(product=make_product("p1", price="100.00"), quantity=2, unit_price="100.00")]
    assert compute_totals(items, 17).to_dict() == {"subtotal": "200", "tax": "34.00", "total": "234.00", "item_count": 2}
    items = [CartItem(product=make_product("p2", price="12.50"), quantity=1, unit_price="12.50")]
    assert compute_totals(items, 0).to_dict()["subtotal"] == "12.5"


def test_add_same_product_merges_lines(store):
    cart = CartService(store)
    first = cart.add_product(make_product("p1", price="100"), 1)
    merged = cart.add_product(make_product("p1", price="120"), 2)
    assert merged.id == first.id
    assert merged.quantity == 3
    assert merged.unit_price == Decimal("100")
    assert merged.total_price == Decimal("300")
    assert len(cart.items()) == 1


def test_update_quantity_and_remove(store):
    cart = CartService(store)
    item = cart.add_product(make_product("p1"), 1)
    assert cart.update_quantity(item.id, 4).quantity == 4
    assert cart.update_quantity(item.id, 0) is None
    assert cart.items() == []
    with pytest.raises(NotFound):
        cart.update_quantity(item.id, 1)
    with pytest.raises(NotFound):
        cart.remove(item.id)


def test_build_sale_rejects_empty_cart():
    with pytest.raises(ValidationError):
        build_sale([], 17)


def test_offline_sale_is_stored_queued_and_replayed_once_online(store, outbox, api, monitor):
    monitor.set_online(False)
    cart = CartService(store)
    sales = SalesService(store, outbox, cart)
    cart.add_product(make_product("p1", price="100.00"), 2)

    tx = sales.complete_sale(17, customer_id="walk-in", payment_method="Cash")
    assert tx.subtotal == "200"
    assert tx.tax == "34.00"
    assert tx.total == "234.00"
    assert tx.customer_id is None
    assert tx.payment_method == "cash"
    assert tx.transaction_number.startswith("TXN-")
    assert cart.items() == []
    assert outbox.count_pending() == 1

    stored = sales.list_transactions()
    assert [t.id for t in stored] == [tx.id]
    assert stored[0].synced is False

    monitor.set_online(True)
    engine = SyncEngine(outbox, api, monitor, on_synced=lambda m: sales.mark_synced(m.payload.transaction.id))
    asyncio.run(engine.drain())
    assert [c[0] for c in api.calls] == ["create_transaction"]
    sent = api.transactions[tx.id]
    assert sent["total"] == "234.00"
    assert sent["items"][0]["quantity"] == 2
    assert outbox.pending() == []
    assert sales.list_transactions()[0].synced is True


def test_complete_sale_with_empty_cart_leaves_nothing_behind(store, outbox):
    sales = SalesService(store, outbox, CartService(store))
    with pytest.raises(ValidationError):
        sales.complete_sale(17)
    assert outbox.count_pending() == 0
    assert sales.list_transactions() == []


def test_complete_sale_calls_on_committed(store, outbox):
    hits = []
    cart = CartService(store)
    sales = SalesService(store, outbox, cart, on_committed=lambda: hits.append(1))
    cart.add_product(make_product("p1"), 1)
    sales.complete_sale(0)
    assert hits == [1]


def test_local_receipt_joins_items_products_and_customer(store, outbox):
    store.put("products", make_product("p1", price="10").model_dump(mode="json"))
    store.put("customers", {"id": "c1", "name": "Sara"})
    cart = CartService(store)
    sales = SalesService(store, outbox, cart)
    cart.add_product(make_product("p1", price="10"), 3)
    tx = sales.complete_sale(17, customer_id="c1")

    receipt = sales.local_receipt(tx.id)
    assert receipt["transaction_number"] == tx.transaction_number
    assert receipt["customer"]["name"] == "Sara"
    assert receipt["items"][0]["quantity"] == 3
    assert receipt["items"][0]["product"]["id"] == "p1"
    with pytest.raises(NotFound):
        sales.local_receipt("missing")
