from fastapi.testclient import TestClient

from posagent.app.config import Settings
from posagent.app.db import LocalStore
from posagent.app.main import create_app
from posagent.app.service import SyncService
from posagent.tests.fakes import FakeApi


def _client(db_path, online=False):
    api = FakeApi()
    api.online = online
    service = SyncService(Settings(), store=LocalStore(db_path), api=api)
    return TestClient(create_app(service, run_loop=False)), service, api


def _seed_product(client, pid="p1", price="100"):
    res = client.post("/api/products", json={"id": pid, "name": f"Item {pid}", "sku": pid.upper(), "price": price})
    assert res.status_code == 200
    return res.json()["product"]


def test_health_and_status(db_path):
    client, _, _ = _client(db_path)
    with client:
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["ok"] is True
        assert res.json()["storage_mode"] == "disk"
        assert res.headers["X-Request-Id"]

        status = client.get("/api/status").json()
        assert status["is_online"] is False
        assert status["sync_in_progress"] is False
        assert status["pending_count"] == 0
        assert status["storage_error"] is None
        assert status["last_latency_ms"] is None


def test_request_id_is_echoed(db_path):
    client, _, _ = _client(db_path)
    with client:
        res = client.get("/api/status", headers={"X-Request-Id": "abc123"})
        assert res.headers["X-Request-Id"] == "abc123"


def test_cart_to_sale_flow(db_path):
    client, service, _ = _client(db_path)
    with client:
        _seed_product(client)
        res = client.post("/api/cart/items", json={"product_id": "p1", "quantity": 2})
        assert res.status_code == 200
        cart = res.json()["cart"]
        assert (cart["subtotal"], cart["tax"], cart["total"], cart["item_count"]) == ("200", "34.00", "234.00", 2)

        res = client.post("/api/sale", json={"customer_id": "walk-in", "payment_method": "cash"})
        assert res.status_code == 200
        tx = res.json()["transaction"]
        assert tx["total"] == "234.00"
        assert tx["customer_id"] is None

        assert client.get("/api/cart").json()["items"] == []
        outbox = client.get("/api/outbox").json()
        assert [m["kind"] for m in outbox["pending"]] == ["product", "transaction"]

        listed = client.get("/api/transactions").json()["transactions"]
        assert [t["id"] for t in listed] == [tx["id"]]
        receipt = client.get(f"/api/transactions/{tx['id']}/receipt").json()["receipt"]
        assert receipt["items"][0]["product"]["id"] == "p1"


def test_sale_with_empty_cart_is_400(db_path):
    client, _, _ = _client(db_path)
    with client:
        res = client.post("/api/sale", json={})
        assert res.status_code == 400
        assert res.json()["detail"] == "Cart is empty."


def test_cart_item_errors(db_path):
    client, _, _ = _client(db_path)
    with client:
        assert client.post("/api/cart/items", json={"product_id": "nope"}).status_code == 404
        assert client.put("/api/cart/items/nope", json={"quantity": 2}).status_code == 404
        assert client.delete("/api/cart/items/nope").status_code == 404
        assert client.post("/api/cart/items", json={"product_id": "p1", "quantity": 0}).status_code == 422


def test_cart_quantity_update_and_clear(db_path):
    client, _, _ = _client(db_path)
    with client:
        _seed_product(client, price="10")
        item = client.post("/api/cart/items", json={"product_id": "p1"}).json()["item"]
        res = client.put(f"/api/cart/items/{item['id']}", json={"quantity": 3})
        assert res.json()["cart"]["subtotal"] == "30"
        res = client.delete("/api/cart")
        assert res.json()["items"] == []


def test_hold_list_restore_discard(db_path):
    client, _, _ = _client(db_path)
    with client:
        res = client.post("/api/held-sales", json={})
        assert res.status_code == 400
        assert res.json()["detail"] == "Cart is empty. Add items before holding a sale."

        _seed_product(client, price="100")
        client.post("/api/cart/items", json={"product_id": "p1", "quantity": 2})
        held = client.post("/api/held-sales", json={"customer_id": "c9"}).json()["held_sale"]
        assert held["item_count"] == 1
        assert held["total"] == "200"
        assert client.get("/api/cart").json()["items"] == []

        listed = client.get("/api/held-sales").json()["held_sales"]
        assert [h["id"] for h in listed] == [held["id"]]
        one = client.get(f"/api/held-sales/{held['id']}").json()["held_sale"]
        assert one["customer_id"] == "c9"
        assert one["items"][0]["quantity"] == 2

        res = client.post(f"/api/held-sales/{held['id']}/restore")
        assert res.status_code == 200
        assert res.json()["cart"][0]["quantity"] == 2
        assert client.get("/api/held-sales").json()["held_sales"] == []
        assert client.post(f"/api/held-sales/{held['id']}/restore").status_code == 404
        assert client.delete(f"/api/held-sales/{held['id']}").status_code == 404
        assert client.get(f"/api/held-sales/{held['id']}").status_code == 404


def test_store_settings_drive_tax(db_path):
    client, _, _ = _client(db_path)
    with client:
        assert client.get("/api/settings/store").json()["settings"]["tax_rate"] == "17"
        res = client.put("/api/settings/store", json={"tax_rate": "10", "store_name": "Corner Shop"})
        assert res.status_code == 200
        assert res.json()["settings"]["store_name"] == "Corner Shop"
        assert client.put("/api/settings/store", json={"tax_rate": "150"}).status_code == 400

        _seed_product(client, price="100")
        cart = client.post("/api/cart/items", json={"product_id": "p1"}).json()["cart"]
        assert cart["tax"] == "10.00"


def test_product_and_customer_crud(db_path):
    client, _, _ = _client(db_path)
    with client:
        _seed_product(client, "p1")
        _seed_product(client, "p2")
        assert [p["id"] for p in client.get("/api/products", params={"q": "P2"}).json()["products"]] == ["p2"]
        res = client.put("/api/products/p1", json={"price": "12.5"})
        assert res.json()["product"]["price"] == "12.5"
        assert client.delete("/api/products/p2").json() == {"ok": True}
        assert client.delete("/api/products/p2").status_code == 404
        assert client.post("/api/products", json={"price": "1"}).status_code == 400

        created = client.post("/api/customers", json={"name": "Sara"}).json()["customer"]
        assert client.get("/api/customers").json()["customers"][0]["id"] == created["id"]
        assert client.put(f"/api/customers/{created['id']}", json={"phone": "0300"}).json()["customer"]["phone"] == "0300"


def test_sync_now_while_offline_reports_skip(db_path):
    client, _, _ = _client(db_path)
    with client:
        res = client.post("/api/sync/now")
        assert res.status_code == 200
        assert res.json()["result"]["skipped"] is True
        assert res.json()["result"]["reason"] == "offline"


def test_requeue_dead(db_path):
    client, service, _ = _client(db_path)
    with client:
        _seed_product(client)
        mutation = service.outbox.pending()[0]
        service.outbox.record_failure(mutation, "http 422", max_attempts=1)
        assert client.get("/api/status").json()["dead_count"] == 1
        res = client.post("/api/outbox/requeue-dead", json={})
        assert res.json() == {"requeued": 1}
        assert client.get("/api/status").json()["pending_count"] == 1
