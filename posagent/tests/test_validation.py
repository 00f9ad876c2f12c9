import pytest
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from posagent.app.config import Settings
from posagent.app.models import Transaction, pending_mutation_adapter
from posagent.app.validation import CustomerRef, Money, MutationAction, PaymentMethod


class _M(BaseModel):
    method: PaymentMethod
    action: MutationAction
    amount: Money
    customer: CustomerRef = None


def test_validation_types_normalize():
    m = _M(method=" Card ", action="CREATE", amount=" 12.50 ", customer="walk-in")
    assert m.method == "card"
    assert m.action == "create"
    assert str(m.amount) == "12.50"
    assert m.customer is None
    assert _M(method="cash", action="delete", amount="", customer=" c1 ").customer == "c1"


def test_payment_method_rejects_internal_spaces():
    with pytest.raises(SchemaError):
        _M(method="cash money", action="create", amount="1")


def test_money_rejects_garbage_and_bools():
    with pytest.raises(SchemaError):
        _M(method="cash", action="create", amount="12,50")
    with pytest.raises(SchemaError):
        _M(method="cash", action="create", amount=True)


def test_unknown_mutation_kind_is_rejected():
    with pytest.raises(SchemaError):
        pending_mutation_adapter.validate_python({"kind": "invoice", "payload": {}})


def test_transaction_defaults():
    tx = Transaction(transaction_number="TXN-1", subtotal="1", tax="0.17", total="1.17")
    assert tx.payment_status == "completed"
    assert tx.synced is False
    assert tx.id


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("POS_API_BASE_URL", "http://cloud.test/api/")
    monkeypatch.setenv("POS_SYNC_INTERVAL_SECONDS", "nope")
    monkeypatch.setenv("POS_SYNC_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("POS_DEVICE_ID", "till-1")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, ,http://b.test")
    s = Settings.from_env()
    assert s.api_base_url == "http://cloud.test/api"
    assert s.sync_interval_seconds == 30
    assert s.sync_max_attempts == 5
    assert s.device_headers() == {"X-Device-Id": "till-1"}
    assert s.cors_origins == ["http://a.test", "http://b.test"]
