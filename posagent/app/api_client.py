"""
Thin JSON client for the upstream POS REST API.

Only the calls the agent needs: reference-data lists for hydration, transaction create/read,
and product/customer CRUD for replayed mutations. Every mutating call can carry an
Idempotency-Key header so a replay after a lost acknowledgement is safe on the server.
"""

import http.client
import json
import socket
import time
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import quote

from .errors import NetworkError, RemoteRejected


class RemoteApi:
    def __init__(self, base_url: str, timeout: float = 10.0, headers: Optional[dict] = None):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.timeout = max(0.2, float(timeout or 10.0))
        self.headers = dict(headers or {})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        payload=None,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        if not self.base_url:
            raise NetworkError("missing api_base_url")
        data = None
        headers = {"Accept": "application/json", **self.headers}
        if payload is not None:
            data = json.dumps(payload, default=str).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        req = urllib.request.Request(self._url(path), data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=timeout or self.timeout) as resp:
                body = resp.read().decode("utf-8") if resp else ""
        except urllib.error.HTTPError as ex:
            # Server responded with a non-2xx status. Capture the body if possible.
            try:
                err_body = ex.read().decode("utf-8")
            except Exception:
                err_body = ""
            raise RemoteRejected(getattr(ex, "code", 0) or 0, err_body, str(getattr(ex, "reason", "") or "")) from ex
        except (urllib.error.URLError, socket.timeout, http.client.HTTPException, OSError) as ex:
            raise NetworkError(f"{method} {path}: {getattr(ex, 'reason', ex)}") from ex
        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError:
            return {"raw": body}

    def health(self, timeout: Optional[float] = None) -> dict:
        started = time.time()
        data = self._request("GET", "/health", timeout=timeout)
        lat = int((time.time() - started) * 1000)
        return {"ok": bool((data or {}).get("ok", True)) if isinstance(data, dict) else True, "latency_ms": lat}

    def list_products(self) -> list:
        return _as_list(self._request("GET", "/products"), "products", "/products")

    def list_customers(self) -> list:
        return _as_list(self._request("GET", "/customers"), "customers", "/customers")

    def create_transaction(self, transaction: dict, items: list, idempotency_key: Optional[str] = None) -> dict:
        return self._request(
            "POST",
            "/transactions",
            {"transaction": transaction, "items": items},
            idempotency_key=idempotency_key,
        )

    def get_transaction(self, transaction_id: str) -> dict:
        return self._request("GET", f"/transactions/{quote(str(transaction_id))}")

    def create_product(self, product: dict, idempotency_key: Optional[str] = None) -> dict:
        return self._request("POST", "/products", product, idempotency_key=idempotency_key)

    def update_product(self, product: dict, idempotency_key: Optional[str] = None) -> dict:
        return self._request("PUT", f"/products/{quote(str(product['id']))}", product, idempotency_key=idempotency_key)

    def delete_product(self, product_id: str, idempotency_key: Optional[str] = None) -> dict:
        return self._request("DELETE", f"/products/{quote(str(product_id))}", idempotency_key=idempotency_key)

    def create_customer(self, customer: dict, idempotency_key: Optional[str] = None) -> dict:
        return self._request("POST", "/customers", customer, idempotency_key=idempotency_key)

    def update_customer(self, customer: dict, idempotency_key: Optional[str] = None) -> dict:
        return self._request("PUT", f"/customers/{quote(str(customer['id']))}", customer, idempotency_key=idempotency_key)

    def delete_customer(self, customer_id: str, idempotency_key: Optional[str] = None) -> dict:
        return self._request("DELETE", f"/customers/{quote(str(customer_id))}", idempotency_key=idempotency_key)


def _as_list(res, key: str, path: str) -> list:
    # Accept both a bare JSON array and {"<key>": [...]}. Anything else (a captive portal
    # login page, a proxy error, an empty body) is not a catalog and must not be treated
    # as "the server has no rows".
    if isinstance(res, list):
        return res
    if isinstance(res, dict):
        rows = res.get(key)
        if isinstance(rows, list):
            return rows
    preview = res.get("raw", "") if isinstance(res, dict) else ""
    raise NetworkError(f"GET {path}: unexpected response body {str(preview)[:200]!r}")
