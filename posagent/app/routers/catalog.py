from typing import Optional

from fastapi import APIRouter, Body, Depends

from ..deps import get_service
from ..service import SyncService

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/products")
async def list_products(q: Optional[str] = None, active_only: bool = False, service: SyncService = Depends(get_service)):
    if q:
        products = service.catalog.search_products(q)
    else:
        products = service.catalog.list_products(active_only=active_only)
    return {"products": [p.model_dump(mode="json") for p in products]}


@router.post("/products")
async def create_product(data: dict = Body(...), service: SyncService = Depends(get_service)):
    product = service.catalog.save_product("create", data)
    service.request_sync()
    return {"product": product.model_dump(mode="json")}


@router.put("/products/{product_id}")
async def update_product(product_id: str, data: dict = Body(...), service: SyncService = Depends(get_service)):
    product = service.catalog.save_product("update", {**data, "id": product_id})
    service.request_sync()
    return {"product": product.model_dump(mode="json")}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, service: SyncService = Depends(get_service)):
    service.catalog.save_product("delete", {"id": product_id})
    service.request_sync()
    return {"ok": True}


@router.get("/customers")
async def list_customers(service: SyncService = Depends(get_service)):
    return {"customers": [c.model_dump(mode="json") for c in service.catalog.list_customers()]}


@router.post("/customers")
async def create_customer(data: dict = Body(...), service: SyncService = Depends(get_service)):
    customer = service.catalog.save_customer("create", data)
    service.request_sync()
    return {"customer": customer.model_dump(mode="json")}


@router.put("/customers/{customer_id}")
async def update_customer(customer_id: str, data: dict = Body(...), service: SyncService = Depends(get_service)):
    customer = service.catalog.save_customer("update", {**data, "id": customer_id})
    service.request_sync()
    return {"customer": customer.model_dump(mode="json")}


@router.delete("/customers/{customer_id}")
async def delete_customer(customer_id: str, service: SyncService = Depends(get_service)):
    service.catalog.save_customer("delete", {"id": customer_id})
    service.request_sync()
    return {"ok": True}
