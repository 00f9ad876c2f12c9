from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_service
from ..errors import NotFound
from ..service import SyncService

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(default=1, gt=0)


class CartQuantityIn(BaseModel):
    quantity: int


def _cart_view(service: SyncService) -> dict:
    items = service.cart.items()
    summary = service.cart.summary(service.store_settings().tax_rate)
    return {"items": [i.model_dump(mode="json") for i in items], **summary.to_dict()}


@router.get("")
async def get_cart(service: SyncService = Depends(get_service)):
    return _cart_view(service)


@router.post("/items")
async def add_item(data: CartItemIn, service: SyncService = Depends(get_service)):
    product = service.catalog.get_product(data.product_id)
    if product is None:
        raise NotFound(f"product not found: {data.product_id}")
    item = service.cart.add_product(product, data.quantity)
    return {"item": item.model_dump(mode="json"), "cart": _cart_view(service)}


@router.put("/items/{item_id}")
async def update_item(item_id: str, data: CartQuantityIn, service: SyncService = Depends(get_service)):
    item = service.cart.update_quantity(item_id, data.quantity)
    return {"item": item.model_dump(mode="json") if item else None, "cart": _cart_view(service)}


@router.delete("/items/{item_id}")
async def remove_item(item_id: str, service: SyncService = Depends(get_service)):
    service.cart.remove(item_id)
    return _cart_view(service)


@router.delete("")
async def clear_cart(service: SyncService = Depends(get_service)):
    service.cart.clear()
    return _cart_view(service)
