from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_service
from ..errors import NotFound
from ..held_sales import held_sale_summary
from ..service import SyncService

router = APIRouter(prefix="/api/held-sales", tags=["held-sales"])


class HoldIn(BaseModel):
    customer_id: Optional[str] = None
    payment_method: str = "cash"


@router.get("")
async def list_held_sales(service: SyncService = Depends(get_service)):
    return {"held_sales": [held_sale_summary(s) for s in service.held_sales.list()]}


@router.post("")
async def hold_sale(data: Optional[HoldIn] = None, service: SyncService = Depends(get_service)):
    data = data or HoldIn()
    sale = service.held_sales.hold(customer_id=data.customer_id, payment_method=data.payment_method)
    return {"held_sale": held_sale_summary(sale)}


@router.get("/{held_id}")
async def get_held_sale(held_id: str, service: SyncService = Depends(get_service)):
    sale = service.held_sales.get(held_id)
    if sale is None:
        raise NotFound(f"held sale not found: {held_id}")
    return {"held_sale": held_sale_summary(sale)}


@router.post("/{held_id}/restore")
async def restore_held_sale(held_id: str, service: SyncService = Depends(get_service)):
    sale = service.held_sales.restore(held_id)
    return {"held_sale": held_sale_summary(sale), "cart": [i.model_dump(mode="json") for i in service.cart.items()]}


@router.delete("/{held_id}")
async def discard_held_sale(held_id: str, service: SyncService = Depends(get_service)):
    service.held_sales.discard(held_id)
    return {"ok": True}
