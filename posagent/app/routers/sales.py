from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_service
from ..service import SyncService

router = APIRouter(prefix="/api", tags=["sales"])


class SaleIn(BaseModel):
    customer_id: Optional[str] = None
    payment_method: str = "cash"
    user_id: Optional[str] = None


@router.post("/sale")
async def complete_sale(data: SaleIn, service: SyncService = Depends(get_service)):
    tx = service.complete_sale(customer_id=data.customer_id, payment_method=data.payment_method, user_id=data.user_id)
    return {"transaction": tx.model_dump(mode="json"), "queued": True}


@router.get("/transactions")
async def list_transactions(limit: int = 50, service: SyncService = Depends(get_service)):
    limit = max(1, min(limit, 500))
    return {"transactions": [t.model_dump(mode="json") for t in service.sales.list_transactions(limit=limit)]}


@router.get("/transactions/{transaction_id}/receipt")
async def receipt(transaction_id: str, service: SyncService = Depends(get_service)):
    return {"receipt": await service.receipt(transaction_id)}
