from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_service
from ..service import SyncService

router = APIRouter(prefix="/api", tags=["sync"])


class RequeueIn(BaseModel):
    mutation_id: Optional[str] = None


@router.get("/status")
async def status(service: SyncService = Depends(get_service)):
    return service.status()


@router.post("/sync/now")
async def sync_now(service: SyncService = Depends(get_service)):
    result = await service.sync_now()
    return {"result": result.to_dict(), "status": service.status()}


@router.post("/hydrate/now")
async def hydrate_now(service: SyncService = Depends(get_service)):
    result = await service.hydrate_now()
    return {"result": result.to_dict()}


@router.get("/outbox")
async def list_outbox(service: SyncService = Depends(get_service)):
    return {
        "pending": [m.model_dump(mode="json") for m in service.outbox.pending()],
        "dead": [m.model_dump(mode="json") for m in service.outbox.list_dead()],
    }


@router.post("/outbox/requeue-dead")
async def requeue_dead(data: Optional[RequeueIn] = None, service: SyncService = Depends(get_service)):
    n = service.outbox.requeue_dead((data.mutation_id if data else None) or None)
    if n:
        service.request_sync()
    return {"requeued": n}
