from fastapi import APIRouter, Body, Depends

from ..deps import get_service
from ..service import SyncService

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/store")
async def get_store_settings(service: SyncService = Depends(get_service)):
    return {"settings": service.store_settings().model_dump(mode="json")}


@router.put("/store")
async def update_store_settings(data: dict = Body(...), service: SyncService = Depends(get_service)):
    return {"settings": service.update_store_settings(data).model_dump(mode="json")}
