from fastapi import HTTPException, Request

from .service import SyncService


def get_service(request: Request) -> SyncService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="agent is starting")
    return service
