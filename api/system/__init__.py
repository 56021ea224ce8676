"""System endpoints: gateway configuration and health."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auth import require_admin
from system import SystemManager
from ..deps import get_system_manager, http_error

# Create router
router = APIRouter(tags=["System"])

class InitializeRequest(BaseModel):
    """Request model for pointing the service at gateway URLs."""
    payment_service_url: str
    shipment_service_url: str

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    database_status: str

@router.post("/initialize", dependencies=[Depends(require_admin)])
async def initialize(
    request: InitializeRequest,
    manager: SystemManager = Depends(get_system_manager)
):
    """Store the gateway URLs used by every later request; needs the admin token."""
    try:
        return await manager.initialize(
            payment_service_url=request.payment_service_url,
            shipment_service_url=request.shipment_service_url
        )
    except Exception as e:
        raise http_error(e)

@router.get("/system/health", response_model=SystemHealth)
async def get_system_health(manager: SystemManager = Depends(get_system_manager)):
    """Get system health status."""
    try:
        return await manager.health()
    except Exception as e:
        raise http_error(e)
