"""
Fan control API routes
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import logging

from services.fan_synchronizer import rotation_speed_step

logger = logging.getLogger(__name__)

# Request models
class PowerRequest(BaseModel):
    on: bool

class SpeedRequest(BaseModel):
    percentage: float = Field(ge=0, le=100)

class DirectionRequest(BaseModel):
    direction: int = Field(ge=0, le=1)  # 0=forward, 1=reverse

class BrightnessRequest(BaseModel):
    brightness: int = Field(ge=0, le=100)

class FanResponse(BaseModel):
    uuid: str
    client_id: str
    ip_address: str
    light: bool
    switch_id: Optional[str] = None
    phase: str
    rotation_speed_step: float
    characteristics: Dict[str, Any]


def _fan_response(synchronizer) -> FanResponse:
    return FanResponse(
        uuid=synchronizer.uuid,
        client_id=synchronizer.client_id,
        ip_address=synchronizer.ip,
        light=synchronizer.light,
        switch_id=synchronizer.switch_id,
        phase=synchronizer.phase,
        rotation_speed_step=rotation_speed_step(),
        characteristics=synchronizer.characteristics()
    )


def create_fan_routes(server):
    """Create fan control routes"""
    router = APIRouter(prefix="/api", tags=["fans"])

    def _get_synchronizer(uuid: str, needs_light: bool = False):
        synchronizer = server.synchronizers.get(uuid)
        if synchronizer is None:
            raise HTTPException(status_code=404, detail="Fan not found")
        if needs_light and not synchronizer.light:
            raise HTTPException(status_code=409, detail="Fan has no light")
        return synchronizer

    @router.get("/fans")
    async def list_fans():
        """List all synchronized fans"""
        return [_fan_response(s) for s in server.synchronizers.values()]

    @router.get("/fans/{uuid}", response_model=FanResponse)
    async def get_fan(uuid: str):
        """Get current characteristics for a fan"""
        return _fan_response(_get_synchronizer(uuid))

    @router.post("/fans/{uuid}/power", response_model=FanResponse)
    async def set_fan_power(uuid: str, request: PowerRequest):
        synchronizer = _get_synchronizer(uuid)
        synchronizer.set_fan_on(request.on)
        return _fan_response(synchronizer)

    @router.post("/fans/{uuid}/speed", response_model=FanResponse)
    async def set_fan_speed(uuid: str, request: SpeedRequest):
        synchronizer = _get_synchronizer(uuid)
        synchronizer.set_rotation_speed(request.percentage)
        return _fan_response(synchronizer)

    @router.post("/fans/{uuid}/direction", response_model=FanResponse)
    async def set_fan_direction(uuid: str, request: DirectionRequest):
        synchronizer = _get_synchronizer(uuid)
        synchronizer.set_rotation_direction(request.direction)
        return _fan_response(synchronizer)

    @router.post("/fans/{uuid}/light", response_model=FanResponse)
    async def set_light_power(uuid: str, request: PowerRequest):
        synchronizer = _get_synchronizer(uuid, needs_light=True)
        synchronizer.set_light_on(request.on)
        return _fan_response(synchronizer)

    @router.post("/fans/{uuid}/brightness", response_model=FanResponse)
    async def set_light_brightness(uuid: str, request: BrightnessRequest):
        synchronizer = _get_synchronizer(uuid, needs_light=True)
        synchronizer.set_brightness(request.brightness)
        return _fan_response(synchronizer)

    @router.delete("/fans/{uuid}")
    async def remove_fan(uuid: str):
        """Stop synchronizing a fan and forget it"""
        removed = await server.remove_device(uuid)
        if not removed:
            raise HTTPException(status_code=404, detail="Fan not found")
        logger.info(f"Removed fan {uuid} via API")
        return {"uuid": uuid, "removed": True}

    return router
