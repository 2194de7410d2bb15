"""
System health and discovery API routes
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import Optional
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Response models
class DiscoveryStatusResponse(BaseModel):
    running: bool
    last_new_devices: Optional[int] = None
    last_existing_devices: Optional[int] = None
    last_candidates: Optional[int] = None
    last_duration_seconds: Optional[float] = None

def create_system_routes(server, config):
    """Create system monitoring routes"""
    router = APIRouter(prefix="/api", tags=["system"])

    @router.get("/system/health")
    async def system_health():
        """System health check"""
        relay_bus = server.relay_bus
        return {
            "status": "healthy",
            "fans": {
                "synchronized_count": len(server.synchronizers),
                "registered_count": len(server.registry)
            },
            "relay_bus": {
                "enabled": relay_bus is not None,
                "connected": bool(relay_bus and relay_bus.connected)
            },
            "auto_discover": config.get('auto_discover', True),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @router.get("/discovery/status", response_model=DiscoveryStatusResponse)
    async def discovery_status():
        """Summary of the most recent discovery pass"""
        last = server.last_discovery
        if last is None:
            return DiscoveryStatusResponse(running=server.discovery_running)
        return DiscoveryStatusResponse(
            running=server.discovery_running,
            last_new_devices=len(last.new_devices),
            last_existing_devices=len(last.existing_devices),
            last_candidates=last.candidates_seen,
            last_duration_seconds=last.duration_seconds
        )

    @router.post("/discovery/scan")
    async def trigger_discovery():
        """Trigger manual device discovery"""
        if server.trigger_discovery():
            logger.info("Discovery scan triggered via API")
            return {"message": "Discovery scan initiated"}
        return {"message": "Discovery scan already running"}

    return router
