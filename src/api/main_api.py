"""
Local HTTP API for the Modern Forms fan bridge
Provides REST endpoints for fan control and discovery monitoring
"""

from fastapi import FastAPI
from typing import Dict
import logging

from .fan_routes import create_fan_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)


class FanAPI:
    """Local HTTP API for fan control and discovery"""

    def __init__(self, server, config: Dict):
        self.server = server
        self.config = config
        self.app = FastAPI(
            title="Modern Forms Fan Bridge",
            description="Local API for fan control and discovery",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        self.app.include_router(create_system_routes(self.server, self.config))
        self.app.include_router(create_fan_routes(self.server))
