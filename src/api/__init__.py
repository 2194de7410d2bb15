"""
API module for fan control and monitoring
"""

from .main_api import FanAPI
from .fan_routes import create_fan_routes
from .system_routes import create_system_routes

__all__ = ['FanAPI', 'create_fan_routes', 'create_system_routes']
