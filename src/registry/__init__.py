"""
Registry module for known fan identities
"""

from .manager import AccessoryRegistry
from .models import FanRecord

__all__ = ['AccessoryRegistry', 'FanRecord']
