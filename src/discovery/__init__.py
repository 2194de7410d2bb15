"""
Discovery module for fan device discovery
"""

from .models import (
    AddressCandidate,
    DeviceState,
    DiscoveryResult,
    ExistingDevice,
    NewDevice,
    VerifiedDevice,
    generate_uuid,
)
from .sources import NetworkCandidateSource, cached_candidates, configured_candidates
from .manager import FanDiscovery

__all__ = ['FanDiscovery', 'AddressCandidate', 'DeviceState', 'DiscoveryResult', 'ExistingDevice',
           'NewDevice', 'VerifiedDevice', 'generate_uuid', 'NetworkCandidateSource',
           'cached_candidates', 'configured_candidates']
