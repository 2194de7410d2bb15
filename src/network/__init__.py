"""
Network module for local subnet probing
"""

from .probe import NetworkProbe, InterfaceInfo, compute_subnet, enumerate_subnet, normalize_mac

__all__ = ['NetworkProbe', 'InterfaceInfo', 'compute_subnet', 'enumerate_subnet', 'normalize_mac']
