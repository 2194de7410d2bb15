"""
Candidate address producers: cached records, configured fans and subnet scan
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Iterable, Optional

from exceptions import NoInterfaceError
from network.probe import NetworkProbe, compute_subnet
from .models import AddressCandidate

logger = logging.getLogger(__name__)


async def cached_candidates(records: Iterable) -> AsyncIterator[AddressCandidate]:
    """One candidate per previously registered record"""
    for record in records:
        logger.debug(f"Found potential IP address from cached devices: {record.ip}")
        yield AddressCandidate(
            ip=record.ip,
            light=bool(record.light),
            switch_id=record.switch_id,
            source="cache"
        )


async def configured_candidates(fans: Iterable[Dict]) -> AsyncIterator[AddressCandidate]:
    """Statically configured fans, verbatim"""
    for fan in fans:
        logger.debug(f"Found potential IP address from config: {fan['ip']}")
        yield AddressCandidate(
            ip=fan['ip'],
            light=bool(fan.get('light', False)),
            switch_id=fan.get('switch_id'),
            source="config"
        )


class NetworkCandidateSource:
    """Scans the local subnet for hosts with the fan vendor's MAC prefix"""

    def __init__(self, probe: NetworkProbe, config: Dict, auto_discover: bool = True):
        self.probe = probe
        self.auto_discover = auto_discover
        self.probe_timeout_ms = config.get('probe_timeout_ms', 1000)
        self.scan_concurrency = max(1, config.get('scan_concurrency', 32))
        self.oui_prefix = config.get('oui_prefix', 'C8:93:46').upper()
        self.fallback_address = config.get('fallback_address', '192.168.0.1')
        self.fallback_netmask = config.get('fallback_netmask', '255.255.255.0')

    def local_subnet(self) -> str:
        interface = self.probe.active_interface()
        return compute_subnet(interface.address or self.fallback_address,
                              interface.netmask or self.fallback_netmask)

    async def candidates(self) -> AsyncIterator[AddressCandidate]:
        if not self.auto_discover:
            logger.debug("Auto discovery disabled - skipping network scan")
            return

        try:
            subnet = self.local_subnet()
        except NoInterfaceError as e:
            logger.warning(f"Network scan skipped: {e}")
            return

        logger.debug(f"Searching network {subnet} for Modern Forms fans")

        ip_iter = iter(self.probe.enumerate_subnet(subnet))
        pending = set()
        exhausted = False

        try:
            while True:
                # Keep a bounded window of in-flight checks over the lazy host list
                while not exhausted and len(pending) < self.scan_concurrency:
                    ip = next(ip_iter, None)
                    if ip is None:
                        exhausted = True
                        break
                    pending.add(asyncio.ensure_future(self._check_host(ip)))

                if not pending:
                    break

                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    candidate = task.result()
                    if candidate is not None:
                        logger.debug(f"Found potential IP address from network and filtering by MAC vendor: {candidate.ip}")
                        yield candidate
        finally:
            for task in pending:
                task.cancel()

    async def _check_host(self, ip: str) -> Optional[AddressCandidate]:
        """Reachable and vendor MAC match; any failure excludes the host"""
        try:
            if not await self.probe.probe(ip, self.probe_timeout_ms):
                return None
            mac = await self.probe.resolve_mac(ip)
        except Exception as e:
            logger.debug(f"Host check failed for {ip}: {e}")
            return None

        if not mac or not mac.upper().startswith(self.oui_prefix):
            return None
        return AddressCandidate(ip=ip, light=True, switch_id=None, source="network")
