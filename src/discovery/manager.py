"""
Discovery pipeline - merges candidate sources in priority order,
deduplicates by address, verifies each candidate and classifies it
against the known accessory registry
"""

import asyncio
import inspect
import logging
import time
from typing import AsyncIterator, Callable, Dict, List, Optional, Set

from exceptions import FanRequestError, VerificationFailure
from fan_client import FanClient
from network.probe import NetworkProbe
from .models import (
    AddressCandidate,
    DiscoveryEvent,
    DiscoveryResult,
    ExistingDevice,
    NewDevice,
    VerifiedDevice,
)
from .sources import NetworkCandidateSource, cached_candidates, configured_candidates

logger = logging.getLogger(__name__)


class FanDiscovery:
    """Main discovery service for Modern Forms fans"""

    def __init__(self, config: Dict, registry, client: Optional[FanClient] = None,
                 probe: Optional[NetworkProbe] = None):
        self.config = config
        self.registry = registry
        network_config = config.get('network', {})
        if client is None:
            client = FanClient(network_config.get('request_timeout', 5), network_config.get('connect_timeout', 2))
        self.client = client
        self.probe = probe if probe is not None else NetworkProbe()
        self.verify_concurrency = max(1, network_config.get('verify_concurrency', 10))
        self.network_source = NetworkCandidateSource(
            self.probe,
            network_config,
            auto_discover=config.get('auto_discover', True)
        )

    def candidate_sources(self) -> List[AsyncIterator[AddressCandidate]]:
        """Producers in fixed priority order: cached, configured, network"""
        return [
            cached_candidates(self.registry.list_cached_records()),
            configured_candidates(self.config.get('fans', [])),
            self.network_source.candidates(),
        ]

    async def unique_candidates(self) -> AsyncIterator[AddressCandidate]:
        """Concatenate all sources, first occurrence of each ip wins"""
        seen: Set[str] = set()
        for source in self.candidate_sources():
            async for candidate in source:
                if candidate.ip in seen:
                    logger.debug(f"Skipping duplicate candidate {candidate.ip} from {candidate.source}")
                    continue
                seen.add(candidate.ip)
                yield candidate

    async def discover(self, on_device: Optional[Callable[[DiscoveryEvent], object]] = None) -> DiscoveryResult:
        """
        Run one discovery pass. Verification starts as soon as each candidate
        is produced; on_device (sync or async) is invoked once per verified fan
        in completion order.
        """
        logger.info("Looking for Modern Forms devices on network")
        start_time = time.time()
        result = DiscoveryResult()
        semaphore = asyncio.Semaphore(self.verify_concurrency)
        tasks = []

        async def verify_and_emit(candidate: AddressCandidate):
            async with semaphore:
                device = await self.verify(candidate)
            if device is None:
                return

            event = self.classify(device, candidate)
            if isinstance(event, NewDevice):
                result.new_devices.append(event)
            else:
                result.existing_devices.append(event)

            if on_device is not None:
                try:
                    outcome = on_device(event)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.error(f"Failed to handle discovered device {device.identity} ({device.ip}): {e}")

        try:
            async for candidate in self.unique_candidates():
                result.candidates_seen += 1
                tasks.append(asyncio.create_task(verify_and_emit(candidate)))

            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        result.devices_tested = len(tasks)
        result.duration_seconds = time.time() - start_time
        logger.info(f"Discovery complete: {len(result.new_devices)} new, {len(result.existing_devices)} existing "
                    f"from {result.candidates_seen} candidates in {result.duration_seconds:.1f}s")
        return result

    async def verify(self, candidate: AddressCandidate) -> Optional[VerifiedDevice]:
        """Handshake with the candidate; None when it is not a fan"""
        try:
            client_id = await self._identify(candidate.ip)
        except VerificationFailure as e:
            logger.debug(f"No fan at {candidate.ip}: {e}")
            return None

        logger.info(f"Found device at {candidate.ip} with client ID of {client_id}")
        return VerifiedDevice.from_candidate(candidate, client_id)

    async def _identify(self, ip: str) -> str:
        try:
            status = await self.client.query_status(ip)
        except FanRequestError as e:
            raise VerificationFailure(str(e)) from e

        client_id = status.get('clientId')
        if not isinstance(client_id, str) or not client_id:
            raise VerificationFailure(f"{ip} returned no client ID")
        return client_id

    def classify(self, device: VerifiedDevice, candidate: AddressCandidate) -> DiscoveryEvent:
        prior_record = self.registry.get(device.uuid)
        if prior_record is None:
            return NewDevice(uuid=device.uuid, candidate=candidate, client_id=device.identity)
        return ExistingDevice(uuid=device.uuid, candidate=candidate, client_id=device.identity,
                              prior_record=prior_record)
