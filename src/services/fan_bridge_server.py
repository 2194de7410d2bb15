"""
Fan Bridge Server - Main orchestrator: discovery, registry bridge,
per-fan synchronizers and the local HTTP API
"""

import asyncio
import logging
from typing import Dict, Optional

import uvicorn

from config_loader import load_config, setup_logging
from discovery.manager import FanDiscovery
from discovery.models import DiscoveryEvent, DiscoveryResult, ExistingDevice, NewDevice
from fan_client import FanClient
from registry.manager import AccessoryRegistry
from registry.models import FanRecord
from relay_bus import RelayBus
from services.fan_synchronizer import FanSynchronizer
from api.main_api import FanAPI

logger = logging.getLogger(__name__)


class FanBridgeServer:
    """Main server orchestrating discovery and fan synchronization"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None,
                 registry: Optional[AccessoryRegistry] = None, client: Optional[FanClient] = None,
                 discovery: Optional[FanDiscovery] = None, relay_bus: Optional[RelayBus] = None):
        if config is None:
            config = load_config(config_path)
            setup_logging(config)
        self.config = config

        # A malformed broker URL is fatal here rather than retried later
        self.relay_bus = relay_bus
        if self.relay_bus is None and self.config.get('mqtt_url'):
            self.relay_bus = RelayBus(self.config['mqtt_url'])

        # Explicit None checks: an empty registry is falsy
        if registry is None:
            registry = AccessoryRegistry(self.config['registry']['cache_file'])
        if client is None:
            client = FanClient(self.config['network']['request_timeout'],
                               self.config['network'].get('connect_timeout', 2))
        if discovery is None:
            discovery = FanDiscovery(self.config, registry, client)
        self.registry = registry
        self.client = client
        self.discovery = discovery

        self.synchronizers: Dict[str, FanSynchronizer] = {}
        self.api = FanAPI(self, self.config)

        self.running = False
        self.tasks = []
        self.last_discovery: Optional[DiscoveryResult] = None
        self._discovery_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._api_server: Optional[uvicorn.Server] = None
        self._stopped = False

    async def start(self):
        """Start all services and block until stopped"""
        logger.info("Starting Modern Forms fan bridge...")
        self._stop_event = asyncio.Event()

        try:
            await self.registry.initialize()

            if self.relay_bus is not None:
                await self.relay_bus.connect()

            self.running = True
            initial_discovery = asyncio.create_task(self.run_discovery())
            self.tasks.append(initial_discovery)
            try:
                await initial_discovery
            except asyncio.CancelledError:
                if self._stopped:
                    logger.info("Initial discovery cancelled by shutdown")
                    return
                raise
            finally:
                if initial_discovery in self.tasks:
                    self.tasks.remove(initial_discovery)

            if self._stopped:
                return

            interval = self.config['network'].get('rediscovery_interval_minutes', 0)
            if interval and interval > 0:
                self.tasks.append(asyncio.create_task(self._discovery_service(interval * 60)))

            logger.info(f"Fan bridge running with {len(self.synchronizers)} fans")

            if self.config['api'].get('enabled', True):
                await self._start_api_server()
            else:
                await self._stop_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop all services gracefully"""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping server...")
        self.running = False

        for synchronizer in list(self.synchronizers.values()):
            await synchronizer.stop()
        self.synchronizers.clear()

        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await self.registry.close()

        if self.relay_bus is not None:
            await self.relay_bus.disconnect()

        if self._api_server is not None:
            self._api_server.should_exit = True
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Server stopped")

    # ================== DISCOVERY ==================

    @property
    def discovery_running(self) -> bool:
        return self._discovery_lock.locked()

    async def run_discovery(self) -> DiscoveryResult:
        """One discovery pass; concurrent triggers are serialized"""
        async with self._discovery_lock:
            result = await self.discovery.discover(on_device=self.handle_discovery_event)
            self.last_discovery = result
            return result

    def trigger_discovery(self) -> bool:
        """Start discovery in the background unless one is already running"""
        if self._discovery_lock.locked():
            return False
        task = asyncio.create_task(self.run_discovery())
        self.tasks.append(task)
        task.add_done_callback(self._forget_task)
        return True

    def _forget_task(self, task: asyncio.Task):
        if task in self.tasks:
            self.tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background discovery failed: {task.exception()}")

    async def _discovery_service(self, interval_seconds: float):
        """Background service for periodic rediscovery"""
        logger.info(f"Discovery service started (every {interval_seconds / 60} minutes)")

        while self.running:
            await asyncio.sleep(interval_seconds)
            if not self.running:
                break
            try:
                logger.info("Running periodic discovery...")
                await self.run_discovery()
            except Exception as e:
                logger.error(f"Discovery service error: {e}")

    async def handle_discovery_event(self, event: DiscoveryEvent):
        if self._stopped:
            logger.debug(f"Ignoring {event.client_id} found after shutdown")
            return
        if isinstance(event, NewDevice):
            await self._add_new_device(event)
        elif isinstance(event, ExistingDevice):
            await self._restore_existing_device(event)

    async def _add_new_device(self, event: NewDevice):
        logger.info(f"Adding new accessory: {event.client_id}")
        record = self._build_record(event)
        if event.uuid in self.registry:
            # Same fan answered on two addresses within one pass
            record = await self.registry.rebind_existing_device(event.uuid, record)
        else:
            record = await self.registry.register_new_device(event.uuid, record)
        await self._start_synchronizer(record)

    async def _restore_existing_device(self, event: ExistingDevice):
        logger.info(f"Restoring existing accessory from cache: {event.client_id}")
        record = self._build_record(event, event.prior_record)
        record = await self.registry.rebind_existing_device(event.uuid, record)
        await self._start_synchronizer(record)

    def _build_record(self, event: DiscoveryEvent, prior: Optional[FanRecord] = None) -> FanRecord:
        candidate = event.candidate
        return FanRecord(
            uuid=event.uuid,
            client_id=event.client_id,
            ip=candidate.ip,
            light=candidate.light,
            switch_id=candidate.switch_id,
            last_state=prior.last_state if prior else None
        )

    async def _start_synchronizer(self, record: FanRecord):
        """Start a synchronizer for the record, or rebind the running one"""
        if self._stopped:
            return

        current = self.synchronizers.get(record.uuid)
        if current is not None:
            # State and any staged push carry over to the new address
            current.rebind(record)
            return

        synchronizer = FanSynchronizer(
            record,
            self.client,
            relay_bus=self.relay_bus,
            polling_interval=self.config['polling_interval_seconds'],
            debounce_seconds=self.config['sync']['push_debounce_ms'] / 1000,
            on_state=self.registry.update_state
        )
        self.synchronizers[record.uuid] = synchronizer
        await synchronizer.start()

    async def remove_device(self, uuid: str) -> bool:
        """Tear down the synchronizer and drop the registry record"""
        synchronizer = self.synchronizers.pop(uuid, None)
        if synchronizer is not None:
            await synchronizer.stop()
        return await self.registry.remove_device(uuid)

    # ================== API SERVER ==================

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        self._api_server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        logger.info(f"API documentation: http://localhost:{self.config['api']['port']}/docs")

        await self._api_server.serve()
