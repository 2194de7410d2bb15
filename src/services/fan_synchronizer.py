"""
Fan synchronizer - keeps one fan's state in step with the physical device
through periodic polling and debounced update pushes
"""

import asyncio
import json
import logging
import math
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from discovery.models import NUMBER_OF_FAN_SPEEDS, DeviceState
from exceptions import FanRequestError, PollFailure, PushFailure
from fan_client import FanClient
from registry.models import FanRecord
from relay_bus import relay_led_topic, relay_status_topic

logger = logging.getLogger(__name__)

PUSH_DEBOUNCE_SECONDS = 0.5

Listener = Callable[[str, Any], None]


def percentage_to_speed(percentage: float, speeds: int = NUMBER_OF_FAN_SPEEDS) -> int:
    """Rotation percentage to discrete speed, rounding half up"""
    speed = math.floor(percentage / 100 * speeds + 0.5)
    return max(0, min(speeds, speed))


def speed_to_percentage(speed: int, speeds: int = NUMBER_OF_FAN_SPEEDS) -> float:
    return speed * 100 / speeds


def rotation_speed_step(speeds: int = NUMBER_OF_FAN_SPEEDS) -> float:
    """Largest step (3 decimals) that never overshoots a discrete speed"""
    return math.floor(100 / speeds * 1000) / 1000


class FanSynchronizer:
    """Owns the state of a single fan for the lifetime of its registration"""

    def __init__(self, record: FanRecord, client: FanClient, relay_bus=None,
                 polling_interval: float = 15,
                 debounce_seconds: float = PUSH_DEBOUNCE_SECONDS,
                 on_state: Optional[Callable[[str, DeviceState], None]] = None):
        self.uuid = record.uuid
        self.client_id = record.client_id
        self.ip = record.ip
        self.light = record.light
        self.switch_id = record.switch_id
        self.client = client
        self.relay_bus = relay_bus
        self.polling_interval = polling_interval
        self.debounce_seconds = debounce_seconds
        self.on_state = on_state

        if record.last_state is not None:
            self.state = replace(record.last_state, client_id=record.client_id)
        else:
            self.state = DeviceState(client_id=record.client_id)

        self._lock = asyncio.Lock()
        self._listeners: List[Listener] = []
        self._push_handle: Optional[asyncio.TimerHandle] = None
        self._push_tasks: set = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._polling = False
        self._pushing = False
        self.running = False

    def log(self, message: str, level: int = logging.INFO):
        logger.log(level, f"[{self.ip}] {message}")

    @property
    def phase(self) -> str:
        """idle, polling, staged or pushing"""
        if self._pushing:
            return "pushing"
        if self._push_handle is not None:
            return "staged"
        if self._polling:
            return "polling"
        return "idle"

    # ================== LIFECYCLE ==================

    async def start(self):
        """Bind the relay and start polling immediately, then every interval"""
        if self.running:
            return
        self.running = True

        self._bind_relay()
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self):
        """Tear down timers, in-flight requests and the relay subscription"""
        self.running = False

        if self._push_handle is not None:
            self._push_handle.cancel()
            self._push_handle = None

        tasks = [task for task in self._push_tasks if not task.done()]
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._unbind_relay()

    def rebind(self, record: FanRecord):
        """Point a running synchronizer at a rediscovered address.

        State, the pending push timer and in-flight requests are kept; only
        the relay subscription is swapped when the relay id changed.
        """
        if record.ip != self.ip:
            self.log(f"Fan {self.client_id} moved to {record.ip}")
        relay_changed = record.switch_id != self.switch_id
        if relay_changed and self.running:
            self._unbind_relay()

        self.ip = record.ip
        self.client_id = record.client_id
        self.light = record.light
        self.switch_id = record.switch_id

        if relay_changed and self.running:
            self._bind_relay()

    def _bind_relay(self):
        if not self.switch_id:
            return
        if self.relay_bus is None:
            self.log(f"Relay {self.switch_id} configured but no MQTT broker - relay binding skipped",
                     logging.WARNING)
            return
        self.relay_bus.subscribe(relay_status_topic(self.switch_id), self._on_relay_message)

    def _unbind_relay(self):
        if self.switch_id and self.relay_bus is not None:
            self.relay_bus.unsubscribe(relay_status_topic(self.switch_id), self._on_relay_message)

    async def _poll_loop(self):
        while self.running:
            try:
                await self.poll()
            except Exception as e:
                self.log(f"Polling error: {e}", logging.ERROR)
            await asyncio.sleep(self.polling_interval)

    # ================== POLL / PUSH ==================

    async def poll(self) -> bool:
        """One status request; state is only replaced on success"""
        async with self._lock:
            self._polling = True
            try:
                self.log(f"Requesting updates from {self.client_id}...", logging.DEBUG)
                state = await self._fetch(self.client.query_status(self.ip), PollFailure)
            except PollFailure as e:
                self.log(f"Failed to get status of {self.client_id}: {e}")
                return False
            finally:
                self._polling = False

            self.update_states(state)
            return True

    async def push(self) -> bool:
        """Send the full current state; the response is applied like a poll"""
        async with self._lock:
            self._pushing = True
            try:
                self.log(f"Sending update to {self.client_id}...")
                state = await self._fetch(self.client.request(self.ip, self.state.to_request()), PushFailure)
            except PushFailure as e:
                self.log(f"Failed to update fan states: {e}", logging.WARNING)
                return False
            finally:
                self._pushing = False

            self.update_states(state)
            return True

    async def _fetch(self, request, failure) -> DeviceState:
        try:
            data = await request
            return DeviceState.from_payload(data)
        except (FanRequestError, KeyError, TypeError, ValueError) as e:
            raise failure(str(e)) from e

    def send_update(self):
        """Stage a push; each call restarts the debounce window"""
        if self._push_handle is not None:
            self._push_handle.cancel()

        self.log(f"Staging update to {self.client_id}...", logging.DEBUG)
        loop = asyncio.get_running_loop()
        self._push_handle = loop.call_later(self.debounce_seconds, self._fire_push)

    def _fire_push(self):
        self._push_handle = None
        task = asyncio.ensure_future(self.push())
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    def update_states(self, state: DeviceState):
        self.log(f"Updating states for {self.client_id}: {json.dumps(state.to_dict())}", logging.DEBUG)
        self.state = state

        for name, value in self.characteristics().items():
            self._notify(name, value)
        self.update_led()

        if self.on_state is not None:
            try:
                self.on_state(self.uuid, replace(state))
            except Exception as e:
                self.log(f"State callback failed: {e}", logging.ERROR)

    def update_led(self):
        """Mirror fan power onto the relay indicator"""
        if not self.switch_id or self.relay_bus is None:
            return
        self.relay_bus.publish(relay_led_topic(self.switch_id), "ON" if self.state.fan_on else "OFF")

    def _on_relay_message(self, topic: str, payload: bytes):
        try:
            data = json.loads(payload)
        except ValueError as e:
            self.log(f"Ignoring unparseable message on {topic}: {e}", logging.WARNING)
            return

        self.log(f"Message: {json.dumps(data)}", logging.DEBUG)
        button = data.get("Button1") if isinstance(data, dict) else None
        if isinstance(button, dict) and button.get("Action") == "SINGLE":
            self.log("Toggle fan on from MQTT")
            self.state.fan_on = not self.state.fan_on
            self.send_update()

    # ================== PRESENTATION ==================

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, name: str, value: Any):
        for listener in list(self._listeners):
            try:
                listener(name, value)
            except Exception as e:
                self.log(f"Listener for {name} failed: {e}", logging.ERROR)

    def characteristics(self) -> Dict[str, Any]:
        values = {
            "fan_on": self.state.fan_on,
            "rotation_speed": speed_to_percentage(self.state.fan_speed),
            "rotation_direction": 0 if self.state.fan_direction == 'forward' else 1,
        }
        if self.light:
            values["light_on"] = self.state.light_on
            values["brightness"] = self.state.light_brightness
        return values

    # ================== FAN GETTERS / SETTERS ==================

    def get_fan_on(self) -> bool:
        return self.state.fan_on

    def set_fan_on(self, value):
        self.log(f"Set Fan Characteristic On -> {value}")
        self.state.fan_on = bool(value)
        self.send_update()

    def set_rotation_direction(self, value):
        self.log(f"Set Fan Characteristic RotationDirection -> {value}")
        self.state.fan_direction = 'forward' if value == 0 else 'reverse'
        self.send_update()

    def set_rotation_speed(self, value):
        self.log(f"Set Fan Characteristic RotationSpeed -> {value}")
        self.state.fan_on = value > 0
        self.state.fan_speed = percentage_to_speed(value)
        self.send_update()

    # ================== LIGHT GETTERS / SETTERS ==================

    def set_light_on(self, value):
        self.log(f"Set Light Characteristic On -> {value}")
        self.state.light_on = bool(value)
        self.send_update()

    def set_brightness(self, value):
        self.log(f"Set Light Characteristic Brightness -> {value}")
        self.state.light_on = value > 0
        self.state.light_brightness = max(0, min(100, int(value)))
        self.send_update()
