"""Test doubles for the fan client, network probe and relay bus."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from exceptions import FanRequestError, NoInterfaceError
from network.probe import InterfaceInfo, enumerate_subnet


class FakeFanClient:
    """In-memory stand-in for FanClient; each ip maps to a simulated fan"""

    def __init__(self, fans: dict[str, dict[str, Any]] | None = None, delay: float = 0.0):
        self.fans = {ip: dict(state) for ip, state in (fans or {}).items()}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def request(self, ip: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((ip, copy.deepcopy(payload)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if ip in self.failing or ip not in self.fans:
                raise FanRequestError(f"Request to {ip} failed: connection refused")
            state = self.fans[ip]
            for key, value in payload.items():
                if key != "queryDynamicShadowData":
                    state[key] = value
            return dict(state)
        finally:
            self.in_flight -= 1

    async def query_status(self, ip: str) -> dict[str, Any]:
        return await self.request(ip, {"queryDynamicShadowData": 1})

    def calls_for(self, ip: str) -> list[dict[str, Any]]:
        return [payload for call_ip, payload in self.calls if call_ip == ip]

    def updates(self) -> list[tuple[str, dict[str, Any]]]:
        return [(ip, payload) for ip, payload in self.calls if "queryDynamicShadowData" not in payload]


class FakeProbe:
    """Network probe with a scripted subnet"""

    def __init__(self, address="192.168.1.10", netmask="255.255.255.0",
                 reachable=(), macs=None, no_interface=False, broken=()):
        self.interface = InterfaceInfo(name="eth0", address=address, netmask=netmask)
        self.reachable = set(reachable)
        self.macs = dict(macs or {})
        self.no_interface = no_interface
        self.broken = set(broken)
        self.probed: list[str] = []

    def active_interface(self):
        if self.no_interface:
            raise NoInterfaceError("No active IPv4 network interface found")
        return self.interface

    def enumerate_subnet(self, cidr):
        return enumerate_subnet(cidr)

    async def probe(self, ip, timeout_ms=1000):
        self.probed.append(ip)
        if ip in self.broken:
            raise RuntimeError("socket exploded")
        return ip in self.reachable

    async def resolve_mac(self, ip):
        return self.macs.get(ip)


class FakeRelayBus:
    """Records subscriptions and publishes; deliver() plays the broker"""

    def __init__(self):
        self.handlers: dict[str, list[Any]] = {}
        self.published: list[tuple[str, str]] = []
        self.connected = True

    def subscribe(self, topic, handler):
        self.handlers.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic, handler):
        handlers = self.handlers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.handlers.pop(topic, None)

    def publish(self, topic, payload):
        self.published.append((topic, payload))
        return True

    def deliver(self, topic: str, payload: bytes):
        for handler in list(self.handlers.get(topic, [])):
            handler(topic, payload)

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False


def fan_payload(client_id: str, **overrides) -> dict[str, Any]:
    payload = {
        "fanOn": False,
        "fanSpeed": 0,
        "fanDirection": "forward",
        "lightOn": False,
        "lightBrightness": 0,
        "clientId": client_id,
    }
    payload.update(overrides)
    return payload

