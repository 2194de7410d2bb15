"""
Discovery data structures and models
"""

import hashlib
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field, asdict

NUMBER_OF_FAN_SPEEDS = 6

FAN_DIRECTIONS = ('forward', 'reverse')


def generate_uuid(data: str) -> str:
    """Deterministic uuid-shaped identifier from the SHA-1 of data"""
    digest = hashlib.sha1(data.encode('utf-8')).hexdigest()
    return f"{digest[0:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


@dataclass(frozen=True)
class AddressCandidate:
    """An address suspected to host a fan, not yet verified"""
    ip: str
    light: bool = False
    switch_id: Optional[str] = None
    source: str = "config"  # "cache", "config", "network"


@dataclass
class DeviceState:
    """Desired and last observed state of a fan, unified in one record"""
    fan_on: bool = False
    fan_speed: int = 0
    fan_direction: str = 'forward'
    light_on: bool = False
    light_brightness: int = 0
    client_id: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DeviceState":
        """Build state from a protocol snapshot; speed and brightness are clamped"""
        direction = payload['fanDirection']
        if direction not in FAN_DIRECTIONS:
            raise ValueError(f"Unknown fan direction: {direction}")
        return cls(
            fan_on=bool(payload['fanOn']),
            fan_speed=max(0, min(NUMBER_OF_FAN_SPEEDS, int(payload['fanSpeed']))),
            fan_direction=direction,
            light_on=bool(payload['lightOn']),
            light_brightness=max(0, min(100, int(payload['lightBrightness']))),
            client_id=str(payload['clientId'])
        )

    def to_request(self) -> Dict[str, Any]:
        """Full update request body (clientId is never sent)"""
        return {
            'fanOn': self.fan_on,
            'fanSpeed': self.fan_speed,
            'fanDirection': self.fan_direction,
            'lightOn': self.light_on,
            'lightBrightness': self.light_brightness
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceState":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass(frozen=True)
class VerifiedDevice:
    """A candidate confirmed by a protocol handshake"""
    identity: str
    ip: str
    light: bool
    switch_id: Optional[str]
    uuid: str

    @classmethod
    def from_candidate(cls, candidate: AddressCandidate, client_id: str) -> "VerifiedDevice":
        return cls(
            identity=client_id,
            ip=candidate.ip,
            light=candidate.light,
            switch_id=candidate.switch_id,
            uuid=generate_uuid(client_id)
        )


@dataclass(frozen=True)
class NewDevice:
    """Verified fan with no record in the registry"""
    uuid: str
    candidate: AddressCandidate
    client_id: str


@dataclass(frozen=True)
class ExistingDevice:
    """Verified fan that matches a registered record"""
    uuid: str
    candidate: AddressCandidate
    client_id: str
    prior_record: Any


DiscoveryEvent = Union[NewDevice, ExistingDevice]


@dataclass
class DiscoveryResult:
    """Results from one discovery run"""
    new_devices: List[NewDevice] = field(default_factory=list)
    existing_devices: List[ExistingDevice] = field(default_factory=list)
    duration_seconds: float = 0.0
    candidates_seen: int = 0
    devices_tested: int = 0

    @property
    def success_count(self) -> int:
        return len(self.new_devices) + len(self.existing_devices)
