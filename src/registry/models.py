"""
Registry models and data structures
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, replace
from datetime import datetime

from discovery.models import DeviceState


@dataclass
class FanRecord:
    """Persisted record for a registered fan"""
    uuid: str
    client_id: str
    ip: str
    light: bool = False
    switch_id: Optional[str] = None
    last_state: Optional[DeviceState] = None
    last_seen: Optional[datetime] = None

    def copy(self) -> "FanRecord":
        state = replace(self.last_state) if self.last_state else None
        return replace(self, last_state=state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "client_id": self.client_id,
            "ip": self.ip,
            "light": self.light,
            "switch_id": self.switch_id,
            "last_state": self.last_state.to_dict() if self.last_state else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FanRecord":
        last_state = data.get("last_state")
        last_seen = data.get("last_seen")
        return cls(
            uuid=data["uuid"],
            client_id=data["client_id"],
            ip=data["ip"],
            light=bool(data.get("light", False)),
            switch_id=data.get("switch_id"),
            last_state=DeviceState.from_dict(last_state) if last_state else None,
            last_seen=datetime.fromisoformat(last_seen) if last_seen else None
        )
