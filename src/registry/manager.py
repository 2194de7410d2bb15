"""
Accessory registry backed by a JSON cache file
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from discovery.models import DeviceState
from .models import FanRecord

logger = logging.getLogger(__name__)


class AccessoryRegistry:
    """Known fan identities keyed by uuid, at most one record per uuid"""

    def __init__(self, cache_file: str = "data/accessories.json"):
        self.cache_file = Path(cache_file)
        self._records: Dict[str, FanRecord] = {}
        self._dirty = False

    async def initialize(self):
        """Load cached records from disk"""
        self._records = {}
        if not self.cache_file.exists():
            logger.info(f"No accessory cache at {self.cache_file} - starting empty")
            return

        try:
            with open(self.cache_file, 'r') as f:
                data = json.load(f)
            for entry in data.get("accessories", []):
                record = FanRecord.from_dict(entry)
                self._records[record.uuid] = record
                logger.info(f"Loading accessory from cache: {record.client_id} ({record.ip})")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Accessory cache {self.cache_file} is unreadable, ignoring it: {e}")
            self._records = {}

        logger.info(f"Accessory registry initialized with {len(self._records)} records")

    async def close(self):
        if self._dirty:
            await self.save()

    async def save(self):
        """Write all records to the cache file"""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        payload = {"accessories": [record.to_dict() for record in self._records.values()]}
        tmp_file = self.cache_file.with_suffix(self.cache_file.suffix + ".tmp")
        with open(tmp_file, 'w') as f:
            json.dump(payload, f, indent=2)
        tmp_file.replace(self.cache_file)
        self._dirty = False
        logger.debug(f"Saved {len(self._records)} accessories to {self.cache_file}")

    def list_cached_records(self) -> List[FanRecord]:
        return [record.copy() for record in self._records.values()]

    def get(self, uuid: str) -> Optional[FanRecord]:
        record = self._records.get(uuid)
        return record.copy() if record else None

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def register_new_device(self, uuid: str, record: FanRecord) -> FanRecord:
        if uuid in self._records:
            raise KeyError(f"Accessory {uuid} is already registered")
        stored = replace(record.copy(), uuid=uuid, last_seen=datetime.now(timezone.utc))
        self._records[uuid] = stored
        await self.save()
        logger.info(f"Registered new accessory: {stored.client_id} ({stored.ip})")
        return stored.copy()

    async def rebind_existing_device(self, uuid: str, record: FanRecord) -> FanRecord:
        if uuid not in self._records:
            raise KeyError(f"Accessory {uuid} is not registered")
        stored = replace(record.copy(), uuid=uuid, last_seen=datetime.now(timezone.utc))
        self._records[uuid] = stored
        await self.save()
        logger.info(f"Updated accessory: {stored.client_id} ({stored.ip})")
        return stored.copy()

    def update_state(self, uuid: str, state: DeviceState) -> None:
        """Remember the last observed state; flushed on the next save"""
        record = self._records.get(uuid)
        if record is None:
            return
        record.last_state = replace(state)
        record.last_seen = datetime.now(timezone.utc)
        self._dirty = True

    async def remove_device(self, uuid: str) -> bool:
        record = self._records.pop(uuid, None)
        if record is None:
            return False
        await self.save()
        logger.info(f"Removed accessory: {record.client_id} ({record.ip})")
        return True
