"""
HTTP client for the Modern Forms local fan protocol
"""

import asyncio
import logging
from typing import Any, Dict

import aiohttp

from exceptions import FanRequestError

logger = logging.getLogger(__name__)

STATUS_QUERY = {'queryDynamicShadowData': 1}

CONNECT_TIMEOUT_SECONDS = 2

# Fields every protocol snapshot must carry
RESPONSE_FIELDS = ('fanOn', 'fanSpeed', 'fanDirection', 'lightOn', 'lightBrightness', 'clientId')


class FanClient:
    """Sends requests to the single /mf endpoint of a fan"""

    def __init__(self, request_timeout: float = 5, connect_timeout: float = CONNECT_TIMEOUT_SECONDS):
        self.request_timeout = request_timeout
        # A host that is not a fan usually refuses or drops the connect
        self.connect_timeout = min(connect_timeout, request_timeout)

    def _session(self) -> aiohttp.ClientSession:
        """One short-lived session per request; fans drop idle keep-alive sockets"""
        connector = aiohttp.TCPConnector(limit=1, ssl=False, force_close=True)
        timeout = aiohttp.ClientTimeout(total=self.request_timeout, sock_connect=self.connect_timeout)
        return aiohttp.ClientSession(connector=connector, timeout=timeout)

    async def request(self, ip: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST payload and return the full state snapshot from the response"""
        url = f"http://{ip}/mf"
        try:
            async with self._session() as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        raise FanRequestError(f"HTTP {response.status} from {ip}")
                    data = await response.json(content_type=None)
        except FanRequestError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FanRequestError(f"Request to {ip} failed: {e}") from e

        if not isinstance(data, dict):
            raise FanRequestError(f"Malformed response from {ip}: not an object")
        missing = [name for name in RESPONSE_FIELDS if name not in data]
        if missing:
            raise FanRequestError(f"Malformed response from {ip}: missing {', '.join(missing)}")
        return data

    async def query_status(self, ip: str) -> Dict[str, Any]:
        return await self.request(ip, dict(STATUS_QUERY))
