"""
Network probe adapter - interface inspection, subnet enumeration,
reachability probing and ARP lookups
"""

import asyncio
import ipaddress
import logging
import math
import re
import socket
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import psutil

from exceptions import NoInterfaceError, ProbeFailure

logger = logging.getLogger(__name__)

ARP_TABLE_PATH = "/proc/net/arp"

# ? (192.168.1.1) at 00:11:22:33:44:55 on en0 ...
# 192.168.1.1  ether  00:11:22:33:44:55  C  eth0
_ARP_OUTPUT_PATTERN = re.compile(r'([0-9a-fA-F]{1,2}(?::[0-9a-fA-F]{1,2}){5})')

_EMPTY_MACS = {"00:00:00:00:00:00", "FF:FF:FF:FF:FF:FF"}


@dataclass(frozen=True)
class InterfaceInfo:
    """Active IPv4 interface"""
    name: str
    address: str
    netmask: Optional[str]


def normalize_mac(value: str) -> str:
    """Upper-case colon separated MAC; single digit octets are zero padded"""
    if not value:
        return ""
    parts = re.split(r'[:\-]', value.strip())
    if len(parts) == 6 and all(1 <= len(p) <= 2 and all(ch in string.hexdigits for ch in p) for p in parts):
        return ":".join(p.zfill(2).upper() for p in parts)
    cleaned = value.replace(":", "").replace("-", "").replace(".", "")
    if len(cleaned) == 12 and all(ch in string.hexdigits for ch in cleaned):
        return ":".join(cleaned[i:i + 2].upper() for i in range(0, 12, 2))
    return value.upper()


def compute_subnet(address: str, netmask: str) -> str:
    """Containing network of address/netmask as 'network/bits'"""
    network = ipaddress.IPv4Network(f"{address}/{netmask}", strict=False)
    return f"{network.network_address}/{network.prefixlen}"


def enumerate_subnet(cidr: str) -> Iterator[str]:
    """Lazily yield every host address in the block"""
    network = ipaddress.IPv4Network(cidr, strict=False)
    for host in network.hosts():
        yield str(host)


class NetworkProbe:
    """Stateless capability wrapper over the local network"""

    def __init__(self, arp_table_path: str = ARP_TABLE_PATH):
        self.arp_table_path = Path(arp_table_path)

    def active_interface(self) -> InterfaceInfo:
        """First interface that is up, not loopback, and has an IPv4 address"""
        try:
            addresses = psutil.net_if_addrs()
            stats = psutil.net_if_stats()
        except Exception as e:
            raise NoInterfaceError(f"Unable to inspect network interfaces: {e}") from e

        for name, addrs in addresses.items():
            iface_stats = stats.get(name)
            if iface_stats is not None and not iface_stats.isup:
                continue
            for addr in addrs:
                if addr.family != socket.AF_INET:
                    continue
                if addr.address.startswith("127."):
                    continue
                return InterfaceInfo(name=name, address=addr.address, netmask=addr.netmask)

        raise NoInterfaceError("No active IPv4 network interface found")

    def local_subnet(self, fallback_address: str = "192.168.0.1",
                     fallback_netmask: str = "255.255.255.0") -> str:
        interface = self.active_interface()
        return compute_subnet(interface.address or fallback_address,
                              interface.netmask or fallback_netmask)

    def enumerate_subnet(self, cidr: str) -> Iterator[str]:
        return enumerate_subnet(cidr)

    async def probe(self, ip: str, timeout_ms: int = 1000) -> bool:
        """True iff the host answers a ping within the timeout; never raises"""
        try:
            await self._ping(ip, timeout_ms)
            return True
        except ProbeFailure as e:
            logger.debug(f"Probe failed for {ip}: {e}")
            return False
        except Exception as e:
            logger.debug(f"Probe error for {ip}: {e}")
            return False

    async def _ping(self, ip: str, timeout_ms: int) -> None:
        wait_seconds = max(1, math.ceil(timeout_ms / 1000))
        try:
            proc = await asyncio.create_subprocess_exec(
                "ping", "-c", "1", "-W", str(wait_seconds), ip,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as e:
            raise ProbeFailure(f"ping unavailable: {e}") from e

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=wait_seconds + 1)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProbeFailure("timed out")

        if returncode != 0:
            raise ProbeFailure(f"exit status {returncode}")

    async def resolve_mac(self, ip: str) -> Optional[str]:
        """Best-effort ARP lookup; None if unresolvable"""
        try:
            mac = self._lookup_arp_table(ip)
            if mac is None:
                mac = await self._lookup_arp_command(ip)
        except Exception as e:
            logger.debug(f"MAC lookup failed for {ip}: {e}")
            return None

        if not mac:
            return None
        mac = normalize_mac(mac)
        if mac in _EMPTY_MACS:
            return None
        return mac

    def _lookup_arp_table(self, ip: str) -> Optional[str]:
        """Read the kernel ARP table when available (Linux)"""
        if not self.arp_table_path.exists():
            return None

        lines = self.arp_table_path.read_text().splitlines()
        # IP address  HW type  Flags  HW address  Mask  Device
        for line in lines[1:]:
            columns = line.split()
            if len(columns) < 4 or columns[0] != ip:
                continue
            if columns[2] == "0x0":
                return ""  # incomplete entry
            return columns[3]
        return None

    async def _lookup_arp_command(self, ip: str) -> Optional[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "arp", "-n", ip,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL
            )
        except OSError:
            return None

        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5)
        match = _ARP_OUTPUT_PATTERN.search(stdout.decode('utf-8', errors='replace'))
        return match.group(1) if match else None
