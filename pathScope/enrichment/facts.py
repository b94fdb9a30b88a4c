"""Best-effort discovery of local connection facts (local IP, default gateway)."""
from __future__ import annotations

import asyncio
import platform
import socket
import struct
import subprocess
from pathlib import Path
from typing import Optional

from pathScope.collector.models import FrozenModel
from pathScope.logging_config import get_logger

logger = get_logger("facts")

PROC_ROUTE = Path("/proc/net/route")


class ConnectionFacts(FrozenModel):
    """What the host knows about its own uplink. None means unknown."""
    local_ip: Optional[str] = None
    gateway_ip: Optional[str] = None
    interface: Optional[str] = None
    hostname: Optional[str] = None
    platform: Optional[str] = None


def get_local_ip(probe_host: str = "8.8.8.8") -> Optional[str]:
    """Source address the kernel picks for outbound traffic; no packet is sent."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((probe_host, 80))
            ip = sock.getsockname()[0]
    except OSError as e:
        logger.debug(f"Local IP discovery failed: {e}")
        return None
    if ip.startswith("0."):
        return None
    return ip


def parse_proc_route(text: str) -> Optional[tuple]:
    """(interface, gateway) of the default route in /proc/net/route content."""
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4 or fields[1] != "00000000":
            continue
        try:
            flags = int(fields[3], 16)
            gateway = socket.inet_ntoa(struct.pack("<L", int(fields[2], 16)))
        except (ValueError, struct.error):
            continue
        # RTF_GATEWAY
        if flags & 0x2:
            return fields[0], gateway
    return None


def parse_netstat_routes(text: str) -> Optional[str]:
    """Default gateway from `netstat -rn` output (Linux, macOS and BSD layouts)."""
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] in {"default", "0.0.0.0"}:
            gateway = parts[1]
            if gateway[0].isdigit():
                return gateway
    return None


def get_default_gateway() -> tuple:
    """(gateway, interface); either may be None."""
    try:
        route = parse_proc_route(PROC_ROUTE.read_text())
        if route:
            return route[1], route[0]
    except OSError:
        pass
    try:
        result = subprocess.run(["netstat", "-rn"], capture_output=True, text=True, timeout=3)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"netstat unavailable for gateway discovery: {e}")
        return None, None
    return parse_netstat_routes(result.stdout), None


def _collect() -> ConnectionFacts:
    gateway, interface = get_default_gateway()
    return ConnectionFacts(
        local_ip=get_local_ip(),
        gateway_ip=gateway,
        interface=interface,
        hostname=socket.gethostname() or None,
        platform=platform.system() or None,
    )


async def discover_connection_facts() -> ConnectionFacts:
    """Collect connection facts off the event loop. Never raises on a miss."""
    facts = await asyncio.to_thread(_collect)
    logger.debug(
        "Connection facts discovered",
        extra={
            "ip": facts.local_ip,
            "outcome": "success" if facts.local_ip and facts.gateway_ip else "partial",
            "extra_fields": {"gateway_ip": facts.gateway_ip, "interface": facts.interface},
        },
    )
    return facts
