"""
pairing/network.py — Host address discovery for the pairing payload

The device needs an address it can reach the gateway on. We offer every
private-range IPv4 address on the host, optionally led by the Tailscale
address so the device can pair from outside the LAN.
"""

from __future__ import annotations

import asyncio
import shlex
import socket
from typing import Iterable, Optional

import psutil

from r1gateway.config.settings import DEFAULT_TAILSCALE_COMMANDS
from r1gateway.observability.logger import get_logger

log = get_logger(__name__)

_PRIVATE_PREFIXES = ("192.168.", "10.", "172.")


def get_lan_ips() -> list[str]:
    """
    Non-loopback IPv4 addresses in private-looking ranges, in interface order.
    """
    results: list[str] = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            ip = addr.address
            if ip.startswith("127."):
                continue
            if ip.startswith(_PRIVATE_PREFIXES) and ip not in results:
                results.append(ip)
    return results


async def _run_probe(command: str) -> Optional[str]:
    argv = shlex.split(command)
    if not argv:
        return None
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        # Binary not installed at this path
        return None
    stdout, _ = await proc.communicate()
    if proc.returncode != 0:
        return None
    for line in stdout.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if line:
            return line
    return None


async def get_tailscale_ip(
    commands: Iterable[str] = DEFAULT_TAILSCALE_COMMANDS,
) -> Optional[str]:
    """Ask the Tailscale CLI for this node's IPv4 address. None if unavailable."""
    for command in commands:
        ip = await _run_probe(command)
        if ip:
            log.debug("pairing.tailscale_ip", command=command, ip=ip)
            return ip
    log.debug("pairing.tailscale_unavailable")
    return None


async def discover_ips(
    use_tailscale: bool = False,
    tailscale_commands: Iterable[str] = DEFAULT_TAILSCALE_COMMANDS,
) -> list[str]:
    """LAN addresses, with the Tailscale address first when requested and found."""
    ips = get_lan_ips()
    if use_tailscale:
        ts_ip = await get_tailscale_ip(tailscale_commands)
        if ts_ip and ts_ip not in ips:
            ips.insert(0, ts_ip)
    return ips
