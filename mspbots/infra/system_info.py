"""Machine identity used as the config distribution lookup key."""

from __future__ import annotations

import platform
import socket
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from loguru import logger

from mspbots import __version__

UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class MachineIdentity:
    """Snapshot of this host, computed once per process."""

    ip: str
    hostname: str
    os_type: str
    os_version: str
    os_arch: str
    plugin_version: str = __version__
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def lookup_key(self) -> str:
        """Identity string the distribution platform indexes configs by."""
        return self.ip

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "ip": data["ip"],
            "hostname": data["hostname"],
            "osType": data["os_type"],
            "osVersion": data["os_version"],
            "osArch": data["os_arch"],
            "pluginVersion": data["plugin_version"],
            "timestamp": data["timestamp"],
        }


def _is_usable_ipv4(address: str) -> bool:
    return bool(address) and not address.startswith("127.") and address != "0.0.0.0"


def get_local_ip() -> str:
    """First non-loopback IPv4 address of this host, or "unknown"."""
    # Route lookup only; a UDP connect sends no packets.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            address = s.getsockname()[0]
            if _is_usable_ipv4(address):
                return address
    except OSError:
        pass
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return UNKNOWN_IP
    for info in infos:
        address = str(info[4][0])
        if _is_usable_ipv4(address):
            return address
    return UNKNOWN_IP


def _os_type() -> str:
    # Node-style platform names, which the distribution platform expects.
    system = platform.system().lower()
    return {"windows": "win32"}.get(system, system)


def _os_arch() -> str:
    machine = platform.machine().lower()
    return {"x86_64": "x64", "amd64": "x64", "aarch64": "arm64", "i386": "ia32", "i686": "ia32"}.get(
        machine, machine
    )


_cached: MachineIdentity | None = None


def collect_machine_identity(*, refresh: bool = False) -> MachineIdentity:
    """Collect the machine identity once and reuse it for the process lifetime."""
    global _cached
    if _cached is not None and not refresh:
        return _cached
    identity = MachineIdentity(
        ip=get_local_ip(),
        hostname=socket.gethostname(),
        os_type=_os_type(),
        os_version=platform.release(),
        os_arch=_os_arch(),
    )
    logger.info(f"SystemInfo: collected {identity.to_dict()}")
    _cached = identity
    return identity
