"""Composite bridge status snapshot: runtime health, auth and local probes."""

from __future__ import annotations

import asyncio
import shutil
from typing import Any

from runtimebridge.contracts import STATUS_SCHEMA_V1
from runtimebridge.supervisor.context import BridgeContext
from runtimebridge.supervisor.models import utc_now_iso

PROBE_TIMEOUT_SECONDS = 1.0


async def probe_port(host: str, port: int, timeout_seconds: float = PROBE_TIMEOUT_SECONDS) -> bool:
    """Return True when a TCP connection to ``host:port`` succeeds in time."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_seconds)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def runtime_installed(command: list[str]) -> bool:
    return bool(command) and shutil.which(command[0]) is not None


async def read_bridge_status(context: BridgeContext) -> dict[str, Any]:
    """Build the status payload served by the health route and the stream ticker."""
    settings = context.settings
    probe_names = list(settings.probe_ports)
    reachable = await asyncio.gather(
        *(probe_port(settings.probe_host, settings.probe_ports[name]) for name in probe_names)
    )
    auth = await context.pairing.status()
    probes = {
        name: {
            "host": settings.probe_host,
            "port": settings.probe_ports[name],
            "reachable": ok,
        }
        for name, ok in zip(probe_names, reachable)
    }
    return {
        "schema_version": STATUS_SCHEMA_V1,
        "runtime_installed": runtime_installed(context.runtime.command),
        "runtime": context.runtime.health(),
        "auth": auth.as_dict(),
        "probes": probes,
        "subscribers": context.broadcaster.subscriber_count,
        "checked_at": utc_now_iso(),
    }
