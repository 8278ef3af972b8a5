"""Explicit bridge context built once at startup and handed to every route."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from runtimebridge.supervisor.broadcaster import NotificationBroadcaster
from runtimebridge.supervisor.config import BridgeSettings
from runtimebridge.supervisor.pairing import PairingGuard
from runtimebridge.supervisor.restart_policy import RestartPolicy
from runtimebridge.supervisor.runtime_process import RuntimeProcess

logger = logging.getLogger("runtimebridge.supervisor.context")


@dataclass
class BridgeContext:
    """Owns the pairing guard, the runtime supervisor and the broadcaster."""

    settings: BridgeSettings
    pairing: PairingGuard
    runtime: RuntimeProcess
    broadcaster: NotificationBroadcaster = field(default_factory=NotificationBroadcaster)
    _unsubscribe: Callable[[], None] | None = field(default=None, init=False, repr=False)
    _disposed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._unsubscribe = self.runtime.on_notification(self.broadcaster.publish)

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "BridgeContext":
        pairing = PairingGuard(
            store_path=settings.auth_store_path,
            require_pairing=settings.require_pairing,
        )
        runtime = RuntimeProcess(
            settings.runtime_argv,
            restart_policy=RestartPolicy(
                base_seconds=settings.restart_base_seconds,
                max_seconds=settings.restart_max_seconds,
                mode=settings.restart_mode,
            ),
            call_timeout_seconds=settings.call_timeout_seconds,
            kill_grace_seconds=settings.kill_grace_seconds,
        )
        return cls(settings=settings, pairing=pairing, runtime=runtime)

    async def dispose(self) -> None:
        """Close every stream subscriber, then stop the runtime process."""
        if self._disposed:
            return
        self._disposed = True
        logger.info("Disposing bridge (subscribers=%d)", self.broadcaster.subscriber_count)
        self.broadcaster.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.runtime.dispose()
