"""Restart backoff policy for the runtime process supervisor."""

from __future__ import annotations

from dataclasses import dataclass

MODE_SPAWN_COUNT = "spawn_count"
MODE_CONSECUTIVE_CRASHES = "consecutive_crashes"


@dataclass(frozen=True)
class RestartPolicy:
    """Linear, capped restart delay.

    ``spawn_count`` scales the delay by every successful spawn so far, so the
    delay never shrinks over the supervisor's lifetime. ``consecutive_crashes``
    scales by crashes since the last process that stayed up for
    ``stable_after_seconds``.
    """

    base_seconds: float = 1.0
    max_seconds: float = 30.0
    mode: str = MODE_SPAWN_COUNT
    stable_after_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.mode not in {MODE_SPAWN_COUNT, MODE_CONSECUTIVE_CRASHES}:
            raise ValueError(f"unsupported restart mode: {self.mode}")

    def delay_seconds(self, *, restart_count: int, consecutive_crashes: int = 0) -> float:
        multiplier = restart_count if self.mode == MODE_SPAWN_COUNT else consecutive_crashes
        return min(self.max_seconds, self.base_seconds * max(1, multiplier))

    def is_stable_run(self, uptime_seconds: float) -> bool:
        return uptime_seconds >= self.stable_after_seconds
