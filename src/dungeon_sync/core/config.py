from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    idle_poll_seconds: float = 6.0
    min_recheck_seconds: float = 0.75
    max_recheck_seconds: float = 8.0
    player_state_refresh_seconds: float = 20.0
    seconds_per_tick: float = 0.4
    ready_buffer_ticks: int = 1
    attempt_cooldown_seconds: float = 2.0
    failure_cooldown_seconds: float = 30.0
    max_retries: int = 3
    optimistic_job_timeout_seconds: float = 15.0
    start_room: tuple[int, int] = (5, 5)

    def __post_init__(self) -> None:
        for name in (
            "idle_poll_seconds",
            "min_recheck_seconds",
            "max_recheck_seconds",
            "player_state_refresh_seconds",
            "seconds_per_tick",
            "attempt_cooldown_seconds",
            "failure_cooldown_seconds",
            "optimistic_job_timeout_seconds",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.min_recheck_seconds > self.max_recheck_seconds:
            raise ValueError("min_recheck_seconds must not exceed max_recheck_seconds")
        if self.ready_buffer_ticks < 0:
            raise ValueError("ready_buffer_ticks must be >= 0")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")

    def clamp_recheck(self, seconds: float) -> float:
        return min(self.max_recheck_seconds, max(self.min_recheck_seconds, seconds))
