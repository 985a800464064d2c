from __future__ import annotations

import math
from dataclasses import dataclass

from .types import DoorTimer, DoorView


@dataclass(frozen=True)
class JobProgress:
    elapsed: int
    effective: int
    remaining: int
    ready_soon: bool

    @property
    def is_complete(self) -> bool:
        return self.remaining == 0


def is_active_job(helper_count: int, start_tick: int, required_progress: int) -> bool:
    """A zero in any of the three means the job has not really started."""
    return helper_count > 0 and required_progress > 0 and start_tick > 0


def compute_progress(
    helper_count: int,
    start_tick: int,
    required_progress: int,
    current_tick: int,
    ready_buffer_ticks: int = 1,
) -> JobProgress:
    elapsed = max(0, current_tick - start_tick)
    effective = elapsed * max(0, helper_count)
    remaining = max(0, required_progress - effective)
    return JobProgress(
        elapsed=elapsed,
        effective=effective,
        remaining=remaining,
        ready_soon=remaining <= ready_buffer_ticks,
    )


def door_progress(door: DoorView, current_tick: int, ready_buffer_ticks: int = 1) -> JobProgress:
    return compute_progress(
        door.helper_count,
        door.start_tick,
        door.required_progress,
        current_tick,
        ready_buffer_ticks,
    )


def completion_tick(helper_count: int, start_tick: int, required_progress: int) -> int:
    """First tick at which ``remaining`` reaches zero."""
    if helper_count <= 0:
        raise ValueError("helper_count must be positive")
    return start_tick + math.ceil(required_progress / helper_count)


def estimate_seconds_remaining(remaining: int, helper_count: int, seconds_per_tick: float) -> float:
    if helper_count <= 0 or remaining <= 0:
        return 0.0
    return (remaining / helper_count) * max(0.01, seconds_per_tick)


def format_remaining_time(seconds_remaining: float) -> str:
    total_seconds = math.ceil(max(0.0, seconds_remaining))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


def door_timer(
    door: DoorView,
    current_tick: int,
    seconds_per_tick: float,
    ready_buffer_ticks: int = 1,
) -> DoorTimer | None:
    if not door.is_rubble or door.is_completed:
        return None
    if not is_active_job(door.helper_count, door.start_tick, door.required_progress):
        return None
    progress = door_progress(door, current_tick, ready_buffer_ticks)
    seconds = estimate_seconds_remaining(progress.remaining, door.helper_count, seconds_per_tick)
    return DoorTimer(
        remaining_ticks=progress.remaining,
        seconds_remaining=seconds,
        label=format_remaining_time(seconds),
    )
