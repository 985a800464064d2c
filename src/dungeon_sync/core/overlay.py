from __future__ import annotations

import logging
import time
from typing import Callable

from .types import (
    Direction,
    DoorView,
    OccupantActivity,
    OccupantView,
    RemotePlayerState,
    RoomCoord,
    RoomView,
)


class OptimisticOverlay:
    """Short-lived local overrides that hide ledger read lag.

    The pending job direction bridges a confirmed join and the first read that
    reflects it. The pending target room bridges a confirmed move and is used
    by exactly one room resolution. Neither value is ever sent to the ledger.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        monotonic: Callable[[], float] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._timeout_seconds = timeout_seconds
        self._monotonic = monotonic or time.monotonic
        self._logger = logger or logging.getLogger(__name__)
        self._job_direction: Direction | None = None
        self._job_set_at = 0.0
        self._target_room: RoomCoord | None = None

    def set_pending_job_direction(self, direction: Direction) -> None:
        self._job_direction = direction
        self._job_set_at = self._monotonic()
        self._logger.debug("OVERLAY JOB SET direction=%s", direction.label)

    def clear_pending_job_direction(self) -> None:
        self._job_direction = None

    @property
    def pending_job_direction(self) -> Direction | None:
        self._expire()
        return self._job_direction

    @property
    def has_pending_job(self) -> bool:
        return self.pending_job_direction is not None

    def set_pending_target_room(self, x: int, y: int) -> None:
        self._target_room = RoomCoord(x, y)

    @property
    def pending_target_room(self) -> RoomCoord | None:
        return self._target_room

    def consume_target_room(self) -> RoomCoord | None:
        target = self._target_room
        self._target_room = None
        return target

    def _expire(self) -> None:
        if self._job_direction is None:
            return
        if self._monotonic() - self._job_set_at >= self._timeout_seconds:
            self._logger.debug("OVERLAY JOB EXPIRED direction=%s", self._job_direction.label)
            self._job_direction = None

    def resolve_active_job_directions(
        self,
        player: RemotePlayerState | None,
        room_x: int,
        room_y: int,
    ) -> frozenset[Direction]:
        """Remote active jobs for the room plus the pending direction.

        Clears the pending direction once the remote set corroborates it.
        """
        result: set[Direction] = set()
        if player is not None:
            for job in player.jobs_in_room(room_x, room_y):
                result.add(job.direction)

        if self._job_direction is not None and self._job_direction in result:
            self._logger.debug("OVERLAY JOB CONFIRMED direction=%s", self._job_direction.label)
            self._job_direction = None

        pending = self.pending_job_direction
        if pending is not None:
            result.add(pending)
        return frozenset(result)

    def apply_door_override(self, room: RoomView, last_known_tick: int) -> RoomView:
        """Substitute an estimated door view while the remote one is stale.

        Presentation only: the returned view must not reach the finalize path.
        """
        pending = self.pending_job_direction
        if pending is None:
            return room
        existing = room.doors.get(pending)
        if existing is None:
            return room
        if existing.helper_count > 0 and existing.start_tick > 0:
            return room
        if existing.start_tick <= 0 and last_known_tick <= 0:
            return room

        estimated = DoorView(
            direction=pending,
            wall_state=existing.wall_state,
            helper_count=max(1, existing.helper_count + 1),
            progress=existing.progress,
            start_tick=existing.start_tick if existing.start_tick > 0 else last_known_tick,
            required_progress=existing.required_progress,
            is_completed=False,
        )
        return room.with_door(estimated)

    def resolve_local_activity(
        self,
        local_occupant: OccupantView | None,
        player: RemotePlayerState | None,
        room_x: int,
        room_y: int,
    ) -> tuple[OccupantActivity, Direction | None]:
        activity = OccupantActivity.IDLE
        activity_direction: Direction | None = None

        if local_occupant is not None:
            activity = local_occupant.activity
            activity_direction = local_occupant.activity_direction
        elif player is not None:
            jobs = player.jobs_in_room(room_x, room_y)
            if jobs:
                activity = OccupantActivity.DOOR_JOB
                activity_direction = jobs[-1].direction

        pending = self.pending_job_direction
        if activity == OccupantActivity.IDLE and pending is not None:
            activity = OccupantActivity.DOOR_JOB
            activity_direction = pending
        return activity, activity_direction
