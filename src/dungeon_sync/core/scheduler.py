from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .clock import LogicalClock
from .config import EngineConfig
from .finalize import FinalizeProtocol, SchedulerState
from .ports import RemoteStatePort
from .progress import door_progress, estimate_seconds_remaining, is_active_job
from .types import (
    Direction,
    DoorView,
    FinalizeOutcome,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    WallState,
)


class JobAutoCompleter:
    """Background loop that finalizes ready door jobs in the player's room.

    ``step()`` evaluates the room once and returns how long to sleep before the
    next evaluation. The loop owns a single task handle and stops when
    ``stop_loop()`` sets the stop event or the task is cancelled.
    """

    def __init__(
        self,
        remote: RemoteStatePort,
        finalize: FinalizeProtocol,
        config: EngineConfig | None = None,
        *,
        clock: LogicalClock | None = None,
        state: SchedulerState | None = None,
        monotonic: Callable[[], float] | None = None,
        stop_event: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
    ):
        self._remote = remote
        self._finalize = finalize
        self._config = config or EngineConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock or LogicalClock(remote, logger=self._logger)
        self._state = state or SchedulerState()
        self._monotonic = monotonic or time.monotonic
        self._stop_event = stop_event
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._player: RemotePlayerState | None = None
        self._player_refresh_at = 0.0
        self._observed_room: RoomCoord | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def invalidate_player_state(self) -> None:
        self._player = None
        self._player_refresh_at = 0.0

    def start_loop(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        if self._stop_event is None or self._stop_event.is_set():
            self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info("AUTO-COMPLETE LOOP STARTED")
        return self._task

    async def stop_loop(self) -> None:
        task = self._task
        self._task = None
        if self._stop_event is not None:
            self._stop_event.set()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._drain_inflight()
        if task is not None:
            self._logger.info("AUTO-COMPLETE LOOP STOPPED")

    async def _drain_inflight(self) -> None:
        # A cancelled loop leaves its shielded finalize running; collect it here.
        inflight = self._inflight
        if inflight is None:
            return
        try:
            await inflight
        except asyncio.CancelledError:
            pass
        except Exception:
            self._logger.warning("AUTO-COMPLETE IN-FLIGHT FINALIZE FAILED", exc_info=True)
        finally:
            if self._inflight is inflight:
                self._inflight = None

    async def _run_loop(self) -> None:
        cfg = self._config
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                delay = cfg.clamp_recheck(await self.step())
            except asyncio.CancelledError:
                return
            except Exception:
                self._logger.exception("AUTO-COMPLETE STEP FAILED, falling back to idle poll")
                delay = cfg.idle_poll_seconds
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                return

    async def step(self) -> float:
        cfg = self._config
        if not self._remote.has_session():
            return cfg.idle_poll_seconds

        player = await self._player_state()
        if player is None:
            return cfg.idle_poll_seconds

        room_state = await self._remote.fetch_room_state(player.room_x, player.room_y)
        if room_state is None:
            return cfg.idle_poll_seconds

        room = player.room
        self._observe_room(room, room_state)

        # Active job lists from player state can lag; the helper stake is authoritative.
        candidates: list[DoorView] = []
        for direction in Direction:
            door = room_state.door(direction)
            if not door.is_rubble or door.helper_count <= 0:
                continue
            if self._state.is_given_up(direction, room, cfg.max_retries):
                self._logger.debug("AUTO-COMPLETE SKIP direction=%s given up", direction.label)
                continue
            if self._state.is_processing(direction, room):
                continue
            if await self._remote.has_helper_stake(direction, room):
                candidates.append(door)

        if not candidates:
            return cfg.idle_poll_seconds

        current_tick = await self._clock.now()
        if current_tick <= 0:
            return cfg.idle_poll_seconds

        now = self._monotonic()
        min_delay = cfg.max_recheck_seconds
        selected: DoorView | None = None
        selected_remaining = 0

        for door in candidates:
            if not is_active_job(door.helper_count, door.start_tick, door.required_progress):
                continue
            progress = door_progress(door, current_tick, cfg.ready_buffer_ticks)
            if not progress.ready_soon:
                estimate = estimate_seconds_remaining(progress.remaining, door.helper_count, cfg.seconds_per_tick)
                min_delay = min(min_delay, max(cfg.min_recheck_seconds, estimate))
                continue

            cooldown = self._state.cooldown_remaining(door.direction, room, now)
            if cooldown > 0:
                min_delay = min(min_delay, cooldown)
                continue

            if selected is None or progress.remaining < selected_remaining:
                selected = door
                selected_remaining = progress.remaining

        if selected is not None:
            self._state.set_next_attempt_at(selected.direction, room, now + cfg.attempt_cooldown_seconds)
            self._logger.info(
                "AUTO-COMPLETE CANDIDATE room=%s direction=%s remaining=%s tick=%s",
                room,
                selected.direction.label,
                selected_remaining,
                current_tick,
            )
            # A started sequence runs to its end even if the loop is being cancelled.
            inflight = asyncio.create_task(
                self._finalize.finalize(selected.direction, room, state=self._state, source="scheduler")
            )
            self._inflight = inflight
            try:
                await asyncio.shield(inflight)
            finally:
                if inflight.done() and self._inflight is inflight:
                    self._inflight = None
            min_delay = min(min_delay, cfg.min_recheck_seconds)

        return cfg.clamp_recheck(min_delay)

    async def finalize_now(self, direction: Direction, room: RoomCoord) -> FinalizeOutcome:
        """Manual finalize sharing this scheduler's cooldown and processing state."""
        self._state.set_next_attempt_at(direction, room, self._monotonic() + self._config.attempt_cooldown_seconds)
        return await self._finalize.finalize(direction, room, state=self._state, source="manual")

    async def _player_state(self) -> RemotePlayerState | None:
        now = self._monotonic()
        if self._player is not None and now < self._player_refresh_at:
            return self._player
        self._player = await self._remote.fetch_player_state()
        self._player_refresh_at = now + self._config.player_state_refresh_seconds
        return self._player

    def _observe_room(self, room: RoomCoord, room_state: RemoteRoomState) -> None:
        if self._observed_room != room:
            if self._observed_room is not None:
                self._logger.info("AUTO-COMPLETE ROOM CHANGED %s -> %s, resetting state", self._observed_room, room)
            self._state.reset_all()
            self._observed_room = room
            return
        for direction in Direction:
            if room_state.wall(direction) != WallState.RUBBLE and self._state.failure_count(direction, room):
                self._state.reset_direction(direction, room)
