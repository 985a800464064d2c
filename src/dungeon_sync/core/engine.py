from __future__ import annotations

import asyncio
import logging
import time
from types import MappingProxyType
from typing import Any, Callable, Sequence

from .clock import LogicalClock
from .config import EngineConfig
from .errors import RoomNotFoundError, SessionUnavailableError
from .finalize import FinalizeProtocol
from .journal import FinalizeJournal
from .normalize import room_view_from_state
from .occupancy import OccupancyTracker
from .overlay import OptimisticOverlay
from .ports import DeltaListener, RemoteStatePort, SnapshotListener
from .progress import door_timer
from .reconciler import JobReconciler
from .scheduler import JobAutoCompleter
from .types import (
    Direction,
    FinalizeOutcome,
    OccupantActivity,
    OccupantView,
    ReconcileReport,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    RoomSnapshot,
    SyncResult,
)


class DungeonSyncEngine:
    def __init__(
        self,
        remote: RemoteStatePort,
        config: EngineConfig | None = None,
        *,
        snapshot_listener: SnapshotListener | None = None,
        delta_listener: DeltaListener | None = None,
        uow_factory: Callable[[], Any] | None = None,
        monotonic: Callable[[], float] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._remote = remote
        self._config = config or EngineConfig()
        self._snapshot_listener = snapshot_listener
        self._delta_listener = delta_listener
        self._logger = logger or logging.getLogger(__name__)
        monotonic = monotonic or time.monotonic

        self._clock = LogicalClock(remote, logger=self._logger)
        self._overlay = OptimisticOverlay(
            timeout_seconds=self._config.optimistic_job_timeout_seconds,
            monotonic=monotonic,
            logger=self._logger,
        )
        self._occupancy = OccupancyTracker()
        journal = FinalizeJournal(uow_factory, logger=self._logger) if uow_factory is not None else None
        self._finalize = FinalizeProtocol(
            remote,
            self._config,
            snapshots=self,
            journal=journal,
            monotonic=monotonic,
            logger=self._logger,
        )
        self._scheduler = JobAutoCompleter(
            remote,
            self._finalize,
            self._config,
            clock=self._clock,
            monotonic=monotonic,
            logger=self._logger,
        )
        self._reconciler = JobReconciler(
            remote,
            self._finalize,
            self._config,
            clock=self._clock,
            state=self._scheduler.state,
            logger=self._logger,
        )

        self._current_room = RoomCoord(*self._config.start_room)
        self._player: RemotePlayerState | None = None
        self._room_state: RemoteRoomState | None = None
        self._last_snapshot: RoomSnapshot | None = None
        self._suppress_depth = 0

    @property
    def current_room(self) -> RoomCoord:
        return self._current_room

    @property
    def last_snapshot(self) -> RoomSnapshot | None:
        return self._last_snapshot

    @property
    def overlay(self) -> OptimisticOverlay:
        return self._overlay

    @property
    def scheduler(self) -> JobAutoCompleter:
        return self._scheduler

    @property
    def clock(self) -> LogicalClock:
        return self._clock

    @property
    def snapshots_suppressed(self) -> bool:
        return self._suppress_depth > 0

    async def initialize(self) -> SyncResult:
        """Resolve the player's room, publish it, clear stale jobs, start the loop."""
        try:
            if not self._remote.has_session():
                raise SessionUnavailableError("no_session")
            self._player = await self._remote.fetch_player_state()
            await self._resolve_current_room()
            snapshot, report = await self._enter_current_room()
            self.start_loop()
            return SyncResult(
                status="ok",
                room=self._current_room,
                snapshot=snapshot,
                reconciled=report.cleaned,
            )
        except SessionUnavailableError as e:
            return SyncResult(status="unavailable", reason=str(e))
        except RoomNotFoundError as e:
            return SyncResult(status="error", room=self._current_room, reason=str(e))
        except Exception as e:  # pragma: no cover - defensive surface
            self._logger.exception("INITIALIZE FAILED room=%s", self._current_room)
            return SyncResult(status="error", room=self._current_room, reason=str(e))

    async def transition_to_current_player_room(self) -> SyncResult:
        """Switch to the room the player is now in, after a move was confirmed."""
        try:
            if not self._remote.has_session():
                raise SessionUnavailableError("no_session")
            self._player = await self._remote.fetch_player_state()
            self._scheduler.invalidate_player_state()
            self._occupancy.reset()
            self._room_state = None
            previous = self._current_room
            await self._resolve_current_room()
            self._logger.info("ROOM TRANSITION %s -> %s", previous, self._current_room)
            snapshot, report = await self._enter_current_room()
            return SyncResult(
                status="ok",
                room=self._current_room,
                snapshot=snapshot,
                reconciled=report.cleaned,
            )
        except SessionUnavailableError as e:
            return SyncResult(status="unavailable", reason=str(e))
        except RoomNotFoundError as e:
            return SyncResult(status="error", room=self._current_room, reason=str(e))
        except Exception as e:  # pragma: no cover - defensive surface
            self._logger.exception("ROOM TRANSITION FAILED room=%s", self._current_room)
            return SyncResult(status="error", room=self._current_room, reason=str(e))

    async def reconcile_active_jobs(self) -> ReconcileReport:
        return await self._reconciler.reconcile(self._player)

    async def refresh_current_room_snapshot(self) -> RoomSnapshot | None:
        room = self._current_room
        self.suppress_snapshots()
        try:
            room_state = await self._remote.fetch_room_state(room.x, room.y)
            if room_state is None:
                self._logger.error("Room not found at %s", room)
                return None
            current_tick = await self._clock.now()
            player = await self._remote.fetch_player_state()
            if player is not None:
                self._player = player
            occupants = await self._remote.fetch_room_occupants(room.x, room.y)
            await self._apply_occupants(occupants or ())
            self._room_state = room_state
            snapshot = self._build_snapshot(room_state, current_tick)
        finally:
            self.resume_snapshots()
        await self._push_snapshot(snapshot)
        return snapshot

    def suppress_snapshots(self) -> None:
        self._suppress_depth += 1

    def resume_snapshots(self) -> None:
        self._suppress_depth = max(0, self._suppress_depth - 1)

    async def handle_room_state_updated(self, room_state: RemoteRoomState | None) -> RoomSnapshot | None:
        """Entry point for remote room-change notifications."""
        if self.snapshots_suppressed or room_state is None:
            return None
        if room_state.coord != self._current_room:
            return None
        self._room_state = room_state
        snapshot = self._build_snapshot(room_state, self._clock.last_known)
        await self._push_snapshot(snapshot)
        return snapshot

    async def handle_room_occupants_updated(self, occupants: Sequence[OccupantView] | None) -> RoomSnapshot | None:
        if self.snapshots_suppressed or occupants is None:
            return None
        await self._apply_occupants(occupants)
        room_state = self._room_state
        if room_state is None or room_state.coord != self._current_room:
            return None
        snapshot = self._build_snapshot(room_state, self._clock.last_known)
        await self._push_snapshot(snapshot)
        return snapshot

    def set_pending_job_direction(self, direction: Direction) -> None:
        self._overlay.set_pending_job_direction(direction)

    def clear_pending_job_direction(self) -> None:
        self._overlay.clear_pending_job_direction()

    def set_pending_target_room(self, x: int, y: int) -> None:
        self._overlay.set_pending_target_room(x, y)

    async def finalize_door(self, direction: Direction) -> FinalizeOutcome:
        return await self._scheduler.finalize_now(direction, self._current_room)

    def start_loop(self) -> asyncio.Task:
        return self._scheduler.start_loop()

    async def stop_loop(self) -> None:
        await self._scheduler.stop_loop()

    async def _resolve_current_room(self) -> RoomCoord:
        # A confirmed move outruns the player account read; use it for this one resolution only.
        target = self._overlay.consume_target_room()
        if target is not None:
            self._current_room = target
            return target
        if self._player is None:
            self._player = await self._remote.fetch_player_state()
        if self._player is not None:
            self._current_room = self._player.room
        return self._current_room

    async def _enter_current_room(self) -> tuple[RoomSnapshot, ReconcileReport]:
        snapshot = await self.refresh_current_room_snapshot()
        if snapshot is None:
            raise RoomNotFoundError(self._current_room.x, self._current_room.y)

        report = await self._reconciler.reconcile(self._player)
        if report.cleaned:
            snapshot = await self.refresh_current_room_snapshot() or snapshot
        return snapshot, report

    async def _apply_occupants(self, occupants: Sequence[OccupantView]) -> None:
        deltas = self._occupancy.apply(occupants, self._remote.local_wallet_key())
        for delta in deltas:
            self._logger.debug(
                "DOOR OCCUPANCY direction=%s joined=%s left=%s",
                delta.direction.label,
                len(delta.joined),
                len(delta.left),
            )
            await self._notify(self._delta_listener, delta)

    def _build_snapshot(self, room_state: RemoteRoomState, current_tick: int) -> RoomSnapshot:
        cfg = self._config
        x, y = room_state.x, room_state.y
        view = room_view_from_state(room_state, self._remote.local_wallet_key())
        view = self._overlay.apply_door_override(view, self._clock.last_known)

        active_directions = self._overlay.resolve_active_job_directions(self._player, x, y)
        local = self._occupancy.local_occupant
        activity, activity_direction = self._overlay.resolve_local_activity(local, self._player, x, y)

        tick = current_tick if current_tick > 0 else self._clock.last_known
        timers = {}
        if tick > 0:
            for direction, door in view.doors.items():
                timer = door_timer(door, tick, cfg.seconds_per_tick, cfg.ready_buffer_ticks)
                if timer is not None:
                    timers[direction] = timer

        return RoomSnapshot(
            room=view,
            door_occupants=MappingProxyType(self._occupancy.door_occupants),
            boss_occupants=self._occupancy.boss_occupants,
            idle_occupants=self._occupancy.idle_occupants,
            local_active_job_directions=active_directions,
            local_activity=activity,
            local_activity_direction=activity_direction,
            local_fighting_boss=(local is not None and local.is_fighting_boss)
            or activity == OccupantActivity.BOSS_FIGHT,
            door_timers=MappingProxyType(timers),
            current_tick=tick,
        )

    async def _push_snapshot(self, snapshot: RoomSnapshot) -> None:
        self._last_snapshot = snapshot
        await self._notify(self._snapshot_listener, snapshot)

    async def _notify(self, listener: Callable[[Any], Any] | None, payload: Any) -> None:
        if listener is None:
            return
        try:
            maybe = listener(payload)
            if asyncio.iscoroutine(maybe):
                await maybe
        except Exception:
            self._logger.warning("Listener failed for %s", type(payload).__name__, exc_info=True)
