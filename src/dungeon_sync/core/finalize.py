from __future__ import annotations

import logging
import time
from typing import Callable

from .config import EngineConfig
from .journal import FinalizeJournal
from .normalize import normalize_signature
from .ports import RemoteStatePort, SnapshotControlPort
from .types import Direction, FinalizeOutcome, RoomCoord, WallState


class SchedulerState:
    """Cooldown clock, failure counter and processing flag per door.

    Shared by the background scheduler, the manual finalize path and the
    reconciler. All three run on one event loop; the processing flag keeps
    them off the same door. Doors are keyed by room and direction so a
    sequence still running for a room the player has left never writes into
    the new room's slots.
    """

    def __init__(self) -> None:
        self._next_attempt_at: dict[tuple[RoomCoord, Direction], float] = {}
        self._failures: dict[tuple[RoomCoord, Direction], int] = {}
        self._processing: set[tuple[RoomCoord, Direction]] = set()

    def next_attempt_at(self, direction: Direction, room: RoomCoord) -> float:
        return self._next_attempt_at.get((room, direction), 0.0)

    def set_next_attempt_at(self, direction: Direction, room: RoomCoord, at: float) -> None:
        self._next_attempt_at[(room, direction)] = at

    def cooldown_remaining(self, direction: Direction, room: RoomCoord, now: float) -> float:
        return max(0.0, self.next_attempt_at(direction, room) - now)

    def failure_count(self, direction: Direction, room: RoomCoord) -> int:
        return self._failures.get((room, direction), 0)

    def record_failure(self, direction: Direction, room: RoomCoord, retry_at: float) -> int:
        count = self.failure_count(direction, room) + 1
        self._failures[(room, direction)] = count
        self._next_attempt_at[(room, direction)] = retry_at
        return count

    def reset_failures(self, direction: Direction, room: RoomCoord) -> None:
        self._failures.pop((room, direction), None)

    def reset_direction(self, direction: Direction, room: RoomCoord) -> None:
        self._failures.pop((room, direction), None)
        self._next_attempt_at.pop((room, direction), None)

    def reset_all(self) -> None:
        self._failures.clear()
        self._next_attempt_at.clear()

    def is_given_up(self, direction: Direction, room: RoomCoord, max_retries: int) -> bool:
        return self.failure_count(direction, room) >= max_retries

    def is_processing(self, direction: Direction, room: RoomCoord) -> bool:
        return (room, direction) in self._processing

    def begin_processing(self, direction: Direction, room: RoomCoord) -> bool:
        if (room, direction) in self._processing:
            return False
        self._processing.add((room, direction))
        return True

    def end_processing(self, direction: Direction, room: RoomCoord) -> None:
        self._processing.discard((room, direction))


class FinalizeProtocol:
    """Runs Tick -> Complete -> Claim for one job.

    Remote failures come back as empty signatures and are folded into a
    ``FinalizeOutcome``; exceptions from the remote port propagate to the
    caller after snapshot suppression has been released.
    """

    def __init__(
        self,
        remote: RemoteStatePort,
        config: EngineConfig | None = None,
        *,
        snapshots: SnapshotControlPort | None = None,
        journal: FinalizeJournal | None = None,
        monotonic: Callable[[], float] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._remote = remote
        self._config = config or EngineConfig()
        self._snapshots = snapshots
        self._journal = journal
        self._monotonic = monotonic or time.monotonic
        self._logger = logger or logging.getLogger(__name__)

    def attach_snapshot_control(self, snapshots: SnapshotControlPort | None) -> None:
        self._snapshots = snapshots

    async def finalize(
        self,
        direction: Direction,
        room: RoomCoord,
        *,
        state: SchedulerState | None = None,
        source: str = "scheduler",
        refresh_after: bool = True,
    ) -> FinalizeOutcome:
        cfg = self._config
        label = f"{room} {direction.label}"

        if state is not None:
            if state.is_given_up(direction, room, cfg.max_retries):
                self._logger.info(
                    "FINALIZE GIVEN UP door=%s failures=%s",
                    label,
                    state.failure_count(direction, room),
                )
                return FinalizeOutcome(status="given_up", direction=direction, room=room)
            if not state.begin_processing(direction, room):
                return FinalizeOutcome(status="busy", direction=direction, room=room)

        run_id = self._journal.start_run(room, direction, source) if self._journal else None
        outcome = FinalizeOutcome(status="error", direction=direction, room=room, reason="interrupted")
        self._logger.info("FINALIZE START door=%s source=%s", label, source)

        # Each remote call's confirmation would otherwise push an intermediate snapshot.
        if self._snapshots is not None:
            self._snapshots.suppress_snapshots()
        try:
            outcome = await self._run_steps(direction, room, state, run_id)
        finally:
            if state is not None:
                state.end_processing(direction, room)
            if self._journal is not None:
                self._journal.finish_run(run_id, outcome)
            if self._snapshots is not None:
                self._snapshots.resume_snapshots()
                if refresh_after:
                    await self._refresh_best_effort(label)

        self._logger.info("FINALIZE DONE door=%s status=%s", label, outcome.status)
        return outcome

    async def claim(
        self,
        direction: Direction,
        room: RoomCoord,
        *,
        state: SchedulerState | None = None,
        source: str = "reconciler",
    ) -> FinalizeOutcome:
        if state is not None and not state.begin_processing(direction, room):
            return FinalizeOutcome(status="busy", direction=direction, room=room)

        run_id = self._journal.start_run(room, direction, source) if self._journal else None
        outcome = FinalizeOutcome(status="error", direction=direction, room=room, reason="interrupted")
        try:
            signature = normalize_signature(await self._remote.submit_claim(direction, room))
            self._record(run_id, "claim", signature)
            if signature is None:
                self._logger.warning("CLAIM FAILED door=%s %s", room, direction.label)
                outcome = FinalizeOutcome(status="claim_failed", direction=direction, room=room)
            else:
                outcome = FinalizeOutcome(status="claimed", direction=direction, room=room, claim_signature=signature)
        finally:
            if state is not None:
                state.end_processing(direction, room)
            if self._journal is not None:
                self._journal.finish_run(run_id, outcome)
        return outcome

    async def _refresh_best_effort(self, label: str) -> None:
        try:
            await self._snapshots.refresh_current_room_snapshot()
        except Exception:
            self._logger.warning("SNAPSHOT REFRESH FAILED after finalize door=%s", label, exc_info=True)

    async def _run_steps(
        self,
        direction: Direction,
        room: RoomCoord,
        state: SchedulerState | None,
        run_id: str | None,
    ) -> FinalizeOutcome:
        cfg = self._config
        label = f"{room} {direction.label}"

        tick_sig = normalize_signature(await self._remote.submit_tick(direction, room))
        self._record(run_id, "tick", tick_sig)
        if tick_sig is None:
            failures = self._record_failure(state, direction, room)
            self._logger.warning("TICK FAILED door=%s failures=%s, aborting cycle", label, failures)
            return FinalizeOutcome(status="tick_failed", direction=direction, room=room)

        player = await self._remote.fetch_player_state()
        room_state = await self._remote.fetch_room_state(room.x, room.y)
        if player is None or room_state is None:
            return FinalizeOutcome(
                status="unavailable",
                direction=direction,
                room=room,
                tick_signature=tick_sig,
                reason="state_unavailable",
            )

        door = room_state.door(direction)
        if door.wall_state != WallState.RUBBLE:
            if state is not None:
                state.reset_failures(direction, room)
            self._logger.info("FINALIZE RESOLVED ELSEWHERE door=%s wall=%s", label, door.wall_state.name)
            return FinalizeOutcome(
                status="resolved_elsewhere",
                direction=direction,
                room=room,
                tick_signature=tick_sig,
            )

        if door.progress < door.required_progress:
            self._logger.info(
                "FINALIZE NOT READY door=%s progress=%s/%s",
                label,
                door.progress,
                door.required_progress,
            )
            return FinalizeOutcome(status="not_ready", direction=direction, room=room, tick_signature=tick_sig)

        if not await self._remote.has_helper_stake(direction, room):
            self._logger.info("FINALIZE NO STAKE door=%s, skipping complete", label)
            return FinalizeOutcome(status="no_stake", direction=direction, room=room, tick_signature=tick_sig)

        complete_sig = normalize_signature(await self._remote.submit_complete(direction, room))
        self._record(run_id, "complete", complete_sig)
        if complete_sig is None:
            failures = self._record_failure(state, direction, room)
            self._logger.warning(
                "COMPLETE FAILED door=%s attempt=%s/%s",
                label,
                failures,
                cfg.max_retries,
            )
            return FinalizeOutcome(
                status="complete_failed",
                direction=direction,
                room=room,
                tick_signature=tick_sig,
                reason=f"attempt {failures}/{cfg.max_retries}",
            )

        if state is not None:
            state.reset_failures(direction, room)

        claim_sig = normalize_signature(await self._remote.submit_claim(direction, room))
        self._record(run_id, "claim", claim_sig)
        if claim_sig is None:
            self._logger.warning("CLAIM FAILED door=%s (non-fatal, retried next cycle)", label)
            return FinalizeOutcome(
                status="completed",
                direction=direction,
                room=room,
                tick_signature=tick_sig,
                complete_signature=complete_sig,
            )

        return FinalizeOutcome(
            status="claimed",
            direction=direction,
            room=room,
            tick_signature=tick_sig,
            complete_signature=complete_sig,
            claim_signature=claim_sig,
        )

    def _record_failure(self, state: SchedulerState | None, direction: Direction, room: RoomCoord) -> int:
        if state is None:
            return 0
        return state.record_failure(direction, room, self._monotonic() + self._config.failure_cooldown_seconds)

    def _record(self, run_id: str | None, step: str, signature: str | None) -> None:
        if self._journal is not None:
            self._journal.record_step(run_id, step, signature)
