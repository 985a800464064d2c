from __future__ import annotations

import logging

from .clock import LogicalClock
from .config import EngineConfig
from .finalize import FinalizeProtocol, SchedulerState
from .ports import RemoteStatePort
from .progress import door_progress, is_active_job
from .types import ActiveJob, FinalizeOutcome, ReconcileReport, RemotePlayerState, WallState


class JobReconciler:
    """Clears already-resolvable jobs on session start and room entry.

    Jobs may live in any room. Each job is handled on its own; an error on one
    is logged and the rest still run. When given the scheduler's state, a door
    the scheduler or a manual finalize is already working on is skipped.
    """

    def __init__(
        self,
        remote: RemoteStatePort,
        finalize: FinalizeProtocol,
        config: EngineConfig | None = None,
        *,
        clock: LogicalClock | None = None,
        state: SchedulerState | None = None,
        logger: logging.Logger | None = None,
    ):
        self._remote = remote
        self._finalize = finalize
        self._config = config or EngineConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock or LogicalClock(remote, logger=self._logger)
        self._state = state

    async def reconcile(self, player: RemotePlayerState | None = None) -> ReconcileReport:
        report = ReconcileReport()
        if player is None:
            player = await self._remote.fetch_player_state()
        if player is None or not player.active_jobs:
            return report

        jobs = list(player.active_jobs)
        current_tick = await self._clock.now()
        self._logger.info("RECONCILE START jobs=%s tick=%s", len(jobs), current_tick)

        for job in jobs:
            try:
                await self._reconcile_job(job, current_tick, report)
            except Exception:
                self._logger.warning(
                    "RECONCILE JOB FAILED room=%s direction=%s",
                    job.room,
                    job.direction.label,
                    exc_info=True,
                )

        self._logger.info(
            "RECONCILE DONE cleaned=%s outcomes=%s skipped=%s",
            report.cleaned,
            len(report.outcomes),
            report.skipped,
        )
        return report

    async def _reconcile_job(self, job: ActiveJob, current_tick: int, report: ReconcileReport) -> None:
        room_state = await self._remote.fetch_room_state(job.room_x, job.room_y)
        if room_state is None:
            report.skipped += 1
            return

        door = room_state.door(job.direction)
        if door.wall_state == WallState.OPEN or door.is_completed:
            outcome = await self._finalize.claim(job.direction, job.room, state=self._state, source="reconciler")
            if self._record(outcome, report) and outcome.status == "claimed":
                report.cleaned = True
            return

        if (
            door.wall_state == WallState.RUBBLE
            and current_tick > 0
            and is_active_job(door.helper_count, door.start_tick, door.required_progress)
            and door_progress(door, current_tick, self._config.ready_buffer_ticks).is_complete
        ):
            outcome = await self._finalize.finalize(
                job.direction,
                job.room,
                state=self._state,
                source="reconciler",
                refresh_after=False,
            )
            if self._record(outcome, report) and outcome.job_resolved:
                report.cleaned = True
            return

        report.skipped += 1

    def _record(self, outcome: FinalizeOutcome, report: ReconcileReport) -> bool:
        if outcome.status == "busy":
            self._logger.info("RECONCILE SKIP door=%s %s already being finalized", outcome.room, outcome.direction.label)
            report.skipped += 1
            return False
        report.outcomes.append(outcome)
        return True
