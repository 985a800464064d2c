from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..persistence.interfaces import UnitOfWork
from .types import Direction, FinalizeOutcome, RoomCoord


class FinalizeJournal:
    """Best-effort record of finalize runs and their remote steps.

    Every write opens its own unit of work; a failed write is logged and the
    finalize sequence carries on.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        *,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock or datetime.utcnow
        self._logger = logger or logging.getLogger(__name__)

    def start_run(self, room: RoomCoord, direction: Direction, source: str) -> str | None:
        try:
            with self._uow_factory() as uow:
                run = uow.runs.start(
                    room_x=room.x,
                    room_y=room.y,
                    direction=int(direction),
                    source=source,
                    started_at=self._clock(),
                )
                uow.commit()
                return run.id
        except Exception:
            self._logger.warning("Journal start_run failed room=%s direction=%s", room, direction.label, exc_info=True)
            return None

    def record_step(self, run_id: str | None, step: str, signature: str | None) -> None:
        if run_id is None:
            return
        try:
            with self._uow_factory() as uow:
                uow.steps.add(
                    run_id=run_id,
                    step=step,
                    status="ok" if signature else "failed",
                    signature=signature,
                )
                uow.commit()
        except Exception:
            self._logger.warning("Journal record_step failed run=%s step=%s", run_id, step, exc_info=True)

    def finish_run(self, run_id: str | None, outcome: FinalizeOutcome) -> None:
        if run_id is None:
            return
        try:
            with self._uow_factory() as uow:
                uow.runs.finish(run_id, outcome.status, outcome.reason, self._clock())
                uow.commit()
        except Exception:
            self._logger.warning("Journal finish_run failed run=%s", run_id, exc_info=True)
