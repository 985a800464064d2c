from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import FinalizeRun, FinalizeStep


class FinalizeRunRepo:
    def __init__(self, session: Session):
        self.session = session

    def start(
        self,
        room_x: int,
        room_y: int,
        direction: int,
        source: str,
        started_at: datetime,
    ) -> FinalizeRun:
        row = FinalizeRun(
            room_x=room_x,
            room_y=room_y,
            direction=direction,
            source=source,
            status="running",
            started_at=started_at,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def finish(self, run_id: str, status: str, reason: str | None, finished_at: datetime) -> bool:
        stmt = (
            update(FinalizeRun)
            .where(FinalizeRun.id == run_id)
            .where(FinalizeRun.status == "running")
            .values(status=status, reason=reason, finished_at=finished_at, updated_at=finished_at)
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def get(self, run_id: str) -> FinalizeRun | None:
        return self.session.get(FinalizeRun, run_id)

    def recent(self, limit: int) -> list[FinalizeRun]:
        stmt = select(FinalizeRun).order_by(FinalizeRun.started_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def list_for_door(self, room_x: int, room_y: int, direction: int, limit: int = 20) -> list[FinalizeRun]:
        stmt = (
            select(FinalizeRun)
            .where(FinalizeRun.room_x == room_x)
            .where(FinalizeRun.room_y == room_y)
            .where(FinalizeRun.direction == direction)
            .order_by(FinalizeRun.started_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())


class FinalizeStepRepo:
    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        run_id: str,
        step: str,
        status: str,
        signature: str | None,
    ) -> FinalizeStep:
        row = FinalizeStep(run_id=run_id, step=step, status=status, signature=signature)
        self.session.add(row)
        self.session.flush()
        return row

    def list_for_run(self, run_id: str) -> list[FinalizeStep]:
        stmt = select(FinalizeStep).where(FinalizeStep.run_id == run_id).order_by(FinalizeStep.id.asc())
        return list(self.session.execute(stmt).scalars().all())
