from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class FinalizeRun(TimestampMixin, Base):
    __tablename__ = "dse_finalize_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    room_x: Mapped[int] = mapped_column(Integer, nullable=False)
    room_y: Mapped[int] = mapped_column(Integer, nullable=False)
    direction: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(24), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="running")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("direction BETWEEN 0 AND 3", name="finalize_run_direction_valid"),
        CheckConstraint(
            "source IN ('scheduler','manual','reconciler')",
            name="finalize_run_source_valid",
        ),
    )


Index("ix_dse_finalize_run_door_started", FinalizeRun.room_x, FinalizeRun.room_y, FinalizeRun.direction, FinalizeRun.started_at)


class FinalizeStep(Base):
    __tablename__ = "dse_finalize_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), ForeignKey("dse_finalize_runs.id"), nullable=False)

    step: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    signature: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("step IN ('tick','complete','claim')", name="finalize_step_kind_valid"),
        CheckConstraint("status IN ('ok','failed')", name="finalize_step_status_valid"),
    )


Index("ix_dse_finalize_step_run", FinalizeStep.run_id, FinalizeStep.id)
