from __future__ import annotations

from datetime import datetime
from typing import Protocol


class FinalizeRunRepo(Protocol):
    def start(
        self,
        room_x: int,
        room_y: int,
        direction: int,
        source: str,
        started_at: datetime,
    ): ...
    def finish(self, run_id: str, status: str, reason: str | None, finished_at: datetime) -> bool: ...
    def get(self, run_id: str): ...
    def recent(self, limit: int): ...
    def list_for_door(self, room_x: int, room_y: int, direction: int, limit: int = 20): ...


class FinalizeStepRepo(Protocol):
    def add(
        self,
        run_id: str,
        step: str,
        status: str,
        signature: str | None,
    ): ...
    def list_for_run(self, run_id: str): ...


class UnitOfWork(Protocol):
    runs: FinalizeRunRepo
    steps: FinalizeStepRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
