from __future__ import annotations

import asyncio
import logging
import time

from dungeon_sync.core.config import EngineConfig
from dungeon_sync.core.engine import DungeonSyncEngine
from dungeon_sync.core.types import (
    ActiveJob,
    Direction,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    WallState,
)
from dungeon_sync.persistence.sqlalchemy import build_uow_factory

WALLET = "DemoWa11et00000000000000000000000"
SECONDS_PER_TICK = 0.1


class DemoLedger:
    """One room, one player; the slot advances every SECONDS_PER_TICK."""

    def __init__(self):
        self._t0 = time.monotonic()
        self.walls = [WallState.RUBBLE, WallState.SOLID, WallState.RUBBLE, WallState.SOLID]
        self.helpers = [0, 0, 0, 0]
        self.start = [0, 0, 0, 0]
        self.required = [12, 0, 30, 0]
        self.progress = [0, 0, 0, 0]
        self.completed = [False] * 4
        self.jobs: list[ActiveJob] = []

    def slot(self) -> int:
        return 1000 + int((time.monotonic() - self._t0) / SECONDS_PER_TICK)

    def join(self, direction: Direction) -> None:
        i = int(direction)
        self.helpers[i] += 1
        if self.start[i] == 0:
            self.start[i] = self.slot()
        self.jobs.append(ActiveJob(5, 5, direction))

    def has_session(self) -> bool:
        return True

    def local_wallet_key(self) -> str | None:
        return WALLET

    async def fetch_room_state(self, x: int, y: int) -> RemoteRoomState | None:
        if (x, y) != (5, 5):
            return None
        return RemoteRoomState(
            x=x,
            y=y,
            walls=tuple(int(w) for w in self.walls),
            helper_counts=tuple(self.helpers),
            progress=tuple(self.progress),
            start_ticks=tuple(self.start),
            required_progress=tuple(self.required),
            job_completed=tuple(self.completed),
        )

    async def fetch_player_state(self) -> RemotePlayerState | None:
        return RemotePlayerState(owner=WALLET, room_x=5, room_y=5, active_jobs=tuple(self.jobs))

    async def fetch_room_occupants(self, x: int, y: int):
        return []

    async def fetch_current_tick(self) -> int:
        return self.slot()

    async def has_helper_stake(self, direction: Direction, room: RoomCoord | None = None) -> bool:
        return any(job.direction == direction for job in self.jobs)

    async def submit_tick(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        i = int(direction)
        elapsed = max(0, self.slot() - self.start[i])
        self.progress[i] = min(self.required[i], elapsed * self.helpers[i])
        return f"tick-{i}-{self.slot()}"

    async def submit_complete(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        i = int(direction)
        self.walls[i] = WallState.OPEN
        self.completed[i] = True
        return f"complete-{i}"

    async def submit_claim(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        self.jobs = [job for job in self.jobs if job.direction != direction]
        return f"claim-{int(direction)}"


def print_snapshot(snapshot) -> None:
    doors = []
    for direction in Direction:
        door = snapshot.room.doors[direction]
        timer = snapshot.door_timers.get(direction)
        doors.append(f"{direction.label}={door.wall_state.name}{' ' + timer.label if timer else ''}")
    print(f"tick={snapshot.current_tick} activity={snapshot.local_activity.name} doors: {', '.join(doors)}")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    uow_factory = build_uow_factory()
    ledger = DemoLedger()
    config = EngineConfig(
        idle_poll_seconds=0.5,
        min_recheck_seconds=0.1,
        max_recheck_seconds=0.5,
        seconds_per_tick=SECONDS_PER_TICK,
        attempt_cooldown_seconds=0.2,
    )
    engine = DungeonSyncEngine(ledger, config, snapshot_listener=print_snapshot, uow_factory=uow_factory)

    result = await engine.initialize()
    print("initialize status:", result.status)

    # Local join confirmed; the overlay shows the timer before the next read.
    engine.set_pending_job_direction(Direction.NORTH)
    ledger.join(Direction.NORTH)
    await engine.refresh_current_room_snapshot()

    await asyncio.sleep(2.0)
    await engine.stop_loop()

    with uow_factory() as uow:
        for run in reversed(uow.runs.recent(10)):
            print("journal:", Direction(run.direction).label, run.source, run.status)


if __name__ == "__main__":
    asyncio.run(main())
