from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import text

from dungeon_sync.core.types import (
    ActiveJob,
    Direction,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    WallState,
)
from dungeon_sync.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from dungeon_sync.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork

LOCAL_WALLET = "LocalWa11etKey111111111111111111"


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """In-memory ledger with the same observable behaviour as the remote program.

    Tick recomputes door progress from the current slot, Complete opens the
    wall, Claim drops the player's active job and helper stake.
    """

    def __init__(self, wallet: str = LOCAL_WALLET, room: tuple[int, int] = (5, 5)):
        self.wallet = wallet
        self.session = True
        self.tick = 0
        self.rooms: dict[tuple[int, int], dict] = {}
        self.occupants: dict[tuple[int, int], list] = {}
        self.player_room = room
        self.active_jobs: list[ActiveJob] = []
        self.stakes: set[tuple[int, int, Direction]] = set()
        self.failing: set[str] = set()
        self.raising: set[str] = set()
        self.player_missing = False
        self.tick_gate: asyncio.Event | None = None
        self.calls: list[tuple[str, RoomCoord, Direction]] = []
        self.player_fetches = 0
        self._sig = 0
        self.add_room(*room)

    def add_room(self, x: int, y: int) -> dict:
        room = {
            "walls": [WallState.SOLID] * 4,
            "helpers": [0] * 4,
            "progress": [0] * 4,
            "start": [0] * 4,
            "required": [0] * 4,
            "completed": [False] * 4,
            "center_type": 0,
            "looted_by": [],
        }
        self.rooms[(x, y)] = room
        return room

    def set_door(
        self,
        direction: Direction,
        *,
        room: tuple[int, int] | None = None,
        wall: WallState = WallState.RUBBLE,
        helpers: int = 0,
        start: int = 0,
        required: int = 0,
        progress: int = 0,
        completed: bool = False,
    ) -> None:
        key = room or self.player_room
        data = self.rooms.get(key) or self.add_room(*key)
        index = int(direction)
        data["walls"][index] = wall
        data["helpers"][index] = helpers
        data["start"][index] = start
        data["required"][index] = required
        data["progress"][index] = progress
        data["completed"][index] = completed

    def join_job(self, direction: Direction, room: tuple[int, int] | None = None) -> None:
        x, y = room or self.player_room
        self.active_jobs.append(ActiveJob(x, y, direction))
        self.stakes.add((x, y, direction))

    def count(self, step: str) -> int:
        return sum(1 for call in self.calls if call[0] == step)

    def _resolve(self, room: RoomCoord | None) -> tuple[int, int]:
        if room is None:
            return self.player_room
        return (room.x, room.y)

    def _next_sig(self, step: str) -> str:
        self._sig += 1
        return f"{step}-sig-{self._sig}"

    def has_session(self) -> bool:
        if "session" in self.raising:
            raise RuntimeError("session lookup failed")
        return self.session

    def local_wallet_key(self) -> str | None:
        return self.wallet

    async def fetch_room_state(self, x: int, y: int) -> RemoteRoomState | None:
        if "room" in self.raising:
            raise RuntimeError("rpc down")
        data = self.rooms.get((x, y))
        if data is None:
            return None
        return RemoteRoomState(
            x=x,
            y=y,
            walls=tuple(int(w) for w in data["walls"]),
            helper_counts=tuple(data["helpers"]),
            progress=tuple(data["progress"]),
            start_ticks=tuple(data["start"]),
            required_progress=tuple(data["required"]),
            job_completed=tuple(data["completed"]),
            center_type=data["center_type"],
            looted_by=tuple(data["looted_by"]),
        )

    async def fetch_player_state(self) -> RemotePlayerState | None:
        self.player_fetches += 1
        if self.player_missing:
            return None
        x, y = self.player_room
        return RemotePlayerState(owner=self.wallet, room_x=x, room_y=y, active_jobs=tuple(self.active_jobs))

    async def fetch_room_occupants(self, x: int, y: int):
        return list(self.occupants.get((x, y), []))

    async def fetch_current_tick(self) -> int:
        if "tick" in self.raising:
            raise RuntimeError("slot unavailable")
        return self.tick

    async def has_helper_stake(self, direction: Direction, room: RoomCoord | None = None) -> bool:
        x, y = self._resolve(room)
        return (x, y, direction) in self.stakes

    async def submit_tick(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        key = self._resolve(room)
        self.calls.append(("tick", RoomCoord(*key), direction))
        if self.tick_gate is not None:
            await self.tick_gate.wait()
        if "tick" in self.failing:
            return ""
        data = self.rooms[key]
        index = int(direction)
        if data["walls"][index] == WallState.RUBBLE and data["start"][index] > 0:
            elapsed = max(0, self.tick - data["start"][index])
            data["progress"][index] = min(data["required"][index], elapsed * data["helpers"][index])
        return self._next_sig("tick")

    async def submit_complete(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        key = self._resolve(room)
        self.calls.append(("complete", RoomCoord(*key), direction))
        if "complete" in self.failing:
            return None
        data = self.rooms[key]
        index = int(direction)
        data["walls"][index] = WallState.OPEN
        data["completed"][index] = True
        return self._next_sig("complete")

    async def submit_claim(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        key = self._resolve(room)
        self.calls.append(("claim", RoomCoord(*key), direction))
        if "claim" in self.failing:
            return "   "
        x, y = key
        self.active_jobs = [
            job for job in self.active_jobs if not (job.room_x == x and job.room_y == y and job.direction == direction)
        ]
        self.stakes.discard((x, y, direction))
        return self._next_sig("claim")


@pytest.fixture()
def ledger():
    return FakeLedger()


@pytest.fixture()
def monotonic():
    return FakeMonotonic()


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    sf = build_session_factory(engine)
    with sf() as session:
        session.execute(text("PRAGMA foreign_keys=ON"))
        session.commit()
    return sf


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory
