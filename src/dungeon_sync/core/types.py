from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping, Optional


class Direction(IntEnum):
    NORTH = 0
    SOUTH = 1
    EAST = 2
    WEST = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def opposite(self) -> "Direction":
        return _OPPOSITES[self]


_OPPOSITES = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST: Direction.WEST,
    Direction.WEST: Direction.EAST,
}


class WallState(IntEnum):
    SOLID = 0
    RUBBLE = 1
    OPEN = 2
    UNKNOWN = 255


class CenterType(IntEnum):
    EMPTY = 0
    CHEST = 1
    BOSS = 2
    UNKNOWN = 255


class OccupantActivity(IntEnum):
    IDLE = 0
    DOOR_JOB = 1
    BOSS_FIGHT = 2
    UNKNOWN = 255


@dataclass(frozen=True, order=True)
class RoomCoord:
    x: int
    y: int

    def adjacent(self, direction: Direction) -> "RoomCoord":
        if direction == Direction.NORTH:
            return RoomCoord(self.x, self.y + 1)
        if direction == Direction.SOUTH:
            return RoomCoord(self.x, self.y - 1)
        if direction == Direction.EAST:
            return RoomCoord(self.x + 1, self.y)
        return RoomCoord(self.x - 1, self.y)

    def __str__(self) -> str:
        return f"({self.x},{self.y})"


def _at(values: tuple, index: int, default):
    return values[index] if index < len(values) else default


@dataclass(frozen=True)
class RemoteRoomState:
    """Authoritative room account as last read from the ledger.

    Per-direction fields are indexed by ``Direction``; short tuples read as
    zero/unknown for the missing directions.
    """

    x: int
    y: int
    walls: tuple[int, ...] = ()
    helper_counts: tuple[int, ...] = ()
    progress: tuple[int, ...] = ()
    start_ticks: tuple[int, ...] = ()
    required_progress: tuple[int, ...] = ()
    job_completed: tuple[bool, ...] = ()
    center_type: int = CenterType.EMPTY
    center_id: int = 0
    boss_max_hp: int = 0
    boss_current_hp: int = 0
    boss_defeated: bool = False
    looted_by: tuple[str, ...] = ()

    @property
    def coord(self) -> RoomCoord:
        return RoomCoord(self.x, self.y)

    def wall(self, direction: Direction) -> WallState:
        raw = _at(self.walls, int(direction), WallState.UNKNOWN)
        try:
            return WallState(raw)
        except ValueError:
            return WallState.UNKNOWN

    def door(self, direction: Direction) -> "DoorView":
        index = int(direction)
        return DoorView(
            direction=direction,
            wall_state=self.wall(direction),
            helper_count=int(_at(self.helper_counts, index, 0)),
            progress=int(_at(self.progress, index, 0)),
            start_tick=int(_at(self.start_ticks, index, 0)),
            required_progress=int(_at(self.required_progress, index, 0)),
            is_completed=bool(_at(self.job_completed, index, False)),
        )


@dataclass(frozen=True)
class ActiveJob:
    room_x: int
    room_y: int
    direction: Direction

    @property
    def room(self) -> RoomCoord:
        return RoomCoord(self.room_x, self.room_y)


@dataclass(frozen=True)
class RemotePlayerState:
    owner: str
    room_x: int
    room_y: int
    active_jobs: tuple[ActiveJob, ...] = ()
    equipped_item_id: int = 0
    jobs_completed: int = 0

    @property
    def room(self) -> RoomCoord:
        return RoomCoord(self.room_x, self.room_y)

    def jobs_in_room(self, x: int, y: int) -> list[ActiveJob]:
        return [job for job in self.active_jobs if job.room_x == x and job.room_y == y]


@dataclass(frozen=True)
class OccupantView:
    wallet_key: str
    activity: OccupantActivity = OccupantActivity.IDLE
    activity_direction: Optional[Direction] = None
    equipped_item_id: int = 0
    skin_id: int = 0
    is_fighting_boss: bool = False

    @property
    def display_name(self) -> str:
        return short_wallet(self.wallet_key)


def short_wallet(wallet: str | None) -> str:
    if not wallet or len(wallet.strip()) < 10:
        return "Unknown"
    return f"{wallet[:4]}...{wallet[-4:]}"


@dataclass(frozen=True)
class DoorView:
    direction: Direction
    wall_state: WallState
    helper_count: int = 0
    progress: int = 0
    start_tick: int = 0
    required_progress: int = 0
    is_completed: bool = False

    @property
    def is_rubble(self) -> bool:
        return self.wall_state == WallState.RUBBLE

    @property
    def is_open(self) -> bool:
        return self.wall_state == WallState.OPEN


@dataclass(frozen=True)
class BossView:
    monster_id: int
    max_hp: int
    current_hp: int
    is_dead: bool


@dataclass(frozen=True)
class RoomView:
    x: int
    y: int
    center_type: CenterType
    doors: Mapping[Direction, DoorView]
    looted_count: int = 0
    has_local_player_looted: bool = False
    boss: Optional[BossView] = None

    @property
    def coord(self) -> RoomCoord:
        return RoomCoord(self.x, self.y)

    def with_door(self, door: DoorView) -> "RoomView":
        doors = dict(self.doors)
        doors[door.direction] = door
        return RoomView(
            x=self.x,
            y=self.y,
            center_type=self.center_type,
            doors=MappingProxyType(doors),
            looted_count=self.looted_count,
            has_local_player_looted=self.has_local_player_looted,
            boss=self.boss,
        )


@dataclass(frozen=True)
class DoorTimer:
    remaining_ticks: int
    seconds_remaining: float
    label: str


@dataclass(frozen=True)
class DoorOccupancyDelta:
    direction: Direction
    joined: tuple[OccupantView, ...] = ()
    left: tuple[OccupantView, ...] = ()


@dataclass(frozen=True)
class RoomSnapshot:
    room: RoomView
    door_occupants: Mapping[Direction, tuple[OccupantView, ...]]
    boss_occupants: tuple[OccupantView, ...] = ()
    idle_occupants: tuple[OccupantView, ...] = ()
    local_active_job_directions: frozenset[Direction] = frozenset()
    local_activity: OccupantActivity = OccupantActivity.IDLE
    local_activity_direction: Optional[Direction] = None
    local_fighting_boss: bool = False
    door_timers: Mapping[Direction, DoorTimer] = field(default_factory=lambda: MappingProxyType({}))
    current_tick: int = 0


@dataclass
class FinalizeOutcome:
    status: str
    direction: Direction
    room: Optional[RoomCoord] = None
    tick_signature: Optional[str] = None
    complete_signature: Optional[str] = None
    claim_signature: Optional[str] = None
    reason: Optional[str] = None

    @property
    def job_resolved(self) -> bool:
        return self.status in ("claimed", "completed")


@dataclass
class ReconcileReport:
    cleaned: bool = False
    outcomes: list[FinalizeOutcome] = field(default_factory=list)
    skipped: int = 0


@dataclass
class SyncResult:
    status: str
    room: Optional[RoomCoord] = None
    snapshot: Optional[RoomSnapshot] = None
    reconciled: bool = False
    reason: Optional[str] = None
