from __future__ import annotations

from typing import Awaitable, Callable, Protocol, Sequence

from .types import (
    Direction,
    DoorOccupancyDelta,
    OccupantView,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    RoomSnapshot,
)


class RemoteStatePort(Protocol):
    """Abstract ledger collaborator.

    ``room=None`` targets the player's current room; an explicit coordinate
    selects the cross-room variant of the call. Submit calls return a
    transaction signature, or ``None``/empty on failure.
    """

    def has_session(self) -> bool:
        ...

    def local_wallet_key(self) -> str | None:
        ...

    async def fetch_room_state(self, x: int, y: int) -> RemoteRoomState | None:
        ...

    async def fetch_player_state(self) -> RemotePlayerState | None:
        ...

    async def fetch_room_occupants(self, x: int, y: int) -> Sequence[OccupantView]:
        ...

    async def fetch_current_tick(self) -> int:
        ...

    async def has_helper_stake(self, direction: Direction, room: RoomCoord | None = None) -> bool:
        ...

    async def submit_tick(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        ...

    async def submit_complete(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        ...

    async def submit_claim(self, direction: Direction, room: RoomCoord | None = None) -> str | None:
        ...


class SnapshotControlPort(Protocol):
    def suppress_snapshots(self) -> None:
        ...

    def resume_snapshots(self) -> None:
        ...

    async def refresh_current_room_snapshot(self) -> RoomSnapshot | None:
        ...


SnapshotListener = Callable[[RoomSnapshot], Awaitable[None] | None]
DeltaListener = Callable[[DoorOccupancyDelta], Awaitable[None] | None]
