from __future__ import annotations

from typing import Iterable

from .normalize import normalize_wallet_key
from .types import Direction, DoorOccupancyDelta, OccupantActivity, OccupantView


def _by_identity(occupants: Iterable[OccupantView]) -> dict[str, OccupantView]:
    lookup: dict[str, OccupantView] = {}
    for occupant in occupants:
        key = normalize_wallet_key(occupant.wallet_key)
        if not key:
            continue
        lookup[key] = occupant
    return lookup


def diff_door_occupants(
    direction: Direction,
    previous: Iterable[OccupantView],
    current: Iterable[OccupantView],
) -> DoorOccupancyDelta | None:
    """Return who joined and who left one door, or ``None`` if nobody did.

    Occupants are matched by wallet key only; results are sorted by key so the
    delta does not depend on input order.
    """
    previous_lookup = _by_identity(previous)
    current_lookup = _by_identity(current)

    joined = tuple(current_lookup[key] for key in sorted(current_lookup.keys() - previous_lookup.keys()))
    left = tuple(previous_lookup[key] for key in sorted(previous_lookup.keys() - current_lookup.keys()))
    if not joined and not left:
        return None
    return DoorOccupancyDelta(direction=direction, joined=joined, left=left)


class OccupancyTracker:
    """Keeps the last occupant partition of the current room."""

    def __init__(self) -> None:
        self._doors: dict[Direction, tuple[OccupantView, ...]] = {direction: () for direction in Direction}
        self._boss: tuple[OccupantView, ...] = ()
        self._idle: tuple[OccupantView, ...] = ()
        self._local: OccupantView | None = None

    @property
    def door_occupants(self) -> dict[Direction, tuple[OccupantView, ...]]:
        return dict(self._doors)

    @property
    def boss_occupants(self) -> tuple[OccupantView, ...]:
        return self._boss

    @property
    def idle_occupants(self) -> tuple[OccupantView, ...]:
        return self._idle

    @property
    def local_occupant(self) -> OccupantView | None:
        return self._local

    def reset(self) -> None:
        self._doors = {direction: () for direction in Direction}
        self._boss = ()
        self._idle = ()
        self._local = None

    def apply(self, occupants: Iterable[OccupantView], local_wallet: str | None) -> list[DoorOccupancyDelta]:
        local_key = normalize_wallet_key(local_wallet)
        doors: dict[Direction, list[OccupantView]] = {direction: [] for direction in Direction}
        boss: list[OccupantView] = []
        idle: list[OccupantView] = []
        local: OccupantView | None = None

        for occupant in occupants:
            if local_key and normalize_wallet_key(occupant.wallet_key) == local_key:
                local = occupant
                continue
            if occupant.activity == OccupantActivity.BOSS_FIGHT:
                boss.append(occupant)
                continue
            if occupant.activity == OccupantActivity.DOOR_JOB and occupant.activity_direction is not None:
                doors[occupant.activity_direction].append(occupant)
                continue
            idle.append(occupant)

        deltas: list[DoorOccupancyDelta] = []
        for direction in Direction:
            delta = diff_door_occupants(direction, self._doors[direction], doors[direction])
            if delta is not None:
                deltas.append(delta)
            self._doors[direction] = tuple(doors[direction])

        self._boss = tuple(boss)
        self._idle = tuple(idle)
        self._local = local
        return deltas
