from __future__ import annotations

from types import MappingProxyType

from .types import (
    BossView,
    CenterType,
    Direction,
    RemoteRoomState,
    RoomView,
)


def normalize_signature(value: str | None) -> str | None:
    """Blank signatures count as a failed submission."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_wallet_key(value: str | None) -> str:
    return (value or "").strip()


def to_center_type(raw: int) -> CenterType:
    try:
        return CenterType(raw)
    except ValueError:
        return CenterType.UNKNOWN


def room_view_from_state(room: RemoteRoomState, local_wallet: str | None = None) -> RoomView:
    doors = {direction: room.door(direction) for direction in Direction}
    wallet = normalize_wallet_key(local_wallet)
    has_looted = bool(wallet) and any(normalize_wallet_key(key) == wallet for key in room.looted_by)
    center_type = to_center_type(room.center_type)

    boss = None
    if center_type == CenterType.BOSS:
        boss = BossView(
            monster_id=room.center_id,
            max_hp=room.boss_max_hp,
            current_hp=room.boss_current_hp,
            is_dead=room.boss_defeated,
        )

    return RoomView(
        x=room.x,
        y=room.y,
        center_type=center_type,
        doors=MappingProxyType(doors),
        looted_count=len(room.looted_by),
        has_local_player_looted=has_looted,
        boss=boss,
    )
