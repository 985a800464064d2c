from __future__ import annotations


class DungeonSyncError(Exception):
    pass


class SessionUnavailableError(DungeonSyncError):
    pass


class RoomNotFoundError(DungeonSyncError):
    def __init__(self, x: int, y: int):
        super().__init__(f"room_not_found:({x},{y})")
        self.x = x
        self.y = y
