from .engine import DungeonSyncEngine
from .clock import LogicalClock
from .config import EngineConfig
from .errors import DungeonSyncError, RoomNotFoundError, SessionUnavailableError
from .finalize import FinalizeProtocol, SchedulerState
from .journal import FinalizeJournal
from .occupancy import OccupancyTracker, diff_door_occupants
from .overlay import OptimisticOverlay
from .ports import DeltaListener, RemoteStatePort, SnapshotControlPort, SnapshotListener
from .progress import (
    JobProgress,
    compute_progress,
    completion_tick,
    door_timer,
    estimate_seconds_remaining,
    format_remaining_time,
    is_active_job,
)
from .reconciler import JobReconciler
from .scheduler import JobAutoCompleter
from .types import (
    ActiveJob,
    BossView,
    CenterType,
    Direction,
    DoorOccupancyDelta,
    DoorTimer,
    DoorView,
    FinalizeOutcome,
    OccupantActivity,
    OccupantView,
    ReconcileReport,
    RemotePlayerState,
    RemoteRoomState,
    RoomCoord,
    RoomSnapshot,
    RoomView,
    SyncResult,
    WallState,
)

__all__ = [
    "DungeonSyncEngine",
    "LogicalClock",
    "EngineConfig",
    "DungeonSyncError",
    "RoomNotFoundError",
    "SessionUnavailableError",
    "FinalizeProtocol",
    "SchedulerState",
    "FinalizeJournal",
    "OccupancyTracker",
    "diff_door_occupants",
    "OptimisticOverlay",
    "DeltaListener",
    "RemoteStatePort",
    "SnapshotControlPort",
    "SnapshotListener",
    "JobProgress",
    "compute_progress",
    "completion_tick",
    "door_timer",
    "estimate_seconds_remaining",
    "format_remaining_time",
    "is_active_job",
    "JobReconciler",
    "JobAutoCompleter",
    "ActiveJob",
    "BossView",
    "CenterType",
    "Direction",
    "DoorOccupancyDelta",
    "DoorTimer",
    "DoorView",
    "FinalizeOutcome",
    "OccupantActivity",
    "OccupantView",
    "ReconcileReport",
    "RemotePlayerState",
    "RemoteRoomState",
    "RoomCoord",
    "RoomSnapshot",
    "RoomView",
    "SyncResult",
    "WallState",
]
