from .core.config import EngineConfig
from .core.engine import DungeonSyncEngine
from .core.finalize import FinalizeProtocol, SchedulerState
from .core.occupancy import diff_door_occupants
from .core.overlay import OptimisticOverlay
from .core.ports import RemoteStatePort, SnapshotControlPort
from .core.progress import compute_progress
from .core.reconciler import JobReconciler
from .core.scheduler import JobAutoCompleter
from .core.types import Direction, RoomSnapshot, WallState

__all__ = [
    "DungeonSyncEngine",
    "EngineConfig",
    "FinalizeProtocol",
    "SchedulerState",
    "JobAutoCompleter",
    "JobReconciler",
    "OptimisticOverlay",
    "diff_door_occupants",
    "compute_progress",
    "RemoteStatePort",
    "SnapshotControlPort",
    "Direction",
    "RoomSnapshot",
    "WallState",
]
