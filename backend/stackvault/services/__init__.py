"""Service layer.

Exposes:
- SnapshotStore
- BackupChainBuilder
- BackupRetention
- RestoreChainResolver
- ContainerStateRecorder
- HealthVerifier
- ShutdownCoordinator
- RestoreScheduler
- ProjectStarter
- FleetService
- RunService
"""

from .snapshots import SnapshotStore
from .retention import BackupRetention
from .backups import BackupChainBuilder
from .chains import RestoreChainResolver
from .records import ContainerStateRecorder
from .health import HealthVerifier
from .shutdown import ShutdownCoordinator
from .restores import RestoreScheduler
from .startup import ProjectStarter
from .fleet import FleetService
from .runs import RunService

__all__ = [
    "SnapshotStore",
    "BackupRetention",
    "BackupChainBuilder",
    "RestoreChainResolver",
    "ContainerStateRecorder",
    "HealthVerifier",
    "ShutdownCoordinator",
    "RestoreScheduler",
    "ProjectStarter",
    "FleetService",
    "RunService",
]
