"""calsync: Schedule recurrence, conflict checking and Google Calendar sync

Philosophy:
    A schedule lives in two places: the local store where people book rooms,
    vehicles and meetings, and the external calendar they actually look at.
    The two must stay merged without duplicates and without echo loops.

Components:
    models.py: Schedule, Recurrence, ResourceBinding and friends
    errors.py: Error taxonomy shared by the scheduler and the syncers
    config.py: Settings loaded from args/schedule_sync.yaml
    calendar/: Recurrence expansion, conflict detection, store, scheduler
    providers/: External calendar providers (Google Calendar)
    sync/: Outbound and inbound syncers, orchestrator, per-user state
    notifications.py: Who gets told about a schedule change

Key Invariants:
    - Records imported from the provider (origin=external) are never exported
    - Materialized occurrences point at their master through original_id
    - Deleting a series removes master and occurrences in one statement
"""

from pathlib import Path


# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = PROJECT_ROOT / "args"
DATA_PATH = PROJECT_ROOT / "data"
DB_PATH = DATA_PATH / "schedules.db"

__version__ = "0.4.0"

__all__ = [
    "PROJECT_ROOT",
    "CONFIG_PATH",
    "DATA_PATH",
    "DB_PATH",
    "__version__",
]
