"""Storage layer for hookrelay.

External stores are reached through protocols; each has an in-memory
implementation used by tests and single-process deployments:
    - ConfigStore / WebhookConfigProvider: webhook and subscription configs
    - AttemptLog / DeliveryTracker: attempt records and statistics
    - JobStore: deliveries owned by the dispatcher
    - DeadLetterQueue: abandoned deliveries
    - MigrationManager: delivery log schema versions
"""

from .config_provider import (
    ConfigSnapshot,
    ConfigStore,
    InMemoryConfigStore,
    WebhookConfigProvider,
)
from .dead_letter import DeadLetter, DeadLetterQueue
from .job_store import InMemoryJobStore, JobStore
from .migrations import (
    DEFAULT_MIGRATIONS,
    InMemoryMigrationBackend,
    Migration,
    MigrationBackend,
    MigrationManager,
    MigrationStatus,
)
from .tracker import AttemptLog, DeliveryTracker, InMemoryAttemptLog, compute_stats

__all__ = [
    "DEFAULT_MIGRATIONS",
    "AttemptLog",
    "ConfigSnapshot",
    "ConfigStore",
    "DeadLetter",
    "DeadLetterQueue",
    "DeliveryTracker",
    "InMemoryAttemptLog",
    "InMemoryConfigStore",
    "InMemoryJobStore",
    "InMemoryMigrationBackend",
    "JobStore",
    "Migration",
    "MigrationBackend",
    "MigrationManager",
    "MigrationStatus",
    "WebhookConfigProvider",
    "compute_stats",
]
