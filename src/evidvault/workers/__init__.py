"""Background workers for async processing tasks."""

from evidvault.workers.migration_worker import MigrationOrchestrator, run_migration_worker

__all__ = [
    "MigrationOrchestrator",
    "run_migration_worker",
]
