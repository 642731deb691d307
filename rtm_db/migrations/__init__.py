"""
Schema migrations for the travel-allowance database.

This package provides:
- Migration / MigrationRecord: data models for scripts and ledger rows
- MigrationRegistry: discovery and ordering of scripts on disk
- MigrationLedger: the schema_migrations table
- MigrationExecutor: transactional apply and rollback
- MigrationValidator: static checks before execution
- MigrationRunner: apply-all, rollback, reset, seed and status
"""

from .migration import (
    Migration,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    RunResult,
    compute_checksum,
    read_script,
    rollback_target,
    version_key,
)
from .migration_executor import MigrationExecutor, split_sql_statements
from .migration_ledger import MigrationLedger, schema_migrations
from .migration_lock import AdvisoryLock
from .migration_registry import MigrationRegistry
from .migration_runner import MigrationRunner
from .migration_validator import (
    MigrationValidator,
    ValidationWarning,
    WarningLevel,
)

__all__ = [
    'AdvisoryLock',
    'Migration',
    'MigrationExecutor',
    'MigrationLedger',
    'MigrationRecord',
    'MigrationRegistry',
    'MigrationResult',
    'MigrationRunner',
    'MigrationStatus',
    'MigrationValidator',
    'RunResult',
    'ValidationWarning',
    'WarningLevel',
    'compute_checksum',
    'read_script',
    'rollback_target',
    'schema_migrations',
    'split_sql_statements',
    'version_key',
]
