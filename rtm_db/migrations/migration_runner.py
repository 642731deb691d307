"""
Migration runner: the entry point for every migration operation.

Sequences discovery, ledger checks and transactional execution for
"apply all pending", "roll back one", "roll back everything", seeding and
status reporting. Operations are strictly sequential and stop at the
first failure; later migrations may depend on earlier ones having
actually succeeded.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from rtm_db.database import Database
from rtm_db.errors import MigrationError, MigrationLockError

from .migration import (
    Migration,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    RunResult,
    read_script,
)
from .migration_executor import MigrationExecutor
from .migration_ledger import MigrationLedger
from .migration_lock import AdvisoryLock
from .migration_registry import MigrationRegistry
from .migration_validator import MigrationValidator, ValidationWarning, WarningLevel

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Applies, rolls back and reports on SQL migrations.

    Parameters
    ----------
    database
        Database owning the engine.
    migrations_dir
        Directory containing the numbered ``.sql`` scripts.
    seed_file
        Default seed script for :meth:`seed` and :meth:`setup`.
    lock_timeout
        Seconds to wait for the migration lock before giving up.

    Example::

        runner = MigrationRunner(Database(url), Path('migrations'))
        result = await runner.apply_all()
        print(f"{result.executed} executed, {len(result.skipped)} skipped")
    """

    def __init__(
        self,
        database: Database,
        migrations_dir: Path,
        seed_file: Optional[Path] = None,
        lock_timeout: float = 30.0,
    ) -> None:
        self.database = database
        self.registry = MigrationRegistry(migrations_dir)
        self.seed_file = Path(seed_file) if seed_file else None
        self.lock_timeout = lock_timeout
        self.validator = MigrationValidator(db_type=database.dialect_name)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def apply_all(self, dry_run: bool = False) -> RunResult:
        """
        Apply every pending migration in version order.

        Already-applied migrations with unchanged content are skipped, so
        re-running is safe and cheap. The first failure propagates and
        nothing after it is attempted.

        In dry-run mode the whole run happens inside one transaction that
        is rolled back at the end, so later migrations see the effects of
        earlier ones.

        Raises:
            DiscoveryError: Before any database contact (unreadable
                directory, duplicate version, script not valid UTF-8)
            ChecksumMismatchError: An applied script changed on disk
            ApplyFailure: A script failed; its transaction was rolled back
            MigrationLockError: Another run holds the lock
        """
        migrations = self.registry.discover()
        scripts = [(migration, migration.read()) for migration in migrations]
        logger.info('Found %d migration files', len(migrations))

        result = RunResult()
        async with self._exclusive() as conn:
            executor = MigrationExecutor(conn, self.registry)
            outer = await conn.begin() if dry_run else None
            try:
                for migration, content in scripts:
                    self._log_warnings(
                        self.validator.validate_migration(migration, content)
                    )
                    step = await executor.apply_migration(
                        migration.version,
                        migration.filename,
                        content
                    )
                    if dry_run and step.status is MigrationStatus.APPLIED:
                        step.status = MigrationStatus.DRY_RUN
                    result.add(step)
            finally:
                if outer is not None and outer.is_active:
                    await outer.rollback()

        logger.info(
            'Migration run completed: %d executed, %d skipped, %d total%s',
            result.executed,
            len(result.skipped),
            result.total,
            ' (dry run, rolled back)' if dry_run else ''
        )
        return result

    async def apply(self, target: str, dry_run: bool = False) -> MigrationResult:
        """
        Apply (or re-verify) a single migration by version or filename.

        Raises:
            MigrationNotFoundError: If no forward script matches
            ChecksumMismatchError: If it was applied with other content
            ApplyFailure: If the script fails
        """
        migration = self.registry.find(target)
        content = migration.read()

        async with self._exclusive() as conn:
            executor = MigrationExecutor(conn, self.registry)
            return await executor.apply_migration(
                migration.version,
                migration.filename,
                content,
                dry_run=dry_run
            )

    async def rollback(
        self,
        target: Optional[str] = None,
        dry_run: bool = False
    ) -> Optional[MigrationResult]:
        """
        Roll back one migration.

        Args:
            target: Version or filename; the latest applied migration when
                omitted

        Returns:
            MigrationResult, or None if nothing has been applied
        """
        async with self._exclusive() as conn:
            executor = MigrationExecutor(conn, self.registry)

            if target is None:
                applied = await executor.ledger.list_applied()
                if not applied:
                    logger.info('No applied migrations to roll back')
                    return None
                target = applied[-1].filename

            return await executor.rollback_migration(target, dry_run=dry_run)

    async def rollback_all(self) -> RunResult:
        """
        Roll back every applied migration, latest first.

        Stops at the first failure, leaving the database at whatever point
        it reached.

        Raises:
            RollbackFileMissingError: A down-script is missing
            RollbackFailure: A down-script failed
        """
        logger.info('Resetting database...')
        result = RunResult()

        async with self._exclusive() as conn:
            executor = MigrationExecutor(conn, self.registry)
            applied = await executor.ledger.list_applied()

            for record in reversed(applied):
                result.add(await executor.rollback_migration(record.filename))

        logger.info(
            'Database reset completed: %d migrations rolled back',
            len(result.rolled_back)
        )
        return result

    async def status(self) -> List[MigrationRecord]:
        """Return applied migrations, ascending by version."""
        async with self.database.connect() as conn:
            return await MigrationLedger(conn).list_applied()

    async def pending(self) -> List[Migration]:
        """Return discovered migrations that have no ledger row."""
        migrations = self.registry.discover()
        applied = {record.version for record in await self.status()}
        return [m for m in migrations if m.version not in applied]

    async def check(self) -> List[ValidationWarning]:
        """
        Validate every discovered migration without executing anything.

        Includes drift detection for applied migrations.
        """
        migrations = self.registry.discover()
        records = {record.version: record for record in await self.status()}

        warnings = []
        for migration in migrations:
            content = migration.read()
            warnings.extend(self.validator.validate_migration(migration, content))
            record = records.get(migration.version)
            if record is not None:
                warnings.extend(
                    self.validator.verify_checksum(migration, record, content)
                )
        return warnings

    async def seed(self, seed_file: Optional[Path] = None) -> int:
        """
        Load seed data.

        The seed script runs once in a single transaction and is NOT
        recorded in the ledger: running it twice executes it twice.

        Returns:
            Number of statements executed

        Raises:
            MigrationError: If no seed file is configured or it is missing
        """
        path = Path(seed_file) if seed_file else self.seed_file
        if path is None:
            raise MigrationError('No seed file configured')
        if not path.is_file():
            raise MigrationError(f'Seed file not found: {path}')

        content = read_script(path)
        logger.warning(
            'Loading seed data from %s (not tracked in the ledger; '
            're-running is not idempotent)',
            path
        )

        async with self._exclusive() as conn:
            executor = MigrationExecutor(conn, self.registry)
            count = await executor.execute_script(content, f'seed data {path.name}')

        logger.info('Seed data loading completed (%d statements)', count)
        return count

    async def setup(self, seed_file: Optional[Path] = None) -> RunResult:
        """Apply all migrations, then load seed data."""
        result = await self.apply_all()
        await self.seed(seed_file)
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[AsyncConnection]:
        """
        One connection holding both the process lock and, on PostgreSQL,
        the advisory lock for the duration of the operation.
        """
        try:
            async with asyncio.timeout(self.lock_timeout):
                await self._lock.acquire()
        except asyncio.TimeoutError:
            raise MigrationLockError(
                'Migration already in progress in this process'
            ) from None

        try:
            async with self.database.connect() as conn:
                async with AdvisoryLock(conn, timeout=self.lock_timeout):
                    yield conn
        finally:
            self._lock.release()

    @staticmethod
    def _log_warnings(warnings: List[ValidationWarning]) -> None:
        for warning in warnings:
            if warning.level is WarningLevel.ERROR:
                logger.error('%s', warning)
            elif warning.level is WarningLevel.WARNING:
                logger.warning('%s', warning)
            else:
                logger.info('%s', warning)
