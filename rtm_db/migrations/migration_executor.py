#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration executor with transaction management and tracking.

Executes forward and rollback scripts inside database transactions,
keeping the schema_migrations ledger in the same transaction so the
schema change and its ledger row are committed or discarded together.
Supports dry-run mode for previewing changes without committing.
"""
import logging
import time
from typing import List, Optional

import sqlparse
from sqlalchemy.ext.asyncio import AsyncConnection

from rtm_db.errors import (
    ApplyFailure,
    ChecksumMismatchError,
    MigrationNotAppliedError,
    MigrationNotFoundError,
    RollbackFailure,
    RollbackFileMissingError,
)

from .migration import (
    MIGRATION_EXTENSION,
    ROLLBACK_SUFFIX,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    compute_checksum,
    rollback_filename,
    rollback_target,
)
from .migration_ledger import MigrationLedger
from .migration_registry import MigrationRegistry


def split_sql_statements(sql: str) -> List[str]:
    """Split a script into individual statements.

    Uses sqlparse so semicolons inside string literals, dollar-quoted
    function bodies and BEGIN ... END blocks do not end a statement.
    Statements made only of comments are dropped. Required because the
    drivers execute one statement per call.

    Args:
        sql: SQL script with one or more statements

    Returns:
        List of individual SQL statements
    """
    statements = []
    for statement in sqlparse.split(sql):
        code = sqlparse.format(statement, strip_comments=True).strip()
        if code.rstrip(';').strip():
            statements.append(statement)
    return statements


class MigrationExecutor:
    """
    Applies and rolls back migrations with transaction safety.

    All operations are atomic: the script and the ledger update are either
    both committed or both rolled back. Failures are never swallowed; they
    are raised as ApplyFailure/RollbackFailure chained to the driver error.

    Attributes:
        connection: The run's database connection
        registry: Source of down-scripts
        ledger: schema_migrations access on the same connection

    Example:
        async with database.connect() as conn:
            executor = MigrationExecutor(conn, MigrationRegistry(path))
            result = await executor.apply_migration(
                '001', '001_create_employees.sql', content
            )
    """

    def __init__(
        self,
        connection: AsyncConnection,
        registry: MigrationRegistry,
        ledger: Optional[MigrationLedger] = None
    ):
        self.connection = connection
        self.registry = registry
        self.ledger = ledger or MigrationLedger(connection)
        self.logger = logging.getLogger(__name__)

    async def apply_migration(
        self,
        version: str,
        filename: str,
        content: str,
        dry_run: bool = False
    ) -> MigrationResult:
        """
        Apply one forward script.

        An already-applied version with an identical checksum is skipped.
        A checksum mismatch is fatal and nothing is executed. Otherwise the
        script and the ledger insert run in one transaction.

        Args:
            version: Migration version
            filename: Script filename (stored in the ledger)
            content: Script content
            dry_run: If True, execute but roll back instead of committing

        Returns:
            MigrationResult with APPLIED, SKIPPED or DRY_RUN status

        Raises:
            ChecksumMismatchError: If the recorded checksum differs
            ApplyFailure: If the script or the ledger insert fails
        """
        checksum = compute_checksum(content)

        await self.ledger.ensure_exists()
        existing = await self.ledger.find(version)

        if existing is not None:
            if existing.checksum != checksum:
                self.logger.error(
                    'Migration %s (%s) has been modified since execution',
                    version,
                    filename
                )
                raise ChecksumMismatchError(version, existing.checksum, checksum)

            self.logger.info('Migration %s already executed, skipping', version)
            return MigrationResult(
                version=version,
                filename=filename,
                status=MigrationStatus.SKIPPED
            )

        start_time = time.time()
        self.logger.info(
            'Executing migration %s - %s%s',
            version,
            filename,
            ' (DRY RUN)' if dry_run else ''
        )

        transaction = await self._begin()
        try:
            await self._execute_statements(content)
            await self.ledger.record(version, filename, checksum)

            if dry_run:
                await transaction.rollback()
            else:
                await transaction.commit()

        except Exception as e:
            if transaction.is_active:
                await transaction.rollback()
            self.logger.error(
                'Migration %s (%s) failed, transaction rolled back: %s',
                version,
                filename,
                e
            )
            raise ApplyFailure(version, filename, str(e)) from e

        execution_time_ms = int((time.time() - start_time) * 1000)

        if dry_run:
            self.logger.info(
                'Dry-run complete for %s (%dms) - rolled back',
                version,
                execution_time_ms
            )
            status = MigrationStatus.DRY_RUN
        else:
            self.logger.info(
                'Migration %s completed successfully (%dms)',
                version,
                execution_time_ms
            )
            status = MigrationStatus.APPLIED

        return MigrationResult(
            version=version,
            filename=filename,
            status=status,
            execution_time_ms=execution_time_ms
        )

    async def rollback_migration(
        self,
        target: str,
        dry_run: bool = False
    ) -> MigrationResult:
        """
        Roll back one migration using its down-script.

        Args:
            target: Bare version, forward filename or down-script filename
            dry_run: If True, execute but roll back instead of committing

        Returns:
            MigrationResult with ROLLED_BACK or DRY_RUN status

        Raises:
            MigrationNotFoundError: If ``target`` carries no version
            RollbackFileMissingError: If the down-script does not exist
            MigrationNotAppliedError: If the version has no ledger row
            RollbackFailure: If the down-script or the ledger delete fails
        """
        try:
            version, down_filename = rollback_target(target)
        except ValueError as e:
            raise MigrationNotFoundError(str(e)) from e

        await self.ledger.ensure_exists()
        record = await self.ledger.find(version)

        if down_filename is None:
            down_filename = self._resolve_rollback_filename(version, record)

        content = self.registry.read_rollback(down_filename)
        if content is None:
            self.logger.error(
                'Rollback file not found for migration %s: %s',
                version,
                down_filename
            )
            raise RollbackFileMissingError(version, down_filename)

        if record is None:
            raise MigrationNotAppliedError(version)

        start_time = time.time()
        self.logger.info(
            'Rolling back migration %s using %s%s',
            version,
            down_filename,
            ' (DRY RUN)' if dry_run else ''
        )

        transaction = await self._begin()
        try:
            await self._execute_statements(content)
            await self.ledger.remove(version)

            if dry_run:
                await transaction.rollback()
            else:
                await transaction.commit()

        except Exception as e:
            if transaction.is_active:
                await transaction.rollback()
            self.logger.error(
                'Rollback of migration %s (%s) failed, transaction rolled back: %s',
                version,
                down_filename,
                e
            )
            raise RollbackFailure(version, down_filename, str(e)) from e

        execution_time_ms = int((time.time() - start_time) * 1000)
        self.logger.info(
            'Rollback of %s completed%s (%dms)',
            version,
            ' (dry-run, rolled back)' if dry_run else '',
            execution_time_ms
        )

        return MigrationResult(
            version=version,
            filename=down_filename,
            status=MigrationStatus.DRY_RUN if dry_run else MigrationStatus.ROLLED_BACK,
            execution_time_ms=execution_time_ms
        )

    async def execute_script(self, content: str, description: str) -> int:
        """
        Execute an untracked script in a single transaction.

        Used for seed data. Nothing is written to the ledger.

        Returns:
            Number of statements executed
        """
        statements = split_sql_statements(content)
        self.logger.info(
            'Executing %s (%d statements)', description, len(statements)
        )

        transaction = await self._begin()
        try:
            for statement in statements:
                await self.connection.exec_driver_sql(statement)
            await transaction.commit()
        except Exception:
            if transaction.is_active:
                await transaction.rollback()
            raise

        return len(statements)

    def _begin(self):
        """Start a transaction, or a savepoint inside the caller's one."""
        if self.connection.in_transaction():
            return self.connection.begin_nested()
        return self.connection.begin()

    async def _execute_statements(self, content: str) -> None:
        for statement in split_sql_statements(content):
            await self.connection.exec_driver_sql(statement)

    def _resolve_rollback_filename(
        self,
        version: str,
        record: Optional[MigrationRecord]
    ) -> str:
        """Down-script name for a bare version."""
        if record is not None:
            return rollback_filename(record.filename)

        migration = self.registry.find_by_version(version)
        if migration is not None:
            return migration.rollback_filename

        return f'{version}{ROLLBACK_SUFFIX}{MIGRATION_EXTENSION}'
