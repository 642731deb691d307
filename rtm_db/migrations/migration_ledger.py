"""
Migration ledger: the schema_migrations table.

The ledger records, per applied migration, its version, source filename,
execution timestamp and checksum. Its layout is effectively a file format
shared by every deployment: columns may be added, but ``version`` must
never be renamed or removed.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.schema import CreateTable

from .migration import MigrationRecord, version_key

logger = logging.getLogger(__name__)

metadata = MetaData()

schema_migrations = Table(
    'schema_migrations',
    metadata,
    Column('version', String(50), primary_key=True),
    Column('filename', String(255), nullable=False),
    Column(
        'executed_at',
        DateTime(timezone=True),
        nullable=False,
        server_default=func.current_timestamp(),
    ),
    Column('checksum', String(64), nullable=False),
)


class MigrationLedger:
    """
    Reads and writes the schema_migrations table over one connection.

    Read operations run in their own short transaction unless the caller
    already has one open. Writes (record/remove) must happen inside the
    caller's transaction, together with the schema change they document.

    Example:
        async with database.connect() as conn:
            ledger = MigrationLedger(conn)
            for record in await ledger.list_applied():
                print(record.version, record.filename)
    """

    def __init__(self, connection: AsyncConnection):
        self.connection = connection

    @asynccontextmanager
    async def _transaction(self):
        """Join the caller's transaction, or run in a short one."""
        if self.connection.in_transaction():
            yield
            return
        async with self.connection.begin():
            yield

    def _require_transaction(self, operation: str) -> None:
        if not self.connection.in_transaction():
            raise RuntimeError(
                f"Ledger {operation} must run inside the migration's transaction"
            )

    async def ensure_exists(self) -> None:
        """
        Create the schema_migrations table if it does not exist.

        Safe to call on every access (CREATE TABLE IF NOT EXISTS, no
        separate existence check).
        """
        async with self._transaction():
            await self.connection.execute(
                CreateTable(schema_migrations, if_not_exists=True)
            )
        logger.debug("Ensured schema_migrations table exists")

    async def list_applied(self) -> List[MigrationRecord]:
        """
        Return all applied migrations, ascending by version.

        A fresh database reports an empty list.
        """
        await self.ensure_exists()
        async with self._transaction():
            result = await self.connection.execute(select(schema_migrations))
            rows = result.fetchall()

        records = [self._to_record(row) for row in rows]
        return sorted(records, key=lambda r: version_key(r.version))

    async def find(self, version: str) -> Optional[MigrationRecord]:
        """Return the record for ``version``, or None if not applied."""
        async with self._transaction():
            result = await self.connection.execute(
                select(schema_migrations).where(
                    schema_migrations.c.version == version
                )
            )
            row = result.first()
        return self._to_record(row) if row is not None else None

    async def record(self, version: str, filename: str, checksum: str) -> None:
        """
        Insert a ledger row.

        Does not commit: the caller's transaction covers both the schema
        change and this row.

        Raises:
            RuntimeError: If no transaction is open
        """
        self._require_transaction('record')
        await self.connection.execute(
            insert(schema_migrations).values(
                version=version,
                filename=filename,
                checksum=checksum,
            )
        )

    async def remove(self, version: str) -> int:
        """
        Delete the ledger row for ``version``.

        Returns:
            Number of rows deleted (0 or 1)

        Raises:
            RuntimeError: If no transaction is open
        """
        self._require_transaction('remove')
        result = await self.connection.execute(
            delete(schema_migrations).where(
                schema_migrations.c.version == version
            )
        )
        return result.rowcount

    @staticmethod
    def _to_record(row) -> MigrationRecord:
        return MigrationRecord(
            version=row.version,
            filename=row.filename,
            executed_at=row.executed_at,
            checksum=row.checksum,
        )
