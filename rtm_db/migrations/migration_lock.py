"""
Session-scoped advisory lock for migration runs.

At most one runner may mutate the ledger and schema at a time. On
PostgreSQL the lock is a session-level advisory lock held on the run's own
connection, so it is released automatically if the process dies. SQLite
has no equivalent; there the runner's in-process lock is all we have.
"""

import asyncio
import hashlib
import logging
import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from rtm_db.errors import MigrationLockError

logger = logging.getLogger(__name__)

# Stable signed 64-bit key shared by every runner of this schema
ADVISORY_LOCK_KEY = int.from_bytes(
    hashlib.sha256(b'rtm_db.schema_migrations').digest()[:8],
    'big',
    signed=True,
)


class AdvisoryLock:
    """
    PostgreSQL advisory lock bound to one connection.

    Polls ``pg_try_advisory_lock`` until acquired or ``timeout`` expires.
    A no-op on other dialects.

    Example:
        async with database.connect() as conn:
            async with AdvisoryLock(conn, timeout=30.0):
                ...  # apply migrations on conn
    """

    def __init__(
        self,
        connection: AsyncConnection,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        key: int = ADVISORY_LOCK_KEY,
    ):
        self.connection = connection
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.key = key
        self._held = False

    @property
    def supported(self) -> bool:
        return self.connection.dialect.name == 'postgresql'

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            MigrationLockError: If another session holds it past the timeout
        """
        if not self.supported:
            logger.debug(
                'Advisory locks not supported on %s, relying on process lock',
                self.connection.dialect.name
            )
            return

        deadline = time.monotonic() + self.timeout
        while True:
            if await self._query('SELECT pg_try_advisory_lock(:key)'):
                self._held = True
                logger.debug('Acquired migration advisory lock %d', self.key)
                return

            if time.monotonic() >= deadline:
                raise MigrationLockError(
                    f"Migration already in progress: advisory lock {self.key} "
                    f"not acquired within {self.timeout:.0f}s"
                )

            logger.info('Waiting for migration advisory lock...')
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        if not self._held:
            return
        try:
            await self._query('SELECT pg_advisory_unlock(:key)')
            logger.debug('Released migration advisory lock %d', self.key)
        finally:
            self._held = False

    async def _query(self, sql: str):
        # Session-level locks survive the commit; the commit only keeps the
        # connection free of an open transaction for the executor.
        result = await self.connection.execute(text(sql), {'key': self.key})
        value = result.scalar()
        await self.connection.commit()
        return value

    async def __aenter__(self) -> 'AdvisoryLock':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
