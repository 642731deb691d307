"""
Unit tests for MigrationLedger against a real SQLite database.
"""

import pytest

from rtm_db.migrations import MigrationLedger, compute_checksum

pytestmark = pytest.mark.unit


class TestLedger:
    """Test schema_migrations reads and writes."""

    async def test_fresh_database_is_empty(self, conn):
        ledger = MigrationLedger(conn)
        assert await ledger.list_applied() == []

    async def test_ensure_exists_is_idempotent(self, conn, table_names):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()
        await ledger.ensure_exists()

        assert 'schema_migrations' in await table_names()

    async def test_record_and_find(self, conn):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()
        checksum = compute_checksum('SELECT 1;')

        async with conn.begin():
            await ledger.record('001', '001_a.sql', checksum)

        record = await ledger.find('001')
        assert record.version == '001'
        assert record.filename == '001_a.sql'
        assert record.checksum == checksum
        assert record.executed_at is not None

    async def test_find_missing(self, conn):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()
        assert await ledger.find('001') is None

    async def test_list_applied_sorted_by_version(self, conn):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()

        async with conn.begin():
            for version in ('10', '2', '001'):
                await ledger.record(version, f'{version}_x.sql', 'c' * 64)

        applied = await ledger.list_applied()
        assert [r.version for r in applied] == ['001', '2', '10']

    async def test_remove(self, conn):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()

        async with conn.begin():
            await ledger.record('001', '001_a.sql', 'c' * 64)
        async with conn.begin():
            assert await ledger.remove('001') == 1
            assert await ledger.remove('001') == 0

        assert await ledger.find('001') is None

    async def test_write_requires_transaction(self, conn):
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()

        with pytest.raises(RuntimeError, match="transaction"):
            await ledger.record('001', '001_a.sql', 'c' * 64)

    async def test_record_discarded_with_transaction(self, conn):
        """A ledger row never outlives the transaction it was written in."""
        ledger = MigrationLedger(conn)
        await ledger.ensure_exists()

        transaction = await conn.begin()
        await ledger.record('001', '001_a.sql', 'c' * 64)
        await transaction.rollback()

        assert await ledger.find('001') is None
