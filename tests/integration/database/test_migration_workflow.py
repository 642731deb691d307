#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for the complete migration workflow.

Runs MigrationRunner against a file-backed SQLite database: apply-all,
re-runs, drift, failure in the middle of a run, rollback, reset, seeding
and status.
"""
from pathlib import Path

import pytest

from rtm_db.errors import (
    ApplyFailure,
    ChecksumMismatchError,
    DiscoveryError,
    MigrationError,
    MigrationNotFoundError,
    RollbackFileMissingError,
)
from rtm_db.migrations import MigrationRunner, MigrationStatus, WarningLevel

pytestmark = pytest.mark.integration

PROJECT_ROOT = Path(__file__).resolve().parents[3]


@pytest.fixture
def runner(database, migrations_dir):
    return MigrationRunner(database, migrations_dir)


# ==================== Apply ====================

class TestApplyAll:
    """Test applying every pending migration."""

    async def test_fresh_database(self, runner, table_names):
        result = await runner.apply_all()

        assert result.applied == ['001', '002']
        assert result.executed == 2
        assert result.total == 2
        assert set(await table_names()) == {'employees', 'projects', 'schema_migrations'}

        applied = await runner.status()
        assert [r.filename for r in applied] == [
            '001_create_employees.sql',
            '002_create_projects.sql',
        ]

    async def test_rerun_is_noop(self, runner):
        await runner.apply_all()
        result = await runner.apply_all()

        assert result.executed == 0
        assert result.skipped == ['001', '002']
        assert len(await runner.status()) == 2

    async def test_new_migration_after_first_run(self, runner, write_migrations):
        await runner.apply_all()
        write_migrations({
            '003_add_rates.sql': 'CREATE TABLE rates (id INTEGER PRIMARY KEY);',
        })

        result = await runner.apply_all()

        assert result.applied == ['003']
        assert result.skipped == ['001', '002']

    async def test_stops_at_first_failure(self, runner, write_migrations, table_names):
        """002 fails, so 003 is never attempted and 001 stays applied."""
        migrations_dir = write_migrations({
            '002_create_projects.sql': (
                'CREATE TABLE projects (id INTEGER PRIMARY KEY);\n'
                'INSERT INTO missing_table VALUES (1);\n'
            ),
            '003_add_rates.sql': 'CREATE TABLE rates (id INTEGER PRIMARY KEY);',
        })

        with pytest.raises(ApplyFailure) as exc_info:
            await runner.apply_all()

        assert exc_info.value.version == '002'
        assert [r.version for r in await runner.status()] == ['001']
        tables = await table_names()
        assert 'projects' not in tables
        assert 'rates' not in tables

        # Fix the script and run again: picks up where it stopped
        (migrations_dir / '002_create_projects.sql').write_text(
            'CREATE TABLE projects (id INTEGER PRIMARY KEY);'
        )
        result = await runner.apply_all()
        assert result.applied == ['002', '003']

    async def test_drift_aborts_run(
        self, runner, migrations_dir, write_migrations, table_names
    ):
        await runner.apply_all()
        write_migrations({'003_add_rates.sql': 'CREATE TABLE rates (id INTEGER);'})
        (migrations_dir / '001_create_employees.sql').write_text(
            'CREATE TABLE employees (id INTEGER PRIMARY KEY, phone TEXT);'
        )

        before = await runner.status()

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await runner.apply_all()

        assert exc_info.value.version == '001'
        assert exc_info.value.expected == before[0].checksum
        assert await runner.status() == before
        assert 'rates' not in await table_names()

    async def test_line_ending_change_is_drift(self, runner, migrations_dir):
        """Rewriting a script with CRLF line endings changes its bytes."""
        await runner.apply_all()
        before = await runner.status()

        path = migrations_dir / '001_create_employees.sql'
        path.write_bytes(path.read_bytes().replace(b'\n', b'\r\n'))

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await runner.apply_all()

        assert exc_info.value.version == '001'
        assert await runner.status() == before

    async def test_crlf_script_applies_and_rerun_skips(self, runner, write_migrations):
        write_migrations({
            '003_add_rates.sql': 'CREATE TABLE rates (\r\n    id INTEGER\r\n);\r\n',
        })

        await runner.apply_all()
        result = await runner.apply_all()

        assert result.skipped == ['001', '002', '003']

    async def test_invalid_utf8_script(self, runner, migrations_dir):
        (migrations_dir / '003_bad_encoding.sql').write_bytes(
            b"INSERT INTO employees (first_name) VALUES ('Z\xfcrich');"
        )

        with pytest.raises(DiscoveryError, match="003_bad_encoding.sql"):
            await runner.apply_all()

        assert await runner.status() == []

    async def test_missing_directory_raises_before_database(self, database, tmp_path):
        runner = MigrationRunner(database, tmp_path / 'nope')

        with pytest.raises(DiscoveryError):
            await runner.apply_all()

    async def test_empty_directory(self, database, write_migrations):
        runner = MigrationRunner(database, write_migrations({}))
        result = await runner.apply_all()
        assert result.total == 0

    async def test_dry_run_sees_earlier_migrations(self, runner, table_names):
        """002 can depend on 001 even though nothing is committed."""
        result = await runner.apply_all(dry_run=True)

        assert result.dry_run == ['001', '002']
        assert result.applied == []
        assert 'employees' not in await table_names()
        assert await runner.status() == []

    async def test_apply_single(self, runner):
        result = await runner.apply('002_create_projects.sql')

        assert result.status is MigrationStatus.APPLIED
        assert [r.version for r in await runner.status()] == ['002']

    async def test_apply_unknown(self, runner):
        with pytest.raises(MigrationNotFoundError):
            await runner.apply('042')


# ==================== Rollback ====================

class TestRollback:
    """Test rolling back and resetting."""

    async def test_rollback_latest(self, runner, table_names):
        await runner.apply_all()

        result = await runner.rollback()

        assert result.version == '002'
        assert [r.version for r in await runner.status()] == ['001']
        assert 'projects' not in await table_names()

    async def test_rollback_then_reapply(self, runner):
        await runner.apply_all()
        await runner.rollback('002_create_projects.sql')

        result = await runner.apply_all()

        assert result.applied == ['002']

    async def test_rollback_nothing_applied(self, runner):
        assert await runner.rollback() is None

    async def test_rollback_all(self, runner, table_names):
        await runner.apply_all()

        result = await runner.rollback_all()

        assert result.rolled_back == ['002', '001']
        assert await runner.status() == []
        assert await table_names() == ['schema_migrations']

    async def test_rollback_all_stops_at_missing_down_script(
        self, runner, write_migrations
    ):
        write_migrations({'003_add_rates.sql': 'CREATE TABLE rates (id INTEGER);'})
        await runner.apply_all()

        with pytest.raises(RollbackFileMissingError):
            await runner.rollback_all()

        assert [r.version for r in await runner.status()] == ['001', '002', '003']


# ==================== Seed and Setup ====================

class TestSeed:
    """Test loading seed data."""

    SEED = (
        "-- seed\n"
        "INSERT INTO employees (id, email, first_name) VALUES (1, 'a@b.ch', 'Anna');\n"
        "INSERT INTO projects (id, name, cost_per_km) VALUES (1, 'Basel', 0.70);\n"
    )

    async def test_setup(self, database, migrations_dir, tmp_path):
        seed_file = tmp_path / 'sample-data.sql'
        seed_file.write_text(self.SEED)
        runner = MigrationRunner(database, migrations_dir, seed_file=seed_file)

        result = await runner.setup()

        assert result.executed == 2
        async with database.connect() as conn:
            count = await conn.exec_driver_sql('SELECT COUNT(*) FROM employees')
            assert count.scalar() == 1

    async def test_seed_not_tracked(self, runner, tmp_path):
        seed_file = tmp_path / 'sample-data.sql'
        seed_file.write_text(self.SEED)
        await runner.apply_all()

        assert await runner.seed(seed_file) == 2
        assert [r.version for r in await runner.status()] == ['001', '002']

    async def test_seed_missing_file(self, runner, tmp_path):
        with pytest.raises(MigrationError, match="not found"):
            await runner.seed(tmp_path / 'missing.sql')

    async def test_seed_not_configured(self, runner):
        with pytest.raises(MigrationError, match="No seed file"):
            await runner.seed()


# ==================== Status and Check ====================

class TestStatus:
    """Test reporting."""

    async def test_fresh_status(self, runner):
        assert await runner.status() == []
        assert [m.version for m in await runner.pending()] == ['001', '002']

    async def test_pending_after_partial_apply(self, runner):
        await runner.apply('001')
        assert [m.version for m in await runner.pending()] == ['002']

    async def test_check_clean(self, runner):
        warnings = await runner.check()
        assert [w for w in warnings if w.level is WarningLevel.ERROR] == []

    async def test_check_reports_drift(self, runner, migrations_dir):
        await runner.apply_all()
        (migrations_dir / '002_create_projects.sql').write_text(
            'CREATE TABLE projects (id INTEGER PRIMARY KEY);'
        )

        warnings = await runner.check()

        drift = [w for w in warnings if w.category == 'checksum']
        assert len(drift) == 1
        assert drift[0].migration_version == '002'


# ==================== Bundled Scripts ====================

class TestBundledScripts:
    """The migrations and seed data shipped in the repository."""

    @pytest.fixture
    def bundled_runner(self, database):
        return MigrationRunner(
            database,
            PROJECT_ROOT / 'migrations',
            seed_file=PROJECT_ROOT / 'data' / 'sample-data.sql',
        )

    async def test_setup_then_reset(self, bundled_runner, database, table_names):
        result = await bundled_runner.setup()

        assert result.applied == ['001', '002', '003']
        assert {'employees', 'projects', 'subprojects', 'travel_requests',
                'request_status_history'} <= set(await table_names())
        async with database.connect() as conn:
            count = await conn.exec_driver_sql('SELECT COUNT(*) FROM employees')
            assert count.scalar() == 3

        reset = await bundled_runner.rollback_all()

        assert reset.rolled_back == ['003', '002', '001']
        assert await table_names() == ['schema_migrations']

    async def test_check_passes(self, bundled_runner):
        warnings = await bundled_runner.check()
        assert [w for w in warnings if w.level is WarningLevel.ERROR] == []
