#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Command line interface for the migration runner.

Usage:
    rtm-db migrate [--dry-run]
    rtm-db seed [--file data/sample-data.sql]
    rtm-db setup
    rtm-db reset
    rtm-db rollback [TARGET]
    rtm-db status
    rtm-db check

Global options (before the command):
    --database-url URL    defaults to $DATABASE_URL
    --migrations-dir DIR  defaults to $RTM_MIGRATIONS_DIR or ./migrations
    --config FILE         JSON or YAML settings file
    --log-level LEVEL     debug, info, warning, error
    --log-file FILE       append log records to FILE instead of stderr

Exits with status 1 on any failure.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rtm_db.config import Settings, configure_logger, load_settings
from rtm_db.database import Database
from rtm_db.errors import MigrationError
from rtm_db.migrations import MigrationRunner, MigrationStatus, WarningLevel

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rtm-db',
        description='Apply, roll back and inspect SQL schema migrations',
    )
    parser.add_argument('--database-url', help='Target database connection string')
    parser.add_argument('--migrations-dir', help='Directory of numbered .sql scripts')
    parser.add_argument('--config', help='JSON or YAML settings file')
    parser.add_argument('--log-level', help='Logging level (default: info)')
    parser.add_argument('--log-file', help='Append log records to this file (default: stderr)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    migrate = subparsers.add_parser('migrate', help='Apply all pending migrations')
    migrate.add_argument('--dry-run', action='store_true',
                         help='Execute inside a transaction and roll it back')

    seed = subparsers.add_parser('seed', help='Load seed data (not ledger-tracked)')
    seed.add_argument('--file', help='Seed script (default: configured seed_file)')

    setup = subparsers.add_parser('setup', help='Apply all migrations, then seed')
    setup.add_argument('--file', help='Seed script (default: configured seed_file)')

    subparsers.add_parser('reset', help='Roll back every applied migration')

    rollback = subparsers.add_parser('rollback', help='Roll back one migration')
    rollback.add_argument('target', nargs='?',
                          help='Version or filename (default: latest applied)')
    rollback.add_argument('--dry-run', action='store_true',
                          help='Execute inside a transaction and roll it back')

    subparsers.add_parser('status', help='List applied and pending migrations')
    subparsers.add_parser('check', help='Validate scripts without executing them')

    return parser


async def _migrate(runner: MigrationRunner, args) -> int:
    result = await runner.apply_all(dry_run=args.dry_run)
    for step in result.results:
        if step.status is MigrationStatus.SKIPPED:
            print(f"  - {step.version}: {step.filename} (already applied)")
        else:
            label = 'dry run' if step.status is MigrationStatus.DRY_RUN else 'applied'
            print(f"  ✓ {step.version}: {step.filename} ({label}, {step.execution_time_ms}ms)")

    print(
        f"✓ Migration run completed: {result.executed} executed, "
        f"{len(result.skipped)} skipped, {result.total} total"
        + (" (dry run, nothing committed)" if args.dry_run else "")
    )
    return 0


async def _seed(runner: MigrationRunner, args) -> int:
    count = await runner.seed(args.file)
    print(f"✓ Seed data loaded ({count} statements)")
    return 0


async def _setup(runner: MigrationRunner, args) -> int:
    result = await runner.setup(args.file)
    print(
        f"✓ Setup completed: {result.executed} migrations executed, "
        f"{len(result.skipped)} skipped, seed data loaded"
    )
    return 0


async def _reset(runner: MigrationRunner, args) -> int:
    result = await runner.rollback_all()
    for version in result.rolled_back:
        print(f"  ✓ rolled back {version}")
    print(f"✓ Database reset completed ({len(result.rolled_back)} rolled back)")
    return 0


async def _rollback(runner: MigrationRunner, args) -> int:
    result = await runner.rollback(args.target, dry_run=args.dry_run)
    if result is None:
        print("✓ No applied migrations to roll back")
    elif result.status is MigrationStatus.DRY_RUN:
        print(f"✓ Dry-run rollback of {result.version} using {result.filename} (not committed)")
    else:
        print(f"✓ Rolled back {result.version} using {result.filename}")
    return 0


async def _status(runner: MigrationRunner, args) -> int:
    applied = await runner.status()
    print("Executed migrations:")
    if not applied:
        print("  (none)")
    for record in applied:
        print(f"  {record.version} - {record.filename} ({record.executed_at})")

    pending = await runner.pending()
    print("Pending migrations:")
    if not pending:
        print("  (none)")
    for migration in pending:
        print(f"  {migration.version} - {migration.filename}")
    return 0


async def _check(runner: MigrationRunner, args) -> int:
    warnings = await runner.check()
    for warning in warnings:
        print(f"  {warning}")

    errors = [w for w in warnings if w.level is WarningLevel.ERROR]
    if errors:
        print(f"✗ Validation failed: {len(errors)} error(s)", file=sys.stderr)
        return 1

    print(f"✓ Validation passed ({len(warnings)} warning(s))")
    return 0


COMMANDS = {
    'migrate': _migrate,
    'seed': _seed,
    'setup': _setup,
    'reset': _reset,
    'rollback': _rollback,
    'status': _status,
    'check': _check,
}


async def run_command(command: str, args, settings: Settings) -> int:
    """Run one command against a fresh engine and dispose of it afterwards."""
    database = Database(settings.database_url)
    runner = MigrationRunner(
        database,
        settings.migrations_dir,
        seed_file=settings.seed_file,
        lock_timeout=settings.lock_timeout,
    )

    try:
        return await COMMANDS[command](runner, args)
    except MigrationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error('Migration error: %s', e, exc_info=True)
        print(f"✗ Migration error: {e}", file=sys.stderr)
        return 1
    finally:
        await database.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(
            args.config,
            database_url=args.database_url,
            migrations_dir=args.migrations_dir,
            log_level=args.log_level,
            log_file=args.log_file,
        )
        configure_logger(
            logging.getLogger(),
            log_file=settings.log_file,
            log_level=settings.log_level,
        )
    except (OSError, ValueError) as e:
        print(f"✗ Invalid configuration: {e}", file=sys.stderr)
        return 1

    return asyncio.run(run_command(args.command, args, settings))


if __name__ == '__main__':
    sys.exit(main())
