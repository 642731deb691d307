"""
Migration registry: discovery of forward scripts on disk.

This module provides the MigrationRegistry class which handles:
- Discovery of migration files in the migrations directory
- Exclusion of down-scripts from the forward list
- Version extraction and ordering
- Loading down-scripts for rollbacks

Ordering never depends on directory listing order, which differs across
platforms and filesystems.
"""

import logging
from pathlib import Path
from typing import List, Optional

from rtm_db.errors import DiscoveryError, MigrationNotFoundError

from .migration import (
    MIGRATION_EXTENSION,
    Migration,
    extract_version,
    is_rollback_filename,
    read_script,
)

logger = logging.getLogger(__name__)


class MigrationRegistry:
    """
    Discovers and orders migration scripts.

    Does NOT touch the database (see MigrationLedger and
    MigrationExecutor).

    Example:
        >>> registry = MigrationRegistry(Path('/srv/rtm/migrations'))
        >>> registry.discover()
        [<Migration(001, create_employees)>, <Migration(002, create_projects)>]
    """

    def __init__(self, migrations_dir: Path):
        """
        Initialize registry.

        Args:
            migrations_dir: Directory containing the .sql scripts
        """
        self.migrations_dir = Path(migrations_dir)

    def discover(self) -> List[Migration]:
        """
        Discover all forward migrations.

        Returns:
            List of Migration objects sorted by version ascending (empty if
            the directory holds no migrations)

        Raises:
            DiscoveryError: If the directory cannot be read or two forward
                scripts share a version
        """
        if not self.migrations_dir.is_dir():
            raise DiscoveryError(
                f"Migrations directory not found: {self.migrations_dir}"
            )

        try:
            entries = list(self.migrations_dir.iterdir())
        except OSError as e:
            raise DiscoveryError(
                f"Failed to read migrations directory {self.migrations_dir}: {e}"
            ) from e

        migrations = []
        versions_seen = {}

        for file_path in entries:
            if file_path.suffix != MIGRATION_EXTENSION or not file_path.is_file():
                continue

            if is_rollback_filename(file_path.name):
                logger.debug("Skipping rollback script: %s", file_path.name)
                continue

            version = extract_version(file_path.name)
            if version is None:
                logger.warning(
                    "Skipping file %s - no version number found", file_path.name
                )
                continue

            if version in versions_seen:
                raise DiscoveryError(
                    f"Duplicate migration version {version}: "
                    f"{versions_seen[version]} and {file_path.name}"
                )
            versions_seen[version] = file_path.name

            migrations.append(Migration.from_path(file_path))

        migrations.sort()
        logger.debug(
            "Discovered %d migrations in %s", len(migrations), self.migrations_dir
        )
        return migrations

    def find(self, target: str) -> Migration:
        """
        Find a forward migration by version or filename.

        Args:
            target: Bare version ('001') or forward filename

        Raises:
            MigrationNotFoundError: If nothing matches
        """
        for migration in self.discover():
            if target in (migration.version, migration.filename):
                return migration

        raise MigrationNotFoundError(f"Migration not found: {target}")

    def find_by_version(self, version: str) -> Optional[Migration]:
        """Return the forward migration for ``version``, or None."""
        try:
            return self.find(version)
        except (DiscoveryError, MigrationNotFoundError):
            return None

    def read_rollback(self, filename: str) -> Optional[str]:
        """
        Load a down-script.

        Args:
            filename: Down-script filename, relative to the migrations dir

        Returns:
            Script content, or None if the file does not exist

        Raises:
            DiscoveryError: If the file is not valid UTF-8
        """
        path = self.migrations_dir / filename
        if not path.is_file():
            return None
        return read_script(path)
