"""
Migration data models and naming conventions.

This module defines the core data structures of the migration runner:
- Migration: a forward script discovered on disk
- MigrationRecord: a row of the schema_migrations ledger
- MigrationResult: outcome of applying or rolling back one migration
- RunResult: outcome of a whole run

Migration files follow the naming convention ``<version><sep><name>.sql``
where ``<version>`` is a zero-padded digit run and ``<sep>`` is ``_`` or
``-``. Down-scripts share the forward script's base name with a
``_rollback`` suffix::

    001_create_employees.sql
    001_create_employees_rollback.sql
    021-add-employee-profile-fields.sql
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from rtm_db.errors import DiscoveryError

MIGRATION_EXTENSION = '.sql'

# Suffix appended to a forward script's stem to name its down-script
ROLLBACK_SUFFIX = '_rollback'

# Also recognised when excluding down-scripts from the forward list
ROLLBACK_SUFFIXES = ('_rollback', '-rollback')

VERSION_PATTERN = re.compile(r'^(\d+)')
NAME_PATTERN = re.compile(r'^\d+[_-]?(.*)$')


def compute_checksum(content: str) -> str:
    """
    Compute SHA-256 checksum of migration file content.

    Used to detect drift: if a script changes after it was applied, its
    checksum no longer matches the ledger and the run stops.

    Args:
        content: Full file content including comments

    Returns:
        Hexadecimal SHA-256 hash (64 characters)

    Example:
        >>> len(compute_checksum("CREATE TABLE employees (id INT);"))
        64
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def read_script(path: Path) -> str:
    """
    Read a script as UTF-8 text, exactly as stored.

    Line endings are not translated, so the checksum of the returned text
    changes whenever the bytes on disk do (LF to CRLF included).

    Raises:
        DiscoveryError: If the file is not valid UTF-8
    """
    try:
        with open(path, 'r', encoding='utf-8', newline='') as fp:
            return fp.read()
    except UnicodeDecodeError as e:
        raise DiscoveryError(
            f"Migration script {path} is not valid UTF-8: {e}"
        ) from e


def extract_version(filename: str) -> Optional[str]:
    """Return the leading digit run of ``filename``, or None."""
    match = VERSION_PATTERN.match(filename)
    return match.group(1) if match else None


def version_key(version: str) -> Tuple[int, str]:
    """
    Sort key for version strings.

    Orders by numeric magnitude first so ``9`` sorts before ``10`` even
    without zero padding; the string itself breaks ties between ``1`` and
    ``001``.
    """
    return int(version), version


def is_rollback_filename(filename: str) -> bool:
    """True if ``filename`` names a down-script."""
    stem = Path(filename).stem
    return stem.endswith(ROLLBACK_SUFFIXES)


def rollback_filename(filename: str) -> str:
    """
    Down-script name for a forward script.

    Example:
        >>> rollback_filename('001_create_employees.sql')
        '001_create_employees_rollback.sql'
    """
    path = Path(filename)
    return f'{path.stem}{ROLLBACK_SUFFIX}{path.suffix or MIGRATION_EXTENSION}'


def rollback_target(target: str) -> Tuple[str, Optional[str]]:
    """
    Normalise a rollback request to ``(version, down_filename)``.

    Accepts a bare version, a forward filename or a down-script filename.
    For a bare version the down-script name cannot be derived from the
    input alone and None is returned in its place; the caller resolves it
    from the ledger or the migrations directory.

    Raises:
        ValueError: If ``target`` carries no version prefix

    Example:
        >>> rollback_target('001_init_rollback.sql')
        ('001', '001_init_rollback.sql')
        >>> rollback_target('001_init.sql')
        ('001', '001_init_rollback.sql')
        >>> rollback_target('001')
        ('001', None)
    """
    target = target.strip()
    version = extract_version(target)
    if version is None:
        raise ValueError(f"Cannot determine migration version from '{target}'")

    if target == version:
        return version, None

    if not target.endswith(MIGRATION_EXTENSION):
        # Base name without extension, e.g. '001_init'
        target = f'{target}{MIGRATION_EXTENSION}'

    if is_rollback_filename(target):
        return version, target
    return version, rollback_filename(target)


@dataclass
class Migration:
    """
    Represents a single forward migration file.

    Attributes:
        version: Version string from the filename (e.g., '001')
        name: Descriptive part of the filename (e.g., 'create_employees')
        filename: Full filename (e.g., '001_create_employees.sql')
        file_path: Absolute path to the migration file

    Example:
        >>> migration = Migration(
        ...     version='001',
        ...     name='create_employees',
        ...     filename='001_create_employees.sql',
        ...     file_path=Path('/srv/migrations/001_create_employees.sql'),
        ... )
        >>> print(migration)
        <Migration(001, create_employees)>
    """

    version: str
    name: str
    filename: str
    file_path: Path

    def __post_init__(self):
        if not self.version.isdigit():
            raise ValueError(
                f"Migration version must be numeric, got '{self.version}'"
            )

    @classmethod
    def from_path(cls, file_path: Path) -> 'Migration':
        """Build a Migration from a file path following the convention."""
        version = extract_version(file_path.name)
        if version is None:
            raise ValueError(f"Invalid migration filename: {file_path.name}")
        match = NAME_PATTERN.match(file_path.stem)
        return cls(
            version=version,
            name=match.group(1) if match else '',
            filename=file_path.name,
            file_path=file_path.absolute(),
        )

    @property
    def rollback_filename(self) -> str:
        return rollback_filename(self.filename)

    @property
    def rollback_path(self) -> Path:
        return self.file_path.with_name(self.rollback_filename)

    def read(self) -> str:
        """Read the script content, line endings preserved."""
        return read_script(self.file_path)

    def __lt__(self, other: 'Migration') -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return version_key(self.version) < version_key(other.version)

    def __repr__(self) -> str:
        return f"<Migration({self.version}, {self.name})>"


@dataclass(frozen=True)
class MigrationRecord:
    """
    A migration that has been applied to the database.

    Corresponds to one row of the schema_migrations table. Created in the
    same transaction as the schema change it documents and removed only by
    a successful rollback of that version.

    Attributes:
        version: Migration version (primary key)
        filename: Source filename that was executed
        executed_at: Set by the database at insert time
        checksum: Checksum of the script when it was executed
    """

    version: str
    filename: str
    executed_at: datetime
    checksum: str

    def __repr__(self) -> str:
        return f"<MigrationRecord({self.version}, {self.filename})>"


class MigrationStatus(Enum):
    """Outcome of a single apply or rollback."""
    APPLIED = 'applied'
    SKIPPED = 'skipped'
    ROLLED_BACK = 'rolled_back'
    DRY_RUN = 'dry_run'


@dataclass
class MigrationResult:
    """
    Result of executing one migration.

    Attributes:
        version: Migration version that was processed
        filename: Script that was executed (down-script for rollbacks)
        status: What happened
        execution_time_ms: Execution time in milliseconds (0 when skipped)
    """
    version: str
    filename: str
    status: MigrationStatus
    execution_time_ms: int = 0


@dataclass
class RunResult:
    """Result of a whole apply or rollback run."""

    results: List[MigrationResult] = field(default_factory=list)

    def add(self, result: MigrationResult) -> None:
        self.results.append(result)

    def _versions(self, status: MigrationStatus) -> List[str]:
        return [r.version for r in self.results if r.status is status]

    @property
    def applied(self) -> List[str]:
        return self._versions(MigrationStatus.APPLIED)

    @property
    def skipped(self) -> List[str]:
        return self._versions(MigrationStatus.SKIPPED)

    @property
    def rolled_back(self) -> List[str]:
        return self._versions(MigrationStatus.ROLLED_BACK)

    @property
    def dry_run(self) -> List[str]:
        return self._versions(MigrationStatus.DRY_RUN)

    @property
    def executed(self) -> int:
        """Number of scripts that changed the schema."""
        return len(self.applied) + len(self.rolled_back)

    @property
    def total(self) -> int:
        return len(self.results)
