#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration validation for safety and compatibility checks.

Validates forward scripts for destructive operations, SQLite limitations,
basic syntax errors, missing down-scripts and checksum integrity, without
executing them. Provides warnings at different severity levels
(INFO, WARNING, ERROR).
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .migration import Migration, MigrationRecord, compute_checksum


class WarningLevel(Enum):
    """Severity levels for validation warnings."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ValidationWarning:
    """
    Warning from migration validation.

    Attributes:
        level: Severity level (INFO, WARNING, ERROR)
        message: Human-readable warning message
        migration_version: Migration version that triggered warning
        filename: Script that triggered warning
        category: 'checksum', 'destructive', 'sqlite', 'syntax' or 'rollback'

    Example:
        >>> warning = ValidationWarning(
        ...     level=WarningLevel.ERROR,
        ...     message="SQLite does not support ALTER COLUMN directly",
        ...     migration_version='003',
        ...     filename='003_alter_author.sql',
        ...     category='sqlite'
        ... )
        >>> print(warning)
        [ERROR] Migration 003 (003_alter_author.sql): SQLite does not support ALTER COLUMN directly
    """
    level: WarningLevel
    message: str
    migration_version: str
    filename: str
    category: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'level': self.level.value,
            'message': self.message,
            'migration_version': self.migration_version,
            'filename': self.filename,
            'category': self.category
        }

    def __str__(self) -> str:
        return (
            f"[{self.level.value}] Migration {self.migration_version} "
            f"({self.filename}): {self.message}"
        )


class MigrationValidator:
    """
    Validates migrations for safety and compatibility issues.

    Performs multiple validation checks:
    - Destructive operations (DROP COLUMN, DROP TABLE, TRUNCATE)
    - SQLite limitations (unsupported ALTER operations)
    - Basic SQL syntax (parentheses, string quotes)
    - Presence of a down-script
    - Checksum verification (drift detection)

    Validation is advisory: the transactional executor remains the
    authority on whether a script applies.

    Attributes:
        db_type: Database dialect name ('sqlite', 'postgresql', ...)

    Example:
        >>> validator = MigrationValidator(db_type='postgresql')
        >>> for w in validator.validate_migration(migration):
        ...     print(w)
    """

    DROP_COLUMN_PATTERN = re.compile(r'\bDROP\s+COLUMN\b', re.IGNORECASE)
    DROP_TABLE_PATTERN = re.compile(r'\bDROP\s+TABLE\b', re.IGNORECASE)
    TRUNCATE_PATTERN = re.compile(r'\bTRUNCATE\s+(TABLE\s+)?\w', re.IGNORECASE)
    ALTER_COLUMN_PATTERN = re.compile(r'\bALTER\s+COLUMN\b', re.IGNORECASE)
    ADD_CONSTRAINT_PATTERN = re.compile(r'\bADD\s+CONSTRAINT\b', re.IGNORECASE)

    def __init__(self, db_type: str = 'postgresql'):
        self.db_type = db_type.lower()

    def validate_migration(
        self,
        migration: Migration,
        content: Optional[str] = None
    ) -> List[ValidationWarning]:
        """
        Validate a forward migration.

        Args:
            migration: Migration to validate
            content: Script content (read from disk if omitted)

        Returns:
            List of ValidationWarning objects (empty if no issues)
        """
        sql = content if content is not None else migration.read()
        warnings = []

        warnings.extend(self._check_destructive_operations(migration, sql))

        if self.db_type == 'sqlite':
            warnings.extend(self._check_sqlite_limitations(migration, sql))

        warnings.extend(self._check_syntax(migration, sql))
        warnings.extend(self._check_rollback_script(migration))

        return warnings

    def verify_checksum(
        self,
        migration: Migration,
        record: MigrationRecord,
        content: Optional[str] = None
    ) -> List[ValidationWarning]:
        """
        Compare the script on disk against the ledger.

        Returns:
            List with an ERROR warning on mismatch, empty list if unchanged
        """
        sql = content if content is not None else migration.read()
        current = compute_checksum(sql)

        if current == record.checksum:
            return []

        return [self._warning(
            migration,
            WarningLevel.ERROR,
            "Migration file has been modified since execution (checksum "
            f"mismatch). Expected: {record.checksum[:8]}..., Got: {current[:8]}...",
            'checksum'
        )]

    def _check_destructive_operations(
        self,
        migration: Migration,
        sql: str
    ) -> List[ValidationWarning]:
        """WARNING for statements that destroy data."""
        warnings = []

        if self.DROP_COLUMN_PATTERN.search(sql):
            warnings.append(self._warning(
                migration,
                WarningLevel.WARNING,
                "Migration drops column (potential data loss). "
                "Ensure column data is no longer needed or backed up.",
                'destructive'
            ))

        if self.DROP_TABLE_PATTERN.search(sql):
            warnings.append(self._warning(
                migration,
                WarningLevel.WARNING,
                "Migration drops table (all table data will be deleted). "
                "Ensure data is backed up or no longer needed.",
                'destructive'
            ))

        if self.TRUNCATE_PATTERN.search(sql):
            warnings.append(self._warning(
                migration,
                WarningLevel.WARNING,
                "Migration truncates table (all rows will be deleted). "
                "Ensure data is backed up or no longer needed.",
                'destructive'
            ))

        return warnings

    def _check_sqlite_limitations(
        self,
        migration: Migration,
        sql: str
    ) -> List[ValidationWarning]:
        """ERROR for ALTER forms SQLite cannot execute."""
        warnings = []

        if self.ALTER_COLUMN_PATTERN.search(sql):
            warnings.append(self._warning(
                migration,
                WarningLevel.ERROR,
                "SQLite does not support ALTER COLUMN directly. "
                "Use table recreation pattern with modified schema.",
                'sqlite'
            ))

        if self.ADD_CONSTRAINT_PATTERN.search(sql):
            warnings.append(self._warning(
                migration,
                WarningLevel.ERROR,
                "SQLite does not support ADD CONSTRAINT directly. "
                "Define constraints in initial CREATE TABLE or use table recreation.",
                'sqlite'
            ))

        return warnings

    def _check_syntax(
        self,
        migration: Migration,
        sql: str
    ) -> List[ValidationWarning]:
        """
        Check for basic SQL syntax errors.

        Heuristics only (unmatched parentheses, odd number of single
        quotes); dollar-quoted bodies are ignored.
        """
        warnings = []

        sql_no_comments = re.sub(r'--.*$', '', sql, flags=re.MULTILINE)
        sql_no_comments = re.sub(r'/\*.*?\*/', '', sql_no_comments, flags=re.DOTALL)
        sql_no_comments = re.sub(
            r'(\$\w*\$).*?\1', '', sql_no_comments, flags=re.DOTALL
        )

        open_parens = sql_no_comments.count('(')
        close_parens = sql_no_comments.count(')')
        if open_parens != close_parens:
            warnings.append(self._warning(
                migration,
                WarningLevel.ERROR,
                f"Unmatched parentheses: {open_parens} open, {close_parens} close",
                'syntax'
            ))

        single_quotes = sql_no_comments.count("'")
        if single_quotes % 2 != 0:
            warnings.append(self._warning(
                migration,
                WarningLevel.ERROR,
                f"Unterminated string (odd number of single quotes: {single_quotes})",
                'syntax'
            ))

        return warnings

    def _check_rollback_script(self, migration: Migration) -> List[ValidationWarning]:
        if migration.rollback_path.is_file():
            return []
        return [self._warning(
            migration,
            WarningLevel.WARNING,
            f"No rollback script ({migration.rollback_filename}); "
            "this migration cannot be reverted",
            'rollback'
        )]

    @staticmethod
    def _warning(
        migration: Migration,
        level: WarningLevel,
        message: str,
        category: str
    ) -> ValidationWarning:
        return ValidationWarning(
            level=level,
            message=message,
            migration_version=migration.version,
            filename=migration.filename,
            category=category
        )
