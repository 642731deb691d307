"""
Migration-specific exceptions.

This module defines the exception hierarchy for the migration runner,
enabling precise error handling at different layers of the application.
None of these errors are retried automatically: a transient failure and a
genuine conflict look identical from the runner's point of view.
"""


class MigrationError(Exception):
    """
    Base exception for migration errors.

    All runner exceptions inherit from this base class, allowing the
    command line to turn any of them into a non-zero exit status.
    """
    pass


class DiscoveryError(MigrationError):
    """
    Migration source could not be read.

    Raised when:
    - The migrations directory does not exist or is not a directory
    - The directory listing fails (permissions, I/O error)
    - Two forward scripts declare the same version
    - A script is not valid UTF-8
    """
    pass


class MigrationNotFoundError(MigrationError):
    """No forward script matches the requested version or filename."""
    pass


class ChecksumMismatchError(MigrationError):
    """
    Script content changed after it was applied.

    The recorded checksum disagrees with the script currently on disk.
    Fatal for the whole run: later migrations may assume preconditions
    that no longer hold.
    """

    def __init__(self, version: str, expected: str, actual: str):
        self.version = version
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Migration {version} has been modified since execution. "
            f"Checksum mismatch (expected {expected[:12]}..., "
            f"got {actual[:12]}...)"
        )


class ApplyFailure(MigrationError):
    """
    Forward script failed to execute.

    The enclosing transaction has been rolled back. The driver error is
    available as ``__cause__``.
    """

    def __init__(self, version: str, filename: str, reason: str = ''):
        self.version = version
        self.filename = filename
        message = f"Migration {version} ({filename}) failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RollbackFileMissingError(MigrationError):
    """No down-script exists for the requested version."""

    def __init__(self, version: str, filename: str):
        self.version = version
        self.filename = filename
        super().__init__(
            f"Rollback file not found for migration {version}: {filename}"
        )


class MigrationNotAppliedError(MigrationError):
    """Rollback requested for a version that has no ledger row."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Cannot rollback migration {version} - not applied")


class RollbackFailure(MigrationError):
    """
    Down-script failed to execute.

    The transaction has been rolled back, so the migration is still
    recorded as applied.
    """

    def __init__(self, version: str, filename: str, reason: str = ''):
        self.version = version
        self.filename = filename
        message = f"Rollback of migration {version} ({filename}) failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MigrationLockError(MigrationError):
    """Another runner holds the migration lock."""
    pass
