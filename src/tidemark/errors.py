"""
Tidemark error taxonomy

Planning-time errors (DiscoveryError, NotFoundError, InsufficientHistoryError,
LockError) are raised before the ledger is touched and can be fixed and
retried by the caller. OperationError wraps a failed forward/backward action.
ConflictError and LedgerDesyncError mean the ledger no longer agrees with the
schema and need an operator.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .migrations.executor import MigrationResult


class MigrationError(Exception):
    """Base exception for all migration engine errors"""
    pass


class DiscoveryError(MigrationError):
    """Raised when migration definitions are malformed, duplicated or incomplete"""
    pass


class NotFoundError(MigrationError):
    """Raised when a named migration or ledger record does not exist"""

    def __init__(self, message: str, name: Optional[str] = None):
        self.name = name
        super().__init__(message)


class InsufficientHistoryError(MigrationError):
    """Raised when a rollback count exceeds the applied history"""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot roll back {requested} migration(s): only {available} applied"
        )


class ConflictError(MigrationError):
    """Raised when recording a migration that the ledger already holds"""

    def __init__(self, message: str, name: Optional[str] = None):
        self.name = name
        super().__init__(message)


class LedgerDesyncError(MigrationError):
    """Raised when a committed schema change could not be written to the ledger.

    The run stops at once. ``result`` holds what had durably completed before
    the failing step, and ``name`` the migration whose ledger write failed.
    """

    def __init__(self, message: str, name: str,
                 result: Optional["MigrationResult"] = None):
        self.name = name
        self.result = result
        super().__init__(message)


class OperationError(MigrationError):
    """Raised when a migration's forward or backward operation fails"""

    def __init__(self, name: str, direction: str, original: BaseException):
        self.name = name
        self.direction = direction
        self.original = original
        super().__init__(f"{direction} operation of {name} failed: {original}")


class LockError(MigrationError):
    """Raised when another run already holds the migration lock"""
    pass


class ConfigError(ValueError):
    """Raised for invalid tidemark configuration values"""
    pass


__all__ = [
    "MigrationError",
    "DiscoveryError",
    "NotFoundError",
    "InsufficientHistoryError",
    "ConflictError",
    "LedgerDesyncError",
    "OperationError",
    "LockError",
    "ConfigError",
]
