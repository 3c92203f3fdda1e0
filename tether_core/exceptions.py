"""Custom exceptions for Tether."""

from typing import Optional, Sequence

__all__ = [
    "TetherError",
    "ConfigError",
    "ValidationError",
    "IntegrityError",
    "GitError",
    "QuarantineError",
    "IDCollisionError",
]


class TetherError(Exception):
    """Base exception for all Tether errors."""

    pass


class ConfigError(TetherError):
    """Raised when the tether root or its config cannot be found or parsed."""

    pass


class ValidationError(TetherError, ValueError):
    """Raised when user input is invalid (names, selectors, field values)."""

    pass


class IntegrityError(TetherError, ValueError):
    """Raised when an operation would break a record or mapping invariant."""

    pass


class GitError(TetherError):
    """Raised when a git subprocess fails or times out."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class QuarantineError(TetherError):
    """Raised when a conflict-losing copy cannot be written to the attic."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class IDCollisionError(TetherError):
    """Raised when unable to generate unique ID after max retries."""

    pass
