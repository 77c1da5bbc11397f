"""
Error types raised by scpush.

Every failure aborts the whole transfer; nothing is retried here.
"""

from typing import Optional


class ScpError(RuntimeError):
    """Base class for all scpush errors."""


class SessionError(ScpError):
    """Raised when the SSH session, its streams or the remote command fail."""


class LocalFileError(ScpError):
    """Raised when a local path cannot be stat'ed, opened or read."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class RemoteError(ScpError):
    """Raised when the receiver answers a record with an error status."""

    def __init__(self, message: str, fatal: bool = True) -> None:
        super().__init__(message or "remote scp reported an error")
        self.message = message
        self.fatal = fatal


class RemoteExitError(ScpError):
    """Raised when the remote scp process exits with a non-zero status."""

    def __init__(self, status: int, stderr: Optional[str] = None) -> None:
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"remote scp exited with status {status}{detail}")
        self.status = status
        self.stderr = stderr or ""
