"""
Exceptions raised by the import processing engine.
"""
from typing import Optional


class ImportEngineError(Exception):
    """Base class for import engine errors"""


class SourceFileError(ImportEngineError, OSError):
    """Source file is missing or cannot be read. Never retried."""

    def __init__(self, file_path: str, message: Optional[str] = None):
        self.file_path = file_path
        super().__init__(message or f"Could not open source file: {file_path}")


class CircuitBreakerOpenError(ImportEngineError):
    """
    Raised when a call is rejected because the session's circuit is open.
    The condition heals by itself once retry_after seconds have passed.
    """

    def __init__(self, session_id: str, retry_after: Optional[float] = None):
        self.session_id = session_id
        self.retry_after = retry_after
        horizon = f" Next attempt allowed in {retry_after:.0f} seconds." if retry_after is not None else ""
        super().__init__(
            f"Import circuit breaker is open for session {session_id}. "
            f"Too many failures detected. System will retry automatically.{horizon}"
        )
