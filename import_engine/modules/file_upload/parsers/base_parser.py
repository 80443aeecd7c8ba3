"""
Base Parser Interface
Abstract base class for streaming row readers.
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Optional


class RowReader(ABC):
    """
    Sequential reader over the raw rows of a source file.
    Used as a context manager so the file handle is released on every exit path.
    """

    def __enter__(self) -> 'RowReader':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @abstractmethod
    def open(self) -> None:
        pass

    @abstractmethod
    def read(self, count: int) -> List[List[str]]:
        """
        Read up to count rows.

        Returns:
            Raw rows as lists of strings; fewer than count only at end of file,
            an empty list once the file is exhausted
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class BaseFileParser(ABC):
    """Base class for all file parsers. All parsers must implement these methods."""

    @abstractmethod
    def detect_format(self, file_type: str) -> bool:
        """
        Detect if a session file type belongs to this parser.

        Args:
            file_type: File type recorded on the import session ('csv', 'xlsx', ...)

        Returns:
            True if this parser handles the type
        """
        pass

    @abstractmethod
    def open_rows(self, file_path: str, options: Optional[Dict] = None) -> RowReader:
        """
        Create a row reader for the file. Nothing is opened until the reader is entered.

        Args:
            file_path: Path to the file
            options: Parser-specific options (e.g., delimiter, encoding)
        """
        pass
