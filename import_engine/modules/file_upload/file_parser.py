"""
File Parser Manager
Selects the appropriate parser based on the import session's file type.
"""
import os
from typing import Optional, Dict, List

from .parsers.base_parser import BaseFileParser, RowReader
from .parsers.csv_parser import CSVParser
from .parsers.excel_parser import ExcelParser


class FileParserManager:
    """Manages file parsers and selects appropriate parser for each file."""

    def __init__(self):
        """Initialize parser manager with available parsers."""
        self.parsers: List[BaseFileParser] = [
            CSVParser(),
            ExcelParser(),
        ]
        self.default_parser: BaseFileParser = self.parsers[0]

    def get_parser(self, file_type: Optional[str]) -> BaseFileParser:
        """
        Get appropriate parser for a file type.

        Args:
            file_type: File type recorded on the session

        Returns:
            Matching parser; the CSV parser for unknown types
        """
        for parser in self.parsers:
            if parser.detect_format(file_type or ''):
                return parser
        return self.default_parser

    def detect_file_type(self, file_path: str) -> str:
        """
        Detect file type from extension.

        Args:
            file_path: Path to the file

        Returns:
            Lowercase file type string (csv, tsv, xlsx, ...)
        """
        ext = os.path.splitext(file_path.lower())[1]
        ext_map = {
            '.csv': 'csv',
            '.tsv': 'tsv',
            '.txt': 'csv',  # Assume CSV for .txt
            '.xlsx': 'xlsx',
            '.xls': 'xls',
        }
        return ext_map.get(ext, 'unknown')

    def open_rows(self, file_path: str, file_type: Optional[str] = None, options: Optional[Dict] = None) -> RowReader:
        """
        Create a row reader using the parser for file_type, or for the file extension when not given.
        """
        parser = self.get_parser(file_type or self.detect_file_type(file_path))
        return parser.open_rows(file_path, options)

    def add_parser(self, parser: BaseFileParser):
        """Add a parser ahead of the built-in ones."""
        self.parsers.insert(0, parser)
