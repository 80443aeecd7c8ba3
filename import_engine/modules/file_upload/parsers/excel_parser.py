"""
Excel Parser
Handles XLSX and XLS sessions by reading the source as delimited text.
"""
from typing import Dict, Optional

from import_engine.modules.logger import warning
from .base_parser import BaseFileParser, RowReader
from .csv_parser import CSVRowReader


class ExcelParser(BaseFileParser):
    """
    Parser for Excel sessions (XLSX, XLS).
    Spreadsheets are not decoded: uploads are expected to have been exported
    as delimited text, and rows are streamed through the CSV reader.
    """

    def detect_format(self, file_type: str) -> bool:
        """Detect if file type is an Excel format."""
        return (file_type or '').lower().lstrip('.') in ['xlsx', 'xls', 'excel']

    def open_rows(self, file_path: str, options: Optional[Dict] = None) -> RowReader:
        warning(f"[Parser] Excel source {file_path} is read as delimited text")
        return CSVRowReader(file_path, options)
