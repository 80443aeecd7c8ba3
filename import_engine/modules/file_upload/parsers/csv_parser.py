"""
CSV/TSV Parser
Streams comma-, tab-, semicolon- or pipe-separated files row by row.
"""
import csv
import os
from typing import List, Dict, Optional

import pandas as pd
from pandas.errors import EmptyDataError

from import_engine.modules.performance.exceptions import SourceFileError
from .base_parser import BaseFileParser, RowReader


def detect_delimiter(file_path: str, encoding: str = 'utf-8') -> str:
    """Guess the delimiter from the first line of the file"""
    with open(file_path, 'r', encoding=encoding, errors='ignore') as f:
        first_line = f.readline()
    if '\t' in first_line:
        return '\t'
    elif ',' in first_line:
        return ','
    elif ';' in first_line:
        return ';'
    elif '|' in first_line:
        return '|'
    return ','  # Default


def count_columns(file_path: str, delimiter: str, quotechar: str = '"', encoding: str = 'utf-8') -> int:
    """Field count of the widest row in the file"""
    width = 0
    with open(file_path, 'r', encoding=encoding, newline='') as f:
        for row in csv.reader(f, delimiter=delimiter, quotechar=quotechar):
            width = max(width, len(row))
    return width


def _clean_row(values) -> List[str]:
    row = list(values)
    # Rows narrower than the widest row are padded with NA; drop the padding
    while row and not isinstance(row[-1], str) and pd.isna(row[-1]):
        row.pop()
    return ['' if not isinstance(value, str) and pd.isna(value) else str(value) for value in row]


class CSVRowReader(RowReader):
    """Reads a delimited file in variable-size batches through a pandas TextFileReader"""

    def __init__(self, file_path: str, options: Optional[Dict] = None):
        self.file_path = file_path
        self.options = options or {}
        self._reader = None
        self._exhausted = False

    def open(self) -> None:
        if not os.path.isfile(self.file_path):
            raise SourceFileError(self.file_path)

        encoding = self.options.get('encoding', 'utf-8')
        quotechar = self.options.get('quotechar', '"')
        try:
            delimiter = self.options.get('delimiter') or detect_delimiter(self.file_path, encoding)
            # Every row keeps all of its fields, however wide
            width = count_columns(self.file_path, delimiter, quotechar, encoding)
            if width == 0:
                # Empty file: no header, no rows
                self._exhausted = True
                return
            self._reader = pd.read_csv(
                self.file_path,
                delimiter=delimiter,
                encoding=encoding,
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                na_filter=False,
                skip_blank_lines=False,
                quotechar=quotechar,
                engine='python',
                iterator=True,
            )
        except EmptyDataError:
            self._exhausted = True
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise SourceFileError(self.file_path, f"Could not open source file {self.file_path}: {e}") from e

    def read(self, count: int) -> List[List[str]]:
        if self._exhausted or self._reader is None or count <= 0:
            return []
        try:
            frame = self._reader.get_chunk(count)
        except StopIteration:
            self._exhausted = True
            return []
        rows = [_clean_row(values) for values in frame.itertuples(index=False, name=None)]
        if len(rows) < count:
            self._exhausted = True
        return rows

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


class CSVParser(BaseFileParser):
    """Parser for CSV and TSV files."""

    def detect_format(self, file_type: str) -> bool:
        """Detect if file type is CSV or TSV."""
        return (file_type or '').lower().lstrip('.') in ['csv', 'tsv', 'txt']

    def open_rows(self, file_path: str, options: Optional[Dict] = None) -> RowReader:
        """
        Create a streaming reader for a CSV/TSV file.

        Options:
            - delimiter: Delimiter character (default: auto-detect)
            - encoding: File encoding (default: 'utf-8')
            - quotechar: Quote character (default: '"')
        """
        return CSVRowReader(file_path, options)
