"""
Import session contract.
The engine reads session metadata and reports progress, warnings and errors back to it.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ImportSession(Protocol):
    """Interface the engine expects from an import job"""
    session_id: str
    file_type: str
    file_size: int
    total_rows: Optional[int]
    column_mapping: Dict[int, str]
    configuration: Dict[str, Any]

    def update_progress(self, stage: str, operation: str, percentage: int) -> None:
        ...

    def add_warning(self, message: str) -> None:
        ...

    def add_error(self, message: str) -> None:
        ...


@dataclass
class InMemoryImportSession:
    """Import session kept in process memory (no persistence layer)"""
    session_id: str
    file_type: str = 'csv'
    file_size: int = 0
    total_rows: Optional[int] = None
    column_mapping: Dict[int, str] = field(default_factory=dict)
    configuration: Dict[str, Any] = field(default_factory=dict)
    original_filename: Optional[str] = None
    stage: Optional[str] = None
    current_operation: Optional[str] = None
    progress_percentage: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def update_progress(self, stage: str, operation: str, percentage: int) -> None:
        self.stage = stage
        self.current_operation = operation
        self.progress_percentage = max(0, min(100, int(percentage)))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
