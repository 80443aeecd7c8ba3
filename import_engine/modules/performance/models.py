"""
Data models for adaptive import processing.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional
from enum import Enum


class CircuitStatus(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"  # Normal operation, calls pass through
    OPEN = "open"  # Threshold exceeded, calls fail fast
    HALF_OPEN = "half_open"  # Probing whether processing has recovered


class MemoryLevel(str, Enum):
    """Memory pressure classification"""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class ChunkOutcome(str, Enum):
    """Feedback signals for chunk size adjustment"""
    SUCCESS = "success"
    FAILURE = "failure"
    MEMORY_PRESSURE = "memory_pressure"


@dataclass
class RowRecord:
    """A single data row; row_number counts the header as row 1"""
    row_number: int
    mapped_fields: Dict[str, str] = field(default_factory=dict)
    raw_fields: List[str] = field(default_factory=list)


@dataclass
class PerformanceSample:
    """Timing and memory figures for one successful chunk"""
    timestamp: float
    duration: float
    memory_used: int
    record_count: int
    records_per_second: float
    memory_per_record: float


@dataclass
class ChunkSizeState:
    """Adaptive sizing state of one chunk producer"""
    current_size: int
    min_size: int = 5
    max_size: int = 200
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    performance_history: List[PerformanceSample] = field(default_factory=list)


@dataclass
class CircuitState:
    """Persisted circuit breaker state for one import session"""
    status: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    half_open_success_count: int = 0
    opened_at: Optional[float] = None
    half_open_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    last_failure_message: Optional[str] = None
    last_success_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CircuitState':
        try:
            status = CircuitStatus(data.get('status', CircuitStatus.CLOSED.value))
        except ValueError:
            # Unknown persisted status falls back to a closed circuit
            status = CircuitStatus.CLOSED
        return cls(
            status=status,
            failure_count=int(data.get('failure_count') or 0),
            half_open_success_count=int(data.get('half_open_success_count') or 0),
            opened_at=data.get('opened_at'),
            half_open_at=data.get('half_open_at'),
            last_failure_at=data.get('last_failure_at'),
            last_failure_message=data.get('last_failure_message'),
            last_success_at=data.get('last_success_at'),
        )


@dataclass
class MemorySnapshot:
    """Memory reading taken at a labelled point of processing"""
    label: str
    timestamp: float
    memory_bytes: int
    peak_memory_bytes: int


@dataclass
class CleanupRecord:
    """Outcome of one memory cleanup"""
    level: str
    memory_before: int
    memory_after: int
    memory_freed: int
    timestamp: float


@dataclass
class CleanupResult:
    """Result returned by a cleanup request"""
    level: str
    skipped: bool = False
    reason: Optional[str] = None
    memory_before: int = 0
    memory_after: int = 0
    memory_freed: int = 0

    @property
    def success(self) -> bool:
        return not self.skipped and self.memory_freed > 0


@dataclass
class MemoryStatus:
    """Classified memory usage against the configured limit"""
    current_usage: int
    memory_limit: int
    usage_percentage: float
    level: MemoryLevel
    needs_cleanup: bool
    available_memory: int


@dataclass
class ChunkMetric:
    """Per-chunk sample recorded by the pipeline orchestrator"""
    chunk_number: int
    record_count: int
    success: bool
    memory_usage: int
    timestamp: float
