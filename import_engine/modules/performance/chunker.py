"""
Adaptive chunk producer for import files.
Streams a source file in chunks whose size follows processing feedback:
it grows after sustained healthy successes and shrinks on failures or
memory pressure.
"""
import math
import time
from typing import Dict, Any, List, Optional, Callable, Iterator, TypeVar, Union

from import_engine.modules.logger import info, warning, debug
from import_engine.modules.file_upload.file_parser import FileParserManager

from .models import RowRecord, PerformanceSample, ChunkSizeState, ChunkOutcome
from .memory_probe import ProcessMemoryProbe, get_process_memory_limit, format_bytes, CHUNKER_DEFAULT_LIMIT

T = TypeVar('T')

MIB = 1024 * 1024

PERFORMANCE_WINDOW = 20
GROWTH_AFTER_SUCCESSES = 3
GROWTH_FACTOR = 1.25
FAILURE_FACTOR = 0.6
MEMORY_PRESSURE_FACTOR = 0.4
MIN_RECORDS_PER_SECOND = 5
MAX_MEMORY_PER_RECORD = 2 * MIB


class AdaptiveChunkProducer:
    """Produces chunks of RowRecords from one import session's source file"""

    def __init__(
        self,
        session,
        initial_size: Optional[int] = None,
        min_size: int = 5,
        max_size: int = 200,
        parser_manager: Optional[FileParserManager] = None,
        memory_probe=None,
        adaptive: bool = True
    ):
        """
        Initialize chunk producer.

        Args:
            session: Import session (file metadata, column mapping, progress sink)
            initial_size: Starting chunk size (default: derived from file size and free memory)
            min_size: Lower bound for the chunk size (default: 5)
            max_size: Upper bound for the chunk size (default: 200)
            parser_manager: Parser selection (default: FileParserManager())
            memory_probe: Object exposing current() and peak() in bytes
            adaptive: When False the chunk size never changes
        """
        if min_size < 1 or max_size < min_size:
            raise ValueError(f"Invalid chunk bounds: min_size={min_size}, max_size={max_size}")

        self.session = session
        self.parser_manager = parser_manager or FileParserManager()
        self.memory_probe = memory_probe or ProcessMemoryProbe()
        self.adaptive = adaptive
        self.chunks_processed = 0

        size = initial_size if initial_size is not None else self.calculate_initial_size()
        self.state = ChunkSizeState(
            current_size=self._clamp(size, min_size, max_size),
            min_size=min_size,
            max_size=max_size,
        )

    @property
    def current_size(self) -> int:
        return self.state.current_size

    def calculate_initial_size(self) -> int:
        """Starting chunk size from file size scaled by available memory (unclamped)"""
        file_size = self.session.file_size or 0

        if file_size > 50 * MIB:
            base_size = 25
        elif file_size > 10 * MIB:
            base_size = 50
        elif file_size > 1 * MIB:
            base_size = 100
        else:
            base_size = 50

        available = self.get_available_memory()
        if available > 200 * MIB:
            memory_factor = 2.0
        elif available > 100 * MIB:
            memory_factor = 1.5
        elif available > 50 * MIB:
            memory_factor = 1.0
        else:
            memory_factor = 0.5

        return int(base_size * memory_factor)

    def get_available_memory(self) -> int:
        return get_process_memory_limit(CHUNKER_DEFAULT_LIMIT) - self.memory_probe.current()

    def process_file(self, file_path: str, processor: Callable[[List[RowRecord]], T]) -> Iterator[T]:
        """
        Stream the file in adaptive chunks, yielding the processor result for each chunk.

        The header row is discarded; data rows are numbered from 2. The file is
        closed when the stream ends, fails or is closed early.

        Raises:
            SourceFileError: If the file cannot be opened
        """
        start_time = time.time()
        chunk_count = 0
        record_count = 0

        reader = self.parser_manager.open_rows(file_path, getattr(self.session, 'file_type', None))
        with reader:
            self._log_start()

            reader.read(1)  # header
            next_row_number = 2

            while True:
                rows = reader.read(self.state.current_size)
                if not rows:
                    break

                chunk = [
                    self.build_record(next_row_number + offset, raw)
                    for offset, raw in enumerate(rows)
                ]
                next_row_number += len(rows)

                result = self.process_chunk(chunk, processor)
                chunk_count += 1
                record_count += len(chunk)
                yield result

        self._log_completion(chunk_count, record_count, time.time() - start_time)

    def build_record(self, row_number: int, raw_fields: List[str]) -> RowRecord:
        """Map raw fields positionally through the session's column mapping"""
        mapped: Dict[str, str] = {}
        for index, field_name in (self.session.column_mapping or {}).items():
            if not field_name:
                continue
            position = int(index)
            if 0 <= position < len(raw_fields):
                mapped[field_name] = raw_fields[position]
        return RowRecord(row_number=row_number, mapped_fields=mapped, raw_fields=list(raw_fields))

    def process_chunk(self, chunk: List[RowRecord], processor: Callable[[List[RowRecord]], T]) -> T:
        """
        Run the processor on one chunk and feed the outcome back into sizing.
        Exceptions from the processor are re-raised unchanged.
        """
        start_time = time.time()
        start_memory = self.memory_probe.current()

        self.session.update_progress(
            'processing',
            f"Processing chunk {self.chunks_processed + 1}",
            self.calculate_progress(),
        )
        self.chunks_processed += 1

        try:
            result = processor(chunk)
        except Exception as e:
            self.record_failure(e, len(chunk))
            self.adjust_chunk_size(ChunkOutcome.FAILURE)
            raise

        sample = self.record_success(start_time, start_memory, len(chunk))
        debug(
            f"[Chunker] Import chunk processed for session {self.session.session_id}",
            chunk_number=self.chunks_processed,
            record_count=len(chunk),
            duration_ms=round(sample.duration * 1000, 2),
            memory_used=format_bytes(sample.memory_used),
            chunk_size=self.state.current_size,
        )
        self.adjust_chunk_size(ChunkOutcome.SUCCESS)
        return result

    def calculate_progress(self) -> int:
        """Percentage of rows covered by the chunks completed before the current one"""
        total_rows = self.session.total_rows
        if not total_rows:
            return min(100, self.chunks_processed * 5)
        processed = self.chunks_processed * self.state.current_size
        return min(100, int(processed / total_rows * 100))

    def adjust_chunk_size(self, outcome: Union[str, ChunkOutcome]) -> int:
        """
        Resize the next chunk after an outcome.

        Args:
            outcome: 'success', 'failure' or 'memory_pressure'

        Returns:
            The chunk size after adjustment

        Raises:
            ValueError: If outcome is unknown
        """
        try:
            outcome = ChunkOutcome(outcome)
        except ValueError:
            raise ValueError(f"Unknown chunk outcome: {outcome}") from None

        state = self.state
        old_size = state.current_size
        new_size = old_size

        if outcome == ChunkOutcome.SUCCESS:
            state.consecutive_successes += 1
            state.consecutive_failures = 0
            if state.consecutive_successes >= GROWTH_AFTER_SUCCESSES and self.can_increase():
                new_size = min(state.max_size, math.ceil(old_size * GROWTH_FACTOR))
                state.consecutive_successes = 0
        elif outcome == ChunkOutcome.FAILURE:
            state.consecutive_failures += 1
            state.consecutive_successes = 0
            new_size = max(state.min_size, math.floor(old_size * FAILURE_FACTOR))
        else:
            new_size = max(state.min_size, math.floor(old_size * MEMORY_PRESSURE_FACTOR))

        if not self.adaptive or new_size == old_size:
            return old_size

        state.current_size = new_size
        self.session.configuration['optimal_chunk_size'] = new_size

        info(
            f"[Chunker] Import chunk size adjusted for session {self.session.session_id}",
            old_size=old_size,
            new_size=new_size,
            reason=outcome.value,
            consecutive_successes=state.consecutive_successes,
            consecutive_failures=state.consecutive_failures,
        )
        return new_size

    def can_increase(self) -> bool:
        """Healthy when the last 5 samples average over 5 rec/s and under 2MB per record"""
        recent = self.state.performance_history[-5:]
        if not recent:
            return True

        avg_records_per_second = sum(s.records_per_second for s in recent) / len(recent)
        avg_memory_per_record = sum(s.memory_per_record for s in recent) / len(recent)

        return avg_records_per_second > MIN_RECORDS_PER_SECOND and avg_memory_per_record < MAX_MEMORY_PER_RECORD

    def record_success(self, start_time: float, start_memory: int, record_count: int) -> PerformanceSample:
        duration = time.time() - start_time
        memory_used = self.memory_probe.current() - start_memory

        sample = PerformanceSample(
            timestamp=time.time(),
            duration=duration,
            memory_used=memory_used,
            record_count=record_count,
            records_per_second=record_count / max(duration, 0.001),
            memory_per_record=memory_used / max(record_count, 1),
        )
        history = self.state.performance_history
        history.append(sample)
        if len(history) > PERFORMANCE_WINDOW:
            del history[:-PERFORMANCE_WINDOW]
        return sample

    def record_failure(self, exc: Exception, record_count: int) -> None:
        warning(
            f"[Chunker] Import chunk failure for session {self.session.session_id}",
            error=str(exc),
            chunk_size=self.state.current_size,
            record_count=record_count,
            consecutive_failures=self.state.consecutive_failures + 1,
        )

    def get_performance_stats(self) -> Dict[str, Any]:
        """Current sizing state and averages over the sample window"""
        recent = self.state.performance_history

        return {
            'session_id': self.session.session_id,
            'current_chunk_size': self.state.current_size,
            'min_chunk_size': self.state.min_size,
            'max_chunk_size': self.state.max_size,
            'adaptive': self.adaptive,
            'consecutive_successes': self.state.consecutive_successes,
            'consecutive_failures': self.state.consecutive_failures,
            'avg_records_per_second': (
                sum(s.records_per_second for s in recent) / len(recent) if recent else None
            ),
            'avg_memory_per_record': (
                sum(s.memory_per_record for s in recent) / len(recent) if recent else None
            ),
            'total_chunks_processed': self.chunks_processed,
            'samples_in_window': len(recent),
        }

    def _log_start(self) -> None:
        info(
            f"[Chunker] Import chunking started for session {self.session.session_id}",
            file_name=getattr(self.session, 'original_filename', None),
            file_size=format_bytes(self.session.file_size or 0),
            total_rows=self.session.total_rows,
            initial_chunk_size=self.state.current_size,
            available_memory=format_bytes(self.get_available_memory()),
        )

    def _log_completion(self, chunk_count: int, record_count: int, total_time: float) -> None:
        info(
            f"[Chunker] Import chunking completed for session {self.session.session_id}",
            total_chunks=chunk_count,
            total_records=record_count,
            total_time_seconds=round(total_time, 2),
            records_per_second=round(record_count / max(total_time, 0.001), 2),
            final_chunk_size=self.state.current_size,
            peak_memory=format_bytes(self.memory_probe.peak()),
        )

    @staticmethod
    def _clamp(size: int, min_size: int, max_size: int) -> int:
        return max(min_size, min(max_size, int(size)))
