"""
Pipeline orchestrator for import processing.
Composes the adaptive chunk producer, the memory governor and the circuit
breaker behind a fluent configuration API.

Usage:
    orchestrator = PipelineOrchestrator.for_session(session).with_smart_chunking().with_memory_management()
    for result in orchestrator.process_file(path, processor):
        ...

    PipelineOrchestrator.for_session(session).chunk_size(25).memory_limit(100).failure_threshold(3)
    PipelineOrchestrator.for_session(session).maximize()
"""
import os
import time
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Callable, Iterator, TypeVar

from import_engine.modules.logger import info, error
from import_engine.modules.settings import Settings, get_pipeline_settings
from import_engine.modules.file_upload.file_parser import FileParserManager

from .chunker import AdaptiveChunkProducer
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .memory_governor import MemoryGovernor
from .memory_probe import ProcessMemoryProbe, get_available_system_memory, get_processor_count
from .models import ChunkMetric, ChunkOutcome, RowRecord
from .redis_state_store import RedisCircuitStateStore
from .state_store import CircuitStateStore, InMemoryCircuitStateStore

T = TypeVar('T')

MIB = 1024 * 1024
MAX_METRICS = 100
METRICS_AFTER_TRIM = 50


@dataclass
class PipelineConfig:
    """Configuration of one pipeline run"""
    adaptive_chunking: bool = True
    initial_chunk_size: Optional[int] = None
    min_chunk_size: int = 5
    max_chunk_size: int = 200
    memory_management: bool = True
    memory_limit_mb: Optional[int] = None
    cleanup_cooldown: float = 5.0
    warning_threshold_percent: float = 0.7
    critical_threshold_percent: float = 0.85
    circuit_breaker: bool = True
    failure_threshold: int = 5
    recovery_timeout: int = 30
    half_open_max_calls: int = 3
    detailed_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> 'PipelineConfig':
        return cls(
            adaptive_chunking=settings.adaptive_chunking,
            initial_chunk_size=settings.initial_chunk_size,
            min_chunk_size=settings.min_chunk_size,
            max_chunk_size=settings.max_chunk_size,
            memory_management=settings.memory_management,
            memory_limit_mb=settings.memory_limit_mb,
            cleanup_cooldown=settings.cleanup_cooldown,
            warning_threshold_percent=settings.warning_threshold_percent,
            critical_threshold_percent=settings.critical_threshold_percent,
            circuit_breaker=settings.circuit_breaker,
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
            half_open_max_calls=settings.half_open_max_calls,
        )


def create_state_store(settings: Settings, clock: Callable[[], float] = time.time) -> CircuitStateStore:
    """Build the circuit state store named by settings.state_store ('memory' or 'redis')"""
    if settings.state_store == 'redis':
        return RedisCircuitStateStore(url=settings.redis_url)
    if settings.state_store != 'memory':
        raise ValueError(f"Unknown circuit state store: {settings.state_store}")
    return InMemoryCircuitStateStore(clock=clock)


class PipelineOrchestrator:
    """Runs an import file through chunking, memory management and failure isolation"""

    def __init__(
        self,
        session,
        settings: Optional[Settings] = None,
        state_store: Optional[CircuitStateStore] = None,
        parser_manager: Optional[FileParserManager] = None,
        memory_probe=None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize orchestrator.

        Args:
            session: Import session to process
            settings: Defaults for the configuration (default: from environment)
            state_store: Circuit state store (default: built from settings)
            parser_manager: Parser selection passed to the chunk producer
            memory_probe: Memory probe shared by all components
            clock: Time source for the governor and the breaker
        """
        settings = settings or get_pipeline_settings()

        self.session = session
        self.config = PipelineConfig.from_settings(settings)
        self.state_store = state_store or create_state_store(settings, clock)
        self.parser_manager = parser_manager or FileParserManager()
        self.memory_probe = memory_probe or ProcessMemoryProbe()
        self.clock = clock

        self.chunker: Optional[AdaptiveChunkProducer] = None
        self.memory_governor: Optional[MemoryGovernor] = None
        self.circuit_breaker: Optional[CircuitBreaker] = None
        self.performance_metrics: List[ChunkMetric] = []

    @classmethod
    def for_session(cls, session, **kwargs) -> 'PipelineOrchestrator':
        return cls(session, **kwargs)

    def with_smart_chunking(self, initial_size: Optional[int] = None) -> 'PipelineOrchestrator':
        """Enable adaptive chunking, optionally with a starting size"""
        self.config.adaptive_chunking = True
        if initial_size:
            self.config.initial_chunk_size = initial_size
        return self

    def chunk_size(self, size: int) -> 'PipelineOrchestrator':
        """Use a fixed chunk size (disables adaptive chunking)"""
        self.config.adaptive_chunking = False
        self.config.initial_chunk_size = size
        return self

    def with_memory_management(self, limit_mb: Optional[int] = None) -> 'PipelineOrchestrator':
        self.config.memory_management = True
        if limit_mb:
            self.config.memory_limit_mb = limit_mb
        return self

    def without_memory_management(self) -> 'PipelineOrchestrator':
        self.config.memory_management = False
        return self

    def memory_limit(self, limit_mb: int) -> 'PipelineOrchestrator':
        self.config.memory_limit_mb = limit_mb
        return self

    def with_circuit_breaker(self, failure_threshold: int = 5, recovery_timeout: int = 30) -> 'PipelineOrchestrator':
        self.config.circuit_breaker = True
        self.config.failure_threshold = failure_threshold
        self.config.recovery_timeout = recovery_timeout
        return self

    def without_circuit_breaker(self) -> 'PipelineOrchestrator':
        self.config.circuit_breaker = False
        return self

    def failure_threshold(self, threshold: int) -> 'PipelineOrchestrator':
        self.config.failure_threshold = threshold
        return self

    def recovery_timeout(self, seconds: int) -> 'PipelineOrchestrator':
        self.config.recovery_timeout = seconds
        return self

    def with_detailed_logging(self, enabled: bool = True) -> 'PipelineOrchestrator':
        self.config.detailed_logging = enabled
        return self

    def maximize(self) -> 'PipelineOrchestrator':
        """Enable every optimization with an aggressive circuit breaker"""
        aggressive = CircuitBreakerConfig.aggressive()
        return (
            self.with_smart_chunking()
            .with_memory_management()
            .with_circuit_breaker(aggressive.failure_threshold, aggressive.recovery_timeout)
            .with_detailed_logging()
            .optimize_for_system()
        )

    def optimize_for_system(self) -> 'PipelineOrchestrator':
        """Derive the initial chunk size and memory limit from free memory and CPU count"""
        available_mb = self._get_available_memory_mb()
        processor_count = get_processor_count()

        if available_mb > 200:
            optimal_chunk_size = min(100, processor_count * 10)
        elif available_mb > 100:
            optimal_chunk_size = min(50, processor_count * 5)
        elif available_mb > 50:
            optimal_chunk_size = min(25, processor_count * 3)
        else:
            optimal_chunk_size = 10

        self.config.initial_chunk_size = optimal_chunk_size
        self.config.memory_limit_mb = int(available_mb * 0.8)

        info(
            f"[Pipeline] Import performance optimized for system for session {self.session.session_id}",
            available_memory_mb=available_mb,
            processor_count=processor_count,
            optimal_chunk_size=optimal_chunk_size,
            memory_limit_mb=self.config.memory_limit_mb,
        )
        return self

    def process_file(self, file_path: str, processor: Callable[[List[RowRecord]], T]) -> Iterator[T]:
        """
        Process an import file, yielding the processor result of each chunk in order.

        Raises:
            SourceFileError: If the file cannot be opened
            CircuitBreakerOpenError: If the session's circuit is open
        """
        self._build()
        self._log_processing_start(file_path)
        start_time = time.time()

        try:
            if self.config.circuit_breaker:
                yield from self.circuit_breaker.execute_stream(
                    lambda: self._execute_file_processing(file_path, processor)
                )
            else:
                yield from self._execute_file_processing(file_path, processor)
        except Exception as e:
            self._log_processing_error(e, file_path)
            raise
        finally:
            self._log_processing_completion(file_path, time.time() - start_time)

    def get_performance_stats(self) -> Dict[str, Any]:
        """Configuration, chunk totals and component statistics (read only)"""
        successful = sum(1 for m in self.performance_metrics if m.success)

        stats = {
            'session_id': self.session.session_id,
            'configuration': {
                'adaptive_chunking': self.config.adaptive_chunking,
                'initial_chunk_size': self.config.initial_chunk_size,
                'memory_management': self.config.memory_management,
                'memory_limit_mb': self.config.memory_limit_mb,
                'circuit_breaker': self.config.circuit_breaker,
                'failure_threshold': self.config.failure_threshold,
                'recovery_timeout': self.config.recovery_timeout,
                'detailed_logging': self.config.detailed_logging,
            },
            'metrics': {
                'total_chunks': len(self.performance_metrics),
                'successful_chunks': successful,
                'failed_chunks': len(self.performance_metrics) - successful,
            },
        }

        if self.chunker:
            stats['chunker'] = self.chunker.get_performance_stats()
        if self.memory_governor:
            stats['memory_manager'] = self.memory_governor.get_stats()
        if self.circuit_breaker:
            stats['circuit_breaker'] = self.circuit_breaker.get_status()

        return stats

    def get_components(self) -> Dict[str, Any]:
        """Build the components if needed and return them"""
        if self.chunker is None or self.memory_governor is None or self.circuit_breaker is None:
            self._build()

        return {
            'chunker': self.chunker,
            'memory_manager': self.memory_governor,
            'circuit_breaker': self.circuit_breaker,
        }

    def reset(self) -> 'PipelineOrchestrator':
        """Clear metrics and breaker state; components are rebuilt on next use"""
        self.performance_metrics = []

        if self.circuit_breaker:
            self.circuit_breaker.reset()

        self.chunker = None
        self.memory_governor = None
        self.circuit_breaker = None
        return self

    def _build(self) -> None:
        config = self.config

        self.chunker = AdaptiveChunkProducer(
            self.session,
            initial_size=config.initial_chunk_size,
            min_size=config.min_chunk_size,
            max_size=config.max_chunk_size,
            parser_manager=self.parser_manager,
            memory_probe=self.memory_probe,
            adaptive=config.adaptive_chunking,
        )
        self.memory_governor = MemoryGovernor(
            self.session,
            memory_limit_mb=config.memory_limit_mb,
            cleanup_cooldown=config.cleanup_cooldown,
            memory_probe=self.memory_probe,
            clock=self.clock,
            warning_percent=config.warning_threshold_percent,
            critical_percent=config.critical_threshold_percent,
        )
        self.circuit_breaker = CircuitBreaker(
            self.session,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
            half_open_max_calls=config.half_open_max_calls,
            store=self.state_store,
            clock=self.clock,
        )

    def _execute_file_processing(self, file_path: str, processor: Callable[[List[RowRecord]], T]) -> Iterator[T]:
        chunk_count = 0
        manage_memory = self.config.memory_management

        def run_chunk(chunk: List[RowRecord]) -> T:
            nonlocal chunk_count
            chunk_count += 1

            if manage_memory:
                self.memory_governor.before_chunk(chunk_count)

            failed = False
            try:
                result = processor(chunk)
                self._record_chunk_metric(chunk_count, len(chunk), True)
            except Exception:
                failed = True
                self._record_chunk_metric(chunk_count, len(chunk), False)
                raise
            finally:
                if manage_memory:
                    self.memory_governor.after_chunk(chunk_count, failed)

            if self.config.detailed_logging:
                info(
                    f"[Pipeline] Chunk {chunk_count} processed for session {self.session.session_id}",
                    record_count=len(chunk),
                    chunk_size=self.chunker.current_size,
                )
            return result

        for result in self.chunker.process_file(file_path, run_chunk):
            if manage_memory and self.config.adaptive_chunking and self.memory_governor.is_memory_high():
                self.chunker.adjust_chunk_size(ChunkOutcome.MEMORY_PRESSURE)
            yield result

    def _record_chunk_metric(self, chunk_number: int, record_count: int, success: bool) -> None:
        self.performance_metrics.append(ChunkMetric(
            chunk_number=chunk_number,
            record_count=record_count,
            success=success,
            memory_usage=self.memory_probe.current(),
            timestamp=time.time(),
        ))

        if len(self.performance_metrics) > MAX_METRICS:
            self.performance_metrics = self.performance_metrics[-METRICS_AFTER_TRIM:]

    def _get_available_memory_mb(self) -> int:
        return max(32, int(get_available_system_memory() / MIB))

    def _log_processing_start(self, file_path: str) -> None:
        info(
            f"[Pipeline] High-performance import processing started for session {self.session.session_id}",
            file_name=getattr(self.session, 'original_filename', None),
            file_path=os.path.basename(file_path),
            adaptive_chunking=self.config.adaptive_chunking,
            initial_chunk_size=self.config.initial_chunk_size,
            memory_management=self.config.memory_management,
            memory_limit_mb=self.config.memory_limit_mb,
            circuit_breaker=self.config.circuit_breaker,
            detailed_logging=self.config.detailed_logging,
        )

    def _log_processing_error(self, exc: Exception, file_path: str) -> None:
        error(
            f"[Pipeline] High-performance import processing failed for session {self.session.session_id}",
            file_path=os.path.basename(file_path),
            error=str(exc),
            error_class=type(exc).__name__,
            performance_stats=self.get_performance_stats(),
        )

    def _log_processing_completion(self, file_path: str, total_time: float) -> None:
        metrics = self.get_performance_stats()['metrics']
        total = metrics['total_chunks']

        info(
            f"[Pipeline] High-performance import processing completed for session {self.session.session_id}",
            file_path=os.path.basename(file_path),
            total_time_seconds=round(total_time, 2),
            total_chunks=total,
            successful_chunks=metrics['successful_chunks'],
            failed_chunks=metrics['failed_chunks'],
            success_rate=round(metrics['successful_chunks'] / total * 100, 2) if total > 0 else 0,
        )
