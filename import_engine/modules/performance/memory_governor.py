"""
Memory governor for import processing.
Monitors process memory against a budget, runs graduated cleanups and
watches snapshot history for leak-like growth.
"""
import gc
import importlib
import linecache
import sys
import time
from typing import Dict, Any, List, Optional, Callable

from import_engine.modules.logger import info, warning, error, debug

from .models import MemoryLevel, MemorySnapshot, CleanupRecord, CleanupResult, MemoryStatus
from .memory_probe import ProcessMemoryProbe, get_process_memory_limit, format_bytes

MIB = 1024 * 1024

MAX_SNAPSHOTS = 100
SNAPSHOTS_AFTER_TRIM = 50
MAX_CLEANUP_HISTORY = 20
CLEANUP_HISTORY_AFTER_TRIM = 10

LEAK_CHECK_INTERVAL = 5
LEAK_WINDOW = 10
LEAK_GROWTH_THRESHOLD_MB = 2.0
PROACTIVE_CLEANUP_INTERVAL = 10


class MemoryGovernor:
    """Keeps process memory of one import session under a budget"""

    def __init__(
        self,
        session,
        memory_limit_mb: Optional[int] = None,
        cleanup_cooldown: float = 5.0,
        memory_probe=None,
        clock: Callable[[], float] = time.time,
        warning_percent: float = 0.7,
        critical_percent: float = 0.85
    ):
        """
        Initialize memory governor.

        Args:
            session: Import session receiving leak warnings
            memory_limit_mb: Memory budget in MB (default: OS-derived limit)
            cleanup_cooldown: Minimum seconds between two cleanups (default: 5.0)
            memory_probe: Object exposing current() and peak() in bytes
            clock: Time source in seconds
            warning_percent: Fraction of the limit classified as warning (default: 0.7)
            critical_percent: Fraction of the limit classified as critical (default: 0.85)
        """
        self.session = session
        self.memory_probe = memory_probe or ProcessMemoryProbe()
        self.clock = clock
        self.cleanup_cooldown = cleanup_cooldown
        self.memory_limit_bytes = (
            memory_limit_mb * MIB if memory_limit_mb else get_process_memory_limit()
        )

        self.memory_snapshots: List[MemorySnapshot] = []
        self.cleanup_history: List[CleanupRecord] = []
        self.last_cleanup_time: Optional[float] = None
        self._cache_clearers: List[Callable[[], None]] = []

        self.set_thresholds(warning_percent, critical_percent)
        self.take_snapshot('initialization')

    @classmethod
    def for_session(cls, session, memory_limit_mb: Optional[int] = None, **kwargs) -> 'MemoryGovernor':
        return cls(session, memory_limit_mb=memory_limit_mb, **kwargs)

    def set_thresholds(self, warning_percent: float = 0.7, critical_percent: float = 0.85) -> 'MemoryGovernor':
        """
        Set warning and critical thresholds as fractions of the memory limit.

        Raises:
            ValueError: If 0 < warning < critical <= 1 does not hold
        """
        if not 0 < warning_percent < critical_percent <= 1:
            raise ValueError(
                f"Invalid memory thresholds: warning={warning_percent}, critical={critical_percent}"
            )
        self.warning_threshold_bytes = int(self.memory_limit_bytes * warning_percent)
        self.critical_threshold_bytes = int(self.memory_limit_bytes * critical_percent)
        return self

    def register_cache_clearer(self, clearer: Callable[[], None]) -> None:
        """Register a caller-owned cache to be cleared on aggressive cleanups"""
        self._cache_clearers.append(clearer)

    def monitor(self) -> MemoryStatus:
        """Check memory usage and clean up when above the warning threshold"""
        status = self.status()

        debug(
            f"[MemoryGovernor] Memory status for session {self.session.session_id}",
            current_usage=format_bytes(status.current_usage),
            peak_usage=format_bytes(self.memory_probe.peak()),
            memory_limit=format_bytes(self.memory_limit_bytes),
            level=status.level.value,
            usage_percentage=status.usage_percentage,
        )

        if status.needs_cleanup:
            self.perform_cleanup(status.level.value)

        return status

    def status(self) -> MemoryStatus:
        """Classify current usage without triggering any cleanup"""
        return self._classify(self.memory_probe.current())

    def is_memory_high(self) -> bool:
        return self.memory_probe.current() >= self.warning_threshold_bytes

    def before_chunk(self, chunk_number: int) -> None:
        """Snapshot before a chunk; proactive cleanup every 10 chunks or when memory is high"""
        self.take_snapshot(f"before_chunk_{chunk_number}")

        if chunk_number % PROACTIVE_CLEANUP_INTERVAL == 0 or self.is_memory_high():
            self.perform_cleanup('proactive')

    def after_chunk(self, chunk_number: int, failed: bool = False) -> bool:
        """
        Snapshot after a chunk, recover after failures and check for leaks.

        Returns:
            True if a potential memory leak was reported
        """
        self.take_snapshot(f"after_chunk_{chunk_number}")

        if failed:
            self.perform_cleanup('failure_recovery')

        return self.detect_memory_leaks(chunk_number)

    def perform_cleanup(self, level: str) -> CleanupResult:
        """
        Perform a cleanup matching the severity level.

        Levels 'warning' and 'proactive' run a light cleanup, 'critical' and
        'failure_recovery' an aggressive one, 'emergency' the emergency cleanup.
        Requests inside the cooldown window are skipped.
        """
        now = self.clock()
        if self.last_cleanup_time is not None and now - self.last_cleanup_time < self.cleanup_cooldown:
            debug(f"[MemoryGovernor] Cleanup '{level}' skipped (cooldown)")
            return CleanupResult(level=level, skipped=True, reason='cooldown')

        if level == 'emergency':
            outcome = self.emergency_cleanup()
            self.last_cleanup_time = now
            return CleanupResult(
                level=level,
                memory_before=outcome['memory_before'],
                memory_after=outcome['memory_after'],
                memory_freed=outcome['memory_freed'],
            )

        memory_before = self.memory_probe.current()

        if level in ('warning', 'proactive'):
            self._light_cleanup()
        elif level in ('critical', 'failure_recovery'):
            self._aggressive_cleanup()
        else:
            self._force_garbage_collection()

        memory_after = self.memory_probe.current()
        memory_freed = memory_before - memory_after

        self._record_cleanup(level, memory_before, memory_after)
        self.last_cleanup_time = now

        info(
            f"[MemoryGovernor] Import memory cleanup completed for session {self.session.session_id}",
            level=level,
            memory_freed=format_bytes(memory_freed),
            memory_after=format_bytes(memory_after),
        )

        return CleanupResult(
            level=level,
            memory_before=memory_before,
            memory_after=memory_after,
            memory_freed=memory_freed,
        )

    def emergency_cleanup(self) -> Dict[str, Any]:
        """Run every cleanup action regardless of cooldown"""
        memory_before = self.memory_probe.current()

        warning(
            f"[MemoryGovernor] Emergency memory cleanup initiated for session {self.session.session_id}",
            memory_before=format_bytes(memory_before),
            memory_limit=format_bytes(self.memory_limit_bytes),
        )

        self._clear_internal_caches()
        self._force_garbage_collection()
        self._clear_model_caches()
        self._clear_process_caches()
        for _ in range(3):
            gc.collect()

        memory_after = self.memory_probe.current()
        memory_freed = memory_before - memory_after

        result = {
            'memory_before': memory_before,
            'memory_after': memory_after,
            'memory_freed': memory_freed,
            'success': memory_freed > 0,
        }
        self._record_cleanup('emergency', memory_before, memory_after)

        warning(
            f"[MemoryGovernor] Emergency cleanup completed for session {self.session.session_id}",
            memory_freed=format_bytes(memory_freed),
            memory_after=format_bytes(memory_after),
        )
        if not result['success']:
            self.session.add_warning(
                f"Emergency memory cleanup freed no memory. Current usage: {format_bytes(memory_after)}."
            )

        return result

    def detect_memory_leaks(self, chunk_number: int) -> bool:
        """Warn when snapshots grow by more than 2MB per step on average"""
        if chunk_number % LEAK_CHECK_INTERVAL != 0 or len(self.memory_snapshots) < LEAK_WINDOW:
            return False

        recent = self.memory_snapshots[-LEAK_WINDOW:]
        growth = [
            recent[i].memory_bytes - recent[i - 1].memory_bytes
            for i in range(1, len(recent))
        ]
        growth_mb = (sum(growth) / len(growth)) / MIB

        if growth_mb <= LEAK_GROWTH_THRESHOLD_MB:
            return False

        warning(
            f"[MemoryGovernor] Potential memory leak detected for session {self.session.session_id}",
            chunk_number=chunk_number,
            average_growth_mb=round(growth_mb, 2),
            current_usage=format_bytes(recent[-1].memory_bytes),
        )
        self.session.add_warning(
            f"Potential memory leak detected. Average memory growth: {round(growth_mb, 2)}MB per chunk. "
            "Consider reducing chunk size."
        )
        return True

    def take_snapshot(self, label: str) -> MemorySnapshot:
        snapshot = MemorySnapshot(
            label=label,
            timestamp=self.clock(),
            memory_bytes=self.memory_probe.current(),
            peak_memory_bytes=self.memory_probe.peak(),
        )
        self.memory_snapshots.append(snapshot)

        if len(self.memory_snapshots) > MAX_SNAPSHOTS:
            self.memory_snapshots = self.memory_snapshots[-SNAPSHOTS_AFTER_TRIM:]

        return snapshot

    def get_stats(self) -> Dict[str, Any]:
        """Memory statistics based on recorded snapshots (no new readings)"""
        last_usage = self.memory_snapshots[-1].memory_bytes if self.memory_snapshots else 0
        status = self._classify(last_usage)

        return {
            'session_id': self.session.session_id,
            'current_status': {
                'current_usage': status.current_usage,
                'memory_limit': status.memory_limit,
                'usage_percentage': status.usage_percentage,
                'level': status.level.value,
                'needs_cleanup': status.needs_cleanup,
                'available_memory': status.available_memory,
            },
            'memory_limit': format_bytes(self.memory_limit_bytes),
            'warning_threshold': format_bytes(self.warning_threshold_bytes),
            'critical_threshold': format_bytes(self.critical_threshold_bytes),
            'snapshots_count': len(self.memory_snapshots),
            'cleanups_performed': len(self.cleanup_history),
            'recent_snapshots': [
                {'label': s.label, 'memory': s.memory_bytes, 'peak_memory': s.peak_memory_bytes}
                for s in self.memory_snapshots[-5:]
            ],
            'recent_cleanups': [
                {'level': c.level, 'memory_freed': c.memory_freed}
                for c in self.cleanup_history[-3:]
            ],
        }

    def _classify(self, current_usage: int) -> MemoryStatus:
        if current_usage >= self.critical_threshold_bytes:
            level = MemoryLevel.CRITICAL
        elif current_usage >= self.warning_threshold_bytes:
            level = MemoryLevel.WARNING
        else:
            level = MemoryLevel.NORMAL

        return MemoryStatus(
            current_usage=current_usage,
            memory_limit=self.memory_limit_bytes,
            usage_percentage=round(current_usage / self.memory_limit_bytes * 100, 2),
            level=level,
            needs_cleanup=level != MemoryLevel.NORMAL,
            available_memory=self.memory_limit_bytes - current_usage,
        )

    def _light_cleanup(self) -> None:
        self._force_garbage_collection()

        if len(self.memory_snapshots) > 50:
            self.memory_snapshots = self.memory_snapshots[-25:]

    def _aggressive_cleanup(self) -> None:
        self._light_cleanup()
        self._clear_internal_caches()
        self._clear_model_caches()

        for _ in range(3):
            gc.collect()

    def _clear_internal_caches(self) -> None:
        self.memory_snapshots = self.memory_snapshots[-10:]
        self.cleanup_history = self.cleanup_history[-10:]

    def _clear_model_caches(self) -> None:
        for clearer in self._cache_clearers:
            try:
                clearer()
            except Exception as e:
                error(f"[MemoryGovernor] Cache clearer {clearer!r} failed: {type(e).__name__}: {e}")

    def _clear_process_caches(self) -> None:
        sys._clear_type_cache()
        linecache.clearcache()
        importlib.invalidate_caches()

    def _force_garbage_collection(self) -> int:
        collected = gc.collect()
        if collected > 0:
            debug(
                f"[MemoryGovernor] Garbage collection freed objects for session {self.session.session_id}",
                objects_collected=collected,
            )
        return collected

    def _record_cleanup(self, level: str, memory_before: int, memory_after: int) -> None:
        self.cleanup_history.append(CleanupRecord(
            level=level,
            memory_before=memory_before,
            memory_after=memory_after,
            memory_freed=memory_before - memory_after,
            timestamp=self.clock(),
        ))

        if len(self.cleanup_history) > MAX_CLEANUP_HISTORY:
            self.cleanup_history = self.cleanup_history[-CLEANUP_HISTORY_AFTER_TRIM:]
