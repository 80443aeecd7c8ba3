"""
Process memory readings used by the chunk producer and the memory governor.
"""
import os
from typing import Optional

import psutil

try:
    import resource
except ImportError:  # Windows has no resource module; the fixed default limit applies
    resource = None

GOVERNOR_DEFAULT_LIMIT = 512 * 1024 * 1024
CHUNKER_DEFAULT_LIMIT = 1024 * 1024 * 1024


class ProcessMemoryProbe:
    """Reads resident memory of the current process and tracks its high-water mark"""

    def __init__(self, pid: Optional[int] = None):
        self._process = psutil.Process(pid)
        self._peak = 0

    def current(self) -> int:
        """Current resident set size in bytes"""
        usage = self._process.memory_info().rss
        if usage > self._peak:
            self._peak = usage
        return usage

    def peak(self) -> int:
        """Highest resident set size observed by this probe"""
        return max(self._peak, self.current())


def get_process_memory_limit(default: int = GOVERNOR_DEFAULT_LIMIT) -> int:
    """
    Get the memory limit imposed on this process.

    Args:
        default: Limit used when the OS reports no finite limit

    Returns:
        Limit in bytes
    """
    if resource is not None:
        soft, _hard = resource.getrlimit(resource.RLIMIT_AS)
        if soft not in (resource.RLIM_INFINITY, -1) and soft > 0:
            return int(soft)
    return default


def get_available_system_memory() -> int:
    """Memory the OS can hand out right now, in bytes"""
    return int(psutil.virtual_memory().available)


def get_processor_count() -> int:
    return os.cpu_count() or 2


def format_bytes(size: float) -> str:
    """Format bytes for human reading"""
    units = ['B', 'KB', 'MB', 'GB']
    index = 0
    negative = size < 0
    size = abs(size)
    while size > 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{'-' if negative else ''}{round(size, 2)} {units[index]}"
