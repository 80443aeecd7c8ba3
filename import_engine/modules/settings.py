"""
Environment-driven settings for the import engine.
Values are read from IMPORT_* environment variables (a .env file is loaded first).
"""
import os
from dataclasses import dataclass
from typing import Optional

import dotenv

from import_engine.modules.logger import warning

dotenv.load_dotenv()


@dataclass
class Settings:
    """Defaults for every recognised pipeline option"""
    min_chunk_size: int = 5
    max_chunk_size: int = 200
    adaptive_chunking: bool = True
    initial_chunk_size: Optional[int] = None
    memory_management: bool = True
    memory_limit_mb: Optional[int] = None
    cleanup_cooldown: float = 5.0
    warning_threshold_percent: float = 0.7
    critical_threshold_percent: float = 0.85
    circuit_breaker: bool = True
    failure_threshold: int = 5
    recovery_timeout: int = 30
    half_open_max_calls: int = 3
    state_store: str = 'memory'
    redis_url: str = 'redis://localhost:6379/0'


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        warning(f"[Settings] Invalid integer for {name}: {raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        warning(f"[Settings] Invalid number for {name}: {raw!r}, using default {default}")
        return default


def get_pipeline_settings() -> Settings:
    """
    Build settings from environment variables.

    Returns:
        Settings with environment overrides applied
    """
    defaults = Settings()
    return Settings(
        min_chunk_size=_env_int('IMPORT_MIN_CHUNK_SIZE', defaults.min_chunk_size),
        max_chunk_size=_env_int('IMPORT_MAX_CHUNK_SIZE', defaults.max_chunk_size),
        adaptive_chunking=_env_bool('IMPORT_ADAPTIVE_CHUNKING', defaults.adaptive_chunking),
        initial_chunk_size=_env_int('IMPORT_INITIAL_CHUNK_SIZE', defaults.initial_chunk_size),
        memory_management=_env_bool('IMPORT_MEMORY_MANAGEMENT', defaults.memory_management),
        memory_limit_mb=_env_int('IMPORT_MEMORY_LIMIT_MB', defaults.memory_limit_mb),
        cleanup_cooldown=_env_float('IMPORT_CLEANUP_COOLDOWN', defaults.cleanup_cooldown),
        warning_threshold_percent=_env_float('IMPORT_MEMORY_WARNING_PERCENT', defaults.warning_threshold_percent),
        critical_threshold_percent=_env_float('IMPORT_MEMORY_CRITICAL_PERCENT', defaults.critical_threshold_percent),
        circuit_breaker=_env_bool('IMPORT_CIRCUIT_BREAKER', defaults.circuit_breaker),
        failure_threshold=_env_int('IMPORT_FAILURE_THRESHOLD', defaults.failure_threshold),
        recovery_timeout=_env_int('IMPORT_RECOVERY_TIMEOUT', defaults.recovery_timeout),
        half_open_max_calls=_env_int('IMPORT_HALF_OPEN_MAX_CALLS', defaults.half_open_max_calls),
        state_store=(os.getenv('IMPORT_STATE_STORE') or defaults.state_store).strip().lower(),
        redis_url=os.getenv('IMPORT_REDIS_URL') or defaults.redis_url,
    )
