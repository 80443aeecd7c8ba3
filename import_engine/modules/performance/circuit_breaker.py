"""
Circuit breaker for import processing.
Stops repeated failures in one import session from cascading by failing fast
while the session recovers.

States:
- CLOSED: normal operation, calls pass through
- OPEN: failure threshold reached, calls fail fast until the recovery timeout
- HALF_OPEN: probe calls pass through to test recovery
"""
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional, Callable, Iterable, Iterator, Union

from import_engine.modules.logger import info, warning, error, debug

from .exceptions import CircuitBreakerOpenError
from .models import CircuitState, CircuitStatus
from .state_store import CircuitStateStore, InMemoryCircuitStateStore


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior"""
    failure_threshold: int = 5
    recovery_timeout: float = 30
    half_open_max_calls: int = 3

    @classmethod
    def aggressive(cls) -> 'CircuitBreakerConfig':
        """Preset that opens sooner and retries sooner"""
        return cls(failure_threshold=3, recovery_timeout=20)


class CircuitBreaker:
    """Three-state circuit breaker scoped to one import session"""

    def __init__(
        self,
        session,
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        half_open_max_calls: int = 3,
        store: Optional[CircuitStateStore] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize circuit breaker.

        Args:
            session: Import session the breaker protects
            failure_threshold: Failures in CLOSED state before opening (default: 5)
            recovery_timeout: Seconds to stay OPEN before probing (default: 30)
            half_open_max_calls: Successful probes needed to close again (default: 3)
            store: State store shared by breakers (default: private in-memory store)
            clock: Time source in seconds
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be at least 1, got {failure_threshold}")
        if recovery_timeout < 0:
            raise ValueError(f"recovery_timeout must not be negative, got {recovery_timeout}")
        if half_open_max_calls < 1:
            raise ValueError(f"half_open_max_calls must be at least 1, got {half_open_max_calls}")

        self.session = session
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.clock = clock
        self.store = store or InMemoryCircuitStateStore(clock=clock)
        self.state_key = f"circuit_breaker:import:{session.session_id}"

    @classmethod
    def for_session(
        cls,
        session,
        config: Optional[CircuitBreakerConfig] = None,
        store: Optional[CircuitStateStore] = None,
        clock: Callable[[], float] = time.time
    ) -> 'CircuitBreaker':
        config = config or CircuitBreakerConfig()
        return cls(
            session,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
            half_open_max_calls=config.half_open_max_calls,
            store=store,
            clock=clock,
        )

    @property
    def state(self) -> CircuitState:
        return self._get_state()

    def execute(self, operation: Callable[[], Any], fallback: Optional[Callable[[], Any]] = None) -> Any:
        """
        Execute an operation with circuit breaker protection.

        Args:
            operation: Zero-argument callable to protect
            fallback: Optional callable whose result is returned while the circuit is open

        Returns:
            Result of operation (or fallback)

        Raises:
            CircuitBreakerOpenError: If the circuit is open and no fallback is given
        """
        mode = self._acquire()
        if mode == CircuitStatus.OPEN:
            self._reject()
            if fallback is not None:
                return fallback()
            raise self._open_error()

        try:
            result = operation()
        except Exception as e:
            self._record_failure(mode, e)
            raise

        self._record_success(mode)
        return result

    def execute_stream(
        self,
        operation: Callable[[], Iterable[Any]],
        fallback: Optional[Callable[[], Iterable[Any]]] = None
    ) -> Iterator[Any]:
        """
        Protect a streaming operation as one call.

        The gate is evaluated when iteration starts. Success is recorded once the
        stream is exhausted; an exception raised while iterating counts as one
        failure. Closing the stream early records nothing.
        """
        mode = self._acquire()
        if mode == CircuitStatus.OPEN:
            self._reject()
            if fallback is not None:
                yield from fallback()
                return
            raise self._open_error()

        try:
            yield from operation()
        except Exception as e:
            self._record_failure(mode, e)
            raise

        self._record_success(mode)

    def reset(self) -> None:
        """Force the circuit closed with all counters cleared"""
        self.store.delete(self.state_key)

        info(f"[CircuitBreaker] Import circuit breaker manually reset for session {self.session.session_id}")
        self.session.add_warning('Import circuit breaker manually reset')

    def force_state(self, status: Union[str, CircuitStatus]) -> None:
        """
        Force a transition to the given state.

        Raises:
            ValueError: If status is not a known circuit state
        """
        try:
            target = CircuitStatus(status)
        except ValueError:
            raise ValueError(f"Invalid circuit breaker state: {status}") from None

        if target == CircuitStatus.CLOSED:
            self._transition_to_closed()
        elif target == CircuitStatus.OPEN:
            self._transition_to_open(self._get_state())
        else:
            self._transition_to_half_open(self._get_state())

    def get_status(self) -> Dict[str, Any]:
        """Current state for monitoring"""
        state = self._get_state()

        return {
            'session_id': self.session.session_id,
            'status': state.status.value,
            'failure_count': state.failure_count,
            'failure_threshold': self.failure_threshold,
            'half_open_success_count': state.half_open_success_count,
            'half_open_max_calls': self.half_open_max_calls,
            'last_failure_time': state.last_failure_at,
            'last_failure_message': state.last_failure_message,
            'last_success_time': state.last_success_at,
            'recovery_timeout': self.recovery_timeout,
            'is_healthy': state.status == CircuitStatus.CLOSED,
            'time_until_retry': self._time_until_retry(state),
        }

    def _acquire(self) -> CircuitStatus:
        """Decide how the next call runs: CLOSED, HALF_OPEN (probe) or OPEN (rejected)"""
        state = self._get_state()

        if state.status == CircuitStatus.CLOSED:
            return CircuitStatus.CLOSED

        if state.status == CircuitStatus.OPEN:
            if self._should_attempt_reset(state):
                self._transition_to_half_open(state)
                return CircuitStatus.HALF_OPEN
            return CircuitStatus.OPEN

        return CircuitStatus.HALF_OPEN

    def _reject(self) -> None:
        retry_after = self._time_until_retry(self._get_state()) or 0
        warning(
            f"[CircuitBreaker] Import circuit breaker open - failing fast for session {self.session.session_id}",
            time_until_retry=retry_after,
        )
        self.session.add_warning(
            'Import circuit breaker activated - processing paused for recovery. '
            f"Next attempt allowed in {retry_after:.0f} seconds."
        )

    def _open_error(self) -> CircuitBreakerOpenError:
        return CircuitBreakerOpenError(
            self.session.session_id,
            retry_after=self._time_until_retry(self._get_state()),
        )

    def _record_success(self, mode: CircuitStatus) -> None:
        if mode == CircuitStatus.HALF_OPEN:
            self._on_half_open_success()
        else:
            self._on_success()

    def _record_failure(self, mode: CircuitStatus, exc: Exception) -> None:
        if mode == CircuitStatus.HALF_OPEN:
            self._on_half_open_failure(exc)
        else:
            self._on_failure(exc)

    def _on_success(self) -> None:
        state = self._get_state()
        state.failure_count = 0
        state.last_success_at = self.clock()
        self._set_state(state)

        debug(
            f"[CircuitBreaker] Success recorded for session {self.session.session_id}",
            state=state.status.value,
        )

    def _on_failure(self, exc: Exception) -> None:
        state = self._get_state()
        state.failure_count += 1
        state.last_failure_at = self.clock()
        state.last_failure_message = str(exc)

        warning(
            f"[CircuitBreaker] Failure recorded for session {self.session.session_id}",
            error=str(exc),
            failure_count=state.failure_count,
            threshold=self.failure_threshold,
        )

        if state.failure_count >= self.failure_threshold:
            self._transition_to_open(state)
        else:
            self._set_state(state)

    def _on_half_open_success(self) -> None:
        state = self._get_state()
        state.half_open_success_count += 1

        if state.half_open_success_count >= self.half_open_max_calls:
            self._transition_to_closed()

            info(
                f"[CircuitBreaker] Import circuit breaker recovered for session {self.session.session_id}",
                successful_tests=state.half_open_success_count,
            )
            self.session.add_warning('Import circuit breaker recovered - normal processing resumed')
        else:
            self._set_state(state)

    def _on_half_open_failure(self, exc: Exception) -> None:
        warning(
            f"[CircuitBreaker] Half-open probe failed for session {self.session.session_id}",
            error=str(exc),
        )

        state = self._get_state()
        state.last_failure_at = self.clock()
        state.last_failure_message = str(exc)
        self._transition_to_open(state)

    def _transition_to_open(self, state: CircuitState) -> None:
        state.status = CircuitStatus.OPEN
        state.opened_at = self.clock()
        self._set_state(state)

        error(
            f"[CircuitBreaker] Import circuit breaker opened for session {self.session.session_id}",
            failure_count=state.failure_count,
            threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
        )
        self.session.add_error(
            "Import processing paused due to repeated failures. "
            f"System will automatically retry in {self.recovery_timeout} seconds."
        )

    def _transition_to_half_open(self, state: CircuitState) -> None:
        state.status = CircuitStatus.HALF_OPEN
        state.half_open_at = self.clock()
        state.half_open_success_count = 0
        self._set_state(state)

        info(
            f"[CircuitBreaker] Import circuit breaker testing recovery for session {self.session.session_id}",
            max_test_calls=self.half_open_max_calls,
        )
        self.session.add_warning('Import processing testing recovery - limited operations allowed')

    def _transition_to_closed(self) -> None:
        self._set_state(CircuitState(status=CircuitStatus.CLOSED, last_success_at=self.clock()))

        info(f"[CircuitBreaker] Import circuit breaker closed for session {self.session.session_id}")

    def _should_attempt_reset(self, state: CircuitState) -> bool:
        if state.opened_at is None:
            return True
        return self.clock() - state.opened_at >= self.recovery_timeout

    def _time_until_retry(self, state: CircuitState) -> Optional[float]:
        if state.status != CircuitStatus.OPEN:
            return None
        if state.opened_at is None:
            return 0
        return max(0, self.recovery_timeout - (self.clock() - state.opened_at))

    def _get_state(self) -> CircuitState:
        return self.store.get(self.state_key) or CircuitState()

    def _set_state(self, state: CircuitState) -> None:
        # State lives for twice the recovery timeout
        self.store.put(self.state_key, state, self.recovery_timeout * 2)
