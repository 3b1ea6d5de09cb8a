"""Circuit breaker for optional downstream services (external classifier).

Fails fast while the service is unhealthy so queued classification jobs fall through to the
heuristic path instead of each waiting out a full timeout.
"""
from __future__ import annotations
import time
import threading
from enum import Enum
from typing import Callable, TypeVar, Optional
from dataclasses import dataclass
from prometheus_client import Counter, Histogram, Gauge

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    half_open_probes: int = 3


CIRCUIT_BREAKER_STATE = Gauge('circuit_breaker_state_info', 'Circuit breaker current state', ['service', 'state'])
CIRCUIT_BREAKER_CALLS = Counter('circuit_breaker_calls_total', 'Total calls through circuit breaker', ['service', 'result'])
CIRCUIT_BREAKER_DURATION = Histogram('circuit_breaker_call_duration_seconds', 'Call duration', ['service'])


class CircuitBreakerOpenError(Exception):
    pass


class CircuitBreaker:
    def __init__(self, service_name: str, config: Optional[CircuitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.service_name = service_name
        self.config = config or CircuitConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.half_open_calls = 0
        self._clock = clock
        self._lock = threading.RLock()

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Execute func with circuit breaker protection.

        The lock only guards state transitions; the call itself runs unlocked so concurrent
        jobs are not serialized behind a slow request.
        """
        with self._lock:
            if not self._should_attempt_call():
                CIRCUIT_BREAKER_CALLS.labels(service=self.service_name, result='rejected').inc()
                raise CircuitBreakerOpenError(f"Circuit breaker open for {self.service_name}")
        start_time = self._clock()
        try:
            result = func(*args, **kwargs)
        except Exception:
            with self._lock:
                self._on_failure()
            CIRCUIT_BREAKER_CALLS.labels(service=self.service_name, result='failure').inc()
            raise
        finally:
            CIRCUIT_BREAKER_DURATION.labels(service=self.service_name).observe(self._clock() - start_time)
        with self._lock:
            self._on_success()
        CIRCUIT_BREAKER_CALLS.labels(service=self.service_name, result='success').inc()
        return result

    def _should_attempt_call(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                self.half_open_calls = 0
                self._update_state_metric()
                return True
            return False
        return self.half_open_calls < self.config.half_open_probes

    def _should_attempt_reset(self) -> bool:
        return (self.last_failure_time is not None and
                self._clock() - self.last_failure_time >= self.config.recovery_timeout)

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.half_open_calls += 1
            if self.half_open_calls >= self.config.half_open_probes:
                self._reset()
        elif self.state == CircuitState.CLOSED:
            self.failure_count = max(0, self.failure_count - 1)  # gradual recovery

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN:
            self._trip()
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._trip()

    def _trip(self):
        self.state = CircuitState.OPEN
        self._update_state_metric()

    def _reset(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_calls = 0
        self._update_state_metric()

    def _update_state_metric(self):
        for state in CircuitState:
            CIRCUIT_BREAKER_STATE.labels(service=self.service_name, state=state.value).set(0)
        CIRCUIT_BREAKER_STATE.labels(service=self.service_name, state=self.state.value).set(1)


_breakers: dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(service_name: str, config: Optional[CircuitConfig] = None) -> CircuitBreaker:
    """Get or create circuit breaker for service."""
    with _registry_lock:
        if service_name not in _breakers:
            _breakers[service_name] = CircuitBreaker(service_name, config)
        return _breakers[service_name]
