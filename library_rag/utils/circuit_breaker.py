"""Circuit breaker for the search engine, embedding and language-model services.

Once a collaborator keeps failing, calls are rejected immediately until the
recovery timeout elapses, so each request falls back without waiting on a
dead dependency.
"""

import asyncio
import functools
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from ..core.exceptions import CollaboratorUnavailable

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    total_calls: int = 0
    failed_calls: int = 0
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None


class CircuitOpenError(CollaboratorUnavailable):
    """Raised when circuit breaker is open and rejecting calls."""


class CircuitBreaker:
    """
    Args:
        name: Collaborator name reported in errors and logs
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait before a trial call
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: type = CollaboratorUnavailable,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._lock = asyncio.Lock()

    def _change_state(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        logger.info(
            "circuit_state_changed",
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )

    def allows_calls(self) -> bool:
        """Cheap check: false only while open and still inside the recovery window."""
        if self.state != CircuitState.OPEN or self.stats.last_failure_time is None:
            return True
        return time.time() - self.stats.last_failure_time >= self.recovery_timeout

    async def _attempt_reset(self) -> bool:
        if self.stats.last_failure_time is None:
            return True
        if time.time() - self.stats.last_failure_time < self.recovery_timeout:
            return False
        async with self._lock:
            if self.state == CircuitState.OPEN:
                self._change_state(CircuitState.HALF_OPEN)
        return True

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN and not await self._attempt_reset():
            raise CircuitOpenError(self.name, f"circuit '{self.name}' is open")

        self.stats.total_calls += 1
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self.stats.failed_calls += 1
            self.stats.consecutive_failures += 1
            self.stats.last_failure_time = time.time()
            if self.state == CircuitState.HALF_OPEN or (
                self.stats.consecutive_failures >= self.failure_threshold
                and self.state == CircuitState.CLOSED
            ):
                self._change_state(CircuitState.OPEN)
            raise

        self.stats.consecutive_failures = 0
        self.stats.last_success_time = time.time()
        if self.state == CircuitState.HALF_OPEN:
            self._change_state(CircuitState.CLOSED)
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_calls": self.stats.total_calls,
            "failed_calls": self.stats.failed_calls,
            "consecutive_failures": self.stats.consecutive_failures,
            "last_failure": datetime.fromtimestamp(self.stats.last_failure_time).isoformat()
            if self.stats.last_failure_time else None,
        }

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()


class CircuitBreakerManager:
    """Manage one breaker per collaborator."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_or_create(self, name: str, **kwargs) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name=name, **kwargs)
        return self._breakers[name]

    def get_all_stats(self) -> Dict[str, Any]:
        return {name: b.get_stats() for name, b in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


# Global manager instance
circuit_manager = CircuitBreakerManager()


def with_circuit_breaker(name: str, failure_threshold: int = 5, recovery_timeout: float = 30.0):
    """
    Decorator to wrap async collaborator calls with circuit breaker protection.

    Usage:
        @with_circuit_breaker("search_engine", failure_threshold=3)
        async def search(...):
            ...
    """
    def decorator(func):
        breaker = circuit_manager.get_or_create(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
        )

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await breaker.call(func, *args, **kwargs)

        wrapper.circuit_breaker = breaker
        return wrapper
    return decorator
