"""Failure isolation for unreliable downstream calls."""

from .circuit_breaker import (
    PRESETS,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitOpenError,
    CircuitState,
    CircuitStats,
    default_manager,
    with_circuit_breaker,
)

__all__ = [
    "PRESETS",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerManager",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    "default_manager",
    "with_circuit_breaker",
]
