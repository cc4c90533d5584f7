"""
Reliability Utilities.

Circuit Breaker guarding calls to external collaborators (payment gateway).
"""

import time
import logging
from typing import Callable, Any

from concierge_backend.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass

class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state == "HALF_OPEN":
                self.reset_state()
            return result
        except Exception:
            self.record_failure()
            raise

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold and self.state != "OPEN":
            logger.warning("Circuit '%s' opened after %d failures", self.name, self.failures)
            self.state = "OPEN"
        elif self.state == "HALF_OPEN":
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"

# Global instance for payment gateway calls
payment_circuit_breaker = CircuitBreaker(
    name="payment",
    failure_threshold=settings.payment_failure_threshold,
    reset_timeout=settings.payment_reset_timeout_seconds,
)
