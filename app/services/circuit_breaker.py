"""
NameCard Backend - Circuit Breaker
===================================

What:  Fails fast when an external provider (Textract, Perplexity) keeps failing.
How:   Consecutive failure counter with three states:

    CLOSED    normal operation; failures increment the counter
              → OPEN once failure_count >= failure_threshold
    OPEN      every call raises CircuitBreakerOpenError immediately
              → HALF_OPEN once recovery_timeout seconds have passed
    HALF_OPEN one trial call goes through
              → CLOSED on success, back to OPEN on failure

Not shared between worker processes; each process protects its own calls.
"""

import logging
import time
from typing import Any, Dict, Optional

from app.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, name: str = "external", failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            CircuitBreakerOpenError: OPEN and the recovery timeout has not elapsed
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker [%s] transitioning to HALF_OPEN after %.1fs",
                    self.name,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining, service=self.name)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker [%s] transitioning to CLOSED (service recovered)", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker [%s] returning to OPEN (trial call failed)", self.name)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold and self.state != self.OPEN:
            logger.warning(
                "Circuit breaker [%s] OPENING after %d consecutive failures",
                self.name,
                self.failure_count,
            )
            self.state = self.OPEN

    def snapshot(self) -> Dict[str, Any]:
        """State for health reporting."""
        return {
            "state": self.state,
            "failureCount": self.failure_count,
            "failureThreshold": self.failure_threshold,
            "recoveryTimeout": self.recovery_timeout,
        }
