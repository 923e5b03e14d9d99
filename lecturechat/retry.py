"""Retry policy applied uniformly to every external call (tenacity-based)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from lecturechat.errors import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a fixed attempt cap.

    The delay before retry *n* (1-based) is ``base_delay * multiplier ** (n - 1)``
    plus up to ``jitter`` seconds of random noise. Only exceptions listed in
    ``retry_on`` are retried; anything else propagates immediately.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.0
    retry_on: tuple[type[BaseException], ...] = (TransientServiceError,)

    @classmethod
    def from_settings(cls, settings: object) -> RetryPolicy:
        return cls(
            max_attempts=getattr(settings, "retry_max_attempts", 4),
            base_delay=getattr(settings, "retry_base_delay", 1.0),
            multiplier=getattr(settings, "retry_multiplier", 2.0),
            jitter=getattr(settings, "retry_jitter", 0.0),
        )

    def wait_strategy(self) -> wait_base:
        wait: wait_base = wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier)
        if self.jitter > 0:
            wait = wait + wait_random(0, self.jitter)
        return wait

    def retrying(self, sleep: Callable[[float], None] = time.sleep) -> Retrying:
        """Build a tenacity ``Retrying`` controller for one call site."""
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait_strategy(),
            retry=retry_if_exception_type(self.retry_on),
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(
        self,
        fn: Callable[..., T],
        *args: object,
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: object,
    ) -> T:
        """Invoke *fn* under this policy, re-raising the last error on exhaustion."""
        return self.retrying(sleep)(fn, *args, **kwargs)


NO_RETRY = RetryPolicy(max_attempts=1)
