"""Declarative retry/backoff policy shared by the service gateways."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


def _never(exc: BaseException) -> bool:
    return False


@dataclass
class RetryPolicy:
    """Retry a call up to ``retries`` extra times while ``retry_on`` says so.

    The wrapped function receives the zero-based attempt number, which lets
    callers vary the request per attempt (e.g. a fallback voice on retry).
    """

    retries: int = 3
    backoff: float = 2.0
    retry_on: Callable[[BaseException], bool] = _never
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def call(self, fn: Callable[[int], T]) -> T:
        attempt = 0
        while True:
            try:
                return fn(attempt)
            except Exception as e:
                if attempt >= self.retries or not self.retry_on(e):
                    raise
                log.debug("Attempt %d failed (%s); retrying in %.1fs", attempt + 1, e, self.backoff)
                attempt += 1
                if self.backoff > 0:
                    self.sleep(self.backoff)
