"""Bounded exponential back-off for calls to the generative backend.

Only transient capacity signals are retried. Anything else is re-raised on
the first failure, unchanged. Wrapped operations must be free of side effects
when they fail; every call we wrap is a plain request to a remote model.
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Awaitable, Callable, Optional, TypeVar

from legacylink.errors import FatalBackendError, RetriesExhaustedError, TransientBackendError
from legacylink.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_STATUS = {429, 503, 529}
TRANSIENT_PATTERN = re.compile(r'rate.?limit|overloaded|resource.?exhausted|too many requests|quota', re.I)


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as a transient capacity signal."""
    if isinstance(exc, TransientBackendError):
        return True
    if isinstance(exc, FatalBackendError):
        return False
    status = getattr(exc, 'status_code', None) or getattr(exc, 'status', None)
    if isinstance(status, int) and status in TRANSIENT_STATUS:
        return True
    return bool(TRANSIENT_PATTERN.search(str(exc)))


class RetryPolicy:
    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_factor: float = 2.0,
        max_delay: float = 30.0,
        jitter: float = 0.0,
        classify: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ValueError('max_retries must be >= 0')
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.jitter = jitter
        self.classify = classify
        self.sleep = sleep

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None, **overrides) -> 'RetryPolicy':
        s = s or default_settings
        kwargs = dict(
            max_retries=s.retry_max_retries,
            initial_delay=s.retry_initial_delay,
            backoff_factor=s.retry_backoff_factor,
            max_delay=s.retry_max_delay,
            jitter=s.retry_jitter,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def delay_for(self, attempt: int, exc: Optional[BaseException] = None) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        hint = getattr(exc, 'retry_after', None)
        if isinstance(hint, (int, float)) and hint > delay:
            delay = hint
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        label: str = 'backend call',
    ) -> T:
        policy = self
        if max_retries is not None or initial_delay is not None or backoff_factor is not None:
            policy = RetryPolicy(
                max_retries=self.max_retries if max_retries is None else max_retries,
                initial_delay=self.initial_delay if initial_delay is None else initial_delay,
                backoff_factor=self.backoff_factor if backoff_factor is None else backoff_factor,
                max_delay=self.max_delay,
                jitter=self.jitter,
                classify=self.classify,
                sleep=self.sleep,
            )
        return await policy._run(operation, label)

    async def _run(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self.classify(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.error('%s failed after %d attempts: %s', label, attempt + 1, exc,
                                 extra={'extra_data': {'attempts': attempt + 1}})
                    raise RetriesExhaustedError(attempt + 1, exc) from exc
                attempt += 1
                delay = self.delay_for(attempt, exc)
                logger.warning('%s hit a transient error (retry %d/%d in %.2fs): %s',
                               label, attempt, self.max_retries, delay, exc,
                               extra={'extra_data': {'attempt': attempt, 'delay': delay}})
                await self.sleep(delay)
