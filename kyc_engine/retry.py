import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from .errors import ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retries extraction calls that raised ExtractionError with exponential
    backoff. Anything else propagates immediately. The last ExtractionError is
    re-raised once attempts are exhausted.
    """
    max_attempts: int = 3
    backoff: float = 1.0
    backoff_max: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.EXTRACTION_MAX_ATTEMPTS,
            backoff=settings.RETRY_BACKOFF_SECONDS,
            backoff_max=settings.RETRY_BACKOFF_MAX_SECONDS,
        )

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=self.backoff_max),
            retry=retry_if_exception_type(ExtractionError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        return self.retrying()(fn, *args, **kwargs)
