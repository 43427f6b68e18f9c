"""Named backoff profiles built on tenacity."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_exponential,
)

from liveuploader.config import RetryConfig
from liveuploader.exceptions import TransientStorageError

BACKOFF_MULTIPLIER = 1.5


@dataclass(frozen=True)
class RetryProfile:
    name: str
    initial_interval_s: float = 0.0
    max_interval_s: float = 0.0
    max_attempts: int | None = 1
    max_elapsed_s: float | None = None

    def retrying(self, logger: logging.Logger, *, label: str = "") -> AsyncRetrying:
        stop = stop_never
        if self.max_attempts is not None:
            stop = stop_after_attempt(self.max_attempts)
        if self.max_elapsed_s is not None:
            stop = stop | stop_after_delay(self.max_elapsed_s)
        return AsyncRetrying(
            stop=stop,
            wait=wait_exponential(
                multiplier=self.initial_interval_s,
                exp_base=BACKOFF_MULTIPLIER,
                max=self.max_interval_s or float("inf"),
            ),
            retry=retry_if_exception_type(TransientStorageError),
            before_sleep=log_retry(logger, self.name, label),
            reraise=True,
        )


def log_retry(logger: logging.Logger, profile: str, label: str) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        wait_s = state.next_action.sleep if state.next_action else None
        logger.warning(
            "write retrying (profile=%s, uri=%s, attempt=%s, wait_s=%s, error=%s)",
            profile,
            label,
            state.attempt_number,
            wait_s,
            exc,
        )

    return _log


@dataclass(frozen=True)
class RetryProfiles:
    persistent: RetryProfile
    best_effort: RetryProfile
    short: RetryProfile

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryProfiles":
        return cls(
            persistent=RetryProfile(
                name="persistent",
                initial_interval_s=float(config.persistent_initial_s),
                max_interval_s=float(config.persistent_max_s),
                max_attempts=int(config.persistent_attempts),
                max_elapsed_s=float(config.persistent_max_elapsed_s) or None,
            ),
            best_effort=RetryProfile(name="best_effort", max_attempts=1),
            short=RetryProfile(
                name="short",
                initial_interval_s=float(config.short_initial_s),
                max_interval_s=float(config.short_max_s),
                max_attempts=int(config.short_attempts),
            ),
        )
