"""Retry policy and executor for the installation step."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from chartflow.config.settings import Settings
from chartflow.core.errors import BranchNotFoundError, InstallationCancelledError
from chartflow.install.cancellation import CancelSignal

logger = structlog.get_logger()

T = TypeVar("T")

NON_RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    BranchNotFoundError,
    InstallationCancelledError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count, exponential backoff and retryable classification."""

    name: str
    max_attempts: int = 3
    initial_delay: float = 5.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    non_retryable: Tuple[Type[BaseException], ...] = NON_RETRYABLE_ERRORS

    def is_retryable(self, exc: BaseException) -> bool:
        """Only ordinary exceptions outside the non-retryable set are retried."""
        return isinstance(exc, Exception) and not isinstance(exc, self.non_retryable)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        return max(0.0, min(delay, self.max_delay))


def installation_retry_policy(settings: Optional[Settings] = None) -> RetryPolicy:
    """The named policy used around chart installation."""
    if settings is None:
        return RetryPolicy(name="installation")
    return RetryPolicy(
        name="installation",
        max_attempts=settings.install_max_attempts,
        initial_delay=settings.install_retry_initial_delay,
        max_delay=settings.install_retry_max_delay,
        multiplier=settings.install_retry_multiplier,
    )


@dataclass
class RetryStats:
    attempts: int = 0
    waits: List[float] = field(default_factory=list)


class RetryExecutor:
    """Runs an async operation under a RetryPolicy, honoring a CancelSignal.

    The wait between attempts is ``CancelSignal.sleep`` so it ends as soon
    as the signal fires, and the signal is checked again before each attempt.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        cancel_signal: CancelSignal,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> None:
        self._policy = policy
        self._signal = cancel_signal
        self._on_retry = on_retry
        self.stats = RetryStats()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        self.stats = RetryStats()
        policy = self._policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.initial_delay,
                exp_base=policy.multiplier,
                max=policy.max_delay,
            ),
            retry=retry_if_exception(policy.is_retryable),
            sleep=self._signal.sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )

        async def attempt() -> T:
            self._signal.raise_if_cancelled()
            self.stats.attempts += 1
            return await operation()

        return await retrying(attempt)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.stats.waits.append(delay)
        logger.warning(
            "installation_retry",
            policy=self._policy.name,
            attempt=retry_state.attempt_number,
            max_attempts=self._policy.max_attempts,
            delay=delay,
            error=str(exc),
        )
        if self._on_retry is not None and exc is not None:
            self._on_retry(retry_state.attempt_number, exc, delay)
