# =============================================================================
# Resilience Layer — Timeout + Retry Around Every External Call
# =============================================================================
#
# One wrapper, applied uniformly to every embedding and completion call:
#
#   ┌──────────────┬───────────────────────────────────────────────────┐
#   │ Outcome      │ Behaviour                                          │
#   ├──────────────┼───────────────────────────────────────────────────┤
#   │ wall clock   │ in-flight call cancelled → Timeout (retried only   │
#   │              │ when the policy says so: embeddings, not chat)     │
#   │ HTTP 429     │ retry, delay doubles: base, 2*base, 4*base ...     │
#   │ other non-2xx│ retry with a fixed short delay                     │
#   │ exhausted    │ ApiFailure carrying the last upstream status       │
#   └──────────────┴───────────────────────────────────────────────────┘
#
# DESIGN DECISION: tenacity drives the loop. Rate-limit and transient
# failures have separate budgets, so the stop/wait callbacks share a small
# per-call _RetryBudget that counts each category. A policy may also cap
# the total attempt count (the embedding policy does: 3 attempts per batch).
#
# Retries are invisible to callers except as latency. Only the final
# outcome escapes: the result, Timeout, or ApiFailure.
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from app.config import Settings, settings
from app.services.errors import ApiFailure, ProviderError, Timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Timeout and retry budget for one kind of external call."""

    timeout: float
    rate_limit_retries: int = 3
    rate_limit_backoff_base: float = 2.0
    transient_retries: int = 2
    transient_retry_delay: float = 1.0
    transient_exponential: bool = False
    retry_on_timeout: bool = False
    max_attempts: int | None = None  # Cap across both categories

    @classmethod
    def for_completion(
        cls,
        config: Settings = settings,
        timeout: float | None = None,
    ) -> RetryPolicy:
        """Policy for chat completions (section prompts and Q&A)."""
        return cls(
            timeout=timeout if timeout is not None else config.completion_timeout,
            rate_limit_retries=config.rate_limit_retries,
            rate_limit_backoff_base=config.rate_limit_backoff_base,
            transient_retries=config.transient_retries,
            transient_retry_delay=config.transient_retry_delay,
        )

    @classmethod
    def for_embedding(cls, config: Settings = settings) -> RetryPolicy:
        """
        Policy for embedding batches and query embeddings.

        Every failure kind, timeouts included, backs off exponentially and
        the whole batch gets at most `embedding_max_attempts` attempts.
        """
        retries = max(config.embedding_max_attempts - 1, 0)
        return cls(
            timeout=config.embedding_timeout,
            rate_limit_retries=retries,
            rate_limit_backoff_base=config.embedding_backoff_base,
            transient_retries=retries,
            transient_retry_delay=config.embedding_backoff_base,
            transient_exponential=True,
            retry_on_timeout=True,
            max_attempts=config.embedding_max_attempts,
        )


# ---------------------------------------------------------------------------
# Per-call retry bookkeeping
# ---------------------------------------------------------------------------


class _RetryBudget:
    """
    Counts failures per category for a single call_with_retry() invocation.

    tenacity evaluates, for each failed attempt: retry → after → stop → wait.
    `record` (the after hook) runs before `exhausted` and `delay`, so both
    see the counts including the attempt that just failed.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy
        self.rate_limited = 0
        self.transient = 0

    def retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, Timeout):
            return self._policy.retry_on_timeout
        return isinstance(exc, ProviderError)

    def record(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, ProviderError) and exc.is_rate_limited:
            self.rate_limited += 1
        else:
            self.transient += 1

    def exhausted(self, retry_state: RetryCallState) -> bool:
        policy = self._policy
        if (
            policy.max_attempts is not None
            and retry_state.attempt_number >= policy.max_attempts
        ):
            return True
        return (
            self.rate_limited > policy.rate_limit_retries
            or self.transient > policy.transient_retries
        )

    def delay(self, retry_state: RetryCallState) -> float:
        policy = self._policy
        exc = retry_state.outcome.exception()
        if isinstance(exc, ProviderError) and exc.is_rate_limited:
            return policy.rate_limit_backoff_base * 2 ** (self.rate_limited - 1)
        if policy.transient_exponential:
            return policy.transient_retry_delay * 2 ** (self.transient - 1)
        return policy.transient_retry_delay


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str = "external call",
) -> T:
    """
    Run `fn` under the policy's timeout and retry budget.

    Args:
        fn: Zero-argument coroutine factory. Called once per attempt, so
            each retry issues a fresh request.
        policy: Timeout and retry budget.
        operation: Label used in log lines and error messages.

    Returns:
        Whatever `fn` returns on the first successful attempt.

    Raises:
        Timeout: An attempt exceeded policy.timeout.
        ApiFailure: Retries exhausted; carries the last upstream status.
    """
    budget = _RetryBudget(policy)

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "%s failed (status=%s), attempt %d, retrying in %.1fs",
            operation,
            getattr(exc, "status_code", None),
            retry_state.attempt_number,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception(budget.retryable),
        after=budget.record,
        stop=budget.exhausted,
        wait=budget.delay,
        before_sleep=_log_retry,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await _attempt(fn, policy.timeout, operation)
    except ProviderError as exc:
        attempts = budget.rate_limited + budget.transient
        logger.error(
            "%s gave up after %d attempts (status=%s)",
            operation, attempts, exc.status_code,
        )
        raise ApiFailure(
            f"{operation} failed after {attempts} attempts "
            f"(upstream status {exc.status_code}): {exc}",
            status_code=exc.status_code,
        ) from exc

    return result


def resilient(
    policy: RetryPolicy,
    operation: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of call_with_retry() for coroutine functions.

    Usage:
        @resilient(RetryPolicy.for_completion())
        async def summarise(...): ...
    """

    def decorator(
        fn: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[T]]:
        label = operation or fn.__qualname__

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> T:
            return await call_with_retry(
                lambda: fn(*args, **kwargs), policy, operation=label,
            )

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _attempt(
    fn: Callable[[], Awaitable[T]],
    timeout: float,
    operation: str,
) -> T:
    """One attempt with a hard wall-clock ceiling; expiry cancels the call."""
    try:
        return await asyncio.wait_for(fn(), timeout=timeout)
    except TimeoutError as exc:
        raise Timeout(
            f"{operation} timed out after {timeout:g}s"
        ) from exc
