"""Composable retry helpers built on tenacity.

``retry_until`` is used for store-read reconciliation and for transport
calls. ``BackoffSchedule`` computes the exponential delays the job queue
uses between attempts, and the same schedule can feed ``retry_until``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffSchedule:
    """Exponential backoff: base, base*factor, base*factor**2, ..."""

    base_seconds: float
    factor: float = 2.0
    max_seconds: float | None = None

    def delay_for(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (1-based)."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        delay = self.base_seconds * (self.factor ** (attempt - 1))
        if self.max_seconds is not None:
            delay = min(delay, self.max_seconds)
        return delay

    def delays(self, count: int) -> list[float]:
        return [self.delay_for(i) for i in range(1, count + 1)]


def retry_until(
    fn: Callable[[], T],
    until: Callable[[T], bool],
    delays: Sequence[float],
    *,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[RetryCallState], None] | None = None,
) -> T:
    """Call *fn* until *until(result)* holds or the delays run out.

    ``delays[i]`` is the wait before the (i+2)-th call, so a schedule of
    three delays allows four calls in total. When the budget is spent the
    last result is returned as-is; callers decide whether that is an error.
    Exceptions listed in *retry_on* are retried on the same schedule, and
    re-raised if they are still occurring on the final call.
    """
    waits = list(delays)
    wait = wait_chain(*[wait_fixed(d) for d in waits]) if waits else wait_none()
    retrying = Retrying(
        stop=stop_after_attempt(len(waits) + 1),
        wait=wait,
        retry=retry_if_result(lambda result: not until(result))
        | retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=on_retry,
        retry_error_callback=lambda state: state.outcome.result(),
        reraise=True,
    )
    return retrying(fn)
