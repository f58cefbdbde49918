from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, TypeVar

from tasksync.core.errors import RateLimitError, TaskSyncError, TransientNetworkError
from tasksync.core.events import EventSink

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay(self, retry_index: int) -> float:
        return min(self.base_delay * (2**retry_index), self.max_delay)


DEFAULT_RETRY_POLICIES: Mapping[type[TaskSyncError], RetryPolicy] = {
    RateLimitError: RetryPolicy(max_retries=2),
    TransientNetworkError: RetryPolicy(max_retries=3),
}


def policy_for(
    error: TaskSyncError,
    policies: Mapping[type[TaskSyncError], RetryPolicy],
) -> RetryPolicy | None:
    for error_type, policy in policies.items():
        if isinstance(error, error_type):
            return policy
    return None


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policies: Mapping[type[TaskSyncError], RetryPolicy] | None = None,
    sleep: Sleep = asyncio.sleep,
    sink: EventSink | None = None,
    label: str = "request",
) -> T:
    """Run ``operation`` retrying the error kinds listed in ``policies``.

    Failures are counted across kinds; each failure is retried only while
    the count stays within the policy of the error just raised. Anything
    without a policy (authentication, validation) propagates at once.
    """

    policies = DEFAULT_RETRY_POLICIES if policies is None else policies
    failures = 0
    while True:
        try:
            return await operation()
        except TaskSyncError as exc:
            policy = policy_for(exc, policies)
            if policy is None or failures >= policy.max_retries:
                raise
            delay = policy.delay(failures)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = min(max(delay, retry_after), policy.max_delay)
            failures += 1
            if sink is not None:
                sink.emit("poll.retry", source=label, kind=exc.kind, attempt=failures, delay=delay)
            await sleep(delay)
