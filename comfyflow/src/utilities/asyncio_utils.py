import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, Field

from comfyflow.src.errors import TransientFetchError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


async def await_if_needed(call_result: Any):
    if inspect.isawaitable(call_result):
        return await call_result
    else:
        return call_result


class BackoffPolicy(BaseModel):
    """
    Bounded retry schedule.

    The n-th retry (1-based) waits ``base_delay * multiplier ** (n - 1)``
    seconds, so ``BackoffPolicy(max_retries=3, base_delay=2, multiplier=2)``
    waits 2s, 4s and 8s, while ``multiplier=1`` gives a fixed delay.
    """

    max_retries: int = Field(ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=1.0, ge=1)

    def delay(self, retry: int) -> float:
        return self.base_delay * self.multiplier ** (retry - 1)

    def delays(self) -> list[float]:
        return [self.delay(n) for n in range(1, self.max_retries + 1)]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (TransientFetchError,),
    sleep: Sleep = asyncio.sleep,
    on_retry: Optional[Callable[[int, float, BaseException], Any]] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. After ``policy.max_retries`` retries the last
    retryable exception is re-raised, so the operation runs at most
    ``max_retries + 1`` times.
    """
    retry = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if retry >= policy.max_retries:
                raise
            retry += 1
            delay = policy.delay(retry)
            if on_retry is not None:
                await await_if_needed(on_retry(retry, delay, e))
            await sleep(delay)
