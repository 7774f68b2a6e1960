"""
easyk8s/utils/async_retry.py

Retry decorator for coroutines that talk to flaky neighbours: the tofu
backend, the AWS APIs and freshly booted nodes.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Tuple, Type
from typing_extensions import ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    noisy: bool = False,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: SleepFn = asyncio.sleep,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]
]:
    """Wrap a coroutine function so that selected failures are retried.

    Args:
        retries: Total number of attempts, including the first. Values below
            1 still make one attempt.
        delay: Seconds to wait between attempts.
        noisy: Log each failed attempt, and the final give-up.
        retry_on: Exception types that earn another attempt. Anything else
            propagates from the first failure.
        sleep: Coroutine used to wait between attempts.
    """
    attempts = max(retries, 1)

    def decorator(
        func: Callable[P, Coroutine[Any, Any, R]]
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        name = func.__qualname__

        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            for number in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if number == attempts:
                        if noisy:
                            logger.error("%s gave up after %d attempts", name, attempts)
                        raise
                    if noisy:
                        logger.warning(
                            "%s attempt %d/%d failed: %s", name, number, attempts, exc
                        )
                    await sleep(delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator
