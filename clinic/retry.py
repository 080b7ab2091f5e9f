from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from clinic.errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
BASE_DELAY_S = 1.0

Sleep = Callable[[float], Awaitable[object]]


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY_S,
    classify: Callable[[BaseException], bool] = is_retryable,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run `fn`, retrying retryable failures with exponential backoff.

    - `attempts` counts every call, including the first.
    - delays are base_delay, 2*base_delay, 4*base_delay, ... (no jitter).
    - fatal errors and the last retryable error propagate unchanged.

    No state is kept between calls, so concurrent callers each get their own budget.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts or not classify(e):
                raise
            logger.warning(
                "Generation call failed (%s). Retrying in %dms (%d attempts left)",
                e,
                int(delay * 1000),
                attempts - attempt,
            )
            await sleep(delay)
            delay *= 2

    raise AssertionError("unreachable")  # pragma: no cover
