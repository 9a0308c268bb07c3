"""Subprocess lifecycle utilities.

- wait_for_path: bounded exponential-backoff poll for a file created by a child process
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, wait_exponential

from firecracker_ctl._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

logger = get_logger(__name__)


async def wait_for_path(
    path: Path,
    *,
    timeout_ms: int,
    first_delay_ms: int = 1,
    max_delay_ms: int = 1000,
    abort_check: Callable[[], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until path exists or the wall-clock budget is spent.

    Firecracker creates its API socket some time after exec; there is no
    event to await, so the filesystem is polled. Delays start at
    first_delay_ms and double up to max_delay_ms. The last delay is clipped
    so the final probe lands on the deadline.

    Args:
        path: File to wait for.
        timeout_ms: Total budget measured on clock.
        first_delay_ms: First backoff delay.
        max_delay_ms: Cap on a single delay.
        abort_check: Called before every probe. Should raise to stop early
            (e.g. when the spawning process has exited).
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock in seconds, injectable for tests.

    Returns:
        True once path exists, False if the budget ran out first.
    """
    deadline = clock() + timeout_ms / 1000
    backoff = wait_exponential(multiplier=first_delay_ms / 1000, max=max_delay_ms / 1000)

    async def _probe() -> bool:
        if abort_check is not None:
            abort_check()
        return path.exists()

    def _budget_spent(_retry_state: RetryCallState) -> bool:
        return clock() >= deadline

    def _next_delay(retry_state: RetryCallState) -> float:
        return max(0.0, min(backoff(retry_state), deadline - clock()))

    def _gave_up(retry_state: RetryCallState) -> bool:
        logger.debug(
            "Gave up waiting for path",
            extra={"path": str(path), "attempts": retry_state.attempt_number, "timeout_ms": timeout_ms},
        )
        return False

    retrying = AsyncRetrying(
        retry=retry_if_result(lambda exists: not exists),
        stop=_budget_spent,
        wait=_next_delay,
        sleep=sleep,
        retry_error_callback=_gave_up,
    )
    return await retrying(_probe)
