import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from rynko_client.errors import PollTimeoutError

DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_POLL_TIMEOUT_MS = 30000

S = TypeVar("S")

StatusCallback = Callable[[Any], Any]


async def _handle_status_change(
    snapshot: Any, last_status: Any, on_status_change: Optional[StatusCallback]
) -> None:
    """Invoke the status change callback if the status has changed"""
    status = getattr(snapshot, "status", None)
    if status == last_status or on_status_change is None:
        return
    logger.debug(f"Status changed to {status}")
    result = on_status_change(snapshot)
    if inspect.isawaitable(result):
        await result


async def poll_until_terminal(
    fetch: Callable[[], Awaitable[S]],
    is_terminal: Callable[[S], bool],
    *,
    resource_id: str,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
    on_status_change: Optional[StatusCallback] = None,
) -> S:
    """Poll ``fetch`` until it returns a terminal snapshot or the deadline passes.

    A terminal snapshot is returned even when it arrives after the deadline;
    a non-terminal one seen after the deadline raises PollTimeoutError
    instead of sleeping again. Fetch errors and cancellation propagate as-is.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    last_status = None
    polls = 0

    while True:
        snapshot = await fetch()
        polls += 1

        await _handle_status_change(snapshot, last_status, on_status_change)
        last_status = getattr(snapshot, "status", None)

        if is_terminal(snapshot):
            logger.debug(f"{resource_id} reached {last_status} after {polls} polls")
            return snapshot

        elapsed_ms = (loop.time() - start) * 1000
        if elapsed_ms > timeout_ms:
            raise PollTimeoutError(resource_id, timeout_ms)

        logger.debug(
            f"{resource_id} still {last_status}, waiting {poll_interval_ms}ms before next poll"
        )
        await asyncio.sleep(poll_interval_ms / 1000)
