import asyncio
import logging
from typing import Iterable, Awaitable, Optional, Callable, List


logger = logging.getLogger(__name__)


async def cancel_and_wait(*tasks: Optional[asyncio.Task]) -> None:
    """Cancel the given tasks and wait for them to finish, ignoring their outcome."""
    pending = [t for t in tasks if t is not None]
    for t in pending:
        if not t.done():
            t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_tasks_with_cleanup(
    tasks: Iterable[asyncio.Task],
    cleanup: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    """Run long-lived tasks until the first failure or cancellation, then tear everything down."""
    task_list: List[asyncio.Task] = list(tasks)
    try:
        if task_list:
            await asyncio.gather(*task_list)
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Background task failed; shutting down")
    finally:
        await cancel_and_wait(*task_list)
        if cleanup is not None:
            await cleanup()
