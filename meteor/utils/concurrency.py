import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from meteor.core.logger import logger

T = TypeVar("T")

CRYPTO_WORKERS = 4

_crypto_executor: Optional[ThreadPoolExecutor] = None


def _get_crypto_executor() -> ThreadPoolExecutor:
    """Get or create the thread pool used for token decoding."""
    global _crypto_executor
    if _crypto_executor is None:
        _crypto_executor = ThreadPoolExecutor(
            max_workers=CRYPTO_WORKERS, thread_name_prefix="meteor-crypto-"
        )
    return _crypto_executor


def shutdown_crypto_executor() -> None:
    global _crypto_executor
    if _crypto_executor is not None:
        _crypto_executor.shutdown(wait=False)
        _crypto_executor = None


async def run_in_executor(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking function in the crypto thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_crypto_executor(), partial(func, *args))


def _drain(task: asyncio.Task):
    if not task.cancelled():
        task.exception()


async def first_success(
    attempts: Iterable[Awaitable[Optional[T]]], timeout: Optional[float] = None
) -> Optional[T]:
    """Race the attempts and return the first non-None result.

    Failing attempts count as None. Losers keep running unobserved, their
    results are discarded. Returns None when every attempt fails or the
    overall timeout expires.
    """
    tasks = [asyncio.ensure_future(attempt) for attempt in attempts]
    for task in tasks:
        task.add_done_callback(_drain)

    if not tasks:
        return None

    try:
        async with asyncio.timeout(timeout):
            for next_done in asyncio.as_completed(tasks):
                try:
                    result = await next_done
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug(f"Race attempt failed: {type(e).__name__}: {e}")
                    continue

                if result is not None:
                    return result
    except TimeoutError:
        logger.debug(f"Race timed out after {timeout}s")

    return None
