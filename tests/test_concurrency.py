import asyncio
import threading

from meteor.utils.concurrency import (
    first_success,
    run_in_executor,
    shutdown_crypto_executor,
)


async def _resolve(value, delay, error=None):
    await asyncio.sleep(delay)
    if error is not None:
        raise error
    return value


def test_first_non_none_wins_regardless_of_position():
    async def scenario():
        for position in range(4):
            attempts = [
                _resolve("winner" if index == position else None, 0.01 * (3 - index))
                for index in range(4)
            ]
            assert await first_success(attempts) == "winner"

    asyncio.run(scenario())


def test_failures_count_as_none():
    async def scenario():
        attempts = [
            _resolve(None, 0, RuntimeError("boom")),
            _resolve("late", 0.02),
            _resolve(None, 0.01),
        ]
        assert await first_success(attempts) == "late"

    asyncio.run(scenario())


def test_fastest_success_is_kept():
    async def scenario():
        attempts = [_resolve("slow", 0.05), _resolve("fast", 0.01)]
        assert await first_success(attempts) == "fast"

    asyncio.run(scenario())


def test_total_failure_and_timeout_return_none():
    async def scenario():
        assert await first_success([]) is None
        assert await first_success([_resolve(None, 0), _resolve(None, 0.01)]) is None
        assert await first_success([_resolve("never", 1)], timeout=0.02) is None

    asyncio.run(scenario())


def test_blocking_work_runs_off_the_event_loop():
    async def scenario():
        loop_thread = threading.current_thread().name
        worker_thread = await run_in_executor(lambda: threading.current_thread().name)

        assert worker_thread != loop_thread
        assert worker_thread.startswith("meteor-crypto-")
        shutdown_crypto_executor()

    asyncio.run(scenario())
