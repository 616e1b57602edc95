import asyncio

import pytest

from meteor.core.exceptions import PoolExhausted
from meteor.services.browser import ANTI_FINGERPRINT_SCRIPT, BrowserPool
from fakes import FakeEngine, FakePage


def _pool(engine=None, **kwargs):
    engine = engine or FakeEngine()
    options = {"max_pages": 2, "acquire_timeout": 0.05, "page_ttl": 5}
    options.update(kwargs)
    return BrowserPool(lambda: engine, **options), engine


def test_admission_never_exceeds_max_pages():
    async def scenario():
        pool, _ = _pool()
        first = await pool.acquire()
        second = await pool.acquire()
        assert pool.active_count == 2

        with pytest.raises(PoolExhausted):
            await pool.acquire()

        assert pool.active_count == 2
        assert pool.tracked_count == 2
        await first.release()
        await second.release()
        assert pool.active_count == 0

    asyncio.run(scenario())


def test_waiting_acquire_gets_released_slot():
    async def scenario():
        pool, _ = _pool(max_pages=1, acquire_timeout=1)
        holder = await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await holder.release()
        handle = await asyncio.wait_for(waiter, 1)
        assert pool.active_count == 1
        await handle.release()

    asyncio.run(scenario())


def test_release_is_idempotent():
    async def scenario():
        pool, _ = _pool()
        handle = await pool.acquire()
        other = await pool.acquire()

        assert await handle.release() is True
        assert await handle.release() is False
        assert pool.active_count == 1
        assert pool.tracked_count == 1
        assert handle.page.close_calls == 1

        await other.release()

    asyncio.run(scenario())


def test_anti_fingerprinting_installed_on_acquire():
    async def scenario():
        pool, _ = _pool()
        async with pool.page() as page:
            assert page.init_scripts == [ANTI_FINGERPRINT_SCRIPT]
            assert "popup" in page.handlers

    asyncio.run(scenario())


def test_page_scope_releases_on_error():
    async def scenario():
        pool, engine = _pool()
        with pytest.raises(RuntimeError):
            async with pool.page():
                raise RuntimeError("navigation exploded")

        assert pool.active_count == 0
        assert engine.created[0].is_closed()

    asyncio.run(scenario())


def test_safety_timer_force_releases_page():
    async def scenario():
        pool, _ = _pool(page_ttl=0.05)
        handle = await pool.acquire()
        await asyncio.sleep(0.15)

        assert handle.released
        assert pool.active_count == 0
        assert handle.page.is_closed()

    asyncio.run(scenario())


def test_slow_close_still_frees_slot():
    async def scenario():
        engine = FakeEngine(page_factory=lambda: FakePage(close_delay=1))
        pool, _ = _pool(engine, release_timeout=0.05)
        handle = await pool.acquire()

        assert await handle.release() is True
        assert pool.active_count == 0
        assert pool.stats()["countersMatch"]

    asyncio.run(scenario())


def test_reconcile_closes_zombies_and_resyncs_count():
    async def scenario():
        pool, engine = _pool(max_pages=3)
        handle = await pool.acquire()
        zombie = await engine.new_page()

        pool._active_count = 3
        assert not pool.stats()["countersMatch"]

        assert await pool.reconcile() == 1
        assert zombie.is_closed()
        assert not handle.page.is_closed()
        assert pool.active_count == pool.tracked_count == 1
        assert pool.stats()["countersMatch"]

        await handle.release()

    asyncio.run(scenario())


def test_popups_outside_allowlist_are_closed():
    async def scenario():
        pool, _ = _pool()
        handle = await pool.acquire()

        ad = FakePage(url="https://ads.example.com/landing")
        player = FakePage(url="https://vidlink.pro/embed")
        await handle.page.emit_async("popup", ad)
        await handle.page.emit_async("popup", player)

        assert ad.is_closed()
        assert not player.is_closed()
        await handle.release()

    asyncio.run(scenario())


def test_popup_is_judged_after_it_navigates():
    async def scenario():
        pool, _ = _pool()
        handle = await pool.acquire()

        player = FakePage(loads_url="https://vidlink.pro/embed")
        ad = FakePage(loads_url="https://ads.example.com/landing")
        await handle.page.emit_async("popup", player)
        await handle.page.emit_async("popup", ad)

        assert not player.is_closed()
        assert ad.is_closed()
        await handle.release()

    asyncio.run(scenario())


def test_cancelled_acquire_returns_its_slot():
    async def scenario():
        pages = iter([FakePage(init_delay=10), FakePage()])
        engine = FakeEngine(page_factory=lambda: next(pages))
        pool, _ = _pool(engine, max_pages=1, page_ttl=0.2)

        acquiring = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.05)
        acquiring.cancel()
        with pytest.raises(asyncio.CancelledError):
            await acquiring

        stats = pool.stats()
        assert stats["activePages"] == 0
        assert stats["pendingPages"] == 0
        assert stats["countersMatch"]

        handle = await pool.acquire()
        assert await pool.reconcile() == 1
        assert engine.created[0].is_closed()
        assert not handle.page.is_closed()
        await handle.release()

    asyncio.run(scenario())


def test_restart_discards_old_handles():
    async def scenario():
        engines = []

        def factory():
            engines.append(FakeEngine())
            return engines[-1]

        pool = BrowserPool(factory, max_pages=2, acquire_timeout=0.05)
        old = await pool.acquire()

        await pool.restart()
        assert engines[0].closed
        assert pool.active_count == 0
        assert not pool.stats()["running"]

        fresh = await pool.acquire()
        assert len(engines) == 2

        assert await old.release() is True
        assert pool.active_count == 1
        assert pool.tracked_count == 1

        await fresh.release()

    asyncio.run(scenario())


def test_disconnected_engine_is_relaunched():
    async def scenario():
        engines = []

        def factory():
            engines.append(FakeEngine())
            return engines[-1]

        pool = BrowserPool(factory, max_pages=2)
        handle = await pool.acquire()
        engines[0].running = False

        other = await pool.acquire()
        assert len(engines) == 2
        assert pool.active_count == 1

        await handle.release()
        await other.release()
        assert pool.active_count == 0

    asyncio.run(scenario())


def test_failed_page_creation_returns_slot():
    async def scenario():
        class BrokenEngine(FakeEngine):
            async def new_page(self):
                raise RuntimeError("target closed")

        pool, _ = _pool(BrokenEngine())
        with pytest.raises(RuntimeError):
            await pool.acquire()

        assert pool.active_count == 0
        assert pool.stats()["pendingPages"] == 0

    asyncio.run(scenario())


def test_stats_reports_counters():
    async def scenario():
        pool, _ = _pool(max_pages=4)
        handle = await pool.acquire()
        stats = pool.stats()

        assert stats["running"]
        assert stats["maxPages"] == 4
        assert stats["activePages"] == 1
        assert stats["trackedPages"] == 1
        assert stats["availableSlots"] == 3
        assert stats["totalPagesCreated"] == 1
        assert stats["countersMatch"]

        await handle.release()
        await pool.close()
        assert not pool.stats()["running"]

    asyncio.run(scenario())


def test_close_cancels_maintenance():
    async def scenario():
        pool, engine = _pool(restart_interval=60, reconcile_interval=60)
        pool.start_maintenance()
        handle = await pool.acquire()
        tasks = list(pool._maintenance_tasks)

        await pool.close()
        assert all(task.done() for task in tasks)
        assert engine.closed
        assert not handle.released

    asyncio.run(scenario())
