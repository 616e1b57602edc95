import asyncio
import re
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from playwright.async_api import async_playwright

from meteor.core.exceptions import PoolExhausted
from meteor.core.logger import logger

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]

POPUP_LOAD_TIMEOUT = 5

ANTI_FINGERPRINT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => false });
window.chrome = { runtime: {} };
"""


class PlaywrightEngine:
    """Chromium browser with one shared context, pages are created on demand."""

    def __init__(self, headless: bool = True, user_agent: Optional[str] = None):
        self.headless = headless
        self.user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self):
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless, args=BROWSER_ARGS
        )
        self._context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport={"width": 1280, "height": 720},
            locale="en-US",
        )

    def is_running(self):
        return self._browser is not None and self._browser.is_connected()

    async def new_page(self):
        return await self._context.new_page()

    def pages(self):
        return list(self._context.pages) if self._context else []

    async def close(self):
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None


class PageHandle:
    def __init__(self, pool: "BrowserPool", page, generation: int):
        self.pool = pool
        self.page = page
        self.generation = generation
        self.acquired_at = time.monotonic()
        self.released = False
        self.expiry_task: Optional[asyncio.Task] = None

    async def release(self, timeout: Optional[float] = None):
        return await self.pool.release(self, timeout)


class BrowserPool:
    """
    Bounded pool of browser pages.

    The active count is the number of admitted slots, `_active` holds the
    pages those slots own. Slots reserved while a page is being created are
    tracked in `_reserving`, so outside of reconciliation the invariant is
    `active_count == len(_active) + _reserving`. Any drift is a leak and is
    repaired by `reconcile()`.
    """

    def __init__(
        self,
        engine_factory: Callable,
        max_pages: int = 10,
        acquire_timeout: float = 30,
        page_ttl: float = 120,
        release_timeout: float = 5,
        restart_interval: float = 3600,
        reconcile_interval: float = 300,
        popup_allowlist: str = r"vidlink|videasy|vidking|111movies|megafiles|workers\.dev",
    ):
        self.engine_factory = engine_factory
        self.max_pages = max_pages
        self.acquire_timeout = acquire_timeout
        self.page_ttl = page_ttl
        self.release_timeout = release_timeout
        self.restart_interval = restart_interval
        self.reconcile_interval = reconcile_interval
        self.popup_allowlist = re.compile(popup_allowlist, re.IGNORECASE)

        self._engine = None
        self._engine_lock = asyncio.Lock()
        self._condition = asyncio.Condition()
        self._active = set()
        self._active_count = 0
        self._reserving = 0
        self._generation = 0
        self._started_at = None
        self._maintenance_tasks = []
        self.total_pages_created = 0

    @property
    def active_count(self):
        return self._active_count

    @property
    def tracked_count(self):
        return len(self._active)

    def _has_free_slot(self):
        return self._active_count < self.max_pages

    async def _ensure_engine(self):
        async with self._engine_lock:
            if self._engine is not None:
                if self._engine.is_running():
                    return self._engine

                logger.warning("Browser disconnected, restarting...")
                await self._discard_engine()

            logger.log("BROWSER", "🚀 Launching new browser instance...")
            engine = self.engine_factory()
            await engine.start()
            self._engine = engine
            self._started_at = time.monotonic()
            logger.log("BROWSER", "✅ Browser launched successfully")
            return engine

    async def _discard_engine(self):
        engine, self._engine = self._engine, None
        async with self._condition:
            self._generation += 1
            self._active.clear()
            self._active_count = self._reserving
            self._condition.notify_all()

        if engine is not None:
            try:
                await engine.close()
            except Exception as e:
                logger.error(f"Error closing browser: {e}")

    async def acquire(self):
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(self._has_free_slot),
                    self.acquire_timeout,
                )
            except asyncio.TimeoutError:
                logger.log(
                    "BROWSER",
                    f"⏳ No slot freed within {self.acquire_timeout}s (active: {self._active_count}/{self.max_pages})",
                )
                raise PoolExhausted(self.max_pages, self.acquire_timeout)

            self._active_count += 1
            self._reserving += 1

        try:
            engine = await self._ensure_engine()
            page = await engine.new_page()
            await self._harden_page(page)
        except BaseException as e:
            # an untracked page left behind here is closed by reconcile()
            async with self._condition:
                self._reserving -= 1
                self._active_count = max(0, self._active_count - 1)
                self._condition.notify()
            if isinstance(e, asyncio.CancelledError):
                logger.warning("Page acquisition cancelled, slot returned")
            else:
                logger.error(f"Error creating page: {e}")
            raise

        # no await between registration and the safety timer
        self._reserving -= 1
        self._active.add(page)
        handle = PageHandle(self, page, self._generation)
        handle.expiry_task = asyncio.create_task(self._expire(handle))

        self.total_pages_created += 1
        logger.log(
            "BROWSER",
            f"📄 Page created (active: {self._active_count}/{self.max_pages}, total: {self.total_pages_created})",
        )
        return handle

    async def _harden_page(self, page):
        try:
            await page.add_init_script(ANTI_FINGERPRINT_SCRIPT)
        except Exception as e:
            logger.warning(f"Failed to set anti-detection: {e}")

        page.on("popup", self._close_popup)

    async def _close_popup(self, popup):
        # popups open on about:blank before navigating to their target
        try:
            await popup.wait_for_load_state(
                "domcontentloaded", timeout=POPUP_LOAD_TIMEOUT * 1000
            )
        except Exception as e:
            logger.debug(f"Popup did not load: {e}")

        url = popup.url
        if self.popup_allowlist.search(url):
            return

        try:
            await popup.close()
            logger.debug(f"🚫 Closed popup: {url[:50]}")
        except Exception as e:
            logger.debug(f"Failed to close popup {url[:50]}: {e}")

    async def _expire(self, handle: PageHandle):
        await asyncio.sleep(self.page_ttl)
        if not handle.released:
            logger.warning(f"Force releasing page after {self.page_ttl}s timeout")
            await self.release(handle)

    async def release(self, handle: PageHandle, timeout: Optional[float] = None):
        if handle.released:
            logger.warning("Page released more than once, ignoring")
            return False

        handle.released = True
        if (
            handle.expiry_task is not None
            and handle.expiry_task is not asyncio.current_task()
        ):
            handle.expiry_task.cancel()

        async with self._condition:
            if handle.generation == self._generation and handle.page in self._active:
                self._active.discard(handle.page)
                self._active_count = max(0, self._active_count - 1)
            self._condition.notify()

        logger.log(
            "BROWSER",
            f"📄 Page closed (active: {self._active_count}/{self.max_pages})",
        )

        timeout = timeout if timeout is not None else self.release_timeout
        try:
            await asyncio.wait_for(handle.page.close(), timeout)
        except Exception as e:
            logger.warning(
                f"Error closing page ({type(e).__name__}: {e}), leaving it for reconciliation"
            )
            await self._resync_counters()

        return True

    @asynccontextmanager
    async def page(self):
        handle = await self.acquire()
        try:
            yield handle.page
        finally:
            await handle.release()

    async def _resync_counters(self):
        async with self._condition:
            actual = len(self._active) + self._reserving
            if self._active_count != actual:
                logger.warning(
                    f"Active pages mismatch: counted={self._active_count}, actual={actual}. Fixing..."
                )
                self._active_count = actual
            self._condition.notify_all()

    async def reconcile(self):
        """Close pages the pool does not own and resync the active count."""
        cleaned = 0
        engine = self._engine

        # pages being created are not tracked yet and would look like zombies
        if engine is not None and engine.is_running() and not self._reserving:
            for page in engine.pages():
                if page in self._active or page.is_closed():
                    continue

                try:
                    await page.close()
                    cleaned += 1
                    logger.warning("🧹 Closed zombie page")
                except Exception as e:
                    logger.debug(f"Failed to close zombie page: {e}")

        await self._resync_counters()
        return cleaned

    async def restart(self):
        """Tear the browser down; the next acquisition launches a fresh one."""
        if self._engine is None:
            return

        logger.log("BROWSER", "🔄 Scheduled restart...")
        await self.reconcile()
        async with self._engine_lock:
            await self._discard_engine()
        logger.log("BROWSER", "✅ Browser closed, will restart on next request")

    def stats(self):
        uptime = (
            int(time.monotonic() - self._started_at)
            if self._engine is not None and self._started_at
            else 0
        )
        return {
            "running": self._engine is not None and self._engine.is_running(),
            "maxPages": self.max_pages,
            "activePages": self._active_count,
            "trackedPages": len(self._active),
            "pendingPages": self._reserving,
            "countersMatch": self._active_count == len(self._active) + self._reserving,
            "availableSlots": max(0, self.max_pages - self._active_count),
            "totalPagesCreated": self.total_pages_created,
            "uptimeSeconds": uptime,
        }

    async def _maintenance_loop(self, interval: float, action, label: str):
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during browser {label}: {e}")

    def start_maintenance(self):
        self._maintenance_tasks = [
            asyncio.create_task(
                self._maintenance_loop(self.restart_interval, self.restart, "restart")
            ),
            asyncio.create_task(
                self._maintenance_loop(
                    self.reconcile_interval, self.reconcile, "reconciliation"
                )
            ),
        ]

    async def close(self):
        for task in self._maintenance_tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._maintenance_tasks = []

        if self._engine is not None:
            await self.reconcile()
            async with self._engine_lock:
                await self._discard_engine()
            logger.log("BROWSER", "✅ Browser closed gracefully")
