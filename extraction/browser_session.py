"""Headless browser page sessions.

Opens a page through Playwright, dressed up to look like a regular client, and
exposes just what the collector needs: response observation, document
queries, a simulated user interaction, and close().

Does not guarantee success on all sites (JS-only players, DRM, auth walls,
geo blocks, markup changes).
"""

import asyncio
import logging
import os
import re
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlparse, urlunparse

from django.conf import settings

from .exceptions import PageUnavailable
from .target import resolve_target

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 13; SM-G991B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--autoplay-policy=no-user-gesture-required",
]

STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
"""

PAGE_STATE_JS = """() => ({
    loginForm: !!document.querySelector('form#login_form, form[action*="login"], input[name="pass"]'),
    hasVideo: !!document.querySelector('video'),
    text: (document.body ? document.body.innerText : '').slice(0, 4000)
})"""

INTERACT_JS = """async () => {
    window.scrollBy(0, 800);
    const v = document.querySelector('video');
    if (v) {
        v.muted = true;
        try { await v.play(); } catch (e) {}
    }
}"""

UNAVAILABLE_PHRASES = (
    "this content isn't available",
    "this content isn't available right now",
    "this video isn't available",
    "this page isn't available",
    "page not found",
    "video unavailable",
    "the link you followed may be broken",
)
_LOGIN_URL = re.compile(r"/(login|checkpoint|accounts/login)\b", re.IGNORECASE)


@dataclass
class BrowserProfile:
    name: str
    user_agent: str
    viewport: dict
    is_mobile: bool = False
    headers: dict = field(default_factory=lambda: {"Accept-Language": "en-US,en;q=0.9"})

    def context_options(self) -> dict:
        return {
            "user_agent": self.user_agent,
            "viewport": self.viewport,
            "is_mobile": self.is_mobile,
            "has_touch": self.is_mobile,
            "locale": "en-US",
            "extra_http_headers": self.headers,
        }


DESKTOP = BrowserProfile("desktop", DESKTOP_USER_AGENT, {"width": 1920, "height": 1080})
MOBILE = BrowserProfile("mobile", MOBILE_USER_AGENT, {"width": 412, "height": 915}, is_mobile=True)


@dataclass
class AddressVariant:
    url: str
    profile: BrowserProfile


def _is_mobile_host(host: str) -> bool:
    return host.startswith(("m.", "mbasic.", "mobile."))


def _swap_host(p, host: str) -> str:
    return urlunparse(p._replace(netloc=host))


def address_variants(url: str, limit: int | None = None) -> list[AddressVariant]:
    """Deterministic rewrites of the input address, original first."""
    limit = settings.MAX_ADDRESS_VARIANTS if limit is None else limit
    p = urlparse(url)
    host = (p.netloc or "").lower()
    bare = host[4:] if host.startswith("www.") else host
    for prefix in ("m.", "mbasic.", "mobile."):
        if bare.startswith(prefix):
            bare = bare[len(prefix):]
            break

    variants = [AddressVariant(url, MOBILE if _is_mobile_host(host) else DESKTOP)]
    if _is_mobile_host(host):
        variants.append(AddressVariant(_swap_host(p, f"www.{bare}"), DESKTOP))
    elif bare:
        variants.append(AddressVariant(_swap_host(p, f"m.{bare}"), MOBILE))

    target = resolve_target(url)
    if target and re.search(r"/(reels?|videos)/", p.path or "") and target.isdigit():
        watch = urlunparse(p._replace(netloc=f"www.{bare}", path="/watch/", query=f"v={target}", fragment=""))
        variants.append(AddressVariant(watch, DESKTOP))

    seen = set()
    unique = []
    for v in variants:
        if v.url not in seen:
            seen.add(v.url)
            unique.append(v)
    return unique[: max(1, limit)]


@dataclass
class ObservedResponse:
    url: str
    mime_type: str
    headers: dict
    status: int
    observed_at: float


class BrowserPool:
    """Process-wide browser handle.

    Launched once on first use and bound to the event loop that launched it.
    Requests only ever get fresh contexts; the browser itself is closed by
    shutdown() when the process exits. A caller on a different event loop
    gets a private browser it must close itself.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._lock: asyncio.Lock | None = None
        self._loop = None
        self._playwright = None
        self._browser = None

    def _launch_options(self) -> dict:
        opts = {"headless": True, "args": LAUNCH_ARGS}
        exe = settings.BROWSER_EXECUTABLE_PATH
        if exe and os.path.exists(exe):
            opts["executable_path"] = exe
        else:
            logger.info("browser executable %r not found, using bundled chromium", exe)
        return opts

    async def _launch(self):
        from playwright.async_api import async_playwright

        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.launch(**self._launch_options())
        except Exception:
            await pw.stop()
            raise
        return pw, browser

    async def acquire(self):
        """Return (browser, release) where release() must be awaited when done."""
        loop = asyncio.get_running_loop()
        shared = False
        if settings.BROWSER_REUSE:
            with self._guard:
                if self._loop is None:
                    self._loop = loop
                    self._lock = asyncio.Lock()
                shared = self._loop is loop

        if shared:
            async with self._lock:
                if self._browser is None or not self._browser.is_connected():
                    if self._playwright is not None:
                        # Browser crashed; drop the stale driver before relaunching.
                        try:
                            await self._playwright.stop()
                        except Exception as e:
                            logger.debug("stale playwright stop failed: %s", e)
                    self._playwright, self._browser = await self._launch()
                    logger.info("launched shared browser")
            return self._browser, _noop_release

        pw, browser = await self._launch()

        async def release():
            try:
                await browser.close()
            finally:
                await pw.stop()

        return browser, release

    async def shutdown(self) -> None:
        if self._lock is None:
            return
        async with self._lock:
            browser, pw = self._browser, self._playwright
            self._browser = self._playwright = None
            if browser is not None:
                await browser.close()
            if pw is not None:
                await pw.stop()
        with self._guard:
            self._loop = None
            self._lock = None
        logger.info("shared browser closed")


async def _noop_release():
    return None


browser_pool = BrowserPool()


class PageSession:
    """One open page. Responses are recorded from before navigation starts."""

    def __init__(self, context, page, *, url: str, profile: BrowserProfile):
        self.context = context
        self.page = page
        self.url = url
        self.profile = profile
        self.status: int | None = None
        self._closed = False
        self._responses: list[ObservedResponse] = []
        self._listeners: list[Callable[[ObservedResponse], None]] = []
        page.on("response", self._on_page_response)

    def _on_page_response(self, response) -> None:
        try:
            headers = dict(response.headers or {})
            observed = ObservedResponse(
                url=response.url,
                mime_type=(headers.get("content-type") or "").split(";")[0].strip(),
                headers=headers,
                status=response.status,
                observed_at=time.time(),
            )
        except Exception as e:
            logger.debug("unreadable response skipped: %s", e)
            return
        self._responses.append(observed)
        for cb in list(self._listeners):
            cb(observed)

    def on_response(self, callback: Callable[[ObservedResponse], None]) -> None:
        """Subscribe for the rest of the session; already observed responses are replayed."""
        for observed in list(self._responses):
            callback(observed)
        self._listeners.append(callback)

    async def evaluate(self, script: str, arg=None):
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def interact(self) -> float:
        """Scroll and start muted playback. Returns when the interaction happened."""
        at = time.time()
        try:
            await self.page.evaluate(INTERACT_JS)
        except Exception as e:
            logger.debug("interaction failed: %s", e)
        return at

    async def navigate(self, timeout_ms: int, settle_seconds: float) -> None:
        try:
            response = await self.page.goto(self.url, wait_until="domcontentloaded", timeout=timeout_ms)
        except Exception as e:
            raise PageUnavailable(f"navigation failed: {e}") from e
        self.status = response.status if response is not None else None
        if settle_seconds:
            await asyncio.sleep(settle_seconds)

    async def check_available(self) -> None:
        if self.status is not None and self.status >= 400:
            raise PageUnavailable(f"http {self.status}")

        if _LOGIN_URL.search(urlparse(self.page.url or "").path or ""):
            raise PageUnavailable("redirected to login")

        try:
            state = await self.page.evaluate(PAGE_STATE_JS) or {}
        except Exception as e:
            # e.g. the context was destroyed by a client-side redirect
            raise PageUnavailable(f"page state unreadable: {e}") from e
        if state.get("loginForm") and not state.get("hasVideo"):
            raise PageUnavailable("login wall")

        text = (state.get("text") or "").lower().replace("’", "'")
        for phrase in UNAVAILABLE_PHRASES:
            if phrase in text and not state.get("hasVideo"):
                raise PageUnavailable(f"page says: {phrase}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        try:
            await self.context.close()
        except Exception as e:
            logger.debug("context close failed: %s", e)


async def _open_variant(browser, variant: AddressVariant) -> PageSession:
    context = await browser.new_context(**variant.profile.context_options())
    try:
        await context.add_init_script(STEALTH_JS)
        page = await context.new_page()
        page.set_default_timeout(settings.NAVIGATION_TIMEOUT_MS)
    except BaseException:
        await context.close()
        raise
    return PageSession(context, page, url=variant.url, profile=variant.profile)


@asynccontextmanager
async def open_session(url: str, *, pool: BrowserPool | None = None):
    """Open the first address variant that loads without a login wall or error page.

    Raises PageUnavailable if none does. The session is closed on every exit
    path, cancellation included.
    """
    pool = pool or browser_pool
    browser, release = await pool.acquire()
    session = None
    reasons = []
    try:
        for variant in address_variants(url):
            candidate = await _open_variant(browser, variant)
            try:
                await candidate.navigate(settings.NAVIGATION_TIMEOUT_MS, settings.SETTLE_SECONDS)
                await candidate.check_available()
            except PageUnavailable as e:
                logger.info("variant %s (%s) unavailable: %s", variant.url, variant.profile.name, e.message)
                reasons.append(e.message)
                await candidate.close()
                continue
            except BaseException:
                await candidate.close()
                raise
            session = candidate
            break

        if session is None:
            logger.warning("no usable address variant for %s: %s", url, "; ".join(reasons))
            raise PageUnavailable()

        logger.info("page session open on %s (%s)", session.url, session.profile.name)
        yield session
    finally:
        if session is not None:
            await session.close()
        await release()
