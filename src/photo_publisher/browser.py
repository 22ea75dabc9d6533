"""
Remote UI Driver Adapter.

The orchestrator only talks to the UiDriver protocol: navigate, find, fill,
click, attach a file, submit and inspect the address. PlaywrightDriver
implements it on one page of either a freshly launched persistent profile or an
already running Chrome exposed over the DevTools protocol.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol

from loguru import logger
from playwright.async_api import (
    BrowserContext,
    CDPSession,
    ConsoleMessage,
    Dialog,
    Page,
    Playwright,
    Request,
    Response,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel

from photo_publisher.errors import SessionAcquisitionError, UnexpectedPageError


if TYPE_CHECKING:
    from loguru import Logger


BrowserMode = Literal["launch", "attach"]
WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]
EventSink = Callable[[str, dict[str, Any]], None]

# Upload form contract
UPLOAD_URL = "https://www.redbubble.com/portfolio/images/new?ref=dashboard"
UPLOAD_PATH_MARKER = "portfolio/images/new"
LOGIN_PATH_MARKER = "/auth/login"
SITE_HOST = "redbubble.com"

LOGIN_MARKER_SELECTOR = 'a[data-testid="ds-header-login-action"]'
FILE_INPUT_SELECTOR = "#select-image-single"
TITLE_SELECTOR = "#work_title_en"
DESCRIPTION_SELECTOR = "#work_description_en"
TAGS_SELECTOR = "#work_tag_field_en"
SAFE_FOR_WORK_SELECTOR = "#work_safe_for_work_true"
RIGHTS_DECLARATION_SELECTOR = "#rightsDeclaration"
ENABLE_ALL_SELECTOR = ".enable-all"
SUBMIT_SELECTOR = "#submit-work"

SET_VALUE_SCRIPT = """(el, value) => {
    el.value = value;
    el.dispatchEvent(new Event("input", { bubbles: true }));
    el.dispatchEvent(new Event("change", { bubbles: true }));
}"""

LAUNCH_ARGS = (
    "--start-maximized",
    "--no-first-run",
    "--disable-dev-shm-usage",
    "--disable-dbus",
)


class BrowserSettings(BaseModel):
    """How to obtain a controllable browser surface."""

    mode: BrowserMode = "launch"
    cdp_url: str = "http://localhost:9222"
    user_data_dir: Path = Path("user_data")
    headless: bool = False
    site_host: str = SITE_HOST
    connect_timeout_ms: int = 5000
    navigation_timeout_ms: int = 30000
    element_timeout_ms: int = 10000


class UiDriver(Protocol):
    """Capabilities the orchestrator needs from a browser page."""

    async def navigate(self, url: str, wait_until: WaitUntil = "load") -> None: ...

    async def find_element(self, selector: str) -> bool: ...

    async def set_field_value(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def click_all(self, selector: str) -> int: ...

    async def upload_file(self, selector: str, path: Path) -> None: ...

    async def accept_dialogs(self) -> None: ...

    async def submit_and_wait(self, selector: str, timeout_ms: int) -> bool: ...

    async def current_url(self) -> str: ...

    async def register_event_sink(self, sink: EventSink) -> None: ...

    async def dispose(self) -> None: ...


SessionFactory = Callable[[], AbstractAsyncContextManager[UiDriver]]


def log_event_sink(log: "Logger | None" = None) -> EventSink:
    """Build a sink that writes browser diagnostics to the run log."""
    bound = log or logger

    def sink(channel: str, payload: dict[str, Any]) -> None:
        bound.bind(channel=channel).debug("browser_event", **payload)

    return sink


class PlaywrightDriver:
    """UiDriver backed by a single Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        navigation_timeout_ms: int = 30000,
        element_timeout_ms: int = 10000,
        log: "Logger | None" = None,
    ) -> None:
        self._page = page
        self._navigation_timeout_ms = navigation_timeout_ms
        self._element_timeout_ms = element_timeout_ms
        self._log = log or logger
        self._listeners: list[tuple[str, Callable[..., Any]]] = []
        self._cdp: CDPSession | None = None

    def _subscribe(self, event: str, handler: Callable[..., Any]) -> None:
        self._page.on(event, handler)  # type: ignore[call-overload]
        self._listeners.append((event, handler))

    async def navigate(self, url: str, wait_until: WaitUntil = "load") -> None:
        self._log.info("navigating", url=url, wait_until=wait_until)
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=self._navigation_timeout_ms)
        except PlaywrightError as exc:
            msg = f"Navigation to {url} failed: {exc}"
            raise UnexpectedPageError(msg) from exc

    async def find_element(self, selector: str) -> bool:
        try:
            return await self._page.query_selector(selector) is not None
        except PlaywrightError as exc:
            msg = f"Lookup of {selector} failed: {exc}"
            raise UnexpectedPageError(msg, selector=selector) from exc

    async def set_field_value(self, selector: str, value: str) -> None:
        # Assigned through the DOM like click(); hidden widget inputs are valid targets
        try:
            await self._page.eval_on_selector(selector, SET_VALUE_SCRIPT, value)
        except PlaywrightError as exc:
            msg = f"Could not fill {selector}: {exc}"
            raise UnexpectedPageError(msg, selector=selector) from exc

    async def click(self, selector: str) -> None:
        # DOM-level click, no actionability checks
        try:
            await self._page.eval_on_selector(selector, "el => el.click()")
        except PlaywrightError as exc:
            msg = f"Could not click {selector}: {exc}"
            raise UnexpectedPageError(msg, selector=selector) from exc

    async def click_all(self, selector: str) -> int:
        try:
            return await self._page.eval_on_selector_all(
                selector,
                "els => { els.forEach(el => el.click()); return els.length; }",
            )
        except PlaywrightError as exc:
            msg = f"Could not click {selector}: {exc}"
            raise UnexpectedPageError(msg, selector=selector) from exc

    async def upload_file(self, selector: str, path: Path) -> None:
        try:
            await self._page.set_input_files(selector, str(path), timeout=self._element_timeout_ms)
        except PlaywrightError as exc:
            msg = f"Could not attach {path.name} to {selector}: {exc}"
            raise UnexpectedPageError(msg, selector=selector) from exc

    async def accept_dialogs(self) -> None:
        async def accept(dialog: Dialog) -> None:
            self._log.info("dialog_appeared", type=dialog.type, message=dialog.message)
            await dialog.accept()
            self._log.info("dialog_accepted")

        self._subscribe("dialog", accept)

    async def submit_and_wait(self, selector: str, timeout_ms: int) -> bool:
        """Click the submit control; True if a navigation settled within timeout_ms."""
        try:
            async with self._page.expect_navigation(wait_until="load", timeout=timeout_ms):
                await self.click(selector)
        except PlaywrightTimeoutError:
            self._log.info("navigation_wait_timed_out", timeout_ms=timeout_ms)
            return False
        return True

    async def current_url(self) -> str:
        return self._page.url

    async def register_event_sink(self, sink: EventSink) -> None:
        def on_request(request: Request) -> None:
            sink("network", {"event": "request", "url": request.url, "method": request.method})

        def on_response(response: Response) -> None:
            sink("network", {"event": "response", "url": response.url, "status": response.status})

        def on_console(message: ConsoleMessage) -> None:
            sink("console", {"type": message.type, "text": message.text})

        self._subscribe("request", on_request)
        self._subscribe("response", on_response)
        self._subscribe("console", on_console)

        try:
            self._cdp = await self._page.context.new_cdp_session(self._page)
            await self._cdp.send("DOM.enable")
        except PlaywrightError as exc:
            self._log.warning("dom_events_unavailable", error=str(exc))
            self._cdp = None
            return
        self._cdp.on("DOM.documentUpdated", lambda _params: sink("dom", {"event": "document_updated"}))

    async def dispose(self) -> None:
        for event, handler in self._listeners:
            self._page.remove_listener(event, handler)  # type: ignore[call-overload]
        self._listeners.clear()
        if self._cdp is not None:
            try:
                await self._cdp.detach()
            except PlaywrightError as exc:
                self._log.warning("cdp_detach_failed", error=str(exc))
            self._cdp = None


def find_site_page(contexts: Sequence[BrowserContext], site_host: str) -> Page | None:
    """Return the first open tab already showing the target site."""
    for context in contexts:
        for page in context.pages:
            if site_host in page.url:
                return page
    return None


async def _launch(
    playwright: Playwright,
    settings: BrowserSettings,
    log: "Logger",
) -> tuple[Page, Callable[[], Awaitable[None]]]:
    settings.user_data_dir.mkdir(parents=True, exist_ok=True)
    log.info("launching_browser", user_data_dir=str(settings.user_data_dir), headless=settings.headless)
    try:
        context = await playwright.chromium.launch_persistent_context(
            user_data_dir=str(settings.user_data_dir),
            headless=settings.headless,
            args=list(LAUNCH_ARGS),
            ignore_default_args=["--enable-automation"],
            no_viewport=True,
        )
        page = context.pages[0] if context.pages else await context.new_page()
    except PlaywrightError as exc:
        msg = f"Could not launch a browser with profile {settings.user_data_dir}: {exc}"
        raise SessionAcquisitionError(msg) from exc

    async def release() -> None:
        await context.close()

    return page, release


async def _attach(
    playwright: Playwright,
    settings: BrowserSettings,
    log: "Logger",
) -> tuple[Page, Callable[[], Awaitable[None]]]:
    log.info("attaching_to_browser", cdp_url=settings.cdp_url, timeout_ms=settings.connect_timeout_ms)
    try:
        browser = await playwright.chromium.connect_over_cdp(
            settings.cdp_url,
            timeout=settings.connect_timeout_ms,
        )
    except PlaywrightError as exc:
        log.error(
            "browser_attach_failed",
            cdp_url=settings.cdp_url,
            hint="Start Chrome with --remote-debugging-port=9222 and log in first",
        )
        msg = f"No browser with remote debugging reachable at {settings.cdp_url}"
        raise SessionAcquisitionError(msg) from exc

    try:
        page = find_site_page(browser.contexts, settings.site_host)
        created = page is None
        if page is None:
            log.info("no_site_tab_found_opening_new_page", site=settings.site_host)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = await context.new_page()
        else:
            log.info("reusing_site_tab", url=page.url)
    except PlaywrightError as exc:
        msg = f"Could not obtain a tab from {settings.cdp_url}: {exc}"
        raise SessionAcquisitionError(msg) from exc

    async def release() -> None:
        # The user's browser keeps running; only tabs opened here are closed
        if created and not page.is_closed():
            await page.close()

    return page, release


@asynccontextmanager
async def open_session(
    settings: BrowserSettings,
    *,
    log: "Logger | None" = None,
) -> AsyncIterator[PlaywrightDriver]:
    """
    Acquire one page for one task and release it on every exit path.

    Raises:
        SessionAcquisitionError: No browser could be launched or attached to.

    """
    log = log or logger
    try:
        playwright = await async_playwright().start()
    except PlaywrightError as exc:
        msg = f"Playwright could not start: {exc}"
        raise SessionAcquisitionError(msg) from exc

    try:
        acquire = _attach if settings.mode == "attach" else _launch
        page, release = await acquire(playwright, settings, log)
    except BaseException:
        await playwright.stop()
        raise

    driver = PlaywrightDriver(
        page,
        navigation_timeout_ms=settings.navigation_timeout_ms,
        element_timeout_ms=settings.element_timeout_ms,
        log=log,
    )
    log.info("session_acquired", mode=settings.mode)
    try:
        yield driver
    finally:
        await driver.dispose()
        try:
            await release()
        except PlaywrightError as exc:
            log.warning("session_release_failed", error=str(exc))
        await playwright.stop()
        log.info("session_released", mode=settings.mode)
