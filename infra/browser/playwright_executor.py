"""Playwright-backed implementation of ActionExecutorPort.

Each action kind the core can emit is mapped to a method that drives a
Playwright ``Page``. Library errors never escape: they come back as failed
``ActionResult``s with a signal the limiter and breaker understand.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from domain.models import Action, ActionResult, ActionSignal

_AUTOMATION_KEYWORDS = [
    "captcha", "recaptcha", "hcaptcha", "i'm not a robot",
    "verify you are human", "unusual traffic",
]
_CONFIRMATION_KEYWORDS = [
    "thank you for applying", "application submitted",
    "application received", "application has been submitted",
]
_THROTTLE_STATUSES = {429, 503}


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header; None when absent or not numeric."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class PlaywrightActionExecutor:
    """Translates core actions into Playwright page operations.

    Pass ``page`` to drive an existing page; otherwise ``launch()`` starts a
    Chromium instance. Call ``close()`` when finished.
    """

    def __init__(self, *, page: Any = None, headless: bool = True) -> None:
        self._headless = headless
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Any = None
        self._throttle: dict[str, Any] | None = None
        if page is not None:
            self._attach(page)

    async def launch(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self._headless)
        self._attach(await self._browser.new_page())

    async def close(self) -> None:
        if self._browser:
            if self._page:
                await self._page.close()
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

    async def execute(self, action: Action) -> ActionResult:
        handler: Callable[[Action], Awaitable[ActionResult]] | None = getattr(
            self, f"_action_{action.kind.value}", None,
        )
        if handler is None:
            return ActionResult(success=False, error=f"Unsupported action: {action.kind.value}")
        self._throttle = None
        try:
            result = await handler(action)
        except PlaywrightTimeoutError as exc:
            result = ActionResult(
                success=False,
                error=f"Element not found: {action.selector_hint} ({exc})",
                signal=ActionSignal.ELEMENT_NOT_FOUND,
            )
        except PlaywrightError as exc:
            result = ActionResult(success=False, error=f"Browser error: {exc}")
        return self._with_throttle(result)

    # -- individual actions -------------------------------------------------

    async def _action_inspect(self, action: Action) -> ActionResult:
        hint = action.selector_hint
        if hint and _looks_like_url(hint):
            if self._ensure_page().url != hint:
                await self._page.goto(hint, wait_until="domcontentloaded")
            hint = None
        if await self._page_text_contains_any(_AUTOMATION_KEYWORDS):
            return ActionResult(
                success=False,
                error="Automation challenge detected",
                signal=ActionSignal.DETECTED_AUTOMATION,
            )
        if hint is None:
            return ActionResult(success=True)
        present = await self._page.locator(hint).count() > 0
        return ActionResult(success=True, data={"has_more_steps": present})

    async def _action_fill(self, action: Action) -> ActionResult:
        field = action.selector_hint or ""
        loc = await self._first_match([
            lambda: self._page.get_by_label(field),
            lambda: self._page.get_by_placeholder(field),
            lambda: self._page.locator(f'[name="{field}"]'),
            lambda: self._page.locator(f"#{field}"),
            lambda: self._page.locator(field),
        ])
        if loc is None:
            return _not_found("Field", field)
        await loc.first.fill(action.value or "")
        return ActionResult(success=True)

    async def _action_select(self, action: Action) -> ActionResult:
        field = action.selector_hint or ""
        loc = await self._first_match([
            lambda: self._page.get_by_label(field),
            lambda: self._page.locator(f'[name="{field}"]'),
            lambda: self._page.locator(field),
        ])
        if loc is None:
            return _not_found("Dropdown", field)
        await loc.first.select_option(action.value or "")
        return ActionResult(success=True)

    async def _action_upload(self, action: Action) -> ActionResult:
        field = action.selector_hint or ""
        if not action.value:
            return ActionResult(success=False, error=f"No file configured for {field}")
        loc = await self._first_match([
            lambda: self._page.get_by_label(field),
            lambda: self._page.locator(f'[name="{field}"]'),
            lambda: self._page.locator(field),
        ])
        if loc is None:
            return _not_found("File input", field)
        await loc.first.set_input_files(action.value)
        return ActionResult(success=True)

    async def _action_click(self, action: Action) -> ActionResult:
        return await self._click(action.selector_hint or "")

    async def _action_navigate(self, action: Action) -> ActionResult:
        target = action.selector_hint or ""
        if _looks_like_url(target):
            await self._ensure_page().goto(target, wait_until="domcontentloaded")
            return ActionResult(success=True)
        result = await self._click(target)
        if result.success:
            await self._page.wait_for_load_state("domcontentloaded")
        return result

    async def _action_read(self, action: Action) -> ActionResult:
        selector = action.selector_hint or "body"
        text = await self._ensure_page().inner_text(selector)
        return ActionResult(success=True, data={"text": text[:4000]})

    async def _action_submit(self, action: Action) -> ActionResult:
        return await self._click(action.selector_hint or "Submit")

    async def _action_confirm(self, action: Action) -> ActionResult:
        page = self._ensure_page()
        if action.selector_hint:
            confirmed = await page.locator(action.selector_hint).count() > 0
        else:
            confirmed = await self._page_text_contains_any(_CONFIRMATION_KEYWORDS)
        return ActionResult(success=True, data={"confirmed": confirmed})

    # -- internal helpers ---------------------------------------------------

    def _attach(self, page: Any) -> None:
        self._page = page
        page.on("response", self._on_response)

    def _on_response(self, response: Any) -> None:
        if response.status not in _THROTTLE_STATUSES:
            return
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        self._throttle = {"status": response.status, "retry_after": retry_after}

    def _with_throttle(self, result: ActionResult) -> ActionResult:
        if self._throttle is None or result.signal is ActionSignal.DETECTED_AUTOMATION:
            return result
        data = dict(result.data)
        data.update(self._throttle)
        return replace(result, signal=ActionSignal.THROTTLED, data=data)

    def _ensure_page(self) -> Any:
        if self._page is None:
            raise RuntimeError("Browser not launched. Call launch() first.")
        return self._page

    async def _click(self, target: str) -> ActionResult:
        loc = await self._first_match([
            lambda: self._page.get_by_role("button", name=target),
            lambda: self._page.get_by_role("link", name=target),
            lambda: self._page.get_by_text(target, exact=False),
            lambda: self._page.locator(target),
        ])
        if loc is None:
            return _not_found("Element", target)
        await loc.first.click()
        return ActionResult(success=True)

    async def _first_match(self, locator_fns: list[Callable[[], Any]]) -> Any:
        self._ensure_page()
        for locator_fn in locator_fns:
            loc = locator_fn()
            if await loc.count() > 0:
                return loc
        return None

    async def _page_text_contains_any(self, keywords: list[str]) -> bool:
        body = await self._ensure_page().inner_text("body")
        lower = body.lower()
        return any(kw in lower for kw in keywords)


def _looks_like_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def _not_found(what: str, target: str) -> ActionResult:
    return ActionResult(
        success=False,
        error=f"{what} not found: {target}",
        signal=ActionSignal.ELEMENT_NOT_FOUND,
    )
