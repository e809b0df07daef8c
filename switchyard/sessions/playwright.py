"""Playwright-backed actor handles.

Each application gets its own page inside a shared BrowserContext, so
applications on the same origin share cookies while keeping separate
tabs. Use one BrowserContext per registry to keep tests isolated.

Usage:
    async with async_playwright() as p:
        browser = await p.chromium.launch()
        context = await browser.new_context()
        factory = PlaywrightActorFactory(context, config=config)
        async with SessionRegistry(factory, config=config) as registry:
            await registry.switch_to("shop")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from switchyard.config import SwitchyardConfig

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

logger = logging.getLogger(__name__)


class PlaywrightActor:
    """Wraps a Playwright Page as an actor handle."""

    def __init__(
        self,
        page: Page,
        readiness_state: str = "load",
        readiness_timeout_ms: float | None = None,
    ) -> None:
        self.page = page
        self.readiness_state = readiness_state
        self.readiness_timeout_ms = readiness_timeout_ms

    def __repr__(self) -> str:
        return f"PlaywrightActor(url={self.url!r})"

    @property
    def url(self) -> str:
        return self.page.url

    def is_closed(self) -> bool:
        return self.page.is_closed()

    async def bring_to_front(self) -> None:
        await self.page.bring_to_front()

    async def wait_until_ready(self) -> None:
        await self.page.wait_for_load_state(
            self.readiness_state,  # type: ignore[arg-type]
            timeout=self.readiness_timeout_ms,
        )

    async def goto(self, url: str) -> None:
        await self.page.goto(url)

    async def screenshot(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=path, full_page=True)

    async def close(self) -> None:
        await self.page.close()


class PlaywrightActorFactory:
    """Creates one page per application in a BrowserContext.

    Args:
        context: The browser context new pages are opened in.
        config: Supplies each application's readiness state.
        readiness_timeout_ms: Timeout for readiness waits; Playwright's
            default applies when None.
    """

    def __init__(
        self,
        context: BrowserContext,
        config: SwitchyardConfig | None = None,
        readiness_timeout_ms: float | None = None,
    ) -> None:
        self.context = context
        self.config = config or SwitchyardConfig()
        self.readiness_timeout_ms = readiness_timeout_ms

    async def __call__(self, app_id: str, base_url: str | None) -> PlaywrightActor:
        page = await self.context.new_page()
        actor = PlaywrightActor(
            page,
            readiness_state=self.config.application(app_id).readiness_state,
            readiness_timeout_ms=self.readiness_timeout_ms,
        )
        if base_url:
            await page.goto(base_url)
        logger.debug(f"Opened page for {app_id} at {base_url or 'about:blank'}")
        return actor
