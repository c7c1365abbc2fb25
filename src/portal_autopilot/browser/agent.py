"""Browser lifecycle management on top of Playwright."""

from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


async def wait_for_settle(page: Page, timeout_ms: int) -> bool:
    """
    Wait for the network to go idle.

    Returns:
        True if the page settled, False if the wait timed out
    """
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        return True
    except PlaywrightError as e:
        logger.debug("Network did not settle", timeout_ms=timeout_ms, url=page.url, error=str(e))
        return False


class BrowserAgent:
    """
    Owns the single browsing context a run drives.

    Use it as an async context manager: the browser is launched on entry
    and closed on exit, whatever happened inside the block.
    """

    def __init__(
        self,
        headless: bool = True,
        viewport_size: tuple = (1920, 1080),
        default_timeout_ms: int = 30000,
    ):
        """
        Initialize the browser agent.

        Args:
            headless: Run browser in headless mode
            viewport_size: Browser viewport size (width, height)
            default_timeout_ms: Default timeout for driver operations
        """
        self.headless = headless
        self.viewport_size = viewport_size
        self.default_timeout_ms = default_timeout_ms
        self.logger = logger.bind(component="browser_agent")

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.is_initialized = False

    async def initialize(self) -> Page:
        """Launch Chromium and open the page used for the whole run."""
        if self.is_initialized and self.page is not None:
            return self.page

        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(headless=self.headless)
        self.context = await self.browser.new_context(
            viewport={"width": self.viewport_size[0], "height": self.viewport_size[1]}
        )
        self.context.set_default_timeout(self.default_timeout_ms)
        self.page = await self.context.new_page()
        self.is_initialized = True

        self.logger.info(
            "Browser agent initialized",
            headless=self.headless,
            viewport_size=self.viewport_size
        )
        return self.page

    async def close(self) -> None:
        """Close the browser and cleanup resources."""
        for name in ("page", "context", "browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as e:
                self.logger.warning("Error closing browser resource", resource=name, error=str(e))
            setattr(self, name, None)

        if self.playwright is not None:
            await self.playwright.stop()
            self.playwright = None

        self.is_initialized = False
        self.logger.info("Browser agent closed")

    async def __aenter__(self) -> "BrowserAgent":
        try:
            await self.initialize()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_browser_agent(
    headless: bool = True,
    viewport_size: tuple = (1920, 1080),
    default_timeout_ms: int = 30000,
) -> BrowserAgent:
    """
    Factory function to create a browser agent.

    Args:
        headless: Run browser in headless mode
        viewport_size: Browser viewport size (width, height)
        default_timeout_ms: Default timeout for driver operations

    Returns:
        Configured BrowserAgent instance
    """
    return BrowserAgent(
        headless=headless,
        viewport_size=viewport_size,
        default_timeout_ms=default_timeout_ms
    )
