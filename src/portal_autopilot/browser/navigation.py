"""In-application navigation from the landing page to a target record."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from playwright.async_api import Error as PlaywrightError, Locator, Page

from portal_autopilot.browser.agent import wait_for_settle
from portal_autopilot.browser.locators import Candidate, LocatorResolver, pattern
from portal_autopilot.browser.session import SessionManager
from portal_autopilot.config import Settings
from portal_autopilot.core.errors import NavigationMismatch, ResolutionFailure, SessionInvalidationLoop
from portal_autopilot.core.models import Job, ResolutionAttempt
from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


def token_in_location(location: Optional[str], token: str) -> bool:
    """
    Whether ``token`` appears as whole path segment(s) of ``location``.

    ``location`` may be an absolute URL or a relative href; a token of
    ``"12"`` does not match ``/details/123``.
    """
    if not location or not token:
        return False
    segments = [unquote(s) for s in urlparse(location).path.split("/") if s]
    wanted = [s for s in token.split("/") if s]
    if not wanted:
        return False
    haystack = "/" + "/".join(segments) + "/"
    return ("/" + "/".join(wanted) + "/") in haystack


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class NavigationController:
    """
    Reach a record by walking the application's own menus and listings.

    The target application checks navigation provenance, so the record
    address is only ever used to recognise the right link and to verify
    where we landed, never to navigate directly.

    A re-login during the walk lands on the post-login page, so the walk
    restarts from the listing. It restarts at most once per record.
    """

    MAX_WALKS = 2

    def __init__(
        self,
        page: Page,
        settings: Settings,
        resolver: LocatorResolver,
        session_manager: SessionManager,
    ):
        self.page = page
        self.settings = settings
        self.resolver = resolver
        self.session_manager = session_manager
        self.navigation_history: List[Dict[str, Any]] = []
        self.logger = logger.bind(component="navigation_controller")

    async def reach(self, job: Job) -> str:
        """
        Navigate from the authenticated landing state to the job's record.

        Returns:
            The URL of the record page

        Raises:
            ResolutionFailure: listing affordance or record link not found
            NavigationMismatch: a link was followed but the record was not reached
            SessionInvalidationLoop: the session was lost again on the restarted walk
        """
        token = job.path_token
        self.logger.info("Reaching record", job_id=job.id, path_token=token)

        for walk in range(1, self.MAX_WALKS + 1):
            await self._open_listing()
            await wait_for_settle(self.page, self.settings.settle_timeout_ms)
            if await self._relogged_at("listing", walk):
                continue
            self._record("listing", self.page.url)

            await self._open_record(job)
            await wait_for_settle(self.page, self.settings.settle_timeout_ms)
            if await self._relogged_at("record", walk):
                continue

            url = self.page.url
            if not token_in_location(url, token):
                self.logger.error("Reached the wrong page", job_id=job.id, path_token=token, url=url)
                raise NavigationMismatch(token, url)

            self._record("record", url)
            self.logger.info("Record reached", job_id=job.id, url=url, walks=walk)
            return url

        raise SessionInvalidationLoop(f"Session lost on every walk to record {token!r}")

    async def _relogged_at(self, label: str, walk: int) -> bool:
        """Assert the session; True when that took a re-login and the walk must restart."""
        before = self.session_manager.session.reauthentications
        session = await self.session_manager.assert_authenticated(label)
        if session.reauthentications == before:
            return False

        self.logger.warning("Re-logged in mid-walk, restarting from the listing", label=label, walk=walk)
        return True

    def _listing_candidates(self) -> List[Optional[Candidate]]:
        name = pattern(re.escape(self.settings.listing_link_name))
        return [
            Candidate.override(self.settings.listing_link_selector),
            Candidate.by_role("link", name),
            Candidate.by_text(name),
            Candidate.by_role("link", name, scope=Candidate.by_role("navigation")),
            Candidate.by_role("menuitem", name),
            Candidate.by_role("link", name, scope=Candidate.by_role("menu")),
        ]

    async def _open_listing(self) -> None:
        candidates = self._listing_candidates()
        try:
            await self.resolver.click("listing link", candidates)
            return
        except ResolutionFailure as first:
            if not await self._reveal_menus():
                raise
            try:
                await self.resolver.click("listing link", candidates)
            except ResolutionFailure as second:
                raise ResolutionFailure("listing link", first.attempts + second.attempts) from second

    async def _reveal_menus(self) -> bool:
        """Expand a collapsed navigation menu, if there is one."""
        try:
            await self.resolver.click("menu toggle", [
                Candidate.override(self.settings.menu_toggle_selector),
                Candidate.by_role("button", pattern(r"menu|navigation")),
                Candidate.by_css(".navbar-toggler"),
                Candidate.by_css('[aria-expanded="false"]'),
            ])
        except ResolutionFailure:
            self.logger.info("No hidden menu to reveal")
            return False
        self.logger.info("Revealed collapsed menu")
        return True

    async def _open_record(self, job: Job) -> None:
        token = job.path_token
        link = await self._find_record_link(token)
        if link is None and await self._narrow_listing(job):
            link = await self._find_record_link(token)

        target = f"record link {token}"
        if link is None:
            raise ResolutionFailure(target, [
                attempt for attempt in self.resolver.attempts if attempt.target == target
            ])

        try:
            await link.click(timeout=self.settings.strategy_timeout_ms)
        except PlaywrightError as e:
            self.resolver.attempts.append(
                ResolutionAttempt(target=target, candidate="matched record link", succeeded=False, error=str(e))
            )
            raise ResolutionFailure(target, [
                attempt for attempt in self.resolver.attempts if attempt.target == target
            ]) from e
        self.logger.info("Record link clicked", path_token=token)

    async def _find_record_link(self, token: str) -> Optional[Locator]:
        """First visible anchor whose href carries ``token`` as a path segment."""
        target = f"record link {token}"
        selector = f'a[href*="{_css_string(token)}"]'
        anchors = self.page.locator(selector)
        try:
            await anchors.first.wait_for(state="attached", timeout=self.settings.strategy_timeout_ms)
        except PlaywrightError as e:
            self.logger.debug("No candidate record links attached", selector=selector, error=str(e))

        for anchor in await anchors.all():
            href = await anchor.get_attribute("href")
            if token_in_location(href, token) and await anchor.is_visible():
                self.resolver.attempts.append(
                    ResolutionAttempt(target=target, candidate=f"css={selector} href={href!r}", succeeded=True)
                )
                return anchor

        self.resolver.attempts.append(
            ResolutionAttempt(target=target, candidate=f"css={selector}", succeeded=False, error="no matching link")
        )
        self.logger.info("No record link on listing", path_token=token)
        return None

    async def _narrow_listing(self, job: Job) -> bool:
        """Type into the listing's search box to bring the record into view."""
        term = job.search_text or job.path_token
        try:
            resolution = await self.resolver.fill("listing search", [
                Candidate.by_role("searchbox"),
                Candidate.by_css('input[type="search"]'),
                Candidate.by_css('input[placeholder*="search" i]'),
            ], term)
        except ResolutionFailure:
            return False

        try:
            await resolution.locator.press("Enter")
        except PlaywrightError as e:
            self.logger.debug("Search submit key rejected", error=str(e))
        await wait_for_settle(self.page, self.settings.settle_timeout_ms)
        self.logger.info("Listing narrowed by search", term=term)
        return True

    def _record(self, action: str, url: str) -> None:
        self.navigation_history.append({
            "action": action,
            "url": url,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    def get_navigation_history(self) -> List[Dict[str, Any]]:
        """Get the navigation history for this run."""
        return self.navigation_history.copy()
