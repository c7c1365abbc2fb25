"""Authentication and session-validity tracking."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError, Page

from portal_autopilot.browser.agent import wait_for_settle
from portal_autopilot.browser.csrf import CsrfBridge
from portal_autopilot.browser.diagnostics import DiagnosticCapture
from portal_autopilot.browser.locators import Candidate, LocatorResolver, pattern
from portal_autopilot.config import Settings
from portal_autopilot.core.errors import AuthenticationFailure, ResolutionFailure, SessionInvalidationLoop
from portal_autopilot.core.models import SoftWarning
from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Lifecycle of the authenticated session."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    INVALIDATED = "invalidated"
    REAUTHENTICATING = "reauthenticating"
    FATAL = "fatal"


@dataclass
class Session:
    """The run's single authenticated identity."""
    username: str
    state: SessionState = SessionState.UNAUTHENTICATED
    authenticated_at: Optional[datetime] = None
    reauthentications: int = 0
    consecutive_invalidations: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED


def _path(url: str) -> str:
    return urlparse(url or "").path.rstrip("/") or "/"


class SessionManager:
    """
    Log in and keep the session valid for the rest of the run.

    The remote system may expire the session at any time; this shows up as
    a redirect back to the entry point. ``assert_authenticated`` detects it
    and logs in again once. A second invalidation with no successful check
    in between is fatal, which bounds re-login loops.
    """

    MAX_CONSECUTIVE_INVALIDATIONS = 2

    def __init__(
        self,
        page: Page,
        settings: Settings,
        resolver: LocatorResolver,
        csrf: CsrfBridge,
        diagnostics: DiagnosticCapture,
    ):
        settings.require_login()
        self.page = page
        self.settings = settings
        self.resolver = resolver
        self.csrf = csrf
        self.diagnostics = diagnostics
        self.session = Session(username=settings.login_username)
        self.warnings: List[SoftWarning] = []
        self.logger = logger.bind(component="session_manager", username=settings.login_username)

        self._entry_url = urlparse(settings.login_url)
        self._entry_path = _path(settings.login_url)
        self._login_pattern = re.compile(settings.login_path_pattern) if settings.login_path_pattern else None

    def is_entry_point(self, url: str) -> bool:
        """Whether ``url`` is the login surface."""
        path = _path(url)
        if self._login_pattern is not None and self._login_pattern.search(path):
            return True
        parsed = urlparse(url or "")
        if parsed.netloc and parsed.netloc != self._entry_url.netloc:
            return False
        return path == self._entry_path

    async def authenticate(self) -> Session:
        """
        Log in from the entry point.

        Raises:
            AuthenticationFailure: credentials rejected or the form could not be operated
        """
        self._transition(SessionState.AUTHENTICATING)
        try:
            if not await self._login():
                raise AuthenticationFailure(
                    f"Still at the entry point after submitting credentials ({self.page.url})"
                )
            await self._wait_until_ready()
        except AuthenticationFailure:
            self._transition(SessionState.FATAL)
            await self.diagnostics.capture("authentication-failure")
            raise

        self._mark_authenticated()
        return self.session

    async def assert_authenticated(self, label: str) -> Session:
        """
        Prove the session is still authenticated, logging in again once if not.

        Args:
            label: Where in the flow the check happens, for logs and diagnostics

        Raises:
            SessionInvalidationLoop: second consecutive invalidation
            AuthenticationFailure: re-authentication could not be performed
        """
        url = self.page.url
        if not self.is_entry_point(url):
            self.session.consecutive_invalidations = 0
            if self.session.state != SessionState.AUTHENTICATED:
                self._mark_authenticated()
            self.logger.debug("Session still authenticated", label=label, url=url)
            return self.session

        self.session.consecutive_invalidations += 1
        self._transition(SessionState.INVALIDATED)
        self.logger.warning(
            "Session invalidated",
            label=label,
            url=url,
            consecutive=self.session.consecutive_invalidations
        )

        if self.session.consecutive_invalidations >= self.MAX_CONSECUTIVE_INVALIDATIONS:
            self._transition(SessionState.FATAL)
            await self.diagnostics.capture(f"session-loop-{label}")
            raise SessionInvalidationLoop(
                f"Session invalidated {self.session.consecutive_invalidations} times in a row at {label!r}"
            )

        self._transition(SessionState.REAUTHENTICATING)
        self.session.reauthentications += 1
        try:
            if await self._login():
                await self._wait_until_ready()
        except AuthenticationFailure:
            self._transition(SessionState.FATAL)
            await self.diagnostics.capture(f"reauthentication-failure-{label}")
            raise

        return await self.assert_authenticated(label)

    async def _login(self) -> bool:
        """Fill and submit the login form; return whether the entry point was left."""
        s = self.settings
        self.logger.info("Opening entry point", url=s.login_url)
        await self.page.goto(s.login_url, wait_until="domcontentloaded")

        try:
            await self.resolver.fill("username", [
                Candidate.by_css(s.username_selector, timeout_ms=s.login_field_timeout_ms),
                Candidate.by_label(pattern(r"user\s*name|e-?mail"), exact=False),
                Candidate.by_css('input[name="username"]'),
                Candidate.by_css('input[type="email"]'),
            ], s.login_username)
            await self.resolver.fill("password", [
                Candidate.by_css(s.password_selector),
                Candidate.by_css('input[name="password"]'),
                Candidate.by_css('input[type="password"]'),
            ], s.login_password)
        except ResolutionFailure as e:
            raise AuthenticationFailure(f"Could not locate the {e.target} field") from e

        await self._fill_optional_controls()

        token = await self.csrf.harvest(self.page.context)
        if token is not None:
            await self.csrf.inject(self.page, token)
            await self.csrf.install(self.page, token, s.login_url)
        elif s.csrf_required:
            raise AuthenticationFailure("No CSRF token cookie found and CSRF_REQUIRED is set")
        else:
            self._warn("csrf", "No CSRF token found; submitting without it")

        try:
            await self.resolver.click("login submit", [
                Candidate.override(s.login_submit_selector),
                Candidate.by_role("button", pattern(r"log\s*in")),
                Candidate.by_css('button[type="submit"]'),
                Candidate.by_css('input[type="submit"]'),
                Candidate.by_text(pattern(r"^\s*Login\s*$")),
                Candidate.by_text(pattern(r"sign\s*in")),
            ])
            await wait_for_settle(self.page, s.settle_timeout_ms)
        except ResolutionFailure as e:
            raise AuthenticationFailure("Could not find the login submit control") from e
        finally:
            await self.csrf.uninstall(self.page)

        landed = not self.is_entry_point(self.page.url)
        self.logger.info("Login submitted", url=self.page.url, left_entry_point=landed)
        return landed

    async def _fill_optional_controls(self) -> None:
        s = self.settings

        if s.workplace:
            try:
                await self.resolver.select("workplace", [
                    Candidate.by_label("Work Place"),
                    Candidate.by_css("select"),
                ], s.workplace)
            except ResolutionFailure:
                self._warn("workplace", f"Could not set Work Place to {s.workplace!r}")

        if s.desk_number:
            try:
                await self.resolver.fill("desk number", [
                    Candidate.by_label("Desk Number"),
                    Candidate.by_css('input[name*="desk" i]'),
                ], s.desk_number)
            except ResolutionFailure:
                self._warn("desk_number", "Could not fill Desk Number")

        want = s.remember_me_flag
        if want is not None:
            try:
                resolution = await self.resolver.find("remember me", [
                    Candidate.by_label("Remember Me"),
                    Candidate.by_role("checkbox", pattern("remember")),
                ])
                checkbox = resolution.locator
                checked = await checkbox.is_checked()
                if want and not checked:
                    await checkbox.check()
                elif not want and checked:
                    await checkbox.uncheck()
            except (ResolutionFailure, PlaywrightError):
                self._warn("remember_me", "Remember Me checkbox not found")

    async def _wait_until_ready(self) -> None:
        selector = self.settings.post_login_ready_selector
        if not selector:
            return
        try:
            await self.page.locator(selector).first.wait_for(
                state="visible", timeout=self.settings.confirm_timeout_ms
            )
        except PlaywrightError as e:
            raise AuthenticationFailure(f"Post-login marker {selector!r} never appeared") from e

    def _mark_authenticated(self) -> None:
        self.session.state = SessionState.AUTHENTICATED
        self.session.authenticated_at = datetime.now(timezone.utc)
        self.session.consecutive_invalidations = 0
        self.logger.info("Authenticated", url=self.page.url, reauthentications=self.session.reauthentications)

    def _transition(self, state: SessionState) -> None:
        self.logger.debug("Session state change", previous=self.session.state.value, state=state.value)
        self.session.state = state

    def _warn(self, subject: str, message: str) -> None:
        self.warnings.append(SoftWarning(subject=subject, message=message))
        self.logger.warning(message, subject=subject)
