"""Cascading locator resolution over ordered candidate strategies."""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Pattern, Sequence, Union

from playwright.async_api import Error as PlaywrightError, Locator, Page

from portal_autopilot.core.errors import ResolutionFailure
from portal_autopilot.core.models import ResolutionAttempt
from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)

Name = Union[str, Pattern[str]]
Action = Callable[[Locator, int], Awaitable[Any]]

READ_VALUE_SCRIPT = """
el => {
    if (el instanceof HTMLSelectElement) {
        const option = el.options[el.selectedIndex];
        return option ? option.text : '';
    }
    if ('value' in el && typeof el.value === 'string') {
        return el.value;
    }
    return (el.innerText || el.textContent || '').trim();
}
"""


def pattern(text: str) -> Pattern[str]:
    """Case-insensitive regex for accessible names and text matches."""
    return re.compile(text, re.IGNORECASE)


class StrategyKind(str, Enum):
    """The ways a logical control can be located."""
    OVERRIDE = "override"
    ROLE = "role"
    LABEL = "label"
    TEXT = "text"
    CSS = "css"


@dataclass(frozen=True)
class Candidate:
    """One locator strategy; candidates are tried in priority order."""
    kind: StrategyKind
    value: Optional[Name] = None
    role: Optional[str] = None
    exact: bool = False
    scope: Optional["Candidate"] = None
    timeout_ms: Optional[int] = None

    @classmethod
    def override(cls, selector: Optional[str], timeout_ms: Optional[int] = None) -> Optional["Candidate"]:
        if not selector:
            return None
        return cls(StrategyKind.OVERRIDE, selector, timeout_ms=timeout_ms)

    @classmethod
    def by_role(
        cls,
        role: str,
        name: Optional[Name] = None,
        exact: bool = False,
        scope: Optional["Candidate"] = None,
        timeout_ms: Optional[int] = None,
    ) -> "Candidate":
        return cls(StrategyKind.ROLE, name, role=role, exact=exact, scope=scope, timeout_ms=timeout_ms)

    @classmethod
    def by_label(cls, label: Name, exact: bool = True, timeout_ms: Optional[int] = None) -> "Candidate":
        return cls(StrategyKind.LABEL, label, exact=exact, timeout_ms=timeout_ms)

    @classmethod
    def by_text(
        cls,
        text: Name,
        exact: bool = False,
        scope: Optional["Candidate"] = None,
        timeout_ms: Optional[int] = None,
    ) -> "Candidate":
        return cls(StrategyKind.TEXT, text, exact=exact, scope=scope, timeout_ms=timeout_ms)

    @classmethod
    def by_css(
        cls,
        selector: str,
        scope: Optional["Candidate"] = None,
        timeout_ms: Optional[int] = None,
    ) -> "Candidate":
        return cls(StrategyKind.CSS, selector, scope=scope, timeout_ms=timeout_ms)

    def locate(self, root: Union[Page, Locator]) -> Locator:
        """Build the (lazy) locator for this strategy under ``root``."""
        if self.scope is not None:
            root = self.scope.locate(root)

        if self.kind is StrategyKind.ROLE:
            options = {}
            if self.value is not None:
                options["name"] = self.value
                options["exact"] = self.exact
            return root.get_by_role(self.role, **options)
        if self.kind is StrategyKind.LABEL:
            return root.get_by_label(self.value, exact=self.exact)
        if self.kind is StrategyKind.TEXT:
            return root.get_by_text(self.value, exact=self.exact)
        return root.locator(self.value)

    def describe(self) -> str:
        value = self.value
        if isinstance(value, re.Pattern):
            value = f"/{value.pattern}/"
        elif value is not None:
            value = repr(value)

        if self.kind is StrategyKind.ROLE:
            text = f"role={self.role}" + (f" name={value}" if value is not None else "")
        else:
            text = f"{self.kind.value}={value}"
        if self.scope is not None:
            text = f"{self.scope.describe()} >> {text}"
        return text


@dataclass
class Resolution:
    """A successfully resolved control and the result of its terminal action."""
    target: str
    candidate: Candidate
    locator: Locator
    result: Any = None


class LocatorResolver:
    """
    Resolve logical UI targets to concrete controls.

    Candidates are tried strictly in declared order, except that overrides
    always go first. Each attempt waits for the control to become visible
    within its own timeout and then performs the terminal action; any
    driver error moves on to the next candidate. Every attempt is recorded
    in ``attempts``.
    """

    def __init__(self, page: Page, default_timeout_ms: int = 5000):
        self.page = page
        self.default_timeout_ms = default_timeout_ms
        self.attempts: List[ResolutionAttempt] = []
        self.logger = logger.bind(component="locator_resolver")

    @staticmethod
    def order(candidates: Iterable[Optional[Candidate]]) -> List[Candidate]:
        present = [c for c in candidates if c is not None]
        overrides = [c for c in present if c.kind is StrategyKind.OVERRIDE]
        return overrides + [c for c in present if c.kind is not StrategyKind.OVERRIDE]

    async def resolve(
        self,
        target: str,
        candidates: Sequence[Optional[Candidate]],
        action: Optional[Action] = None,
        root: Optional[Union[Page, Locator]] = None,
    ) -> Resolution:
        attempts: List[ResolutionAttempt] = []

        for candidate in self.order(candidates):
            timeout = candidate.timeout_ms or self.default_timeout_ms
            description = candidate.describe()
            try:
                locator = candidate.locate(root if root is not None else self.page).first
                await locator.wait_for(state="visible", timeout=timeout)
                result = await action(locator, timeout) if action else None
            except (PlaywrightError, asyncio.TimeoutError) as e:
                attempt = ResolutionAttempt(
                    target=target, candidate=description, succeeded=False, error=_summarize(e)
                )
                attempts.append(attempt)
                self.attempts.append(attempt)
                self.logger.debug("Candidate failed", target=target, candidate=description, error=attempt.error)
                continue

            attempt = ResolutionAttempt(target=target, candidate=description, succeeded=True)
            attempts.append(attempt)
            self.attempts.append(attempt)
            self.logger.info("Resolved control", target=target, candidate=description, tried=len(attempts))
            return Resolution(target=target, candidate=candidate, locator=locator, result=result)

        self.logger.warning("All candidates exhausted", target=target, tried=len(attempts))
        raise ResolutionFailure(target, attempts)

    async def find(self, target: str, candidates: Sequence[Optional[Candidate]]) -> Resolution:
        return await self.resolve(target, candidates)

    async def click(self, target: str, candidates: Sequence[Optional[Candidate]]) -> Resolution:
        async def _click(locator: Locator, timeout: int) -> None:
            await locator.click(timeout=timeout)

        return await self.resolve(target, candidates, _click)

    async def fill(self, target: str, candidates: Sequence[Optional[Candidate]], value: str) -> Resolution:
        async def _fill(locator: Locator, timeout: int) -> None:
            await locator.fill(value, timeout=timeout)

        return await self.resolve(target, candidates, _fill)

    async def select(
        self,
        target: str,
        candidates: Sequence[Optional[Candidate]],
        labels: Union[str, List[str]],
    ) -> Resolution:
        async def _select(locator: Locator, timeout: int) -> List[str]:
            return await locator.select_option(label=labels, timeout=timeout)

        return await self.resolve(target, candidates, _select)

    async def read_value(self, target: str, candidates: Sequence[Optional[Candidate]]) -> str:
        async def _read(locator: Locator, timeout: int) -> str:
            return await locator.evaluate(READ_VALUE_SCRIPT, timeout=timeout)

        resolution = await self.resolve(target, candidates, _read)
        return resolution.result or ""


def _summarize(error: BaseException) -> str:
    message = str(error).strip().splitlines()
    return f"{type(error).__name__}: {message[0] if message else ''}"
