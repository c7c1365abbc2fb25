"""Form filling for the record form, tolerant of heterogeneous controls."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, Locator, Page

from portal_autopilot.browser.agent import wait_for_settle
from portal_autopilot.browser.locators import Candidate, LocatorResolver, pattern
from portal_autopilot.config import Settings
from portal_autopilot.core.errors import ResolutionFailure
from portal_autopilot.core.models import FieldKind, FieldSpec, FieldValue, FormDefinition, SoftWarning
from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)

CONFIRM_CHOICE_SCRIPT = """
(el, value) => {
    const norm = s => (s || '').trim().toLowerCase();
    const want = norm(value);
    if (el instanceof HTMLSelectElement) {
        return Array.from(el.selectedOptions).some(o => norm(o.text) === want);
    }
    if (el.getAttribute('aria-selected') === 'true' || el.getAttribute('aria-checked') === 'true') {
        return true;
    }
    return ['selected', 'active', 'checked'].some(c => el.classList.contains(c));
}
"""

LISTBOX = Candidate.by_css('[role="listbox"]')
TRANSFER_TIMEOUT_MS = 2000
CONFIRM_READ_FLOOR_MS = 50


@dataclass
class FillResult:
    """What happened to each field of one fill pass."""
    filled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: List[SoftWarning] = field(default_factory=list)
    selections: Dict[str, List[str]] = field(default_factory=dict)


class FormFillEngine:
    """
    Open, fill and submit the record form.

    Each logical field is dispatched on its declared kind to a handler that
    builds the candidate list for that control family and resolves it
    through the shared LocatorResolver.
    """

    def __init__(self, page: Page, settings: Settings, resolver: LocatorResolver, form: FormDefinition):
        self.page = page
        self.settings = settings
        self.resolver = resolver
        self.form = form
        self.logger = logger.bind(component="form_fill_engine")

    async def open_form(self) -> List[SoftWarning]:
        """
        Click the record's form button and wait for the form to show.

        Raises:
            ResolutionFailure: the open button could not be found
        """
        name = pattern(self.form.open_button)
        await self.resolver.click("form open button", [
            Candidate.override(self.form.open_override),
            Candidate.by_role("button", name),
            Candidate.by_text(name),
        ])

        if await self._wait_for_form():
            return []
        warning = SoftWarning(subject="form", message="Form dialog or submit button not seen after opening")
        self.logger.warning(warning.message)
        return [warning]

    async def _wait_for_form(self) -> bool:
        timeout = self.settings.dialog_timeout_ms
        markers: List[Locator] = [
            self.page.get_by_role("button", name=pattern(self.form.submit_button)).first,
        ]
        if self.form.dialog_name:
            markers.insert(0, self.page.get_by_role("dialog", name=pattern(self.form.dialog_name)).first)

        tasks = [asyncio.ensure_future(m.wait_for(state="visible", timeout=timeout)) for m in markers]
        seen = False
        try:
            pending = set(tasks)
            while pending and not seen:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                seen = any(task.exception() is None for task in done)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return seen

    async def fill(self, field_values: Dict[str, FieldValue]) -> FillResult:
        """
        Populate every supplied field, in form order.

        Unsupplied fields are skipped, never defaulted. A required field that
        cannot be set raises; an optional one produces a SoftWarning.

        Raises:
            ResolutionFailure: a required field could not be set
        """
        result = FillResult()

        for name in field_values:
            if self.form.field(name) is None:
                self._warn(result, name, f"Unknown field {name!r} ignored")

        for spec in self.form.fields:
            value = field_values.get(spec.name)
            if value is None or value == "" or value == []:
                result.skipped.append(spec.name)
                continue

            self.logger.info("Filling field", field=spec.name, kind=spec.kind.value)
            try:
                if spec.kind is FieldKind.MULTI:
                    labels = value if isinstance(value, list) else [value]
                    await self._fill_multi(spec, labels, result)
                elif spec.kind is FieldKind.SINGLE:
                    label = value[0] if isinstance(value, list) else value
                    await self._fill_single(spec, label, result)
                else:
                    text = "\n".join(value) if isinstance(value, list) else value
                    await self._fill_text(spec, text)
            except ResolutionFailure:
                if spec.required:
                    raise
                self._warn(result, spec.name, f"Could not set {spec.label!r}")
                continue

            result.filled.append(spec.name)

        return result

    def _control_candidates(self, spec: FieldSpec) -> List[Optional[Candidate]]:
        return [
            *(Candidate.override(selector) for selector in spec.overrides),
            Candidate.by_label(spec.label, exact=True),
            *(Candidate.by_css(selector) for selector in spec.fallbacks),
        ]

    def _option_candidates(self, label: str) -> List[Candidate]:
        return [
            Candidate.by_role("option", label, exact=True, scope=LISTBOX),
            Candidate.by_text(label, exact=True, scope=LISTBOX),
            Candidate.by_role("option", label, exact=True),
        ]

    async def _fill_single(self, spec: FieldSpec, label: str, result: FillResult) -> None:
        try:
            resolution = await self.resolver.select(
                spec.name,
                self._control_candidates(spec) + [Candidate.by_css("select")],
                label,
            )
        except ResolutionFailure:
            self.logger.info("Native select unavailable, trying listbox option", field=spec.name)
            resolution = await self.resolver.click(f"{spec.name}: {label}", self._option_candidates(label))

        result.selections[spec.name] = [label]
        if not await self._confirm_choice(resolution.locator, label):
            self._warn(result, spec.name, f"{spec.label!r} did not visibly change to {label!r}")

    async def _confirm_choice(self, locator: Locator, label: str) -> bool:
        """Poll the control until it reflects ``label`` or the bound elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.choice_confirm_timeout_ms / 1000
        while True:
            try:
                remaining_ms = (deadline - loop.time()) * 1000
                timeout = max(remaining_ms, CONFIRM_READ_FLOOR_MS)
                if await locator.evaluate(CONFIRM_CHOICE_SCRIPT, label, timeout=timeout):
                    return True
            except PlaywrightError as e:
                self.logger.debug("Choice confirmation read failed", error=str(e))
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.2)

    async def _fill_multi(self, spec: FieldSpec, labels: List[str], result: FillResult) -> None:
        try:
            await self.resolver.select(spec.name, self._control_candidates(spec), labels)
            result.selections[spec.name] = list(labels)
            return
        except ResolutionFailure:
            self.logger.info("Bulk selection unavailable, selecting item by item", field=spec.name)

        selected: List[str] = []
        for label in labels:
            try:
                await self.resolver.click(f"{spec.name}: {label}", self._option_candidates(label))
            except ResolutionFailure:
                self._warn(result, spec.name, f"Option {label!r} not found for {spec.label!r}")
                continue
            await self._transfer(spec)
            selected.append(label)

        result.selections[spec.name] = selected
        if not selected:
            raise ResolutionFailure(spec.name, [
                attempt for attempt in self.resolver.attempts if attempt.target.startswith(f"{spec.name}: ")
            ])

    async def _transfer(self, spec: FieldSpec) -> None:
        """Move a highlighted item into the selected list of a dual-list widget."""
        try:
            await self.resolver.click(f"{spec.name} transfer", [
                Candidate.by_css('button:text-is(">")', timeout_ms=TRANSFER_TIMEOUT_MS),
                Candidate.by_css('[data-icon="chevron-right"]', timeout_ms=TRANSFER_TIMEOUT_MS),
                Candidate.by_css(".mdi-chevron-right", timeout_ms=TRANSFER_TIMEOUT_MS),
                Candidate.by_css('button:has-text(">")', timeout_ms=TRANSFER_TIMEOUT_MS),
            ])
        except ResolutionFailure:
            self.logger.debug("No transfer control; item selection stands", field=spec.name)

    async def _fill_text(self, spec: FieldSpec, text: str) -> None:
        await self.resolver.fill(spec.name, self._control_candidates(spec), text)

    async def submit(self) -> List[SoftWarning]:
        """
        Submit the form and wait for the optional confirmation.

        Raises:
            ResolutionFailure: the submit control could not be found
        """
        name = pattern(self.form.submit_button)
        await self.resolver.click("form submit", [
            Candidate.override(self.form.submit_override),
            Candidate.by_role("button", name),
            Candidate.by_text(name),
            Candidate.by_css('button[type="submit"]'),
        ])
        await wait_for_settle(self.page, self.settings.settle_timeout_ms)

        confirm = self.form.confirm_selector
        if not confirm:
            return []
        try:
            await self.page.locator(confirm).first.wait_for(
                state="visible", timeout=self.settings.confirm_timeout_ms
            )
        except PlaywrightError:
            warning = SoftWarning(subject="confirmation", message=f"Confirmation {confirm!r} not seen")
            self.logger.warning(warning.message)
            return [warning]
        self.logger.info("Submission confirmed", selector=confirm)
        return []

    def _warn(self, result: FillResult, subject: str, message: str) -> None:
        result.warnings.append(SoftWarning(subject=subject, message=message))
        self.logger.warning(message, field=subject)
