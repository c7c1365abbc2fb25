"""Tests for the record form filling engine."""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from portal_autopilot.browser.forms import FormFillEngine
from portal_autopilot.browser.locators import LocatorResolver
from portal_autopilot.core.errors import ResolutionFailure
from portal_autopilot.core.models import FieldKind, FieldSpec, FormDefinition

from conftest import FakeLocator


def make_engine(page, settings, form=None) -> FormFillEngine:
    resolver = LocatorResolver(page, default_timeout_ms=settings.strategy_timeout_ms)
    return FormFillEngine(page, settings, resolver, form or FormDefinition())


def install_listbox(page, *labels, confirmed=True):
    listbox = page.add("css", '[role="listbox"]', FakeLocator("listbox"))
    options = {}
    for label in labels:
        options[label] = listbox.add_role("option", label, FakeLocator(f"option {label}", confirmed=confirmed))
    return options


class StalledOption(FakeLocator):
    """An option whose state reads hang until the caller's timeout expires."""

    def __init__(self, name):
        super().__init__(name)
        self.timeouts = []

    async def evaluate(self, script, arg=None, timeout=None):
        self.timeouts.append(timeout)
        await asyncio.sleep((timeout or 30000) / 1000)
        raise PlaywrightTimeoutError(f"{self.name}: evaluate timed out")


class TestOpenAndSubmit:
    """Test cases for opening and submitting the form."""

    @pytest.mark.asyncio
    async def test_open_form_waits_for_dialog(self, page, settings):
        button = page.add_role("button", r"call\s*log", FakeLocator("open", tag="BUTTON"))
        page.add_role("dialog", r"call\s*log", FakeLocator("dialog", tag="DIV"))
        engine = make_engine(page, settings)

        assert await engine.open_form() == []
        assert button.called("click")

    @pytest.mark.asyncio
    async def test_open_form_accepts_submit_button_as_marker(self, page, settings):
        page.add_role("button", r"call\s*log", FakeLocator("open", tag="BUTTON"))
        page.add_role("button", r"submit details", FakeLocator("submit", tag="BUTTON"))
        engine = make_engine(page, settings)

        assert await engine.open_form() == []

    @pytest.mark.asyncio
    async def test_open_form_without_marker_warns(self, page, settings):
        page.add_role("button", r"call\s*log", FakeLocator("open", tag="BUTTON"))
        engine = make_engine(page, settings)

        warnings = await engine.open_form()

        assert [w.subject for w in warnings] == ["form"]

    @pytest.mark.asyncio
    async def test_open_override_wins(self, page, settings):
        override = page.add("css", "#open-call-log", FakeLocator("override", tag="BUTTON"))
        default = page.add_role("button", r"call\s*log", FakeLocator("open", tag="BUTTON"))
        page.add_role("dialog", r"call\s*log", FakeLocator("dialog", tag="DIV"))
        engine = make_engine(page, settings, FormDefinition(open_override="#open-call-log"))

        await engine.open_form()

        assert override.called("click")
        assert default.calls == []

    @pytest.mark.asyncio
    async def test_missing_open_button_raises(self, page, settings):
        engine = make_engine(page, settings)

        with pytest.raises(ResolutionFailure) as info:
            await engine.open_form()

        assert info.value.target == "form open button"

    @pytest.mark.asyncio
    async def test_submit_with_confirmation(self, page, settings):
        submit = page.add_role("button", r"submit details", FakeLocator("submit", tag="BUTTON"))
        page.add("css", ".alert-success", FakeLocator("confirm", tag="DIV"))
        engine = make_engine(page, settings, FormDefinition(confirm_selector=".alert-success"))

        assert await engine.submit() == []
        assert submit.called("click")

    @pytest.mark.asyncio
    async def test_unseen_confirmation_is_soft(self, page, settings):
        page.add_role("button", r"submit details", FakeLocator("submit", tag="BUTTON"))
        engine = make_engine(page, settings, FormDefinition(confirm_selector=".alert-success"))

        warnings = await engine.submit()

        assert [w.subject for w in warnings] == ["confirmation"]

    @pytest.mark.asyncio
    async def test_submit_falls_back_to_submit_type(self, page, settings):
        generic = page.add("css", 'button[type="submit"]', FakeLocator("generic", tag="BUTTON"))
        engine = make_engine(page, settings)

        assert await engine.submit() == []
        assert generic.called("click")


class TestFill:
    """Test cases for filling the form fields."""

    @pytest.mark.asyncio
    async def test_unsupplied_fields_are_skipped(self, page, settings):
        comm_type = page.add("label", "Communication Type",
                             FakeLocator("comm type", tag="SELECT", options=["Phone", "Email"]))
        call_type = page.add("label", "Call", FakeLocator("call", tag="SELECT"))
        comments = page.add("label", "Comments", FakeLocator("comments", tag="TEXTAREA"))
        engine = make_engine(page, settings)

        result = await engine.fill({"communication_type": "Phone", "comments": "Left a voicemail"})

        assert result.filled == ["communication_type", "comments"]
        assert result.skipped == ["communicate_with_client", "call_type"]
        assert result.warnings == []
        assert comm_type.selected == ["Phone"]
        assert comments.value == "Left a voicemail"
        assert call_type.calls == []

    @pytest.mark.asyncio
    async def test_single_choice_falls_back_to_listbox(self, page, settings):
        page.add("label", "Communication Type", FakeLocator("combo", tag="INPUT"))
        options = install_listbox(page, "Phone")
        engine = make_engine(page, settings)

        result = await engine.fill({"communication_type": "Phone"})

        assert options["Phone"].called("click")
        assert result.selections["communication_type"] == ["Phone"]
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_unconfirmed_choice_warns(self, page, settings):
        page.add("label", "Communication Type", FakeLocator("combo", tag="INPUT"))
        install_listbox(page, "Phone", confirmed=False)
        engine = make_engine(page, settings)

        result = await engine.fill({"communication_type": "Phone"})

        assert result.filled == ["communication_type"]
        assert [w.subject for w in result.warnings] == ["communication_type"]

    @pytest.mark.asyncio
    async def test_multi_select_native(self, page, settings):
        control = page.add("label", "Communicate With Client",
                           FakeLocator("multi", tag="SELECT", options=["A", "B"]))
        engine = make_engine(page, settings)

        result = await engine.fill({"communicate_with_client": ["A", "B"]})

        assert control.selected == ["A", "B"]
        assert result.selections["communicate_with_client"] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_multi_select_item_by_item(self, page, settings):
        page.add("label", "Communicate With Client", FakeLocator("dual list", tag="DIV"))
        options = install_listbox(page, "A", "B")
        transfer = page.add("css", 'button:text-is(">")', FakeLocator("transfer", tag="BUTTON"))
        engine = make_engine(page, settings)

        result = await engine.fill({"communicate_with_client": ["A", "B", "missing"]})

        assert options["A"].called("click")
        assert options["B"].called("click")
        assert [name for name, _ in transfer.calls].count("click") == 2
        assert result.selections["communicate_with_client"] == ["A", "B"]
        assert result.filled == ["communicate_with_client"]
        assert len(result.warnings) == 1
        assert "'missing'" in result.warnings[0].message

    @pytest.mark.asyncio
    async def test_transfer_prefers_exact_single_arrow(self, page, settings):
        page.add("label", "Communicate With Client", FakeLocator("dual list", tag="DIV"))
        install_listbox(page, "A")
        single = page.add("css", 'button:text-is(">")', FakeLocator("move one", tag="BUTTON"))
        move_all = page.add("css", 'button:has-text(">")', FakeLocator("move all", tag="BUTTON"))
        engine = make_engine(page, settings)

        result = await engine.fill({"communicate_with_client": ["A"]})

        assert single.called("click")
        assert move_all.calls == []
        assert result.selections["communicate_with_client"] == ["A"]

    @pytest.mark.asyncio
    async def test_stalled_confirmation_read_is_bounded(self, page, settings):
        page.add("label", "Communication Type", FakeLocator("combo", tag="INPUT"))
        listbox = page.add("css", '[role="listbox"]', FakeLocator("listbox"))
        option = listbox.add_role("option", "Phone", StalledOption("option Phone"))
        engine = make_engine(page, settings)

        result = await asyncio.wait_for(engine.fill({"communication_type": "Phone"}), timeout=2)

        assert option.timeouts
        assert all(timeout <= settings.choice_confirm_timeout_ms for timeout in option.timeouts)
        assert [w.subject for w in result.warnings] == ["communication_type"]

    @pytest.mark.asyncio
    async def test_multi_select_nothing_found(self, page, settings):
        engine = make_engine(page, settings)

        result = await engine.fill({"communicate_with_client": ["A"]})

        assert result.filled == []
        assert [w.subject for w in result.warnings] == ["communicate_with_client", "communicate_with_client"]

    @pytest.mark.asyncio
    async def test_required_field_failure_raises(self, page, settings):
        form = FormDefinition(fields=[
            FieldSpec(name="outcome", label="Outcome", kind=FieldKind.SINGLE, required=True),
        ])
        engine = make_engine(page, settings, form)

        with pytest.raises(ResolutionFailure):
            await engine.fill({"outcome": "Reached"})

    @pytest.mark.asyncio
    async def test_text_fallbacks(self, page, settings):
        textarea = page.add("css", "textarea", FakeLocator("textarea", tag="TEXTAREA"))
        engine = make_engine(page, settings)

        result = await engine.fill({"comments": "Called back"})

        assert textarea.value == "Called back"
        assert result.filled == ["comments"]

    @pytest.mark.asyncio
    async def test_field_overrides_tried_first(self, page, settings):
        custom = page.add("css", "#notes", FakeLocator("notes", tag="TEXTAREA"))
        labelled = page.add("label", "Comments", FakeLocator("comments", tag="TEXTAREA"))
        form = FormDefinition(fields=[
            FieldSpec(name="comments", label="Comments", kind=FieldKind.TEXT, overrides=["#notes"]),
        ])
        engine = make_engine(page, settings, form)

        await engine.fill({"comments": "x"})

        assert custom.value == "x"
        assert labelled.calls == []

    @pytest.mark.asyncio
    async def test_unknown_field_warns(self, page, settings):
        engine = make_engine(page, settings)

        result = await engine.fill({"mood": "happy"})

        assert [w.subject for w in result.warnings] == ["mood"]
        assert result.filled == []
