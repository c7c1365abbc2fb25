"""Shared fixtures: an in-memory stand-in for Playwright pages and locators."""

import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from portal_autopilot.config import Settings


LOGIN_URL = "https://portal.example.com/manager/login"
DASHBOARD_URL = "https://portal.example.com/manager/dashboard"
LISTING_URL = "https://portal.example.com/manager/projects"


def _key(value: Any) -> Any:
    if isinstance(value, re.Pattern):
        return value.pattern
    return value


class FakeRoot:
    """Anything Playwright lets us query under: a page or a locator."""

    def __init__(self):
        self.registry: Dict[Tuple, "FakeLocator"] = {}
        self.queries: List[Tuple] = []

    def add(self, kind: str, key: Any, locator: "FakeLocator") -> "FakeLocator":
        self.registry[(kind, key)] = locator
        return locator

    def add_role(self, role: str, name: Any, locator: "FakeLocator") -> "FakeLocator":
        return self.add("role", (role, _key(name)), locator)

    def _lookup(self, kind: str, key: Any) -> "FakeLocator":
        self.queries.append((kind, key))
        found = self.registry.get((kind, key))
        if found is None:
            found = FakeLocator(f"missing {kind}={key}", visible=False)
        return found

    def get_by_role(self, role: str, name: Any = None, exact: Optional[bool] = None) -> "FakeLocator":
        return self._lookup("role", (role, _key(name)))

    def get_by_label(self, label: Any, exact: Optional[bool] = None) -> "FakeLocator":
        return self._lookup("label", _key(label))

    def get_by_text(self, text: Any, exact: Optional[bool] = None) -> "FakeLocator":
        return self._lookup("text", _key(text))

    def locator(self, selector: str) -> "FakeLocator":
        return self._lookup("css", selector)


class FakeLocator(FakeRoot):
    """Records every driver call; fails like Playwright when told to."""

    def __init__(
        self,
        name: str = "",
        *,
        visible: bool = True,
        tag: str = "INPUT",
        href: Optional[str] = None,
        checked: bool = False,
        confirmed: bool = True,
        options: Optional[List[str]] = None,
        fail: Tuple[str, ...] = (),
        on_click: Optional[Callable[[], None]] = None,
        items: Optional[List["FakeLocator"]] = None,
        log: Optional[List[str]] = None,
    ):
        super().__init__()
        self.name = name
        self.visible = visible
        self.tag = tag
        self.href = href
        self.checked = checked
        self.confirmed = confirmed
        self.options = options
        self.fail = set(fail)
        self.on_click = on_click
        self.items = items or []
        self.log = log
        self.calls: List[Tuple[str, Any]] = []
        self.value = ""
        self.selected: List[str] = []

    @property
    def first(self) -> "FakeLocator":
        return self

    def _act(self, method: str, arg: Any = None) -> None:
        self.calls.append((method, arg))
        if self.log is not None:
            self.log.append(f"{self.name}:{method}")
        if method in self.fail:
            raise PlaywrightTimeoutError(f"{self.name}: {method} rejected")

    def called(self, method: str) -> bool:
        return any(name == method for name, _ in self.calls)

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        self._act("wait_for", state)
        if state == "visible" and not self.visible:
            raise PlaywrightTimeoutError(f"{self.name}: not visible")
        if state == "attached" and not self.items and not self.visible:
            raise PlaywrightTimeoutError(f"{self.name}: not attached")

    async def click(self, timeout: Optional[float] = None) -> None:
        self._act("click")
        if self.on_click is not None:
            self.on_click()

    async def fill(self, value: str, timeout: Optional[float] = None) -> None:
        self._act("fill", value)
        self.value = value

    async def press(self, key: str) -> None:
        self._act("press", key)

    async def select_option(self, label: Any = None, timeout: Optional[float] = None) -> List[str]:
        self._act("select_option", label)
        labels = label if isinstance(label, list) else [label]
        if self.tag != "SELECT":
            raise PlaywrightTimeoutError(f"{self.name}: element is not a <select>")
        if self.options is not None and any(item not in self.options for item in labels):
            raise PlaywrightTimeoutError(f"{self.name}: option not found")
        self.selected = list(labels)
        return self.selected

    async def evaluate(self, script: str, arg: Any = None, timeout: Optional[float] = None) -> Any:
        self._act("evaluate", arg)
        if "selectedOptions" in script:
            return self.confirmed
        return self.value

    async def is_checked(self) -> bool:
        self._act("is_checked")
        return self.checked

    async def check(self) -> None:
        self._act("check")
        self.checked = True

    async def uncheck(self) -> None:
        self._act("uncheck")
        self.checked = False

    async def get_attribute(self, name: str) -> Optional[str]:
        self._act("get_attribute", name)
        return self.href if name == "href" else None

    async def is_visible(self) -> bool:
        return self.visible

    async def all(self) -> List["FakeLocator"]:
        return list(self.items)


class FakeContext:
    def __init__(self, cookies: Optional[List[Dict[str, Any]]] = None):
        self._cookies = cookies or []

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(self._cookies)


class FakePage(FakeRoot):
    """Page double: tracks the URL and the navigation / capture calls."""

    def __init__(self, url: str = "about:blank", cookies: Optional[List[Dict[str, Any]]] = None):
        super().__init__()
        self.url = url
        self.context = FakeContext(cookies)
        self.visited: List[str] = []
        self.routes: List[Tuple[Any, Any]] = []
        self.unrouted: List[Tuple[Any, Any]] = []
        self.evaluated: List[Tuple[str, Any]] = []
        self.screenshots: List[str] = []
        self.html = "<html><body>fake</body></html>"
        self.fail_content = False
        self.fail_screenshot = False

    async def goto(self, url: str, wait_until: Optional[str] = None) -> None:
        self.visited.append(url)
        self.url = url

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        return None

    async def content(self) -> str:
        if self.fail_content:
            raise PlaywrightTimeoutError("content unavailable")
        return self.html

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> bytes:
        if self.fail_screenshot:
            raise PlaywrightTimeoutError("screenshot failed")
        data = b"\x89PNG fake"
        if path:
            Path(path).write_bytes(data)
            self.screenshots.append(path)
        return data

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        return True

    async def route(self, url: Any, handler: Any) -> None:
        self.routes.append((url, handler))

    async def unroute(self, url: Any, handler: Any = None) -> None:
        self.unrouted.append((url, handler))


def navigate_on_click(page: FakePage, url: str) -> Callable[[], None]:
    def _go() -> None:
        page.url = url
    return _go


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        login_url=LOGIN_URL,
        login_username="agent@example.com",
        login_password="s3cret",
        artifacts_dir=str(tmp_path / "artifacts"),
        strategy_timeout_ms=50,
        login_field_timeout_ms=50,
        settle_timeout_ms=50,
        dialog_timeout_ms=50,
        confirm_timeout_ms=50,
        choice_confirm_timeout_ms=50,
    )


@pytest.fixture
def page() -> FakePage:
    return FakePage()


def install_login_form(page: FakePage, lands_on: Optional[str] = DASHBOARD_URL) -> Dict[str, FakeLocator]:
    """Username, password and a submit button that (optionally) leaves the login page."""
    controls = {
        "username": page.add("css", "#username", FakeLocator("username")),
        "password": page.add("css", "#password", FakeLocator("password")),
        "submit": page.add_role(
            "button", r"log\s*in",
            FakeLocator("login", tag="BUTTON", on_click=navigate_on_click(page, lands_on) if lands_on else None),
        ),
    }
    return controls
