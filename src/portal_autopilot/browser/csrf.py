"""Double-submit CSRF token bridging between cookies, the DOM and the wire."""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlparse

from playwright.async_api import BrowserContext, Page, Request, Route

from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)

INJECT_SCRIPT = """
([fieldNames, value]) => {
    const password = document.querySelector('input[type="password"]');
    const form = (password && password.form) || document.querySelector('form');
    if (!form) {
        return false;
    }
    for (const name of fieldNames) {
        if (form.querySelector(`input[name="${name}"]`)) {
            continue;
        }
        const input = document.createElement('input');
        input.type = 'hidden';
        input.name = name;
        input.value = value;
        form.appendChild(input);
    }
    return true;
}
"""


@dataclass(frozen=True)
class SecurityToken:
    """A CSRF token harvested from a session cookie."""
    cookie_name: str
    value: str


def augment_body(
    body: Optional[str],
    content_type: str,
    field_names: Iterable[str],
    token_value: str,
) -> Optional[str]:
    """
    Append the token to a submission body under every missing field name.

    Args:
        body: Original request body
        content_type: Request content type
        field_names: Conventional token field names
        token_value: Token value to add

    Returns:
        The rewritten body, or None when the body needs no change or its
        content type is not supported
    """
    content_type = (content_type or "").lower()
    names = list(field_names)

    if "application/x-www-form-urlencoded" in content_type or (not content_type and body is not None):
        pairs: List[Tuple[str, str]] = parse_qsl(body or "", keep_blank_values=True)
        present = {name for name, _ in pairs}
        missing = [name for name in names if name not in present]
        if not missing:
            return None
        pairs.extend((name, token_value) for name in missing)
        return urlencode(pairs)

    if "application/json" in content_type:
        try:
            payload: Any = json.loads(body or "{}")
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        missing = [name for name in names if name not in payload]
        if not missing:
            return None
        for name in missing:
            payload[name] = token_value
        return json.dumps(payload)

    return None


class CsrfBridge:
    """
    Satisfy a double-submit-cookie defense at both the DOM and wire layers.

    The token is read from the session cookies, mirrored into a hidden
    field on the authentication form and appended to the intercepted
    submission body when the page did not send it.
    """

    def __init__(self, cookie_names: Iterable[str], field_names: Iterable[str]):
        self.cookie_names = [name.lower() for name in cookie_names]
        self.field_names = list(field_names)
        self.logger = logger.bind(component="csrf_bridge")
        self._route: Optional[Tuple[Pattern[str], Any]] = None

    async def harvest(self, context: BrowserContext) -> Optional[SecurityToken]:
        """Return the first cookie whose name is a known token name."""
        cookies: List[Dict[str, Any]] = await context.cookies()
        for cookie in cookies:
            name = cookie.get("name", "")
            if name.lower() in self.cookie_names and cookie.get("value"):
                token = SecurityToken(cookie_name=name, value=unquote(cookie["value"]))
                self.logger.info("CSRF token harvested", cookie=name)
                return token

        self.logger.warning(
            "No CSRF token cookie found, continuing with degraded confidence",
            looked_for=self.cookie_names,
            cookies_seen=[cookie.get("name") for cookie in cookies]
        )
        return None

    async def inject(self, page: Page, token: SecurityToken) -> bool:
        """Ensure the authentication form carries the token as a hidden field."""
        injected = await page.evaluate(INJECT_SCRIPT, [self.field_names, token.value])
        if injected:
            self.logger.debug("CSRF token present on form", fields=self.field_names)
        else:
            self.logger.warning("No form found for CSRF token injection")
        return bool(injected)

    def augment_submission(self, body: Optional[str], content_type: str, token: SecurityToken) -> Optional[str]:
        return augment_body(body, content_type, self.field_names, token.value)

    async def install(self, page: Page, token: SecurityToken, entry_url: str) -> None:
        """Intercept POST submissions to the entry origin and add the token to their body."""
        parsed = urlparse(entry_url)
        url_pattern = re.compile("^" + re.escape(f"{parsed.scheme}://{parsed.netloc}") + "(/|$)")

        async def _handle(route: Route, request: Request) -> None:
            if request.method != "POST":
                await route.continue_()
                return

            headers = dict(request.headers)
            content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
            body = self.augment_submission(request.post_data, content_type, token)
            if body is None:
                await route.continue_()
                return

            headers = {k: v for k, v in headers.items() if k.lower() != "content-length"}
            headers["content-length"] = str(len(body.encode("utf-8")))
            self.logger.info("CSRF token added to submission", url=request.url)
            await route.continue_(post_data=body, headers=headers)

        await page.route(url_pattern, _handle)
        self._route = (url_pattern, _handle)

    async def uninstall(self, page: Page) -> None:
        if self._route is None:
            return
        url_pattern, handler = self._route
        self._route = None
        await page.unroute(url_pattern, handler)
