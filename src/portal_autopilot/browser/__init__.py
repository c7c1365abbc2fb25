"""Browser automation components for resilient portal interaction."""

from portal_autopilot.browser.agent import BrowserAgent, create_browser_agent
from portal_autopilot.browser.locators import Candidate, LocatorResolver, StrategyKind
from portal_autopilot.browser.csrf import CsrfBridge, SecurityToken
from portal_autopilot.browser.session import Session, SessionManager, SessionState
from portal_autopilot.browser.navigation import NavigationController
from portal_autopilot.browser.forms import FormFillEngine, FillResult
from portal_autopilot.browser.diagnostics import DiagnosticCapture

__all__ = [
    "BrowserAgent", "create_browser_agent",
    "Candidate", "LocatorResolver", "StrategyKind",
    "CsrfBridge", "SecurityToken",
    "Session", "SessionManager", "SessionState",
    "NavigationController",
    "FormFillEngine", "FillResult",
    "DiagnosticCapture",
]
