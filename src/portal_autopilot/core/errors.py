"""Error kinds raised by the automation engine.

Fatal errors unwind the whole run; job-scoped errors are caught by the batch
orchestrator and recorded in the failing job's outcome.
"""

from typing import List, Optional

from portal_autopilot.core.models import FailureKind, ResolutionAttempt


class PortalAutomationError(Exception):
    """Base class for all engine errors."""

    kind: FailureKind = FailureKind.UNEXPECTED
    fatal: bool = False


class ConfigurationError(PortalAutomationError):
    """Mandatory input is missing or invalid."""

    kind = FailureKind.CONFIGURATION
    fatal = True


class AuthenticationFailure(PortalAutomationError):
    """Credentials were rejected or the login form could not be operated."""

    kind = FailureKind.AUTHENTICATION
    fatal = True


class SessionInvalidationLoop(PortalAutomationError):
    """The session was invalidated twice without an authenticated check in between."""

    kind = FailureKind.SESSION_LOOP
    fatal = True


class ResolutionFailure(PortalAutomationError):
    """Every candidate strategy for a required control was exhausted."""

    kind = FailureKind.RESOLUTION

    def __init__(self, target: str, attempts: Optional[List[ResolutionAttempt]] = None):
        self.target = target
        self.attempts = list(attempts or [])
        super().__init__(
            f"Could not resolve {target!r} after {len(self.attempts)} candidate(s)"
        )


class NavigationMismatch(PortalAutomationError):
    """A record link was followed but the page reached is not the target record."""

    kind = FailureKind.NAVIGATION_MISMATCH

    def __init__(self, expected_token: str, actual_url: str):
        self.expected_token = expected_token
        self.actual_url = actual_url
        super().__init__(
            f"Expected a location containing {expected_token!r}, reached {actual_url!r}"
        )
