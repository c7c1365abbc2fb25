"""
Portal Autopilot: resilient batch form submission for authenticated web portals.

This package logs in to a third-party web application once, walks its own
menus and listings to each target record, fills and submits the record form,
and keeps going past per-record failures, capturing diagnostics as it goes.
"""

__version__ = "0.1.0"

from portal_autopilot.browser.agent import BrowserAgent
from portal_autopilot.browser.session import SessionManager
from portal_autopilot.core.models import Job, Outcome, RunReport
from portal_autopilot.core.orchestrator import BatchOrchestrator, run_batch

__all__ = [
    "BrowserAgent",
    "SessionManager",
    "Job",
    "Outcome",
    "RunReport",
    "BatchOrchestrator",
    "run_batch",
]
