"""Batch orchestration: one session, an ordered queue of isolated jobs."""

from datetime import datetime, timezone
from typing import List, Optional

import structlog

from portal_autopilot.browser.agent import BrowserAgent
from portal_autopilot.browser.csrf import CsrfBridge
from portal_autopilot.browser.diagnostics import DiagnosticCapture
from portal_autopilot.browser.forms import FormFillEngine
from portal_autopilot.browser.locators import LocatorResolver
from portal_autopilot.browser.navigation import NavigationController
from portal_autopilot.browser.session import SessionManager
from portal_autopilot.config import Settings
from portal_autopilot.core.errors import PortalAutomationError
from portal_autopilot.core.jobs import validate_jobs
from portal_autopilot.core.models import (
    FailureKind,
    FormDefinition,
    Job,
    Outcome,
    OutcomeStatus,
    RunReport,
    SoftWarning,
)
from portal_autopilot.utils.logging import get_logger, log_job_context

logger = get_logger(__name__)


class BatchOrchestrator:
    """
    Drive the session once, then every job in order.

    Each job runs inside an isolation boundary: any job-scoped error is
    captured, turned into that job's failure Outcome, and the next job is
    attempted. Fatal errors (authentication, re-login loop) unwind the
    whole run.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        navigator: NavigationController,
        form_engine: FormFillEngine,
        diagnostics: DiagnosticCapture,
        form: FormDefinition,
    ):
        self.session_manager = session_manager
        self.navigator = navigator
        self.form_engine = form_engine
        self.diagnostics = diagnostics
        self.form = form
        self.report = RunReport()
        self.logger = logger.bind(component="batch_orchestrator")

    async def run(self, jobs: List[Job]) -> RunReport:
        """
        Process the queue and return the run report.

        Raises:
            ConfigurationError: invalid job input, before any session work
            AuthenticationFailure: login failed
            SessionInvalidationLoop: the session kept getting invalidated
        """
        validate_jobs(jobs, self.form)
        self.report = RunReport()
        self.logger.info("Batch starting", jobs=len(jobs))

        try:
            await self.session_manager.authenticate()
            self.report.warnings.extend(self.session_manager.warnings)
            for ordinal, job in enumerate(jobs, start=1):
                await self._run_job(ordinal, job)
        except PortalAutomationError as e:
            self.report.aborted = f"{e.kind.value}: {e}"
            for ordinal, job in enumerate(jobs, start=1):
                if job.outcome is None:
                    self._record(job, Outcome(
                        job_id=job.id,
                        ordinal=ordinal,
                        status=OutcomeStatus.FAILURE,
                        failure_kind=e.kind,
                        error_summary="Not attempted: run aborted",
                    ))
            self.logger.error("Batch aborted", kind=e.kind.value, error=str(e))
            raise
        finally:
            self.report.finished_at = datetime.now(timezone.utc)

        self.logger.info(
            "Batch finished",
            succeeded=self.report.succeeded,
            failed=self.report.failed,
            success=self.report.success
        )
        return self.report

    def partial_report(self) -> RunReport:
        return self.report

    async def _run_job(self, ordinal: int, job: Job) -> None:
        structlog.contextvars.bind_contextvars(**log_job_context(ordinal, job.id, job.target))
        started_at = datetime.now(timezone.utc)
        warnings: List[SoftWarning] = []
        self.logger.info("Job starting")

        try:
            await self.navigator.reach(job)
            warnings.extend(await self.form_engine.open_form())
            fill = await self.form_engine.fill(job.fields)
            warnings.extend(fill.warnings)
            warnings.extend(await self.form_engine.submit())
        except Exception as e:
            kind = e.kind if isinstance(e, PortalAutomationError) else FailureKind.UNEXPECTED
            artifacts = await self.diagnostics.capture(f"job-{ordinal:03d}-{kind.value}")
            self._record(job, Outcome(
                job_id=job.id,
                ordinal=ordinal,
                status=OutcomeStatus.FAILURE,
                failure_kind=kind,
                error_summary=f"{type(e).__name__}: {e}",
                artifacts=[str(path) for path in artifacts],
                warnings=warnings,
                started_at=started_at,
            ))
            if isinstance(e, PortalAutomationError) and e.fatal:
                raise
            self.logger.error("Job failed", kind=kind.value, error=str(e))
            return
        finally:
            structlog.contextvars.unbind_contextvars("job")

        self._record(job, Outcome(
            job_id=job.id,
            ordinal=ordinal,
            status=OutcomeStatus.SUCCESS,
            warnings=warnings,
            started_at=started_at,
        ))
        self.logger.info("Job succeeded", job_id=job.id, warnings=len(warnings))

    def _record(self, job: Job, outcome: Outcome) -> None:
        job.attach_outcome(outcome)
        self.report.outcomes.append(outcome)


async def run_batch(
    settings: Settings,
    jobs: List[Job],
    form: FormDefinition,
    agent: Optional[BrowserAgent] = None,
) -> RunReport:
    """
    Run a batch inside a scoped browser acquisition.

    The browser is closed before this returns, including when a fatal error
    aborted the run; in that case the returned report has ``aborted`` set.

    Raises:
        ConfigurationError: missing login settings or invalid job input
    """
    settings.require_login()
    validate_jobs(jobs, form)

    agent = agent or BrowserAgent(
        headless=settings.headless,
        default_timeout_ms=settings.browser_timeout * 1000,
    )
    orchestrator: Optional[BatchOrchestrator] = None
    try:
        async with agent:
            page = agent.page
            resolver = LocatorResolver(page, default_timeout_ms=settings.strategy_timeout_ms)
            diagnostics = DiagnosticCapture(page, settings.artifacts_dir)
            csrf = CsrfBridge(settings.csrf_cookie_names, settings.csrf_field_names)
            session_manager = SessionManager(page, settings, resolver, csrf, diagnostics)
            orchestrator = BatchOrchestrator(
                session_manager=session_manager,
                navigator=NavigationController(page, settings, resolver, session_manager),
                form_engine=FormFillEngine(page, settings, resolver, form),
                diagnostics=diagnostics,
                form=form,
            )
            return await orchestrator.run(jobs)
    except PortalAutomationError as e:
        if not e.fatal or orchestrator is None:
            raise
        logger.error("Run aborted", kind=e.kind.value, error=str(e))
        return orchestrator.partial_report()
