"""Loading the job queue and form definition from files and settings."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from portal_autopilot.config import Settings
from portal_autopilot.core.errors import ConfigurationError
from portal_autopilot.core.models import FormDefinition, Job
from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


def build_form(settings: Settings, data: Optional[Dict[str, Any]] = None) -> FormDefinition:
    """Form definition from file data, with selector overrides from settings applied on top."""
    try:
        form = FormDefinition.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid form definition: {e}") from e

    updates = {}
    if settings.call_log_button_selector:
        updates["open_override"] = settings.call_log_button_selector
    if settings.form_submit_selector:
        updates["submit_override"] = settings.form_submit_selector
    if settings.confirm_selector:
        updates["confirm_selector"] = settings.confirm_selector
    return form.model_copy(update=updates) if updates else form


def parse_jobs(raw: Any) -> Tuple[List[Job], Optional[Dict[str, Any]]]:
    """
    Parse job input: either a list of jobs or ``{"form": {...}, "jobs": [...]}``.

    Returns:
        The jobs and the raw form definition, if one was given
    """
    form_data = None
    if isinstance(raw, dict):
        form_data = raw.get("form")
        raw = raw.get("jobs")
    if not isinstance(raw, list):
        raise ConfigurationError("Job input must be a list of jobs or an object with a 'jobs' list")

    jobs = []
    for index, item in enumerate(raw, start=1):
        try:
            jobs.append(Job.model_validate(item))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid job #{index}: {e}") from e
    return jobs, form_data


def load_jobs_file(path: Union[str, Path]) -> Tuple[List[Job], Optional[Dict[str, Any]]]:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read jobs file {path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Jobs file {path} is not valid JSON: {e}") from e

    jobs, form_data = parse_jobs(raw)
    logger.info("Jobs loaded", path=str(path), count=len(jobs))
    return jobs, form_data


def jobs_from_settings(settings: Settings) -> List[Job]:
    """Single-job queue built from PROJECT_URL and the field variables."""
    if not settings.project_url:
        raise ConfigurationError("Missing required env: PROJECT_URL (or provide JOBS_FILE)")

    fields: Dict[str, Any] = {
        "communication_type": settings.comm_type,
        "call_type": settings.call_type,
        "comments": settings.comments,
    }
    if settings.comm_with_client:
        fields["communicate_with_client"] = [
            label.strip() for label in settings.comm_with_client.split("|") if label.strip()
        ]

    try:
        return [Job(target=settings.project_url, fields={k: v for k, v in fields.items() if v})]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid PROJECT_URL: {e}") from e


def load_queue(
    settings: Settings,
    jobs_file: Optional[Union[str, Path]] = None,
) -> Tuple[List[Job], FormDefinition]:
    """Jobs and form for a run: from the jobs file when given, otherwise from settings."""
    path = jobs_file or settings.jobs_file
    if path:
        jobs, form_data = load_jobs_file(path)
    else:
        jobs, form_data = jobs_from_settings(settings), None
    return jobs, build_form(settings, form_data)


def validate_jobs(jobs: List[Job], form: FormDefinition) -> None:
    """
    Check every job against the form before any browser work.

    Raises:
        ConfigurationError: empty queue, unknown field names or missing required values
    """
    if not jobs:
        raise ConfigurationError("Job queue is empty")

    problems = []
    for ordinal, job in enumerate(jobs, start=1):
        unknown = sorted(name for name in job.fields if form.field(name) is None)
        if unknown:
            problems.append(f"job #{ordinal} ({job.id}): unknown field(s) {', '.join(unknown)}")
        missing = [spec.name for spec in form.fields if spec.required and spec.name not in job.fields]
        if missing:
            problems.append(f"job #{ordinal} ({job.id}): missing required field(s) {', '.join(missing)}")
    if problems:
        raise ConfigurationError("; ".join(problems))
