"""Core data models for Portal Autopilot."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator


FieldValue = Union[str, List[str]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldKind(str, Enum):
    """Control families a logical form field can be rendered as."""
    SINGLE = "single"
    MULTI = "multi"
    TEXT = "text"


class OutcomeStatus(str, Enum):
    """Terminal status of a job."""
    SUCCESS = "success"
    FAILURE = "failure"


class FailureKind(str, Enum):
    """Error kinds, used to triage failed jobs and aborted runs."""
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    SESSION_LOOP = "session_invalidation_loop"
    RESOLUTION = "resolution"
    NAVIGATION_MISMATCH = "navigation_mismatch"
    UNEXPECTED = "unexpected"


class SoftWarning(BaseModel):
    """Non-fatal problem: logged and attached to the job outcome."""
    subject: str = Field(..., description="Field or step the warning concerns")
    message: str = Field(..., description="What went wrong")


class ResolutionAttempt(BaseModel):
    """One candidate strategy tried while resolving a logical UI target."""
    target: str = Field(..., description="Logical UI target")
    candidate: str = Field(..., description="Description of the candidate strategy")
    succeeded: bool = Field(..., description="Whether the candidate resolved and acted")
    error: Optional[str] = Field(None, description="Error summary when the attempt failed")


class FieldSpec(BaseModel):
    """A logical form field and the ways it can be found on the page."""
    name: str = Field(..., description="Logical field name used in job input")
    label: str = Field(..., description="Visible label of the control")
    kind: FieldKind = Field(FieldKind.SINGLE, description="Control family")
    required: bool = Field(False, description="Whether the job must supply and set it")
    overrides: List[str] = Field(default_factory=list, description="Selectors tried before the defaults")
    fallbacks: List[str] = Field(default_factory=list, description="Selectors tried after the defaults")


def default_fields() -> List[FieldSpec]:
    return [
        FieldSpec(name="communication_type", label="Communication Type", kind=FieldKind.SINGLE),
        FieldSpec(name="communicate_with_client", label="Communicate With Client", kind=FieldKind.MULTI),
        FieldSpec(name="call_type", label="Call", kind=FieldKind.SINGLE),
        FieldSpec(
            name="comments",
            label="Comments",
            kind=FieldKind.TEXT,
            fallbacks=["textarea", 'input[name*="comment" i]'],
        ),
    ]


class FormDefinition(BaseModel):
    """The record form: how to open it, what it contains and how to submit it."""
    open_button: str = Field(r"call\s*log", description="Accessible name pattern of the open button")
    open_override: Optional[str] = Field(None, description="Open button selector override")
    dialog_name: Optional[str] = Field(r"call\s*log", description="Accessible name pattern of the form dialog")
    fields: List[FieldSpec] = Field(default_factory=default_fields, description="Form fields in fill order")
    submit_button: str = Field(r"submit details", description="Accessible name pattern of the submit button")
    submit_override: Optional[str] = Field(None, description="Submit selector override")
    confirm_selector: Optional[str] = Field(None, description="Selector of the success message")

    def field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


class Outcome(BaseModel):
    """Terminal result of one job."""
    job_id: str = Field(..., description="Job identifier")
    ordinal: int = Field(..., description="1-based position in the queue")
    status: OutcomeStatus = Field(..., description="Success or failure")
    failure_kind: Optional[FailureKind] = Field(None, description="Error kind when failed")
    error_summary: Optional[str] = Field(None, description="Error summary when failed")
    artifacts: List[str] = Field(default_factory=list, description="Diagnostic artifact paths")
    warnings: List[SoftWarning] = Field(default_factory=list, description="Soft warnings raised")
    started_at: datetime = Field(default_factory=utcnow, description="Processing start")
    finished_at: datetime = Field(default_factory=utcnow, description="Processing end")

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


class Job(BaseModel):
    """One unit of batch work: a target record plus the field values to submit."""
    id: Optional[str] = Field(None, description="Job identifier, defaults to the path token")
    target: str = Field(..., description="Address of the target record")
    path_token: Optional[str] = Field(None, description="Identifier embedded in the record address")
    search_text: Optional[str] = Field(None, description="Text used to narrow the listing")
    fields: Dict[str, FieldValue] = Field(default_factory=dict, description="Logical field values")
    outcome: Optional[Outcome] = Field(None, description="Terminal outcome, attached once")

    @field_validator("fields", mode="before")
    @classmethod
    def _drop_empty_values(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        cleaned: Dict[str, FieldValue] = {}
        for name, item in value.items():
            if isinstance(item, list):
                item = [str(label) for label in item if str(label).strip()]
                if item:
                    cleaned[name] = item
            elif item is not None and str(item) != "":
                cleaned[name] = str(item)
        return cleaned

    @model_validator(mode="after")
    def _derive_identity(self) -> "Job":
        if not self.path_token:
            segments = [s for s in urlparse(self.target).path.split("/") if s]
            if not segments:
                raise ValueError(f"Cannot derive a path token from target {self.target!r}")
            self.path_token = segments[-1]
        if not self.id:
            self.id = self.path_token
        return self

    def attach_outcome(self, outcome: Outcome) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Job {self.id} already has an outcome")
        self.outcome = outcome


class RunReport(BaseModel):
    """Summary of a batch run."""
    outcomes: List[Outcome] = Field(default_factory=list, description="Per-job outcomes in queue order")
    started_at: datetime = Field(default_factory=utcnow, description="Run start")
    finished_at: Optional[datetime] = Field(None, description="Run end")
    aborted: Optional[str] = Field(None, description="Fatal error that unwound the run")
    warnings: List[SoftWarning] = Field(default_factory=list, description="Run-level soft warnings, e.g. from login")

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.aborted is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "aborted": self.aborted,
            "warnings": [warning.model_dump() for warning in self.warnings],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcomes": [outcome.model_dump(mode="json") for outcome in self.outcomes],
        }
