"""
Long-running operation models.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field, field_validator, model_validator

from ..tenancy.models import AuthorityModel


class OperationState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != OperationState.RUNNING


# Engine states that are not yet terminal
_RUNNING_ALIASES = {"pending", "queued", "started", "in_progress", "running"}


class OperationProgress(AuthorityModel):
    current_step: Optional[str] = None
    total_steps: Optional[int] = None
    completed_steps: Optional[int] = None
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    message: Optional[str] = None


class OperationRecord(AuthorityModel):
    """Observed state of an operation on the workflow engine."""

    operation_id: str
    workflow_type: Optional[str] = None
    state: OperationState = Field(alias="status")
    progress: OperationProgress = Field(default_factory=OperationProgress)
    result: Optional[Any] = None
    error: Optional[str] = None
    tenant_id: Optional[str] = None
    started_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("state", mode="before")
    @classmethod
    def _normalize_state(cls, value):
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in _RUNNING_ALIASES:
                return OperationState.RUNNING
            if lowered == "canceled":
                return OperationState.CANCELLED
            return lowered
        return value

    @model_validator(mode="after")
    def _result_only_when_terminal(self):
        if not self.state.is_terminal:
            self.result = None
        elif self.state == OperationState.COMPLETED:
            self.progress.percentage = 100.0
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class OperationHandle(AuthorityModel):
    operation_id: str
    status_url: str
    stream_url: str
    estimated_duration: Optional[int] = None


class InitiateResult(AuthorityModel):
    """Either a synchronous result or a handle for polling."""

    synchronous: bool
    result: Optional[Any] = None
    record: Optional[OperationRecord] = None
    handle: Optional[OperationHandle] = None

    def to_response(self) -> Dict[str, Any]:
        if self.synchronous:
            body: Dict[str, Any] = {"type": "sync", "data": self.result}
            if self.record is not None:
                body["operationId"] = self.record.operation_id
                body["status"] = self.record.state.value
            return body
        return {"type": "async", **self.handle.model_dump(by_alias=True, exclude_none=True)}
