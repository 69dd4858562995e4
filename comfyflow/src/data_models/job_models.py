"""
Job lifecycle models.

A ``JobOutcome`` is derived from the server's history record for one job id:

- no entry for the id                     -> ``JobRunning``
- entry with a non-empty ``outputs`` map  -> ``JobCompleted``
- entry whose ``outputs`` is missing, null or empty -> ``JobFailed``

The poll loop adds ``JobTimedOut`` when it runs out of attempts.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .workflow_models import NodeRole, WorkflowTemplate


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    submitted_workflow: WorkflowTemplate
    started_at: datetime = Field(default_factory=datetime.now)

    @property
    def timestamp_ms(self) -> int:
        return int(self.started_at.timestamp() * 1000)


class JobRunning(BaseModel):
    status: Literal["running"] = "running"


class JobCompleted(BaseModel):
    status: Literal["completed"] = "completed"
    outputs: Dict[str, Any]


class JobFailed(BaseModel):
    status: Literal["failed"] = "failed"
    reason: str


class JobTimedOut(BaseModel):
    status: Literal["timeout"] = "timeout"
    attempts: int


JobOutcome = Annotated[
    Union[JobRunning, JobCompleted, JobFailed, JobTimedOut],
    Field(discriminator="status"),
]


def interpret_history(history: Any, job_id: str) -> JobOutcome:
    if not isinstance(history, dict) or job_id not in history:
        return JobRunning()
    entry = history[job_id]
    outputs = entry.get("outputs") if isinstance(entry, dict) else None
    if isinstance(outputs, dict) and outputs:
        return JobCompleted(outputs=outputs)
    reason = "history entry has no outputs"
    if isinstance(entry, dict):
        status = entry.get("status")
        if isinstance(status, dict) and status.get("status_str"):
            reason = f"{reason} (status: {status['status_str']})"
    return JobFailed(reason=reason)


class ArtifactDescriptor(BaseModel):
    owner_node_id: str
    index: int
    filename: str
    subfolder: str = ""
    role: NodeRole

    @property
    def storage_type(self) -> str:
        # Final sinks write to the persistent output area, previews to temp.
        return "output" if self.role is NodeRole.FINAL else "temp"


class SavedArtifact(BaseModel):
    local_path: str
    descriptor: Optional[ArtifactDescriptor] = None
