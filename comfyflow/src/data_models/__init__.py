"""
Data models package.

This package contains Pydantic models for workflows, jobs, artifacts and
configuration.
"""

from comfyflow.src.data_models.workflow_models import (
    NodeRole,
    PromptInjectionPoint,
    WorkflowNode,
    WorkflowTemplate,
)
from comfyflow.src.data_models.job_models import (
    ArtifactDescriptor,
    Job,
    JobCompleted,
    JobFailed,
    JobOutcome,
    JobRunning,
    JobTimedOut,
    SavedArtifact,
    interpret_history,
)
from comfyflow.src.data_models.config_models import GenerationConfig

__all__ = [
    "NodeRole",
    "PromptInjectionPoint",
    "WorkflowNode",
    "WorkflowTemplate",
    "ArtifactDescriptor",
    "Job",
    "JobCompleted",
    "JobFailed",
    "JobOutcome",
    "JobRunning",
    "JobTimedOut",
    "SavedArtifact",
    "interpret_history",
    "GenerationConfig",
]
