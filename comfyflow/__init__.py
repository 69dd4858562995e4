from .src.orchestrator import generate, JobCompletion
from .src.workflow_builder import WorkflowBuilder, prepare
from .src.data_models import (
    GenerationConfig,
    NodeRole,
    PromptInjectionPoint,
    SavedArtifact,
    WorkflowTemplate,
)
from .src.client import DirectorySink, PushChannel
from .src.errors import (
    ComfyFlowError,
    ValidationError,
    SubmissionError,
    FetchError,
    TransientFetchError,
    ExecutionFailure,
    Timeout,
    NoOutputsError,
    PartialOutputFailure,
)

__all__ = [
    ###orchestration###
    "generate",
    "JobCompletion",
    ###workflow###
    "WorkflowBuilder",
    "prepare",
    "WorkflowTemplate",
    "PromptInjectionPoint",
    "NodeRole",
    ###configuration###
    "GenerationConfig",
    ###artifacts###
    "SavedArtifact",
    "DirectorySink",
    "PushChannel",
    ###errors###
    "ComfyFlowError",
    "ValidationError",
    "SubmissionError",
    "FetchError",
    "TransientFetchError",
    "ExecutionFailure",
    "Timeout",
    "NoOutputsError",
    "PartialOutputFailure",
]


__version__ = "0.1.0"
