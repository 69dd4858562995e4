"""HTTP and WebSocket clients for the compute server."""

from comfyflow.src.client.artifact_sink import ArtifactSink, DirectorySink
from comfyflow.src.client.output_collector import CollectionReport, collect, discover_artifacts
from comfyflow.src.client.poll_loop import fetch_outcome, wait_for_job
from comfyflow.src.client.push_channel import ChannelState, PushChannel
from comfyflow.src.client.submitter import submit_workflow, validate_endpoint

__all__ = [
    "ArtifactSink",
    "DirectorySink",
    "CollectionReport",
    "collect",
    "discover_artifacts",
    "fetch_outcome",
    "wait_for_job",
    "ChannelState",
    "PushChannel",
    "submit_workflow",
    "validate_endpoint",
]
