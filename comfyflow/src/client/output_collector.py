"""
OutputCollector: find the artifacts a finished job produced and download them.

Artifacts are discovered from the history ``outputs`` payload and classified
against the *submitted* workflow: only output-sink nodes count, and the
node's role decides which storage area (``output`` or ``temp``) the server
serves the bytes from.
"""

import asyncio
import warnings
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from comfyflow.src.data_models.job_models import ArtifactDescriptor, Job, SavedArtifact
from comfyflow.src.data_models.workflow_models import WorkflowTemplate
from comfyflow.src.errors import FetchError, NoOutputsError, PartialOutputFailure
from comfyflow.src.utilities.asyncio_utils import BackoffPolicy, Sleep, retry_with_backoff
from comfyflow.src.utilities.constants import (
    ARTIFACT_MAX_RETRIES,
    ARTIFACT_RETRY_DELAY_SECONDS,
)
from comfyflow.src.utilities.helpers import join_url, make_logger
from .artifact_sink import ArtifactSink
from .poll_loop import raise_for_fetch_status

logger = make_logger(__name__)

ARTIFACT_RETRY_POLICY = BackoffPolicy(
    max_retries=ARTIFACT_MAX_RETRIES, base_delay=ARTIFACT_RETRY_DELAY_SECONDS
)
ARTIFACT_NAME_PREFIX = "comfyflow_generated"


class CollectionReport(BaseModel):
    saved: List[SavedArtifact] = Field(default_factory=list)
    failed: int = 0

    @property
    def paths(self) -> List[str]:
        return [artifact.local_path for artifact in self.saved]


def discover_artifacts(
    workflow: WorkflowTemplate, outputs: Dict[str, Any]
) -> List[ArtifactDescriptor]:
    """List downloadable artifacts. Non-sink nodes and empty image lists are skipped."""
    descriptors: List[ArtifactDescriptor] = []
    for node_id, output in outputs.items():
        node = workflow.nodes.get(str(node_id))
        if node is None or not node.is_sink:
            continue
        images = output.get("images") if isinstance(output, dict) else None
        if not isinstance(images, list) or not images:
            continue
        for index, image in enumerate(images):
            if not isinstance(image, dict) or not isinstance(image.get("filename"), str):
                logger.debug(f"Skipping malformed image entry {index} of node {node_id}")
                continue
            subfolder = image.get("subfolder")
            descriptors.append(
                ArtifactDescriptor(
                    owner_node_id=node.node_id,
                    index=index,
                    filename=image["filename"],
                    subfolder=subfolder if isinstance(subfolder, str) else "",
                    role=node.role,
                )
            )
    return descriptors


def artifact_name(timestamp_ms: int, descriptor: ArtifactDescriptor) -> str:
    suffix = PurePosixPath(descriptor.filename).suffix or ".png"
    return (
        f"{ARTIFACT_NAME_PREFIX}_{timestamp_ms}_{descriptor.owner_node_id}_"
        f"{descriptor.index}{suffix}"
    )


async def fetch_artifact(
    client: httpx.AsyncClient,
    server_url: str,
    descriptor: ArtifactDescriptor,
    *,
    policy: BackoffPolicy = ARTIFACT_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
) -> bytes:
    params = {
        "filename": descriptor.filename,
        "subfolder": descriptor.subfolder,
        "type": descriptor.storage_type,
    }
    url = join_url(server_url, "view")

    async def attempt() -> bytes:
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch artifact {descriptor.filename}: {e}") from e
        raise_for_fetch_status(response, f"artifact {descriptor.filename}")
        return response.content

    def on_retry(retry: int, delay: float, error: BaseException) -> None:
        logger.warning(
            f"Fetching {descriptor.filename} from node {descriptor.owner_node_id} "
            f"failed ({error}), retry {retry} in {delay}s"
        )

    return await retry_with_backoff(attempt, policy, sleep=sleep, on_retry=on_retry)


async def _save_one(
    client: httpx.AsyncClient,
    server_url: str,
    job: Job,
    descriptor: ArtifactDescriptor,
    sink: ArtifactSink,
    policy: BackoffPolicy,
    sleep: Sleep,
) -> Optional[SavedArtifact]:
    try:
        data = await fetch_artifact(client, server_url, descriptor, policy=policy, sleep=sleep)
    except FetchError as e:
        logger.warning(
            f"Failed to fetch image from node {descriptor.owner_node_id}, "
            f"image {descriptor.index}: {e}"
        )
        return None
    name = artifact_name(job.timestamp_ms, descriptor)
    try:
        local_path = await sink.write(name, data)
    except OSError as e:
        logger.warning(f"Failed to save image from node {descriptor.owner_node_id} as {name}: {e}")
        return None
    logger.info(f"Saved {descriptor.filename} to {local_path}")
    return SavedArtifact(local_path=local_path, descriptor=descriptor)


async def collect(
    client: httpx.AsyncClient,
    server_url: str,
    job: Job,
    outputs: Dict[str, Any],
    sink: ArtifactSink,
    *,
    policy: BackoffPolicy = ARTIFACT_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
) -> CollectionReport:
    """
    Download every artifact of a finished job into ``sink``.

    A failed download or a sink ``OSError`` only loses that one artifact.
    Any other exception is re-raised once every download has settled.

    Raises:
        NoOutputsError: if not a single artifact could be saved.

    Emits ``PartialOutputFailure`` as a warning when some, but not all,
    artifacts could not be saved.
    """
    descriptors = discover_artifacts(job.submitted_workflow, outputs)
    results = await asyncio.gather(
        *(
            _save_one(client, server_url, job, descriptor, sink, policy, sleep)
            for descriptor in descriptors
        ),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    saved = [result for result in results if result is not None]
    report = CollectionReport(saved=saved, failed=len(results) - len(saved))

    if not report.saved:
        raise NoOutputsError("No images generated from any node.")
    if report.failed:
        logger.warning(f"{report.failed} artifact(s) of job {job.id} could not be saved")
        warnings.warn(PartialOutputFailure(len(report.saved), report.failed), stacklevel=2)
    logger.info(f"Job {job.id} artifacts: {', '.join(report.paths)}")
    return report
