"""
JobSubmitter: one POST per job, never retried.

Resubmitting a workflow creates a second job on the server, so retry policy
belongs to whoever calls ``submit_workflow``.
"""

from typing import Optional

import httpx

from comfyflow.src.data_models.job_models import Job
from comfyflow.src.data_models.workflow_models import WorkflowTemplate
from comfyflow.src.errors import SubmissionError, ValidationError
from comfyflow.src.utilities.constants import DEFAULT_CLIENT_TAG
from comfyflow.src.utilities.helpers import join_url, make_logger

logger = make_logger(__name__)


def validate_endpoint(server_url: Optional[str]) -> str:
    """Return the normalized base URL, or raise if it is not http(s)://host[...]."""
    if not server_url or not isinstance(server_url, str):
        raise ValidationError("Invalid server URL. Must be a valid HTTP URL.")
    try:
        url = httpx.URL(server_url.strip())
    except (httpx.InvalidURL, TypeError) as e:
        raise ValidationError(f"Invalid server URL {server_url!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ValidationError(f"Invalid server URL {server_url!r}. Must be a valid HTTP URL.")
    return server_url.strip().rstrip("/")


def build_envelope(
    workflow: WorkflowTemplate,
    client_tag: str = DEFAULT_CLIENT_TAG,
    credential: Optional[str] = None,
) -> dict:
    envelope = {
        "workflow": workflow.to_payload(),
        "client_tag": client_tag,
    }
    if credential:
        envelope["extra_data"] = {"api_key": credential}
    return envelope


async def submit_workflow(
    client: httpx.AsyncClient,
    server_url: str,
    workflow: WorkflowTemplate,
    *,
    client_tag: str = DEFAULT_CLIENT_TAG,
    credential: Optional[str] = None,
) -> Job:
    endpoint = validate_endpoint(server_url)
    envelope = build_envelope(workflow, client_tag, credential)

    try:
        response = await client.post(join_url(endpoint, "submit"), json=envelope)
    except httpx.HTTPError as e:
        raise SubmissionError(f"Failed to submit workflow: {e}") from e

    if not response.is_success:
        raise SubmissionError(
            f"Failed to submit workflow: {response.status_code} {response.reason_phrase}"
        )

    try:
        data = response.json()
    except ValueError as e:
        raise SubmissionError("Failed to submit workflow: response is not JSON") from e

    job_id = data.get("prompt_id") if isinstance(data, dict) else None
    if not job_id:
        raise SubmissionError("No job id received from server.")

    logger.info(f"Submitted workflow, job id {job_id}")
    return Job(id=str(job_id), submitted_workflow=workflow)
