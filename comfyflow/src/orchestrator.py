"""
Orchestration: build -> submit -> await completion -> collect.

Completion is a race between two producers that share one ``JobCompletion``:

- the poll loop, which always runs and is the ground truth, and
- for preview-only workflows, the push channel, whose completion signal
  triggers an immediate history fetch.

Whichever resolves first wins; the other is cancelled when ``generate``
returns, and the push channel's socket is closed on every exit path.
"""

import asyncio
from typing import Any, Callable, List, Optional, Set, Union

import httpx

from comfyflow.src.client.artifact_sink import ArtifactSink, DirectorySink
from comfyflow.src.client.output_collector import collect
from comfyflow.src.client.poll_loop import fetch_outcome, wait_for_job
from comfyflow.src.client.push_channel import Connector, PushChannel
from comfyflow.src.client.submitter import submit_workflow, validate_endpoint
from comfyflow.src.data_models.config_models import GenerationConfig
from comfyflow.src.data_models.job_models import (
    Job,
    JobCompleted,
    JobFailed,
    JobRunning,
    JobTimedOut,
    SavedArtifact,
)
from comfyflow.src.data_models.workflow_models import NodeRole
from comfyflow.src.errors import ExecutionFailure, FetchError, Timeout
from comfyflow.src.utilities.asyncio_utils import Sleep
from comfyflow.src.utilities.helpers import make_logger
from comfyflow.src.workflow_builder import WorkflowBuilder

logger = make_logger(__name__)

TerminalOutcome = Union[JobCompleted, JobFailed, JobTimedOut]


class JobCompletion:
    """One-shot completion future. The first producer to resolve it wins."""

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.source: Optional[str] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, source: str, outcome: TerminalOutcome) -> bool:
        if self._future.done():
            logger.debug(f"Ignoring late {outcome.status} outcome from {source}")
            return False
        self.source = source
        self._future.set_result(outcome)
        return True

    def fail(self, source: str, error: BaseException) -> bool:
        if self._future.done():
            return False
        self.source = source
        self._future.set_exception(error)
        return True

    async def wait(self) -> TerminalOutcome:
        return await self._future


async def await_completion(
    client: httpx.AsyncClient,
    server_url: str,
    job: Job,
    config: GenerationConfig,
    *,
    on_progress: Optional[Callable[[float], Any]] = None,
    on_preview: Optional[Callable[[str], Any]] = None,
    channel_connector: Optional[Connector] = None,
    sleep: Sleep = asyncio.sleep,
) -> TerminalOutcome:
    completion = JobCompletion()
    wake = asyncio.Event()
    tasks: Set[asyncio.Task] = set()

    async def poll() -> None:
        try:
            outcome = await wait_for_job(
                client,
                server_url,
                job.id,
                interval_seconds=config.poll_interval_seconds,
                max_attempts=config.max_poll_attempts,
                wake=wake,
                sleep=sleep,
            )
        except Exception as e:
            completion.fail("poll", e)
        else:
            completion.resolve("poll", outcome)

    async def confirm_push_completion() -> None:
        try:
            outcome = await fetch_outcome(client, server_url, job.id, sleep=sleep)
        except FetchError as e:
            logger.warning(f"History fetch after push completion failed ({e}), polling continues")
            wake.set()
            return
        if isinstance(outcome, JobRunning):
            wake.set()
        else:
            completion.resolve("push", outcome)

    def on_push_complete() -> None:
        if not completion.done:
            tasks.add(asyncio.create_task(confirm_push_completion(), name=f"confirm_{job.id}"))

    channel: Optional[PushChannel] = None
    if job.submitted_workflow.primary_role is NodeRole.PREVIEW:
        channel = PushChannel(
            server_url,
            job.id,
            job.submitted_workflow,
            on_progress=on_progress,
            on_preview=on_preview,
            on_complete=on_push_complete,
            connector=channel_connector,
            sleep=sleep,
        )
        channel.connect()

    tasks.add(asyncio.create_task(poll(), name=f"poll_{job.id}"))
    try:
        outcome = await asyncio.wait_for(completion.wait(), timeout=config.timeout_seconds)
    except asyncio.TimeoutError:
        raise Timeout(
            f"Job {job.id} did not complete within {config.timeout_seconds:g} seconds."
        ) from None
    finally:
        if channel is not None:
            await channel.close()
        pending = list(tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    logger.info(f"Job {job.id} resolved via {completion.source}: {outcome.status}")
    return outcome


async def generate(
    prompt_text: str,
    config: Optional[GenerationConfig] = None,
    *,
    on_progress: Optional[Callable[[float], Any]] = None,
    on_preview: Optional[Callable[[str], Any]] = None,
    sink: Optional[ArtifactSink] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    channel_connector: Optional[Connector] = None,
    sleep: Sleep = asyncio.sleep,
) -> List[SavedArtifact]:
    """
    Generate artifacts for ``prompt_text`` on the configured server.

    Args:
        prompt_text: Text injected at the workflow's prompt coordinate.
        config: Server URL, credential, template override and timings.
        on_progress: Called with value/max ratios from the push channel.
        on_preview: Called with ``data:`` URLs of inline preview images.
        sink: Where downloaded bytes go; defaults to ``config.output_dir``.
        http_client: Optional pre-built ``httpx.AsyncClient``.
        channel_connector: Optional WebSocket connector for the push channel.

    Returns:
        The saved artifacts, in no particular order.

    Raises:
        ValidationError, SubmissionError, FetchError, ExecutionFailure,
        Timeout or NoOutputsError; exactly one per failed call.
    """
    config = config or GenerationConfig()
    server_url = validate_endpoint(config.server_url)
    workflow = WorkflowBuilder.from_text(config.workflow_template).build(
        prompt_text, config.injection_point
    )
    sink = sink or DirectorySink(config.output_dir)

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
    try:
        job = await submit_workflow(
            client,
            server_url,
            workflow,
            client_tag=config.client_tag,
            credential=config.api_key,
        )
        outcome = await await_completion(
            client,
            server_url,
            job,
            config,
            on_progress=on_progress,
            on_preview=on_preview,
            channel_connector=channel_connector,
            sleep=sleep,
        )
        if isinstance(outcome, JobFailed):
            raise ExecutionFailure(job.id, outcome.reason)
        if isinstance(outcome, JobTimedOut):
            raise Timeout(
                f"Job {job.id} did not complete within {outcome.attempts} polls."
            )
        report = await collect(client, server_url, job, outcome.outputs, sink, sleep=sleep)
        return report.saved
    finally:
        if owns_client:
            await client.aclose()
