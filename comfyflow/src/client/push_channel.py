"""
PushChannel: low-latency job events over the server's WebSocket.

The channel is best effort. It forwards progress ratios and inline preview
images to caller hooks and fires a one-time completion signal when the
server reports that the job's graph has finished executing. When the
connection drops it reconnects with exponential backoff (2s, 4s, 8s) and
then gives up quietly; completion detection still works through polling.
"""

import asyncio
import base64
import binascii
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional

import aiohttp

from comfyflow.src.data_models.workflow_models import NodeRole, WorkflowTemplate
from comfyflow.src.errors import ComfyFlowError
from comfyflow.src.utilities.asyncio_utils import (
    BackoffPolicy,
    Sleep,
    await_if_needed,
    retry_with_backoff,
)
from comfyflow.src.utilities.constants import (
    CHANNEL_BACKOFF_BASE_SECONDS,
    CHANNEL_MAX_RECONNECTS,
)
from comfyflow.src.utilities.helpers import http_to_ws, join_url, make_logger

logger = make_logger(__name__)

RECONNECT_POLICY = BackoffPolicy(
    max_retries=CHANNEL_MAX_RECONNECTS,
    base_delay=CHANNEL_BACKOFF_BASE_SECONDS,
    multiplier=2.0,
)
SUBSCRIBE_FRAME = {"type": "subscribe", "events": ["progress", "executed"]}
CONNECT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)

ProgressHook = Callable[[float], Any]
PreviewHook = Callable[[str], Any]
CompleteHook = Callable[[], Any]
Connector = Callable[[str], Awaitable[Any]]


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_CLEAN = "closed_clean"
    CLOSED_ERROR = "closed_error"
    GAVE_UP = "gave_up"


class ChannelDropped(ComfyFlowError):
    """The connection failed or closed uncleanly; eligible for reconnection."""

    ...


class AiohttpConnector:
    """Opens WebSocket connections on one lazily created aiohttp session."""

    def __init__(self, heartbeat: float = 30.0):
        self.heartbeat = heartbeat
        self._session: Optional[aiohttp.ClientSession] = None

    async def __call__(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url, heartbeat=self.heartbeat)

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def channel_url(server_url: str, job_id: str) -> str:
    return join_url(http_to_ws(server_url), f"ws?clientId={job_id}")


def _as_data_url(payload: Any, fmt: Any = None) -> Optional[str]:
    if not isinstance(payload, str) or not payload:
        return None
    if payload.startswith("data:"):
        return payload
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    mime = fmt if isinstance(fmt, str) and fmt else "png"
    if "/" not in mime:
        mime = f"image/{mime}"
    return f"data:{mime};base64,{payload}"


def extract_preview_images(data: Dict[str, Any]) -> Iterator[str]:
    """Yield data URLs for inline base64 images carried by an execution frame."""
    direct = _as_data_url(data.get("image"), data.get("format"))
    if direct:
        yield direct
    output = data.get("output")
    images = output.get("images") if isinstance(output, dict) else None
    for image in images if isinstance(images, list) else []:
        if isinstance(image, dict):
            url = _as_data_url(image.get("image"), image.get("format"))
            if url:
                yield url


class PushChannel:
    """
    Event listener for one job.

    ``connect()`` only schedules the background task; connection attempts,
    reconnect delays and frame handling all happen there. ``close()``
    cancels that task and releases the socket on every exit path.
    """

    def __init__(
        self,
        server_url: str,
        job_id: str,
        workflow: WorkflowTemplate,
        *,
        on_progress: Optional[ProgressHook] = None,
        on_preview: Optional[PreviewHook] = None,
        on_complete: Optional[CompleteHook] = None,
        connector: Optional[Connector] = None,
        policy: BackoffPolicy = RECONNECT_POLICY,
        sleep: Sleep = asyncio.sleep,
    ):
        self.url = channel_url(server_url, job_id)
        self.job_id = job_id
        self.workflow = workflow
        self.on_progress = on_progress
        self.on_preview = on_preview
        self.on_complete = on_complete
        self.policy = policy
        self.state = ChannelState.IDLE
        self.completed = False
        self._owns_connector = connector is None
        self._connector = connector or AiohttpConnector()
        self._sleep = sleep
        self._ws = None
        self._task: Optional[asyncio.Task] = None

    def connect(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"push_channel_{self.job_id}")
        return self._task

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._release()

    async def _release(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        if self._owns_connector:
            await self._connector.aclose()

    async def _run(self) -> None:
        try:
            await retry_with_backoff(
                self._session_once,
                self.policy,
                retry_on=(ChannelDropped,),
                sleep=self._sleep,
                on_retry=self._log_reconnect,
            )
        except ChannelDropped as e:
            self.state = ChannelState.GAVE_UP
            logger.warning(
                f"Push channel for job {self.job_id} gave up after "
                f"{self.policy.max_retries} reconnects ({e}); relying on polling"
            )
        finally:
            await self._release()

    def _log_reconnect(self, retry: int, delay: float, error: BaseException) -> None:
        logger.info(f"Push channel for job {self.job_id} dropped ({error}), reconnect {retry} in {delay}s")

    async def _session_once(self) -> None:
        self.state = ChannelState.CONNECTING
        try:
            ws = await self._connector(self.url)
        except CONNECT_ERRORS as e:
            self.state = ChannelState.CLOSED_ERROR
            raise ChannelDropped(f"connect failed: {e}") from e

        self._ws = ws
        try:
            self.state = ChannelState.OPEN
            await ws.send_json(SUBSCRIBE_FRAME)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_frame(msg.data)
                    if self.completed:
                        await ws.close()
                        self.state = ChannelState.CLOSED_CLEAN
                        return
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.state = ChannelState.CLOSED_ERROR
                    raise ChannelDropped(f"channel error: {msg.data}")
                else:
                    logger.debug(f"Ignoring {msg.type} frame on push channel")
            close_code = ws.close_code
        except CONNECT_ERRORS as e:
            self.state = ChannelState.CLOSED_ERROR
            raise ChannelDropped(f"connection lost: {e}") from e
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

        if close_code == aiohttp.WSCloseCode.OK:
            self.state = ChannelState.CLOSED_CLEAN
            logger.info(f"Push channel for job {self.job_id} closed cleanly")
            return
        self.state = ChannelState.CLOSED_ERROR
        raise ChannelDropped(f"closed uncleanly (code {close_code})")

    async def handle_frame(self, raw: Any) -> None:
        """Decode one text frame and dispatch it. Unknown or malformed frames are ignored."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-JSON frame: {raw!r:.80}")
            return
        if not isinstance(frame, dict):
            logger.debug("Ignoring non-object frame")
            return

        data = frame.get("data")
        if not isinstance(data, dict):
            data = {}
        prompt_id = data.get("prompt_id")
        if prompt_id is not None and str(prompt_id) != self.job_id:
            return

        kind = frame.get("type")
        if kind == "progress":
            await self._handle_progress(data)
        elif kind in ("executing", "executed"):
            await self._handle_execution(kind, data)
        else:
            logger.debug(f"Ignoring {kind!r} frame")

    async def _handle_progress(self, data: Dict[str, Any]) -> None:
        value, maximum = data.get("value"), data.get("max")
        if not isinstance(value, (int, float)) or not isinstance(maximum, (int, float)) or not maximum:
            logger.debug(f"Ignoring progress frame without usable value/max: {data}")
            return
        await self._call(self.on_progress, value / maximum)

    async def _handle_execution(self, kind: str, data: Dict[str, Any]) -> None:
        node = data.get("node")
        if kind == "executing" and not node:
            await self._signal_complete()
            return
        if node is None or self.workflow.role_of(str(node)) is not NodeRole.PREVIEW:
            return
        for data_url in extract_preview_images(data):
            await self._call(self.on_preview, data_url)

    async def _signal_complete(self) -> None:
        if self.completed:
            return
        self.completed = True
        logger.info(f"Push channel reports job {self.job_id} finished executing")
        await self._call(self.on_complete)

    async def _call(self, hook: Optional[Callable], *args) -> None:
        if hook is None:
            return
        try:
            await await_if_needed(hook(*args))
        except Exception:
            logger.exception(f"Push channel hook {getattr(hook, '__name__', hook)} failed")
