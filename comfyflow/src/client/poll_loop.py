"""
PollLoop: pull-based completion detection against ``GET /history/{job_id}``.

Polling is the ground truth for job completion. It runs for every job,
whether or not a push channel is also listening.
"""

import asyncio
from typing import Optional

import httpx

from comfyflow.src.data_models.job_models import (
    JobOutcome,
    JobRunning,
    JobTimedOut,
    interpret_history,
)
from comfyflow.src.errors import FetchError, TransientFetchError
from comfyflow.src.utilities.asyncio_utils import BackoffPolicy, Sleep, retry_with_backoff
from comfyflow.src.utilities.constants import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    HISTORY_MAX_RETRIES,
    HISTORY_RETRY_DELAY_SECONDS,
    TRANSIENT_STATUS_CODES,
)
from comfyflow.src.utilities.helpers import join_url, make_logger

logger = make_logger(__name__)

HISTORY_RETRY_POLICY = BackoffPolicy(
    max_retries=HISTORY_MAX_RETRIES, base_delay=HISTORY_RETRY_DELAY_SECONDS
)


def raise_for_fetch_status(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    message = f"Failed to fetch {what}: {response.status_code} {response.reason_phrase}"
    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientFetchError(message, response.status_code)
    raise FetchError(message, response.status_code)


async def fetch_history(
    client: httpx.AsyncClient,
    server_url: str,
    job_id: str,
    *,
    policy: BackoffPolicy = HISTORY_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
) -> dict:
    url = join_url(server_url, f"history/{job_id}")

    async def attempt() -> dict:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch history: {e}") from e
        raise_for_fetch_status(response, "history")
        try:
            return response.json()
        except ValueError as e:
            raise FetchError("Failed to fetch history: response is not JSON") from e

    def on_retry(retry: int, delay: float, error: BaseException) -> None:
        logger.warning(f"History fetch for {job_id} failed ({error}), retry {retry} in {delay}s")

    return await retry_with_backoff(attempt, policy, sleep=sleep, on_retry=on_retry)


async def fetch_outcome(
    client: httpx.AsyncClient,
    server_url: str,
    job_id: str,
    *,
    policy: BackoffPolicy = HISTORY_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
) -> JobOutcome:
    history = await fetch_history(client, server_url, job_id, policy=policy, sleep=sleep)
    return interpret_history(history, job_id)


async def _suspend(interval_seconds: float, wake: Optional[asyncio.Event], sleep: Sleep) -> None:
    if wake is None:
        await sleep(interval_seconds)
        return
    waiters = [
        asyncio.ensure_future(sleep(interval_seconds)),
        asyncio.ensure_future(wake.wait()),
    ]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)
    wake.clear()


async def wait_for_job(
    client: httpx.AsyncClient,
    server_url: str,
    job_id: str,
    *,
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
    wake: Optional[asyncio.Event] = None,
    policy: BackoffPolicy = HISTORY_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
) -> JobOutcome:
    """
    Poll until the job completes, fails, or ``max_attempts`` is reached.

    Setting ``wake`` cuts the current interval short so the next history
    fetch happens immediately. A fatal ``FetchError`` aborts the wait.
    """
    for attempt in range(1, max_attempts + 1):
        outcome = await fetch_outcome(
            client, server_url, job_id, policy=policy, sleep=sleep
        )
        if not isinstance(outcome, JobRunning):
            logger.info(f"Job {job_id} is {outcome.status} after {attempt} poll(s)")
            return outcome
        if attempt < max_attempts:
            await _suspend(interval_seconds, wake, sleep)

    logger.warning(f"Job {job_id} still running after {max_attempts} polls")
    return JobTimedOut(attempts=max_attempts)
