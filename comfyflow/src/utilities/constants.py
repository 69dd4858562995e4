import os
from typing import Optional

COMFY_SERVER_URL = "http://localhost:8188"
DEFAULT_CLIENT_TAG = "comfyflow"

# Well-known prompt coordinate of the built-in text-to-image workflow.
DEFAULT_PROMPT_NODE_ID = "6"
DEFAULT_PROMPT_INPUT_KEY = "text"

# History and artifact GETs answer 404 while the server is still writing.
TRANSIENT_STATUS_CODES = frozenset({404, 500})

HISTORY_MAX_RETRIES = 3
HISTORY_RETRY_DELAY_SECONDS = 1.0
ARTIFACT_MAX_RETRIES = 2
ARTIFACT_RETRY_DELAY_SECONDS = 1.0
CHANNEL_MAX_RECONNECTS = 3
CHANNEL_BACKOFF_BASE_SECONDS = 2.0

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 150
DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0


def get_env_var(suffix, default=None):
    for prefix in ("COMFYFLOW", "COMFYUI"):
        if value := os.getenv(f"{prefix}_{suffix}", ""):
            return value
    return default


def get_server_url() -> str:
    return get_env_var("SERVER_URL", COMFY_SERVER_URL).rstrip("/")


def get_api_key() -> Optional[str]:
    return get_env_var("API_KEY")
