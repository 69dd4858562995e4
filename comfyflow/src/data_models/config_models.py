"""
Runtime configuration for a generation call.

Every field has a default, so ``GenerationConfig()`` is a working local
setup. ``from_env`` layers a dotenv file and ``COMFYFLOW_*`` (or
``COMFYUI_*``) environment variables on top of those defaults.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from comfyflow.src.errors import ValidationError
from comfyflow.src.utilities.constants import (
    COMFY_SERVER_URL,
    DEFAULT_CLIENT_TAG,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_PROMPT_INPUT_KEY,
    DEFAULT_PROMPT_NODE_ID,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    get_api_key,
    get_env_var,
    get_server_url,
)
from .workflow_models import PromptInjectionPoint


class GenerationConfig(BaseModel):
    server_url: str = Field(COMFY_SERVER_URL, description="Base URL of the compute server")
    api_key: Optional[str] = Field(None, description="Opaque credential forwarded in extra_data")
    workflow_template: str = Field("", description="JSON-encoded workflow template override")
    prompt_node_id: str = DEFAULT_PROMPT_NODE_ID
    prompt_input_key: str = DEFAULT_PROMPT_INPUT_KEY
    client_tag: str = DEFAULT_CLIENT_TAG
    poll_interval_seconds: float = Field(DEFAULT_POLL_INTERVAL_SECONDS, ge=0)
    max_poll_attempts: int = Field(DEFAULT_MAX_POLL_ATTEMPTS, ge=1)
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    request_timeout_seconds: float = Field(DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    output_dir: Path = Path(".")

    @property
    def injection_point(self) -> PromptInjectionPoint:
        return PromptInjectionPoint(
            node_id=self.prompt_node_id, input_key=self.prompt_input_key
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "GenerationConfig":
        """Load settings from the environment; explicit ``overrides`` win."""
        load_dotenv(env_file or "creds.env")

        template = get_env_var("WORKFLOW_TEMPLATE", "")
        template_file = get_env_var("WORKFLOW_TEMPLATE_FILE")
        if not template and template_file:
            template = Path(template_file).read_text(encoding="utf-8")

        values = {
            "server_url": get_server_url(),
            "api_key": get_api_key(),
            "workflow_template": template,
            "prompt_node_id": get_env_var("PROMPT_NODE_ID", DEFAULT_PROMPT_NODE_ID),
            "prompt_input_key": get_env_var("PROMPT_INPUT_KEY", DEFAULT_PROMPT_INPUT_KEY),
            "client_tag": get_env_var("CLIENT_TAG", DEFAULT_CLIENT_TAG),
            "poll_interval_seconds": get_env_var(
                "POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            "max_poll_attempts": get_env_var("MAX_POLL_ATTEMPTS", DEFAULT_MAX_POLL_ATTEMPTS),
            "timeout_seconds": get_env_var("TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            "output_dir": get_env_var("OUTPUT_DIR", "."),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e
