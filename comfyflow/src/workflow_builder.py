"""
WorkflowBuilder: turn a raw template string plus a prompt into a submittable workflow.

Parsing is forgiving (anything that is not a JSON object falls back to the
built-in template), validation is not: a template without a single output
sink node is rejected outright.
"""

import json
from typing import Any, Dict, Optional

from comfyflow.src.data_models.default_workflow import DEFAULT_WORKFLOW
from comfyflow.src.data_models.workflow_models import (
    PromptInjectionPoint,
    WorkflowTemplate,
)
from comfyflow.src.errors import ValidationError
from comfyflow.src.utilities.helpers import make_logger

logger = make_logger(__name__)

DEFAULT_INJECTION_POINT = PromptInjectionPoint()


def parse_template(raw_template_text: Optional[str]) -> Dict[str, Any]:
    """Parse the template override, falling back to the built-in workflow."""
    if not raw_template_text or not raw_template_text.strip():
        logger.info("No workflow template configured, using built-in template")
        return DEFAULT_WORKFLOW
    try:
        template = json.loads(raw_template_text)
    except json.JSONDecodeError as e:
        logger.warning(f"Workflow template is not valid JSON ({e}), using built-in template")
        return DEFAULT_WORKFLOW
    if not isinstance(template, dict):
        logger.warning("Workflow template is not a JSON object, using built-in template")
        return DEFAULT_WORKFLOW
    logger.info("Using custom workflow template")
    return template


class WorkflowBuilder:
    """Holds one parsed base template and stamps prompt-injected copies out of it."""

    def __init__(self, base: Dict[str, Any]):
        self.base = base
        self.template = WorkflowTemplate.from_mapping(base)

    @classmethod
    def from_text(cls, raw_template_text: Optional[str]) -> "WorkflowBuilder":
        return cls(parse_template(raw_template_text))

    def validate(self) -> None:
        if not self.template.has_sink():
            raise ValidationError(
                "No output sink node (final or preview) found in workflow template."
            )

    def build(
        self,
        prompt_text: str,
        injection_point: Optional[PromptInjectionPoint] = None,
    ) -> WorkflowTemplate:
        self.validate()
        point = injection_point or DEFAULT_INJECTION_POINT

        # from_mapping deep-copies, so self.base stays reusable.
        workflow = WorkflowTemplate.from_mapping(self.base)

        if workflow.can_inject(point):
            workflow.inject(point, prompt_text)
        elif workflow.can_inject(DEFAULT_INJECTION_POINT):
            logger.warning(
                f"Prompt coordinate {point.node_id}.{point.input_key} is missing or not a "
                f"string, falling back to {DEFAULT_INJECTION_POINT.node_id}."
                f"{DEFAULT_INJECTION_POINT.input_key}"
            )
            workflow.inject(DEFAULT_INJECTION_POINT, prompt_text)
        else:
            raise ValidationError("Could not insert prompt into workflow template.")
        return workflow


def prepare(
    raw_template_text: Optional[str],
    prompt_text: str,
    injection_point: Optional[PromptInjectionPoint] = None,
) -> WorkflowTemplate:
    """Parse, validate and prompt-inject a workflow template in one step."""
    return WorkflowBuilder.from_text(raw_template_text).build(prompt_text, injection_point)
