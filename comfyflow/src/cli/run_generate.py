#!/usr/bin/env python3
"""
Command-line entry point: generate images for a prompt on a ComfyUI-style server.

Settings come from ``creds.env`` / ``COMFYFLOW_*`` environment variables;
flags override them.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from comfyflow.src.data_models.config_models import GenerationConfig
from comfyflow.src.errors import ComfyFlowError
from comfyflow.src.orchestrator import generate


def validate_prompt(value: Optional[str]) -> Optional[str]:
    """Return an error message for an unusable prompt, or None."""
    if not value or not value.strip():
        return "Prompt cannot be empty."
    return None


def print_progress(ratio: float) -> None:
    print(f"\rProgress: {ratio:6.1%}", end="", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate images with a ComfyUI-compatible server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("prompt", help="Image generation prompt, e.g. 'a beautiful landscape'")
    parser.add_argument("--server-url", help="Server base URL (default: http://localhost:8188)")
    parser.add_argument("--api-key", help="Credential forwarded with the job")
    parser.add_argument("--output-dir", type=Path, help="Directory for the saved images")
    parser.add_argument("--template-file", type=Path, help="Workflow template JSON file")
    parser.add_argument("--prompt-node-id", help="Node id that receives the prompt")
    parser.add_argument("--prompt-input-key", help="Input key that receives the prompt")
    parser.add_argument("--env-file", default="creds.env", help="dotenv file to load")
    return parser


def load_config(args: argparse.Namespace) -> GenerationConfig:
    template = None
    if args.template_file:
        template = args.template_file.read_text(encoding="utf-8")
    return GenerationConfig.from_env(
        args.env_file,
        server_url=args.server_url,
        api_key=args.api_key,
        output_dir=args.output_dir,
        workflow_template=template,
        prompt_node_id=args.prompt_node_id,
        prompt_input_key=args.prompt_input_key,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    error = validate_prompt(args.prompt)
    if error:
        parser.error(error)

    try:
        config = load_config(args)
        print("Generating image with ComfyUI...")
        artifacts = asyncio.run(generate(args.prompt, config, on_progress=print_progress))
    except (ComfyFlowError, OSError) as e:
        print(f"Failed to generate image: {e}", file=sys.stderr)
        return 1

    paths = ", ".join(artifact.local_path for artifact in artifacts)
    print(f"Image(s) generated and saved: {paths}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
