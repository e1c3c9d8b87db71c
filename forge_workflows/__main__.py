"""
Run the full TestForge pipeline from the command line.

Usage:
    python -m forge_workflows --project-id p1 --repository-url https://github.com/acme/widgets
    python -m forge_workflows --project-id p1 --context-json context.json
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from forge_engine.config import ForgeSettings
from forge_engine.exceptions import ForgeError, error_message
from forge_engine.logging_config import configure_logging
from forge_workflows.workflow import run_full_pipeline

logger = logging.getLogger("forge.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forge_workflows",
        description="Analyze a repository, generate unit tests and open a pull request",
    )
    parser.add_argument("--project-id", required=True, help="Dashboard project id")
    parser.add_argument("--repository-url", default=None, help="GitHub URL or owner/repo")
    parser.add_argument(
        "--context-json",
        type=Path,
        default=None,
        help="JSON file with context data (owner, repo, fullName, defaultBranch, ...)",
    )
    return parser


def build_input(args: argparse.Namespace) -> dict:
    payload = {"projectId": args.project_id}
    if args.repository_url:
        payload["repositoryUrl"] = args.repository_url
    if args.context_json:
        payload["contextData"] = json.loads(args.context_json.read_text(encoding="utf-8"))
    return payload


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = ForgeSettings.from_env()
    configure_logging(settings.log_level, alerts_only=settings.alerts_only)

    try:
        output = asyncio.run(run_full_pipeline(build_input(args), settings=settings))
    except ForgeError as e:
        logger.error("Pipeline aborted: %s", error_message(e))
        return 1
    print(json.dumps(output.model_dump(mode="json", by_alias=True), indent=2))
    return 0 if output.success else 2


if __name__ == "__main__":
    sys.exit(main())
