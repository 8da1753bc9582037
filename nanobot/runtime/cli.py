from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from ..providers import ProviderConfigError
from .runtime import build_runtime, onboard, run_interactive, run_once, setup_logging
from .settings import load_settings


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "onboard":
        settings = load_settings()
        workspace = args.workspace or settings.workspace
        created = onboard(workspace)
        for path in created:
            print(f"created {path}")
        print(f"Workspace ready at {workspace}")
        return 0

    if args.command == "agent":
        settings = load_settings()
        if args.workspace:
            settings.workspace = args.workspace
        if args.model:
            settings.model = args.model
        if args.log_level:
            settings.log_level = args.log_level
        setup_logging(settings.workspace_path, settings.log_file_level)
        try:
            runtime = build_runtime(settings)
        except ProviderConfigError as exc:
            print(f"Configuration error: {exc}")
            print("Run `nanobot onboard` and set a provider API key in the workspace .env file.")
            return 2
        if args.message:
            asyncio.run(run_once(runtime, args.message))
        else:
            asyncio.run(run_interactive(runtime))
        return 0

    parser.print_help()
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nanobot", description="nanobot personal AI assistant")
    subparsers = parser.add_subparsers(dest="command")

    agent_parser = subparsers.add_parser("agent", help="Chat with the agent in the terminal")
    agent_parser.add_argument("-m", "--message", help="Process a single message and exit")
    agent_parser.add_argument("--workspace", help="Workspace directory override")
    agent_parser.add_argument("--model", help="Model override")
    agent_parser.add_argument("--log-level", help="Event log level (quiet, simple, full, debug)")

    onboard_parser = subparsers.add_parser("onboard", help="Create the workspace skeleton")
    onboard_parser.add_argument("--workspace", help="Workspace directory override")
    return parser


if __name__ == "__main__":
    raise SystemExit(main())
