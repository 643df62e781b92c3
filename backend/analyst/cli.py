#!/usr/bin/env python3
"""
Analyst CLI

Command-line interface for the Python data analysis agent.
"""

import sys
import asyncio
import argparse
from typing import List, Optional

from dotenv import load_dotenv

from backend.analyst.config import AnalystConfig
from backend.analyst.errors import ConfigurationError, DiscoveryFailed
from backend.analyst.prompts import EXAMPLE_QUERY
from backend.analyst.session import build_session, list_tools, run_once
from backend.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="analyst",
        description="Python data analysis agent backed by a sandboxed code runtime",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--query", help="Answer one query and exit")
    mode.add_argument(
        "--example", action="store_true", help="Run the built-in Markov chain example query"
    )
    parser.add_argument(
        "--list-tools", action="store_true", help="Print the runtime's tools and exit"
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: ANALYST_LOG_LEVEL)")
    return parser


async def _run(config: AnalystConfig, args: argparse.Namespace) -> int:
    if args.list_tools:
        return await list_tools(config)
    if args.example:
        return await run_once(config, EXAMPLE_QUERY)
    if args.query:
        return await run_once(config, args.query)

    print("Starting Python Data Analysis Agent...")
    print(f"Connecting to execution runtime: {config.launch_spec().describe()}")
    await build_session(config).run()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    load_dotenv()

    # Load configuration
    try:
        config = AnalystConfig.from_env()
        if args.log_level:
            config.log_level = args.log_level
        config.validate()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(log_level=config.log_level, log_dir=config.log_dir, force=True)

    try:
        return asyncio.run(_run(config, args))
    except DiscoveryFailed as e:
        logger.error("Initialization failed", error=str(e))
        print(f"Initialization error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
