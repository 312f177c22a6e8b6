"""
Command-line entry point for MRF discovery and download.

Usage:
    # List every file the publisher currently advertises
    python -m mrf_pipeline discover --output files.json

    # Download the first 20 discovered files, 4 at a time
    python -m mrf_pipeline download --limit 20 --concurrency 4 --output-dir ./mrf

    # Download a single known URL
    python -m mrf_pipeline fetch-url https://example.com/2025-01-01_in-network.json.gz

    # Publisher metadata and reachability
    python -m mrf_pipeline metadata
    python -m mrf_pipeline health

    # Expose Prometheus metrics while running
    python -m mrf_pipeline --metrics-port 8000 download
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from prometheus_client import start_http_server

from mrf_pipeline.common.exceptions import ConfigurationError, SourceError
from mrf_pipeline.common.logging.context import set_log_context
from mrf_pipeline.common.logging.setup import generate_run_id, get_logger, setup_logging
from mrf_pipeline.config import PipelineConfig
from mrf_pipeline.sources import get_source
from mrf_pipeline.sources.base import BaseSource
from mrf_pipeline.sources.models import FetchOutcome

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="mrf_pipeline",
        description="Discover and download machine-readable price transparency files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Console logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from config, ./logs)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Start a Prometheus metrics server on this port",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    discover = commands.add_parser("discover", help="List all downloadable files")
    discover.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write descriptors as JSON to this file (default: stdout)",
    )

    download = commands.add_parser("download", help="Discover and download files")
    download.add_argument("--limit", type=int, default=None, help="Download at most N files")
    download.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent downloads (default: from config)",
    )
    download.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Download directory (default: from config)",
    )

    fetch_url = commands.add_parser("fetch-url", help="Download a single URL")
    fetch_url.add_argument("url")
    fetch_url.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Download directory (default: from config)",
    )

    commands.add_parser("metadata", help="Show publisher metadata")
    commands.add_parser("health", help="Check that the publisher is reachable")

    return parser.parse_args(argv)


def _print_json(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def _report(outcomes: List[FetchOutcome]) -> int:
    failed = [o for o in outcomes if not o.success]
    for outcome in failed:
        logger.warning(f"Failed {outcome.descriptor.url}: {outcome.error}")
    logger.info(
        f"{len(outcomes) - len(failed)}/{len(outcomes)} files downloaded",
        extra={
            "records_succeeded": len(outcomes) - len(failed),
            "records_failed": len(failed),
        },
    )
    return 1 if failed else 0


async def run_command(args: argparse.Namespace, config: PipelineConfig) -> int:
    """Run one CLI command against the configured source. Returns exit code."""
    source: BaseSource = get_source(config.source, config.to_source_config())
    options = config.to_fetch_options()

    async with source:
        if args.command == "discover":
            descriptors = await source.discover_files()
            payload = [d.to_dict() for d in descriptors]
            if args.output:
                args.output.parent.mkdir(parents=True, exist_ok=True)
                args.output.write_text(json.dumps(payload, indent=2, default=str))
                logger.info(f"Wrote {len(payload)} descriptors to {args.output}")
            else:
                _print_json(payload)
            return 0

        if args.command == "download":
            descriptors = await source.discover_files()
            if args.limit is not None:
                descriptors = descriptors[: args.limit]
            output_dir = args.output_dir or config.output_dir
            concurrency = args.concurrency or config.download_concurrency

            def on_progress(completed: int, total: int) -> None:
                logger.info(
                    f"Progress: {completed}/{total}",
                    extra={"completed": completed, "total": total},
                )

            outcomes = await source.fetch_all_files_to_disk(
                descriptors,
                output_dir,
                options,
                max_concurrency=concurrency,
                on_progress=on_progress,
            )
            return _report(outcomes)

        if args.command == "fetch-url":
            descriptor = source.descriptor_for_url(args.url)
            output_dir = args.output_dir or config.output_dir
            outcomes = await source.fetch_all_files_to_disk(
                [descriptor], output_dir, options
            )
            for outcome in outcomes:
                if outcome.success:
                    print(outcome.path)
            return _report(outcomes)

        if args.command == "metadata":
            _print_json(await source.get_metadata())
            return 0

        if args.command == "health":
            healthy = await source.health_check()
            print("healthy" if healthy else "unhealthy")
            return 0 if healthy else 1

    raise ConfigurationError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    global logger
    args = parse_args(argv)

    try:
        config = PipelineConfig.load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    log_level = getattr(logging, args.log_level or config.log_level, logging.INFO)

    # JSON logs: controlled via JSON_LOGS env var (default: true)
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_dir = Path(args.log_dir) if args.log_dir else config.log_dir

    setup_logging(
        name="mrf_pipeline",
        source=config.source,
        stage=args.command,
        log_dir=log_dir,
        json_format=json_logs,
        console_level=log_level,
    )
    set_log_context(run_id=generate_run_id())

    # Re-get logger after setup to use new handlers
    logger = get_logger(__name__)

    if args.metrics_port:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    try:
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except SourceError as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
