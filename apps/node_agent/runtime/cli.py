#!/usr/bin/env python3
"""Node agent command line entry point.

Usage:
  node-agent run
  node-agent bootstrap --bucket platform-bundles
  node-agent watch
  node-agent status
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Sequence

from services.bootstrap.sequencer import BootstrapError

from .config import ConfigError, NodeAgentConfig
from .node_agent import NodeAgentCompositionRoot, read_status_file, status_file_publisher

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_BOOTSTRAP_FAILED = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="node-agent", description="Spot node bootstrap and drain agent")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--region", help="Overrides NODE_AGENT_REGION")
    parser.add_argument("--pointer-name", help="Overrides NODE_AGENT_POINTER_NAME")
    parser.add_argument("--bucket", help="Overrides NODE_AGENT_BUNDLE_BUCKET")
    parser.add_argument("--workload-root", help="Overrides NODE_AGENT_WORKLOAD_ROOT")
    parser.add_argument("--state-dir", help="Overrides NODE_AGENT_STATE_DIR")

    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("run", help="Bootstrap the node, then watch for termination notices")
    subcommands.add_parser("bootstrap", help="Resolve, fetch, materialize and activate the workload once")
    watch = subcommands.add_parser("watch", help="Watch for termination notices and drain")
    watch.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    subcommands.add_parser("status", help="Print the last published agent state")
    return parser


def load_config(args: argparse.Namespace) -> NodeAgentConfig:
    config = NodeAgentConfig.from_env()
    aws_overrides = {
        key: value
        for key, value in {
            "region": args.region,
            "pointer_name": args.pointer_name,
            "bundle_bucket": args.bucket,
        }.items()
        if value
    }
    path_overrides = {
        key: value
        for key, value in {"workload_root": args.workload_root, "state_dir": args.state_dir}.items()
        if value
    }
    return dataclasses.replace(
        config,
        aws=dataclasses.replace(config.aws, **aws_overrides),
        paths=dataclasses.replace(config.paths, **path_overrides),
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = load_config(args)
    except (ConfigError, ValueError) as exc:
        logger.error("node_agent_config_invalid", extra={"event": "config", "error": str(exc)})
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.command in {"run", "bootstrap"} and not config.aws.bundle_bucket:
        print("configuration error: bundle bucket is required (--bucket or NODE_AGENT_BUNDLE_BUCKET)", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    status_path = f"{config.paths.state_dir}/status.json"
    if args.command == "status":
        print(json.dumps(read_status_file(status_path), indent=2, sort_keys=True))
        return EXIT_OK

    root = NodeAgentCompositionRoot(
        config_loader=lambda: config,
        state_publisher=status_file_publisher(status_path),
    )
    try:
        if args.command == "bootstrap":
            report = root.bootstrap()
            print(json.dumps(report.to_payload(), sort_keys=True))
        elif args.command == "watch":
            root.watch(max_cycles=1 if args.once else None)
        else:
            root.run()
    except BootstrapError as exc:
        print(f"bootstrap failed [{exc.code.value}]: {exc}", file=sys.stderr)
        return EXIT_BOOTSTRAP_FAILED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
