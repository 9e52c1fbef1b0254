"""CLI: dry-run one clustering decision for a workflow description."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from clusterwms.adapters.mock import (
    MockBatchService,
    MockEventSource,
    MockJobManager,
    MockWorkflowProvider,
)
from clusterwms.config import Settings
from clusterwms.core.controller import Controller
from clusterwms.errors import ClusterWMSError, ConfigurationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clusterwms",
        description="clusterwms CLI: plan placeholder jobs for a workflow",
    )
    sub = parser.add_subparsers(dest="command")

    plan = sub.add_parser("plan", help="Show the reservations the first decision cycle would request")
    plan.add_argument("workflow", help="Workflow JSON file ({'tasks': [{'id', 'flops', 'parents'}]})")
    plan.add_argument("--clustering-spec", default=None,
                      help="hc-<tasks>-<nodes>[:merge] or zhang[:overlap][:plimit]")
    plan.add_argument("--hosts", type=int, default=16, help="Hosts behind the batch queue")
    plan.add_argument("--core-speed", type=float, default=1e9, help="Per-core flop rate")
    plan.add_argument("--queue-wait", type=float, default=0.0,
                      help="Constant predicted queue wait (seconds)")
    plan.add_argument("--overlap", action="store_true", help="Allow concurrently active groups")
    plan.add_argument("--plimit", action="store_true",
                      help="Fail when a level has more tasks than hosts")
    plan.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    overrides: dict = {
        "overlap": args.overlap,
        "plimit": args.plimit,
        "log_level": args.log_level,
    }
    if args.clustering_spec:
        overrides["clustering_spec"] = args.clustering_spec
    return Settings(**overrides)


async def run_plan(args: argparse.Namespace) -> list[dict]:
    with open(args.workflow) as f:
        workflow = MockWorkflowProvider.from_dict(json.load(f))

    settings = build_settings(args)
    job_manager = MockJobManager()
    batch = MockBatchService(core_speed=args.core_speed, hosts=args.hosts, wait=args.queue_wait)
    controller = Controller(
        workflow, job_manager, batch, MockEventSource(job_manager, workflow), settings
    )
    await controller.initialize()
    submitted = await controller.decide()

    return [
        {
            "reservation": ph.reservation.name,
            "levels": [ph.start_level, ph.end_level],
            "nodes": ph.clustered_job.num_nodes,
            "runtime": round(ph.requested_runtime, 3),
            "service_args": ph.reservation.service_args(),
            "tasks": [t.id for t in ph.tasks],
        }
        for ph in submitted
    ] + ([{"individual_mode": True}] if controller.strategy.individual_mode else [])


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        plan = asyncio.run(run_plan(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except ClusterWMSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(plan, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
