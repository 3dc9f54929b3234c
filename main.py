"""CLI entrypoint for scheduled runs, queue workers and admin triggers."""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import json
import logging
import sys

from core import GateMode, TriggerKind
from review import parse_candidate_json
from utils.exceptions import EnrichmentError
from utils.logger import configure_root_logging
from webapp.runtime import build_runtime, get_runtime


def _now(text: str):
    raw = str(text or "").strip()
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(timezone.utc)


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="Chef enrichment CLI")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    monthly = sub.add_parser("monthly-refresh")
    monthly.add_argument("--now-utc", default="")

    weekly = sub.add_parser("weekly-status")
    weekly.add_argument("--now-utc", default="")

    worker = sub.add_parser("process-queue")
    worker.add_argument("--dry-run", action="store_true", help="Run extraction but write no facts")

    approved = sub.add_parser("process-approved")
    approved.add_argument("--limit", type=int, default=20)

    trigger = sub.add_parser("trigger-chef")
    trigger.add_argument("--chef-id", required=True)
    trigger.add_argument("--type", default=TriggerKind.FULL.value, choices=[item.value for item in TriggerKind])
    trigger.add_argument("--priority", type=float, default=None)

    discover = sub.add_parser("discover-show")
    discover.add_argument("--url", required=True)
    discover.add_argument("--show-name", default=None)
    discover.add_argument("--force", action="store_true")

    sub.add_parser("stats")

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    configure_root_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=args.port)
        return

    runtime = build_runtime(gate_mode=GateMode.DRY_RUN) if getattr(args, "dry_run", False) else get_runtime()

    try:
        if args.command == "monthly-refresh":
            _print(runtime.scheduler.run_monthly_refresh(_now(args.now_utc)))
            return

        if args.command == "weekly-status":
            _print(runtime.scheduler.run_weekly_status(_now(args.now_utc)))
            return

        if args.command == "process-queue":
            _print(asyncio.run(runtime.worker.run_once()))
            return

        if args.command == "process-approved":
            _print(runtime.materializer.process(limit=args.limit))
            return

        if args.command == "trigger-chef":
            _print(
                runtime.orchestrator.trigger_chef(
                    args.chef_id,
                    TriggerKind(args.type),
                    priority=args.priority,
                    triggered_by="cli",
                )
            )
            return

        if args.command == "discover-show":
            summary = asyncio.run(
                runtime.discovery.discover(
                    args.url,
                    parse_candidate_json,
                    show_name=args.show_name,
                    force=args.force,
                )
            )
            _print(summary)
            return

        if args.command == "stats":
            stats = runtime.orchestrator.stats()
            stats["review_queue"] = runtime.reviews.stats()
            _print(stats)
    except EnrichmentError as exc:
        _print({"error": exc.message, "details": exc.details})
        sys.exit(1)


if __name__ == "__main__":
    main()
