#!/usr/bin/env python3
"""
Roadmap Engine CLI
==================

Inspect and mutate the roadmap state file from the command line.

Usage:
    roadmap-engine show
    roadmap-engine update ms-2 --status active --progress 40 --actor alice
    roadmap-engine sync --reason tickets-imported
    roadmap-engine versions
    roadmap-engine rollback roadmap-state-2024-05-01T10-00-00-000000Z.json
    roadmap-engine --data-dir ./data watch
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from .core.config import RoadmapConfig
from .core.exceptions import RoadmapError
from .core.logging import configure_logging, get_logger, set_correlation_id
from .roadmap.models import UpdateOptions
from .roadmap.orchestrator import RoadmapStateManager, create_roadmap_manager
from .roadmap.watcher import RoadmapSyncWatcher

logger = get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roadmap-engine",
        description="Roadmap state engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Directory holding roadmap-state.json and domain files",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML settings file (default: $ROADMAP_CONFIG)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Log level (default: $ROADMAP_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs on stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("show", help="Print the current roadmap state")

    update = subparsers.add_parser("update", help="Update one milestone")
    update.add_argument("milestone_id", help="Milestone id")
    update.add_argument("--status", help="New status")
    update.add_argument("--progress", type=float, help="New progress (0-100)")
    update.add_argument("--title", help="New title")
    update.add_argument("--dependencies", nargs="*", help="Replace dependency ids")
    update.add_argument("--link-tickets", nargs="*", dest="linked_tickets")
    update.add_argument("--link-features", nargs="*", dest="linked_features")
    update.add_argument("--link-modules", nargs="*", dest="linked_modules")
    update.add_argument("--reason", help="History reason (default: roadmap:manual-edit:<fields>)")
    update.add_argument("--actor", help="Who made the change")
    update.add_argument("--skip-git", action="store_true", help="Never auto-commit")

    sync = subparsers.add_parser("sync", help="Re-derive progress for all milestones")
    sync.add_argument("--reason", default="sync", help="History reason")

    subparsers.add_parser("versions", help="List state backups, newest first")

    rollback = subparsers.add_parser("rollback", help="Restore a backup")
    rollback.add_argument("filename", help="Backup file name (see `versions`)")

    subparsers.add_parser("watch", help="Sync whenever domain files change")

    return parser


def resolve_config(args: argparse.Namespace) -> RoadmapConfig:
    config = RoadmapConfig.from_env(config_file=args.config)
    overrides: dict[str, Any] = {}
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.json_logs:
        overrides["structured_logs"] = True
    return config.with_overrides(**overrides) if overrides else config


def _update_payload(args: argparse.Namespace) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if args.status is not None:
        payload["status"] = args.status
    if args.progress is not None:
        payload["progress"] = args.progress
    if args.title is not None:
        payload["title"] = args.title
    if args.dependencies is not None:
        payload["dependencies"] = args.dependencies
    if args.linked_tickets is not None:
        payload["linkedTickets"] = args.linked_tickets
    if args.linked_features is not None:
        payload["linkedFeatures"] = args.linked_features
    if args.linked_modules is not None:
        payload["linkedModules"] = args.linked_modules
    return payload


async def _watch(manager: RoadmapStateManager, config: RoadmapConfig) -> None:
    watcher = RoadmapSyncWatcher.from_config(manager, config)
    watcher.start()
    try:
        await asyncio.Event().wait()
    finally:
        await watcher.stop()


async def run(args: argparse.Namespace, config: RoadmapConfig) -> Any:
    """Execute one subcommand and return its JSON-serialisable result."""
    manager = create_roadmap_manager(config)
    try:
        await manager.load()

        if args.command == "show":
            return manager.get_state().to_dict()

        if args.command == "update":
            result = await manager.update_milestone(
                args.milestone_id,
                _update_payload(args),
                UpdateOptions(reason=args.reason, actor=args.actor, skip_git=args.skip_git),
            )
            git_result = result.git_automation_result
            return {
                "changed": result.changed,
                "reason": result.reason,
                "changedFields": result.changed_fields,
                "change": result.change,
                "cascadedChanges": result.cascaded_changes,
                "statusTransition": result.status_transition,
                "gitAutomationResult": git_result.to_dict() if git_result else None,
                "milestone": result.state.milestones[str(args.milestone_id)].to_dict(),
            }

        if args.command == "sync":
            result = await manager.sync(reason=args.reason)
            return {
                "changed": result.changed,
                "reason": result.reason,
                "changes": result.changes,
                "summary": result.state.summary,
            }

        if args.command == "versions":
            return await manager.list_versions()

        if args.command == "rollback":
            state = await manager.rollback(args.filename)
            return state.to_dict()

        if args.command == "watch":
            await _watch(manager, config)
            return None

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await manager.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args)
    except RoadmapError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    configure_logging(level=config.log_level, structured=config.structured_logs)
    set_correlation_id()
    logger.debug(f"roadmap-engine {args.command} (data dir: {config.data_dir})")

    try:
        result = asyncio.run(run(args, config))
    except RoadmapError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 1

    if result is not None:
        _print_json(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
