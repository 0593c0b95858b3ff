"""Main entry point for taskquota: cooldown and quota tracking for rewarded tasks."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from taskquota.config_loader import DEFAULT_CONFIG_YAML, load_config
from taskquota.engine import Engine, build_engine
from taskquota.errors import TaskQuotaError

DEFAULT_CONFIG_PATH = Path("config") / "limits.yaml"

logger = logging.getLogger(__name__)


def _config_path(args) -> Path:
    return Path(args.config) if getattr(args, "config", None) else DEFAULT_CONFIG_PATH


async def show_status(engine: Engine, task_id: int, user_id: int) -> dict:
    """Print stats and the current decision for one key."""
    stats, decision = await engine.check(task_id, user_id)
    limits = engine.limits_for(task_id)

    print(f"\n=== Task {task_id} / User {user_id} ===\n")
    print(f"Hourly: {stats.hourly_count}"
          + (f" / {limits.hourly_limit}" if limits.hourly_limit else " (unlimited)"))
    print(f"Daily:  {stats.daily_count}"
          + (f" / {limits.daily_limit}" if limits.daily_limit else " (unlimited)"))
    last = stats.last_completion.astimezone().strftime("%Y-%m-%d %H:%M:%S") if stats.last_completion else "never"
    print(f"Last completion: {last}")
    print(f"\nCan complete: {'yes' if decision.can_complete else 'no'}")
    if decision.is_on_cooldown:
        print(f"Cooldown: {decision.cooldown_time_left} left")
    if decision.limit_message:
        print(f"  {decision.limit_message}")
    return decision.to_dict()


async def show_history(engine: Engine, task_id: int, user_id: int) -> int:
    records = await engine.log.query(task_id, user_id)
    records.sort(key=lambda r: r.completed_at, reverse=True)
    print(f"\n{len(records)} completion(s) for task {task_id} / user {user_id}:")
    for r in records:
        print(f"  {r.completed_at.astimezone().strftime('%Y-%m-%d %H:%M:%S')}")
    return len(records)


async def run_server(engine: Engine, host: str | None = None, port: int | None = None) -> None:
    """Serve the dashboard with the cache sweeper running."""
    import uvicorn
    from taskquota.dashboard.app import create_app

    app = create_app(engine)
    engine.start_maintenance()

    config = uvicorn.Config(
        app,
        host=host or engine.config.dashboard.host,
        port=port or engine.config.dashboard.port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


async def async_main(args) -> None:
    config = load_config(_config_path(args))
    engine = await build_engine(
        config, load_task_limits=args.command in ("serve", "status"),
    )
    try:
        if args.command == "serve":
            await run_server(engine, host=args.host, port=args.port)
        elif args.command == "status":
            await show_status(engine, args.task, args.user)
        elif args.command == "history":
            await show_history(engine, args.task, args.user)
        elif args.command == "prune":
            removed = await engine.prune_now()
            remaining = await engine.log.count()
            print(f"Pruned {removed} completion(s); {remaining} retained")
    finally:
        await engine.shutdown()


def _cmd_init(args) -> None:
    """Write a default config file if none exists."""
    path = _config_path(args)
    if path.exists():
        print(f"  {path} already exists")
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_YAML)
    print(f"  Created {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskquota", description="taskquota: cooldown and quota tracking for rewarded tasks",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to limits.yaml")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("init", help="Write a default config/limits.yaml")

    serve_parser = sub.add_parser("serve", help="Start the dashboard API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--log-file", default=None, help="Log to a rotating file")

    for name, help_text in (
        ("status", "Show stats and the current decision for a task/user"),
        ("history", "List retained completions for a task/user"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--task", type=int, required=True, help="Task id")
        p.add_argument("--user", type=int, required=True, help="User id")

    sub.add_parser("prune", help="Delete completions older than the retention window")
    return parser


def cli_main(argv: list[str] | None = None) -> int:
    # Load .env before anything else so env vars are available immediately
    from dotenv import load_dotenv
    load_dotenv()

    from taskquota.logging_config import setup_file_logging, setup_logging
    setup_logging()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1
    if args.command == "init":
        _cmd_init(args)
        return 0
    if args.command == "serve" and args.log_file:
        setup_file_logging(Path(args.log_file))

    try:
        asyncio.run(async_main(args))
    except (FileNotFoundError, ValueError, TaskQuotaError) as exc:
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(cli_main())
