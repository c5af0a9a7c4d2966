from __future__ import annotations

import argparse
import json
from pathlib import Path

from mergetrain.admin import AdminSurface
from mergetrain.cache import ConditionalCache
from mergetrain.config import AppConfig, load_config
from mergetrain.console_mode import run_console_mode
from mergetrain.observability import configure_logging
from mergetrain.service_runner import build_registry, run_service


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mergetrain")
    subparsers = parser.add_subparsers(dest="command", required=True)

    service_parser = subparsers.add_parser(
        "service", help="Poll configured repositories and run their merge trains"
    )
    service_parser.add_argument("--config", type=Path, default=Path("mergetrain.toml"))
    service_parser.add_argument(
        "--once",
        action="store_true",
        help="Evaluate every repository once, wait for the queues, and print the outcome",
    )
    service_parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Enable runtime logging to stderr (default: high)",
    )

    console_parser = subparsers.add_parser(
        "console", help="Run the service with the interactive operator console"
    )
    console_parser.add_argument("--config", type=Path, default=Path("mergetrain.toml"))

    return parser


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)

    if args.command == "service":
        configure_logging(args.verbose, log_dir=config.runtime.log_dir)
        _cmd_service(config, once=bool(args.once))
        return
    if args.command == "console":
        # The console owns the terminal; logs only go to the log directory.
        configure_logging(
            "high" if config.runtime.log_dir is not None else None,
            log_dir=config.runtime.log_dir,
        )
        _cmd_console(config)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_service(config: AppConfig, *, once: bool) -> None:
    cache = ConditionalCache(config.runtime.cache_max_size)
    registry = build_registry(config, cache)
    try:
        run_service(config=config, registry=registry, once=once)
        if once:
            _print_snapshot(AdminSurface(registry, cache))
    finally:
        registry.close(timeout=5.0)


def _cmd_console(config: AppConfig) -> None:
    cache = ConditionalCache(config.runtime.cache_max_size)
    registry = build_registry(config, cache)
    try:
        run_console_mode(config=config, registry=registry, admin=AdminSurface(registry, cache))
    finally:
        registry.close(timeout=5.0)


def _print_snapshot(admin: AdminSurface) -> None:
    snapshot = admin.snapshot()
    payload = {
        "repositories": [
            {
                "repo": repo.full_name,
                "enabled": repo.enabled,
                "mutation_enabled": repo.mutation_enabled,
                "enforce_code_freeze": repo.enforce_code_freeze,
                "code_freeze_branch_name": repo.code_freeze_branch_name,
                "train": list(repo.train),
                "queue_size": repo.queue_size,
                "decision_log": list(repo.decision_log),
            }
            for repo in snapshot.repositories
        ],
        "cache_size": snapshot.cache_size,
        "rate_limit_remaining": snapshot.rate_limit_remaining,
        "rate_limit_total": snapshot.rate_limit_total,
    }
    print(json.dumps(payload, indent=2))
