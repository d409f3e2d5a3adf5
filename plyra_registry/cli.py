"""
plyra-registry CLI
~~~~~~~~~~~~~~~~~~

Command-line interface for plyra-registry.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import traceback
from typing import Any

from plyra_registry.exceptions import RegistryGuardError, SessionFailedError


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="plyra-registry",
        description="plyra-registry: reversible mutations for component registries",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    subparsers = parser.add_subparsers(dest="command")

    # rollback command
    rollback_parser = subparsers.add_parser(
        "rollback", help="Restore the registry from a backup or undo patch"
    )
    rollback_parser.add_argument(
        "registry_path",
        nargs="?",
        default=None,
        help="Registry file (default: ./dist/registry.json)",
    )
    rollback_parser.add_argument(
        "source",
        nargs="?",
        default="last",
        help="'last', a backup or undo patch file, or a session id (default: last)",
    )
    rollback_parser.add_argument(
        "output_path",
        nargs="?",
        default=None,
        help="Write the restored registry here instead of in place",
    )
    rollback_parser.add_argument(
        "--no-backup", action="store_true", help="Skip the pre-rollback backup"
    )
    rollback_parser.add_argument(
        "--no-validate", action="store_true", help="Skip validation of the result"
    )
    rollback_parser.add_argument(
        "--list", action="store_true", help="List available rollback points"
    )
    rollback_parser.add_argument(
        "--cleanup", action="store_true", help="Delete old backups"
    )
    rollback_parser.add_argument(
        "--keep",
        type=_non_negative_int,
        default=None,
        help="Backups to keep with --cleanup (default: 10)",
    )
    rollback_parser.add_argument("--backup-dir", type=str, default=None)
    rollback_parser.add_argument("--history-file", type=str, default=None)
    _add_common(rollback_parser)

    # mutate command
    mutate_parser = subparsers.add_parser(
        "mutate", help="Run a mutation session from a plan file"
    )
    mutate_parser.add_argument("intent", help="What the change is meant to do")
    mutate_parser.add_argument(
        "--plan",
        type=str,
        required=True,
        help="JSON mutation plan (list of operations or {patches, metadata})",
    )
    mutate_parser.add_argument("--registry-path", type=str, default=None)
    mutate_parser.add_argument(
        "--auto-approve", action="store_true", help="Approve by risk threshold only"
    )
    mutate_parser.add_argument(
        "--non-interactive", action="store_true", help="Never prompt"
    )
    mutate_parser.add_argument(
        "--dry-run", action="store_true", help="Preview without writing"
    )
    mutate_parser.add_argument(
        "--no-transpile", action="store_true", help="Skip the transpile step"
    )
    mutate_parser.add_argument(
        "--no-deploy", action="store_true", help="Skip the deploy step"
    )
    mutate_parser.add_argument(
        "--transpile-targets",
        type=str,
        default=None,
        help="Comma-separated transpile targets",
    )
    git_group = mutate_parser.add_mutually_exclusive_group()
    git_group.add_argument(
        "--enable-git", dest="git", action="store_true", default=None
    )
    git_group.add_argument("--no-git", dest="git", action="store_false")
    mutate_parser.add_argument(
        "--max-auto-approve-risk",
        type=str,
        choices=["low", "medium", "high"],
        default=None,
    )
    _add_common(mutate_parser)

    # history command
    history_parser = subparsers.add_parser("history", help="Show recent sessions")
    history_parser.add_argument("--limit", type=int, default=10)
    history_parser.add_argument("--history-file", type=str, default=None)
    _add_common(history_parser)

    # version command
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from plyra_registry import __version__

        print(f"plyra-registry {__version__}")
        return

    handlers = {
        "rollback": _run_rollback,
        "mutate": _run_mutate,
        "history": _run_history,
    }
    if args.command not in handlers:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        handlers[args.command](args)
    except SessionFailedError as exc:
        if args.json:
            _print_json(exc.session.to_dict() if exc.session else {"success": False})
        _fail(args, exc)
    except RegistryGuardError as exc:
        if args.json:
            _print_json({"success": False, "error": str(exc)})
        _fail(args, exc)


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {number}")
    return number


def _add_common(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--config", type=str, default=None, help="Path to registry_config.yaml")
    sub.add_argument("--json", action="store_true", help="Print structured JSON output")
    sub.add_argument("--verbose", action="store_true", help="Debug logging and tracebacks")


def _fail(args: argparse.Namespace, exc: BaseException) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    if args.verbose:
        traceback.print_exception(exc, file=sys.stderr)
    sys.exit(1)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load(args: argparse.Namespace) -> Any:
    """Load configuration and apply path overrides from the command line."""
    from plyra_registry.config.loader import load_config

    config = load_config(args.config)
    if getattr(args, "backup_dir", None):
        config.backup.dir = args.backup_dir
    if getattr(args, "history_file", None):
        config.history.file = args.history_file
    return config


def _run_rollback(args: argparse.Namespace) -> None:
    """Run the rollback command."""
    from plyra_registry.rollback.manager import RollbackManager

    config = _load(args)
    manager = RollbackManager(config)
    registry_path = args.registry_path or config.registry.path

    if args.list:
        points = manager.list_rollback_points(registry_path)
        if args.json:
            _print_json([p.to_dict() for p in points])
            return
        if not points:
            print(f"No rollback points for {registry_path}")
            return
        print(f"Rollback points for {registry_path}:")
        for point in points:
            label = point.session_id or point.path
            print(f"  {point.created:%Y-%m-%d %H:%M:%S}  {point.type:<10}  {label}  {point.description}")
        return

    if args.cleanup:
        report = manager.cleanup(registry_path, keep=args.keep)
        if args.json:
            _print_json(report.to_dict())
            return
        print(f"Removed {len(report.removed)} backup(s), kept {len(report.retained)}")
        for failure in report.failed:
            print(f"  failed to remove {failure['path']}: {failure['error']}", file=sys.stderr)
        return

    result = manager.rollback(
        registry_path,
        source=args.source,
        output_path=args.output_path,
        no_backup=args.no_backup,
        no_validate=args.no_validate,
    )
    if args.json:
        _print_json(result.to_dict())
        return
    print(f"Rolled back {registry_path} using {result.method} {result.source}")
    print(f"  Written to: {result.output_path}")
    if result.backup_path:
        print(f"  Previous registry saved to: {result.backup_path}")
    if result.patches_applied:
        print(f"  Undo operations applied: {result.patches_applied}")
    for warning in result.warnings:
        print(f"  warning: {warning}")


def _run_mutate(args: argparse.Namespace) -> None:
    """Run the mutate command."""
    from plyra_registry.approval.gate import ApprovalGate
    from plyra_registry.approval.providers import ConsoleApprovalProvider
    from plyra_registry.collaborators.planner import StaticPlanner
    from plyra_registry.core.levels import RiskLevel
    from plyra_registry.core.orchestrator import SessionOrchestrator

    config = _load(args)
    interactive = not args.non_interactive and config.approval.interactive
    orchestrator = SessionOrchestrator(
        config,
        planner=StaticPlanner(plan_path=args.plan),
        approval_gate=ApprovalGate(
            ConsoleApprovalProvider() if interactive else None,
            timeout=config.approval.timeout_seconds,
        ),
    )

    targets = None
    if args.transpile_targets is not None:
        targets = [t.strip() for t in args.transpile_targets.split(",") if t.strip()]
    options = orchestrator.default_options(
        auto_approve=args.auto_approve or None,
        interactive=interactive,
        dry_run=args.dry_run,
        transpile=False if args.no_transpile else None,
        deploy=False if args.no_deploy else None,
        transpile_targets=targets,
        enable_git=args.git,
        registry_path=args.registry_path,
        max_auto_approve_risk=(
            RiskLevel.parse(args.max_auto_approve_risk)
            if args.max_auto_approve_risk
            else None
        ),
    )

    session = orchestrator.execute_intent(args.intent, options)

    if args.json:
        data = session.to_dict()
        if session.preview is not None:
            data["preview"] = session.preview.to_dict()
        _print_json(data)
        return

    if args.dry_run and session.preview is not None:
        print(session.preview.format("terminal"))
    print(f"Session {session.id}: {session.result.summary if session.result else ''}")
    for step in session.steps:
        print(f"  [{step.status.value}] {step.name}")
    if session.backup_path:
        print(f"  Backup: {session.backup_path}")
    if session.undo_path:
        print(f"  Undo patch: {session.undo_path}")
    for warning in session.warnings:
        print(f"  warning: {warning}")


def _run_history(args: argparse.Namespace) -> None:
    """Run the history command."""
    from plyra_registry.observability.session_log import SessionLog

    config = _load(args)
    entries = SessionLog(config.history.file).history(limit=args.limit)
    if args.json:
        _print_json(entries)
        return
    if not entries:
        print("No sessions recorded")
        return
    for entry in entries:
        status = "ok" if entry.get("success") else "FAILED"
        print(
            f"{entry.get('timestamp', '?')}  {entry.get('sessionId', '?')}  "
            f"{status:<6}  {entry.get('mutationsApplied', 0)} mutation(s)  "
            f"{entry.get('prompt', '')}"
        )


if __name__ == "__main__":
    main()
