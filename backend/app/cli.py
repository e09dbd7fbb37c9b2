"""nomad-admin: operator commands for backups and IP bans.

``export`` and ``restore`` are also the executables the backup service shells
out to when ``BACKUP_EXPORT_RUNNER=command``; they always work in-process
against the configured database.

Usage examples::

    nomad-admin export --type users --format json
    nomad-admin export --type jobs --target backups/2024-05-01_10-00-00
    nomad-admin restore backups/2024-05-01_10-00-00 --table users --yes
    nomad-admin list --json
    nomad-admin cleanup --older-than-days 30
    nomad-admin ban-ip 203.0.113.7 --reason "credential stuffing" --expires-in-hours 24
"""
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.session import session_scope
from app.services.backups import (
    BackupCategory,
    BackupError,
    BackupFormat,
    BackupService,
    DatabaseExportRunner,
    DatabaseRestoreRunner,
    build_backup_store,
    format_bytes,
)
from app.services.backups.database import backup_name_from_target
from app.services.security import ban_ip, unban_ip

__all__ = ["main", "parse_args"]

EXIT_OK = 0
EXIT_FAILURE = 1


class CLIError(RuntimeError):
    """Raised for operator errors that should end the command with exit code 1."""


def log(message: str) -> None:
    print(message, file=sys.stderr)


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="nomad-admin", description="Digital Nomad Guide operator commands")
    commands = parser.add_subparsers(dest="command", required=True)

    export = commands.add_parser("export", help="Export application data into a backup directory")
    export.add_argument("--type", dest="category", choices=[item.value for item in BackupCategory], default="all")
    export.add_argument(
        "--format",
        dest="fmt",
        choices=[item.value for item in BackupFormat],
        default=settings.backup_default_format,
    )
    export.add_argument("--target", default=None, help="Existing backup location (<prefix>/<name>) to export into")

    restore = commands.add_parser("restore", help="Restore tables from a backup")
    restore.add_argument("backup", help="Backup name or <prefix>/<name> location")
    restore.add_argument("--table", default="all", help="Table to restore, or 'all'")
    restore.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    listing = commands.add_parser("list", help="List backups, newest first")
    listing.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON instead of a table")

    cleanup = commands.add_parser("cleanup", help="Delete old backups")
    strategy = cleanup.add_mutually_exclusive_group()
    strategy.add_argument("--older-than-days", type=int, default=None)
    strategy.add_argument("--keep-latest", type=int, default=None)

    ban = commands.add_parser("ban-ip", help="Ban a client address")
    ban.add_argument("ip")
    ban.add_argument("--reason", default=None)
    ban.add_argument("--expires-in-hours", type=float, default=None)

    unban = commands.add_parser("unban-ip", help="Lift every active ban of a client address")
    unban.add_argument("ip")

    return parser.parse_args(list(argv))


def _default_service() -> BackupService:
    from app.db.session import engine

    settings = get_settings()
    store = build_backup_store(settings)
    return BackupService(
        store,
        DatabaseExportRunner(engine, store),
        DatabaseRestoreRunner(engine, store),
        settings,
    )


def _confirm(prompt: str) -> bool:
    if not sys.stdin.isatty():
        return True
    answer = input(f"{prompt} [y/N] ").strip().lower()
    return answer in {"y", "yes"}


def _run_export(args: argparse.Namespace, service: BackupService) -> int:
    if args.target:
        name = backup_name_from_target(service.store, args.target)
        result = service.producer.runner.run(
            BackupCategory(args.category),
            BackupFormat(args.fmt),
            target=f"{service.store.prefix}/{name}",
        )
        if result.output:
            print(result.output)
        return EXIT_OK if result.success else EXIT_FAILURE

    outcome = service.create_backup(args.category, args.fmt)
    if outcome.output:
        print(outcome.output)
    log(outcome.message)
    return EXIT_OK if outcome.success else EXIT_FAILURE


def _run_restore(args: argparse.Namespace, service: BackupService) -> int:
    name = backup_name_from_target(service.store, args.backup)
    if not args.yes and not _confirm("This will overwrite existing data. Continue?"):
        log("Restore cancelled.")
        return EXIT_OK
    result = service.restore_backup(name, args.table)
    if result.output:
        print(result.output)
    return EXIT_OK if result.success else EXIT_FAILURE


def _run_list(args: argparse.Namespace, service: BackupService) -> int:
    scan = service.scan()
    if args.as_json:
        payload = {
            "backups": [
                {
                    "name": backup.name,
                    "created_at": backup.created_at.isoformat(),
                    "files": backup.file_count,
                    "total_size_bytes": backup.total_size_bytes,
                }
                for backup in scan.backups
            ],
            "skipped": [{"name": entry.name, "reason": entry.reason} for entry in scan.skipped],
        }
        print(json.dumps(payload, indent=2))
        return EXIT_OK

    for backup in scan.backups:
        print(f"{backup.name}\t{backup.file_count} files\t{backup.size_human}")
    for entry in scan.skipped:
        log(f"skipped {entry.name}: {entry.reason}")
    stats = service.catalog.aggregate_stats(scan.backups)
    log(f"{stats.count} backups, {format_bytes(stats.total_size_bytes)} total")
    return EXIT_OK


def _run_cleanup(args: argparse.Namespace, service: BackupService) -> int:
    if args.keep_latest is not None:
        report = service.keep_latest(args.keep_latest)
    else:
        report = service.cleanup_older_than(args.older_than_days)
    for name in report.deleted:
        print(f"deleted {name}")
    for name, reason in report.failed.items():
        log(f"failed {name}: {reason}")
    return EXIT_OK if report.success else EXIT_FAILURE


def _run_ban(args: argparse.Namespace, session_factory: Callable[[], Session] | None) -> int:
    expires_at = None
    if args.expires_in_hours is not None:
        if args.expires_in_hours <= 0:
            raise CLIError("--expires-in-hours must be positive")
        expires_at = datetime.now(timezone.utc) + timedelta(hours=args.expires_in_hours)
    with session_scope(session_factory) as session:
        ban = ban_ip(session, args.ip, reason=args.reason, expires_at=expires_at)
    print(f"banned {ban.ip_address}")
    return EXIT_OK


def _run_unban(args: argparse.Namespace, session_factory: Callable[[], Session] | None) -> int:
    with session_scope(session_factory) as session:
        lifted = unban_ip(session, args.ip)
    if not lifted:
        log(f"{args.ip} has no active ban")
        return EXIT_FAILURE
    print(f"unbanned {args.ip} ({lifted} bans lifted)")
    return EXIT_OK


def main(
    argv: Iterable[str] | None = None,
    *,
    service: BackupService | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        if args.command in {"ban-ip", "unban-ip"}:
            handler = _run_ban if args.command == "ban-ip" else _run_unban
            return handler(args, session_factory)

        backup_service = service or _default_service()
        handlers = {
            "export": _run_export,
            "restore": _run_restore,
            "list": _run_list,
            "cleanup": _run_cleanup,
        }
        return handlers[args.command](args, backup_service)
    except (BackupError, CLIError) as exc:
        log(f"error: {exc}")
        return EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
