from __future__ import annotations

import shlex
import subprocess
from typing import Mapping, Sequence

from app.logging import get_logger
from app.services.backups.errors import ExternalProcessFailure
from app.services.backups.producer import BackupCategory, BackupFormat, RunResult

logger = get_logger()


def render_command(template: Sequence[str], values: Mapping[str, str]) -> list[str]:
    try:
        return [part.format(**values) for part in template]
    except (KeyError, IndexError, ValueError) as exc:
        raise ExternalProcessFailure(f"Invalid command template {shlex.join(template)}: {exc}") from exc


def run_command(command: list[str], *, timeout: float | None = None, cwd: str | None = None) -> RunResult:
    display = shlex.join(command)
    logger.debug("backup_exec", command=display)
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            check=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ExternalProcessFailure(f"Command not found: {command[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        partial = exc.output.decode("utf-8", errors="ignore") if isinstance(exc.output, bytes) else ""
        raise ExternalProcessFailure(f"Command timed out after {timeout}s: {display}", output=partial) from exc
    except OSError as exc:
        raise ExternalProcessFailure(f"Command failed to start: {display}: {exc}") from exc

    output = (completed.stdout or b"").decode("utf-8", errors="ignore").strip()
    if completed.returncode != 0:
        logger.warning("backup_exec_failed", command=display, exit_code=completed.returncode)
    return RunResult(success=completed.returncode == 0, output=output, exit_code=completed.returncode)


class CommandExportRunner:
    """Runs the export executable once per category.

    The argv template may reference ``{category}``, ``{format}`` and
    ``{target}``.
    """

    def __init__(self, template: Sequence[str], *, timeout: float | None = None, cwd: str | None = None) -> None:
        self.template = list(template)
        self.timeout = timeout
        self.cwd = cwd

    def run(self, category: BackupCategory, fmt: BackupFormat, *, target: str) -> RunResult:
        command = render_command(
            self.template,
            {"category": BackupCategory(category).value, "format": BackupFormat(fmt).value, "target": target},
        )
        return run_command(command, timeout=self.timeout, cwd=self.cwd)


class CommandRestoreRunner:
    def __init__(self, template: Sequence[str], *, timeout: float | None = None, cwd: str | None = None) -> None:
        self.template = list(template)
        self.timeout = timeout
        self.cwd = cwd

    def run(self, target: str, table: str) -> RunResult:
        command = render_command(self.template, {"target": target, "table": table})
        return run_command(command, timeout=self.timeout, cwd=self.cwd)


__all__ = ["CommandExportRunner", "CommandRestoreRunner", "render_command", "run_command"]
