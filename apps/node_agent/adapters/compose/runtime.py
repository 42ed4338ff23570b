"""Workload runtime backed by the ``docker compose`` CLI."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol, Sequence

from connectors.aws.errors import ConnectorError, NodeErrorCode

logger = logging.getLogger(__name__)

DEFAULT_COMPOSE_COMMAND: tuple[str, ...] = ("docker", "compose")

# Share of the down budget left for compose to kill stragglers and remove
# containers after the stop grace period ends.
DOWN_CLEANUP_MARGIN_SECONDS = 10.0


class ShutdownOutcome(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    FAILED = "failed"


class WorkloadRuntime(Protocol):
    """Opaque up/down toggle over a declarative service manifest."""

    def up(self, manifest_path: str) -> None:
        """Bring the manifest's services up or raise ``WORKLOAD_ACTIVATION_FAILED``."""

    def down(self, timeout: float) -> ShutdownOutcome:
        """Stop (not kill) the services, allowing ``timeout`` seconds."""


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def detail(self) -> str:
        return (self.stderr or self.stdout).strip() or f"exit code {self.returncode}"


class CommandRunner(Protocol):
    def run(self, args: Sequence[str], *, cwd: str | None, timeout: float | None) -> CommandResult:
        """Run a command to completion; raise ``subprocess.TimeoutExpired`` on timeout."""


class SubprocessRunner(CommandRunner):
    def run(self, args: Sequence[str], *, cwd: str | None, timeout: float | None) -> CommandResult:
        proc = subprocess.run(list(args), cwd=cwd, capture_output=True, text=True, timeout=timeout, check=False)
        return CommandResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")


class ComposeWorkloadRuntime(WorkloadRuntime):
    """Runs ``pull`` + ``up -d`` on activation and ``down`` on drain."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        compose_command: Sequence[str] = DEFAULT_COMPOSE_COMMAND,
        pull_before_up: bool = True,
        up_timeout_seconds: float | None = 900.0,
        manifest_resolver: Callable[[], Path | None] | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._compose_command = tuple(compose_command)
        self._pull_before_up = pull_before_up
        self._up_timeout_seconds = up_timeout_seconds
        self._manifest_resolver = manifest_resolver
        self._manifest_path: Path | None = None

    @property
    def manifest_path(self) -> Path | None:
        return self._manifest_path

    def up(self, manifest_path: str) -> None:
        manifest = Path(manifest_path)
        if not manifest.is_file():
            raise ConnectorError(NodeErrorCode.WORKLOAD_ACTIVATION_FAILED, f"manifest not found: {manifest}")

        steps = [("pull",), ("up", "-d")] if self._pull_before_up else [("up", "-d")]
        for step in steps:
            try:
                result = self._compose(manifest, step, timeout=self._up_timeout_seconds)
            except subprocess.TimeoutExpired as exc:
                raise ConnectorError(
                    NodeErrorCode.WORKLOAD_ACTIVATION_FAILED,
                    f"compose {step[0]} timed out after {self._up_timeout_seconds}s",
                    cause=exc,
                ) from exc
            if not result.ok:
                raise ConnectorError(
                    NodeErrorCode.WORKLOAD_ACTIVATION_FAILED,
                    f"compose {step[0]} failed: {result.detail()}",
                )
        self._manifest_path = manifest
        logger.info("workload_up", extra={"event": "workload_up", "manifest": str(manifest)})

    def down(self, timeout: float) -> ShutdownOutcome:
        manifest = self._manifest_path
        if manifest is None and self._manifest_resolver is not None:
            manifest = self._manifest_resolver()
        if manifest is None:
            logger.warning("workload_down_no_manifest", extra={"event": "workload_down"})
            return ShutdownOutcome.FAILED

        stop_timeout = max(1, int(timeout - min(DOWN_CLEANUP_MARGIN_SECONDS, timeout / 4)))
        try:
            result = self._compose(manifest, ("down", "--timeout", str(stop_timeout)), timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "workload_down_timeout",
                extra={"event": "workload_down", "manifest": str(manifest), "timeout_seconds": timeout},
            )
            return ShutdownOutcome.TIMEOUT

        if not result.ok:
            logger.error(
                "workload_down_failed",
                extra={"event": "workload_down", "manifest": str(manifest), "detail": result.detail()},
            )
            return ShutdownOutcome.FAILED
        logger.info("workload_down", extra={"event": "workload_down", "manifest": str(manifest)})
        return ShutdownOutcome.OK

    def _compose(self, manifest: Path, args: Sequence[str], *, timeout: float | None) -> CommandResult:
        command = [*self._compose_command, "-f", str(manifest), *args]
        logger.debug("compose_command", extra={"event": "compose", "command": command})
        try:
            return self._runner.run(command, cwd=str(manifest.parent), timeout=timeout)
        except FileNotFoundError as exc:
            return CommandResult(returncode=127, stdout="", stderr=str(exc))
