"""Top-level node agent configuration."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from os import getenv
from pathlib import Path

from adapters.compose.runtime import DEFAULT_COMPOSE_COMMAND
from connectors.aws.config import AwsConfig
from services.drain.controller import DrainTimings

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when tunables violate their required ordering."""


@dataclass(frozen=True)
class PathsConfig:
    workload_root: str = "/opt/platform"
    state_dir: str = "/var/lib/node-agent"
    event_journal: str | None = None

    @property
    def drain_latch(self) -> Path:
        return Path(self.state_dir) / "drain.latch"

    @property
    def bootstrap_record(self) -> Path:
        return Path(self.state_dir) / "bootstrap.json"

    @property
    def journal_path(self) -> Path:
        return Path(self.event_journal) if self.event_journal else Path(self.state_dir) / "events.jsonl"

    @classmethod
    def from_env(cls) -> "PathsConfig":
        return cls(
            workload_root=getenv("NODE_AGENT_WORKLOAD_ROOT", cls.workload_root),
            state_dir=getenv("NODE_AGENT_STATE_DIR", cls.state_dir),
            event_journal=getenv("NODE_AGENT_EVENT_JOURNAL") or None,
        )


@dataclass(frozen=True)
class DrainConfig:
    """Preemption timing tunables.

    Required ordering: poll interval << notice window << quiesce idle.
    """

    poll_interval_seconds: float = 5.0
    notice_window_seconds: float = 120.0
    shutdown_timeout_seconds: float = 115.0
    quiesce_idle_seconds: float = 300.0

    def validate(self) -> "DrainConfig":
        if self.poll_interval_seconds <= 0:
            raise ConfigError("poll interval must be positive")
        if self.poll_interval_seconds * 2 > self.notice_window_seconds:
            raise ConfigError(
                f"poll interval {self.poll_interval_seconds}s is not short relative to "
                f"the {self.notice_window_seconds}s notice window"
            )
        if self.quiesce_idle_seconds <= self.notice_window_seconds:
            raise ConfigError(
                f"quiesce idle {self.quiesce_idle_seconds}s must exceed the "
                f"{self.notice_window_seconds}s notice window"
            )
        if self.shutdown_timeout_seconds <= 0:
            raise ConfigError("shutdown timeout must be positive")
        if self.shutdown_timeout_seconds > self.notice_window_seconds - self.poll_interval_seconds:
            logger.warning(
                "drain_shutdown_timeout_exceeds_window",
                extra={
                    "event": "config",
                    "shutdown_timeout_seconds": self.shutdown_timeout_seconds,
                    "notice_window_seconds": self.notice_window_seconds,
                    "poll_interval_seconds": self.poll_interval_seconds,
                },
            )
        return self

    def timings(self) -> DrainTimings:
        return DrainTimings(
            shutdown_timeout_seconds=self.shutdown_timeout_seconds,
            quiesce_idle_seconds=self.quiesce_idle_seconds,
        )

    @classmethod
    def from_env(cls) -> "DrainConfig":
        return cls(
            poll_interval_seconds=float(getenv("NODE_AGENT_POLL_INTERVAL_SECONDS", "5.0")),
            notice_window_seconds=float(getenv("NODE_AGENT_NOTICE_WINDOW_SECONDS", "120.0")),
            shutdown_timeout_seconds=float(getenv("NODE_AGENT_SHUTDOWN_TIMEOUT_SECONDS", "115.0")),
            quiesce_idle_seconds=float(getenv("NODE_AGENT_QUIESCE_IDLE_SECONDS", "300.0")),
        )


@dataclass(frozen=True)
class NodeAgentConfig:
    """Centralized agent configuration."""

    aws: AwsConfig = field(default_factory=AwsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    drain: DrainConfig = field(default_factory=DrainConfig)
    compose_command: tuple[str, ...] = DEFAULT_COMPOSE_COMMAND
    pull_before_up: bool = True

    @classmethod
    def from_env(cls) -> "NodeAgentConfig":
        """Build config from environment variables."""

        compose_command = getenv("NODE_AGENT_COMPOSE_COMMAND")
        return cls(
            aws=AwsConfig.from_env(),
            paths=PathsConfig.from_env(),
            drain=DrainConfig.from_env().validate(),
            compose_command=tuple(shlex.split(compose_command)) if compose_command else DEFAULT_COMPOSE_COMMAND,
            pull_before_up=getenv("NODE_AGENT_PULL_BEFORE_UP", "true").strip().lower() not in {"0", "false", "no"},
        )
