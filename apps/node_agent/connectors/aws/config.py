"""Configuration model for AWS control-plane connectors."""

from __future__ import annotations

from dataclasses import dataclass
from os import getenv


@dataclass(frozen=True)
class RetryConfig:
    """Bounded exponential backoff for retryable control-plane calls."""

    max_attempts: int = 5
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 20.0
    jitter_ratio: float = 0.2

    def backoff_seconds(self, attempt: int, *, jitter: float = 0.0) -> float:
        """Delay before retrying after failed attempt number ``attempt``.

        ``jitter`` is a sample in ``[-1, 1]`` scaled by ``jitter_ratio``.
        """

        exponential = self.base_backoff_seconds * (2 ** max(0, attempt - 1))
        clamped = min(exponential, self.max_backoff_seconds)
        return max(0.0, clamped + clamped * self.jitter_ratio * jitter)


@dataclass(frozen=True)
class AwsConfig:
    """Centralized connector configuration."""

    region: str = "us-east-1"
    pointer_name: str = "/platform/compose_key"
    bundle_bucket: str = ""
    metadata_url: str = "http://169.254.169.254"
    metadata_token_ttl_seconds: int = 21600
    metadata_timeout_seconds: float = 2.0
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 30.0
    retry: RetryConfig = RetryConfig()

    @classmethod
    def from_env(cls) -> "AwsConfig":
        """Build config from environment variables."""

        return cls(
            region=getenv("NODE_AGENT_REGION", getenv("AWS_REGION", cls.region)),
            pointer_name=getenv("NODE_AGENT_POINTER_NAME", cls.pointer_name),
            bundle_bucket=getenv("NODE_AGENT_BUNDLE_BUCKET", ""),
            metadata_url=getenv("NODE_AGENT_METADATA_URL", cls.metadata_url),
            metadata_token_ttl_seconds=int(getenv("NODE_AGENT_METADATA_TOKEN_TTL_SECONDS", "21600")),
            metadata_timeout_seconds=float(getenv("NODE_AGENT_METADATA_TIMEOUT_SECONDS", "2.0")),
            connect_timeout_seconds=float(getenv("NODE_AGENT_CONNECT_TIMEOUT_SECONDS", "5.0")),
            read_timeout_seconds=float(getenv("NODE_AGENT_READ_TIMEOUT_SECONDS", "30.0")),
            retry=RetryConfig(
                max_attempts=int(getenv("NODE_AGENT_RETRY_MAX_ATTEMPTS", "5")),
                base_backoff_seconds=float(getenv("NODE_AGENT_RETRY_BASE_BACKOFF_SECONDS", "1.0")),
                max_backoff_seconds=float(getenv("NODE_AGENT_RETRY_MAX_BACKOFF_SECONDS", "20.0")),
                jitter_ratio=float(getenv("NODE_AGENT_RETRY_JITTER_RATIO", "0.2")),
            ),
        )
