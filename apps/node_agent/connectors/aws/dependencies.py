"""Dependency injection entry points for AWS connector interfaces."""

from __future__ import annotations

from dataclasses import dataclass

from .artifact_store import S3ArtifactStore
from .config import AwsConfig
from .interfaces import ArtifactStore, TerminationNoticeSource, VersionPointerStore
from .metadata import InstanceMetadataNoticeSource, SimpleHttpSession
from .parameter_store import AwsClientFactory, SsmVersionPointerStore


@dataclass(frozen=True)
class AwsDependencies:
    """Container exposing interface-typed connector dependencies."""

    pointers: VersionPointerStore
    artifacts: ArtifactStore
    notices: TerminationNoticeSource


def build_aws_dependencies(config: AwsConfig | None = None) -> AwsDependencies:
    """Build the default dependency graph for AWS integrations."""

    resolved_config = config or AwsConfig.from_env()
    factory = AwsClientFactory(resolved_config)
    return AwsDependencies(
        pointers=SsmVersionPointerStore(client=factory.create_client("ssm")),
        artifacts=S3ArtifactStore(client=factory.create_client("s3"), bucket=resolved_config.bundle_bucket),
        notices=InstanceMetadataNoticeSource(config=resolved_config, session=SimpleHttpSession()),
    )
