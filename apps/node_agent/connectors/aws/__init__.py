"""AWS control-plane connector package."""

from .artifact_store import S3ArtifactStore
from .config import AwsConfig, RetryConfig
from .dependencies import AwsDependencies, build_aws_dependencies
from .errors import (
    ConnectorError,
    NodeErrorCode,
    map_artifact_store_error,
    map_control_plane_error,
    map_metadata_error,
)
from .metadata import InstanceMetadataNoticeSource, SimpleHttpSession
from .models import Artifact, TerminationNotice, VersionPointer
from .parameter_store import AwsClientFactory, SsmVersionPointerStore

__all__ = [
    "Artifact",
    "AwsClientFactory",
    "AwsConfig",
    "AwsDependencies",
    "ConnectorError",
    "InstanceMetadataNoticeSource",
    "NodeErrorCode",
    "RetryConfig",
    "S3ArtifactStore",
    "SimpleHttpSession",
    "SsmVersionPointerStore",
    "TerminationNotice",
    "VersionPointer",
    "build_aws_dependencies",
    "map_artifact_store_error",
    "map_control_plane_error",
    "map_metadata_error",
]
