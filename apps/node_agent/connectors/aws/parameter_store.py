"""SSM Parameter Store backed version pointer reads."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

from .config import AwsConfig
from .errors import ConnectorError, NodeErrorCode, map_control_plane_error
from .interfaces import VersionPointerStore
from .models import VersionPointer

logger = logging.getLogger(__name__)


class AwsClientFactory:
    """Creates boto3 service clients sharing region and timeout settings.

    botocore's own retries are disabled; callers apply the agent retry policy
    so attempts are counted and reported in one place.
    """

    def __init__(self, config: AwsConfig):
        self._config = config
        self._session = boto3.session.Session(region_name=config.region)

    def create_client(self, service_name: str) -> Any:
        return self._session.client(
            service_name,
            config=BotoConfig(
                connect_timeout=self._config.connect_timeout_seconds,
                read_timeout=self._config.read_timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )


class SsmVersionPointerStore(VersionPointerStore):
    def __init__(self, *, client: Any) -> None:
        self._client = client

    def get(self, name: str) -> VersionPointer:
        try:
            response = self._client.get_parameter(Name=name)
        except Exception as exc:  # mapped to pointer errors for the sequencer
            raise map_control_plane_error(exc) from exc

        value = str((response.get("Parameter") or {}).get("Value") or "").strip()
        if not value:
            raise ConnectorError(NodeErrorCode.POINTER_NOT_FOUND, f"parameter {name} has no value")
        logger.debug("version_pointer_read", extra={"event": "pointer_read", "pointer_name": name, "value": value})
        return VersionPointer(name=name, value=value)
