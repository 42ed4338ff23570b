"""Error normalization for node agent integrations."""

from __future__ import annotations

from enum import Enum
from typing import Any


class NodeErrorCode(str, Enum):
    CONTROL_PLANE_UNAVAILABLE = "control_plane_unavailable"
    POINTER_NOT_FOUND = "pointer_not_found"
    ARTIFACT_FETCH_FAILED = "artifact_fetch_failed"
    ARTIFACT_NOT_FOUND = "artifact_not_found"
    MATERIALIZATION_FAILED = "materialization_failed"
    WORKLOAD_ACTIVATION_FAILED = "workload_activation_failed"
    SIGNAL_QUERY_ERROR = "signal_query_error"
    BOOTSTRAP_ALREADY_RAN = "bootstrap_already_ran"


RETRYABLE_CODES = frozenset(
    {
        NodeErrorCode.CONTROL_PLANE_UNAVAILABLE,
        NodeErrorCode.ARTIFACT_FETCH_FAILED,
    }
)


class ConnectorError(Exception):
    """Agent-level normalized error."""

    def __init__(self, code: NodeErrorCode, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.code = code
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


_POINTER_MISSING_CODES = {"ParameterNotFound", "ParameterVersionNotFound"}
_OBJECT_MISSING_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}


def _client_error_code(error: Any) -> str | None:
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return None
    code = (response.get("Error") or {}).get("Code")
    return str(code) if code is not None else None


def _status_code(error: Any) -> int | None:
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return int(status_code)
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        status = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
        if status is not None:
            return int(status)
    return None


def map_control_plane_error(error: Exception | Any) -> ConnectorError:
    """Map parameter store failures to pointer errors.

    Only an explicit not-found answer is fatal; anything else means the store
    could not be reached or refused to answer and is worth retrying.
    """

    if isinstance(error, ConnectorError):
        return error
    message = str(error)
    if _client_error_code(error) in _POINTER_MISSING_CODES:
        return ConnectorError(NodeErrorCode.POINTER_NOT_FOUND, message, cause=error)
    return ConnectorError(NodeErrorCode.CONTROL_PLANE_UNAVAILABLE, message, cause=error)


def map_artifact_store_error(error: Exception | Any) -> ConnectorError:
    """Map object store failures to artifact errors."""

    if isinstance(error, ConnectorError):
        return error
    message = str(error)
    if _client_error_code(error) in _OBJECT_MISSING_CODES or _status_code(error) == 404:
        return ConnectorError(NodeErrorCode.ARTIFACT_NOT_FOUND, message, cause=error)
    return ConnectorError(NodeErrorCode.ARTIFACT_FETCH_FAILED, message, cause=error)


def map_metadata_error(error: Exception | Any) -> ConnectorError:
    if isinstance(error, ConnectorError):
        return error
    return ConnectorError(NodeErrorCode.SIGNAL_QUERY_ERROR, str(error), cause=error)
