"""Interfaces for control-plane and node-local signal capabilities."""

from __future__ import annotations

from typing import Protocol

from .models import Artifact, TerminationNotice, VersionPointer


class VersionPointerStore(Protocol):
    """Reads the named pointer to the current artifact."""

    def get(self, name: str) -> VersionPointer:
        """Return the pointer or raise ``ConnectorError``.

        Raises with ``POINTER_NOT_FOUND`` when the name does not exist and
        ``CONTROL_PLANE_UNAVAILABLE`` when the store cannot answer.
        """


class ArtifactStore(Protocol):
    """Fetches immutable artifact bundles by key."""

    def get(self, key: str) -> Artifact:
        """Return the artifact or raise ``ConnectorError``.

        Raises with ``ARTIFACT_NOT_FOUND`` or ``ARTIFACT_FETCH_FAILED``.
        """


class TerminationNoticeSource(Protocol):
    """Local best-effort endpoint announcing imminent involuntary termination."""

    def poll(self) -> TerminationNotice:
        """Return the current notice or raise ``ConnectorError(SIGNAL_QUERY_ERROR)``."""
