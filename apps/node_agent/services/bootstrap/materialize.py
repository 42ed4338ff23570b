"""Local workload root materialization with a crash-safe completion marker."""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import tarfile
import zipfile
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from connectors.aws.errors import ConnectorError, NodeErrorCode
from connectors.aws.models import Artifact

logger = logging.getLogger(__name__)

MARKER_NAME = ".materialized.json"
MANIFEST_NAMES: tuple[str, ...] = ("compose.yml", "compose.yaml", "docker-compose.yml", "docker-compose.yaml")

_ARCHIVE_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, tarfile.TarError, zlib.error, EOFError)


class RootState(str, Enum):
    EMPTY = "empty"
    CLEAN = "clean"
    PARTIAL = "partial"


@dataclass(frozen=True)
class MaterializationMarker:
    artifact_key: str
    sha256: str
    manifest: str
    materialized_at: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "artifact_key": self.artifact_key,
            "sha256": self.sha256,
            "manifest": self.manifest,
            "materialized_at": self.materialized_at,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "MaterializationMarker":
        return cls(
            artifact_key=str(payload["artifact_key"]),
            sha256=str(payload["sha256"]),
            manifest=str(payload["manifest"]),
            materialized_at=str(payload.get("materialized_at") or ""),
        )


@dataclass(frozen=True)
class MaterializationResult:
    root: Path
    manifest_path: Path
    marker: MaterializationMarker
    prior_state: RootState


class WorkloadMaterializer:
    """Owns the workload root while an artifact is being unpacked into it.

    The marker is removed before anything else is touched and written only
    after the unpack and manifest lookup succeed, so a root without a marker
    is never treated as runnable.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def marker_path(self) -> Path:
        return self._root / MARKER_NAME

    def read_marker(self) -> MaterializationMarker | None:
        try:
            payload = json.loads(self.marker_path.read_text(encoding="utf-8"))
            return MaterializationMarker.from_payload(payload)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("materialization_marker_unreadable", extra={"event": "marker_read", "error": str(exc)})
            return None

    def inspect(self) -> RootState:
        if self.read_marker() is not None:
            return RootState.CLEAN
        if self._root.is_dir() and any(self._root.iterdir()):
            return RootState.PARTIAL
        return RootState.EMPTY

    def is_materialized(self, artifact_key: str) -> bool:
        marker = self.read_marker()
        return marker is not None and marker.artifact_key == artifact_key

    def current_manifest(self) -> Path | None:
        marker = self.read_marker()
        if marker is None:
            return None
        return self._root / marker.manifest

    def materialize(self, artifact: Artifact) -> MaterializationResult:
        prior_state = self.inspect()
        if prior_state is RootState.PARTIAL:
            logger.warning(
                "workload_root_partial",
                extra={"event": "materialize", "root": str(self._root), "artifact_key": artifact.key},
            )
        try:
            self._clear_root()
            self._unpack(artifact.body)
            manifest = self._locate_manifest()
            marker = MaterializationMarker(
                artifact_key=artifact.key,
                sha256=artifact.sha256,
                manifest=manifest.relative_to(self._root).as_posix(),
                materialized_at=_now_iso(),
            )
            self._write_marker(marker)
        except ConnectorError:
            raise
        except _ARCHIVE_ERRORS as exc:
            raise ConnectorError(
                NodeErrorCode.MATERIALIZATION_FAILED, f"corrupt archive {artifact.key}: {exc}", cause=exc
            ) from exc
        except (OSError, ValueError) as exc:
            raise ConnectorError(
                NodeErrorCode.MATERIALIZATION_FAILED, f"unable to materialize {artifact.key}: {exc}", cause=exc
            ) from exc

        logger.info(
            "workload_root_materialized",
            extra={"event": "materialize", "root": str(self._root), "artifact_key": artifact.key, "manifest": marker.manifest},
        )
        return MaterializationResult(
            root=self._root,
            manifest_path=self._root / marker.manifest,
            marker=marker,
            prior_state=prior_state,
        )

    def _clear_root(self) -> None:
        self.marker_path.unlink(missing_ok=True)
        self._root.mkdir(parents=True, exist_ok=True)
        for child in self._root.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    def _unpack(self, body: bytes) -> None:
        buffer = io.BytesIO(body)
        if zipfile.is_zipfile(buffer):
            buffer.seek(0)
            with zipfile.ZipFile(buffer) as archive:
                for name in archive.namelist():
                    self._check_member(name)
                archive.extractall(self._root)
            return

        buffer.seek(0)
        try:
            archive = tarfile.open(fileobj=buffer, mode="r:*")
        except tarfile.TarError as exc:
            raise ConnectorError(NodeErrorCode.MATERIALIZATION_FAILED, "artifact is not a zip or tar archive", cause=exc) from exc
        with archive:
            for member in archive.getmembers():
                self._check_member(member.name)
            archive.extractall(self._root, filter="data")

    def _check_member(self, name: str) -> None:
        path = PurePosixPath(name.replace("\\", "/"))
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"archive member escapes workload root: {name}")
        if path.name == MARKER_NAME:
            raise ValueError(f"archive member shadows the completion marker: {name}")

    def _locate_manifest(self) -> Path:
        for name in MANIFEST_NAMES:
            candidate = self._root / name
            if candidate.is_file():
                return candidate

        nested = sorted(
            (path for name in MANIFEST_NAMES for path in self._root.rglob(name) if path.is_file()),
            key=lambda path: (len(path.relative_to(self._root).parts), path.as_posix()),
        )
        if not nested:
            raise ValueError(f"no service manifest ({', '.join(MANIFEST_NAMES)}) in artifact")
        depth = len(nested[0].relative_to(self._root).parts)
        if len(nested) > 1 and len(nested[1].relative_to(self._root).parts) == depth:
            raise ValueError(f"ambiguous service manifests: {nested[0]} and {nested[1]}")
        return nested[0]

    def _write_marker(self, marker: MaterializationMarker) -> None:
        tmp_path = self.marker_path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(marker.to_payload(), handle, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.marker_path)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
