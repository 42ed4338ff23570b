from __future__ import annotations

import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from connectors.aws.errors import ConnectorError, NodeErrorCode
from connectors.aws.models import Artifact
from services.bootstrap.materialize import MARKER_NAME, RootState, WorkloadMaterializer


def build_zip(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def build_tar_gz(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def tree(root: Path) -> dict[str, str]:
    return {
        path.relative_to(root).as_posix(): path.read_text(encoding="utf-8")
        for path in sorted(root.rglob("*"))
        if path.is_file() and path.name != MARKER_NAME
    }


V3_FILES = {
    "compose.yml": "services:\n  traefik: {image: traefik}\n",
    "traefik/traefik.yml": "entryPoints: {}\n",
}


def test_materialize_unpacks_exact_archive_contents_and_writes_marker(tmp_path: Path) -> None:
    root = tmp_path / "platform"
    materializer = WorkloadMaterializer(root)
    artifact = Artifact(key="bundles/v3.zip", body=build_zip(V3_FILES))

    result = materializer.materialize(artifact)

    assert tree(root) == V3_FILES
    assert result.manifest_path == root / "compose.yml"
    assert result.prior_state is RootState.EMPTY
    marker = materializer.read_marker()
    assert marker is not None
    assert marker.artifact_key == "bundles/v3.zip"
    assert marker.sha256 == artifact.sha256
    assert marker.manifest == "compose.yml"
    assert materializer.is_materialized("bundles/v3.zip")
    assert materializer.current_manifest() == root / "compose.yml"
    assert materializer.inspect() is RootState.CLEAN


def test_materialize_overwrites_instead_of_merging(tmp_path: Path) -> None:
    root = tmp_path / "platform"
    materializer = WorkloadMaterializer(root)
    materializer.materialize(
        Artifact(key="bundles/v2.zip", body=build_zip({"compose.yml": "v2", "legacy/only-in-v2.env": "X=1"}))
    )

    result = materializer.materialize(Artifact(key="bundles/v3.zip", body=build_zip(V3_FILES)))

    assert tree(root) == V3_FILES
    assert result.prior_state is RootState.CLEAN
    assert not materializer.is_materialized("bundles/v2.zip")


def test_crash_before_marker_is_detected_and_fully_re_unpacked(tmp_path: Path) -> None:
    root = tmp_path / "platform"
    root.mkdir()
    (root / "compose.yml").write_text("services: {trunc", encoding="utf-8")
    (root / "half-written.bin").write_text("garbage", encoding="utf-8")
    materializer = WorkloadMaterializer(root)

    assert materializer.inspect() is RootState.PARTIAL
    assert not materializer.is_materialized("bundles/v3.zip")

    result = materializer.materialize(Artifact(key="bundles/v3.zip", body=build_zip(V3_FILES)))

    assert result.prior_state is RootState.PARTIAL
    assert tree(root) == V3_FILES
    assert materializer.is_materialized("bundles/v3.zip")


def test_failed_unpack_leaves_no_marker(tmp_path: Path) -> None:
    root = tmp_path / "platform"
    materializer = WorkloadMaterializer(root)
    materializer.materialize(Artifact(key="bundles/v2.zip", body=build_zip({"compose.yml": "v2"})))

    with pytest.raises(ConnectorError) as excinfo:
        materializer.materialize(Artifact(key="bundles/v3.zip", body=b"this is not an archive"))

    assert excinfo.value.code is NodeErrorCode.MATERIALIZATION_FAILED
    assert materializer.read_marker() is None
    assert not materializer.is_materialized("bundles/v2.zip")


def test_truncated_zip_is_materialization_failure(tmp_path: Path) -> None:
    body = build_zip({"compose.yml": "services: {}\n" * 200})
    materializer = WorkloadMaterializer(tmp_path / "platform")

    with pytest.raises(ConnectorError) as excinfo:
        materializer.materialize(Artifact(key="bundles/v3.zip", body=body[: len(body) // 2]))

    assert excinfo.value.code is NodeErrorCode.MATERIALIZATION_FAILED


@pytest.mark.parametrize("member", ["../escape.txt", "/etc/cron.d/evil", f"nested/{MARKER_NAME}"])
def test_members_escaping_root_or_shadowing_marker_are_rejected(tmp_path: Path, member: str) -> None:
    root = tmp_path / "platform"
    body = build_zip({"compose.yml": "services: {}\n", member: "x"})

    with pytest.raises(ConnectorError) as excinfo:
        WorkloadMaterializer(root).materialize(Artifact(key="bundles/evil.zip", body=body))

    assert excinfo.value.code is NodeErrorCode.MATERIALIZATION_FAILED
    assert not (tmp_path / "escape.txt").exists()


def test_missing_manifest_is_materialization_failure(tmp_path: Path) -> None:
    materializer = WorkloadMaterializer(tmp_path / "platform")

    with pytest.raises(ConnectorError) as excinfo:
        materializer.materialize(Artifact(key="bundles/empty.zip", body=build_zip({"README.md": "hi"})))

    assert excinfo.value.code is NodeErrorCode.MATERIALIZATION_FAILED
    assert "no service manifest" in str(excinfo.value)
    assert materializer.read_marker() is None


def test_tar_gz_bundle_with_nested_manifest(tmp_path: Path) -> None:
    root = tmp_path / "platform"
    files = {"platform-2026-10-01/docker-compose.yaml": "services: {}\n", "platform-2026-10-01/.env": "A=1\n"}

    result = WorkloadMaterializer(root).materialize(Artifact(key="bundles/v4.tar.gz", body=build_tar_gz(files)))

    assert tree(root) == files
    assert result.manifest_path == root / "platform-2026-10-01" / "docker-compose.yaml"
    assert result.marker.manifest == "platform-2026-10-01/docker-compose.yaml"


def test_ambiguous_nested_manifests_are_rejected(tmp_path: Path) -> None:
    body = build_zip({"a/compose.yml": "services: {}\n", "b/compose.yml": "services: {}\n"})

    with pytest.raises(ConnectorError) as excinfo:
        WorkloadMaterializer(tmp_path / "platform").materialize(Artifact(key="bundles/two.zip", body=body))

    assert excinfo.value.code is NodeErrorCode.MATERIALIZATION_FAILED
