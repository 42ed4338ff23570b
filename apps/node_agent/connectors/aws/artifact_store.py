"""S3 backed artifact bundle fetches."""

from __future__ import annotations

import logging
from typing import Any

from .errors import map_artifact_store_error
from .interfaces import ArtifactStore
from .models import Artifact

logger = logging.getLogger(__name__)


class S3ArtifactStore(ArtifactStore):
    def __init__(self, *, client: Any, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def get(self, key: str) -> Artifact:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            stream = response["Body"]
            try:
                body = stream.read()
            finally:
                close = getattr(stream, "close", None)
                if callable(close):
                    close()
        except Exception as exc:  # a truncated stream is a fetch failure, not a corrupt archive
            raise map_artifact_store_error(exc) from exc

        logger.info(
            "artifact_downloaded",
            extra={"event": "artifact_downloaded", "bucket": self._bucket, "key": key, "bytes": len(body)},
        )
        return Artifact(key=key, body=body)
