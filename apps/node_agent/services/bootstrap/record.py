"""Per-boot record of a completed bootstrap."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

from services.drain.latch import read_boot_id

logger = logging.getLogger(__name__)


class BootstrapRecord:
    """Remembers that bootstrap completed during the current kernel boot.

    A supervisor restarting the agent on the same boot must not resolve the
    pointer again or clear a workload root whose services are running. After
    a reboot the record no longer matches and bootstrap runs as usual.
    """

    def __init__(self, path: str | Path, *, boot_id_reader: Callable[[], str | None] = read_boot_id) -> None:
        self._path = Path(path)
        self._boot_id_reader = boot_id_reader

    @property
    def path(self) -> Path:
        return self._path

    def completed_this_boot(self) -> dict[str, Any] | None:
        current = self._boot_id_reader()
        if current is None:
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("bootstrap_record_unreadable", extra={"event": "bootstrap_record", "error": str(exc)})
            return None
        if not isinstance(payload, dict) or payload.get("boot_id") != current:
            return None
        return payload

    def record(self, **fields: Any) -> None:
        payload = {
            "boot_id": self._boot_id_reader(),
            "completed_at": datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            **fields,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, sort_keys=True, default=str)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self._path)
