"""Persisted marker that the node has started draining."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

BOOT_ID_PATH = Path("/proc/sys/kernel/random/boot_id")


def read_boot_id(path: Path = BOOT_ID_PATH) -> str | None:
    """Kernel boot id, or ``None`` where the platform does not expose one."""

    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


class DrainLatch:
    """File latch that outlives the agent process.

    Once engaged it is never released by the agent: the node is expected to
    disappear, and a restarted agent must neither re-drain nor re-activate.
    A latch written during an earlier boot of the same disk is stale and is
    ignored.
    """

    def __init__(self, path: str | Path, *, boot_id_reader: Callable[[], str | None] = read_boot_id) -> None:
        self._path = Path(path)
        self._boot_id_reader = boot_id_reader
        self._engaged = False

    @property
    def path(self) -> Path:
        return self._path

    def engaged(self) -> bool:
        if self._engaged:
            return True
        details = self.details()
        if details is None:
            return False
        current = self._boot_id_reader()
        recorded = details.get("boot_id")
        if current is not None and recorded is not None and recorded != current:
            logger.info(
                "drain_latch_stale",
                extra={"event": "drain_latch", "path": str(self._path), "recorded_boot_id": recorded},
            )
            return False
        return True

    def engage(self, **details: Any) -> None:
        self._engaged = True
        payload = {
            "engaged_at": datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "boot_id": self._boot_id_reader(),
            **details,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, sort_keys=True, default=str)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            logger.error("drain_latch_write_failed", extra={"event": "drain_latch", "path": str(self._path), "error": str(exc)})

    def details(self) -> dict[str, Any] | None:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            return {}
        return payload if isinstance(payload, dict) else {}
