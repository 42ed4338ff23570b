"""Value types exchanged with the control plane and the metadata service."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class VersionPointer:
    """Named control-plane value holding the current artifact key."""

    name: str
    value: str


@dataclass(frozen=True)
class Artifact:
    key: str
    body: bytes

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.body).hexdigest()

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class TerminationNotice:
    """One observation of the termination-notice source. Never persisted."""

    pending: bool
    action: str | None = None
    time: str | None = None

    @classmethod
    def none(cls) -> "TerminationNotice":
        return cls(pending=False)

    @classmethod
    def from_instance_action(cls, payload: Mapping[str, Any] | None) -> "TerminationNotice":
        payload = payload or {}
        action = payload.get("action")
        when = payload.get("time")
        return cls(
            pending=True,
            action=str(action) if action is not None else None,
            time=str(when) if when is not None else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {"pending": self.pending, "action": self.action, "time": self.time}
