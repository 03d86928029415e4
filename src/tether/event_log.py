"""Bounded, optionally persisted log of Wi-Fi state transitions and attempts."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EventLogEntry:
    """A single connectivity event."""

    timestamp: float
    event: str
    message: str
    state: str | None = None
    previous_state: str | None = None
    metadata: dict[str, object | None] | None = None

    def to_dict(self) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "timestamp": self.timestamp,
            "event": self.event,
            "message": self.message,
        }
        if self.state is not None:
            payload["state"] = self.state
        if self.previous_state is not None:
            payload["previous_state"] = self.previous_state
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_dict(cls, payload: object) -> "EventLogEntry | None":
        if not isinstance(payload, dict):
            return None
        event = payload.get("event")
        message = payload.get("message")
        if not isinstance(event, str) or not isinstance(message, str):
            return None
        try:
            timestamp = float(payload.get("timestamp", time.time()))
        except (TypeError, ValueError):
            timestamp = time.time()
        state = payload.get("state")
        previous = payload.get("previous_state")
        metadata = payload.get("metadata")
        return cls(
            timestamp=timestamp,
            event=event,
            message=message,
            state=state if isinstance(state, str) else None,
            previous_state=previous if isinstance(previous, str) else None,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


class EventLog:
    """Append-only ring buffer with optional JSON-lines persistence."""

    def __init__(self, path: Path | str | None = None, *, max_entries: int = 200) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._path: Path | None = Path(path) if path is not None else None
        self._entries: Deque[EventLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - filesystem errors are rare
                logger.warning("Unable to prepare event log directory: %s", exc)
                self._path = None
        self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        event: str,
        message: str,
        *,
        state: str | None = None,
        previous_state: str | None = None,
        metadata: dict[str, object | None] | None = None,
    ) -> EventLogEntry:
        cleaned = {k: v for k, v in (metadata or {}).items() if v is not None}
        entry = EventLogEntry(
            timestamp=time.time(),
            event=event,
            message=message,
            state=state,
            previous_state=previous_state,
            metadata=cleaned or None,
        )
        with self._lock:
            self._entries.append(entry)
            self._append_persistent(entry)
        return entry

    def tail(self, limit: int | None = None) -> list[EventLogEntry]:
        """Return the most recent entries, oldest first."""

        with self._lock:
            entries = list(self._entries)
        if limit is not None:
            try:
                limit_value = max(1, int(limit))
            except (TypeError, ValueError):
                limit_value = 1
            entries = entries[-limit_value:]
        return entries

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:  # pragma: no cover - best effort logging
            logger.warning("Unable to load event log: %s", exc)
            return
        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except ValueError:
                continue
            entry = EventLogEntry.from_dict(payload)
            if entry is not None:
                self._entries.append(entry)
        if len(lines) > len(self._entries):
            self._rewrite_persistent()

    def _rewrite_persistent(self) -> None:
        """Shrink the file to the entries retained in memory."""

        if self._path is None:
            return
        try:
            with self._path.open("w", encoding="utf-8") as handle:
                for entry in self._entries:
                    handle.write(json.dumps(entry.to_dict(), separators=(",", ":")) + "\n")
        except OSError as exc:  # pragma: no cover - best effort logging
            logger.warning("Unable to compact event log: %s", exc)

    def _append_persistent(self, entry: EventLogEntry) -> None:
        if self._path is None:
            return
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry.to_dict(), separators=(",", ":")) + "\n")
        except OSError as exc:  # pragma: no cover - best effort logging
            logger.warning("Unable to persist event log: %s", exc)


__all__ = ["EventLog", "EventLogEntry"]
