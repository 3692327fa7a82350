from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

EVENTS_FILE = "events.ndjson"


class EventLog:
    """``events.ndjson`` writer usable as an event hook.

    Each line is ``{"ts": <RFC 3339 UTC>, "event": <name>, "data": {...}}``. Hook payloads
    are dicts carrying an ``event`` key; the remaining keys become ``data``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._stream: TextIO | None = None

    def open(self) -> EventLog:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._stream = self.path.open("w", encoding="utf-8")
        return self

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def __enter__(self) -> EventLog:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def emit(self, event: str, **data: Any) -> None:
        if self._stream is None:
            raise RuntimeError("event log is not open")
        record = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "event": event,
            "data": data,
        }
        self._stream.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        self._stream.flush()

    def __call__(self, payload: dict[str, Any]) -> None:
        data = dict(payload)
        event = str(data.pop("event", "event"))
        self.emit(event, **data)


def read_events(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    return [
        json.loads(line)
        for line in path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
