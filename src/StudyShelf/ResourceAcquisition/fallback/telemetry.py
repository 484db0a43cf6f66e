"""Telemetry sinks for fallback attempt and outcome events."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

LOGGER = logging.getLogger(__name__)


class ListTelemetrySink:
    """Keeps events in memory (CLI summaries and tests)."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))

    def by_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get("event_type") == event_type]


class JsonlTelemetrySink:
    """Appends one JSON object per event to a file.

    Every record gets a ``ts`` (epoch seconds) and, when configured, a
    ``run_id`` so events of one CLI invocation can be grouped.
    """

    def __init__(self, path: Union[str, Path], run_id: Optional[str] = None) -> None:
        self.path = Path(path)
        self.run_id = run_id
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event: Dict[str, Any]) -> None:
        record = {"ts": round(time.time(), 3)}
        if self.run_id:
            record["run_id"] = self.run_id
        record.update(event)
        line = json.dumps(record, sort_keys=True, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def read(self) -> List[Dict[str, Any]]:
        """Return every event written so far."""
        if not self.path.exists():
            return []
        events = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                LOGGER.warning(f"Skipping malformed telemetry line in {self.path}")
        return events


__all__ = ["JsonlTelemetrySink", "ListTelemetrySink"]
