"""Structured JSONL activity logger."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class ActivityLogger:
    """Writes brain activity events as JSON lines."""

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("brain.activity")

    def log(self, event: str, summary: str, **details: Any) -> dict[str, Any]:
        """Append one JSONL activity event."""
        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event": event,
            "summary": summary,
            "details": details,
        }
        line = json.dumps(record, ensure_ascii=True, default=str)
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        self.logger.info(line)
        return record

    def tail(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent events, oldest first."""
        if not self.log_path.exists():
            return []
        lines = self.log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines[-limit:] if line.strip()]
