"""
Event logging utilities for NDJSON format.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List


class RunLog:
    """Append-only NDJSON event log for one environment's teardown runs."""

    def __init__(self, home: Path, env_name: str):
        self.path = Path(home) / env_name / "teardown.ndjson"

    def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        """
        Append an event to the log file.

        Args:
            event_type: Event type (e.g., "STAGE_START", "RUN_DONE")
            data: Event data
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event = {
            "ts": datetime.now().isoformat(),
            "type": event_type,
            "data": data
        }

        with open(self.path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")
            f.flush()

    def read_events(self) -> List[Dict[str, Any]]:
        """
        Read all events, skipping malformed lines.

        Returns:
            List of events in write order
        """
        if not self.path.exists():
            return []

        events = []
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if line:
                    try:
                        events.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue  # Skip malformed lines

        return events


class EventTypes:
    RUN_START = "RUN_START"
    IDENTITY = "IDENTITY"
    BACKEND_READY = "BACKEND_READY"
    BACKEND_TOLERATED = "BACKEND_TOLERATED"
    STAGE_START = "STAGE_START"
    STAGE_OK = "STAGE_OK"
    STAGE_ABSENT = "STAGE_ABSENT"
    STAGE_WARN = "STAGE_WARN"
    STAGE_FAILED = "STAGE_FAILED"
    SWEEP_RESULT = "SWEEP_RESULT"
    RUN_DONE = "RUN_DONE"
    RUN_ABORTED = "RUN_ABORTED"
