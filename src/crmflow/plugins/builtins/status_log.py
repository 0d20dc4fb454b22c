"""Built-in status log plugin.

Appends one JSON line per node status change and per finished run to
``.crmflow/status.jsonl``, so ``tail -f`` shows a workflow's progress
live. Also keeps the most recent events in memory for inspection.

Write failures are logged and swallowed so a full disk never interrupts
a workflow run.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any

import pluggy

from crmflow.services._helpers import now_iso

hookimpl = pluggy.HookimplMarker("crmflow")

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "status.jsonl"


class StatusLogPlugin:
    """Record node status and run completion events."""

    def __init__(self, log_path: Path | None = None, *, history: int = 200) -> None:
        self._log_path = log_path
        self._lock = threading.Lock()
        self.events: deque[dict[str, Any]] = deque(maxlen=history)

    @hookimpl
    def node_status(
        self,
        execution_id: str,
        workflow_id: str,
        node_id: str,
        node_type: str,
        status: str,
        error: str | None,
    ) -> None:
        self._record(
            {
                "event": "node_status",
                "execution_id": execution_id,
                "workflow_id": workflow_id,
                "node_id": node_id,
                "node_type": node_type,
                "status": status,
                "error": error,
            }
        )

    @hookimpl
    def post_execution(
        self,
        execution_id: str,
        workflow_id: str,
        status: str,
        error: str | None,
        steps: int,
    ) -> None:
        self._record(
            {
                "event": "execution",
                "execution_id": execution_id,
                "workflow_id": workflow_id,
                "status": status,
                "error": error,
                "steps": steps,
            }
        )

    def _record(self, entry: dict[str, Any]) -> None:
        entry["at"] = now_iso()
        with self._lock:
            self.events.append(entry)
            if self._log_path is None:
                return
            try:
                self._log_path.parent.mkdir(parents=True, exist_ok=True)
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry, default=str) + "\n")
            except OSError:
                logger.warning("Could not append to status log %s", self._log_path)
