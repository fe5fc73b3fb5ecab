"""JSONL event trail for runguard invocations.

Telemetry is opt-in and best-effort: a failing sink never fails the run.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_TELEMETRY_PATH = ".runguard/telemetry.jsonl"


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class TelemetrySink:
    """Thin wrapper around JSONL telemetry.

    Event schema:
      {"timestamp": <float>, "run_id": <str>, "type": <str>, "data": <object>}

    Event types:
        - drop_sudo_phase: a drop-sudo phase started or finished
        - group_membership_removed: the user was taken out of the group
        - sudoers_edit: one sudoers file was examined
        - agent_started / agent_exited: agent process lifecycle
        - final_message_read: final message was read back
        - cleanup_failed: a temporary resource could not be removed
    """

    enabled: bool
    path: Path
    run_id: str = field(default_factory=new_run_id)

    def log(self, event_type: str, data: dict[str, Any]) -> None:
        if not self.enabled:
            return

        entry = {
            "timestamp": time.time(),
            "run_id": self.run_id,
            "type": event_type,
            "data": data,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError:
            return


def disabled_sink() -> TelemetrySink:
    return TelemetrySink(enabled=False, path=Path(DEFAULT_TELEMETRY_PATH))
