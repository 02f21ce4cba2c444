"""
Side-channel operational record for the operator control plane.

Advisory only: nothing here is ever read to decide which draw phase to run.
The orchestrator consults `paused` only to decide whether to run at all.
"""
from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .draw_state import DrawPhase, DrawState


def _empty_stats() -> Dict[str, Any]:
    return {
        "draws_completed": 0,
        "draws_failed": 0,
        "draws_cancelled": 0,
        "consecutive_errors": 0,
        "last_draw_id": None,
        "last_phase": None,
        "last_error": None,
        "last_run_at": None,
    }


class StateStore:
    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            data = {}
        data.setdefault("paused", False)
        data.setdefault("trigger_requested", False)
        data.setdefault("poll_count", 0)
        data.setdefault("last_known_phase", {})
        data.setdefault("run_statistics", {})
        return data

    def save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _update(self, **changes: Any) -> Dict[str, Any]:
        data = self.load()
        data.update(changes)
        self.save(data)
        return data

    # ---- controls ----

    def is_paused(self) -> bool:
        return bool(self.load()["paused"])

    def set_paused(self, paused: bool) -> None:
        self._update(paused=paused)

    def request_trigger(self) -> None:
        self._update(trigger_requested=True)

    def consume_trigger(self) -> bool:
        data = self.load()
        pending = bool(data["trigger_requested"])
        if pending:
            data["trigger_requested"] = False
            self.save(data)
        return pending

    # ---- statistics ----

    def record_poll(self) -> None:
        data = self.load()
        data["poll_count"] += 1
        self.save(data)

    def record_run(self, draw: DrawState, now: Optional[datetime] = None) -> None:
        data = self.load()
        stamp = (now or datetime.now(timezone.utc)).isoformat()
        stats = data["run_statistics"].setdefault(draw.program, _empty_stats())

        stats["last_draw_id"] = draw.draw_id
        stats["last_phase"] = draw.phase.value
        stats["last_run_at"] = stamp
        if draw.phase == DrawPhase.FINALIZED:
            stats["draws_completed"] += 1
            stats["consecutive_errors"] = 0
            stats["last_error"] = None
        elif draw.phase == DrawPhase.ERROR:
            stats["draws_failed"] += 1
            stats["consecutive_errors"] += 1
            stats["last_error"] = draw.last_error
        if draw.cancelled:
            stats["draws_cancelled"] += 1

        data["last_known_phase"][draw.program] = {
            "draw_id": draw.draw_id,
            "phase": draw.phase.value,
            "failed_phase": draw.failed_phase,
            "skip_reason": draw.skip_reason,
            "updated_at": stamp,
        }
        self.save(data)

    def statistics(self, program: str) -> Dict[str, Any]:
        return dict(self.load()["run_statistics"].get(program) or _empty_stats())
