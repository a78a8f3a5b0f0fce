"""Call session persistence."""

from __future__ import annotations

import json
from dataclasses import asdict

from .models import CallSession, ChecklistItem, TranscriptSegment


def save_call_session(path: str, session: CallSession) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(asdict(session), handle, indent=2)


def load_call_session(path: str) -> CallSession:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    return CallSession(
        call_id=data["call_id"],
        checklist=[ChecklistItem(**item) for item in data.get("checklist", [])],
        transcript=[TranscriptSegment(**seg) for seg in data.get("transcript", [])],
        is_recording=False,
        is_processing=False,
        started_at=data.get("started_at"),
        ended_at=data.get("ended_at"),
        error=data.get("error"),
    )
