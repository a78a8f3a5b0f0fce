"""Data models for callassist."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, List


@dataclass
class ChecklistItem:
    id: str
    text: str
    completed: bool = False

    def to_wire(self) -> dict:
        return {"id": self.id, "text": self.text, "completed": self.completed}

    @classmethod
    def from_wire(cls, data: dict) -> "ChecklistItem":
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class TranscriptSegment:
    text: str
    timestamp: str
    sequence: Optional[int] = None

    def to_wire(self) -> dict:
        return {"text": self.text, "timestamp": self.timestamp}


@dataclass
class TranscriptionResult:
    text: str
    timestamp: str


@dataclass
class TranscriptRecord:
    transcripts: List[TranscriptSegment] = field(default_factory=list)
    finalized_at: Optional[str] = None
    call_id: Optional[str] = None

    def to_wire(self) -> dict:
        payload: dict = {"transcripts": [seg.to_wire() for seg in self.transcripts]}
        if self.finalized_at:
            payload["finalizedAt"] = self.finalized_at
        if self.call_id:
            payload["callId"] = self.call_id
        return payload

    @classmethod
    def from_wire(cls, data: dict) -> "TranscriptRecord":
        segments = [
            TranscriptSegment(text=item.get("text", ""), timestamp=item.get("timestamp", ""))
            for item in data.get("transcripts", [])
        ]
        return cls(
            transcripts=segments,
            finalized_at=data.get("finalizedAt"),
            call_id=data.get("callId"),
        )


@dataclass
class CallSession:
    call_id: str
    checklist: List[ChecklistItem]
    transcript: List[TranscriptSegment] = field(default_factory=list)
    is_recording: bool = False
    is_processing: bool = False
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    error: Optional[str] = None

    def full_transcript(self) -> str:
        return " ".join(seg.text for seg in self.transcript)
