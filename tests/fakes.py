"""Test doubles for capture, transcription, matching, and storage."""

from __future__ import annotations

import threading
from collections import deque
from typing import Dict, Iterable, List, Optional

from callassist.models import ChecklistItem, TranscriptionResult, TranscriptSegment
from callassist.recorder import DeviceUnavailable


class FakeCapture:
    def __init__(self, payloads: Iterable[bytes] = (), fail: bool = False) -> None:
        self.payloads = deque(payloads)
        self.fail = fail
        self.opened = False
        self.closed = False
        self.device_label = "Fake Mic"
        self.sample_rate_hz = 16000

    def open(self) -> None:
        if self.fail:
            raise DeviceUnavailable("Permission denied")
        self.opened = True

    def drain(self) -> bytes:
        if self.payloads:
            return self.payloads.popleft()
        return b""

    def close(self) -> None:
        self.closed = True


class FakeTranscriber:
    """Maps audio payloads to text; an exception instance is raised instead."""

    def __init__(self, responses: Dict[bytes, object], gates: Optional[Dict[bytes, threading.Event]] = None) -> None:
        self.responses = responses
        self.gates = gates or {}
        self.calls: List[bytes] = []
        self._count = 0
        self._lock = threading.Lock()

    def transcribe(self, audio: bytes, call_id: str = "") -> TranscriptionResult:
        with self._lock:
            self.calls.append(audio)
            self._count += 1
            stamp = f"2026-01-01T00:00:{self._count:02d}.000Z"
        gate = self.gates.get(audio)
        if gate is not None:
            gate.wait(5)
        response = self.responses.get(audio, "")
        if isinstance(response, Exception):
            raise response
        return TranscriptionResult(text=str(response), timestamp=stamp)


class PhraseMatcher:
    """Completes an item once its trigger phrase shows up in the transcript."""

    def __init__(self, triggers: Dict[str, str], failures: Iterable[Exception] = ()) -> None:
        self.triggers = triggers
        self.failures = deque(failures)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def match(self, transcript: str, items, call_id: str = "") -> List[str]:
        with self._lock:
            self.calls.append(transcript)
            if self.failures:
                raise self.failures.popleft()
        lowered = transcript.lower()
        return [item_id for item_id, phrase in self.triggers.items() if phrase in lowered]


class RecordingStore:
    def __init__(self, fail_append: bool = False) -> None:
        self.fail_append = fail_append
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def append(self, call_id: str, segment: TranscriptSegment) -> dict:
        with self._lock:
            self.calls.append(("append", call_id, segment.text))
        if self.fail_append:
            raise OSError("disk full")
        return {"success": True, "totalSegments": len(self.calls)}

    def finalize(self, call_id: str) -> dict:
        with self._lock:
            self.calls.append(("finalize", call_id))
        return {"success": True, "message": "Transcript finalized and moved to history"}

    def actions(self) -> List[str]:
        with self._lock:
            return [call[0] for call in self.calls]


def two_item_checklist() -> List[ChecklistItem]:
    return [
        ChecklistItem(id="1", text="Vouchers are live and ready on the app"),
        ChecklistItem(id="2", text="Hotel check-out time is 12:00 PM"),
    ]
