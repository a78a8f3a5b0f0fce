"""HTTP clients for a running callassist server."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import requests

from .matcher import MatcherError
from .models import ChecklistItem, TranscriptionResult, TranscriptSegment
from .transcriber import EmptyInput, Unconfigured, UpstreamError, guess_audio_container

logger = logging.getLogger("callassist")


class _RemoteBase:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout_seconds: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.http = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _error_message(response: requests.Response) -> tuple[str, str]:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200] or response.reason or "error", ""
        return str(payload.get("error", "error")), str(payload.get("details", ""))


class RemoteTranscriber(_RemoteBase):
    def transcribe(self, audio: bytes, call_id: str = "") -> TranscriptionResult:
        if not audio:
            raise EmptyInput("Audio file is empty")
        filename, content_type = guess_audio_container(audio)
        try:
            response = self.http.post(
                self._url("/api/transcribe"),
                files={"audio": (filename, audio, content_type)},
                data={"callId": call_id},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise UpstreamError("Transcription request failed", detail=str(exc)) from exc
        if response.status_code != 200:
            message, detail = self._error_message(response)
            if response.status_code == 400:
                raise EmptyInput(message, detail=detail)
            if response.status_code == 500 and "not configured" in message.lower():
                raise Unconfigured(message, detail=detail)
            raise UpstreamError(message, status=response.status_code, detail=detail)
        data = response.json()
        return TranscriptionResult(
            text=(data.get("transcript") or "").strip(),
            timestamp=data.get("timestamp") or "",
        )


class RemoteTranscriptStore(_RemoteBase):
    """Transcript store reached through the ``/api/transcript-storage`` action endpoint."""

    def _post(self, payload: dict) -> dict:
        response = self.http.post(
            self._url("/api/transcript-storage"),
            json=payload,
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        return response.json()

    def append(self, call_id: str, segment: TranscriptSegment) -> dict:
        return self._post(
            {
                "action": "append",
                "callId": call_id,
                "transcript": segment.text,
                "timestamp": segment.timestamp,
            }
        )

    def finalize(self, call_id: str) -> dict:
        return self._post({"action": "finalize", "callId": call_id})

    def get(self, call_id: str) -> dict:
        return self._post({"action": "get", "callId": call_id})

    def clear(self) -> dict:
        return self._post({"action": "clear"})


class RemoteChecklistMatcher(_RemoteBase):
    def match(
        self, transcript: str, items: Sequence[ChecklistItem], call_id: str = ""
    ) -> List[str]:
        try:
            response = self.http.post(
                self._url("/api/validate-checklist"),
                json={
                    "checklistItems": [item.to_wire() for item in items],
                    "transcriptHistory": transcript,
                    "callId": call_id,
                },
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise MatcherError(f"Validation request failed: {exc}") from exc
        if response.status_code != 200:
            message, _detail = self._error_message(response)
            raise MatcherError(f"Validation request failed ({response.status_code}): {message}")
        data = response.json()
        return [str(item_id) for item_id in data.get("completedItems", [])]
