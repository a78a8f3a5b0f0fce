"""Segment transcription clients."""

from __future__ import annotations

import io
import logging
import os
import threading
from typing import Optional

from openai import APIConnectionError, APIStatusError, OpenAI

from .models import TranscriptionResult
from .storage import utc_now_iso

logger = logging.getLogger("callassist")


class TranscriptionError(Exception):
    status = 500

    def __init__(self, message: str, status: Optional[int] = None, detail: str = "") -> None:
        super().__init__(message)
        if status is not None:
            self.status = status
        self.detail = detail


class EmptyInput(TranscriptionError):
    status = 400


class Unconfigured(TranscriptionError):
    status = 500


class UpstreamError(TranscriptionError):
    status = 502


def guess_audio_container(audio: bytes) -> tuple[str, str]:
    """Return ``(filename, content_type)`` for a segment payload."""
    if audio[:4] == b"RIFF" and audio[8:12] == b"WAVE":
        return "audio.wav", "audio/wav"
    return "audio.webm", "audio/webm"


class WhisperApiTranscriber:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "whisper-1",
        language: Optional[str] = "en",
        timeout_seconds: float = 60.0,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.language = language
        self.timeout_seconds = timeout_seconds
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if not self.api_key:
            raise Unconfigured("OpenAI API key not configured")
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client

    def transcribe(self, audio: bytes, call_id: str = "") -> TranscriptionResult:
        if not audio:
            raise EmptyInput("Audio file is empty")
        client = self._get_client()
        filename, content_type = guess_audio_container(audio)
        logger.debug(
            "Transcribing %s bytes (%s) for call %s", len(audio), content_type, call_id
        )
        kwargs = {}
        if self.language:
            kwargs["language"] = self.language
        try:
            result = client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio, content_type),
                response_format="json",
                **kwargs,
            )
        except APIStatusError as exc:
            raise UpstreamError(
                "Transcription failed", status=exc.status_code, detail=str(exc.message)
            ) from exc
        except APIConnectionError as exc:
            raise UpstreamError("Transcription failed", detail=str(exc)) from exc
        text = (getattr(result, "text", "") or "").strip()
        return TranscriptionResult(text=text, timestamp=utc_now_iso())


class LocalWhisperTranscriber:
    """Offline transcription with Faster-Whisper."""

    def __init__(
        self,
        model_name: str = "small",
        language: Optional[str] = "en",
        device: Optional[str] = None,
        compute_type: Optional[str] = None,
    ) -> None:
        self.model_name = model_name
        self.language = language
        self.device = device
        self.compute_type = compute_type
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        with self._lock:
            if self._model is None:
                try:
                    from faster_whisper import WhisperModel
                except Exception as exc:  # pragma: no cover - optional dependency
                    raise Unconfigured(
                        "faster-whisper is required for local transcription."
                    ) from exc
                kwargs = {}
                if self.device:
                    kwargs["device"] = self.device
                if self.compute_type:
                    kwargs["compute_type"] = self.compute_type
                self._model = WhisperModel(self.model_name, **kwargs)
            return self._model

    def transcribe(self, audio: bytes, call_id: str = "") -> TranscriptionResult:
        if not audio:
            raise EmptyInput("Audio file is empty")
        model = self._get_model()
        try:
            segments, _info = model.transcribe(io.BytesIO(audio), language=self.language)
            text = " ".join(seg.text.strip() for seg in segments).strip()
        except Exception as exc:
            raise UpstreamError("Local transcription failed", status=500, detail=str(exc)) from exc
        return TranscriptionResult(text=text, timestamp=utc_now_iso())
