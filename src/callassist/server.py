"""HTTP API for transcription, transcript storage, and checklist validation."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from .config import Config
from .matcher import ChecklistMatcher, MatcherError, MatcherUnconfigured, validate_checklist
from .models import ChecklistItem, TranscriptSegment
from .storage import InvalidCallId, TranscriptStore, utc_now_iso
from .transcriber import TranscriptionError

logger = logging.getLogger("callassist")

STORAGE_ACTIONS = ("clear", "append", "finalize", "get")


def _error(status: int, message: str, details: Optional[str] = None) -> JSONResponse:
    content = {"error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status, content=content)


def create_app(
    config: Optional[Config] = None,
    store: Optional[TranscriptStore] = None,
    transcriber=None,
    matcher: Optional[ChecklistMatcher] = None,
) -> FastAPI:
    config = config or Config()
    if store is None or transcriber is None or matcher is None:
        from .backends import build_matcher, build_transcriber

        store = store or TranscriptStore(config.transcripts_dir)
        transcriber = transcriber or build_transcriber(config)
        matcher = matcher or build_matcher(config)

    app = FastAPI(title="callassist")
    app.state.store = store
    app.state.transcriber = transcriber
    app.state.matcher = matcher

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.post("/api/transcribe")
    async def transcribe_endpoint(request: Request):
        try:
            form = await request.form()
            audio_file = form.get("audio")
            call_id = str(form.get("callId") or "")
            if audio_file is None or isinstance(audio_file, str):
                return _error(400, "No audio file provided")
            audio = await audio_file.read()
            logger.info(
                "Audio file received: name=%s type=%s size=%s call=%s",
                audio_file.filename,
                audio_file.content_type,
                len(audio),
                call_id,
            )
            try:
                result = await run_in_threadpool(transcriber.transcribe, audio, call_id)
            except TranscriptionError as exc:
                logger.warning("Transcription failed for %s: %s", call_id, exc)
                return _error(exc.status, str(exc), exc.detail or None)
            return {"transcript": result.text, "timestamp": result.timestamp, "callId": call_id}
        except Exception:
            logger.exception("Transcription error")
            return _error(500, "Internal server error")

    @app.post("/api/transcript-storage")
    async def transcript_storage_endpoint(request: Request):
        try:
            body = await request.json()
            if not isinstance(body, dict):
                return _error(400, "Request body must be a JSON object")
            action = body.get("action")
            call_id = body.get("callId")

            if action not in STORAGE_ACTIONS:
                return _error(400, "Invalid action. Use: clear, append, finalize, or get")
            if action == "clear":
                return await run_in_threadpool(store.clear)
            if not call_id:
                return _error(400, "Missing callId")
            call_id = str(call_id)

            try:
                if action == "append":
                    transcript = body.get("transcript")
                    if not transcript:
                        return _error(400, "Missing transcript")
                    segment = TranscriptSegment(
                        text=transcript, timestamp=body.get("timestamp") or utc_now_iso()
                    )
                    return await run_in_threadpool(store.append, call_id, segment)
                if action == "finalize":
                    return await run_in_threadpool(store.finalize, call_id)
                return await run_in_threadpool(store.get, call_id)
            except InvalidCallId as exc:
                return _error(400, str(exc))
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        except Exception:
            logger.exception("Transcript storage error")
            return _error(500, "Internal server error")

    @app.post("/api/validate-checklist")
    async def validate_checklist_endpoint(request: Request):
        try:
            body = await request.json()
            if not isinstance(body, dict):
                return _error(400, "Request body must be a JSON object")
            raw_items = body.get("checklistItems") or []
            transcript = body.get("transcriptHistory") or ""
            call_id = str(body.get("callId") or "")
            if not isinstance(transcript, str):
                return _error(400, "Invalid transcriptHistory")
            try:
                items = [ChecklistItem.from_wire(item) for item in raw_items]
            except (KeyError, TypeError, AttributeError):
                return _error(400, "Invalid checklistItems")
            try:
                completed = await run_in_threadpool(
                    validate_checklist, matcher, items, transcript, call_id
                )
            except MatcherError as exc:
                logger.warning("Checklist validation failed for %s: %s", call_id, exc)
                status = 500 if isinstance(exc, MatcherUnconfigured) else 502
                return _error(status, "Checklist validation failed", str(exc))
            logger.info("Checklist validation for %s: %s", call_id, completed)
            return {"completedItems": completed}
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        except Exception:
            logger.exception("Checklist validation error")
            return _error(500, "Internal server error")

    return app
