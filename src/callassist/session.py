"""Live call recording session.

A ``RecordingSession`` owns one call: it cuts the microphone stream into
fixed-length segments, sends each segment for transcription in the
background, and folds the results into the call's transcript and checklist.

Background workers never touch session state. They post result messages to a
queue that a single controller thread drains, so every transcript append and
checklist merge happens on that one thread, in the order results arrive.
"""

from __future__ import annotations

import atexit
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable, List, Optional, Protocol

from .checklist import ChecklistState
from .matcher import ChecklistMatcher, validate_checklist
from .models import CallSession, ChecklistItem, TranscriptionResult, TranscriptSegment
from .recorder import DeviceUnavailable, MicrophoneCapture
from .storage import utc_now_iso
from .transcriber import TranscriptionError

logger = logging.getLogger("callassist")


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"


class AudioCapture(Protocol):
    def open(self) -> None:
        ...

    def drain(self) -> bytes:
        ...

    def close(self) -> None:
        ...


class Transcriber(Protocol):
    def transcribe(self, audio: bytes, call_id: str = "") -> TranscriptionResult:
        ...


class TranscriptSink(Protocol):
    def append(self, call_id: str, segment: TranscriptSegment) -> dict:
        ...

    def finalize(self, call_id: str) -> dict:
        ...


_TRANSCRIBED = "transcribed"
_MATCHED = "matched"
_CHECK_FINALIZE = "check_finalize"
_SHUTDOWN = "shutdown"


class RecordingSession:
    def __init__(
        self,
        call_id: str,
        checklist: Iterable[ChecklistItem],
        transcriber: Transcriber,
        matcher: ChecklistMatcher,
        store: Optional[TranscriptSink] = None,
        capture_factory: Optional[Callable[[], AudioCapture]] = None,
        chunk_seconds: float = 10.0,
        flush_on_stop: bool = True,
        max_workers: int = 4,
        on_transcript_update: Optional[Callable[[List[TranscriptSegment]], None]] = None,
        on_checklist_update: Optional[Callable[[List[ChecklistItem]], None]] = None,
        on_persist_result: Optional[Callable[[str, Any], None]] = None,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0.")
        self.call_id = call_id
        self.transcriber = transcriber
        self.matcher = matcher
        self.store = store
        self.capture_factory = capture_factory or MicrophoneCapture
        self.chunk_seconds = chunk_seconds
        self.flush_on_stop = flush_on_stop
        self.on_transcript_update = on_transcript_update
        self.on_checklist_update = on_checklist_update
        self.on_persist_result = on_persist_result

        self.error: Optional[str] = None
        self.started_at: Optional[str] = None
        self.ended_at: Optional[str] = None

        self._checklist = ChecklistState(checklist)
        self._transcript: List[TranscriptSegment] = []
        self._state = SessionState.IDLE
        self._capture: Optional[AudioCapture] = None
        self._capture_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._transition_lock = threading.Lock()
        self._sequence = 0
        self._closed = False
        self._stopped = False

        # Counters below are shared with worker threads and guarded by _cond.
        self._cond = threading.Condition()
        self._in_flight = 0
        self._persisting = 0
        self._finalize_pending = False

        self._messages: "queue.Queue[tuple]" = queue.Queue()
        self._workers = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"callassist-{call_id}"
        )
        # One persistence worker keeps appends and the final promotion in order.
        self._persist = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"callassist-store-{call_id}"
        )
        self._controller = threading.Thread(
            target=self._run_controller, name=f"callassist-controller-{call_id}", daemon=True
        )
        self._controller.start()

    # Views

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.CAPTURING

    @property
    def is_processing(self) -> bool:
        with self._cond:
            return self._in_flight > 0

    @property
    def checklist(self) -> List[ChecklistItem]:
        return self._checklist.items

    @property
    def transcript(self) -> List[TranscriptSegment]:
        return list(self._transcript)

    def full_transcript(self) -> str:
        return " ".join(seg.text for seg in list(self._transcript))

    def snapshot(self) -> CallSession:
        return CallSession(
            call_id=self.call_id,
            checklist=self.checklist,
            transcript=self.transcript,
            is_recording=self.is_recording,
            is_processing=self.is_processing,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
        )

    # Lifecycle

    def start(self) -> None:
        """Acquire the microphone and begin cutting segments.

        Raises ``DeviceUnavailable`` when no input can be opened; the message
        is also kept on ``self.error``. A session records one call: after
        ``stop`` it cannot be started again.
        """
        with self._transition_lock:
            if self._closed:
                raise RuntimeError("Session has been closed.")
            if self._state is not SessionState.IDLE:
                return
            if self._stopped:
                raise RuntimeError("Session already recorded its call; use a new session.")
            self.error = None
            capture = self.capture_factory()
            try:
                capture.open()
            except DeviceUnavailable as exc:
                self.error = str(exc)
                logger.error("Could not start recording for %s: %s", self.call_id, exc)
                raise
            self._capture = capture
            self._stop_event.clear()
            self._state = SessionState.CAPTURING
            self.started_at = utc_now_iso()
            self.ended_at = None
            self._capture_thread = threading.Thread(
                target=self._capture_loop,
                name=f"callassist-capture-{self.call_id}",
                daemon=True,
            )
            self._capture_thread.start()
            atexit.register(self.close)
        logger.info(
            "Recording started for %s (%ss segments)", self.call_id, self.chunk_seconds
        )

    def stop(self) -> None:
        """Stop capturing and request finalization. Safe to call repeatedly."""
        with self._transition_lock:
            if self._state is not SessionState.CAPTURING:
                return
            self._state = SessionState.FINALIZING
            self._stopped = True
            capture = self._release_capture()
            if self.flush_on_stop and capture is not None:
                self.submit_segment(capture.drain())
            with self._cond:
                self._finalize_pending = True
            self._messages.put((_CHECK_FINALIZE,))
            self.ended_at = utc_now_iso()
            self._state = SessionState.IDLE
            atexit.unregister(self.close)
        logger.info("Recording stopped for %s", self.call_id)

    def close(self) -> None:
        """Tear the session down. Results that arrive afterwards are dropped."""
        with self._transition_lock:
            if self._closed:
                return
            if self._state is SessionState.CAPTURING:
                self._release_capture()
                with self._cond:
                    self._finalize_pending = True
                self.ended_at = utc_now_iso()
                self._state = SessionState.IDLE
            self._closed = True
        with self._cond:
            finalize_now = self._finalize_pending and self.store is not None
            self._finalize_pending = False
            if finalize_now:
                self._persisting += 1
        if finalize_now:
            self._request_finalize()
        self._messages.put((_SHUTDOWN,))
        self._workers.shutdown(wait=False, cancel_futures=True)
        self._persist.shutdown(wait=False)
        atexit.unregister(self.close)
        with self._cond:
            self._in_flight = 0
            self._cond.notify_all()
        logger.info("Session closed for %s", self.call_id)

    def __enter__(self) -> "RecordingSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no segment, match, or store call is outstanding."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._in_flight == 0
                and self._persisting == 0
                and not self._finalize_pending,
                timeout=timeout,
            )

    # Capture timeline

    def _release_capture(self) -> Optional[AudioCapture]:
        self._stop_event.set()
        capture, self._capture = self._capture, None
        if capture is not None:
            try:
                capture.close()
            except Exception:
                logger.exception("Closing capture failed for %s", self.call_id)
        thread = self._capture_thread
        self._capture_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        return capture

    def _capture_loop(self) -> None:
        while not self._stop_event.wait(self.chunk_seconds):
            capture = self._capture
            if capture is None:
                break
            try:
                audio = capture.drain()
            except Exception:
                logger.exception("Segment drain failed for %s", self.call_id)
                continue
            self.submit_segment(audio)

    def submit_segment(self, audio: bytes) -> bool:
        """Hand one finished segment to the background transcription pool.

        Returns ``False`` when the segment is empty or the session is not
        capturing. Never waits on transcription.
        """
        if not audio:
            logger.debug("Empty segment skipped for %s", self.call_id)
            return False
        if self._closed or self._state is SessionState.IDLE:
            return False
        self._sequence += 1
        seq = self._sequence
        with self._cond:
            self._in_flight += 1
        try:
            self._workers.submit(self._transcribe_job, seq, audio)
        except RuntimeError:
            with self._cond:
                self._in_flight -= 1
                self._cond.notify_all()
            return False
        logger.debug("Segment %s dispatched (%s bytes) for %s", seq, len(audio), self.call_id)
        return True

    # Background jobs: compute only, report back through the queue.

    def _transcribe_job(self, seq: int, audio: bytes) -> None:
        result: Optional[TranscriptionResult] = None
        try:
            result = self.transcriber.transcribe(audio, self.call_id)
        except TranscriptionError as exc:
            logger.warning(
                "Segment %s dropped for %s (%s): %s", seq, self.call_id, exc.status, exc
            )
        except Exception:
            logger.exception("Segment %s transcription crashed for %s", seq, self.call_id)
        self._messages.put((_TRANSCRIBED, seq, result))

    def _match_job(self, transcript: str, items: List[ChecklistItem]) -> None:
        completed: List[str] = []
        try:
            completed = validate_checklist(self.matcher, items, transcript, self.call_id)
        except Exception as exc:
            logger.warning("Checklist validation failed for %s: %s", self.call_id, exc)
        self._messages.put((_MATCHED, completed))

    # Controller: the only writer of transcript and checklist.

    def _run_controller(self) -> None:
        while True:
            message = self._messages.get()
            kind = message[0]
            if kind == _SHUTDOWN:
                return
            try:
                if kind == _TRANSCRIBED:
                    self._apply_transcription(message[1], message[2])
                elif kind == _MATCHED:
                    self._apply_match(message[1])
            except Exception:
                logger.exception("Controller failed to apply %s for %s", kind, self.call_id)
            finally:
                with self._cond:
                    if kind in (_TRANSCRIBED, _MATCHED) and self._in_flight > 0:
                        self._in_flight -= 1
                    finalize_now = self._finalize_pending and self._in_flight == 0
                    if finalize_now:
                        self._finalize_pending = False
                        finalize_now = self.store is not None
                        if finalize_now:
                            self._persisting += 1
                    self._cond.notify_all()
                if finalize_now:
                    self._request_finalize()

    def _apply_transcription(self, seq: int, result: Optional[TranscriptionResult]) -> None:
        if self._closed or result is None:
            return
        text = result.text.strip()
        if not text:
            logger.debug("Segment %s had no speech for %s", seq, self.call_id)
            return
        segment = TranscriptSegment(text=text, timestamp=result.timestamp, sequence=seq)
        self._transcript.append(segment)
        logger.info("Segment %s transcribed for %s: %s", seq, self.call_id, text[:100])
        self._notify(self.on_transcript_update, self.transcript)
        self._persist_call("append", self.call_id, segment)

        full_text = self.full_transcript()
        with self._cond:
            self._in_flight += 1
        try:
            self._workers.submit(self._match_job, full_text, self._checklist.items)
        except RuntimeError:
            with self._cond:
                self._in_flight -= 1

    def _apply_match(self, completed: List[str]) -> None:
        if self._closed or not completed:
            return
        changed = self._checklist.merge(completed)
        if not changed:
            return
        logger.info("Checklist items completed for %s: %s", self.call_id, ", ".join(changed))
        self._notify(self.on_checklist_update, self.checklist)

    def _notify(self, callback, payload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Session callback failed for %s", self.call_id)

    # Persistence: fire-and-forget, results only logged.

    def _request_finalize(self) -> None:
        # Caller has already counted this call in _persisting.
        self._persist_call("finalize", self.call_id, reserved=True)

    def _persist_call(self, action: str, *args, reserved: bool = False) -> None:
        if self.store is None:
            return
        method = getattr(self.store, action)
        if not reserved:
            with self._cond:
                self._persisting += 1
        try:
            future = self._persist.submit(method, *args)
        except RuntimeError as exc:
            with self._cond:
                self._persisting -= 1
                self._cond.notify_all()
            logger.warning("Transcript %s not submitted for %s: %s", action, self.call_id, exc)
            return
        future.add_done_callback(partial(self._persist_done, action))

    def _persist_done(self, action: str, future: Future) -> None:
        try:
            if future.cancelled():
                logger.warning("Transcript %s cancelled for %s", action, self.call_id)
                outcome: Any = None
            elif future.exception() is not None:
                outcome = future.exception()
                logger.warning("Transcript %s failed for %s: %s", action, self.call_id, outcome)
            else:
                outcome = future.result()
                if isinstance(outcome, dict) and outcome.get("success") is False:
                    logger.info(
                        "Transcript %s for %s: %s", action, self.call_id, outcome.get("message")
                    )
            if self.on_persist_result is not None:
                try:
                    self.on_persist_result(action, outcome)
                except Exception:
                    logger.exception("Persist callback failed for %s", self.call_id)
        finally:
            with self._cond:
                self._persisting -= 1
                self._cond.notify_all()
