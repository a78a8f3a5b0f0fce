import threading
import time

import pytest

from callassist.matcher import MatcherError
from callassist.recorder import DeviceUnavailable
from callassist.session import RecordingSession, SessionState
from callassist.storage import TranscriptStore
from callassist.transcriber import EmptyInput, UpstreamError, WhisperApiTranscriber

from fakes import (
    FakeCapture,
    FakeTranscriber,
    PhraseMatcher,
    RecordingStore,
    two_item_checklist,
)

SEG1 = b"segment-1"
SEG2 = b"segment-2"
TEXTS = {
    SEG1: "Your vouchers are live and ready",
    SEG2: "checkout is at 12 PM",
}
TRIGGERS = {"1": "vouchers", "2": "checkout"}


def _wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _session(capture=None, transcriber=None, matcher=None, store=None, **kwargs):
    capture = capture or FakeCapture()
    kwargs.setdefault("chunk_seconds", 3600)
    return RecordingSession(
        call_id="call-1",
        checklist=two_item_checklist(),
        transcriber=transcriber or FakeTranscriber(TEXTS),
        matcher=matcher or PhraseMatcher(TRIGGERS),
        store=store,
        capture_factory=lambda: capture,
        **kwargs,
    )


def test_two_segments_complete_both_items(tmp_path):
    store = TranscriptStore(str(tmp_path))
    updates = []
    session = _session(store=store, on_checklist_update=updates.append)
    with session:
        session.start()
        assert session.submit_segment(SEG1)
        assert session.wait_idle(timeout=3)
        assert [i.completed for i in session.checklist] == [True, False]

        assert session.submit_segment(SEG2)
        assert session.wait_idle(timeout=3)
        session.stop()
        assert session.wait_idle(timeout=3)

        items = session.checklist
        assert [i.id for i in items] == ["1", "2"]
        assert all(i.completed for i in items)
        assert [s.text for s in session.transcript] == [TEXTS[SEG1], TEXTS[SEG2]]
        assert len(updates) == 2

    record = store.get("call-1")
    assert record["callId"] == "call-1"
    assert "finalizedAt" in record
    assert [s["text"] for s in record["transcripts"]] == [TEXTS[SEG1], TEXTS[SEG2]]


def test_matcher_sees_full_transcript():
    matcher = PhraseMatcher(TRIGGERS)
    with _session(matcher=matcher) as session:
        session.start()
        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        session.submit_segment(SEG2)
        session.wait_idle(timeout=3)
    assert matcher.calls[-1] == f"{TEXTS[SEG1]} {TEXTS[SEG2]}"


def test_empty_segment_is_not_dispatched():
    transcriber = FakeTranscriber(TEXTS)
    with _session(transcriber=transcriber) as session:
        session.start()
        assert session.submit_segment(b"") is False
        assert session.wait_idle(timeout=1)
        assert session.is_recording
        assert session.transcript == []
        assert not any(i.completed for i in session.checklist)
    assert transcriber.calls == []


def test_zero_byte_audio_rejected_by_client():
    with pytest.raises(EmptyInput) as excinfo:
        WhisperApiTranscriber(api_key="sk-test").transcribe(b"", "call-1")
    assert excinfo.value.status == 400


def test_transcription_failure_drops_segment_and_continues():
    bad = b"bad"
    transcriber = FakeTranscriber(
        {bad: UpstreamError("Transcription failed", status=503), SEG1: TEXTS[SEG1]}
    )
    with _session(transcriber=transcriber) as session:
        session.start()
        session.submit_segment(bad)
        session.wait_idle(timeout=3)
        assert session.transcript == []
        assert session.is_recording

        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        assert [s.text for s in session.transcript] == [TEXTS[SEG1]]


def test_empty_input_from_transcriber_is_absorbed():
    transcriber = FakeTranscriber({SEG1: EmptyInput("Audio file is empty")})
    with _session(transcriber=transcriber) as session:
        session.start()
        session.submit_segment(SEG1)
        assert session.wait_idle(timeout=3)
        assert session.transcript == []
        assert session.state is SessionState.CAPTURING


def test_silent_segment_does_not_call_matcher():
    matcher = PhraseMatcher(TRIGGERS)
    transcriber = FakeTranscriber({SEG1: "   "})
    with _session(transcriber=transcriber, matcher=matcher) as session:
        session.start()
        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        assert session.transcript == []
    assert matcher.calls == []


def test_matcher_failure_self_heals_next_round():
    matcher = PhraseMatcher(TRIGGERS, failures=[MatcherError("timeout")])
    with _session(matcher=matcher) as session:
        session.start()
        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        assert not any(i.completed for i in session.checklist)

        session.submit_segment(SEG2)
        session.wait_idle(timeout=3)
        assert all(i.completed for i in session.checklist)


def test_store_failure_does_not_touch_memory():
    store = RecordingStore(fail_append=True)
    outcomes = []
    session = _session(store=store, on_persist_result=lambda a, o: outcomes.append((a, o)))
    with session:
        session.start()
        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        assert [s.text for s in session.transcript] == [TEXTS[SEG1]]
        assert session.checklist[0].completed
    assert outcomes[0][0] == "append"
    assert isinstance(outcomes[0][1], OSError)


def test_stop_is_idempotent_and_finalizes_once():
    store = RecordingStore()
    with _session(store=store) as session:
        session.stop()
        session.start()
        session.submit_segment(SEG1)
        session.stop()
        session.stop()
        assert session.wait_idle(timeout=3)
        assert session.state is SessionState.IDLE
        assert not session.is_recording
    assert store.actions() == ["append", "finalize"]


def test_stop_flushes_trailing_segment_before_finalize(tmp_path):
    store = TranscriptStore(str(tmp_path))
    capture = FakeCapture()
    with _session(capture=capture, store=store) as session:
        session.start()
        session.submit_segment(SEG1)
        capture.payloads.append(SEG2)
        session.stop()
        assert capture.closed
        assert session.wait_idle(timeout=3)
        assert len(session.transcript) == 2
    record = store.get("call-1")
    assert "finalizedAt" in record
    assert len(record["transcripts"]) == 2
    assert not (tmp_path / "temp" / "call-1.json").exists()


def test_stop_without_flush_drops_trailing_audio():
    capture = FakeCapture()
    transcriber = FakeTranscriber(TEXTS)
    with _session(capture=capture, transcriber=transcriber, flush_on_stop=False) as session:
        session.start()
        capture.payloads.append(SEG2)
        session.stop()
        session.wait_idle(timeout=3)
    assert transcriber.calls == []


def test_start_failure_reports_device_unavailable():
    capture = FakeCapture(fail=True)
    with _session(capture=capture) as session:
        with pytest.raises(DeviceUnavailable):
            session.start()
        assert session.error == "Permission denied"
        assert session.state is SessionState.IDLE
        assert session.submit_segment(SEG1) is False


def test_submit_after_stop_is_ignored():
    transcriber = FakeTranscriber(TEXTS)
    with _session(transcriber=transcriber) as session:
        session.start()
        session.stop()
        assert session.submit_segment(SEG1) is False
    assert transcriber.calls == []


def test_results_after_close_are_discarded():
    gate = threading.Event()
    transcriber = FakeTranscriber(TEXTS, gates={SEG1: gate})
    capture = FakeCapture()
    session = _session(capture=capture, transcriber=transcriber)
    session.start()
    session.submit_segment(SEG1)
    assert session.is_processing
    session.close()
    gate.set()
    time.sleep(0.05)
    assert capture.closed
    assert session.transcript == []
    assert not session.is_processing
    with pytest.raises(RuntimeError):
        session.start()


def test_results_merge_in_arrival_order():
    gate = threading.Event()
    transcriber = FakeTranscriber(TEXTS, gates={SEG1: gate})
    with _session(transcriber=transcriber, max_workers=2) as session:
        session.start()
        session.submit_segment(SEG1)
        session.submit_segment(SEG2)
        assert _wait_for(lambda: len(session.transcript) == 1)
        gate.set()
        assert session.wait_idle(timeout=3)
        transcript = session.transcript
        assert [s.text for s in transcript] == [TEXTS[SEG2], TEXTS[SEG1]]
        assert [s.sequence for s in transcript] == [2, 1]
        assert all(i.completed for i in session.checklist)


def test_capture_loop_cuts_segments_on_interval():
    capture = FakeCapture(payloads=[SEG1])
    with _session(capture=capture, chunk_seconds=0.02) as session:
        session.start()
        assert _wait_for(lambda: len(session.transcript) == 1)
        session.stop()
        session.wait_idle(timeout=3)
        assert capture.opened and capture.closed
        assert [s.text for s in session.transcript] == [TEXTS[SEG1]]


def test_snapshot_reflects_session():
    with _session() as session:
        session.start()
        session.submit_segment(SEG1)
        session.wait_idle(timeout=3)
        snap = session.snapshot()
    assert snap.call_id == "call-1"
    assert snap.is_recording
    assert snap.started_at
    assert snap.transcript[0].text == TEXTS[SEG1]


def test_chunk_seconds_must_be_positive():
    with pytest.raises(ValueError):
        _session(chunk_seconds=0)


def test_restart_after_stop_is_refused_and_history_kept(tmp_path):
    store = TranscriptStore(str(tmp_path))
    with _session(store=store) as session:
        session.start()
        session.submit_segment(SEG1)
        session.stop()
        assert session.wait_idle(timeout=3)
        with pytest.raises(RuntimeError):
            session.start()
        assert session.submit_segment(SEG2) is False
        assert session.state is SessionState.IDLE
    record = store.get("call-1")
    assert [s["text"] for s in record["transcripts"]] == [TEXTS[SEG1]]
    assert "finalizedAt" in record


def test_stop_releases_exit_hook(monkeypatch):
    registered = []
    monkeypatch.setattr("callassist.session.atexit.register", registered.append)
    monkeypatch.setattr(
        "callassist.session.atexit.unregister",
        lambda fn: registered.remove(fn) if fn in registered else None,
    )
    session = _session()
    session.start()
    assert registered == [session.close]
    session.stop()
    assert registered == []
    session.close()
