"""CLI entry point."""

from __future__ import annotations

import argparse
from datetime import datetime
import logging
import os
import threading
import uuid

from .backends import build_matcher, build_store, build_transcriber
from .checklist import TEMPLATES, build_checklist
from .config import Config, load_config_or_default
from .logging_utils import setup_logging
from .models import ChecklistItem, TranscriptRecord, TranscriptSegment
from .recorder import DeviceUnavailable, MicrophoneCapture, list_input_devices
from .renderer import render_call_report
from .session import RecordingSession
from .session_io import load_call_session, save_call_session
from .storage import build_call_basename, ensure_structure
from .transcriber import TranscriptionError

logger = logging.getLogger("callassist")


def _duration_seconds(started_at: str | None, ended_at: str | None) -> int | None:
    if not started_at or not ended_at:
        return None
    fmt = "%Y-%m-%dT%H:%M:%S.%fZ"
    try:
        delta = datetime.strptime(ended_at, fmt) - datetime.strptime(started_at, fmt)
    except ValueError:
        return None
    return int(delta.total_seconds())


def _load_checklist(config: Config, template: str | None, checklist_file: str | None):
    if checklist_file:
        with open(checklist_file, "r", encoding="utf-8") as handle:
            texts = [line.strip() for line in handle if line.strip()]
        return build_checklist(texts=texts)
    if template:
        return build_checklist(template=template)
    if config.checklist:
        return build_checklist(texts=config.checklist)
    return build_checklist(template=config.checklist_template)


def _print_checklist(items: list[ChecklistItem]) -> None:
    done = sum(1 for item in items if item.completed)
    print(f"Checklist {done}/{len(items)}")
    for item in items:
        mark = "x" if item.completed else " "
        print(f"  [{mark}] {item.id}. {item.text}")


def _cmd_record(args, config: Config) -> int:
    paths = ensure_structure(config.base_dir)
    call_id = args.call_id or uuid.uuid4().hex[:12]
    checklist = _load_checklist(config, args.template, args.checklist_file)
    if args.chunk_seconds:
        config.recording.chunk_seconds = args.chunk_seconds

    def _on_transcript(segments: list[TranscriptSegment]) -> None:
        print(f"> {segments[-1].text}")

    def _on_checklist(items: list[ChecklistItem]) -> None:
        _print_checklist(items)

    capture_holder: dict = {}

    def _capture_factory():
        capture = MicrophoneCapture(
            sample_rate_hz=args.rate or config.audio.sample_rate_hz,
            channels=config.audio.channels,
            device_name=args.device or config.audio.device_name,
        )
        capture_holder["capture"] = capture
        return capture

    session = RecordingSession(
        call_id=call_id,
        checklist=checklist,
        transcriber=build_transcriber(config),
        matcher=build_matcher(config),
        store=build_store(config, remote=args.remote_store),
        capture_factory=_capture_factory,
        chunk_seconds=config.recording.chunk_seconds,
        flush_on_stop=config.recording.flush_on_stop,
        max_workers=config.recording.max_workers,
        on_transcript_update=_on_transcript,
        on_checklist_update=_on_checklist,
    )
    with session:
        try:
            session.start()
        except DeviceUnavailable as exc:
            print(f"Could not start recording: {exc}")
            return 1
        print(f"Recording call {call_id}. Press Ctrl+C to stop.")
        _print_checklist(session.checklist)
        done = threading.Event()
        try:
            done.wait(args.duration if args.duration else None)
        except KeyboardInterrupt:
            pass
        session.stop()
        print("Finishing pending segments...")
        if not session.wait_idle(timeout=args.drain_timeout):
            logger.warning("Timed out waiting for pending segments of %s", call_id)
        snapshot = session.snapshot()

    basename = build_call_basename(call_id, datetime.now())
    session_path = os.path.join(paths["sessions"], f"{basename}.session.json")
    save_call_session(session_path, snapshot)
    print(f"Session saved: {session_path}")
    _print_checklist(snapshot.checklist)

    if args.no_report:
        return 0
    capture = capture_holder.get("capture")
    report = render_call_report(
        call_id=call_id,
        date=datetime.now().strftime("%Y-%m-%d"),
        checklist=snapshot.checklist,
        segments=snapshot.transcript,
        started_at=snapshot.started_at,
        ended_at=snapshot.ended_at,
        duration_seconds=_duration_seconds(snapshot.started_at, snapshot.ended_at),
        device=capture.device_label if capture else None,
        sample_rate_hz=capture.sample_rate_hz if capture else None,
        chunk_seconds=config.recording.chunk_seconds,
        echo_cancellation=config.audio.echo_cancellation,
        noise_suppression=config.audio.noise_suppression,
        template=args.template or config.checklist_template,
    )
    report_path = os.path.join(paths["reports"], f"{basename}.md")
    with open(report_path, "w", encoding="utf-8") as handle:
        handle.write(report)
    print(f"Report saved: {report_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="callassist")
    parser.add_argument("--config", default="callassist_config.yml", help="Config.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices")
    devices_cmd.add_argument("--match", help="Filter device names by substring.")

    record_cmd = sub.add_parser("record")
    record_cmd.add_argument("--call-id", help="Call identifier. Generated if omitted.")
    record_cmd.add_argument(
        "--template", choices=sorted(TEMPLATES), help="Checklist template."
    )
    record_cmd.add_argument(
        "--checklist-file", help="Text file with one checklist item per line."
    )
    record_cmd.add_argument(
        "--duration", type=int, help="Seconds. Omit for manual stop."
    )
    record_cmd.add_argument("--device", help="Preferred device name substring.")
    record_cmd.add_argument("--rate", type=int, help="Sample rate.")
    record_cmd.add_argument("--chunk-seconds", type=float, help="Segment length.")
    record_cmd.add_argument(
        "--remote-store",
        action="store_true",
        help="Persist transcripts through the server instead of local files.",
    )
    record_cmd.add_argument(
        "--drain-timeout", type=float, default=60.0, help="Seconds to wait after stop."
    )
    record_cmd.add_argument("--no-report", action="store_true", help="Skip report.")

    serve_cmd = sub.add_parser("serve")
    serve_cmd.add_argument("--host", help="Bind address.")
    serve_cmd.add_argument("--port", type=int, help="Port.")

    transcribe_cmd = sub.add_parser("transcribe")
    transcribe_cmd.add_argument("audio_path", help="Path to audio file.")
    transcribe_cmd.add_argument("--call-id", default="cli", help="Call identifier.")

    show_cmd = sub.add_parser("show")
    show_cmd.add_argument("target", help="Call id or path to .session.json")

    finalize_cmd = sub.add_parser("finalize")
    finalize_cmd.add_argument("call_id", help="Call identifier.")

    sub.add_parser("clear")

    report_cmd = sub.add_parser("report")
    report_cmd.add_argument("session_path", help="Path to .session.json")
    report_cmd.add_argument("--out", help="Write report to this path.")

    args = parser.parse_args(argv)
    config = load_config_or_default(args.config)
    paths = ensure_structure(config.base_dir)
    setup_logging(paths["logs"], level=logging.DEBUG if args.debug else logging.INFO)

    if args.command == "devices":
        try:
            devices = list_input_devices()
        except DeviceUnavailable as exc:
            print(str(exc))
            return 1
        if args.match:
            devices = [
                d for d in devices if args.match.lower() in d.get("name", "").lower()
            ]
        for device in devices:
            name = device.get("name", "Unknown")
            index = device.get("index", "?")
            channels = device.get("max_input_channels", 0)
            rate = device.get("default_samplerate")
            print(f"[{index}] {name} (inputs: {channels}, rate={rate})")
        return 0

    if args.command == "record":
        return _cmd_record(args, config)

    if args.command == "serve":
        if config.transcription.backend == "remote" or config.matcher.backend == "remote":
            print("The server cannot use remote backends.")
            return 1
        import uvicorn

        from .server import create_app

        uvicorn.run(
            create_app(config),
            host=args.host or config.server.host,
            port=args.port or config.server.port,
        )
        return 0

    if args.command == "transcribe":
        with open(args.audio_path, "rb") as handle:
            audio = handle.read()
        try:
            result = build_transcriber(config).transcribe(audio, args.call_id)
        except TranscriptionError as exc:
            print(f"Transcription failed ({exc.status}): {exc}")
            return 1
        print(f"[{result.timestamp}] {result.text}")
        return 0

    if args.command == "show":
        if args.target.endswith(".session.json"):
            session = load_call_session(args.target)
            print(f"Call: {session.call_id}")
            print(f"Started: {session.started_at}")
            print(f"Ended: {session.ended_at}")
            print(f"Segments: {len(session.transcript)}")
            _print_checklist(session.checklist)
            return 0
        raw = build_store(config).get(args.target)
        record = TranscriptRecord.from_wire(raw)
        if not record.transcripts:
            print(raw.get("message", "No transcript found"))
            return 0
        state = "history" if record.finalized_at else "temp"
        print(f"Call: {args.target} ({state})")
        for seg in record.transcripts:
            print(f"[{seg.timestamp}] {seg.text}")
        return 0

    if args.command == "finalize":
        result = build_store(config).finalize(args.call_id)
        print(result.get("message"))
        return 0 if result.get("success") else 1

    if args.command == "clear":
        result = build_store(config).clear()
        print(result.get("message"))
        return 0

    if args.command == "report":
        session = load_call_session(args.session_path)
        report = render_call_report(
            call_id=session.call_id,
            date=(session.started_at or datetime.now().isoformat())[:10],
            checklist=session.checklist,
            segments=session.transcript,
            started_at=session.started_at,
            ended_at=session.ended_at,
            duration_seconds=_duration_seconds(session.started_at, session.ended_at),
        )
        if args.out:
            with open(args.out, "w", encoding="utf-8") as handle:
                handle.write(report)
            print(f"Report saved: {args.out}")
        else:
            print(report)
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
