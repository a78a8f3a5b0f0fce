import argparse
import os
import sys
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from callassist.backends import build_transcriber
from callassist.config import load_config_or_default
from callassist.transcriber import TranscriptionError


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("audio_path", help="Path to audio file to transcribe.")
    parser.add_argument("--config", default="callassist_config.yml", help="Config.")
    parser.add_argument(
        "--backend", choices=["openai", "local", "remote"], help="Override backend."
    )
    parser.add_argument("--call-id", default="diagnose", help="Call identifier.")
    args = parser.parse_args()

    config = load_config_or_default(args.config)
    if args.backend:
        config.transcription.backend = args.backend
    transcriber = build_transcriber(config)

    with open(args.audio_path, "rb") as handle:
        audio = handle.read()
    print(f"Backend: {config.transcription.backend}")
    print(f"Bytes: {len(audio)}")

    started = time.time()
    try:
        result = transcriber.transcribe(audio, args.call_id)
    except TranscriptionError as exc:
        print(f"Failed ({type(exc).__name__}, status {exc.status}): {exc}")
        if exc.detail:
            print(exc.detail)
        return 1
    elapsed = time.time() - started
    print(f"Timestamp: {result.timestamp}")
    print(f"Text: {result.text or '(empty)'}")
    print(f"Elapsed: {elapsed:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
