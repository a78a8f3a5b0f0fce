import argparse
import os
import sys
import time

import numpy as np

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from callassist.audio_utils import wav_duration_seconds
from callassist.recorder import DeviceUnavailable, MicrophoneCapture


def _levels(payload: bytes) -> tuple[float, float]:
    if not payload:
        return 0.0, 0.0
    # Skip the 44-byte WAV header written by encode_wav.
    data = np.frombuffer(payload[44:], dtype=np.int16).astype("float32") / 32768.0
    if data.size == 0:
        return 0.0, 0.0
    return float(np.sqrt(np.mean(data**2))), float(np.max(np.abs(data)))


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--device", help="Device name substring.")
    parser.add_argument("--seconds", type=float, default=6.0, help="Test duration.")
    parser.add_argument("--rate", type=int, default=16000, help="Sample rate.")
    parser.add_argument("--channels", type=int, default=1, help="Channels.")
    args = parser.parse_args()

    capture = MicrophoneCapture(
        sample_rate_hz=args.rate, channels=args.channels, device_name=args.device
    )
    try:
        capture.open()
    except DeviceUnavailable as exc:
        print(f"Device unavailable: {exc}")
        return 1
    print(f"Input device: {capture.device_label}")
    print("Streaming... press Ctrl+C to stop early.")

    end = time.time() + args.seconds
    total = 0.0
    try:
        while time.time() < end:
            time.sleep(0.5)
            segment = capture.drain()
            total += wav_duration_seconds(segment)
            rms, peak = _levels(segment)
            if segment:
                print(f"RMS {rms:.3f} | Peak {peak:.3f}")
            else:
                print("No samples yet...")
    except KeyboardInterrupt:
        pass
    finally:
        capture.close()

    print(f"Captured {total:.1f}s of audio")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
