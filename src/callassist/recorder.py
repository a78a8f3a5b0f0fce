"""Microphone capture for live calls."""

from __future__ import annotations

import logging
import threading
from typing import Optional, List, Dict, Any

from .audio_utils import concat_chunks, downmix_to_mono, encode_wav

logger = logging.getLogger("callassist")


class DeviceUnavailable(RuntimeError):
    """Raised when no usable audio input can be acquired."""


def _import_sounddevice():
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise DeviceUnavailable("sounddevice is required for recording.") from exc
    return sd


def list_input_devices() -> List[Dict[str, Any]]:
    sd = _import_sounddevice()
    try:
        devices = sd.query_devices()
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise DeviceUnavailable(f"Audio devices could not be listed: {exc}") from exc
    return [d for d in devices if d.get("max_input_channels", 0) > 0]


HEADSET_NAME_MARKERS = (
    "headset",
    "headphone",
    "jabra",
    "plantronics",
    "poly ",
    "logitech h",
)


def find_headset_name_from_candidates(
    candidates: List[Dict[str, Any]],
) -> Optional[str]:
    for device in candidates:
        name = device.get("name", "").lower()
        if any(marker in name for marker in HEADSET_NAME_MARKERS):
            return device.get("name")
    return None


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
) -> Dict[str, Any]:
    if not candidates:
        raise DeviceUnavailable("No input devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]

    headset_name = find_headset_name_from_candidates(candidates)
    if headset_name:
        return next(d for d in candidates if d.get("name") == headset_name)

    return candidates[0]


def find_input_device(prefer_name: Optional[str] = None) -> dict:
    candidates = list_input_devices()
    return select_preferred_device(candidates, prefer_name=prefer_name)


class MicrophoneCapture:
    """Continuous input stream whose buffered audio is drained per segment.

    The stream stays open across segment boundaries; ``drain`` swaps the
    buffer under a lock so the callback never loses frames between segments.
    """

    def __init__(
        self,
        sample_rate_hz: int = 16000,
        channels: int = 1,
        device_name: Optional[str] = None,
        blocksize: int = 1024,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self.channels = channels
        self.device_name = device_name
        self.blocksize = blocksize
        self.device_label: Optional[str] = None
        self._stream = None
        self._chunks: list = []
        self._lock = threading.Lock()
        self._dropped_blocks = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _callback(self, indata, _frames, _time, status) -> None:
        if status:
            self._dropped_blocks += 1
            logger.debug("Capture status: %s", status)
        with self._lock:
            self._chunks.append(indata.copy())

    def open(self) -> None:
        if self._stream is not None:
            return
        sd = _import_sounddevice()
        device = find_input_device(self.device_name)
        max_in = device.get("max_input_channels", 0)
        if max_in and self.channels > max_in:
            logger.info("Adjusting channels from %s to %s", self.channels, max_in)
            self.channels = max_in
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=self.channels,
                dtype="int16",
                device=device.get("index"),
                blocksize=self.blocksize,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailable(f"Microphone unavailable: {exc}") from exc
        self._stream = stream
        self.device_label = device.get("name")
        logger.info(
            "Capture opened on %s (%s Hz, %s ch)",
            self.device_label,
            self.sample_rate_hz,
            self.channels,
        )

    def drain(self) -> bytes:
        """Return everything captured since the last drain as one WAV segment."""
        with self._lock:
            chunks, self._chunks = self._chunks, []
        frames = downmix_to_mono(concat_chunks(chunks, self.channels))
        return encode_wav(frames, self.sample_rate_hz, channels=1)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        if self._dropped_blocks:
            logger.warning("Capture reported %s status blocks", self._dropped_blocks)
        logger.info("Capture closed")
