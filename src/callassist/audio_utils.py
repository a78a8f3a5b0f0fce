"""Audio helpers."""

from __future__ import annotations

import io
import wave
from typing import List

import numpy as np


def to_int16(chunk: np.ndarray) -> np.ndarray:
    if chunk.dtype == np.int16:
        return chunk
    if np.issubdtype(chunk.dtype, np.floating):
        clipped = np.clip(chunk, -1.0, 1.0)
        return (clipped * 32767.0).astype(np.int16)
    return chunk.astype(np.int16)


def downmix_to_mono(data: np.ndarray) -> np.ndarray:
    if data.ndim == 1:
        return data.reshape(-1, 1)
    if data.shape[1] == 1:
        return data
    mixed = data.astype(np.int32).mean(axis=1)
    return mixed.astype(np.int16).reshape(-1, 1)


def concat_chunks(chunks: List[np.ndarray], channels: int) -> np.ndarray:
    if not chunks:
        return np.zeros((0, channels), dtype=np.int16)
    shaped = [c.reshape(-1, channels) if c.ndim == 1 else c for c in chunks]
    return np.concatenate([to_int16(c) for c in shaped], axis=0)


def encode_wav(frames: np.ndarray, sample_rate_hz: int, channels: int = 1) -> bytes:
    """Wrap int16 PCM frames in a WAV container; empty input gives ``b""``."""
    if frames.size == 0:
        return b""
    data = to_int16(frames)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate_hz)
        handle.writeframes(data.tobytes())
    return buffer.getvalue()


def wav_duration_seconds(payload: bytes) -> float:
    if not payload:
        return 0.0
    with wave.open(io.BytesIO(payload), "rb") as handle:
        return handle.getnframes() / float(handle.getframerate())
