import numpy as np
import pytest

from callassist.audio_utils import (
    concat_chunks,
    downmix_to_mono,
    encode_wav,
    to_int16,
    wav_duration_seconds,
)
from callassist.transcriber import guess_audio_container


def test_encode_empty_frames_gives_empty_payload():
    assert encode_wav(np.zeros((0, 1), dtype=np.int16), 16000) == b""
    assert wav_duration_seconds(b"") == 0.0


def test_encode_wav_is_recognised_as_wav():
    payload = encode_wav(np.zeros((8000, 1), dtype=np.int16), 16000)
    assert wav_duration_seconds(payload) == pytest.approx(0.5)
    assert guess_audio_container(payload) == ("audio.wav", "audio/wav")


def test_downmix_averages_channels():
    stereo = np.array([[100, 300], [-200, 0]], dtype=np.int16)
    mono = downmix_to_mono(stereo)
    assert mono.shape == (2, 1)
    assert mono[:, 0].tolist() == [200, -100]


def test_float_chunks_are_scaled():
    chunk = np.array([1.0, -1.0, 0.0], dtype=np.float32)
    assert to_int16(chunk).tolist() == [32767, -32767, 0]
    joined = concat_chunks([chunk, chunk], channels=1)
    assert joined.shape == (6, 1)
    assert joined.dtype == np.int16
