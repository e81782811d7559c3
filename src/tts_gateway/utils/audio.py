"""
Audio Utilities.

The gateway passes provider audio through untouched; the only audio it
produces itself is the silent clip emitted by the last-resort fallback
provider. That clip is a regular WAV container:
    - PCM 16-bit encoding
    - Mono channel
    - 22050 Hz by default

Dependencies:
    - numpy: Sample buffer
    - soundfile: WAV writing (uses libsndfile)

Example:
    >>> wav = silent_wav(0.5)
    >>> wav[:4]
    b'RIFF'
"""
from __future__ import annotations

import io

import numpy as np
import soundfile as sf

DEFAULT_SAMPLE_RATE = 22050


def wav_bytes_from_float32(waveform: np.ndarray, sample_rate: int) -> bytes:
    """
    Convert a float32 waveform in [-1, 1] to WAV bytes (PCM 16-bit).

    Multi-dimensional input is flattened to mono.
    """
    wav = np.asarray(waveform, dtype=np.float32)
    if wav.ndim > 1:
        wav = wav.reshape(-1)

    buf = io.BytesIO()
    sf.write(buf, wav, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def silent_wav(seconds: float, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Encode ``seconds`` of silence; at least one sample is always written."""
    n_samples = max(1, int(round(seconds * sample_rate)))
    return wav_bytes_from_float32(np.zeros(n_samples, dtype=np.float32), sample_rate)
