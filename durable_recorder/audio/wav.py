"""Uncompressed 16-bit mono WAV encoding."""

import io
import wave

import numpy as np

WAV_HEADER_BYTES = 44


def encode_wav_pcm16_mono(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples in [-1, 1] as a 16-bit mono RIFF/WAVE file.

    Args:
        samples: Mono float samples; values outside [-1, 1] are clamped
        sample_rate: Sample rate in Hz

    Returns:
        WAV bytes: the 44-byte header followed by little-endian int16 samples
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    # Asymmetric scaling so -1.0 maps to -32768 and 1.0 to 32767
    scaled = np.where(clamped < 0, clamped * 0x8000, clamped * 0x7FFF)
    pcm = np.round(scaled).astype('<i2')

    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm.tobytes())
    return buffer.getvalue()
