"""Audio decode capability used by the analysis and extraction components."""

import io
import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from scipy.io import wavfile

from ..errors import DecodeFailure
from ..models.audio import DecodedAudio
from ..models.chunk import Chunk

logger = logging.getLogger(__name__)


class AbstractAudioDecoder(ABC):
    """Abstract base class for audio decoders."""

    # Fragmented containers only decode when the control chunk's setup bytes
    # are prepended to each fragment.
    needs_init_segment: bool = False

    @abstractmethod
    async def decode(self, data: bytes) -> DecodedAudio:
        """Decode encoded audio bytes into float PCM.

        Args:
            data: Encoded audio bytes for one chunk

        Returns:
            DecodedAudio with samples in [-1, 1]

        Raises:
            DecodeFailure: If the bytes cannot be decoded
        """
        pass


class WavAudioDecoder(AbstractAudioDecoder):
    """Decoder for RIFF/WAVE chunks backed by scipy."""

    async def decode(self, data: bytes) -> DecodedAudio:
        if not data:
            raise DecodeFailure("<bytes>", "empty input")
        try:
            sample_rate, raw = wavfile.read(io.BytesIO(data))
        except (ValueError, EOFError) as e:
            raise DecodeFailure("<bytes>", str(e)) from e

        samples = pcm_to_float(raw)
        channels = 1 if samples.ndim == 1 else int(samples.shape[1])
        return DecodedAudio(samples=samples, sample_rate=int(sample_rate), channels=channels)


def pcm_to_float(raw: np.ndarray) -> np.ndarray:
    """Convert integer PCM to float32 in [-1, 1]."""
    if raw.dtype == np.uint8:
        return (raw.astype(np.float32) - 128.0) / 128.0
    if raw.dtype == np.int16:
        return raw.astype(np.float32) / 32768.0
    if raw.dtype == np.int32:
        return raw.astype(np.float32) / 2147483648.0
    return raw.astype(np.float32)


def prepare_chunk_bytes(decoder: AbstractAudioDecoder,
                        chunk: Chunk,
                        data: bytes,
                        control_chunk: Optional[Chunk],
                        control_data: Optional[bytes]) -> bytes:
    """Prefix a chunk's bytes with the control chunk when the decoder needs it."""
    if not decoder.needs_init_segment or control_chunk is None or not control_data:
        return data
    if control_chunk.id == chunk.id:
        return data
    return control_data + data


async def decode_chunk(decoder: AbstractAudioDecoder, chunk: Chunk, data: bytes) -> DecodedAudio:
    """Decode one chunk, tagging any failure with the chunk id."""
    try:
        decoded = await decoder.decode(data)
    except DecodeFailure as e:
        raise DecodeFailure(chunk.id, e.reason) from e
    except Exception as e:
        raise DecodeFailure(chunk.id, str(e)) from e
    if decoded.sample_rate <= 0:
        raise DecodeFailure(chunk.id, f"invalid sample rate {decoded.sample_rate}")
    logger.debug(f"Decoded chunk {chunk.id}: {decoded.frame_count} frames @ {decoded.sample_rate}Hz, "
                 f"{decoded.channels} channel(s)")
    return decoded
