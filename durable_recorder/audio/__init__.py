"""Audio decoding, loudness profiling and WAV encoding."""

from .decoder import AbstractAudioDecoder, WavAudioDecoder
from .volume import VolumeProfileAnalyzer
from .wav import encode_wav_pcm16_mono

__all__ = [
    'AbstractAudioDecoder',
    'WavAudioDecoder',
    'VolumeProfileAnalyzer',
    'encode_wav_pcm16_mono',
]
