"""
PCM / WAV Utilities
Container helpers for 16-bit mono PCM exchanged with the model service.
"""
import base64
import binascii
import io
import wave
from typing import Optional

import numpy as np


def pcm16_samples(pcm_data: bytes) -> np.ndarray:
    """View PCM16 bytes as int16 samples, dropping a trailing odd byte."""
    usable = len(pcm_data) - (len(pcm_data) % 2)
    return np.frombuffer(pcm_data[:usable], dtype=np.int16)


def pcm_to_wav(pcm_data: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap raw little-endian PCM16 in a RIFF/WAV container."""
    samples = pcm16_samples(pcm_data)
    out = io.BytesIO()
    with wave.open(out, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(samples.astype("<i2").tobytes())
    return out.getvalue()


def pcm_to_wav_base64(pcm_data: bytes, sample_rate: int) -> str:
    return encode_base64(pcm_to_wav(pcm_data, sample_rate))


def duration_seconds(pcm_data: bytes, sample_rate: int) -> float:
    return len(pcm16_samples(pcm_data)) / float(sample_rate)


def max_pcm_bytes(seconds: float, sample_rate: int) -> int:
    """Byte size of `seconds` of mono PCM16."""
    return int(seconds * sample_rate) * 2


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_base64(data: str) -> Optional[bytes]:
    """Decode a base64 payload; None when it is not valid base64."""
    if not isinstance(data, str) or not data:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None
