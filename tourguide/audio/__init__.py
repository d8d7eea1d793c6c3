"""
Audio package.
"""

from .aggregator import AudioTurnAggregator
from .wav import pcm_to_wav, pcm_to_wav_base64

__all__ = ["AudioTurnAggregator", "pcm_to_wav", "pcm_to_wav_base64"]
