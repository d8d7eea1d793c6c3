"""
Tests for PCM/WAV helpers.
"""
import io
import wave


class TestPcmToWav:
    """Tests for the WAV container."""

    def test_header_matches_format(self):
        from tourguide.audio.wav import pcm_to_wav

        pcm = b"\x01\x00\x02\x00\x03\x00"
        with wave.open(io.BytesIO(pcm_to_wav(pcm, 24000)), "rb") as wav_file:
            assert wav_file.getnchannels() == 1
            assert wav_file.getsampwidth() == 2
            assert wav_file.getframerate() == 24000
            assert wav_file.readframes(wav_file.getnframes()) == pcm

    def test_trailing_odd_byte_dropped(self):
        from tourguide.audio.wav import pcm_to_wav

        with wave.open(io.BytesIO(pcm_to_wav(b"\x01\x00\x02", 16000)), "rb") as wav_file:
            assert wav_file.getnframes() == 1

    def test_empty_pcm_is_valid_wav(self):
        from tourguide.audio.wav import pcm_to_wav

        data = pcm_to_wav(b"", 16000)

        assert data.startswith(b"RIFF")
        assert data[8:12] == b"WAVE"


class TestHelpers:
    """Tests for sizes and base64."""

    def test_duration(self):
        from tourguide.audio.wav import duration_seconds

        assert duration_seconds(b"\x00\x00" * 16000, 16000) == 1.0

    def test_max_pcm_bytes(self):
        from tourguide.audio.wav import max_pcm_bytes

        assert max_pcm_bytes(2, 24000) == 96000

    def test_base64_round_trip(self):
        from tourguide.audio.wav import decode_base64, encode_base64

        assert decode_base64(encode_base64(b"\x00\xffabc")) == b"\x00\xffabc"

    def test_invalid_base64(self):
        from tourguide.audio.wav import decode_base64

        assert decode_base64("not base64!!") is None
        assert decode_base64("") is None
        assert decode_base64(None) is None
