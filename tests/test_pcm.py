"""Tests for PCM conversion, resampling and spectrum helpers."""

import base64
import binascii

import numpy as np
import pytest

from voicelink.audio import (
    byte_frequency_data,
    decode_base64_pcm16,
    encode_base64_pcm16,
    float_to_pcm16le,
    pcm16le_to_float32,
    peak_amplitude,
    resample_linear,
)


class TestResampleLinear:
    def test_downsample_count(self):
        assert resample_linear(np.zeros(4800), 48000, 16000).size == 1600

    def test_identity_returns_copy(self):
        samples = np.linspace(-1, 1, 10, dtype=np.float32)
        out = resample_linear(samples, 16000, 16000)

        assert np.array_equal(out, samples)
        assert out is not samples

    def test_interpolates_between_samples(self):
        samples = np.array([0.0, 1.0, 0.0, -1.0], dtype=np.float32)

        out = resample_linear(samples, 2, 4)

        assert out.tolist() == pytest.approx([0.0, 0.5, 1.0, 0.5, 0.0, -0.5, -1.0, -1.0])

    def test_rejects_bad_rates(self):
        with pytest.raises(ValueError):
            resample_linear(np.zeros(10), 0, 16000)

    def test_empty_frame(self):
        assert resample_linear(np.zeros(0), 48000, 16000).size == 0


class TestPcm16:
    def test_float_to_pcm_clips(self):
        pcm = float_to_pcm16le(np.array([2.0, -2.0, 0.0], dtype=np.float32))

        assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32767, 0]

    def test_little_endian(self):
        assert float_to_pcm16le(np.array([1.0], dtype=np.float32)) == b"\xff\x7f"

    def test_pcm_to_float_scale(self):
        pcm = np.array([-32768, 0, 16384], dtype="<i2").tobytes()

        assert pcm16le_to_float32(pcm).tolist() == [-1.0, 0.0, 0.5]

    def test_odd_trailing_byte_dropped(self):
        assert pcm16le_to_float32(b"\x00\x40\x01").tolist() == [0.5]

    def test_base64_helpers(self):
        pcm = np.array([0, 16384], dtype="<i2").tobytes()

        encoded = encode_base64_pcm16(pcm)

        assert encoded == base64.b64encode(pcm).decode("ascii")
        assert decode_base64_pcm16(encoded).tolist() == [0.0, 0.5]

    def test_invalid_base64(self):
        with pytest.raises(binascii.Error):
            decode_base64_pcm16("@@@")


class TestAnalysis:
    def test_peak_amplitude(self):
        assert peak_amplitude(np.array([0.1, -0.7, 0.3])) == pytest.approx(0.7)
        assert peak_amplitude(np.zeros(0)) == 0.0

    def test_silence_has_empty_spectrum(self):
        data = byte_frequency_data(np.zeros(256), 256)

        assert data.shape == (128,)
        assert data.max() == 0.0

    def test_tone_lights_its_bin(self):
        fft_size = 256
        rate = 8000
        t = np.arange(fft_size) / rate
        tone = 0.8 * np.sin(2 * np.pi * 1000 * t)

        data = byte_frequency_data(tone, fft_size)

        tone_bin = round(1000 * fft_size / rate)
        assert data[tone_bin] == data.max()
        assert data[tone_bin] > 200
        assert data[100] < data[tone_bin]

    def test_short_input_is_padded(self):
        assert byte_frequency_data(np.ones(10), 64).shape == (32,)
