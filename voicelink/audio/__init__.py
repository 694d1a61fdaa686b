"""
PCM conversion and analysis utilities.

Samples are mono float32 in [-1.0, 1.0] unless noted. Wire audio is PCM16
little-endian mono.
"""

import base64
from typing import Union

import numpy as np

# Analyser byte scaling: magnitudes in [MIN_DB, MAX_DB] map linearly onto [0, 255]
ANALYSER_MIN_DB = -100.0
ANALYSER_MAX_DB = -30.0


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Resample mono float audio with linear interpolation.

    The output holds ``round(len(samples) * target_rate / source_rate)``
    samples. Output sample ``i`` is taken at source position
    ``i * source_rate / target_rate``, clamped to the last input sample.
    """
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError("sample rates must be positive")
    if source_rate == target_rate or samples.size == 0:
        return samples.copy()

    out_count = int(round(samples.size * target_rate / source_rate))
    if out_count == 0:
        return np.zeros(0, dtype=np.float32)
    positions = np.arange(out_count, dtype=np.float64) * (source_rate / target_rate)
    positions = np.minimum(positions, samples.size - 1)
    source_index = np.arange(samples.size, dtype=np.float64)
    return np.interp(positions, source_index, samples).astype(np.float32)


def peak_amplitude(samples: np.ndarray) -> float:
    """Largest absolute sample value; 0.0 for an empty frame."""
    samples = np.asarray(samples)
    if samples.size == 0:
        return 0.0
    return float(np.max(np.abs(samples)))


def float_to_pcm16le(samples: np.ndarray) -> bytes:
    """Clip to [-1, 1] and encode as PCM16 little-endian bytes."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    A trailing odd byte is a truncated sample and is dropped.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]
    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    return audio_i16.astype(np.float32) / 32768.0


def decode_base64_pcm16(data: Union[str, bytes]) -> np.ndarray:
    """Decode a base64 PCM16 LE payload into float samples.

    Raises:
        binascii.Error: If ``data`` is not valid base64
    """
    return pcm16le_to_float32(base64.b64decode(data, validate=True))


def encode_base64_pcm16(pcm_bytes: bytes) -> str:
    return base64.b64encode(pcm_bytes).decode("ascii")


def byte_frequency_data(samples: np.ndarray, fft_size: int = 256) -> np.ndarray:
    """
    Byte-scaled magnitude spectrum of the most recent ``fft_size`` samples.

    Mirrors a real-time analyser node: Blackman window, FFT, magnitude
    normalised by ``fft_size``, converted to dB and mapped linearly from
    [ANALYSER_MIN_DB, ANALYSER_MAX_DB] onto [0, 255]. Returns ``fft_size // 2``
    bins as float64. Short input is zero-padded at the front.
    """
    samples = np.asarray(samples, dtype=np.float64).reshape(-1)
    if samples.size >= fft_size:
        frame = samples[-fft_size:]
    else:
        frame = np.concatenate([np.zeros(fft_size - samples.size), samples])

    spectrum = np.fft.rfft(frame * np.blackman(fft_size))[: fft_size // 2]
    magnitude = np.abs(spectrum) / fft_size
    with np.errstate(divide="ignore"):
        db = 20.0 * np.log10(magnitude)
    scaled = 255.0 * (db - ANALYSER_MIN_DB) / (ANALYSER_MAX_DB - ANALYSER_MIN_DB)
    return np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0)


__all__ = [
    'ANALYSER_MAX_DB',
    'ANALYSER_MIN_DB',
    'byte_frequency_data',
    'decode_base64_pcm16',
    'encode_base64_pcm16',
    'float_to_pcm16le',
    'peak_amplitude',
    'pcm16le_to_float32',
    'resample_linear',
]
