"""
Platform audio devices.

The session core talks to audio hardware through three small interfaces:

- ``AudioPlatform`` checks capability and opens devices
- ``OutputDevice`` exposes a device clock and plays buffers at chosen
  clock times (``create_source`` / ``PlaybackSource.start``)
- ``InputDevice`` delivers fixed-size microphone frames to a callback

``SoundDevicePlatform`` implements them on PortAudio through ``sounddevice``.
Output is rendered by mixing every scheduled source into the stream callback,
so the device clock is the count of rendered frames. Source completion and
microphone callbacks run on PortAudio threads.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional, Protocol, Union

import numpy as np
import structlog

from voicelink.audio import byte_frequency_data
from voicelink.core.errors import AudioCapabilityError, MicNotFoundError

logger = structlog.get_logger(__name__)

DeviceSelector = Optional[Union[int, str]]


class PlaybackSource(Protocol):
    duration: float

    def start(self, when: float, on_ended: Callable[["PlaybackSource"], None]) -> None: ...

    def stop(self) -> None: ...


class OutputDevice(Protocol):
    sample_rate: int

    @property
    def current_time(self) -> float: ...

    def create_source(self, samples: np.ndarray) -> PlaybackSource: ...

    def frequency_data(self) -> np.ndarray: ...

    def close(self) -> None: ...


class InputDevice(Protocol):
    sample_rate: int

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None: ...

    def frequency_data(self) -> np.ndarray: ...

    def close(self) -> None: ...


class AudioPlatform(Protocol):
    def check_capabilities(self) -> None: ...

    def open_output(self, sample_rate: int) -> OutputDevice: ...

    def open_input(self) -> InputDevice: ...


class _Tap:
    """Keeps the most recent ``size`` samples for spectrum analysis.

    Written from the audio thread by swapping the array reference, so readers
    on other threads always see a complete buffer.
    """

    def __init__(self, size: int):
        self.size = size
        self._buffer = np.zeros(size, dtype=np.float32)

    def push(self, samples: np.ndarray) -> None:
        if samples.size >= self.size:
            self._buffer = samples[-self.size:].astype(np.float32, copy=True)
        else:
            self._buffer = np.concatenate([self._buffer[samples.size:], samples]).astype(np.float32)

    def frequency_data(self) -> np.ndarray:
        return byte_frequency_data(self._buffer, self.size)


class BufferSource:
    """One decoded buffer scheduled on a ``SoundDeviceOutput``."""

    def __init__(self, output: "SoundDeviceOutput", samples: np.ndarray):
        self._output = output
        self.samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        self.duration = self.samples.size / output.sample_rate
        self.start_frame: Optional[int] = None
        self._on_ended: Optional[Callable[[BufferSource], None]] = None
        self._ended = False
        self._ended_lock = threading.Lock()

    def start(self, when: float, on_ended: Callable[["BufferSource"], None]) -> None:
        if self.start_frame is not None:
            raise RuntimeError("source already started")
        self._on_ended = on_ended
        self._output._register(self, when)

    def stop(self) -> None:
        self._output._unregister(self)
        self._finish()

    def _finish(self) -> None:
        with self._ended_lock:
            if self._ended:
                return
            self._ended = True
        callback = self._on_ended
        self._on_ended = None
        if callback is not None:
            callback(self)


class SoundDeviceOutput:
    """Mixing output stream with a frame-counting device clock."""

    def __init__(self, sd: Any, sample_rate: int, device: DeviceSelector = None, fft_size: int = 256):
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._sources: List[BufferSource] = []
        self._frames_rendered = 0
        self._tap = _Tap(fft_size)
        self._closed = False
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=1,
            dtype="float32",
            device=device,
            callback=self._render,
        )
        try:
            self._stream.start()
        except BaseException:
            self._stream.close()
            raise

    @property
    def current_time(self) -> float:
        return self._frames_rendered / self.sample_rate

    def create_source(self, samples: np.ndarray) -> BufferSource:
        return BufferSource(self, samples)

    def frequency_data(self) -> np.ndarray:
        return self._tap.frequency_data()

    def _register(self, source: BufferSource, when: float) -> None:
        # A start time already in the past plays immediately
        with self._lock:
            source.start_frame = max(int(round(when * self.sample_rate)), self._frames_rendered)
            self._sources.append(source)

    def _unregister(self, source: BufferSource) -> None:
        with self._lock:
            if source in self._sources:
                self._sources.remove(source)

    def _render(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Output stream status", status=str(status))
        mix = np.zeros(frames, dtype=np.float32)
        finished: List[BufferSource] = []

        # Sources registered from here on start at block_end or later
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            self._frames_rendered = block_end
            active = list(self._sources)
        for source in active:
            start = source.start_frame
            end = start + source.samples.size
            if start >= block_end:
                continue
            lo = max(start, block_start)
            hi = min(end, block_end)
            if hi > lo:
                mix[lo - block_start:hi - block_start] += source.samples[lo - start:hi - start]
            if end <= block_end:
                finished.append(source)

        if finished:
            with self._lock:
                self._sources = [s for s in self._sources if s not in finished]

        np.clip(mix, -1.0, 1.0, out=mix)
        outdata[:, 0] = mix
        self._tap.push(mix)

        for source in finished:
            source._finish()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._sources = []
        try:
            self._stream.abort()
        finally:
            self._stream.close()


class SoundDeviceInput:
    """Microphone stream delivering mono float frames of a fixed block size."""

    def __init__(self, sd: Any, device: DeviceSelector = None, block_size: int = 4096, fft_size: int = 256):
        try:
            info = sd.query_devices(device, "input")
        except (ValueError, sd.PortAudioError) as exc:
            raise MicNotFoundError(f"No input device available: {exc}") from exc

        self.sample_rate = int(info["default_samplerate"])
        self.device_name = info.get("name")
        self._tap = _Tap(fft_size)
        self._on_frame: Optional[Callable[[np.ndarray], None]] = None
        self._closed = False
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=block_size,
            channels=1,
            dtype="float32",
            device=device,
            callback=self._on_block,
        )

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None:
        self._on_frame = on_frame
        self._stream.start()

    def frequency_data(self) -> np.ndarray:
        return self._tap.frequency_data()

    def _on_block(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Input stream status", status=str(status))
        samples = indata[:, 0].copy()
        self._tap.push(samples)
        callback = self._on_frame
        if callback is not None:
            callback(samples)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_frame = None
        try:
            self._stream.abort()
        finally:
            self._stream.close()


class SoundDevicePlatform:
    """PortAudio-backed ``AudioPlatform``."""

    def __init__(
        self,
        input_device: DeviceSelector = None,
        output_device: DeviceSelector = None,
        capture_block_size: int = 4096,
        fft_size: int = 256,
    ):
        self.input_device = input_device
        self.output_device = output_device
        self.capture_block_size = capture_block_size
        self.fft_size = fft_size
        self._sd = None

    @classmethod
    def from_config(cls, audio_config, meter_config) -> "SoundDevicePlatform":
        return cls(
            input_device=audio_config.input_device,
            output_device=audio_config.output_device,
            capture_block_size=audio_config.capture_block_size,
            fft_size=meter_config.fft_size,
        )

    def check_capabilities(self) -> None:
        """Load PortAudio and make sure at least one host API exists.

        Raises:
            AudioCapabilityError: If the audio backend is unusable here
        """
        if self._sd is None:
            try:
                import sounddevice
            except (ImportError, OSError) as exc:
                # sounddevice raises OSError when the PortAudio library is absent
                raise AudioCapabilityError(f"Audio backend not supported: {exc}") from exc
            self._sd = sounddevice
        try:
            host_apis = self._sd.query_hostapis()
        except self._sd.PortAudioError as exc:
            raise AudioCapabilityError(f"Audio backend not supported: {exc}") from exc
        if not host_apis:
            raise AudioCapabilityError("No host API available for audio")

    def open_output(self, sample_rate: int) -> SoundDeviceOutput:
        self.check_capabilities()
        return SoundDeviceOutput(self._sd, sample_rate, device=self.output_device, fft_size=self.fft_size)

    def open_input(self) -> SoundDeviceInput:
        self.check_capabilities()
        return SoundDeviceInput(
            self._sd,
            device=self.input_device,
            block_size=self.capture_block_size,
            fft_size=self.fft_size,
        )
