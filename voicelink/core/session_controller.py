"""
Session controller.

Owns the connection state machine and every resource a live session holds:
the output device and playback scheduler, the microphone and capture line,
the level meter and the remote channel. It is the only component with public
entry points, and none of them raise: failures are classified and surfaced
through ``error_kind``.

State machine::

    DISCONNECTED/ERROR --connect()--> CONNECTING --ChannelOpened--> CONNECTED
    CONNECTING --acquisition failure--> ERROR (full teardown)
    CONNECTED --ChannelClosed--> ERROR(SESSION_ENDED)
    any --ChannelFailed--> ERROR
    any --disconnect()--> DISCONNECTED

Each session gets a generation number. Teardown bumps it before releasing
anything, so channel events, capture frames and a suspended ``connect`` that
belong to an older generation become no-ops.
"""

from __future__ import annotations

import asyncio
import contextlib
from functools import partial
from typing import Awaitable, Callable, List, Optional, Set

import structlog

from voicelink.audio.devices import AudioPlatform, InputDevice, OutputDevice, SoundDevicePlatform
from voicelink.characters import CharacterProfile, get_character
from voicelink.config import AppConfig
from voicelink.core.capture import AudioCaptureLine
from voicelink.core.channel import (
    ChannelClosed,
    ChannelEvent,
    ChannelFactory,
    ChannelFailed,
    ChannelMessage,
    ChannelOpened,
    RemoteChannel,
    parse_server_content,
)
from voicelink.core.errors import ErrorKind, ErrorPresentation, classify_failure, presentation_for
from voicelink.core.level_meter import LevelMeter
from voicelink.core.models import ConnectionState, SessionState
from voicelink.core.network import probe_network
from voicelink.core.playback import PlaybackScheduler
from voicelink.logging_config import bind_session_id, clear_session_id, new_session_id
from voicelink.providers.google_live import GeminiLiveChannel

logger = structlog.get_logger(__name__)

Listener = Callable[["SessionController"], None]


class _SessionSuperseded(Exception):
    """A disconnect() invalidated the session while connect() was suspended."""


class SessionController:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        character: Optional[str] = None,
        platform: Optional[AudioPlatform] = None,
        channel_factory: Optional[ChannelFactory] = None,
        network_probe: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.config = config or AppConfig()
        self._session = SessionState(get_character(character or self.config.character))
        self._platform = platform or SoundDevicePlatform.from_config(self.config.audio, self.config.meter)
        self._channel_factory = channel_factory or GeminiLiveChannel.factory(self.config.live_api)
        self._network_probe = network_probe or partial(
            probe_network, self.config.network.probe_host, self.config.network.probe_port
        )
        self._meter = LevelMeter.from_config(self._session, self.config.meter)

        self._generation = 0
        self._teardown_token: Optional[object] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._output: Optional[OutputDevice] = None
        self._input: Optional[InputDevice] = None
        self._scheduler: Optional[PlaybackScheduler] = None
        self._capture: Optional[AudioCaptureLine] = None
        self._channel: Optional[RemoteChannel] = None
        self._events: Optional[asyncio.Queue] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._send_tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self._session.error_kind

    @property
    def error_presentation(self) -> Optional[ErrorPresentation]:
        return presentation_for(self._session.error_kind)

    @property
    def character(self) -> CharacterProfile:
        return self._session.character

    @property
    def volume(self) -> float:
        return self._session.levels.volume

    @property
    def input_level(self) -> float:
        return self._session.levels.input_level

    @property
    def is_talking(self) -> bool:
        return self._session.levels.is_talking

    @property
    def is_muted(self) -> bool:
        return self._session.muted.is_set()

    @property
    def is_greeting_open(self) -> bool:
        return self._session.greeting_open.is_set()

    @property
    def session(self) -> SessionState:
        return self._session

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(controller)`` after every state, mute or greeting change.

        Level readings are not pushed; poll ``volume``/``input_level``.
        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning("Session listener raised", error=str(e), exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._session.state
        self._session.state = state
        if previous is not state:
            logger.info(
                "Session state changed",
                previous=previous.value,
                state=state.value,
                error_kind=self._session.error_kind.value if self._session.error_kind else None,
            )
        self._notify()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def set_character(self, key: str) -> CharacterProfile:
        """Select the character for the next session.

        Raises:
            ValueError: If the key is unknown or a session is live
        """
        if self._session.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise ValueError("Cannot change character while a session is active")
        profile = get_character(key)
        self._session.character = profile
        return profile

    def toggle_mute(self) -> bool:
        """Flip the microphone mute flag; the next capture frame sees it."""
        muted = self._session.muted.toggle()
        logger.info("Microphone mute toggled", muted=muted)
        self._notify()
        return muted

    async def connect(self) -> None:
        """Open a session. A no-op while connecting or connected; never raises."""
        session = self._session
        if session.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("connect() ignored; session already active", state=session.state.value)
            return

        self._loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        self._teardown_token = None

        session.reset()
        session.error_kind = None
        session.session_id = new_session_id()
        bind_session_id(session.session_id)
        session.alive.set()
        logger.info("Connecting session", character=session.character.key)
        self._set_state(ConnectionState.CONNECTING)

        try:
            await self._acquire(generation)
        except _SessionSuperseded:
            logger.info("Connect abandoned; session was torn down")
        except asyncio.CancelledError:
            if generation == self._generation:
                await self._teardown(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:
            if generation != self._generation:
                logger.info("Connect failed after teardown", error=str(exc))
                return
            kind = classify_failure(exc)
            logger.error("Session connect failed", error_kind=kind.value, error=str(exc))
            await self._teardown(ConnectionState.ERROR, kind)

    async def disconnect(self) -> None:
        """Tear the session down from any state. Idempotent; never raises."""
        try:
            await self._teardown(ConnectionState.DISCONNECTED)
        except Exception as e:
            logger.error("Disconnect failed", error=str(e), exc_info=True)

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise _SessionSuperseded()

    async def _acquire(self, generation: int) -> None:
        session = self._session
        live_cfg = self.config.live_api
        audio_cfg = self.config.audio

        self._platform.check_capabilities()

        await self._network_probe()
        self._ensure_current(generation)

        output = self._platform.open_output(live_cfg.output_sample_rate_hz)
        self._output = output
        self._scheduler = PlaybackScheduler(output, session, live_cfg.output_sample_rate_hz)
        self._meter.attach_output(output.frequency_data)
        self._meter.start()

        input_device = self._platform.open_input()
        self._input = input_device
        self._capture = AudioCaptureLine(
            session,
            self._forward_audio,
            native_rate=input_device.sample_rate,
            target_rate=live_cfg.input_sample_rate_hz,
            noise_gate_threshold=audio_cfg.noise_gate_threshold,
            log_every_n_frames=audio_cfg.log_every_n_frames,
        )
        self._meter.attach_input(input_device.frequency_data)
        input_device.start(self._capture.on_frame)
        logger.info(
            "Audio devices acquired",
            input_sample_rate=input_device.sample_rate,
            output_sample_rate=live_cfg.output_sample_rate_hz,
        )

        queue: asyncio.Queue = asyncio.Queue()
        self._events = queue
        self._dispatch_task = asyncio.create_task(
            self._dispatch_events(generation, queue), name=f"voicelink-session-{generation}"
        )
        channel = self._channel_factory(session.character, partial(self._deliver_event, generation, queue))
        self._channel = channel
        await channel.open()
        self._ensure_current(generation)

    # ------------------------------------------------------------------
    # Channel events
    # ------------------------------------------------------------------

    def _deliver_event(self, generation: int, queue: asyncio.Queue, event: ChannelEvent) -> None:
        if generation != self._generation:
            return
        queue.put_nowait(event)

    async def _dispatch_events(self, generation: int, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            if generation != self._generation:
                return
            try:
                await self._handle_event(event)
            except Exception as exc:
                if generation != self._generation:
                    return
                kind = classify_failure(exc)
                logger.error("Channel event handling failed", error_kind=kind.value, error=str(exc))
                await self._teardown(ConnectionState.ERROR, kind)
                return
            if generation != self._generation:
                # The event tore the session down
                return

    async def _handle_event(self, event: ChannelEvent) -> None:
        session = self._session
        if isinstance(event, ChannelOpened):
            if session.state is not ConnectionState.CONNECTING:
                return
            self._set_state(ConnectionState.CONNECTED)
            await self._send_greeting()
        elif isinstance(event, ChannelMessage):
            self._handle_message(event)
        elif isinstance(event, ChannelClosed):
            if session.state is ConnectionState.CONNECTED:
                logger.warning("Remote channel closed unexpectedly", code=event.code, reason=event.reason)
                await self._teardown(ConnectionState.ERROR, ErrorKind.SESSION_ENDED)
            else:
                await self._teardown(ConnectionState.DISCONNECTED)
        elif isinstance(event, ChannelFailed):
            kind = classify_failure(event.error)
            logger.error("Remote channel failed", error_kind=kind.value, error=str(event.error))
            await self._teardown(ConnectionState.ERROR, kind)

    async def _send_greeting(self) -> None:
        channel = self._channel
        if channel is None:
            return
        greeting = self._session.character.greeting_text
        await channel.send_client_turn(greeting, role="user", turn_complete=True)
        logger.info("Sent greeting turn", character=self._session.character.key)

    def _handle_message(self, event: ChannelMessage) -> None:
        content = parse_server_content(event.payload)
        if content is None:
            return

        scheduler = self._scheduler
        if scheduler is not None:
            for chunk in content.audio_chunks:
                scheduler.enqueue_base64(chunk)

        if content.turn_complete and self._session.greeting_open.trip():
            logger.info("Greeting finished; microphone input enabled")
            self._notify()

        if content.interrupted and scheduler is not None:
            scheduler.flush()

    # ------------------------------------------------------------------
    # Outbound audio
    # ------------------------------------------------------------------

    def _forward_audio(self, pcm16: bytes) -> None:
        """Hand a frame from the capture thread to the event loop without waiting."""
        loop = self._loop
        if loop is None or not self._session.alive.is_set():
            return
        loop.call_soon_threadsafe(self._spawn_send, self._generation, pcm16)

    def _spawn_send(self, generation: int, pcm16: bytes) -> None:
        channel = self._channel
        if generation != self._generation or channel is None:
            return
        if len(self._send_tasks) >= self.config.audio.max_pending_sends:
            # Channel is backed up; newer frames are dropped rather than queued
            logger.debug("Dropping audio frame; sends in flight", pending=len(self._send_tasks))
            return
        task = asyncio.get_running_loop().create_task(self._send_audio(channel, pcm16))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send_audio(self, channel: RemoteChannel, pcm16: bytes) -> None:
        try:
            await channel.send_realtime_audio(pcm16)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Dropping audio frame; send failed", error=str(e), frame_bytes=len(pcm16))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    @staticmethod
    def _release(resource: str, release: Callable[[], None]) -> None:
        try:
            release()
        except Exception as e:
            logger.warning("Resource release failed", resource=resource, error=str(e))

    async def _teardown(self, final_state: ConnectionState, error_kind: Optional[ErrorKind] = None) -> None:
        session = self._session
        token = object()
        self._teardown_token = token

        # Invalidate before releasing so in-flight callbacks become no-ops
        session.alive.clear()
        self._generation += 1

        dispatch_task, self._dispatch_task = self._dispatch_task, None
        self._events = None
        scheduler, self._scheduler = self._scheduler, None
        self._capture = None
        input_device, self._input = self._input, None
        output, self._output = self._output, None
        channel, self._channel = self._channel, None
        send_tasks = list(self._send_tasks)
        self._send_tasks.clear()

        if scheduler is not None:
            self._release("playback", scheduler.close)
        if input_device is not None:
            self._release("input_device", input_device.close)
        for task in send_tasks:
            task.cancel()
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.warning("Resource release failed", resource="channel", error=str(e))
        if output is not None:
            self._release("output_device", output.close)
        await self._meter.stop()

        if dispatch_task is not None and dispatch_task is not asyncio.current_task():
            dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatch_task

        if self._teardown_token is not token:
            # A later teardown finished while this one was suspended
            return
        session.reset()
        session.error_kind = error_kind
        self._set_state(final_state)
        clear_session_id()
