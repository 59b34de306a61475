"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Transcription session: one recording attempt against a speech capability.

The session keeps a continuous recognition stream alive until the user stops,
accumulates final fragments while showing the latest interim text, and ends in
either a trimmed transcript or an error. Streams that the engine ends on its
own are restarted transparently. Each stream gets a generation number; events
from a stream that is no longer current are dropped, so only one stream ever
feeds the accumulator.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Awaitable, Callable

from .config import settings
from .errors import CapabilityUnavailable, EmptyTranscript, EngineFatal, PermissionDenied, SessionBusy
from .speech import (
    EngineErrorKind,
    PermissionState,
    RecognitionHandle,
    ResultBatch,
    SpeechCapability,
    StreamConfig,
    StreamListener,
)

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0

FATAL_MESSAGES = {
    EngineErrorKind.NOT_ALLOWED: "Microphone access was revoked. Please allow microphone access and try again.",
    EngineErrorKind.SERVICE_NOT_ALLOWED: "Speech recognition is blocked on this device. Please check your settings and try again.",
    EngineErrorKind.NETWORK: "Speech recognition lost its network connection. Please try again.",
    EngineErrorKind.ABORTED: "Recording stopped. Please try again.",
    EngineErrorKind.AUDIO_CAPTURE: "No microphone could be used. Please check your microphone and try again.",
    EngineErrorKind.LANGUAGE_NOT_SUPPORTED: "This language is not supported for speech recognition.",
    EngineErrorKind.START_FAILED: "Failed to start recording. Please check microphone permissions.",
}

Callback = Callable[..., Awaitable[None]]


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    STOPPING = "stopping"


class _GenerationListener(StreamListener):
    """Routes one stream's events back to the session, tagged with its generation."""

    def __init__(self, session: "TranscriptionSession", generation: int):
        self.session = session
        self.generation = generation

    async def on_result(self, batch: ResultBatch) -> None:
        await self.session._handle_result(self.generation, batch)

    async def on_error(self, kind: EngineErrorKind) -> None:
        await self.session._handle_error(self.generation, kind)

    async def on_end(self) -> None:
        await self.session._handle_end(self.generation)


class TranscriptionSession:
    """State machine for a single recording attempt.

    ``idle -> listening -> stopping -> idle``. A fatal engine error moves
    ``listening`` straight back to ``idle``; ``teardown`` works from any state.
    """

    def __init__(
        self,
        capability: SpeechCapability,
        config: StreamConfig | None = None,
        grace_period: float | None = None,
        restart_delay: float | None = None,
        tick_seconds: float = TICK_SECONDS,
        on_update: Callback | None = None,
        on_state_change: Callback | None = None,
        on_tick: Callback | None = None,
        on_error: Callback | None = None,
    ):
        self.capability = capability
        self.config = config or StreamConfig(language=settings.speech_language)
        self.grace_period = settings.grace_period_seconds if grace_period is None else grace_period
        self.restart_delay = settings.restart_delay_seconds if restart_delay is None else restart_delay
        self.tick_seconds = tick_seconds
        self.on_update = on_update
        self.on_state_change = on_state_change
        self.on_tick = on_tick
        self.on_error = on_error

        self._state = SessionState.IDLE
        self._generation = 0
        self._handle: RecognitionHandle | None = None
        self._final_fragments: list[str] = []
        self._seen_finals: set[tuple[int, int]] = set()
        self._interim = ""
        self._elapsed = 0
        self._ticker: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed

    @property
    def interim_text(self) -> str:
        return self._interim

    @property
    def live_text(self) -> str:
        """Final text so far followed by the current interim fragment."""
        return self._final_portion() + self._interim

    @property
    def final_text(self) -> str:
        return self._final_portion().strip()

    def _final_portion(self) -> str:
        return "".join(f"{fragment} " for fragment in self._final_fragments)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin a fresh attempt.

        Raises CapabilityUnavailable or PermissionDenied without leaving idle.
        """
        if self._state is not SessionState.IDLE:
            raise SessionBusy("A recording is already in progress")
        epoch = self._generation

        if not self.capability.is_available():
            raise CapabilityUnavailable(
                "Your browser does not support speech recognition. Please use Chrome or Safari on iOS."
            )

        permission = await self.capability.permission_state()
        if permission is not PermissionState.GRANTED:
            logger.info("Microphone permission is %s; requesting access", permission.value)
            if not await self.capability.request_permission():
                raise PermissionDenied("Microphone access was denied. Please allow microphone access and try again.")

        if self._generation != epoch:
            raise EngineFatal(EngineErrorKind.ABORTED.value, "Recording was cancelled")
        if self._state is not SessionState.IDLE:
            raise SessionBusy("A recording is already in progress")

        self._final_fragments = []
        self._seen_finals = set()
        self._interim = ""
        self._elapsed = 0
        await self._set_state(SessionState.LISTENING)
        self._ticker = asyncio.create_task(self._tick())

        try:
            await self._open_stream()
        except Exception as e:
            logger.error("Failed to start recognition: %r", e)
            await self._reset_to_idle()
            raise EngineFatal(EngineErrorKind.START_FAILED.value, FATAL_MESSAGES[EngineErrorKind.START_FAILED]) from e
        logger.info("Recording started (%s)", self.config.language)

    async def stop(self) -> str | None:
        """Finish the attempt and return the trimmed transcript.

        Waits the grace period for trailing final results. Raises
        EmptyTranscript when nothing final was heard. Returns None when there
        was no attempt to stop, or the session was torn down meanwhile.
        """
        if self._state is not SessionState.LISTENING:
            logger.debug("Stop ignored in state %s", self._state.value)
            return None

        await self._set_state(SessionState.STOPPING)
        await self._cancel_timers()
        if self._handle is not None:
            try:
                await self._handle.stop()
            except Exception as e:
                logger.warning("Failed to stop recognition cleanly: %r", e)

        await asyncio.sleep(self.grace_period)
        if self._state is not SessionState.STOPPING:
            return None

        transcript = self.final_text
        handle = self._handle
        self._handle = None
        self._generation += 1
        self._interim = ""
        await self._set_state(SessionState.IDLE)
        if handle is not None:
            await self._quietly(handle.abort)

        if not transcript:
            logger.info("Recording finished without speech after %ss", self._elapsed)
            raise EmptyTranscript("No speech detected. Please try again.")
        logger.info("Recording finished: %d chars after %ss", len(transcript), self._elapsed)
        return transcript

    async def teardown(self) -> None:
        """Release the stream and timers regardless of state. Never raises."""
        try:
            await self._reset_to_idle()
        except Exception as e:
            logger.warning("Transcription session teardown failed: %r", e)

    # ------------------------------------------------------------------
    # Stream events
    # ------------------------------------------------------------------

    async def _handle_result(self, generation: int, batch: ResultBatch) -> None:
        if generation != self._generation or self._state is SessionState.IDLE:
            logger.debug("Dropping results from stale stream %s", generation)
            return

        interim_parts = []
        for index, fragment in batch.indexed():
            if fragment.is_final:
                key = (generation, index)
                if key in self._seen_finals:
                    continue
                self._seen_finals.add(key)
                self._final_fragments.append(fragment.text)
            else:
                interim_parts.append(fragment.text)
        self._interim = "".join(interim_parts)
        await self._emit(self.on_update, self.live_text)

    async def _handle_error(self, generation: int, kind: EngineErrorKind) -> None:
        if generation != self._generation:
            return
        if kind.recoverable:
            logger.debug("No speech detected yet; still listening")
            return
        if self._state is not SessionState.LISTENING:
            logger.info("Ignoring engine error %s while %s", kind.value, self._state.value)
            return

        logger.warning("Speech recognition failed: %s", kind.value)
        await self._reset_to_idle()
        message = FATAL_MESSAGES.get(kind, "Speech recognition failed. Please try again.")
        await self._emit(self.on_error, EngineFatal(kind.value, message))

    async def _handle_end(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        if self._state is not SessionState.LISTENING:
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        logger.info("Recognition stream %s ended on its own; restarting", generation)
        self._restart_task = asyncio.create_task(self._restart_after_delay(generation))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open_stream(self) -> None:
        self._generation += 1
        generation = self._generation
        self._interim = ""
        opening = asyncio.ensure_future(
            self.capability.start_stream(self.config, _GenerationListener(self, generation))
        )
        try:
            handle = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # Stop or teardown cancelled us mid-open; the stream may already be live.
            try:
                orphan = await opening
            except Exception as e:
                logger.debug("Cancelled stream open failed: %r", e)
            else:
                await self._quietly(orphan.abort)
            raise
        if generation != self._generation or self._state is SessionState.IDLE:
            # Torn down or failed while the stream was starting.
            await self._quietly(handle.abort)
            return
        self._handle = handle

    async def _restart_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self.restart_delay)
        if self._state is not SessionState.LISTENING or generation != self._generation:
            return
        try:
            await self._open_stream()
        except Exception as e:
            logger.error("Failed to restart recognition: %r", e)
            await self._reset_to_idle()
            await self._emit(
                self.on_error,
                EngineFatal(EngineErrorKind.START_FAILED.value, FATAL_MESSAGES[EngineErrorKind.START_FAILED]),
            )

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self._elapsed += 1
            await self._emit(self.on_tick, self._elapsed)

    async def _reset_to_idle(self) -> None:
        """Silence the current stream, stop timers and discard partial text."""
        handle = self._handle
        self._handle = None
        self._generation += 1
        self._final_fragments = []
        self._seen_finals = set()
        self._interim = ""
        await self._cancel_timers()
        if self._state is not SessionState.IDLE:
            await self._set_state(SessionState.IDLE)
        if handle is not None:
            await self._quietly(handle.abort)

    async def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        for task in (self._ticker, self._restart_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._ticker = None
        if self._restart_task is not current:
            self._restart_task = None

    async def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Transcription session %s -> %s", self._state.value, state.value)
        self._state = state
        await self._emit(self.on_state_change, state)

    async def _emit(self, callback: Callback | None, *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.warning("Transcription session callback failed: %r", e)

    async def _quietly(self, action: Callable[[], Awaitable[None]]) -> None:
        try:
            await action()
        except Exception as e:
            logger.debug("Ignoring recognition shutdown error: %r", e)
