"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Screen flow for one connected client: landing, recording, processing,
results and history.
"""
import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any

from fastapi import WebSocket

from .categorizer import categorize_transcript
from .db import SessionLocal
from .errors import CapabilityUnavailable, EmptyTranscript, EngineFatal, PermissionDenied, SessionBusy
from .repositories import get_thought_session, load_sessions, prepend_session
from .schemas import ThoughtSession
from .speech import SpeechCapability
from .transcription import SessionState, TranscriptionSession

logger = logging.getLogger(__name__)

CLASSIFICATION_FAILED_MESSAGE = "Failed to process your thoughts. Please try again."


class View(str, Enum):
    LANDING = "landing"
    RECORDING = "recording"
    PROCESSING = "processing"
    RESULTS = "results"
    HISTORY = "history"


def format_elapsed(seconds: int) -> str:
    """Render elapsed seconds as MM:SS."""
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes:02d}:{secs:02d}"


class RecordingShell:
    """
    Owns the transcription session of one client and moves it between views.

    ``start`` and ``stop`` run as background tasks so the caller can keep
    feeding speech events to the capability while they are in progress.
    """

    def __init__(
        self,
        websocket: WebSocket,
        capability: SpeechCapability,
        session_factory=SessionLocal,
        grace_period: float | None = None,
        restart_delay: float | None = None,
    ):
        self.websocket = websocket
        self.session_factory = session_factory
        self.transcription = TranscriptionSession(
            capability,
            grace_period=grace_period,
            restart_delay=restart_delay,
            on_update=self._on_transcript,
            on_state_change=self._on_state_change,
            on_tick=self._on_tick,
            on_error=self._on_engine_error,
        )
        self.view = View.LANDING
        self.current: ThoughtSession | None = None
        self.current_saved = False
        self._tasks: set[asyncio.Task] = set()

    async def open(self) -> None:
        await self.show(View.LANDING)

    async def close(self) -> None:
        """Cancel pending work and release the recognition stream."""
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        await self.transcription.teardown()

    async def wait_idle(self) -> None:
        """Wait for background commands to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle_command(self, message: dict) -> None:
        command = message.get("command")
        allowed = {
            "start": {View.LANDING},
            "stop": {View.RECORDING},
            "save": {View.RESULTS},
            "new": {View.RESULTS},
            "history": {View.LANDING},
            "select": {View.HISTORY},
            "back": {View.HISTORY},
        }
        if command not in allowed:
            logger.warning("Unknown command from client: %r", command)
            await self.send({"type": "error", "message": f"Unknown command: {command}"})
            return
        if self.view not in allowed[command]:
            logger.info("Ignoring %s command in %s view", command, self.view.value)
            return

        if command == "start":
            self._spawn(self.start_recording())
        elif command == "stop":
            self._spawn(self.finish_recording())
        elif command == "save":
            await self.save_current()
        elif command == "history":
            await self.show_history()
        elif command == "select":
            await self.select_session(str(message.get("id", "")))
        else:
            self.current = None
            await self.show(View.LANDING)

    async def start_recording(self) -> None:
        try:
            await self.transcription.start()
        except SessionBusy:
            logger.info("Start requested while a recording is active")
            return
        except (CapabilityUnavailable, PermissionDenied) as e:
            await self.show_error(str(e))
            return
        except EngineFatal as e:
            await self.show_error(str(e), kind=e.kind)
            return
        await self.show(View.RECORDING)

    async def finish_recording(self) -> None:
        try:
            transcript = await self.transcription.stop()
        except EmptyTranscript as e:
            await self.show_error(str(e))
            return
        if transcript is None:
            return

        await self.show(View.PROCESSING)
        try:
            categories = await categorize_transcript(transcript)
        except Exception as e:
            logger.error("Error processing thoughts: %r", e)
            await self.show_error(CLASSIFICATION_FAILED_MESSAGE)
            return

        self.current = ThoughtSession.create(transcript, categories)
        self.current_saved = False
        await self.show(View.RESULTS, session=self.current.model_dump(mode="json"), saved=False)

    async def save_current(self) -> None:
        if self.current is None:
            return
        if not self.current_saved:
            try:
                async with self.session_factory() as db:
                    sessions = await prepend_session(db, self.current)
                    await db.commit()
            except Exception as e:
                logger.error("Failed to save session %s: %r", self.current.id, e)
                await self.send({"type": "error", "message": "Failed to save your session. Please try again."})
                return
            logger.info("Saved session %s (%d total)", self.current.id, len(sessions))
            await self.send({"type": "saved", "id": self.current.id})
        self.current = None
        await self.show(View.LANDING)

    async def show_history(self) -> None:
        async with self.session_factory() as db:
            sessions = await load_sessions(db)
        await self.show(View.HISTORY, sessions=[s.model_dump(mode="json") for s in sessions])

    async def select_session(self, session_id: str) -> None:
        async with self.session_factory() as db:
            record = await get_thought_session(db, session_id)
        if record is None:
            await self.send({"type": "error", "message": "Session not found"})
            return
        self.current = record
        self.current_saved = True
        await self.show(View.RESULTS, session=record.model_dump(mode="json"), saved=True)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def show(self, view: View, **extra: Any) -> None:
        self.view = view
        payload = {"type": "view", "view": view.value, **extra}
        if view is View.LANDING:
            payload["history_count"] = await self._history_count()
        await self.send(payload)

    async def show_error(self, message: str, kind: str | None = None) -> None:
        """Report an error and return to the pre-recording screen."""
        payload = {"type": "error", "message": message}
        if kind:
            payload["kind"] = kind
        await self.send(payload)
        self.current = None
        await self.show(View.LANDING)

    async def send(self, payload: dict) -> None:
        try:
            await self.websocket.send_json(payload)
        except Exception as e:
            logger.warning("Failed to send %s to client: %s", payload.get("type"), e)

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    async def _on_transcript(self, text: str) -> None:
        await self.send({"type": "transcript", "text": text})

    async def _on_tick(self, elapsed: int) -> None:
        await self.send({"type": "tick", "elapsed": elapsed, "display": format_elapsed(elapsed)})

    async def _on_state_change(self, state: SessionState) -> None:
        await self.send({"type": "state", "state": state.value})

    async def _on_engine_error(self, error: EngineFatal) -> None:
        await self.show_error(str(error), kind=error.kind)

    async def _history_count(self) -> int:
        try:
            async with self.session_factory() as db:
                return len(await load_sessions(db))
        except Exception as e:
            logger.error("Failed to count saved sessions: %r", e)
            return 0

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
