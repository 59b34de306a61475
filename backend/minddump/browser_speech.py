"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Speech capability backed by the Web Speech API of a connected browser.

The browser runs recognition and relays its events over the recording
WebSocket; this module turns them into ``SpeechCapability`` calls.

Server -> browser commands::

    {"command": "request_permission"}
    {"command": "start", "stream_id": 1, "lang": "en-US", "continuous": true, "interim_results": true}
    {"command": "stop", "stream_id": 1}
    {"command": "abort", "stream_id": 1}

Browser -> server events::

    {"event": "capability", "supported": true, "permission": "granted"}
    {"event": "permission", "state": "granted"}
    {"event": "result", "stream_id": 1, "result_index": 0,
     "results": [{"transcript": "hello", "is_final": true, "confidence": 0.9}]}
    {"event": "error", "stream_id": 1, "error": "network"}
    {"event": "end", "stream_id": 1}

``results`` holds the entries of ``SpeechRecognitionEvent.results`` from
``resultIndex`` onwards.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

from .config import settings
from .speech import (
    EngineErrorKind,
    PermissionState,
    RecognitionHandle,
    ResultBatch,
    SpeechCapability,
    StreamConfig,
    StreamListener,
    TranscriptFragment,
)

logger = logging.getLogger(__name__)

SPEECH_EVENTS = {"capability", "permission", "result", "error", "end"}


def _parse_permission(value: Any) -> PermissionState:
    try:
        return PermissionState(str(value).lower())
    except ValueError:
        return PermissionState.PROMPT


def _parse_batch(message: dict) -> ResultBatch:
    fragments = []
    for item in message.get("results") or []:
        if not isinstance(item, dict):
            continue
        confidence = item.get("confidence")
        fragments.append(
            TranscriptFragment(
                text=str(item.get("transcript") or ""),
                is_final=bool(item.get("is_final")),
                confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            )
        )
    result_index = message.get("result_index") or 0
    if not isinstance(result_index, int) or result_index < 0:
        raise ValueError(f"invalid result_index {result_index!r}")
    return ResultBatch(result_index=result_index, results=fragments)


class BrowserRecognitionHandle(RecognitionHandle):
    def __init__(self, capability: "BrowserSpeechCapability", stream_id: int):
        self.capability = capability
        self.stream_id = stream_id

    async def stop(self) -> None:
        await self.capability._send({"command": "stop", "stream_id": self.stream_id})

    async def abort(self) -> None:
        self.capability._retire(self.stream_id)
        await self.capability._send({"command": "abort", "stream_id": self.stream_id})


class BrowserSpeechCapability(SpeechCapability):
    """Drives recognition in the browser on the other end of a WebSocket."""

    def __init__(
        self,
        websocket: WebSocket,
        supported: bool = False,
        permission: PermissionState = PermissionState.PROMPT,
        permission_timeout: float | None = None,
    ):
        self.websocket = websocket
        self.supported = supported
        self.permission = permission
        self.permission_timeout = (
            settings.permission_timeout_seconds if permission_timeout is None else permission_timeout
        )
        self._listeners: dict[int, StreamListener] = {}
        self._next_stream_id = 0
        self._permission_waiter: asyncio.Future | None = None

    def is_available(self) -> bool:
        return self.supported

    async def permission_state(self) -> PermissionState:
        return self.permission

    async def request_permission(self) -> bool:
        if self._permission_waiter is None or self._permission_waiter.done():
            self._permission_waiter = asyncio.get_running_loop().create_future()
            await self._send({"command": "request_permission"})
        try:
            return await asyncio.wait_for(asyncio.shield(self._permission_waiter), self.permission_timeout)
        except asyncio.TimeoutError:
            logger.warning("Microphone permission request timed out after %ss", self.permission_timeout)
            return False

    async def start_stream(self, config: StreamConfig, listener: StreamListener) -> RecognitionHandle:
        self._next_stream_id += 1
        stream_id = self._next_stream_id
        self._listeners[stream_id] = listener
        try:
            await self._send({
                "command": "start",
                "stream_id": stream_id,
                "lang": config.language,
                "continuous": config.continuous,
                "interim_results": config.interim_results,
            })
        except (Exception, asyncio.CancelledError):
            self._retire(stream_id)
            raise
        logger.debug("Started browser recognition stream %s", stream_id)
        return BrowserRecognitionHandle(self, stream_id)

    async def dispatch(self, message: dict) -> bool:
        """Route one browser event. Returns False when the message is not a speech event."""
        event = message.get("event")
        if event not in SPEECH_EVENTS:
            return False

        if event == "capability":
            self.supported = bool(message.get("supported"))
            if "permission" in message:
                self.permission = _parse_permission(message.get("permission"))
            return True

        if event == "permission":
            self.permission = _parse_permission(message.get("state"))
            if self._permission_waiter is not None and not self._permission_waiter.done():
                self._permission_waiter.set_result(self.permission is PermissionState.GRANTED)
            return True

        stream_id = message.get("stream_id")
        if not isinstance(stream_id, int) or isinstance(stream_id, bool):
            logger.warning("Dropping %s event with invalid stream id %r", event, stream_id)
            return True
        listener = self._listeners.get(stream_id)
        if listener is None:
            logger.debug("Dropping %s event for inactive stream %s", event, stream_id)
            return True

        if event == "result":
            try:
                batch = _parse_batch(message)
            except (TypeError, ValueError) as e:
                logger.warning("Dropping malformed result batch for stream %s: %s", stream_id, e)
                return True
            await listener.on_result(batch)
        elif event == "error":
            await listener.on_error(EngineErrorKind.parse(message.get("error")))
        else:
            self._retire(stream_id)
            await listener.on_end()
        return True

    def close(self) -> None:
        """Forget all streams and deny any pending permission request."""
        self._listeners.clear()
        if self._permission_waiter is not None and not self._permission_waiter.done():
            self._permission_waiter.set_result(False)

    def _retire(self, stream_id: int) -> None:
        self._listeners.pop(stream_id, None)

    async def _send(self, payload: dict) -> None:
        await self.websocket.send_json(payload)
