"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Speech recognition port consumed by the transcription session.

A capability starts continuous recognition streams. Each stream reports result
batches, errors and its own end through a listener, and is controlled through a
handle. Bindings live elsewhere (see ``browser_speech``).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


class EngineErrorKind(str, Enum):
    """Error codes reported by a recognition engine."""

    NO_SPEECH = "no-speech"
    ABORTED = "aborted"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network"
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    BAD_GRAMMAR = "bad-grammar"
    LANGUAGE_NOT_SUPPORTED = "language-not-supported"
    START_FAILED = "start-failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "EngineErrorKind":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def recoverable(self) -> bool:
        return self is EngineErrorKind.NO_SPEECH


@dataclass(frozen=True)
class StreamConfig:
    language: str = "en-US"
    continuous: bool = True
    interim_results: bool = True


@dataclass(frozen=True)
class TranscriptFragment:
    """One recognized result. Final fragments are never revised."""

    text: str
    is_final: bool
    confidence: float | None = None


@dataclass(frozen=True)
class ResultBatch:
    """Results delivered by one engine callback.

    ``results[k]`` is the result at absolute index ``result_index + k`` of its
    stream; results before ``result_index`` were already delivered as final.
    """

    result_index: int
    results: list[TranscriptFragment] = field(default_factory=list)

    def indexed(self):
        for offset, fragment in enumerate(self.results):
            yield self.result_index + offset, fragment


class StreamListener(ABC):
    """Receives events from one recognition stream, in delivery order."""

    @abstractmethod
    async def on_result(self, batch: ResultBatch) -> None:
        pass

    @abstractmethod
    async def on_error(self, kind: EngineErrorKind) -> None:
        pass

    @abstractmethod
    async def on_end(self) -> None:
        pass


class RecognitionHandle(ABC):
    """Controls one running recognition stream."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop listening; pending results may still be delivered."""
        pass

    @abstractmethod
    async def abort(self) -> None:
        """Stop immediately and discard pending results."""
        pass


class SpeechCapability(ABC):
    """A platform's continuous speech recognition."""

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    async def permission_state(self) -> PermissionState:
        pass

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for microphone access. Returns True when granted."""
        pass

    @abstractmethod
    async def start_stream(self, config: StreamConfig, listener: StreamListener) -> RecognitionHandle:
        pass
