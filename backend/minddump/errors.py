"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Exception types shared by the recording session, the categorizer and the API.
"""


class MindDumpError(RuntimeError):
    """Base class for all application errors."""


# ==================================================================================
# Recording
# ==================================================================================

class CapabilityUnavailable(MindDumpError):
    """The platform exposes no streaming speech recognition."""


class PermissionDenied(MindDumpError):
    """Microphone access was refused."""


class EmptyTranscript(MindDumpError):
    """Recording ended without any finalized speech."""


class SessionBusy(MindDumpError):
    """A recording attempt is already in progress."""


class EngineFatal(MindDumpError):
    """The recognition engine failed mid-session; the attempt is over."""

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        super().__init__(message or f"Speech recognition failed: {kind}")


# ==================================================================================
# Categorization
# ==================================================================================

class BackendMisconfigured(MindDumpError):
    """The language model backend is missing a required setting."""


class ClassificationRequestFailed(MindDumpError):
    """The language model could not be reached or returned an error."""


class ClassificationResponseInvalid(MindDumpError):
    """The language model reply could not be parsed as a category object."""
