from __future__ import annotations
import enum


class SyncErrorCategory(str, enum.Enum):
    DUPLICATE_SESSION = "duplicate_session"
    INVALID_KEY = "invalid_key"
    NETWORK_FAILURE = "network_failure"
    UNKNOWN = "unknown"


class IqraError(Exception):
    """Base class for errors raised by the assessment core."""


class SetupError(IqraError):
    """Bad exam setup input; raised before any state change."""


class ConfigError(IqraError):
    """Malformed mirror configuration."""


class GenerationError(IqraError):
    """The content generator failed or returned an unusable exam."""


class MirrorError(IqraError):
    def __init__(self, category: SyncErrorCategory, message: str) -> None:
        super().__init__(message)
        self.category = category
        self.message = message


class DuplicateSessionError(MirrorError):
    def __init__(self, message: str = "A mirror connection is already active") -> None:
        super().__init__(SyncErrorCategory.DUPLICATE_SESSION, message)


class TransitionError(IqraError):
    """The requested action is not available in the session's current state."""
