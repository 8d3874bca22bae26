"""Voice recorder session management."""

from .recorder import (
    RecorderError,
    RecorderSpec,
    RecorderUnavailableError,
    VoiceRecordingSession,
    recorder_specs,
    start_voice_recording,
)

__all__ = [
    "RecorderError",
    "RecorderSpec",
    "RecorderUnavailableError",
    "VoiceRecordingSession",
    "recorder_specs",
    "start_voice_recording",
]
