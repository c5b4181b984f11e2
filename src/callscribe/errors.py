"""Error taxonomy."""

from __future__ import annotations


class CallscribeError(RuntimeError):
    pass


class SessionStateError(CallscribeError):
    """Caller misuse of a session; recoverable and reported as-is."""


class AlreadyConnected(SessionStateError):
    def __init__(self, context_id: str) -> None:
        super().__init__(f"Already connected or session in progress ({context_id}).")


class NotConnected(SessionStateError):
    def __init__(self, context_id: str) -> None:
        super().__init__(f"Not connected to a voice channel ({context_id}).")


class AlreadyRecording(SessionStateError):
    def __init__(self, context_id: str) -> None:
        super().__init__(f"Already recording ({context_id}).")


class NotRecording(SessionStateError):
    def __init__(self, context_id: str) -> None:
        super().__init__(f"Not currently recording ({context_id}).")


class SegmentNotFound(SessionStateError):
    def __init__(self, context_id: str, segment_id: object) -> None:
        super().__init__(f"No transcript for segment #{segment_id} ({context_id}).")
        self.segment_id = segment_id


class VoiceConnectionError(CallscribeError):
    pass


class MediaError(CallscribeError):
    pass


class ConversionError(MediaError):
    pass


class CompressionError(MediaError):
    pass


class TranscriptionError(MediaError):
    pass


class SummaryError(MediaError):
    pass
