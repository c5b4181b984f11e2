"""Data models for callscribe."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from .monitor import InactivityMonitor
    from .multiplexer import SpeakerStreamMultiplexer
    from .voice import VoiceConnection


CONVERSION_FAILED = "[Conversion to WAV failed]"
COMPRESSION_FAILED = "[Compression failed]"
NO_USABLE_AUDIO = "[No usable audio recorded or too short]"
TRANSCRIPTION_FAILED = "[Transcription failed or returned empty]"
NO_TEXT_TO_SUMMARIZE = "[No text to summarize]"
SUMMARY_FAILED = "[Summary failed]"

TRANSCRIPT_SENTINELS = frozenset(
    {CONVERSION_FAILED, COMPRESSION_FAILED, NO_USABLE_AUDIO, TRANSCRIPTION_FAILED}
)


class RecordingState(enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"


@dataclass(frozen=True)
class SegmentResult:
    transcript: str
    summary: str


@dataclass
class Session:
    """Per-context recording state.

    Fields are mutated only by ``SessionRecorder`` while holding ``lock``,
    except the speaking callbacks, which run synchronously on the event loop.
    """

    context_id: str
    pipelines: "SpeakerStreamMultiplexer"
    connection: Optional["VoiceConnection"] = None
    state: RecordingState = RecordingState.IDLE
    active_file_path: Optional[str] = None
    segment_counter: int = 0
    segment_started_at: Optional[float] = None
    last_speech_at: Optional[float] = None
    inactivity_monitor: Optional["InactivityMonitor"] = None
    archive: Dict[int, SegmentResult] = field(default_factory=dict)
    listeners_attached: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @property
    def is_recording(self) -> bool:
        return self.state is RecordingState.RECORDING
