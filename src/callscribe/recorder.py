"""Session lifecycle: join, record, stop, leave."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from .errors import (
    AlreadyConnected,
    AlreadyRecording,
    NotConnected,
    NotRecording,
    SegmentNotFound,
    SessionStateError,
)
from .models import RecordingState, SegmentResult, Session
from .monitor import InactivityMonitor
from .multiplexer import SpeakerStreamMultiplexer
from .orchestrator import TranscriptionOrchestrator, build_orchestrator
from .storage import allocate_capture_file
from .voice import (
    FrameDecoder,
    PcmPassthroughDecoder,
    VoiceConnection,
    VoiceSource,
    build_decoder_factory,
)

logger = logging.getLogger("callscribe.recorder")

SegmentRef = Union[int, str, None]


class SessionManager:
    """Owns one ``Session`` per context id."""

    def __init__(self, decoder_factory: Callable[[], FrameDecoder] = PcmPassthroughDecoder) -> None:
        self._decoder_factory = decoder_factory
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, context_id: str) -> Optional[Session]:
        return self._sessions.get(context_id)

    def get_or_create(self, context_id: str) -> Session:
        session = self._sessions.get(context_id)
        if session is None:
            session = Session(
                context_id=context_id,
                pipelines=SpeakerStreamMultiplexer(self._decoder_factory, label=context_id),
            )
            self._sessions[context_id] = session
        return session

    def remove(self, context_id: str) -> Optional[Session]:
        return self._sessions.pop(context_id, None)


class SessionRecorder:
    """Per-context recording state machine.

    State transitions for one session run under that session's lock.
    Speaking callbacks run synchronously on the event loop and only act
    while the session is recording.
    """

    def __init__(
        self,
        voice_source: VoiceSource,
        orchestrator: TranscriptionOrchestrator,
        work_dir: str = "recordings",
        sessions: Optional[SessionManager] = None,
        inactivity_limit_seconds: float = 180.0,
        inactivity_interval_seconds: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.voice_source = voice_source
        self.orchestrator = orchestrator
        self.work_dir = work_dir
        self.sessions = sessions or SessionManager()
        self.inactivity_limit_seconds = inactivity_limit_seconds
        self.inactivity_interval_seconds = inactivity_interval_seconds
        self._clock = clock

    # -- commands ---------------------------------------------------------

    async def join(self, context_id: str, target: Any) -> Session:
        session = self.sessions.get_or_create(context_id)
        async with session.lock:
            if session.connection is not None:
                raise AlreadyConnected(context_id)
            connection = await self.voice_source.connect(target)
            session.connection = connection
            session.state = RecordingState.IDLE
            session.active_file_path = None
            session.segment_started_at = None
            session.last_speech_at = None
            if not session.listeners_attached:
                self._attach_listeners(session, connection)
            logger.info("[%s] Joined %s", context_id, target)
        return session

    async def start_recording(self, context_id: str) -> int:
        session = self.sessions.get(context_id)
        if session is None:
            raise NotConnected(context_id)
        async with session.lock:
            if session.connection is None:
                raise NotConnected(context_id)
            if session.is_recording:
                raise AlreadyRecording(context_id)

            segment_id = session.segment_counter + 1
            path = allocate_capture_file(self.work_dir, context_id, segment_id)
            now = self._clock()
            session.segment_counter = segment_id
            session.active_file_path = path
            session.segment_started_at = now
            session.last_speech_at = now
            session.state = RecordingState.RECORDING
            self._start_monitor(session)
            logger.info("[%s] Starting recording -> %s", context_id, path)
            return segment_id

    async def stop_recording(self, context_id: str) -> SegmentResult:
        session = self.sessions.get(context_id)
        if session is None:
            raise NotRecording(context_id)
        async with session.lock:
            return await self._stop(session)

    async def leave(self, context_id: str) -> None:
        session = self.sessions.get(context_id)
        if session is None:
            raise NotConnected(context_id)
        async with session.lock:
            self._leave(session)

    async def join_and_record(self, context_id: str, target: Any) -> int:
        await self.join(context_id, target)
        return await self.start_recording(context_id)

    async def finish(self, context_id: str) -> Optional[Tuple[int, SegmentResult]]:
        """Stop and archive the running segment if any, then leave."""
        session = self.sessions.get(context_id)
        if session is None:
            raise NotConnected(context_id)
        async with session.lock:
            if session.connection is None:
                raise NotConnected(context_id)
            outcome = None
            try:
                if session.is_recording:
                    segment_id = session.segment_counter
                    outcome = (segment_id, await self._stop(session))
            finally:
                self._leave(session)
            return outcome

    async def on_channel_empty(self, context_id: str) -> Optional[Tuple[int, SegmentResult]]:
        """Auto-stop when no human participant remains in the channel."""
        session = self.sessions.get(context_id)
        if session is None or session.connection is None:
            return None
        logger.info("[%s] Auto-stop: channel empty", context_id)
        try:
            return await self.finish(context_id)
        except SessionStateError as exc:
            logger.warning("[%s] Auto-stop skipped: %s", context_id, exc)
        except Exception:
            logger.exception("[%s] Auto-stop failed", context_id)
        return None

    async def reset(self, context_id: str) -> None:
        session = self.sessions.get(context_id)
        if session is None:
            return
        async with session.lock:
            if session.connection is not None:
                self._leave(session)
            self.sessions.remove(context_id)

    # -- queries ----------------------------------------------------------

    def resolve_segment_id(self, context_id: str, ref: SegmentRef = None) -> int:
        session = self.sessions.get(context_id)
        if session is None:
            raise SegmentNotFound(context_id, ref)
        if ref is None:
            return session.segment_counter
        if isinstance(ref, str):
            value = ref.strip()
            if not value or value.lower() == "recent":
                return session.segment_counter
            try:
                return int(value)
            except ValueError:
                raise SegmentNotFound(context_id, ref) from None
        return int(ref)

    def get_segment(self, context_id: str, ref: SegmentRef = None) -> SegmentResult:
        segment_id = self.resolve_segment_id(context_id, ref)
        session = self.sessions.get(context_id)
        result = session.archive.get(segment_id)
        if result is None:
            raise SegmentNotFound(context_id, segment_id)
        return result

    # -- internals (caller holds session.lock) ----------------------------

    async def _stop(self, session: Session) -> SegmentResult:
        if not session.is_recording:
            raise NotRecording(session.context_id)

        segment_id = session.segment_counter
        raw_path = session.active_file_path
        # Flip before any await so late speaking events are no-ops.
        session.state = RecordingState.IDLE
        session.active_file_path = None
        self._cancel_monitor(session)

        await session.pipelines.close_all()
        logger.info("[%s] Recording ended, processing segment %s", session.context_id, segment_id)
        result = await self.orchestrator.process(
            raw_path, label=f"{session.context_id}#{segment_id}"
        )
        session.archive[segment_id] = result
        return result

    def _leave(self, session: Session) -> None:
        connection = session.connection
        if connection is None:
            raise NotConnected(session.context_id)
        if session.is_recording:
            logger.warning(
                "[%s] Forcibly leaving while still recording segment %s; audio discarded.",
                session.context_id,
                session.segment_counter,
            )
            session.state = RecordingState.IDLE
            session.active_file_path = None
        session.pipelines.discard_all()
        self._cancel_monitor(session)
        session.connection = None
        session.listeners_attached = False
        session.segment_started_at = None
        session.last_speech_at = None
        try:
            connection.destroy()
        except Exception:
            logger.exception("[%s] Error destroying voice connection", session.context_id)
        logger.info("[%s] Left the voice channel.", session.context_id)

    def _start_monitor(self, session: Session) -> None:
        self._cancel_monitor(session)
        monitor = InactivityMonitor(
            session,
            self._handle_inactivity,
            limit_seconds=self.inactivity_limit_seconds,
            interval_seconds=self.inactivity_interval_seconds,
            clock=self._clock,
        )
        session.inactivity_monitor = monitor
        monitor.start()

    def _cancel_monitor(self, session: Session) -> None:
        monitor = session.inactivity_monitor
        session.inactivity_monitor = None
        if monitor is not None:
            monitor.cancel()

    async def _handle_inactivity(self, session: Session, segment_id: int) -> None:
        async with session.lock:
            if not session.is_recording or session.segment_counter != segment_id:
                return
            try:
                await self._stop(session)
            finally:
                if session.connection is not None:
                    self._leave(session)

    # -- speaking events --------------------------------------------------

    def _attach_listeners(self, session: Session, connection: VoiceConnection) -> None:
        def _on_start(participant_id: str) -> None:
            self._speaking_started(session, connection, participant_id)

        def _on_end(participant_id: str) -> None:
            self._speaking_ended(session, connection, participant_id)

        connection.add_speaking_listener(_on_start, _on_end)
        session.listeners_attached = True

    def _speaking_started(
        self, session: Session, connection: VoiceConnection, participant_id: str
    ) -> None:
        if session.connection is not connection or not session.is_recording:
            return
        if participant_id in session.pipelines:
            return
        session.last_speech_at = self._clock()
        try:
            stream = connection.subscribe(participant_id)
        except Exception:
            logger.exception(
                "[%s] Could not subscribe to participant %s", session.context_id, participant_id
            )
            return
        session.pipelines.open(participant_id, stream, session.active_file_path)

    def _speaking_ended(
        self, session: Session, connection: VoiceConnection, participant_id: str
    ) -> None:
        if session.connection is not connection:
            return
        if session.is_recording:
            session.last_speech_at = self._clock()
        session.pipelines.close(participant_id)


def build_recorder(config, voice_source: VoiceSource) -> SessionRecorder:
    return SessionRecorder(
        voice_source,
        build_orchestrator(config),
        work_dir=config.work_dir,
        sessions=SessionManager(
            build_decoder_factory(config.capture.decoder, channels=config.capture.channels)
        ),
        inactivity_limit_seconds=config.inactivity.limit_seconds,
        inactivity_interval_seconds=config.inactivity.check_interval_seconds,
    )
