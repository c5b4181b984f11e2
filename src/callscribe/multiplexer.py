"""Per-speaker decode-and-append pipelines sharing one capture file."""

from __future__ import annotations

import asyncio
import logging
from typing import BinaryIO, Callable, Dict, Optional

from .voice import AudioStream, FrameDecoder

logger = logging.getLogger("callscribe.multiplexer")


class SpeakerPipeline:
    """Reads one participant's frames, decodes them and appends PCM.

    Each decoded buffer goes to the file in a single ``write`` call, so
    speakers interleave by whole chunks in append order.
    """

    def __init__(
        self,
        participant_id: str,
        stream: AudioStream,
        decoder: FrameDecoder,
        file_path: str,
        label: str = "",
    ) -> None:
        self.participant_id = participant_id
        self.stream = stream
        self.decoder = decoder
        self.file_path = file_path
        self.label = label
        self.bytes_written = 0
        self.failed = False
        self._handle: Optional[BinaryIO] = None
        self.task: Optional[asyncio.Task] = None

    def start(self, on_failure: Callable[["SpeakerPipeline"], None]) -> None:
        self._handle = open(self.file_path, "ab")
        runner = self._run(on_failure)
        try:
            self.task = asyncio.create_task(runner)
        except BaseException:
            runner.close()
            self.release()
            raise

    async def _run(self, on_failure: Callable[["SpeakerPipeline"], None]) -> None:
        try:
            async for frame in self.stream:
                pcm = self.decoder.decode(frame)
                if not pcm:
                    continue
                self._handle.write(pcm)
                self.bytes_written += len(pcm)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed = True
            logger.exception(
                "[%s] Pipeline error for participant %s", self.label, self.participant_id
            )
            self.stream.close()
            on_failure(self)
        finally:
            self.release()

    def stop_accepting(self) -> None:
        self.stream.close()

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError:
            logger.exception(
                "[%s] Could not flush capture file for participant %s",
                self.label,
                self.participant_id,
            )

    def cancel(self) -> None:
        self.stream.close()
        if self.task is not None and not self.task.done():
            self.task.cancel()
        # A task cancelled before its first step never reaches its finally.
        self.release()


class SpeakerStreamMultiplexer:
    """Tracks at most one open pipeline per participant for a session."""

    def __init__(self, decoder_factory: Callable[[], FrameDecoder], label: str = "") -> None:
        self._decoder_factory = decoder_factory
        self._label = label
        self._pipelines: Dict[str, SpeakerPipeline] = {}
        self._closing: set[SpeakerPipeline] = set()

    def __len__(self) -> int:
        return len(self._pipelines)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._pipelines

    def participants(self) -> list[str]:
        return list(self._pipelines)

    def get(self, participant_id: str) -> Optional[SpeakerPipeline]:
        return self._pipelines.get(participant_id)

    def open(self, participant_id: str, stream: AudioStream, file_path: str) -> bool:
        """Start a pipeline; False if the participant already has one."""
        if participant_id in self._pipelines:
            stream.close()
            return False
        pipeline = SpeakerPipeline(
            participant_id, stream, self._decoder_factory(), file_path, label=self._label
        )
        try:
            pipeline.start(self._on_failure)
        except OSError:
            logger.exception(
                "[%s] Could not open capture file for participant %s", self._label, participant_id
            )
            stream.close()
            return False
        self._pipelines[participant_id] = pipeline
        logger.debug("[%s] Pipeline opened for participant %s", self._label, participant_id)
        return True

    def close(self, participant_id: str) -> bool:
        """Speaking ended: stop accepting frames and let the tail drain."""
        pipeline = self._pipelines.pop(participant_id, None)
        if pipeline is None:
            return False
        pipeline.stop_accepting()
        if pipeline.task is not None and not pipeline.task.done():
            self._closing.add(pipeline)
            pipeline.task.add_done_callback(lambda _task: self._closing.discard(pipeline))
        logger.debug("[%s] Pipeline removed for participant %s", self._label, participant_id)
        return True

    async def close_all(self) -> None:
        """Clean stop: close every pipeline and wait until all are flushed."""
        for participant_id in list(self._pipelines):
            self.close(participant_id)
        pending = [pipeline.task for pipeline in self._closing]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def discard_all(self) -> None:
        """Forced teardown: cancel every pipeline without waiting.

        Frames not yet written are dropped; bytes already appended stay.
        """
        for pipeline in self._pipelines.values():
            pipeline.cancel()
        self._pipelines.clear()
        for pipeline in list(self._closing):
            pipeline.cancel()
        self._closing.clear()

    def _on_failure(self, pipeline: SpeakerPipeline) -> None:
        if self._pipelines.get(pipeline.participant_id) is pipeline:
            del self._pipelines[pipeline.participant_id]
