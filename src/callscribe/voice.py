"""Voice source contracts and frame decoding."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

SpeakingCallback = Callable[[str], None]


class AudioStream(ABC):
    """Encoded audio frames for one participant."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class QueueAudioStream(AudioStream):
    """In-process stream that voice source adapters push frames into.

    ``close`` stops accepting frames; frames already queued are still
    delivered to the reader before iteration ends.
    """

    _END = object()

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, frame: bytes) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(bytes(frame))
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._END)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                return
            yield item


class VoiceConnection(ABC):
    @abstractmethod
    def add_speaking_listener(
        self, on_start: SpeakingCallback, on_end: SpeakingCallback
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, participant_id: str) -> AudioStream:
        raise NotImplementedError

    @abstractmethod
    def destroy(self) -> None:
        raise NotImplementedError


class VoiceSource(ABC):
    @abstractmethod
    async def connect(self, target: Any) -> VoiceConnection:
        """Join ``target``; raise ``VoiceConnectionError`` on failure."""
        raise NotImplementedError


class FrameDecoder(ABC):
    @abstractmethod
    def decode(self, frame: bytes) -> bytes:
        """Return signed 16-bit little-endian PCM for one encoded frame."""
        raise NotImplementedError


class PcmPassthroughDecoder(FrameDecoder):
    def __init__(self, channels: int = 2) -> None:
        self._frame_bytes = 2 * channels

    def decode(self, frame: bytes) -> bytes:
        if len(frame) % self._frame_bytes:
            raise ValueError(
                f"PCM frame of {len(frame)} bytes is not aligned to {self._frame_bytes}."
            )
        return frame


class OpusFrameDecoder(FrameDecoder):
    def __init__(self) -> None:
        try:
            from discord import opus
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("discord.py is required for Opus decoding.") from exc
        self._decoder = opus.Decoder()

    def decode(self, frame: bytes) -> bytes:
        return self._decoder.decode(frame, fec=False)


def build_decoder_factory(
    kind: str, channels: int = 2
) -> Callable[[], FrameDecoder]:
    """Decoders keep per-stream state, so pipelines get one each."""
    if kind == "pcm":
        return lambda: PcmPassthroughDecoder(channels=channels)
    if kind == "opus":
        return OpusFrameDecoder
    raise ValueError(f"Unknown decoder: {kind}")

