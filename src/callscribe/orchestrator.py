"""Convert, compress, transcribe and summarize one captured segment."""

from __future__ import annotations

import asyncio
import logging

from .audio_utils import AudioGateway, build_gateway
from .models import (
    COMPRESSION_FAILED,
    CONVERSION_FAILED,
    NO_TEXT_TO_SUMMARIZE,
    NO_USABLE_AUDIO,
    SUMMARY_FAILED,
    TRANSCRIPT_SENTINELS,
    TRANSCRIPTION_FAILED,
    SegmentResult,
)
from .storage import compressed_path, container_path
from .summarizer import Summarizer, build_summarizer
from .transcriber import Transcriber, build_transcriber

logger = logging.getLogger("callscribe.orchestrator")


class TranscriptionOrchestrator:
    """Runs the media steps strictly in order.

    Every failure becomes a sentinel text, so ``process`` always returns a
    ``SegmentResult`` the caller can archive and display.
    """

    def __init__(
        self,
        gateway: AudioGateway,
        transcriber: Transcriber,
        summarizer: Summarizer,
        min_audio_seconds: float = 0.1,
    ) -> None:
        self.gateway = gateway
        self.transcriber = transcriber
        self.summarizer = summarizer
        self.min_audio_seconds = min_audio_seconds

    async def process(self, raw_path: str, label: str = "") -> SegmentResult:
        transcript = await self.transcribe_file(raw_path, label)
        summary = await self.summarize_text(transcript, label)
        return SegmentResult(transcript=transcript, summary=summary)

    async def transcribe_file(self, raw_path: str, label: str = "") -> str:
        wav_path = container_path(raw_path)
        try:
            await self.gateway.convert(raw_path, wav_path)
        except Exception as exc:
            logger.error("[%s] Error converting PCM to WAV: %s", label, exc)
            return CONVERSION_FAILED

        small_path = compressed_path(wav_path)
        try:
            await self.gateway.compress(wav_path, small_path)
        except Exception as exc:
            logger.error("[%s] Compression failed: %s", label, exc)
            return COMPRESSION_FAILED
        logger.debug("[%s] Compressed %s to %s", label, wav_path, small_path)

        duration = await self.gateway.duration(small_path)
        logger.info("[%s] Duration of compressed file: %.2fs", label, duration)
        if not duration or duration < self.min_audio_seconds:
            logger.info("[%s] Audio too short or unmeasurable, skipping transcription.", label)
            return NO_USABLE_AUDIO

        try:
            text = await asyncio.to_thread(self.transcriber.transcribe, small_path)
        except Exception as exc:
            logger.error("[%s] Transcription failed: %s", label, exc)
            return TRANSCRIPTION_FAILED
        text = (text or "").strip()
        if not text:
            logger.warning("[%s] Transcription returned empty text.", label)
            return TRANSCRIPTION_FAILED
        return text

    async def summarize_text(self, transcript: str, label: str = "") -> str:
        if not transcript or not transcript.strip() or transcript in TRANSCRIPT_SENTINELS:
            return NO_TEXT_TO_SUMMARIZE
        logger.info("[%s] Summarizing transcript...", label)
        try:
            return await asyncio.to_thread(self.summarizer.summarize, transcript)
        except Exception as exc:
            logger.error("[%s] Summary failed: %s", label, exc)
            return SUMMARY_FAILED


def build_orchestrator(config) -> TranscriptionOrchestrator:
    return TranscriptionOrchestrator(
        gateway=build_gateway(config),
        transcriber=build_transcriber(config),
        summarizer=build_summarizer(config),
        min_audio_seconds=config.upload.min_audio_seconds,
    )
