"""Audio transform gateway: container conversion, compression and duration."""

from __future__ import annotations

import asyncio
import logging
import wave
from abc import ABC, abstractmethod

import numpy as np
import soundfile as sf

from .errors import CompressionError, ConversionError

logger = logging.getLogger("callscribe.audio")


def measure_duration(path: str) -> float:
    """Duration in seconds, or 0.0 when the file cannot be read."""
    try:
        info = sf.info(path)
    except Exception as exc:
        logger.debug("Could not measure duration of %s: %s", path, exc)
        return 0.0
    if not info.samplerate:
        return 0.0
    return float(info.frames) / float(info.samplerate)


class AudioGateway(ABC):
    def __init__(
        self,
        capture_rate_hz: int = 48000,
        capture_channels: int = 2,
        upload_rate_hz: int = 16000,
        upload_channels: int = 1,
    ) -> None:
        self.capture_rate_hz = capture_rate_hz
        self.capture_channels = capture_channels
        self.upload_rate_hz = upload_rate_hz
        self.upload_channels = upload_channels

    @abstractmethod
    async def convert(self, raw_path: str, wav_path: str) -> str:
        """Wrap raw s16le PCM in a WAV container; raise ``ConversionError``."""
        raise NotImplementedError

    @abstractmethod
    async def compress(self, wav_path: str, output_path: str) -> str:
        """Downsample to the upload format; raise ``CompressionError``."""
        raise NotImplementedError

    async def duration(self, path: str) -> float:
        return await asyncio.to_thread(measure_duration, path)


async def _run_subprocess(*cmd: str) -> tuple[bytes, bytes, int]:
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return stdout or b"", stderr or b"", process.returncode


def _failure_message(stdout: bytes, stderr: bytes, returncode: int) -> str:
    message = stderr.decode("utf-8", errors="replace").strip()
    if not message:
        message = stdout.decode("utf-8", errors="replace").strip()
    return message or f"ffmpeg exited with code {returncode}"


class FfmpegAudioGateway(AudioGateway):
    def __init__(self, ffmpeg_path: str = "ffmpeg", **kwargs) -> None:
        super().__init__(**kwargs)
        self.ffmpeg_path = ffmpeg_path

    async def _ffmpeg(self, error_cls: type, *args: str) -> None:
        try:
            stdout, stderr, returncode = await _run_subprocess(
                self.ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y", *args
            )
        except OSError as exc:
            raise error_cls(f"Could not run {self.ffmpeg_path}: {exc}") from exc
        if returncode != 0:
            raise error_cls(_failure_message(stdout, stderr, returncode))

    async def convert(self, raw_path: str, wav_path: str) -> str:
        await self._ffmpeg(
            ConversionError,
            "-f", "s16le",
            "-ar", str(self.capture_rate_hz),
            "-ac", str(self.capture_channels),
            "-i", raw_path,
            wav_path,
        )
        return wav_path

    async def compress(self, wav_path: str, output_path: str) -> str:
        await self._ffmpeg(
            CompressionError,
            "-i", wav_path,
            "-ar", str(self.upload_rate_hz),
            "-ac", str(self.upload_channels),
            "-c:a", "pcm_s16le",
            "-f", "wav",
            output_path,
        )
        return output_path


def pcm_to_wav(raw_path: str, wav_path: str, sample_rate_hz: int, channels: int) -> None:
    with open(raw_path, "rb") as handle:
        raw = handle.read()
    frame_bytes = 2 * channels
    usable = len(raw) - (len(raw) % frame_bytes)
    with wave.open(wav_path, "wb") as out:
        out.setnchannels(channels)
        out.setsampwidth(2)
        out.setframerate(sample_rate_hz)
        out.writeframes(raw[:usable])


def resample_wav(
    input_path: str,
    output_path: str,
    sample_rate_hz: int,
    channels: int,
) -> None:
    with wave.open(input_path, "rb") as handle:
        src_channels = handle.getnchannels()
        sampwidth = handle.getsampwidth()
        src_rate = handle.getframerate()
        raw = handle.readframes(handle.getnframes())

    if sampwidth != 2:
        raise ValueError("Only 16-bit PCM is supported for compression.")

    data = np.frombuffer(raw, dtype=np.int16).reshape(-1, src_channels)
    samples = data.astype(np.float32)
    if channels == 1:
        samples = samples.mean(axis=1, keepdims=True)
    elif channels != src_channels:
        raise ValueError(f"Cannot map {src_channels} channels to {channels}.")

    src_frames = samples.shape[0]
    dst_frames = int(round(src_frames * sample_rate_hz / src_rate)) if src_frames else 0
    if dst_frames and dst_frames != src_frames:
        src_times = np.arange(src_frames) / src_rate
        dst_times = np.arange(dst_frames) / sample_rate_hz
        samples = np.stack(
            [np.interp(dst_times, src_times, samples[:, ch]) for ch in range(samples.shape[1])],
            axis=1,
        )
    elif not dst_frames:
        samples = samples[:0]

    out_data = np.clip(np.round(samples), -32768, 32767).astype(np.int16)
    with wave.open(output_path, "wb") as out:
        out.setnchannels(out_data.shape[1])
        out.setsampwidth(2)
        out.setframerate(sample_rate_hz)
        out.writeframes(out_data.tobytes())


class NumpyAudioGateway(AudioGateway):
    """In-process conversion for hosts without ffmpeg."""

    async def convert(self, raw_path: str, wav_path: str) -> str:
        try:
            await asyncio.to_thread(
                pcm_to_wav, raw_path, wav_path, self.capture_rate_hz, self.capture_channels
            )
        except (OSError, wave.Error) as exc:
            raise ConversionError(str(exc)) from exc
        return wav_path

    async def compress(self, wav_path: str, output_path: str) -> str:
        try:
            await asyncio.to_thread(
                resample_wav, wav_path, output_path, self.upload_rate_hz, self.upload_channels
            )
        except (OSError, ValueError, wave.Error) as exc:
            raise CompressionError(str(exc)) from exc
        return output_path


def build_gateway(config) -> AudioGateway:
    kwargs = dict(
        capture_rate_hz=config.capture.sample_rate_hz,
        capture_channels=config.capture.channels,
        upload_rate_hz=config.upload.sample_rate_hz,
        upload_channels=config.upload.channels,
    )
    if config.upload.converter == "numpy":
        return NumpyAudioGateway(**kwargs)
    if config.upload.converter == "ffmpeg":
        return FfmpegAudioGateway(ffmpeg_path=config.upload.ffmpeg_path, **kwargs)
    raise ValueError(f"Unknown converter: {config.upload.converter}")
