"""Configuration handling."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

import yaml
from dotenv import load_dotenv


@dataclass
class CaptureConfig:
    sample_rate_hz: int = 48000
    channels: int = 2
    decoder: str = "pcm"


@dataclass
class UploadConfig:
    sample_rate_hz: int = 16000
    channels: int = 1
    min_audio_seconds: float = 0.1
    converter: str = "ffmpeg"
    ffmpeg_path: str = "ffmpeg"


@dataclass
class InactivityConfig:
    limit_seconds: float = 180.0
    check_interval_seconds: float = 20.0


@dataclass
class TranscriptionConfig:
    backend: str = "api"
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com"
    model: str = "whisper-1"
    local_model: str = "small"
    language: Optional[str] = None
    timeout_seconds: int = 300


@dataclass
class SummarizationConfig:
    api_key: Optional[str] = None
    base_url: str = "https://api.deepseek.com"
    model: str = "deepseek-reasoner"
    system_prompt: str = (
        "You are a helpful assistant that summarizes conversation transcripts."
    )
    prompt: str = "Please summarize this conversation:\n\n{text}"
    timeout_seconds: int = 120


@dataclass
class Config:
    work_dir: str = "recordings"
    log_dir: str = "logs"
    log_level: str = "INFO"
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    inactivity: InactivityConfig = field(default_factory=InactivityConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    summarization: SummarizationConfig = field(default_factory=SummarizationConfig)


def apply_env(config: Config, env_path: Optional[str] = None) -> Config:
    """Fill missing API keys from the environment (and a ``.env`` file)."""
    load_dotenv(env_path or os.path.join(os.getcwd(), ".env"))
    if not config.transcription.api_key:
        config.transcription.api_key = os.environ.get("OPENAI_API_KEY")
    if not config.summarization.api_key:
        config.summarization.api_key = os.environ.get("DEEPSEEK_API_KEY")
    return config


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    return Config(
        work_dir=data.get("work_dir", "recordings"),
        log_dir=data.get("log_dir", "logs"),
        log_level=data.get("log_level", "INFO"),
        capture=CaptureConfig(**data.get("capture", {})),
        upload=UploadConfig(**data.get("upload", {})),
        inactivity=InactivityConfig(**data.get("inactivity", {})),
        transcription=TranscriptionConfig(**data.get("transcription", {})),
        summarization=SummarizationConfig(**data.get("summarization", {})),
    )


def save_config(path: str, config: Config) -> None:
    data = {
        "work_dir": config.work_dir,
        "log_dir": config.log_dir,
        "log_level": config.log_level,
        "capture": {
            "sample_rate_hz": config.capture.sample_rate_hz,
            "channels": config.capture.channels,
            "decoder": config.capture.decoder,
        },
        "upload": {
            "sample_rate_hz": config.upload.sample_rate_hz,
            "channels": config.upload.channels,
            "min_audio_seconds": config.upload.min_audio_seconds,
            "converter": config.upload.converter,
            "ffmpeg_path": config.upload.ffmpeg_path,
        },
        "inactivity": {
            "limit_seconds": config.inactivity.limit_seconds,
            "check_interval_seconds": config.inactivity.check_interval_seconds,
        },
        "transcription": {
            "backend": config.transcription.backend,
            "api_key": config.transcription.api_key,
            "base_url": config.transcription.base_url,
            "model": config.transcription.model,
            "local_model": config.transcription.local_model,
            "language": config.transcription.language,
            "timeout_seconds": config.transcription.timeout_seconds,
        },
        "summarization": {
            "api_key": config.summarization.api_key,
            "base_url": config.summarization.base_url,
            "model": config.summarization.model,
            "system_prompt": config.summarization.system_prompt,
            "prompt": config.summarization.prompt,
            "timeout_seconds": config.summarization.timeout_seconds,
        },
    }
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
