"""Speech-to-text clients."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import requests

from .errors import TranscriptionError

logger = logging.getLogger("callscribe.transcriber")


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, audio_path: str) -> str:
        raise NotImplementedError


class WhisperApiTranscriber(Transcriber):
    """OpenAI ``/v1/audio/transcriptions`` client."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com",
        language: Optional[str] = None,
        timeout: int = 300,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._timeout = timeout

    def transcribe(self, audio_path: str) -> str:
        if not self._api_key:
            raise TranscriptionError("No transcription API key configured.")

        data = {"model": self._model}
        if self._language:
            data["language"] = self._language

        try:
            with open(audio_path, "rb") as handle:
                response = requests.post(
                    f"{self._base_url}/v1/audio/transcriptions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    data=data,
                    files={"file": (os.path.basename(audio_path), handle, "audio/wav")},
                    timeout=self._timeout,
                )
        except (OSError, requests.RequestException) as exc:
            raise TranscriptionError("Failed to reach transcription service") from exc

        if response.status_code != 200:
            raise TranscriptionError(f"Transcription error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptionError("Transcription response was not JSON") from exc
        return str(payload.get("text") or "").strip()


class LocalWhisperTranscriber(Transcriber):
    """Transcription with Faster-Whisper."""

    def __init__(
        self,
        model_name: str = "small",
        language: Optional[str] = None,
        device: Optional[str] = None,
        compute_type: Optional[str] = None,
    ) -> None:
        self._model_name = model_name
        self._language = language
        self._device = device
        self._compute_type = compute_type
        self._model = None

    def _load(self):
        if self._model is not None:
            return self._model
        try:
            from faster_whisper import WhisperModel
        except Exception as exc:  # pragma: no cover - optional dependency
            raise TranscriptionError(
                "faster-whisper is required for local transcription."
            ) from exc

        kwargs = {}
        if self._device:
            kwargs["device"] = self._device
        if self._compute_type:
            kwargs["compute_type"] = self._compute_type
        logger.info("Loading whisper model %s", self._model_name)
        self._model = WhisperModel(self._model_name, **kwargs)
        return self._model

    def transcribe(self, audio_path: str) -> str:
        model = self._load()
        try:
            segments, _info = model.transcribe(audio_path, language=self._language)
            texts = [seg.text.strip() for seg in segments]
        except Exception as exc:
            raise TranscriptionError(str(exc)) from exc
        return " ".join(text for text in texts if text)


def build_transcriber(config) -> Transcriber:
    cfg = config.transcription
    if cfg.backend == "local":
        return LocalWhisperTranscriber(model_name=cfg.local_model, language=cfg.language)
    if cfg.backend == "api":
        return WhisperApiTranscriber(
            api_key=cfg.api_key,
            model=cfg.model,
            base_url=cfg.base_url,
            language=cfg.language,
            timeout=cfg.timeout_seconds,
        )
    raise ValueError(f"Unknown transcription backend: {cfg.backend}")
