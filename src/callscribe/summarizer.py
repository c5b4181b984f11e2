"""Transcript summarization clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import requests

from .errors import SummaryError


class Summarizer(ABC):
    @abstractmethod
    def summarize(self, text: str) -> str:
        raise NotImplementedError


class ChatSummarizer(Summarizer):
    """Summarizer for OpenAI-compatible chat completion APIs (DeepSeek by default)."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "deepseek-reasoner",
        base_url: str = "https://api.deepseek.com",
        system_prompt: str = (
            "You are a helpful assistant that summarizes conversation transcripts."
        ),
        prompt: str = "Please summarize this conversation:\n\n{text}",
        timeout: int = 120,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._system_prompt = system_prompt
        self._prompt = prompt
        self._timeout = timeout

    def summarize(self, text: str) -> str:
        if not self._api_key:
            raise SummaryError("No summarization API key configured.")

        request_body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": self._prompt.format(text=text)},
            ],
            "stream": False,
        }
        try:
            response = requests.post(
                f"{self._base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise SummaryError("Failed to reach summarization service") from exc

        if response.status_code != 200:
            raise SummaryError(f"Summarization error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise SummaryError("Summarization response was not JSON") from exc
        choices = data.get("choices") or []
        if not choices:
            raise SummaryError("Summarization response missing choices")
        content = str((choices[0].get("message") or {}).get("content") or "").strip()
        if not content:
            raise SummaryError("Summarization response was empty")
        return content


def build_summarizer(config) -> Summarizer:
    cfg = config.summarization
    return ChatSummarizer(
        api_key=cfg.api_key,
        model=cfg.model,
        base_url=cfg.base_url,
        system_prompt=cfg.system_prompt,
        prompt=cfg.prompt,
        timeout=cfg.timeout_seconds,
    )
