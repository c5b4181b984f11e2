"""Storage and naming utilities."""

from __future__ import annotations

import hashlib
import os
import re


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def sanitize_component(name: str) -> str:
    value = re.sub(r"[^A-Za-z0-9_-]+", "-", (name or "").strip()).strip("-")
    return value or "default"


def context_slug(context_id: str) -> str:
    """Filesystem-safe name for a context id, unique per id.

    Ids that survive sanitizing unchanged are used as-is. Any other id gets
    a short digest of the raw value after a ".", which sanitized text never
    contains.
    """
    raw = str(context_id)
    slug = sanitize_component(raw)
    if slug == raw:
        return slug
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]
    return f"{slug}.{digest}"


def segment_basename(context_id: str, segment_id: int) -> str:
    return f"session_{context_slug(context_id)}_{segment_id}"


def capture_path(work_dir: str, context_id: str, segment_id: int) -> str:
    return os.path.join(work_dir, f"{segment_basename(context_id, segment_id)}.pcm")


def container_path(raw_path: str) -> str:
    root, _ext = os.path.splitext(raw_path)
    return f"{root}.wav"


def compressed_path(wav_path: str) -> str:
    root, _ext = os.path.splitext(wav_path)
    return f"{root}.compressed.wav"


def allocate_capture_file(work_dir: str, context_id: str, segment_id: int) -> str:
    """Create an empty raw capture file for a segment and return its path.

    Any existing file with the same name is truncated.
    """
    ensure_dir(work_dir)
    path = capture_path(work_dir, context_id, segment_id)
    with open(path, "wb"):
        pass
    return path
