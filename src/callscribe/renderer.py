"""Caller-facing text for archived segments."""

from __future__ import annotations

from typing import Optional

from .models import SegmentResult

REPLY_TEXT_LIMIT = 1500


def _clip(value: str, limit: int = REPLY_TEXT_LIMIT) -> str:
    return value[:limit]


def render_transcript(segment_id: int, result: SegmentResult) -> str:
    return f"**Transcript (#{segment_id}):**\n```{_clip(result.transcript)}```"


def render_summary(segment_id: int, result: SegmentResult) -> str:
    return f"**Summary (#{segment_id}):**\n{result.summary}"


def render_segment(
    result: SegmentResult, segment_id: Optional[int] = None, title: str = ""
) -> str:
    lines = []
    if title:
        lines.append(f"**[{title}]**")
    lines.append(f"Transcript (#{segment_id}):" if segment_id is not None else "Transcript:")
    lines.append(f"```{_clip(result.transcript)}```")
    lines.append("")
    lines.append("Summary:")
    lines.append(result.summary)
    return "\n".join(lines)
