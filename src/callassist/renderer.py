"""Markdown post-call report rendering."""

from __future__ import annotations

from typing import List, Optional
from .models import ChecklistItem, TranscriptSegment


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


def _clean_text(value: str) -> str:
    return " ".join(value.split())


def compliance_score(checklist: List[ChecklistItem]) -> dict:
    total = len(checklist)
    conveyed = sum(1 for item in checklist if item.completed)
    percentage = round(conveyed * 100 / total) if total else 0
    return {
        "percentage": percentage,
        "items_conveyed": conveyed,
        "total_mandatory_items": total,
        "rating": call_quality(percentage),
    }


def call_quality(percentage: int) -> str:
    if percentage >= 90:
        return "Excellent"
    if percentage >= 80:
        return "Very Good"
    if percentage >= 70:
        return "Good"
    if percentage >= 50:
        return "Fair"
    return "Needs Improvement"


def _build_timeline_lines(segments: List[TranscriptSegment]) -> List[str]:
    lines = []
    for seg in segments:
        stamp = seg.timestamp.replace("T", " ").rstrip("Z") if seg.timestamp else "--"
        lines.append(f"[{stamp}] {_clean_text(seg.text)}")
    return lines


def render_call_report(
    call_id: str,
    date: str,
    checklist: List[ChecklistItem],
    segments: List[TranscriptSegment],
    started_at: Optional[str] = None,
    ended_at: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    device: Optional[str] = None,
    sample_rate_hz: Optional[int] = None,
    chunk_seconds: Optional[float] = None,
    echo_cancellation: Optional[bool] = None,
    noise_suppression: Optional[bool] = None,
    template: Optional[str] = None,
) -> str:
    score = compliance_score(checklist)
    missed = [item for item in checklist if not item.completed]
    conveyed = [item for item in checklist if item.completed]

    lines: List[str] = []
    lines.append("---")
    lines.append("schema: 1")
    lines.append(f"call_id: {_yaml_quote(call_id)}")
    lines.append(f"date: {_yaml_quote(date)}")
    if started_at:
        lines.append(f"started_at: {_yaml_quote(started_at)}")
    if ended_at:
        lines.append(f"ended_at: {_yaml_quote(ended_at)}")
    if duration_seconds is not None:
        lines.append(f"duration_seconds: {duration_seconds}")
    if template:
        lines.append(f"checklist_template: {_yaml_quote(template)}")
    lines.append(f"compliance_percentage: {score['percentage']}")
    lines.append(f"items_conveyed: {score['items_conveyed']}")
    lines.append(f"total_mandatory_items: {score['total_mandatory_items']}")
    lines.append(f"rating: {_yaml_quote(score['rating'])}")
    lines.append(f"segments: {len(segments)}")
    if device:
        lines.append(f"device: {_yaml_quote(device)}")
    if sample_rate_hz:
        lines.append(f"sample_rate_hz: {sample_rate_hz}")
    lines.append("---")
    lines.append("")
    lines.append(f"# Call Analysis: {_clean_text(call_id)}")
    lines.append("")
    lines.append("## Compliance Score")
    lines.append("")
    lines.append(
        f"- Score: {score['percentage']}% "
        f"({score['items_conveyed']}/{score['total_mandatory_items']} items)"
    )
    lines.append(f"- Call quality: {score['rating']}")
    lines.append("")
    lines.append("## Call Details")
    lines.append("")
    lines.append(f"- Call ID: {_clean_text(call_id)}")
    lines.append(f"- Date: {_clean_text(date)}")
    if started_at:
        lines.append(f"- Started: {_clean_text(started_at)}")
    if ended_at:
        lines.append(f"- Ended: {_clean_text(ended_at)}")
    if duration_seconds is not None:
        lines.append(f"- Duration (s): {duration_seconds}")
    if device:
        lines.append(f"- Mic device: {_clean_text(device)}")
    if sample_rate_hz:
        lines.append(f"- Sample rate (Hz): {sample_rate_hz}")
    if chunk_seconds:
        lines.append(f"- Segment length (s): {chunk_seconds:g}")
    if echo_cancellation is not None:
        lines.append(f"- Echo cancellation: {'on' if echo_cancellation else 'off'}")
    if noise_suppression is not None:
        lines.append(f"- Noise suppression: {'on' if noise_suppression else 'off'}")
    lines.append("")

    lines.append("## Conveyed Items")
    lines.append("")
    if conveyed:
        for item in conveyed:
            lines.append(f"- [x] {_clean_text(item.text)}")
    else:
        lines.append("_None._")
    lines.append("")
    lines.append("## Missed Items")
    lines.append("")
    if missed:
        for item in missed:
            lines.append(f"- [ ] {_clean_text(item.text)}")
    else:
        lines.append("_None._")
    lines.append("")

    lines.append("## Transcript")
    lines.append("")
    lines.extend(_build_timeline_lines(segments))
    lines.append("")
    return "\n".join(lines)
