"""Segment model — pure functions that create, edit and remove segments.

Every function here returns new values; nothing performs I/O. The invariant
maintained throughout is ``0 <= start < end <= video_duration`` with at least
``MIN_SEGMENT_DURATION`` seconds between the endpoints whenever the video is
long enough to allow it.
"""

import dataclasses
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Iterable

from anonforge.errors import ValidationError
from anonforge.models import (
    DEFAULT_BLUR_STRENGTH,
    MIN_SEGMENT_DURATION,
    BlurSegment,
    Segment,
    VoiceSegment,
)

MAX_BLUR_STRENGTH = 2000
LENGTH_WARNING_SECONDS = 60.0
QUICK_SEGMENT_LENGTH = 5.0


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(float(value), hi))


def _build(kind: str, start: float, end: float, blur_strength: int = DEFAULT_BLUR_STRENGTH) -> Segment:
    if kind == "voice":
        return VoiceSegment(id=_new_id(), start=start, end=end)
    if kind == "blur":
        return BlurSegment(
            id=_new_id(), start=start, end=end,
            blur_strength=clamp_blur_strength(blur_strength),
        )
    raise ValidationError(f"Unknown segment kind: {kind!r}")


def clamp_blur_strength(value: int) -> int:
    return int(_clamp(int(value), 1, MAX_BLUR_STRENGTH))


def create_segment(
    start: float,
    end: float,
    video_duration: float,
    kind: str,
    blur_strength: int = DEFAULT_BLUR_STRENGTH,
) -> Segment:
    """Create a segment clamped into ``[0, video_duration]``.

    ``end`` is pushed forward to ``start + MIN_SEGMENT_DURATION`` when the
    span is too short, capped at the video duration; if the cap still leaves
    the span short, ``start`` is pulled back instead.
    """
    if video_duration <= 0:
        raise ValidationError("Video duration must be known before creating segments")

    sep = min(MIN_SEGMENT_DURATION, video_duration)
    start = _clamp(start, 0.0, video_duration)
    end = _clamp(end, 0.0, video_duration)

    if end - start < sep:
        end = min(start + sep, video_duration)
        start = max(0.0, min(start, end - sep))

    return _build(kind, start, end, blur_strength)


def create_from_drag(
    t0: float, t1: float, kind: str, min_duration: float = MIN_SEGMENT_DURATION
) -> Segment | None:
    """Build a segment from two drag endpoints, or None if the span is too short."""
    start = max(0.0, min(t0, t1))
    end = max(t0, t1)
    if end - start < min_duration:
        return None
    return _build(kind, start, end)


def create_quick_segment(
    current_time: float,
    video_duration: float,
    length: float = QUICK_SEGMENT_LENGTH,
    kind: str = "voice",
) -> Segment:
    """Create a segment of ``length`` seconds starting at the playhead."""
    if current_time >= video_duration:
        raise ValidationError("Cannot create segment at the end of video")
    end = min(current_time + length, video_duration)
    return create_segment(current_time, end, video_duration, kind)


def update_field(
    segments: list[Segment],
    segment_id: str,
    field: str,
    value: float,
    video_duration: float,
) -> list[Segment]:
    """Edit ``start`` or ``end`` of one segment, re-clamping both endpoints."""
    if field not in ("start", "end"):
        raise ValidationError(f"Cannot edit segment field {field!r}")
    if video_duration <= 0:
        raise ValidationError("Video duration must be known before editing segments")

    sep = min(MIN_SEGMENT_DURATION, video_duration)
    value = _clamp(value, 0.0, video_duration)

    updated: list[Segment] = []
    for seg in segments:
        if seg.id != segment_id:
            updated.append(seg)
            continue

        start = _clamp(seg.start, 0.0, video_duration)
        end = _clamp(seg.end, 0.0, video_duration)
        if field == "start":
            start = value
            if end - start < sep:
                end = min(start + sep, video_duration)
                start = max(0.0, min(start, end - sep))
        else:
            end = value
            if end - start < sep:
                start = max(0.0, end - sep)
                end = max(end, start + sep)

        updated.append(dataclasses.replace(seg, start=start, end=end))
    return updated


def remove(segments: list[Segment], segment_id: str) -> list[Segment]:
    return [s for s in segments if s.id != segment_id]


def update_blur_strength(segments: list[Segment], segment_id: str, value: int) -> list[Segment]:
    """Set the blur strength of a blur segment; voice segments are left alone."""
    return [
        dataclasses.replace(s, blur_strength=clamp_blur_strength(value))
        if s.id == segment_id and isinstance(s, BlurSegment)
        else s
        for s in segments
    ]


def with_converted_audio(segment: VoiceSegment, public_id: str) -> VoiceSegment:
    return dataclasses.replace(segment, converted_audio=public_id)


def voice_segments(segments: Iterable[Segment]) -> list[VoiceSegment]:
    return [s for s in segments if isinstance(s, VoiceSegment)]


def blur_segments(segments: Iterable[Segment]) -> list[BlurSegment]:
    return [s for s in segments if isinstance(s, BlurSegment)]


def segments_at(segments: Iterable[Segment], t: float) -> list[Segment]:
    """Return the segments whose half-open range ``[start, end)`` contains ``t``."""
    return [s for s in segments if s.start <= t < s.end]


def order_for_replacement(segments: Iterable[Segment]) -> list[VoiceSegment]:
    """Voice segments in the order their audio is applied.

    Sorted by start time (stable for ties). Where two segments overlap, the
    one applied later, i.e. the later-starting one, wins.
    """
    return sorted(voice_segments(segments), key=lambda s: s.start)


# ---------------------------------------------------------------------------
# JSON shape: {id, start, end, kind, blurStrength?, convertedAudio?}
# ---------------------------------------------------------------------------

def segment_to_dict(segment: Segment) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": segment.id,
        "start": segment.start,
        "end": segment.end,
        "kind": segment.kind,
    }
    if isinstance(segment, BlurSegment):
        data["blurStrength"] = segment.blur_strength
    elif segment.converted_audio is not None:
        data["convertedAudio"] = segment.converted_audio
    return data


def segment_from_dict(data: dict[str, Any], video_duration: float | None = None) -> Segment:
    """Parse a segment from its JSON shape.

    With ``video_duration`` the endpoints are validated through
    :func:`create_segment`; the incoming id is kept either way.
    """
    try:
        kind = data["kind"]
        start = float(data["start"])
        end = float(data["end"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed segment: {data!r}") from e

    blur_strength = int(data.get("blurStrength", DEFAULT_BLUR_STRENGTH))
    if video_duration is not None:
        seg = create_segment(start, end, video_duration, kind, blur_strength)
    else:
        if end <= start or start < 0:
            raise ValidationError(f"Segment end must be after start: {data!r}")
        seg = _build(kind, start, end, blur_strength)

    if "id" in data and data["id"] is not None:
        seg = dataclasses.replace(seg, id=str(data["id"]))
    if isinstance(seg, VoiceSegment) and data.get("convertedAudio"):
        seg = with_converted_audio(seg, data["convertedAudio"])
    return seg


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_time(seconds: float) -> str:
    """Format seconds as ``m:ss``."""
    if seconds is None or seconds != seconds:
        return "0:00"
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins}:{secs:02d}"


def should_show_length_warning(duration: float) -> bool:
    return duration > LENGTH_WARNING_SECONDS


def format_file_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} bytes"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


def is_video_file(path: str | Path) -> bool:
    mime, _ = mimetypes.guess_type(str(path))
    return mime is not None and mime.startswith("video/")


def is_audio_file(path: str | Path) -> bool:
    mime, _ = mimetypes.guess_type(str(path))
    return mime is not None and mime.startswith("audio/")
