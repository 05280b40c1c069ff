"""Timeline interaction — pointer positions to segment boundaries.

``position_from_pointer`` is the only pointer-to-time conversion. Both the
drag preview and the committed segment go through it, so what the user sees
during a drag is exactly what gets created on release.
"""

import dataclasses
from dataclasses import dataclass, field

from anonforge import segments as seg_model
from anonforge.errors import ValidationError
from anonforge.models import MIN_SEGMENT_DURATION, Segment

SEGMENT_TOO_SHORT = f"Segment too short. Minimum duration is {MIN_SEGMENT_DURATION} seconds."
VIDEO_NOT_LOADED = "Please wait for video to load completely before creating segments."


@dataclass(frozen=True)
class PointerEvent:
    client_x: float


@dataclass(frozen=True)
class TimelineBounds:
    """Horizontal bounding box of the timeline element."""

    left: float
    width: float


def position_from_pointer(
    event: PointerEvent, timeline: TimelineBounds, video_duration: float
) -> float:
    if timeline.width <= 0 or video_duration <= 0:
        return 0.0
    x = min(max(event.client_x - timeline.left, 0.0), timeline.width)
    return (x / timeline.width) * video_duration


@dataclass(frozen=True)
class TimelineState:
    """Editing session state: segments plus an in-progress drag, if any."""

    video_duration: float = 0.0
    segments: tuple[Segment, ...] = field(default_factory=tuple)
    drag_start: float | None = None
    drag_kind: str | None = None
    preview_time: float | None = None
    error: str | None = None

    @property
    def dragging(self) -> bool:
        return self.drag_start is not None


def pointer_down(
    state: TimelineState, event: PointerEvent, timeline: TimelineBounds, kind: str
) -> TimelineState:
    if state.video_duration <= 0:
        return dataclasses.replace(state, error=VIDEO_NOT_LOADED)
    t = position_from_pointer(event, timeline, state.video_duration)
    return dataclasses.replace(
        state, drag_start=t, drag_kind=kind, preview_time=t, error=None
    )


def pointer_move(
    state: TimelineState, event: PointerEvent, timeline: TimelineBounds
) -> TimelineState:
    if not state.dragging:
        return state
    t = position_from_pointer(event, timeline, state.video_duration)
    return dataclasses.replace(state, preview_time=t)


def drag_preview(state: TimelineState) -> tuple[float, float] | None:
    """The ``(start, end)`` span to draw while dragging."""
    if not state.dragging or state.preview_time is None:
        return None
    return (min(state.drag_start, state.preview_time), max(state.drag_start, state.preview_time))


def pointer_up(
    state: TimelineState, event: PointerEvent, timeline: TimelineBounds
) -> TimelineState:
    if not state.dragging:
        return state
    t = position_from_pointer(event, timeline, state.video_duration)
    cleared = dataclasses.replace(state, drag_start=None, drag_kind=None, preview_time=None)
    return commit_span(cleared, state.drag_start, t, state.drag_kind)


def commit_span(state: TimelineState, t0: float, t1: float, kind: str) -> TimelineState:
    """Commit a drag span given directly in seconds (no pointer events).

    Endpoints are clamped into the video first, so a span dragged past either
    edge ends at that edge.
    """
    if state.video_duration <= 0:
        return dataclasses.replace(state, error=VIDEO_NOT_LOADED)
    t0 = min(max(t0, 0.0), state.video_duration)
    t1 = min(max(t1, 0.0), state.video_duration)
    segment = seg_model.create_from_drag(t0, t1, kind)
    if segment is None:
        return dataclasses.replace(state, error=SEGMENT_TOO_SHORT)
    return dataclasses.replace(state, segments=state.segments + (segment,), error=None)


def add_range(
    state: TimelineState, start: float, end: float, kind: str,
    blur_strength: int = seg_model.DEFAULT_BLUR_STRENGTH,
) -> TimelineState:
    try:
        segment = seg_model.create_segment(start, end, state.video_duration, kind, blur_strength)
    except ValidationError as e:
        return dataclasses.replace(state, error=str(e))
    return dataclasses.replace(state, segments=state.segments + (segment,), error=None)


def quick_add(
    state: TimelineState, current_time: float, kind: str,
    length: float = seg_model.QUICK_SEGMENT_LENGTH,
) -> TimelineState:
    try:
        segment = seg_model.create_quick_segment(current_time, state.video_duration, length, kind)
    except ValidationError as e:
        return dataclasses.replace(state, error=str(e))
    return dataclasses.replace(state, segments=state.segments + (segment,), error=None)


def edit_field(state: TimelineState, segment_id: str, field_name: str, value: float) -> TimelineState:
    updated = seg_model.update_field(
        list(state.segments), segment_id, field_name, value, state.video_duration
    )
    return dataclasses.replace(state, segments=tuple(updated))


def remove_segment(state: TimelineState, segment_id: str) -> TimelineState:
    return dataclasses.replace(state, segments=tuple(seg_model.remove(list(state.segments), segment_id)))


def set_blur_strength(state: TimelineState, segment_id: str, value: int) -> TimelineState:
    updated = seg_model.update_blur_strength(list(state.segments), segment_id, value)
    return dataclasses.replace(state, segments=tuple(updated))


def reset(state: TimelineState) -> TimelineState:
    """Clear segments and any drag, keeping the loaded video's duration."""
    return TimelineState(video_duration=state.video_duration)
