"""Pipeline state value object and the progress event channel."""

import dataclasses
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

log = logging.getLogger(__name__)


class Stage(str, enum.Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING_VOICE = "processing_voice_segments"
    APPLYING_AUDIO = "applying_audio"
    APPLYING_BLUR = "applying_blur"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    percent: float
    step: str


@dataclass(frozen=True)
class PipelineState:
    stage: Stage = Stage.IDLE
    percent: float = 0.0
    step: str = ""
    notes: tuple[str, ...] = field(default_factory=tuple)


def advance(state: PipelineState, stage: Stage, percent: float, step: str | None = None) -> PipelineState:
    """Move to ``stage`` at ``percent``; progress never goes backwards."""
    percent = max(state.percent, min(100.0, max(0.0, percent)))
    return dataclasses.replace(
        state, stage=stage, percent=percent, step=step if step is not None else state.step
    )


def add_note(state: PipelineState, note: str) -> PipelineState:
    return dataclasses.replace(state, notes=state.notes + (note,))


Listener = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Fan-out of progress events to any number of subscribers.

    Percentages are clamped so subscribers only ever see non-decreasing
    values in ``[0, 100]``.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self.last: ProgressEvent | None = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, state: PipelineState) -> PipelineState:
        floor = self.last.percent if self.last else 0.0
        event = ProgressEvent(
            stage=state.stage,
            percent=round(max(floor, min(100.0, state.percent)), 1),
            step=state.step,
        )
        self.last = event
        log.debug("[%5.1f%%] %s", event.percent, event.step)
        for listener in list(self._listeners):
            listener(event)
        return state
