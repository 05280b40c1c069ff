"""Orchestrator — runs the anonymization pipeline for one video.

Stages run strictly in order, each on the artifact the previous one produced:

    upload -> voice segments -> audio replacement -> blur -> validation

Any stage failure ends in the fallback path, which hands back the original
upload untouched together with a warning. Only a failure to recover even the
original is fatal.
"""

import contextlib
import logging
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from anonforge.errors import (
    AnonForgeError,
    EmptyArtifactError,
    PipelineCancelled,
    ProcessingFailedError,
    SkipSegmentConversionFailed,
    SkipSegmentLowVolume,
)
from anonforge.gateways.transform import TransformGateway
from anonforge.gateways.voice import VoiceGateway
from anonforge.models import (
    DEFAULT_BLUR_STRENGTH,
    MediaArtifact,
    PipelineResult,
    Segment,
    VoiceSegment,
)
from anonforge.progress import PipelineState, ProgressChannel, Stage, add_note, advance
from anonforge.renderer import SelectiveBlurRenderer
from anonforge.segments import (
    blur_segments,
    format_time,
    order_for_replacement,
    with_converted_audio,
)
from anonforge.voices import DEFAULT_VOICE

log = logging.getLogger(__name__)

MIN_CLIP_BYTES = 1000
MIN_ARTIFACT_BYTES = 1000

FALLBACK_WARNING = (
    "Processing failed, but your complete original video is preserved and ready for download."
)
REENCODED_NOTE = "Selective blur re-encoded the video; the output container may differ from the input."


@dataclass
class AnonymizeJob:
    source: Path
    segments: list[Segment] = field(default_factory=list)
    voice_id: str = DEFAULT_VOICE
    blur_whole_video: bool = False
    blur_strength: int = DEFAULT_BLUR_STRENGTH


class CancelToken:
    """Checked at every suspend point; cancelling aborts without fallback."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("Processing was cancelled")


@contextlib.contextmanager
def _scratch_dir(work_dir: Path | None) -> Iterator[Path]:
    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
        yield work_dir
        return
    with tempfile.TemporaryDirectory(prefix="anonforge_") as tmp:
        yield Path(tmp)


def process(
    job: AnonymizeJob,
    transform: TransformGateway,
    voice: VoiceGateway,
    channel: ProgressChannel | None = None,
    renderer: SelectiveBlurRenderer | None = None,
    cancel: CancelToken | None = None,
    work_dir: Path | None = None,
) -> PipelineResult:
    """Execute the full anonymization pipeline.

    Args:
        job: Source video, segments and effect options.
        transform: Gateway to the media transformation service.
        voice: Gateway to the voice conversion service.
        channel: Receives progress events; a private one is used if omitted.
        renderer: Local selective blur renderer, used when blur segments
            exist and whole-video blur is off.
        cancel: Optional cancellation token.
        work_dir: Scratch directory; a temporary one is used if omitted.
    """
    channel = channel or ProgressChannel()
    cancel = cancel or CancelToken()
    state = PipelineState()
    upload: MediaArtifact | None = None

    def _progress(stage: Stage, percent: float, step: str | None = None) -> None:
        nonlocal state
        if stage != state.stage:
            log.info("Stage %s -> %s", state.stage.value, stage.value)
        state = advance(state, stage, percent, step)
        channel.publish(state)

    def _note(text: str) -> None:
        nonlocal state
        state = add_note(state, text)

    def _sub_progress(stage: Stage, base: float, span: float) -> Callable[[float], None]:
        """Return a callback that maps a [0,1] fraction to [base, base+span]."""
        def cb(frac: float) -> None:
            _progress(stage, base + frac * span)
        return cb

    with _scratch_dir(work_dir) as scratch:
        try:
            # --- Upload ---
            cancel.check()
            _progress(Stage.UPLOADING, 0.0, "Preparing your video for processing")
            upload = transform.upload(
                job.source, on_progress=_sub_progress(Stage.UPLOADING, 0.0, 30.0)
            )
            _progress(Stage.UPLOADING, 30.0, "Processing video content")

            # --- Voice segments ---
            converted = _convert_voice_segments(
                job, upload, transform, voice, scratch, _progress, _note, cancel
            )

            # --- Audio replacement ---
            current = upload
            if converted:
                current = _apply_audio(job, upload, converted, transform, _progress, cancel)

            # --- Blur ---
            blurs = blur_segments(job.segments)
            if job.blur_whole_video:
                cancel.check()
                _progress(Stage.APPLYING_BLUR, 70.0, "Applying blur to entire video")
                current = transform.apply_blur(current, job.blur_strength)
            elif blurs:
                cancel.check()
                _progress(Stage.APPLYING_BLUR, 70.0, f"Blurring {len(blurs)} segment(s)")
                current = _render_selective_blur(
                    current, job, renderer or SelectiveBlurRenderer(), scratch,
                    _sub_progress(Stage.APPLYING_BLUR, 70.0, 20.0),
                )
                _note(REENCODED_NOTE)

            # --- Validation ---
            cancel.check()
            _progress(Stage.VALIDATING, 90.0, "Finalizing your video")
            if current.size < MIN_ARTIFACT_BYTES:
                raise EmptyArtifactError(
                    f"Processed video is too small ({current.size} bytes)"
                )

            _progress(Stage.DONE, 100.0, "Processing complete")
            return PipelineResult(artifact=current, notes=list(state.notes))

        except PipelineCancelled:
            log.info("Pipeline cancelled at stage %s", state.stage.value)
            raise
        except Exception as e:
            log.warning(
                "Processing failed at stage %s: %s", state.stage.value, e,
                exc_info=not isinstance(e, AnonForgeError),
            )
            original = _fallback(job, upload, transform, e)
            _note(f"Processing failed: {e}")
            _progress(Stage.FAILED, 100.0, "Processing failed; original video preserved")
            return PipelineResult(
                artifact=original, notes=list(state.notes), warning=FALLBACK_WARNING, fallback=True
            )


def _convert_voice_segments(
    job: AnonymizeJob,
    upload: MediaArtifact,
    transform: TransformGateway,
    voice: VoiceGateway,
    scratch: Path,
    progress: Callable[..., None],
    note: Callable[[str], None],
    cancel: CancelToken,
) -> list[tuple[VoiceSegment, MediaArtifact]]:
    """Convert each voice segment; failures skip the segment, never the batch."""
    ordered = order_for_replacement(job.segments)
    if not ordered:
        return []

    n = len(ordered)
    converted: list[tuple[VoiceSegment, MediaArtifact]] = []
    for i, seg in enumerate(ordered):
        cancel.check()
        progress(Stage.PROCESSING_VOICE, 30.0 + (i / n) * 25.0, f"Processing audio segment {i + 1}/{n}")
        label = f"Voice segment {i + 1} ({format_time(seg.start)}-{format_time(seg.end)})"

        try:
            clip = transform.extract_segment(upload, seg.start, seg.end, fmt="mp3")
            if clip.size < MIN_CLIP_BYTES:
                log.warning("%s audio too short (%d bytes), skipping", label, clip.size)
                note(f"{label} skipped: audio is too short or silent")
                continue

            clip_path = clip.materialize(scratch, f"segment_{i}")
            try:
                result = voice.convert(clip_path, job.voice_id)
            finally:
                clip.release()

            audio = voice.download(result.converted_audio_url)
            uploaded = transform.upload(audio, resource_type="video", filename=f"converted_{i}.mp3")
        except SkipSegmentLowVolume:
            log.warning("%s skipped: volume too low", label)
            note(f"{label} skipped: volume too low")
            continue
        except SkipSegmentConversionFailed as e:
            log.warning("%s skipped: %s", label, e)
            note(f"{label} skipped: voice conversion failed")
            continue
        except PipelineCancelled:
            raise
        except Exception as e:
            log.warning("%s failed: %s", label, e, exc_info=not isinstance(e, AnonForgeError))
            note(f"{label} skipped: {e}")
            continue

        if result.used_fallback:
            note(f"{label} converted with fallback voice {result.voice_id}")
        converted.append((with_converted_audio(seg, uploaded.public_id), uploaded))

    progress(Stage.PROCESSING_VOICE, 55.0, f"Converted {len(converted)}/{n} voice segment(s)")
    return converted


def _apply_audio(
    job: AnonymizeJob,
    upload: MediaArtifact,
    converted: list[tuple[VoiceSegment, MediaArtifact]],
    transform: TransformGateway,
    progress: Callable[..., None],
    cancel: CancelToken,
) -> MediaArtifact:
    """Replace audio segment by segment, re-uploading each intermediate."""
    stem = Path(job.source).stem
    current = upload
    m = len(converted)
    for j, (seg, audio) in enumerate(converted):
        cancel.check()
        progress(Stage.APPLYING_AUDIO, 55.0 + (j / m) * 15.0, f"Applying audio changes {j + 1}/{m}")
        replaced = transform.replace_audio_range(current, audio, seg.start, seg.end)
        current = transform.upload(replaced.data, filename=f"{stem}_audio_{j}.mp4")
    progress(Stage.APPLYING_AUDIO, 70.0, "Audio changes applied")
    return current


def _render_selective_blur(
    current: MediaArtifact,
    job: AnonymizeJob,
    renderer: SelectiveBlurRenderer,
    scratch: Path,
    on_progress: Callable[[float], None],
) -> MediaArtifact:
    source = current.materialize(scratch, "before_blur")
    output = scratch / "selective_blur.mp4"
    try:
        renderer.render(source, job.segments, output, on_progress=on_progress)
        data = output.read_bytes()
    finally:
        current.release()
        output.unlink(missing_ok=True)
    return MediaArtifact(public_id=None, resource_type="video", format="mp4", data=data)


def _fallback(
    job: AnonymizeJob,
    upload: MediaArtifact | None,
    transform: TransformGateway,
    error: Exception,
) -> MediaArtifact:
    """Return the original video, re-fetched if possible, else read locally."""
    original: MediaArtifact | None = None
    if upload is not None:
        try:
            original = transform.fetch_original(upload)
        except Exception as e:
            log.warning("Re-fetching original upload failed: %s", e)

    if original is None or original.size == 0:
        source = Path(job.source)
        try:
            data = source.read_bytes()
        except OSError as e:
            raise ProcessingFailedError(
                f"Processing failed ({error}) and the original video could not be recovered"
            ) from e
        if not data:
            raise ProcessingFailedError(f"Processing failed ({error}) and the original video is empty")
        original = MediaArtifact(
            public_id=upload.public_id if upload else None,
            url=upload.url if upload else None,
            format=source.suffix.lstrip(".") or "mp4",
            data=data,
        )
    return original


def result_filename(source: Path, result: PipelineResult) -> str:
    suffix = "original" if result.fallback else "anonymized"
    return f"{Path(source).stem}_{suffix}.{result.artifact.format}"
