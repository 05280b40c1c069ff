"""Shared data types used across AnonForge."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Union

DEFAULT_BLUR_STRENGTH = 2000
MIN_SEGMENT_DURATION = 0.5

SegmentKind = Literal["voice", "blur"]


@dataclass(frozen=True)
class VoiceSegment:
    """A time range whose speech is replaced by a converted voice."""

    id: str
    start: float
    end: float
    converted_audio: str | None = None

    @property
    def kind(self) -> SegmentKind:
        return "voice"


@dataclass(frozen=True)
class BlurSegment:
    """A time range whose frames are blurred."""

    id: str
    start: float
    end: float
    blur_strength: int = DEFAULT_BLUR_STRENGTH

    @property
    def kind(self) -> SegmentKind:
        return "blur"


Segment = Union[VoiceSegment, BlurSegment]


@dataclass
class MediaArtifact:
    """Handle to a remote binary plus its locally cached bytes.

    ``public_id`` is None for artifacts that only exist locally (e.g. the
    output of the selective blur renderer). ``local_path`` is set by
    :meth:`materialize`; whoever materializes the artifact must call
    :meth:`release` once the file is superseded.
    """

    public_id: str | None
    url: str | None = None
    resource_type: str = "video"
    format: str = "mp4"
    data: bytes | None = None
    local_path: Path | None = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    def materialize(self, directory: Path, name: str | None = None) -> Path:
        if self.data is None:
            raise ValueError("artifact has no cached bytes to materialize")
        if self.local_path is not None and self.local_path.exists():
            return self.local_path
        stem = name or (self.public_id or "artifact").replace("/", "_")
        path = Path(directory) / f"{stem}.{self.format}"
        path.write_bytes(self.data)
        self.local_path = path
        return path

    def release(self) -> None:
        if self.local_path is not None:
            self.local_path.unlink(missing_ok=True)
            self.local_path = None


@dataclass
class MediaMetadata:
    """Metadata reported by the transformation service."""

    duration: float
    width: int
    height: int
    frame_rate: float
    format: str


@dataclass
class ProbeResult:
    """Metadata extracted from a local media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    has_audio: bool
    codec_video: str
    codec_audio: str | None = None


@dataclass
class PipelineResult:
    artifact: MediaArtifact
    notes: list[str] = field(default_factory=list)
    warning: str | None = None
    fallback: bool = False
