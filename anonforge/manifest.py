"""JSON manifest schema — the contract between the CLI and the engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from anonforge.engine import AnonymizeJob
from anonforge.models import DEFAULT_BLUR_STRENGTH, Segment
from anonforge.segments import segment_from_dict
from anonforge.voices import DEFAULT_VOICE


@dataclass
class Manifest:
    """Top-level anonymization manifest."""

    input: Path
    output: Path
    version: str = "1"
    voice_id: str = DEFAULT_VOICE
    blur_whole_video: bool = False
    blur_strength: int = DEFAULT_BLUR_STRENGTH
    segments: list[Segment] = field(default_factory=list)

    def to_job(self) -> AnonymizeJob:
        return AnonymizeJob(
            source=self.input,
            segments=list(self.segments),
            voice_id=self.voice_id,
            blur_whole_video=self.blur_whole_video,
            blur_strength=self.blur_strength,
        )


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    duration = data.get("duration")
    segments = [
        segment_from_dict(s, video_duration=float(duration) if duration else None)
        for s in data.get("segments", [])
    ]

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        voice_id=data.get("voice", DEFAULT_VOICE),
        blur_whole_video=bool(data.get("blur_whole_video", False)),
        blur_strength=int(data.get("blur_strength", DEFAULT_BLUR_STRENGTH)),
        segments=segments,
    )
