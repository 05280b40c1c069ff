"""Tests for manifest loading and validation."""

import json
from pathlib import Path

import pytest

from anonforge.errors import ValidationError
from anonforge.manifest import Manifest, load_manifest
from anonforge.models import BlurSegment, VoiceSegment


class TestManifest:
    def test_minimal(self):
        m = Manifest(input=Path("in.mp4"), output=Path("out.mp4"))
        assert m.version == "1"
        assert m.voice_id == "hi-IN-rahul"
        assert m.blur_whole_video is False
        assert m.blur_strength == 2000
        assert m.segments == []

    def test_to_job(self):
        segs = [VoiceSegment("v1", 1.0, 2.0)]
        m = Manifest(
            input=Path("in.mp4"),
            output=Path("out.mp4"),
            voice_id="en-US-ken",
            blur_whole_video=True,
            blur_strength=500,
            segments=segs,
        )
        job = m.to_job()
        assert job.source == Path("in.mp4")
        assert job.segments == segs
        assert job.segments is not m.segments
        assert job.voice_id == "en-US-ken"
        assert job.blur_whole_video is True
        assert job.blur_strength == 500


class TestLoadManifest:
    def test_load_sample(self, sample_manifest_path: Path):
        m = load_manifest(sample_manifest_path)
        assert m.version == "1"
        assert m.input == Path("video.mp4")
        assert m.output == Path("video_anonymized.mp4")
        assert m.voice_id == "en-IN-priya"
        assert m.segments == [
            VoiceSegment("v1", 5.0, 10.0),
            BlurSegment("b1", 12.0, 14.5, blur_strength=800),
        ]

    def test_load_invalid_json(self, tmp_path: Path):
        bad = tmp_path / "bad.json"
        bad.write_text("not json")
        with pytest.raises(json.JSONDecodeError):
            load_manifest(bad)

    def test_load_missing_fields(self, tmp_path: Path):
        incomplete = tmp_path / "incomplete.json"
        incomplete.write_text('{"version": "1"}')
        with pytest.raises(ValueError, match="must contain"):
            load_manifest(incomplete)

    def test_segment_clamped_to_duration(self, tmp_path: Path):
        path = tmp_path / "m.json"
        path.write_text(json.dumps({
            "input": "in.mp4",
            "output": "out.mp4",
            "duration": 10,
            "segments": [{"kind": "voice", "start": 8, "end": 12}],
        }))
        m = load_manifest(path)
        assert (m.segments[0].start, m.segments[0].end) == (8.0, 10.0)

    def test_malformed_segment(self, tmp_path: Path):
        path = tmp_path / "m.json"
        path.write_text(json.dumps({
            "input": "in.mp4",
            "output": "out.mp4",
            "segments": [{"kind": "blur", "start": "soon"}],
        }))
        with pytest.raises(ValidationError, match="Malformed segment"):
            load_manifest(path)
