"""Unit tests for ffutil — volume parsing and subprocess wrappers."""

import math
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

from anonforge.ffutil import (
    FFmpegNotFoundError,
    apply_gain,
    check_ffmpeg,
    measure_peak,
    mux_audio,
    parse_max_volume,
    probe,
)


# ---------------------------------------------------------------------------
# parse_max_volume (pure parsing, no subprocess)
# ---------------------------------------------------------------------------

SAMPLE_STDERR = """\
[Parsed_volumedetect_0 @ 0x...] n_samples: 220500
[Parsed_volumedetect_0 @ 0x...] mean_volume: -27.3 dB
[Parsed_volumedetect_0 @ 0x...] max_volume: -6.0 dB
[Parsed_volumedetect_0 @ 0x...] histogram_6db: 12
"""


class TestParseMaxVolume:
    def test_basic(self):
        assert parse_max_volume(SAMPLE_STDERR) == -6.0

    def test_full_scale(self):
        assert parse_max_volume("max_volume: 0.0 dB") == 0.0

    def test_digital_silence(self):
        assert parse_max_volume("max_volume: -inf dB") == -math.inf

    def test_missing_reading(self):
        assert parse_max_volume("Some other ffmpeg output\nsize=0 speed=1x\n") is None

    def test_empty_stderr(self):
        assert parse_max_volume("") is None


# ---------------------------------------------------------------------------
# measure_peak (mocked subprocess)
# ---------------------------------------------------------------------------

class TestMeasurePeak:
    @patch("anonforge.ffutil.subprocess.run")
    def test_converts_db_to_linear(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stderr=SAMPLE_STDERR)
        assert measure_peak(Path("clip.mp3")) == pytest.approx(0.501, abs=1e-3)

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-af") + 1] == "volumedetect"

    @patch("anonforge.ffutil.subprocess.run")
    def test_silence_is_zero(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stderr="max_volume: -inf dB")
        assert measure_peak(Path("clip.mp3")) == 0.0

    @patch("anonforge.ffutil.subprocess.run")
    def test_capped_at_one(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stderr="max_volume: 1.5 dB")
        assert measure_peak(Path("clip.mp3")) == 1.0

    @patch("anonforge.ffutil.subprocess.run")
    def test_failure_with_no_reading_raises(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stderr="")
        with pytest.raises(RuntimeError, match="volumedetect failed"):
            measure_peak(Path("clip.mp3"))


# ---------------------------------------------------------------------------
# probe (mocked subprocess)
# ---------------------------------------------------------------------------

PROBE_JSON = {
    "format": {"duration": "60.0"},
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30/1",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "44100",
        },
    ],
}


class TestProbe:
    @patch("anonforge.ffutil.subprocess.run")
    def test_basic(self, mock_run):
        import json
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout=json.dumps(PROBE_JSON),
        )
        result = probe(Path("video.mp4"))
        assert result.duration == 60.0
        assert result.width == 1920
        assert result.fps == 30.0
        assert result.has_audio is True
        assert result.codec_audio == "aac"

    @patch("anonforge.ffutil.subprocess.run")
    def test_no_audio_stream(self, mock_run):
        import json
        data = {"format": {"duration": "12.5"}, "streams": [PROBE_JSON["streams"][0]]}
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(data))
        result = probe(Path("video.mp4"))
        assert result.has_audio is False
        assert result.codec_audio is None

    @patch("anonforge.ffutil.subprocess.run")
    def test_no_video_stream(self, mock_run):
        import json
        data = {"format": {"duration": "60.0"}, "streams": [PROBE_JSON["streams"][1]]}
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(data))
        with pytest.raises(ValueError, match="No video stream"):
            probe(Path("video.mp4"))


# ---------------------------------------------------------------------------
# apply_gain / mux_audio (mocked subprocess — just verify the command shape)
# ---------------------------------------------------------------------------

class TestApplyGain:
    @patch("anonforge.ffutil.subprocess.run")
    def test_volume_filter(self, mock_run):
        out = apply_gain(Path("in.mp3"), Path("out.mp3"), 16.0)

        assert out == Path("out.mp3")
        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-af") + 1] == "volume=16.0000"
        assert mock_run.call_args[1]["check"] is True


class TestMuxAudio:
    @patch("anonforge.ffutil.subprocess.run")
    def test_copies_video_and_maps_optional_audio(self, mock_run):
        mux_audio(Path("blurred.mp4"), Path("source.mp4"), Path("out.mp4"))

        cmd = mock_run.call_args[0][0]
        assert cmd[-1] == "out.mp4"
        assert "0:v:0" in cmd
        assert "1:a:0?" in cmd
        assert cmd[cmd.index("-c:v") + 1] == "copy"


class TestCheckFfmpeg:
    @patch("anonforge.ffutil.shutil.which", return_value=None)
    def test_missing(self, mock_which):
        with pytest.raises(FFmpegNotFoundError, match="ffmpeg"):
            check_ffmpeg()

    @patch("anonforge.ffutil.shutil.which", return_value="/usr/bin/ffmpeg")
    def test_present(self, mock_which):
        check_ffmpeg()
