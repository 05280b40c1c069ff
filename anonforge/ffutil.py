"""FFmpeg/ffprobe subprocess helpers."""

import json
import math
import re
import shutil
import subprocess
from pathlib import Path

from anonforge.models import ProbeResult


class FFmpegNotFoundError(RuntimeError):
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe(input_path: Path) -> ProbeResult:
    """Extract media metadata via ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if video_stream is None:
        raise ValueError(f"No video stream found in {input_path}")

    # r_frame_rate looks like "30/1"
    num, den = video_stream["r_frame_rate"].split("/")
    fps = int(num) / int(den) if int(den) else 0.0

    return ProbeResult(
        duration=float(data["format"]["duration"]),
        width=int(video_stream["width"]),
        height=int(video_stream["height"]),
        fps=fps,
        has_audio=audio_stream is not None,
        codec_video=video_stream["codec_name"],
        codec_audio=audio_stream["codec_name"] if audio_stream else None,
    )


def parse_max_volume(stderr: str) -> float | None:
    """Parse the ``max_volume`` reading (dBFS) from volumedetect output."""
    m = re.search(r"max_volume:\s*(-?inf|-?[\d.]+) dB", stderr)
    if m is None:
        return None
    value = m.group(1)
    if value.endswith("inf"):
        return -math.inf
    return float(value)


def measure_peak(input_path: Path) -> float:
    """Return the linear peak amplitude of the audio in ``[0, 1]``."""
    cmd = [
        "ffmpeg",
        "-i", str(input_path),
        "-af", "volumedetect",
        "-f", "null", "-",
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)
    max_db = parse_max_volume(result.stderr)
    if max_db is None:
        raise RuntimeError(
            f"ffmpeg volumedetect failed (rc={result.returncode}) for {input_path}"
        )
    if max_db == -math.inf:
        return 0.0
    return min(1.0, 10 ** (max_db / 20))


def apply_gain(input_path: Path, output_path: Path, gain: float) -> Path:
    """Scale the audio by a linear ``gain`` factor."""
    cmd = [
        "ffmpeg", "-y",
        "-i", str(input_path),
        "-af", f"volume={gain:.4f}",
        str(output_path),
    ]
    subprocess.run(cmd, capture_output=True, check=True)
    return output_path


def mux_audio(video_path: Path, audio_source: Path, output_path: Path) -> Path:
    """Copy the video stream of ``video_path`` and the audio of ``audio_source``.

    The audio map is optional, so a source without audio yields a silent
    output rather than an error.
    """
    cmd = [
        "ffmpeg", "-y",
        "-i", str(video_path),
        "-i", str(audio_source),
        "-map", "0:v:0",
        "-map", "1:a:0?",
        "-c:v", "copy",
        "-c:a", "aac",
        "-shortest",
        str(output_path),
    ]
    subprocess.run(cmd, capture_output=True, check=True)
    return output_path
