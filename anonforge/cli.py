"""Thin CLI entry point — builds a Manifest and calls the engine."""

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from anonforge import ffutil
from anonforge.config import load_config
from anonforge.engine import process
from anonforge.errors import AnonForgeError
from anonforge.gateways.transform import TransformGateway
from anonforge.gateways.voice import VoiceGateway
from anonforge.manifest import Manifest, load_manifest
from anonforge.models import DEFAULT_BLUR_STRENGTH
from anonforge.progress import ProgressChannel
from anonforge.segments import segment_from_dict
from anonforge.voices import DEFAULT_VOICE, VOICES


def parse_range(text: str) -> tuple[float, float]:
    """Parse ``START:END`` seconds."""
    try:
        start, end = text.split(":")
        return float(start), float(end)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected START:END seconds, got {text!r}")


def _video_duration(path: Path) -> float | None:
    try:
        return ffutil.probe(path).duration
    except (OSError, ValueError, KeyError, subprocess.CalledProcessError):
        return None


def _manifest_from_args(args: argparse.Namespace) -> Manifest:
    duration = _video_duration(args.video)
    segments = [
        segment_from_dict({"start": s, "end": e, "kind": "voice"}, duration)
        for s, e in args.voice_segment
    ] + [
        segment_from_dict(
            {"start": s, "end": e, "kind": "blur", "blurStrength": args.blur_strength}, duration
        )
        for s, e in args.blur_segment
    ]
    return Manifest(
        input=args.video,
        output=args.output or args.video.with_stem(args.video.stem + "_anonymized"),
        voice_id=args.voice,
        blur_whole_video=args.blur_whole,
        blur_strength=args.blur_strength,
        segments=segments,
    )


def _convert_voice(args: argparse.Namespace) -> None:
    try:
        config = load_config()
        result, audio = VoiceGateway(config.voice).change_voice(args.audio, args.voice)
    except AnonForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output = args.output or args.audio.with_name(f"{args.audio.stem}_{result.voice_id}.mp3")
    output.write_bytes(audio)
    if result.used_fallback:
        print(f"Note: converted with fallback voice {result.voice_id}")
    print(f"Done! Output: {output}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="anonforge",
        description="AnonForge — anonymize videos: voice replacement & face blurring.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    proc = sub.add_parser("process", help="Anonymize a video file")
    proc.add_argument("video", nargs="?", type=Path, help="Input video file")
    proc.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    proc.add_argument("--output", "-o", type=Path, help="Output file path")
    proc.add_argument("--voice-segment", type=parse_range, action="append", default=[],
                      metavar="START:END", help="Replace the voice in this range (repeatable)")
    proc.add_argument("--blur-segment", type=parse_range, action="append", default=[],
                      metavar="START:END", help="Blur frames in this range (repeatable)")
    proc.add_argument("--blur-whole", action="store_true", help="Blur the entire video")
    proc.add_argument("--blur-strength", type=int, default=DEFAULT_BLUR_STRENGTH, help="Blur strength (1-2000)")
    proc.add_argument("--voice", choices=[v.id for v in VOICES], default=DEFAULT_VOICE, help="Target voice")

    conv = sub.add_parser("convert-voice", help="Convert the voice in an audio file")
    conv.add_argument("audio", type=Path, help="Input audio file (up to 10MB)")
    conv.add_argument("--voice", choices=[v.id for v in VOICES], default=DEFAULT_VOICE, help="Target voice")
    conv.add_argument("--output", "-o", type=Path, help="Output file path")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from anonforge.web import create_app
        app = create_app()
        print(f"AnonForge web API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    if args.command == "convert-voice":
        _convert_voice(args)
        return

    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.video:
        m = _manifest_from_args(args)
    else:
        print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
        sys.exit(1)

    if not m.blur_whole_video and not m.segments:
        print("Error: add voice/blur segments or --blur-whole.", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config()
        ffutil.check_ffmpeg()
    except (AnonForgeError, ffutil.FFmpegNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    channel = ProgressChannel()
    channel.subscribe(lambda ev: print(f"  [{ev.percent:5.1f}%] {ev.step}"))

    try:
        result = process(
            m.to_job(),
            TransformGateway(config.transform),
            VoiceGateway(config.voice),
            channel=channel,
        )
    except AnonForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    m.output.write_bytes(result.artifact.data)

    print()
    print(f"Done! Output: {m.output}")
    for note in result.notes:
        print(f"  - {note}")
    if result.warning:
        print(f"Warning: {result.warning}", file=sys.stderr)
