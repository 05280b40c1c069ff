"""Web API routes: editing sessions, segment editing and processing jobs."""

import io
import json
import logging
import queue
import shutil
import subprocess
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from anonforge import ffutil
from anonforge import timeline as tl
from anonforge.config import load_config
from anonforge.engine import AnonymizeJob, process, result_filename
from anonforge.errors import (
    AnonForgeError,
    ConfigError,
    SkipSegmentLowVolume,
    ValidationError,
)
from anonforge.gateways.transform import TransformGateway
from anonforge.gateways.voice import VoiceGateway
from anonforge.models import DEFAULT_BLUR_STRENGTH
from anonforge.progress import ProgressChannel
from anonforge.segments import (
    format_file_size,
    is_video_file,
    segment_to_dict,
    should_show_length_warning,
)
from anonforge.voices import DEFAULT_VOICE, VOICES, voices_by_gender

log = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


def _get_job(job_id: str) -> dict | None:
    return _jobs.get(job_id)


def _not_found():
    return jsonify({"error": "Job not found"}), 404


def _segments_payload(job: dict) -> list[dict]:
    return [segment_to_dict(s) for s in job["timeline"].segments]


def _gateways() -> tuple[TransformGateway, VoiceGateway]:
    transform = current_app.config.get("TRANSFORM_GATEWAY")
    voice = current_app.config.get("VOICE_GATEWAY")
    if transform is None or voice is None:
        config = load_config()
        transform = transform or TransformGateway(config.transform)
        voice = voice or VoiceGateway(config.voice)
    return transform, voice


def _voice_gateway() -> VoiceGateway:
    voice = current_app.config.get("VOICE_GATEWAY")
    if voice is None:
        voice = VoiceGateway(load_config().voice)
    return voice


def _probe_duration(path: Path) -> float | None:
    try:
        return ffutil.probe(path).duration
    except (OSError, ValueError, KeyError, subprocess.CalledProcessError):
        return None


@bp.route("/api/voices")
def list_voices():
    gender = request.args.get("gender")
    voices = voices_by_gender(gender) if gender else VOICES
    return jsonify([
        {"id": v.id, "name": v.name, "style": v.style, "language": v.language,
         "accent": v.accent, "gender": v.gender}
        for v in voices
    ])


@bp.route("/api/voice/convert", methods=["POST"])
def convert_voice():
    """Standalone voice changer: convert one uploaded audio file."""
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400
    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    voice_id = request.form.get("voice", DEFAULT_VOICE)
    if voice_id not in {v.id for v in VOICES}:
        return jsonify({"error": f"Unknown voice: {voice_id}"}), 400

    scratch = Path(current_app.config["WORK_DIR"]) / "voice" / uuid.uuid4().hex[:12]
    scratch.mkdir(parents=True, exist_ok=True)
    audio_path = scratch / f"input{Path(f.filename).suffix}"
    f.save(audio_path)

    try:
        voice = _voice_gateway()
        result, audio = voice.change_voice(audio_path, voice_id)
    except SkipSegmentLowVolume:
        return jsonify({"error": "Volume is too low. Please use a louder recording."}), 422
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConfigError as e:
        return jsonify({"error": str(e)}), 500
    except AnonForgeError as e:
        log.warning("Voice conversion failed: %s", e)
        return jsonify({"error": str(e)}), 502
    finally:
        shutil.rmtree(scratch, ignore_errors=True)

    resp = send_file(
        io.BytesIO(audio),
        mimetype="audio/mpeg",
        as_attachment=True,
        download_name=f"{Path(f.filename).stem}_{result.voice_id}.mp3",
    )
    resp.headers["X-Voice-Id"] = result.voice_id
    resp.headers["X-Used-Fallback"] = "true" if result.used_fallback else "false"
    return resp


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400
    if not is_video_file(f.filename):
        return jsonify({"error": "Please select a valid video file."}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    duration = _probe_duration(input_path)
    if duration is None:
        try:
            duration = float(request.form.get("duration", 0.0))
        except ValueError:
            duration = 0.0

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": f.filename,
        "status": "uploaded",
        "timeline": tl.TimelineState(video_duration=duration),
    }

    size = input_path.stat().st_size
    return jsonify({
        "job_id": job_id,
        "filename": f.filename,
        "duration": duration,
        "size": format_file_size(size),
        "length_warning": should_show_length_warning(duration),
    })


@bp.route("/api/jobs/<job_id>/segments", methods=["GET"])
def list_segments(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    return jsonify(_segments_payload(job))


@bp.route("/api/jobs/<job_id>/segments", methods=["POST"])
def add_segment(job_id: str):
    """Add a segment: quick add at the playhead, a drag span, or explicit bounds."""
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    body = request.get_json() or {}
    state: tl.TimelineState = job["timeline"]
    kind = body.get("kind", "voice")
    mode = body.get("mode", "range")

    try:
        if mode == "quick":
            new_state = tl.quick_add(
                state, float(body.get("current_time", 0.0)), kind,
                float(body.get("length", 5.0)),
            )
        elif mode == "drag":
            new_state = tl.commit_span(state, float(body["start"]), float(body["end"]), kind)
        else:
            new_state = tl.add_range(
                state, float(body["start"]), float(body["end"]), kind,
                int(body.get("blurStrength", DEFAULT_BLUR_STRENGTH)),
            )
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    if new_state.error:
        return jsonify({"error": new_state.error}), 400

    job["timeline"] = new_state
    return jsonify(segment_to_dict(new_state.segments[-1])), 201


@bp.route("/api/jobs/<job_id>/segments/<segment_id>", methods=["PATCH"])
def edit_segment(job_id: str, segment_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    state: tl.TimelineState = job["timeline"]
    if not any(s.id == segment_id for s in state.segments):
        return jsonify({"error": "Segment not found"}), 404

    body = request.get_json() or {}
    try:
        if "blurStrength" in body:
            state = tl.set_blur_strength(state, segment_id, int(body["blurStrength"]))
        if "field" in body:
            state = tl.edit_field(state, segment_id, body["field"], float(body["value"]))
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    job["timeline"] = state
    seg = next(s for s in state.segments if s.id == segment_id)
    return jsonify(segment_to_dict(seg))


@bp.route("/api/jobs/<job_id>/segments/<segment_id>", methods=["DELETE"])
def delete_segment(job_id: str, segment_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    job["timeline"] = tl.remove_segment(job["timeline"], segment_id)
    return jsonify(_segments_payload(job))


@bp.route("/api/jobs/<job_id>", methods=["DELETE"])
def reset_job(job_id: str):
    """Reset the editor: drop segments and release any produced output."""
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    if job["status"] == "processing":
        return jsonify({"error": "Job is processing"}), 409

    job["timeline"] = tl.reset(job["timeline"])
    output = job.pop("output_path", None)
    if output is not None:
        Path(output).unlink(missing_ok=True)
    job.pop("result", None)
    job["status"] = "uploaded"
    return jsonify({"status": "reset"})


@bp.route("/api/jobs/<job_id>/process", methods=["POST"])
def start_process(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    if job["status"] not in ("uploaded", "done", "error"):
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    options = request.get_json() or {}
    state: tl.TimelineState = job["timeline"]
    blur_whole = bool(options.get("blur_whole_video", False))
    if not blur_whole and not state.segments:
        return jsonify({"error": "Please select blur whole video or add segments to process."}), 400

    try:
        blur_strength = int(options.get("blur_strength", DEFAULT_BLUR_STRENGTH))
    except (TypeError, ValueError):
        return jsonify({"error": "blur_strength must be an integer"}), 400

    try:
        transform, voice = _gateways()
    except AnonForgeError as e:
        return jsonify({"error": str(e)}), 500

    anon_job = AnonymizeJob(
        source=job["input_path"],
        segments=list(state.segments),
        voice_id=options.get("voice", DEFAULT_VOICE),
        blur_whole_video=blur_whole,
        blur_strength=blur_strength,
    )

    progress_queue: queue.Queue = queue.Queue()
    channel = ProgressChannel()
    channel.subscribe(
        lambda ev: progress_queue.put({"stage": ev.step, "progress": round(ev.percent / 100, 3)})
    )
    job["progress_queue"] = progress_queue
    job["status"] = "processing"
    job["error"] = None

    def run():
        try:
            result = process(anon_job, transform, voice, channel=channel, work_dir=job["dir"] / "work")
            output_path = job["dir"] / result_filename(job["input_path"], result)
            output_path.write_bytes(result.artifact.data)
            job["output_path"] = output_path
            job["result"] = {
                "filename": output_path.name,
                "size": result.artifact.size,
                "notes": result.notes,
                "warning": result.warning,
            }
            job["status"] = "done"
        except Exception as e:
            log.exception("Job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    q = job.get("progress_queue")
    if q is None:
        return jsonify({"error": "No processing in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409
    return send_file(job["output_path"], as_attachment=False)


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    resp = {
        "status": job["status"],
        "filename": job.get("filename"),
        "duration": job["timeline"].video_duration,
        "segments": _segments_payload(job),
    }
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
