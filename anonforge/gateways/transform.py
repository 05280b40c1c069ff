"""Client for the remote media transformation service.

The service expresses every operation as URL path tokens in front of the
asset id::

    {delivery}/{cloud}/video/upload/so_5,eo_10/f_mp3/{public_id}.mp3

Fetching such a URL runs the transformation synchronously from our point of
view. A 423 response means the derivative is still being materialized and is
retried through the gateway's :class:`RetryPolicy`; an empty 200 is treated
as a failure, never as a successful empty result.
"""

import io
import logging
from pathlib import Path
from typing import Callable, Sequence

import requests

from anonforge.config import TransformConfig
from anonforge.errors import (
    ConfigError,
    EmptyArtifactError,
    MetadataError,
    NotReadyError,
    TransportError,
    UploadError,
    ValidationError,
)
from anonforge.models import DEFAULT_BLUR_STRENGTH, MediaArtifact, MediaMetadata
from anonforge.retry import RetryPolicy
from anonforge.segments import is_audio_file, is_video_file

log = logging.getLogger(__name__)

NOT_READY_STATUS = 423
NOT_READY_RETRIES = 3
NOT_READY_BACKOFF = 2.0


def _num(value: float) -> str:
    """Format an offset the way the URL convention expects (no trailing zeros)."""
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text or "0"


def trim_tokens(start: float, end: float) -> str:
    return f"so_{_num(start)},eo_{_num(end)}"


def blur_tokens(strength: int) -> str:
    return f"e_blur:{int(strength)},q_auto:good,f_mp4"


def layer_id(public_id: str) -> str:
    """Overlay references use ':' in place of folder separators."""
    return public_id.replace("/", ":")


def is_not_ready(exc: BaseException) -> bool:
    return isinstance(exc, NotReadyError)


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        retries=NOT_READY_RETRIES, backoff=NOT_READY_BACKOFF, retry_on=is_not_ready
    )


class _ProgressReader:
    """File-like request body that reports the fraction of bytes sent."""

    def __init__(self, body: bytes, on_progress: Callable[[float], None]):
        self._buf = io.BytesIO(body)
        self._total = len(body)
        self._on_progress = on_progress

    def __len__(self) -> int:
        return self._total

    def read(self, size: int = -1) -> bytes:
        chunk = self._buf.read(size)
        if self._total:
            self._on_progress(self._buf.tell() / self._total)
        return chunk


class TransformGateway:
    """Typed operations over the transformation service's URL convention."""

    def __init__(
        self,
        config: TransformConfig,
        session: requests.Session | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.retry = retry or default_retry_policy()

    # -- URLs -------------------------------------------------------------

    def build_url(
        self,
        public_id: str,
        transformations: Sequence[str] = (),
        fmt: str = "mp4",
        resource_type: str = "video",
    ) -> str:
        parts = [
            self.config.delivery_url.rstrip("/"),
            self.config.cloud_name,
            resource_type,
            "upload",
            *transformations,
            f"{public_id}.{fmt}",
        ]
        return "/".join(parts)

    # -- Upload -----------------------------------------------------------

    def upload(
        self,
        source: Path | bytes,
        on_progress: Callable[[float], None] | None = None,
        resource_type: str = "video",
        filename: str | None = None,
    ) -> MediaArtifact:
        """Upload a file (or raw bytes) and return its artifact handle.

        ``on_progress`` receives the fraction of bytes sent in ``[0, 1]``.
        """
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
            name = filename or "upload.mp4"
        else:
            path = Path(source)
            name = filename or path.name
            if not (is_video_file(name) or is_audio_file(name)):
                raise ValidationError(f"File must be a video or audio file: {name}")
            data = path.read_bytes()

        if not data:
            raise ValidationError(f"Refusing to upload empty file {name}")

        request = requests.Request(
            "POST",
            self.config.upload_url(),
            files={"file": (name, data)},
            data={
                "upload_preset": self.config.upload_preset,
                "resource_type": resource_type,
            },
        )
        prepared = self.session.prepare_request(request)
        if on_progress is not None and isinstance(prepared.body, bytes):
            prepared.body = _ProgressReader(prepared.body, on_progress)

        log.info("Uploading %s (%d bytes)", name, len(data))
        try:
            resp = self.session.send(prepared, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise UploadError(f"Network error during upload: {e}") from e

        if resp.status_code != 200:
            raise UploadError(
                f"Upload failed with status: {resp.status_code}", status=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise UploadError("Invalid response format") from e
        if not isinstance(payload, dict):
            raise UploadError("Invalid response format")

        public_id = payload.get("public_id")
        url = payload.get("secure_url") or payload.get("url")
        if not public_id or not url:
            raise UploadError("Upload response is missing public_id or secure_url")

        if on_progress is not None:
            on_progress(1.0)

        fmt = payload.get("format") or Path(name).suffix.lstrip(".") or "mp4"
        return MediaArtifact(
            public_id=public_id,
            url=url,
            resource_type=payload.get("resource_type", resource_type),
            format=fmt,
            data=data,
        )

    # -- Fetch-based operations --------------------------------------------

    def _fetch(self, url: str, what: str) -> bytes:
        def attempt(n: int) -> bytes:
            log.debug("GET %s (attempt %d)", url, n + 1)
            try:
                resp = self.session.get(url, timeout=self.config.timeout)
            except requests.RequestException as e:
                raise TransportError(f"{what} failed: {e}") from e

            if resp.status_code == NOT_READY_STATUS:
                raise NotReadyError(f"{what}: resource is still processing", status=NOT_READY_STATUS)
            if resp.status_code != 200:
                raise TransportError(
                    f"{what} failed: {resp.status_code} - {resp.reason}",
                    status=resp.status_code,
                )
            if not resp.content:
                raise EmptyArtifactError(f"{what} returned an empty payload")
            return resp.content

        return self.retry.call(attempt)

    def _derive(
        self,
        artifact: MediaArtifact,
        transformations: Sequence[str],
        fmt: str,
        what: str,
        resource_type: str = "video",
    ) -> MediaArtifact:
        if not artifact.public_id:
            raise ValidationError(f"{what}: artifact has not been uploaded")
        url = self.build_url(artifact.public_id, transformations, fmt)
        data = self._fetch(url, what)
        return MediaArtifact(
            public_id=None, url=url, resource_type=resource_type, format=fmt, data=data
        )

    def extract_segment(
        self, artifact: MediaArtifact, start: float, end: float, fmt: str = "mp3"
    ) -> MediaArtifact:
        """Return the sub-range ``[start, end)`` of ``artifact``."""
        if end <= start:
            raise ValidationError(f"Segment end {end} must be after start {start}")
        return self._derive(artifact, [trim_tokens(start, end)], fmt, "Segment extraction")

    def convert_format(self, artifact: MediaArtifact, fmt: str) -> MediaArtifact:
        return self._derive(artifact, [f"f_{fmt}"], fmt, f"Conversion to {fmt}")

    def apply_blur(
        self, artifact: MediaArtifact, strength: int = DEFAULT_BLUR_STRENGTH
    ) -> MediaArtifact:
        """Blur the whole video."""
        return self._derive(artifact, [blur_tokens(strength)], "mp4", "Video blur")

    def replace_audio_track(self, video: MediaArtifact, audio: MediaArtifact) -> MediaArtifact:
        """Mute the original audio and overlay ``audio`` over the full duration."""
        if not audio.public_id:
            raise ValidationError("Audio replacement: audio has not been uploaded")
        tokens = ["ac_none", f"l_audio:{layer_id(audio.public_id)}", "fl_layer_apply,f_mp4"]
        return self._derive(video, tokens, "mp4", "Audio replacement")

    def replace_audio_range(
        self, video: MediaArtifact, audio: MediaArtifact, start: float, end: float
    ) -> MediaArtifact:
        """Replace the audio of ``video`` within ``[start, end)`` by ``audio``.

        The video is spliced back together from the part before ``start``, a
        muted copy of ``[start, end)`` and the rest; ``audio`` is then
        overlaid at ``start``. Audio outside the range is untouched.
        """
        if not audio.public_id:
            raise ValidationError("Audio replacement: audio has not been uploaded")
        if not video.public_id:
            raise ValidationError("Audio replacement: artifact has not been uploaded")
        if end <= start:
            raise ValidationError(f"Segment end {end} must be after start {start}")
        vid = layer_id(video.public_id)
        if start > 0:
            tokens = [
                f"eo_{_num(start)}",
                f"l_video:{vid},{trim_tokens(start, end)},e_volume:mute,fl_splice",
                "fl_layer_apply",
            ]
        else:
            tokens = [f"{trim_tokens(start, end)},e_volume:mute"]
        tokens += [
            f"l_video:{vid},so_{_num(end)},fl_splice",
            "fl_layer_apply",
            f"l_audio:{layer_id(audio.public_id)}",
            f"fl_layer_apply,so_{_num(start)},f_mp4",
        ]
        return self._derive(video, tokens, "mp4", "Segment audio replacement")

    def create_thumbnail(
        self, artifact: MediaArtifact, timestamp: float, width: int, height: int
    ) -> MediaArtifact:
        tokens = [f"so_{_num(timestamp)},w_{int(width)},h_{int(height)},c_fill"]
        return self._derive(artifact, tokens, "jpg", "Thumbnail", resource_type="image")

    def fetch_original(self, artifact: MediaArtifact) -> MediaArtifact:
        """Re-download the untouched upload."""
        if artifact.url:
            url = artifact.url
        elif artifact.public_id:
            url = self.build_url(artifact.public_id, (), artifact.format)
        else:
            raise ValidationError("Original video has no remote location")
        data = self._fetch(url, "Original video download")
        return MediaArtifact(
            public_id=artifact.public_id,
            url=url,
            resource_type=artifact.resource_type,
            format=artifact.format,
            data=data,
        )

    # -- Admin API ---------------------------------------------------------

    def get_metadata(self, artifact: MediaArtifact) -> MediaMetadata:
        if not self.config.api_key or not self.config.api_secret:
            raise ConfigError("CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET are required for metadata")
        if not artifact.public_id:
            raise MetadataError("Artifact has no public id")

        url = (
            f"{self.config.api_url}/{self.config.cloud_name}/resources/"
            f"{artifact.resource_type}/upload/{artifact.public_id}"
        )
        try:
            resp = self.session.get(
                url,
                auth=(self.config.api_key, self.config.api_secret),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"Metadata lookup failed: {e}") from e

        if resp.status_code == 404:
            raise MetadataError(f"Unknown artifact: {artifact.public_id}", status=404)
        if resp.status_code != 200:
            raise MetadataError(
                f"Metadata lookup failed: {resp.status_code}", status=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise MetadataError("Invalid metadata response") from e
        if not isinstance(data, dict):
            raise MetadataError("Invalid metadata response")
        frame_rate = data.get("frame_rate") or (data.get("video") or {}).get("frame_rate") or 0.0
        return MediaMetadata(
            duration=float(data.get("duration", 0.0)),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            frame_rate=float(frame_rate),
            format=data.get("format", artifact.format),
        )
