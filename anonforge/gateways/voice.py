"""Client for the remote voice conversion service."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

import requests

from anonforge import ffutil
from anonforge.config import VoiceConfig
from anonforge.errors import (
    ConfigError,
    EmptyArtifactError,
    SkipSegmentConversionFailed,
    SkipSegmentLowVolume,
    TransportError,
    ValidationError,
)
from anonforge.retry import RetryPolicy
from anonforge.segments import is_audio_file
from anonforge.voices import GENERIC_STYLE, voice_config

log = logging.getLogger(__name__)

LOW_VOLUME_MESSAGE = "Volume is too low"
LOW_PEAK_THRESHOLD = 0.1
TARGET_PEAK = 0.8
MAX_AUDIO_BYTES = 10 * 1024 * 1024


class ConversionRejected(ValidationError):
    """The service answered 400 for a reason other than low volume."""
    pass


@dataclass
class ConversionResult:
    converted_audio_url: str
    voice_id: str
    style: str
    used_fallback: bool = False


def _rejected(exc: BaseException) -> bool:
    return isinstance(exc, ConversionRejected)


def validate_audio_file(path: Path) -> None:
    """Accept only audio files up to MAX_AUDIO_BYTES."""
    path = Path(path)
    if not is_audio_file(path.name):
        raise ValidationError("Please select an audio file (MP3, WAV, etc.)")
    if not path.exists():
        raise ValidationError(f"Audio file not found: {path}")
    if path.stat().st_size > MAX_AUDIO_BYTES:
        raise ValidationError("File size must be less than 10MB")


def _json_object(resp: requests.Response) -> dict:
    """Decode a JSON object body; anything else is an empty mapping."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class VoiceGateway:
    """Submit audio clips for voice conversion.

    A 400 "volume too low" answer becomes :class:`SkipSegmentLowVolume`. Any
    other 400 is retried once with the voice's fallback id and a generic
    style; if that also fails the call raises
    :class:`SkipSegmentConversionFailed`. Network errors and timeouts surface
    as :class:`TransportError` without a retry.
    """

    def __init__(self, config: VoiceConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()
        self.retry = RetryPolicy(retries=1, backoff=0.0, retry_on=_rejected)

    def convert(self, audio_path: Path, voice_id: str) -> ConversionResult:
        if not self.config.api_key:
            raise ConfigError("MURF_API_KEY is not set")

        audio_path = Path(audio_path)
        if not audio_path.exists() or audio_path.stat().st_size == 0:
            raise ValidationError(f"Audio clip is missing or empty: {audio_path}")

        style, fallback = voice_config(voice_id)
        clip = self.normalize(audio_path)

        def attempt(n: int) -> ConversionResult:
            if n == 0:
                return self._submit(clip, voice_id, style)
            log.info("Retrying conversion with fallback voice %s", fallback)
            try:
                result = self._submit(clip, fallback, GENERIC_STYLE)
            except (TransportError, ValidationError, SkipSegmentLowVolume) as e:
                raise SkipSegmentConversionFailed(
                    f"Conversion failed with {voice_id} and fallback {fallback}: {e}"
                ) from e
            result.used_fallback = True
            return result

        try:
            return self.retry.call(attempt)
        finally:
            if clip != audio_path:
                clip.unlink(missing_ok=True)

    def change_voice(self, audio_path: Path, voice_id: str) -> tuple[ConversionResult, bytes]:
        """Convert a standalone audio file and download the result."""
        validate_audio_file(audio_path)
        result = self.convert(audio_path, voice_id)
        return result, self.download(result.converted_audio_url)

    def _submit(self, clip: Path, voice_id: str, style: str) -> ConversionResult:
        log.debug("Converting %s with voice=%s style=%s", clip.name, voice_id, style)
        try:
            with open(clip, "rb") as fh:
                resp = self.session.post(
                    f"{self.config.api_url}/convert",
                    files={"file": (clip.name, fh, "audio/mpeg")},
                    data={"voice_id": voice_id, "style": style},
                    headers={"api-key": self.config.api_key},
                    timeout=self.config.timeout,
                )
        except requests.RequestException as e:
            raise TransportError(f"Voice conversion request failed: {e}") from e

        if resp.status_code == 400:
            message = _json_object(resp).get("errorMessage", "")
            if message == LOW_VOLUME_MESSAGE:
                raise SkipSegmentLowVolume(f"{clip.name}: {message}")
            raise ConversionRejected(f"Voice conversion rejected: {message or resp.text}")
        if resp.status_code != 200:
            raise TransportError(
                f"Voice conversion failed: {resp.status_code}", status=resp.status_code
            )

        payload = _json_object(resp)
        url = payload.get("audio_file")
        if not url:
            raise TransportError("Voice conversion response has no audio_file")
        return ConversionResult(converted_audio_url=url, voice_id=voice_id, style=style)

    def normalize(self, clip: Path) -> Path:
        """Boost quiet clips to TARGET_PEAK before submission.

        Best effort: on any analysis or ffmpeg failure the clip is returned
        unchanged.
        """
        try:
            peak = ffutil.measure_peak(clip)
        except (RuntimeError, OSError, subprocess.SubprocessError) as e:
            log.warning("Peak analysis failed for %s: %s", clip.name, e)
            return clip

        if not 0 < peak < LOW_PEAK_THRESHOLD:
            return clip

        gain = TARGET_PEAK / peak
        out = clip.with_name(f"{clip.stem}_normalized{clip.suffix}")
        log.info("Normalizing %s: peak %.3f, gain x%.1f", clip.name, peak, gain)
        try:
            return ffutil.apply_gain(clip, out, gain)
        except (OSError, subprocess.SubprocessError) as e:
            log.warning("Normalization failed for %s: %s", clip.name, e)
            return clip

    def download(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Converted audio download failed: {e}") from e
        if resp.status_code != 200:
            raise TransportError(
                f"Converted audio download failed: {resp.status_code}", status=resp.status_code
            )
        if not resp.content:
            raise EmptyArtifactError("Converted audio is empty")
        return resp.content
