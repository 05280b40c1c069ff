"""Unit tests for the media transformation gateway (mocked HTTP session)."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
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
from anonforge.gateways.transform import (
    TransformGateway,
    _ProgressReader,
    is_not_ready,
    trim_tokens,
)
from anonforge.models import MediaArtifact
from anonforge.retry import RetryPolicy

UPLOAD_JSON = {
    "public_id": "folder/vid",
    "secure_url": "https://res.cloudinary.com/demo/video/upload/v1/folder/vid.mp4",
    "format": "mp4",
    "resource_type": "video",
}


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def gateway(transform_config, session, sleep):
    retry = RetryPolicy(retries=3, backoff=2.0, retry_on=is_not_ready, sleep=sleep)
    return TransformGateway(transform_config, session=session, retry=retry)


@pytest.fixture
def uploaded() -> MediaArtifact:
    return MediaArtifact(public_id="folder/vid", url=UPLOAD_JSON["secure_url"], data=b"V" * 4000)


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"V" * 4000)
    return path


def _called_url(session) -> str:
    return session.get.call_args[0][0]


# ---------------------------------------------------------------------------
# URL building
# ---------------------------------------------------------------------------

class TestUrls:
    def test_build_url(self, gateway):
        url = gateway.build_url("folder/vid", ["so_5,eo_10"], "mp3")
        assert url == "https://res.cloudinary.com/demo/video/upload/so_5,eo_10/folder/vid.mp3"

    def test_build_url_without_transformations(self, gateway):
        assert gateway.build_url("vid") == "https://res.cloudinary.com/demo/video/upload/vid.mp4"

    def test_trim_tokens_formatting(self):
        assert trim_tokens(5.0, 10.0) == "so_5,eo_10"
        assert trim_tokens(0, 2.25) == "so_0,eo_2.25"
        assert trim_tokens(1.23456, 3.5) == "so_1.235,eo_3.5"


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------

class TestUpload:
    def test_success(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(200, json_data=UPLOAD_JSON)
        artifact = gateway.upload(video_file)

        assert artifact.public_id == "folder/vid"
        assert artifact.url == UPLOAD_JSON["secure_url"]
        assert artifact.data == video_file.read_bytes()

        prepared = session.send.call_args[0][0]
        assert prepared.url == "https://api.cloudinary.com/v1_1/demo/video/upload"
        assert b"anon_preset" in prepared.body
        assert b'filename="clip.mp4"' in prepared.body

    def test_progress_reported(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(200, json_data=UPLOAD_JSON)
        seen = []
        gateway.upload(video_file, on_progress=seen.append)

        prepared = session.send.call_args[0][0]
        assert isinstance(prepared.body, _ProgressReader)
        assert seen[-1] == 1.0

    def test_network_error(self, gateway, session, video_file):
        session.send.side_effect = requests.ConnectionError("down")
        with pytest.raises(UploadError, match="Network error"):
            gateway.upload(video_file)

    def test_bad_status(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(500)
        with pytest.raises(UploadError) as exc:
            gateway.upload(video_file)
        assert exc.value.status == 500

    def test_invalid_json(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(200)
        with pytest.raises(UploadError, match="Invalid response format"):
            gateway.upload(video_file)

    def test_non_object_json(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(200, json_data=["folder/vid"])
        with pytest.raises(UploadError, match="Invalid response format"):
            gateway.upload(video_file)

    def test_missing_public_id(self, gateway, session, make_response, video_file):
        session.send.return_value = make_response(200, json_data={"secure_url": "x"})
        with pytest.raises(UploadError, match="public_id"):
            gateway.upload(video_file)

    def test_rejects_non_media_file(self, gateway, session, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")
        with pytest.raises(ValidationError, match="video or audio"):
            gateway.upload(notes)
        session.send.assert_not_called()

    def test_raw_bytes(self, gateway, session, make_response):
        session.send.return_value = make_response(200, json_data={**UPLOAD_JSON, "format": "mp3"})
        artifact = gateway.upload(b"audio-bytes", filename="converted_0.mp3")
        assert artifact.format == "mp3"
        assert artifact.data == b"audio-bytes"


class TestProgressReader:
    def test_reports_fractions(self):
        seen = []
        reader = _ProgressReader(b"x" * 100, seen.append)
        assert len(reader) == 100
        while reader.read(30):
            pass
        assert seen[0] == pytest.approx(0.3)
        assert seen[-1] == 1.0


# ---------------------------------------------------------------------------
# Fetch-based operations
# ---------------------------------------------------------------------------

class TestExtractSegment:
    def test_builds_trim_url(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"A" * 2000)
        clip = gateway.extract_segment(uploaded, 5, 10)

        assert _called_url(session).endswith("/video/upload/so_5,eo_10/folder/vid.mp3")
        assert clip.data == b"A" * 2000
        assert clip.format == "mp3"
        assert clip.public_id is None

    def test_repeatable(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"A" * 2000)
        first = gateway.extract_segment(uploaded, 5, 10)
        second = gateway.extract_segment(uploaded, 5, 10)
        assert first.url == second.url
        assert first.data == second.data

    def test_empty_payload_is_failure(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"")
        with pytest.raises(EmptyArtifactError):
            gateway.extract_segment(uploaded, 5, 10)

    def test_inverted_range(self, gateway, uploaded):
        with pytest.raises(ValidationError):
            gateway.extract_segment(uploaded, 10, 5)

    def test_requires_uploaded_artifact(self, gateway):
        with pytest.raises(ValidationError, match="not been uploaded"):
            gateway.extract_segment(MediaArtifact(public_id=None, data=b"x"), 1, 2)


class TestApplyBlur:
    def test_url_tokens(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"B" * 3000)
        gateway.apply_blur(uploaded, 1500)
        assert "/e_blur:1500,q_auto:good,f_mp4/folder/vid.mp4" in _called_url(session)

    def test_not_ready_retried_then_succeeds(self, gateway, session, make_response, uploaded, sleep):
        session.get.side_effect = [
            make_response(423),
            make_response(423),
            make_response(423),
            make_response(200, content=b"B" * 3000),
        ]
        result = gateway.apply_blur(uploaded)
        assert result.data == b"B" * 3000
        assert session.get.call_count == 4
        assert sleep.call_count == 3

    def test_not_ready_budget_exhausted(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(423)
        with pytest.raises(NotReadyError):
            gateway.apply_blur(uploaded)
        assert session.get.call_count == 4

    def test_error_status_not_retried(self, gateway, session, make_response, uploaded, sleep):
        session.get.return_value = make_response(404, reason="Not Found")
        with pytest.raises(TransportError) as exc:
            gateway.apply_blur(uploaded)
        assert exc.value.status == 404
        sleep.assert_not_called()

    def test_timeout(self, gateway, session, uploaded):
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(TransportError, match="slow"):
            gateway.apply_blur(uploaded)


class TestAudioReplacement:
    def test_replace_whole_track(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"R" * 3000)
        audio = MediaArtifact(public_id="voices/conv1", resource_type="video", format="mp3")
        gateway.replace_audio_track(uploaded, audio)
        url = _called_url(session)
        assert "/ac_none/l_audio:voices:conv1/fl_layer_apply,f_mp4/folder/vid.mp4" in url

    def test_replace_range(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"R" * 3000)
        audio = MediaArtifact(public_id="conv1", format="mp3")
        gateway.replace_audio_range(uploaded, audio, 5.0, 10.0)
        url = _called_url(session)
        assert (
            "/eo_5"
            "/l_video:folder:vid,so_5,eo_10,e_volume:mute,fl_splice/fl_layer_apply"
            "/l_video:folder:vid,so_10,fl_splice/fl_layer_apply"
            "/l_audio:conv1/fl_layer_apply,so_5,f_mp4/folder/vid.mp4"
        ) in url

    def test_replace_range_from_zero_mutes_head(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"R" * 3000)
        gateway.replace_audio_range(uploaded, MediaArtifact(public_id="conv1"), 0, 4)
        url = _called_url(session)
        assert "/upload/so_0,eo_4,e_volume:mute/l_video:folder:vid,so_4,fl_splice/" in url
        assert "eo_0" not in url

    def test_replace_range_requires_span(self, gateway, uploaded):
        with pytest.raises(ValidationError):
            gateway.replace_audio_range(uploaded, MediaArtifact(public_id="conv1"), 6, 6)

    def test_audio_must_be_uploaded(self, gateway, uploaded):
        with pytest.raises(ValidationError):
            gateway.replace_audio_track(uploaded, MediaArtifact(public_id=None))


class TestOtherOperations:
    def test_convert_format(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"M" * 100)
        result = gateway.convert_format(uploaded, "mp3")
        assert _called_url(session).endswith("/f_mp3/folder/vid.mp3")
        assert result.format == "mp3"

    def test_thumbnail(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"\xff\xd8jpeg")
        thumb = gateway.create_thumbnail(uploaded, 3, 320, 180)
        assert _called_url(session).endswith("/so_3,w_320,h_180,c_fill/folder/vid.jpg")
        assert thumb.resource_type == "image"
        assert thumb.format == "jpg"

    def test_fetch_original_uses_upload_url(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, content=b"V" * 4000)
        original = gateway.fetch_original(uploaded)
        assert _called_url(session) == UPLOAD_JSON["secure_url"]
        assert original.public_id == "folder/vid"
        assert original.data == b"V" * 4000


class TestMetadata:
    def test_success(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, json_data={
            "duration": 30.5, "width": 1280, "height": 720,
            "frame_rate": 29.97, "format": "mp4",
        })
        meta = gateway.get_metadata(uploaded)
        assert meta.duration == 30.5
        assert (meta.width, meta.height) == (1280, 720)
        assert meta.frame_rate == 29.97
        assert session.get.call_args[1]["auth"] == ("key", "secret")
        assert _called_url(session).endswith("/demo/resources/video/upload/folder/vid")

    def test_unknown_artifact(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(404)
        with pytest.raises(MetadataError, match="Unknown artifact"):
            gateway.get_metadata(uploaded)

    def test_non_object_json(self, gateway, session, make_response, uploaded):
        session.get.return_value = make_response(200, json_data=[1, 2])
        with pytest.raises(MetadataError, match="Invalid metadata"):
            gateway.get_metadata(uploaded)

    def test_requires_credentials(self, session, uploaded):
        config = TransformConfig(cloud_name="demo", upload_preset="p")
        gw = TransformGateway(config, session=session)
        with pytest.raises(ConfigError):
            gw.get_metadata(uploaded)
