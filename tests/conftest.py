"""Shared test fixtures."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from anonforge.config import TransformConfig, VoiceConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _make_response(status=200, content=b"", json_data=None, reason="OK"):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    resp.reason = reason
    resp.text = str(json_data) if json_data is not None else ""
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        resp.json.return_value = json_data
    return resp


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def transform_config() -> TransformConfig:
    return TransformConfig(
        cloud_name="demo",
        upload_preset="anon_preset",
        api_key="key",
        api_secret="secret",
    )


@pytest.fixture
def voice_settings() -> VoiceConfig:
    return VoiceConfig(api_key="murf-key")


@pytest.fixture
def session():
    s = MagicMock(spec=requests.Session)
    s.prepare_request.side_effect = lambda req: req.prepare()
    return s
