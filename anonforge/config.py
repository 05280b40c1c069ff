"""Service settings loaded from the environment (and an optional .env file)."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from anonforge.errors import ConfigError


@dataclass
class TransformConfig:
    """Settings for the media transformation service."""

    cloud_name: str
    upload_preset: str
    api_key: str | None = None
    api_secret: str | None = None
    api_url: str = "https://api.cloudinary.com/v1_1"
    delivery_url: str = "https://res.cloudinary.com"
    timeout: float = 120.0

    def upload_url(self, resource_type: str = "video") -> str:
        return f"{self.api_url}/{self.cloud_name}/{resource_type}/upload"


@dataclass
class VoiceConfig:
    """Settings for the voice conversion service."""

    api_key: str | None
    api_url: str = "https://api.murf.ai/v1/voice-changer"
    timeout: float = 120.0


@dataclass
class ServiceConfig:
    transform: TransformConfig
    voice: VoiceConfig


def load_config(env_file: str | None = None) -> ServiceConfig:
    """Build a ServiceConfig from environment variables.

    A ``.env`` file is read first if present; real environment variables win.
    """
    load_dotenv(env_file)

    cloud_name = os.getenv("CLOUDINARY_CLOUD_NAME")
    upload_preset = os.getenv("CLOUDINARY_UPLOAD_PRESET")
    if not cloud_name or not upload_preset:
        raise ConfigError(
            "CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET must be set"
        )

    timeout = float(os.getenv("ANONFORGE_REQUEST_TIMEOUT", "120"))

    transform = TransformConfig(
        cloud_name=cloud_name,
        upload_preset=upload_preset,
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        api_url=os.getenv("CLOUDINARY_API_URL", "https://api.cloudinary.com/v1_1"),
        delivery_url=os.getenv("CLOUDINARY_DELIVERY_URL", "https://res.cloudinary.com"),
        timeout=timeout,
    )
    voice = VoiceConfig(
        api_key=os.getenv("MURF_API_KEY"),
        api_url=os.getenv("MURF_API_URL", "https://api.murf.ai/v1/voice-changer"),
        timeout=timeout,
    )
    return ServiceConfig(transform=transform, voice=voice)
