"""Voice catalog and per-voice conversion settings."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    style: str
    language: str
    accent: str
    gender: str


VOICES: list[Voice] = [
    Voice("hi-IN-rahul", "Rahul", "General", "Hindi", "Indian", "male"),
    Voice("en-IN-eashwar", "Eashwar", "Conversational", "English", "Indian", "male"),
    Voice("ta-IN-iniya", "Iniya", "Narration", "Tamil/English", "Indian", "female"),
    Voice("en-IN-arohi", "Arohi", "Promo", "English", "Indian", "female"),
    Voice("en-IN-priya", "Priya", "Narration", "English", "Indian", "female"),
    Voice("hi-IN-ayushi", "Ayushi", "Conversational", "Hindi", "Indian", "female"),
    Voice("hi-IN-shweta", "Shweta", "Promo", "Hindi", "Indian", "female"),
]

DEFAULT_VOICE = "hi-IN-rahul"
GENERIC_STYLE = "Conversational"

# voice id -> (style, fallback voice id)
_VOICE_CONFIG: dict[str, tuple[str, str]] = {
    "hi-IN-rahul": ("General", "en-US-ken"),
    "en-IN-eashwar": ("Conversational", "en-US-ken"),
    "en-IN-arohi": ("Promo", "en-US-sarah"),
    "en-IN-priya": ("Narration", "en-US-sarah"),
    "hi-IN-ayushi": ("Conversational", "en-US-sarah"),
}
_DEFAULT_CONFIG = (GENERIC_STYLE, "en-US-ken")


def voice_config(voice_id: str) -> tuple[str, str]:
    """Return ``(style, fallback_voice_id)`` for a voice."""
    return _VOICE_CONFIG.get(voice_id, _DEFAULT_CONFIG)


def get_voice(voice_id: str) -> Voice:
    """Look up a voice, falling back to the default voice when unknown."""
    for v in VOICES:
        if v.id == voice_id:
            return v
    return next(v for v in VOICES if v.id == DEFAULT_VOICE)


def voices_by_gender(gender: str) -> list[Voice]:
    return [v for v in VOICES if v.gender == gender]
