"""Flask application factory for the AnonForge web API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from anonforge.gateways.transform import TransformGateway
from anonforge.gateways.voice import VoiceGateway


def create_app(
    work_dir: Path | None = None,
    transform: TransformGateway | None = None,
    voice: VoiceGateway | None = None,
) -> Flask:
    """Build the app. Gateways default to ones built from the environment."""
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="anonforge_"))
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024  # 2 GB
    app.config["TRANSFORM_GATEWAY"] = transform
    app.config["VOICE_GATEWAY"] = voice

    from anonforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
