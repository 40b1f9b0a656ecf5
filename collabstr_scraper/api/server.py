"""Flask application factory."""
from __future__ import annotations

import logging
import logging.handlers
import os
import time
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS

from collabstr_scraper.api.routes.core import core_bp
from collabstr_scraper.api.routes.profiles import profiles_bp
from collabstr_scraper.api.routes.sessions import sessions_bp
from collabstr_scraper.config import get_api_settings
from collabstr_scraper.data.profile_store import ProfileStore

logger = logging.getLogger(__name__)


def create_app(config_overrides: Optional[dict] = None, *, store: Optional[ProfileStore] = None) -> Flask:
    """Initialize and configure the Flask application.

    ``store`` injects a ready profile store (tests pass one backed by a temporary file);
    otherwise the store is opened lazily from ``PROFILE_DB_PATH``.
    """
    app = Flask(__name__)
    CORS(app)

    app.config["STARTUP_TIME"] = time.time()
    if config_overrides:
        app.config.update(config_overrides)
    if store is not None:
        app.config["PROFILE_STORE"] = store

    if not app.config.get("TESTING"):
        _configure_logging()

    app.register_blueprint(core_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(profiles_bp)

    @app.errorhandler(404)
    def _not_found(_exc):
        return jsonify({"success": False, "error": "not found"}), 404

    @app.errorhandler(405)
    def _method_not_allowed(_exc):
        return jsonify({"success": False, "error": "method not allowed"}), 405

    @app.errorhandler(500)
    def _internal_error(exc):
        logger.error("Unhandled API error: %s", exc)
        return jsonify({"success": False, "error": "internal server error"}), 500

    logger.info("Collabstr scraper API initialized")
    return app


def _configure_logging(log_dir: Path = Path("logs")) -> None:
    """Attach a rotating file handler for API diagnostics."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "api.log"

    log_level_name = os.getenv("API_LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    root = logging.getLogger()

    already_configured = any(
        isinstance(h, logging.handlers.RotatingFileHandler)
        and getattr(h, "baseFilename", "") == str(log_path.resolve())
        for h in root.handlers
    )
    if already_configured:
        return

    root.setLevel(log_level)

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=5
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
        )
    )
    root.addHandler(file_handler)


if __name__ == "__main__":
    settings = get_api_settings()
    create_app().run(host=settings.host, port=settings.port, debug=True)
