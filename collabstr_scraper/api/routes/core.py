"""Core health check routes."""
from __future__ import annotations

from flask import Blueprint, jsonify

from collabstr_scraper import __version__

core_bp = Blueprint("core", __name__)


@core_bp.route("/", methods=["GET"])
@core_bp.route("/api/health", methods=["GET"])
def health_check():
    """Simple health check."""
    return jsonify(
        {
            "status": "ok",
            "message": "Collabstr scraper API is running",
            "version": __version__,
        }
    )
