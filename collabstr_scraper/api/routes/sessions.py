"""Routes for list-crawl session bookkeeping."""
from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from collabstr_scraper.api.routes.request_utils import error_response, parse_json_body
from collabstr_scraper.api.runtime import get_profile_store
from collabstr_scraper.errors import SessionStateError

logger = logging.getLogger(__name__)

sessions_bp = Blueprint("sessions", __name__, url_prefix="/api")


@sessions_bp.route("/session/start", methods=["POST"])
def start_session():
    """Open a session; ``filters`` is stored verbatim."""
    try:
        payload = parse_json_body(request, required=False)
    except ValueError as exc:
        return error_response(str(exc), 400)

    filters = payload.get("filters") or {}
    if not isinstance(filters, dict):
        return error_response("filters must be an object", 400)

    try:
        session = get_profile_store().start_session(filters)
    except Exception as exc:
        logger.exception("failed to start session")
        return error_response(f"session start failed: {exc}", 500)

    return jsonify({"success": True, "sessionId": session.session_id, "session": session.as_dict()})


@sessions_bp.route("/session/end", methods=["POST"])
def end_session():
    try:
        payload = parse_json_body(request)
    except ValueError as exc:
        return error_response(str(exc), 400)

    session_id = str(payload.get("sessionId") or "").strip()
    if not session_id:
        return error_response("sessionId is required", 400)

    store = get_profile_store()
    if store.get_session(session_id) is None:
        return error_response(f"unknown session '{session_id}'", 404)

    try:
        session = store.end_session(session_id)
    except SessionStateError as exc:
        return error_response(str(exc), 409)
    except Exception as exc:
        logger.exception("failed to end session %s", session_id)
        return error_response(f"session end failed: {exc}", 500)

    return jsonify(
        {
            "success": True,
            "sessionId": session.session_id,
            "totalProfiles": session.total_profiles,
            "newProfiles": session.new_profiles,
            "totalPages": session.total_pages,
        }
    )


@sessions_bp.route("/sessions", methods=["GET"])
def list_sessions():
    sessions = get_profile_store().list_sessions()
    return jsonify(
        {
            "success": True,
            "count": len(sessions),
            "sessions": [session.as_dict() for session in sessions],
        }
    )


@sessions_bp.route("/sessions/<session_id>", methods=["GET"])
def get_session(session_id: str):
    session = get_profile_store().get_session(session_id)
    if session is None:
        return error_response(f"unknown session '{session_id}'", 404)
    return jsonify({"success": True, "session": session.as_dict()})
