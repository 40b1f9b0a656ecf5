"""Routes for profile ingest, enrichment results, progress and export."""
from __future__ import annotations

import csv
import io
import logging
from datetime import datetime

from flask import Blueprint, Response, jsonify, request

from collabstr_scraper.api.routes.request_utils import (
    error_response,
    optional_page,
    parse_json_body,
    parse_optional_string,
    parse_positive_int,
    parse_status_filter,
    require_identifier_list,
    serialize_row,
)
from collabstr_scraper.api.runtime import get_profile_store
from collabstr_scraper.data.models import (
    Failed,
    Invalid,
    InvalidReason,
    ProfileDetails,
    ProfileStatus,
    RetryableFailure,
    Scraped,
)
from collabstr_scraper.data.profile_store import EXPORT_COLUMNS
from collabstr_scraper.errors import StatusTransitionError

logger = logging.getLogger(__name__)

profiles_bp = Blueprint("profiles", __name__, url_prefix="/api")

MAX_PROFILES_PER_POST = 5000


@profiles_bp.route("/profiles", methods=["POST"])
def ingest_profiles():
    """Reserve identifiers found on a listing page."""
    try:
        payload = parse_json_body(request)
        identifiers = require_identifier_list("profiles", payload.get("profiles"))
        page = optional_page(payload.get("page"))
    except ValueError as exc:
        return error_response(str(exc), 400)
    if len(identifiers) > MAX_PROFILES_PER_POST:
        return error_response(f"profiles batch too large; max {MAX_PROFILES_PER_POST}", 400)

    session_id = str(payload.get("sessionId") or "").strip() or None
    try:
        inserted = get_profile_store().upsert_identity_batch(identifiers, session_id=session_id, page=page)
    except Exception as exc:
        logger.exception("failed to store %s profiles (session=%s)", len(identifiers), session_id)
        return error_response(f"profile ingest failed: {exc}", 500)

    return jsonify({"success": True, "received": len(identifiers), "inserted": inserted})


@profiles_bp.route("/profiles", methods=["GET"])
def list_profiles():
    try:
        status = parse_status_filter(request)
        limit = parse_positive_int(request, "limit", 100)
        offset = parse_positive_int(request, "offset", 0, minimum=0, maximum=10_000_000)
    except ValueError as exc:
        return error_response(str(exc), 400)

    rows = get_profile_store().fetch_profiles(
        status=status,
        session_id=parse_optional_string(request, "sessionId"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"success": True, "count": len(rows), "profiles": [serialize_row(row) for row in rows]})


@profiles_bp.route("/profiles/unscraped", methods=["GET"])
def list_unscraped_profiles():
    try:
        limit = parse_positive_int(request, "limit", 20)
    except ValueError as exc:
        return error_response(str(exc), 400)
    ids = get_profile_store().fetch_pending_identities(limit, parse_optional_string(request, "sessionId"))
    return jsonify({"success": True, "count": len(ids), "profiles": [{"id": identifier} for identifier in ids]})


@profiles_bp.route("/profiles/failed", methods=["GET"])
def list_failed_profiles():
    try:
        limit = parse_positive_int(request, "limit", 20)
    except ValueError as exc:
        return error_response(str(exc), 400)
    ids = get_profile_store().fetch_failed_identities(limit)
    return jsonify({"success": True, "count": len(ids), "profiles": [{"id": identifier} for identifier in ids]})


@profiles_bp.route("/profiles/progress", methods=["GET"])
def profile_progress():
    progress = get_profile_store().progress_summary(parse_optional_string(request, "sessionId"))
    return jsonify({"success": True, "progress": progress.as_dict()})


@profiles_bp.route("/stats", methods=["GET"])
def profile_stats():
    stats = get_profile_store().page_stats(parse_optional_string(request, "sessionId"))
    return jsonify({"success": True, "stats": stats})


@profiles_bp.route("/profiles/<identifier>", methods=["GET"])
def get_profile(identifier: str):
    row = get_profile_store().get_profile(identifier)
    if row is None:
        return error_response(f"unknown profile '{identifier}'", 404)
    return jsonify({"success": True, "profile": serialize_row(row)})


@profiles_bp.route("/profiles/<identifier>", methods=["PUT"])
def update_profile(identifier: str):
    """Record the outcome of a detail visit.

    ``status`` defaults to ``scraped``; ``invalid`` and ``failed`` take an
    optional ``reason``; ``id_only`` acknowledges a retryable failure without
    writing anything.
    """
    try:
        payload = parse_json_body(request)
        status = str(payload.get("status") or ProfileStatus.SCRAPED.value).strip()
        reason = str(payload.get("reason") or "").strip()
        if status == ProfileStatus.SCRAPED.value:
            details = ProfileDetails.from_payload(payload)
            if not details.name:
                raise ValueError("name is required for scraped profiles")
            outcome = Scraped(details)
        elif status == ProfileStatus.INVALID.value:
            outcome = Invalid(reason or InvalidReason.INSUFFICIENT_DATA.value)
        elif status == ProfileStatus.FAILED.value:
            outcome = Failed(reason)
        elif status == ProfileStatus.ID_ONLY.value:
            outcome = RetryableFailure(reason)
        else:
            raise ValueError(f"unsupported status '{status}'")
    except ValueError as exc:
        return error_response(str(exc), 400)

    try:
        written = get_profile_store().apply_detail_result(identifier, outcome)
    except StatusTransitionError as exc:
        return error_response(str(exc), 409)
    except Exception as exc:
        logger.exception("failed to update profile %s", identifier)
        return error_response(f"profile update failed: {exc}", 500)

    return jsonify({"success": True, "id": identifier, "status": status, "updated": written})


@profiles_bp.route("/profiles", methods=["DELETE"])
def clear_profiles():
    session_id = parse_optional_string(request, "sessionId")
    try:
        deleted = get_profile_store().clear_profiles(session_id)
    except Exception as exc:
        logger.exception("failed to clear profiles (session=%s)", session_id)
        return error_response(f"clear failed: {exc}", 500)
    return jsonify({"success": True, "deleted": deleted})


@profiles_bp.route("/export/csv", methods=["GET"])
def export_csv():
    session_id = parse_optional_string(request, "sessionId")
    rows = get_profile_store().export_rows(session_id)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(EXPORT_COLUMNS), extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({key: "" if value is None else value for key, value in serialize_row(row).items()})

    filename = f"collabstr_profiles_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
