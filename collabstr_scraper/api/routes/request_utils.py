"""Request parsing and response helpers shared by the API blueprints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from flask import Request, jsonify

from collabstr_scraper.data.models import ProfileStatus


def parse_json_body(request: Request, *, required: bool = True) -> dict:
    payload = request.get_json(silent=True)
    if payload is None and not required:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


def parse_positive_int(
    request: Request,
    name: str,
    default: int,
    *,
    minimum: int = 1,
    maximum: int = 10000,
) -> int:
    raw = request.args.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer; received '{raw}'") from exc
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be in [{minimum}, {maximum}]")
    return value


def parse_optional_string(request: Request, name: str) -> Optional[str]:
    raw = request.args.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    return str(raw).strip()


def parse_status_filter(request: Request) -> Optional[str]:
    status = parse_optional_string(request, "status")
    if status is None:
        return None
    allowed = {item.value for item in ProfileStatus}
    if status not in allowed:
        raise ValueError(f"status must be one of {sorted(allowed)}")
    return status


def require_identifier_list(name: str, value: Any) -> list[str]:
    """Accept ``["id", ...]`` or ``[{"id": ...}, ...]``; blanks and repeats are dropped."""
    if not isinstance(value, list):
        raise ValueError(f"{name} must be an array")
    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        if isinstance(item, dict):
            item = item.get("id")
        if item is None:
            continue
        text = str(item).strip()
        if not text or text in seen:
            continue
        seen.add(text)
        normalized.append(text)
    return normalized


def optional_page(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("page must be an integer")
    try:
        page = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"page must be an integer; received '{value}'") from exc
    if page < 1:
        raise ValueError("page must be >= 1")
    return page


def serialize_row(row: dict) -> dict:
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in row.items()}


def error_response(message: str, status: int):
    return jsonify({"success": False, "error": message}), status
