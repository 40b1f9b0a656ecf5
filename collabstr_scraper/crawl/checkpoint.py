"""Resume checkpoint for the listing crawl, stored as a small JSON file."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResumeCheckpoint:
    page: int
    url: str
    saved_at: str


class CheckpointStore:
    """Persist the last listing page that was fully stored."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[ResumeCheckpoint]:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            return ResumeCheckpoint(
                page=int(payload["page"]),
                url=str(payload["url"]),
                saved_at=str(payload.get("saved_at", "")),
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Ignoring unreadable checkpoint %s: %s", self._path, exc)
            return None

    def save(self, page: int, url: str) -> ResumeCheckpoint:
        checkpoint = ResumeCheckpoint(page=page, url=url, saved_at=datetime.utcnow().isoformat())
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(asdict(checkpoint)), encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Checkpoint saved: page %s (%s)", page, url)
        return checkpoint

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()
            LOGGER.debug("Checkpoint cleared: %s", self._path)
