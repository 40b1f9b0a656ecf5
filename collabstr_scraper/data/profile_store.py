"""Persistence for scraped profiles and list-crawl sessions."""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    func,
    literal_column,
    or_,
    select,
)
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql import text

from ..errors import SessionStateError, StatusTransitionError
from .models import (
    ALLOWED_SOURCE_STATUSES,
    PLATFORMS,
    CrawlSession,
    DetailOutcome,
    Failed,
    Invalid,
    ProfileStatus,
    ProgressSummary,
    RetryableFailure,
    Scraped,
)


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DETAIL_COLUMNS = ("name", "location", "bio", "review_rating", "review_count") + tuple(
    f"{platform}_{suffix}" for platform in PLATFORMS for suffix in ("link", "followers")
)

EXPORT_COLUMNS = (
    ("id",)
    + DETAIL_COLUMNS
    + ("status", "invalid_reason", "first_session_id", "first_page", "first_seen_at", "last_updated_at", "touch_count")
)


def _utcnow() -> datetime:
    return datetime.utcnow()


def new_session_id() -> str:
    """Opaque, time-derived session identifier."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ProfileStore:
    """Typed wrapper around the profile database."""

    PROFILE_TABLE = "profiles"
    SESSION_TABLE = "crawl_sessions"
    _RETRYABLE_SQLITE_ERRORS = ("disk i/o error", "database is locked")

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._metadata = MetaData()
        platform_columns: List[Column] = []
        for platform in PLATFORMS:
            platform_columns.append(Column(f"{platform}_link", String, nullable=True))
            platform_columns.append(Column(f"{platform}_followers", Integer, nullable=True))
        self._profile_table = Table(
            self.PROFILE_TABLE,
            self._metadata,
            Column("id", String, primary_key=True),
            Column("name", String, nullable=True),
            Column("location", String, nullable=True),
            Column("bio", String, nullable=True),
            Column("review_rating", Float, nullable=True),
            Column("review_count", Integer, nullable=True),
            *platform_columns,
            Column("status", String, nullable=True, default=ProfileStatus.ID_ONLY.value),
            Column("invalid_reason", String, nullable=True),
            Column("first_session_id", String, nullable=True),
            Column("first_page", Integer, nullable=True),
            Column("first_seen_at", DateTime(timezone=False), nullable=False),
            Column("last_updated_at", DateTime(timezone=False), nullable=True),
            Column("touch_count", Integer, nullable=False, default=1),
        )
        self._session_table = Table(
            self.SESSION_TABLE,
            self._metadata,
            Column("session_id", String, primary_key=True),
            Column("started_at", DateTime(timezone=False), nullable=False),
            Column("ended_at", DateTime(timezone=False), nullable=True),
            Column("filters", JSON, nullable=True),
            Column("total_profiles", Integer, nullable=False, default=0),
            Column("new_profiles", Integer, nullable=False, default=0),
            Column("total_pages", Integer, nullable=False, default=0),
        )
        self._metadata.create_all(self._engine, checkfirst=True)
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ensure_schema(self) -> None:
        """Apply lightweight migrations for databases created by older builds."""
        def _migrate(engine: Engine) -> None:
            with engine.begin() as conn:
                result = conn.execute(text(f"PRAGMA table_info({self.PROFILE_TABLE})"))
                columns = {row[1] for row in result}
                migrations: list[tuple[str, str]] = [
                    ("invalid_reason", "TEXT"),
                    ("first_session_id", "TEXT"),
                    ("first_page", "INTEGER"),
                    ("touch_count", "INTEGER DEFAULT 1"),
                ]
                for platform in PLATFORMS:
                    migrations.append((f"{platform}_link", "TEXT"))
                    migrations.append((f"{platform}_followers", "INTEGER"))
                for column_name, column_type in migrations:
                    if column_name not in columns:
                        conn.execute(
                            text(
                                f"ALTER TABLE {self.PROFILE_TABLE} ADD COLUMN {column_name} {column_type}"
                            )
                        )

                result = conn.execute(text(f"PRAGMA table_info({self.SESSION_TABLE})"))
                session_columns = {row[1] for row in result}
                if "new_profiles" not in session_columns:
                    conn.execute(
                        text(
                            f"ALTER TABLE {self.SESSION_TABLE} "
                            "ADD COLUMN new_profiles INTEGER DEFAULT 0"
                        )
                    )

        self._execute_with_retry("ensure_schema", _migrate)

    def _execute_with_retry(
        self,
        op_name: str,
        fn: Callable[[Engine], T],
        *,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
    ) -> T:
        last_exc: Optional[OperationalError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                return fn(self._engine)
            except OperationalError as exc:
                if getattr(exc, "orig", None) is not None:
                    message = str(exc.orig).lower()
                else:
                    message = str(exc).lower()

                if not any(token in message for token in self._RETRYABLE_SQLITE_ERRORS):
                    raise

                last_exc = exc
                LOGGER.error(
                    "Retryable SQLite error during %s (attempt %s/%s): %s",
                    op_name,
                    attempt,
                    max_attempts,
                    message or exc,
                )
                self._engine.dispose()

                if attempt == max_attempts:
                    break

                sleep_for = base_delay_seconds * (2 ** (attempt - 1))
                time.sleep(sleep_for)

        assert last_exc is not None
        LOGGER.error(
            "Exhausted retries for %s after %s attempts; re-raising.",
            op_name,
            max_attempts,
        )
        raise last_exc

    @staticmethod
    def _normalize_ids(ids: Iterable[str]) -> List[str]:
        normalized: List[str] = []
        seen: set[str] = set()
        for raw in ids:
            if raw is None:
                continue
            identifier = str(raw).strip()
            if not identifier or identifier in seen:
                continue
            seen.add(identifier)
            normalized.append(identifier)
        return normalized

    def _pending_condition(self):
        status = self._profile_table.c.status
        return or_(status == ProfileStatus.ID_ONLY.value, status.is_(None))

    # ------------------------------------------------------------------
    # Identity reservation
    # ------------------------------------------------------------------
    def upsert_identity_batch(
        self,
        ids: Sequence[str],
        *,
        session_id: Optional[str] = None,
        page: Optional[int] = None,
    ) -> int:
        """Reserve identifiers that are not stored yet; existing rows are left untouched."""
        identifiers = self._normalize_ids(ids)
        if not identifiers:
            return 0

        now = _utcnow()
        rows = [
            {
                "id": identifier,
                "status": ProfileStatus.ID_ONLY.value,
                "first_session_id": session_id,
                "first_page": page,
                "first_seen_at": now,
                "touch_count": 1,
            }
            for identifier in identifiers
        ]

        def _op(engine: Engine) -> int:
            with engine.begin() as conn:
                stmt = insert(self._profile_table).values(rows)
                # Conflicting rows are skipped, so rowcount is the number actually inserted.
                result = conn.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
                inserted = max(result.rowcount, 0)
                if session_id:
                    self._bump_session_counters(conn, session_id, len(identifiers), inserted, page)
                return inserted

        inserted = self._execute_with_retry("upsert_identity_batch", _op)
        LOGGER.debug(
            "Reserved %s/%s identifiers (session=%s, page=%s)",
            inserted,
            len(identifiers),
            session_id or "-",
            page if page is not None else "-",
        )
        return inserted

    def _bump_session_counters(
        self,
        conn: Connection,
        session_id: str,
        seen: int,
        inserted: int,
        page: Optional[int],
    ) -> None:
        table = self._session_table
        values: Dict[str, Any] = {
            "total_profiles": table.c.total_profiles + seen,
            "new_profiles": table.c.new_profiles + inserted,
        }
        if page is not None:
            values["total_pages"] = func.max(table.c.total_pages, page)
        result = conn.execute(table.update().where(table.c.session_id == session_id).values(**values))
        if result.rowcount == 0:
            LOGGER.warning("Identity batch referenced unknown session %s", session_id)

    # ------------------------------------------------------------------
    # Work selection
    # ------------------------------------------------------------------
    def fetch_pending_identities(self, limit: int, session_id: Optional[str] = None) -> List[str]:
        """Return identity-only identifiers in insertion order."""
        if limit <= 0:
            return []

        def _op(engine: Engine) -> List[str]:
            with engine.connect() as conn:
                stmt = select(self._profile_table.c.id).where(self._pending_condition())
                if session_id:
                    stmt = stmt.where(self._profile_table.c.first_session_id == session_id)
                stmt = stmt.order_by(literal_column("rowid")).limit(limit)
                return [row.id for row in conn.execute(stmt)]

        return self._execute_with_retry("fetch_pending_identities", _op)

    def fetch_failed_identities(self, limit: int) -> List[str]:
        """Return failed identifiers in insertion order for an explicit retry pass."""
        if limit <= 0:
            return []

        def _op(engine: Engine) -> List[str]:
            with engine.connect() as conn:
                stmt = (
                    select(self._profile_table.c.id)
                    .where(self._profile_table.c.status == ProfileStatus.FAILED.value)
                    .order_by(literal_column("rowid"))
                    .limit(limit)
                )
                return [row.id for row in conn.execute(stmt)]

        return self._execute_with_retry("fetch_failed_identities", _op)

    # ------------------------------------------------------------------
    # Detail results
    # ------------------------------------------------------------------
    def apply_detail_result(self, identifier: str, outcome: DetailOutcome) -> bool:
        """Persist the outcome of one detail extraction.

        Returns True when a row was written. ``RetryableFailure`` never writes,
        which keeps the identifier eligible for ``fetch_pending_identities``.
        Raises ``StatusTransitionError`` when the stored status is terminal for
        the requested change.
        """
        if isinstance(outcome, RetryableFailure):
            LOGGER.debug("Retryable failure for %s left untouched: %s", identifier, outcome.reason or "-")
            return False

        values: Dict[str, Any]
        if isinstance(outcome, Scraped):
            target = ProfileStatus.SCRAPED
            details = outcome.details
            values = {column: None for column in DETAIL_COLUMNS}
            values.update(
                {
                    "name": details.name,
                    "location": details.location,
                    "bio": details.bio,
                    "review_rating": details.review_rating,
                    "review_count": details.review_count,
                }
            )
            values.update(details.platform_columns())
            values["invalid_reason"] = None
        elif isinstance(outcome, Invalid):
            target = ProfileStatus.INVALID
            values = {"invalid_reason": outcome.reason or None}
        elif isinstance(outcome, Failed):
            target = ProfileStatus.FAILED
            values = {}
        else:
            raise TypeError(f"unsupported detail outcome {type(outcome)!r}")

        now = _utcnow()
        values["status"] = target.value
        values["last_updated_at"] = now
        allowed = ALLOWED_SOURCE_STATUSES[target]

        def _op(engine: Engine) -> bool:
            table = self._profile_table
            with engine.begin() as conn:
                current = conn.execute(
                    select(table.c.status).where(table.c.id == identifier)
                ).fetchone()
                if current is None:
                    conn.execute(
                        insert(table).values(
                            id=identifier,
                            first_seen_at=now,
                            touch_count=1,
                            **values,
                        )
                    )
                    return True
                if current.status not in allowed:
                    raise StatusTransitionError(identifier, current.status, target.value)
                conn.execute(
                    table.update()
                    .where(table.c.id == identifier)
                    .values(touch_count=table.c.touch_count + 1, **values)
                )
                return True

        written = self._execute_with_retry("apply_detail_result", _op)
        LOGGER.debug("Stored %s for %s", target.value, identifier)
        return written

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def progress_summary(self, session_id: Optional[str] = None) -> ProgressSummary:
        def _op(engine: Engine) -> Dict[Optional[str], int]:
            table = self._profile_table
            with engine.connect() as conn:
                stmt = select(table.c.status, func.count().label("count")).group_by(table.c.status)
                if session_id:
                    stmt = stmt.where(table.c.first_session_id == session_id)
                return {row.status: row.count for row in conn.execute(stmt)}

        counts = self._execute_with_retry("progress_summary", _op)
        return ProgressSummary(
            total=sum(counts.values()),
            scraped=counts.get(ProfileStatus.SCRAPED.value, 0),
            id_only=counts.get(ProfileStatus.ID_ONLY.value, 0) + counts.get(None, 0),
            failed=counts.get(ProfileStatus.FAILED.value, 0),
            invalid=counts.get(ProfileStatus.INVALID.value, 0),
        )

    def page_stats(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Profile counts grouped by the listing page each identifier was first seen on."""
        def _op(engine: Engine) -> List[Any]:
            table = self._profile_table
            with engine.connect() as conn:
                stmt = select(table.c.first_page, func.count().label("count")).group_by(table.c.first_page)
                if session_id:
                    stmt = stmt.where(table.c.first_session_id == session_id)
                return conn.execute(stmt.order_by(table.c.first_page)).fetchall()

        rows = self._execute_with_retry("page_stats", _op)
        per_page = [{"page": row.first_page, "count": row.count} for row in rows if row.first_page is not None]
        return {
            "totalProfiles": sum(row.count for row in rows),
            "totalPages": max((entry["page"] for entry in per_page), default=0),
            "profilesPerPage": per_page,
        }

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def start_session(self, filters: Optional[Dict[str, Any]] = None) -> CrawlSession:
        session = CrawlSession(
            session_id=new_session_id(),
            started_at=_utcnow(),
            filters=dict(filters or {}),
        )

        def _op(engine: Engine) -> None:
            with engine.begin() as conn:
                conn.execute(
                    insert(self._session_table).values(
                        session_id=session.session_id,
                        started_at=session.started_at,
                        filters=session.filters,
                        total_profiles=0,
                        new_profiles=0,
                        total_pages=0,
                    )
                )

        self._execute_with_retry("start_session", _op)
        LOGGER.info("Session started: %s filters=%s", session.session_id, session.filters)
        return session

    def end_session(self, session_id: str) -> CrawlSession:
        """Close a session; raises ``SessionStateError`` if unknown or already closed."""
        def _op(engine: Engine) -> CrawlSession:
            table = self._session_table
            with engine.begin() as conn:
                row = conn.execute(select(table).where(table.c.session_id == session_id)).fetchone()
                if row is None:
                    raise SessionStateError(f"unknown session '{session_id}'")
                if row.ended_at is not None:
                    raise SessionStateError(f"session '{session_id}' already ended at {row.ended_at.isoformat()}")
                conn.execute(
                    table.update().where(table.c.session_id == session_id).values(ended_at=_utcnow())
                )
                updated = conn.execute(select(table).where(table.c.session_id == session_id)).fetchone()
                return self._session_from_row(updated._mapping)

        session = self._execute_with_retry("end_session", _op)
        LOGGER.info(
            "Session ended: %s - %s profiles (%s new) over %s pages",
            session.session_id,
            session.total_profiles,
            session.new_profiles,
            session.total_pages,
        )
        return session

    def get_session(self, session_id: str) -> Optional[CrawlSession]:
        def _op(engine: Engine):
            table = self._session_table
            with engine.connect() as conn:
                return conn.execute(select(table).where(table.c.session_id == session_id)).fetchone()

        row = self._execute_with_retry("get_session", _op)
        return self._session_from_row(row._mapping) if row else None

    def list_sessions(self) -> List[CrawlSession]:
        def _op(engine: Engine):
            table = self._session_table
            with engine.connect() as conn:
                stmt = select(table).order_by(table.c.started_at.desc(), table.c.session_id.desc())
                return conn.execute(stmt).fetchall()

        return [self._session_from_row(row._mapping) for row in self._execute_with_retry("list_sessions", _op)]

    @staticmethod
    def _session_from_row(row) -> CrawlSession:
        return CrawlSession(
            session_id=row["session_id"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            filters=row["filters"] or {},
            total_profiles=row["total_profiles"] or 0,
            new_profiles=row["new_profiles"] or 0,
            total_pages=row["total_pages"] or 0,
        )

    # ------------------------------------------------------------------
    # Reads, export and maintenance
    # ------------------------------------------------------------------
    def get_profile(self, identifier: str) -> Optional[dict]:
        def _op(engine: Engine):
            with engine.connect() as conn:
                return conn.execute(
                    select(self._profile_table).where(self._profile_table.c.id == identifier)
                ).fetchone()

        row = self._execute_with_retry("get_profile", _op)
        return dict(row._mapping) if row else None

    def fetch_profiles(
        self,
        *,
        status: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> List[dict]:
        def _op(engine: Engine) -> List[dict]:
            table = self._profile_table
            with engine.connect() as conn:
                stmt = select(table)
                if status == ProfileStatus.ID_ONLY.value:
                    stmt = stmt.where(self._pending_condition())
                elif status:
                    stmt = stmt.where(table.c.status == status)
                if session_id:
                    stmt = stmt.where(table.c.first_session_id == session_id)
                stmt = stmt.order_by(literal_column("rowid")).limit(limit).offset(offset)
                return [dict(row._mapping) for row in conn.execute(stmt)]

        return self._execute_with_retry("fetch_profiles", _op)

    def export_rows(self, session_id: Optional[str] = None) -> List[dict]:
        """All profile rows restricted to ``EXPORT_COLUMNS``, in insertion order."""
        def _op(engine: Engine) -> List[dict]:
            table = self._profile_table
            with engine.connect() as conn:
                stmt = select(*[table.c[name] for name in EXPORT_COLUMNS])
                if session_id:
                    stmt = stmt.where(table.c.first_session_id == session_id)
                stmt = stmt.order_by(literal_column("rowid"))
                return [dict(row._mapping) for row in conn.execute(stmt)]

        return self._execute_with_retry("export_rows", _op)

    def clear_profiles(self, session_id: Optional[str] = None) -> int:
        """Bulk delete profiles (and their session rows); returns deleted profile count."""
        def _op(engine: Engine) -> int:
            profiles = self._profile_table
            sessions = self._session_table
            with engine.begin() as conn:
                if session_id:
                    result = conn.execute(
                        profiles.delete().where(profiles.c.first_session_id == session_id)
                    )
                    conn.execute(sessions.delete().where(sessions.c.session_id == session_id))
                else:
                    result = conn.execute(profiles.delete())
                    conn.execute(sessions.delete())
                return result.rowcount

        deleted = self._execute_with_retry("clear_profiles", _op)
        LOGGER.warning("Deleted %s profiles (session=%s)", deleted, session_id or "all")
        return deleted

    def all_identifiers(self) -> List[str]:
        def _op(engine: Engine) -> List[str]:
            with engine.connect() as conn:
                stmt = select(self._profile_table.c.id).order_by(literal_column("rowid"))
                return [row.id for row in conn.execute(stmt)]

        return self._execute_with_retry("all_identifiers", _op)

    def purge_identifiers(self, ids: Iterable[str]) -> int:
        identifiers = self._normalize_ids(ids)
        if not identifiers:
            return 0

        def _op(engine: Engine) -> int:
            with engine.begin() as conn:
                result = conn.execute(
                    self._profile_table.delete().where(self._profile_table.c.id.in_(identifiers))
                )
                return result.rowcount

        return self._execute_with_retry("purge_identifiers", _op)


def get_profile_store(engine: Engine) -> ProfileStore:
    """Helper for one-line store construction."""

    return ProfileStore(engine)
