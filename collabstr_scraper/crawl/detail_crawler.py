"""Detail crawl: enrich identity-only profiles with bounded parallel page visits."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..data.models import (
    DetailExtraction,
    DetailOutcome,
    Failed,
    Invalid,
    InvalidReason,
    ProgressSummary,
    RetryableFailure,
    Scraped,
)
from ..errors import PageTransportError
from .automation import PageAutomation, ProfileStoreContract

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetailCrawlConfig:
    batch_size: int = 20
    max_parallel: int = 2
    item_timeout_seconds: float = 30.0
    settle_delay_seconds: float = 3.0
    open_stagger_seconds: float = 0.5
    stop_grace_seconds: float = 120.0
    name_only_is_invalid: bool = True
    max_attempts_per_run: Optional[int] = 3
    session_id: Optional[str] = None
    retry_failed: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        if self.item_timeout_seconds <= 0:
            raise ValueError("item_timeout_seconds must be > 0")
        if self.max_attempts_per_run is not None and self.max_attempts_per_run < 1:
            raise ValueError("max_attempts_per_run must be >= 1 or None")


@dataclass(frozen=True)
class ItemResult:
    identifier: str
    outcome: DetailOutcome
    written: bool = False
    error: Optional[str] = None


@dataclass
class BatchReport:
    batch_number: int
    identifiers: List[str]
    outcomes: Counter = field(default_factory=Counter)
    errors: int = 0
    cancelled: int = 0
    skipped: int = 0

    @property
    def writes(self) -> int:
        return self.outcomes["scraped"] + self.outcomes["invalid"] + self.outcomes["failed"]


@dataclass
class DetailCrawlReport:
    batches: int = 0
    processed: int = 0
    scraped: int = 0
    invalid: int = 0
    failed: int = 0
    retryable: int = 0
    errors: int = 0
    cancelled: int = 0
    stopped: bool = False

    def add_batch(self, batch: BatchReport) -> None:
        self.batches += 1
        self.scraped += batch.outcomes["scraped"]
        self.invalid += batch.outcomes["invalid"]
        self.failed += batch.outcomes["failed"]
        self.retryable += batch.outcomes["retryable"]
        self.processed += sum(batch.outcomes.values())
        self.errors += batch.errors
        self.cancelled += batch.cancelled

    def as_dict(self) -> Dict[str, object]:
        return {
            "batches": self.batches,
            "processed": self.processed,
            "scraped": self.scraped,
            "invalid": self.invalid,
            "failed": self.failed,
            "retryable": self.retryable,
            "errors": self.errors,
            "cancelled": self.cancelled,
            "stopped": self.stopped,
        }


BatchCallback = Callable[[BatchReport, ProgressSummary], None]


def _outcome_key(outcome: DetailOutcome) -> str:
    if isinstance(outcome, Scraped):
        return "scraped"
    if isinstance(outcome, Invalid):
        return "invalid"
    if isinstance(outcome, Failed):
        return "failed"
    return "retryable"


def classify_extraction(extraction: DetailExtraction, *, name_only_is_invalid: bool = True) -> DetailOutcome:
    """Map what a detail page yielded onto a store outcome.

    A name plus any secondary field is a scrape. A bare name is structurally
    insufficient (or retried when ``name_only_is_invalid`` is off). Without a
    name, only explicit not-found markers make the profile invalid; anything
    else may be a half-loaded page and is retried.
    """
    details = extraction.details
    if details.name:
        if details.has_secondary_data():
            return Scraped(details)
        if name_only_is_invalid:
            return Invalid(InvalidReason.INSUFFICIENT_DATA.value)
        return RetryableFailure("name only")
    if extraction.not_found:
        return Invalid(InvalidReason.NOT_FOUND.value)
    return RetryableFailure("no profile name on page")


class DetailCrawler:
    """Pull identity-only profiles in batches and visit them with limited parallelism."""

    def __init__(
        self,
        store: ProfileStoreContract,
        automation: PageAutomation,
        config: Optional[DetailCrawlConfig] = None,
        *,
        on_batch_complete: Optional[BatchCallback] = None,
    ) -> None:
        self._store = store
        self._automation = automation
        self._config = config or DetailCrawlConfig()
        self._on_batch_complete = on_batch_complete
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self._attempts: Counter = Counter()
        self._given_up: Set[str] = set()
        self._open_lock: Optional[asyncio.Lock] = None
        self._last_open_at: Optional[float] = None

    @property
    def config(self) -> DetailCrawlConfig:
        return self._config

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Stop after in-flight items finish or the grace period runs out."""
        if not self._stop_requested:
            LOGGER.info(
                "STOP requested; in-flight profiles get %.0fs to finish",
                self._config.stop_grace_seconds,
            )
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    async def run(self) -> DetailCrawlReport:
        cfg = self._config
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._open_lock = asyncio.Lock()
        self._last_open_at = None
        self._attempts.clear()
        self._given_up.clear()

        report = DetailCrawlReport()
        semaphore = asyncio.Semaphore(cfg.max_parallel)
        LOGGER.info(
            "=== Detail crawl start: batch=%s parallel=%s timeout=%ss mode=%s ===",
            cfg.batch_size,
            cfg.max_parallel,
            cfg.item_timeout_seconds,
            "retry-failed" if cfg.retry_failed else "pending",
        )

        while not self._stop_requested:
            identifiers = self._next_batch()
            if not identifiers:
                LOGGER.info("No profiles left to enrich")
                break

            batch = BatchReport(batch_number=report.batches + 1, identifiers=identifiers)
            LOGGER.info("BATCH %s: %s profiles", batch.batch_number, len(identifiers))
            tasks = [
                asyncio.create_task(self._process_item(identifier, semaphore), name=f"detail:{identifier}")
                for identifier in identifiers
            ]
            results = await self._await_batch(tasks)
            self._tally(batch, results)
            report.add_batch(batch)

            LOGGER.info(
                "BATCH %s done: %s scraped, %s invalid, %s failed, %s retry, %s errors, %s cancelled",
                batch.batch_number,
                batch.outcomes["scraped"],
                batch.outcomes["invalid"],
                batch.outcomes["failed"],
                batch.outcomes["retryable"],
                batch.errors,
                batch.cancelled,
            )
            self._notify_batch(batch)

            if cfg.max_attempts_per_run is None and batch.writes == 0 and not self._stop_requested:
                LOGGER.warning("BATCH %s made no progress; ending run", batch.batch_number)
                break

        report.stopped = self._stop_requested
        LOGGER.info(
            "=== Detail crawl %s: %s processed (%s scraped, %s invalid, %s failed) over %s batches ===",
            "STOPPED" if report.stopped else "COMPLETE",
            report.processed,
            report.scraped,
            report.invalid,
            report.failed,
            report.batches,
        )
        return report

    def _next_batch(self) -> List[str]:
        cfg = self._config
        limit = cfg.batch_size + len(self._given_up)
        if cfg.retry_failed:
            candidates = self._store.fetch_failed_identities(limit)
        else:
            candidates = self._store.fetch_pending_identities(limit, cfg.session_id)
        return [identifier for identifier in candidates if identifier not in self._given_up][: cfg.batch_size]

    async def _await_batch(self, tasks: List["asyncio.Task"]) -> List[object]:
        """Wait for the whole batch; on stop, give in-flight items the grace period."""
        assert self._stop_event is not None
        batch_future = asyncio.gather(*tasks, return_exceptions=True)
        stop_waiter = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({batch_future, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_waiter.cancel()

        if not batch_future.done():
            _, pending = await asyncio.wait(tasks, timeout=self._config.stop_grace_seconds)
            if pending:
                LOGGER.warning("STOP grace period over; cancelling %s in-flight profiles", len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                await self._automation.force_release()

        return await batch_future

    def _tally(self, batch: BatchReport, results: List[object]) -> None:
        for result in results:
            if isinstance(result, ItemResult):
                batch.outcomes[_outcome_key(result.outcome)] += 1
                if result.error:
                    batch.errors += 1
            elif isinstance(result, asyncio.CancelledError):
                batch.cancelled += 1
            elif result is None:
                batch.skipped += 1
            elif isinstance(result, BaseException):
                LOGGER.error("Detail task crashed: %s", result)
                batch.errors += 1

    def _notify_batch(self, batch: BatchReport) -> None:
        if self._on_batch_complete is None:
            return
        try:
            progress = self._store.progress_summary(self._config.session_id)
        except Exception as exc:
            LOGGER.error("Could not read progress after batch %s: %s", batch.batch_number, exc)
            progress = ProgressSummary()
        self._on_batch_complete(batch, progress)

    # ------------------------------------------------------------------
    # Per-item work
    # ------------------------------------------------------------------
    async def _process_item(self, identifier: str, semaphore: asyncio.Semaphore) -> Optional[ItemResult]:
        cfg = self._config
        async with semaphore:
            if self._stop_requested:
                return None
            await self._stagger_open()
            try:
                extraction = await asyncio.wait_for(
                    self._extract(identifier), timeout=cfg.item_timeout_seconds
                )
                outcome = classify_extraction(extraction, name_only_is_invalid=cfg.name_only_is_invalid)
            except asyncio.TimeoutError:
                outcome = RetryableFailure(f"timed out after {cfg.item_timeout_seconds:g}s")
            except PageTransportError as exc:
                outcome = RetryableFailure(f"transport: {exc}")
            except Exception as exc:
                LOGGER.warning("Unexpected error extracting %s: %s", identifier, exc)
                outcome = RetryableFailure(f"unexpected: {exc}")

        outcome = self._escalate(identifier, outcome)
        return self._persist(identifier, outcome)

    async def _extract(self, identifier: str) -> DetailExtraction:
        async with self._automation.detail_page(identifier) as page:
            if self._config.settle_delay_seconds > 0:
                await asyncio.sleep(self._config.settle_delay_seconds)
            return await page.extract_details()

    async def _stagger_open(self) -> None:
        stagger = self._config.open_stagger_seconds
        if stagger <= 0 or self._open_lock is None:
            return
        loop = asyncio.get_running_loop()
        async with self._open_lock:
            if self._last_open_at is not None:
                wait_for = self._last_open_at + stagger - loop.time()
                if wait_for > 0:
                    await asyncio.sleep(wait_for)
            self._last_open_at = loop.time()

    def _escalate(self, identifier: str, outcome: DetailOutcome) -> DetailOutcome:
        limit = self._config.max_attempts_per_run
        if not isinstance(outcome, RetryableFailure) or limit is None:
            return outcome
        self._attempts[identifier] += 1
        if self._attempts[identifier] < limit:
            return outcome
        if self._config.retry_failed:
            self._given_up.add(identifier)
            LOGGER.warning("Giving up on %s for this run after %s attempts", identifier, limit)
            return outcome
        LOGGER.warning("Marking %s failed after %s attempts (%s)", identifier, limit, outcome.reason)
        return Failed(f"gave up after {limit} attempts: {outcome.reason}")

    def _persist(self, identifier: str, outcome: DetailOutcome) -> ItemResult:
        try:
            written = self._store.apply_detail_result(identifier, outcome)
        except Exception as exc:
            LOGGER.error("Could not store result for %s: %s", identifier, exc)
            self._given_up.add(identifier)
            return ItemResult(identifier, outcome, written=False, error=str(exc))

        if isinstance(outcome, Scraped):
            LOGGER.debug("Scraped %s (%s)", identifier, outcome.details.name)
        elif isinstance(outcome, RetryableFailure):
            LOGGER.debug("Will retry %s: %s", identifier, outcome.reason)
        else:
            LOGGER.debug("Stored %s for %s", _outcome_key(outcome), identifier)
        return ItemResult(identifier, outcome, written=written)
