"""
Sync Coordinator: moves changes between the Local State Cache and the record store.

Push sends every queued change with its ``updated_at``; the store applies it
only if strictly newer, and both outcomes dequeue it. Pull fetches records
changed after the watermark and merges them into the cache. Transport
failures leave changes queued and retry them with exponential backoff.

The coordinator can be driven one step at a time (``push_pending``,
``pull``, ``sync_once``, ``full_sync``) or run on a background thread with
``start``/``stop``.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from pydantic import ValidationError

from filmsync.client.api_client import RecordStoreClient
from filmsync.client.config import SyncSettings
from filmsync.client.local_store import LocalStateCache, StateChange
from filmsync.client.queue import ChangeOp, QueueEntry, RecordKind
from filmsync.core.errors import IdentityMissingError, RejectedChangeError, TransportError
from filmsync.core.records import FilmStatusRecord, PreferencesRecord, utc_now
from filmsync.database.crud import DeleteOutcome, UpsertOutcome

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    SIGNED_OUT = "signed_out"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SyncStatus:
    """
    Health snapshot for the UI.

    Attributes:
        state: Current coordinator state
        pending: Number of queued changes
        last_success_at: End of the last pass that reached the record store
        failing_since: Start of the current run of failures, if any
        degraded: Failures have lasted longer than ``degraded_after``
    """

    state: SyncState
    pending: int
    last_success_at: Optional[datetime]
    failing_since: Optional[datetime]
    degraded: bool


@dataclass
class PushReport:
    applied: int = 0
    stale: int = 0
    failed: int = 0
    rejected: int = 0

    @property
    def attempted(self) -> int:
        return self.applied + self.stale + self.failed + self.rejected


@dataclass
class PullReport:
    received: int = 0
    applied: int = 0
    removed: int = 0
    failed: bool = False
    watermark: Optional[datetime] = None


StatusListener = Callable[[SyncStatus], None]


class SyncCoordinator:
    """
    Background synchronization for one signed-in user.

    Usage:
        coordinator = SyncCoordinator(cache, RecordStoreClient(user_id="user_1"))
        coordinator.start()
        ...
        coordinator.stop()
    """

    def __init__(
        self,
        cache: LocalStateCache,
        client: RecordStoreClient,
        settings: Optional[SyncSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None
    ):
        self.cache = cache
        self.client = client
        self.settings = settings or SyncSettings()
        self._clock = clock
        self._rng = rng or random.Random()

        self._lock = threading.Lock()
        self._sync_lock = threading.RLock()  # one pass at a time
        self._state = SyncState.IDLE if client.user_id else SyncState.SIGNED_OUT
        self._last_success_at: Optional[datetime] = None
        self._failing_since: Optional[datetime] = None
        self._status_listeners: List[StatusListener] = []

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._push_at: Optional[float] = None
        self._sync_requested = False
        self._full_sync_requested = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ==================== STATUS ====================

    def status(self) -> SyncStatus:
        with self._lock:
            failing_since = self._failing_since
            degraded = (
                failing_since is not None
                and (self._clock() - failing_since).total_seconds() >= self.settings.degraded_after
            )
            return SyncStatus(
                state=self._state,
                pending=len(self.cache.pending()),
                last_success_at=self._last_success_at,
                failing_since=failing_since,
                degraded=degraded,
            )

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register a callback run on every status change; returns an unsubscribe function."""
        with self._lock:
            self._status_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._status_listeners:
                    self._status_listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: SyncState) -> None:
        with self._lock:
            if self._state is SyncState.SIGNED_OUT and state not in (
                SyncState.SIGNED_OUT, SyncState.STOPPED
            ):
                return
            self._state = state
            listeners = list(self._status_listeners)
        status = self.status()
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")

    def _record_success(self, full_sync: bool = False) -> None:
        with self._lock:
            if self._failing_since is not None and not full_sync:
                # Back online: catch up on what incremental pulls cannot see
                self._full_sync_requested = True
            self._last_success_at = self._clock()
            self._failing_since = None
        self._set_state(SyncState.IDLE)

    def _record_failure(self) -> None:
        with self._lock:
            if self._failing_since is None:
                self._failing_since = self._clock()
        self._set_state(SyncState.OFFLINE)

    def _signed_out(self, reason: str) -> None:
        logger.warning("Sync halted, no usable identity: %s", reason)
        with self._lock:
            self._state = SyncState.SIGNED_OUT
        self._set_state(SyncState.SIGNED_OUT)

    def _has_identity(self) -> bool:
        if self._state is SyncState.SIGNED_OUT:
            return False
        if not self.client.user_id:
            self._signed_out("no user id")
            return False
        return True

    # ==================== BACKOFF ====================

    def compute_backoff(self, attempts: int) -> float:
        """
        Delay before retry number ``attempts`` (1-based), in seconds.

        ``min(cap, base * 2**(attempts-1))`` spread by +/- ``backoff_jitter``.
        """
        delay = min(
            self.settings.backoff_cap,
            self.settings.backoff_base * 2 ** max(attempts - 1, 0),
        )
        spread = delay * self.settings.backoff_jitter
        return max(0.0, delay + self._rng.uniform(-spread, spread))

    # ==================== PUSH ====================

    def push_pending(self) -> PushReport:
        """
        Send every queued change whose retry delay has elapsed.

        After a transport failure the remaining changes are deferred as well,
        since the record store is unreachable for all of them.

        Returns:
            PushReport with applied/stale/failed/rejected counts
        """
        report = PushReport()
        with self._sync_lock:
            if not self._has_identity():
                return report
            now = self._clock()
            entries = self.cache.due(now)
            for index, entry in enumerate(entries):
                try:
                    self._push_entry(entry, report)
                except TransportError as e:
                    logger.warning("Push of %s failed: %s", entry.key, e)
                    for pending in entries[index:]:
                        report.failed += 1
                        delay = self.compute_backoff(pending.attempts + 1)
                        self.cache.defer(pending, now + timedelta(seconds=delay))
                    break
                except (RejectedChangeError, ValidationError) as e:
                    report.rejected += 1
                    self.cache.drop(entry)
                    logger.error("Dropping change %s refused by the record store: %s", entry.key, e)
                except IdentityMissingError as e:
                    self._signed_out(str(e))
                    return report

            if report.failed:
                self._record_failure()
            elif report.attempted:
                self._record_success()
        if report.attempted:
            logger.info(
                "Push: %d applied, %d stale, %d failed, %d rejected",
                report.applied, report.stale, report.failed, report.rejected
            )
        return report

    def _push_entry(self, entry: QueueEntry, report: PushReport) -> None:
        if entry.kind is RecordKind.FILM and entry.op is ChangeOp.DELETE:
            outcome = self.client.delete_film_status(entry.film_id, entry.updated_at)
            self.cache.ack(entry)
            if outcome is DeleteOutcome.STALE:
                # A newer write exists remotely; a full sync brings it back
                report.stale += 1
                with self._lock:
                    self._full_sync_requested = True
            else:
                report.applied += 1
            return

        if entry.kind is RecordKind.FILM:
            outcome, stored = self.client.push_film_status(
                FilmStatusRecord.model_validate(entry.payload)
            )
            self.cache.ack(entry)
            if outcome is UpsertOutcome.STALE:
                self.cache.apply_remote_film(stored)
        else:
            outcome, stored = self.client.push_preferences(
                PreferencesRecord.model_validate(entry.payload)
            )
            self.cache.ack(entry)
            if outcome is UpsertOutcome.STALE:
                self.cache.apply_remote_preferences(stored)

        if outcome is UpsertOutcome.STALE:
            report.stale += 1
            logger.debug("Change %s at %s was stale", entry.key, entry.updated_at.isoformat())
        else:
            report.applied += 1

    # ==================== PULL ====================

    def pull(self) -> PullReport:
        """
        Fetch records changed after the watermark and merge them (ties keep local).

        On failure the watermark is left untouched and the pull is retried
        on the next pass.
        """
        report = PullReport()
        with self._sync_lock:
            if not self._has_identity():
                report.failed = True
                return report
            try:
                films, prefs = self.client.fetch_changes(self.cache.watermark)
            except TransportError as e:
                logger.warning("Pull failed: %s", e)
                report.failed = True
                self._record_failure()
                return report
            except IdentityMissingError as e:
                self._signed_out(str(e))
                report.failed = True
                return report

            self._merge(films, prefs, report)
            self._record_success()
        if report.applied:
            logger.info("Pull: %d received, %d applied", report.received, report.applied)
        return report

    def _merge(
        self,
        films: List[FilmStatusRecord],
        prefs: Optional[PreferencesRecord],
        report: PullReport
    ) -> None:
        newest = None
        for record in films:
            report.received += 1
            report.applied += self.cache.apply_remote_film(record)
            newest = record.updated_at if newest is None else max(newest, record.updated_at)
        if prefs is not None:
            report.received += 1
            report.applied += self.cache.apply_remote_preferences(prefs)
            newest = prefs.updated_at if newest is None else max(newest, prefs.updated_at)
        if newest is not None:
            self.cache.advance_watermark(newest)
        report.watermark = self.cache.watermark

    # ==================== FULL SYNC ====================

    def full_sync(self) -> PullReport:
        """
        Bidirectional merge of the whole user state.

        Uploads every queued upsert, then replaces the local view with the
        merged server state: newer remote records win, and local records the
        server no longer has are removed unless a local change is pending.
        """
        report = PullReport()
        with self._sync_lock:
            if not self._has_identity():
                report.failed = True
                return report
            with self._lock:
                self._full_sync_requested = False

            uploads = [e for e in self.cache.pending() if e.op is ChangeOp.UPSERT]
            films: List[FilmStatusRecord] = []
            prefs: Optional[PreferencesRecord] = None
            for entry in list(uploads):
                try:
                    if entry.kind is RecordKind.FILM:
                        films.append(FilmStatusRecord.model_validate(entry.payload))
                    else:
                        prefs = PreferencesRecord.model_validate(entry.payload)
                except ValidationError as e:
                    uploads.remove(entry)
                    self.cache.drop(entry)
                    logger.error("Dropping unreadable queued change %s: %s", entry.key, e)

            try:
                server_films, server_prefs = self.client.full_sync(films, prefs)
            except TransportError as e:
                logger.warning("Full sync failed: %s", e)
                report.failed = True
                with self._lock:
                    self._full_sync_requested = True
                self._record_failure()
                return report
            except RejectedChangeError as e:
                logger.error("Full sync refused by the record store: %s", e)
                report.failed = True
                self._record_failure()
                return report
            except IdentityMissingError as e:
                self._signed_out(str(e))
                report.failed = True
                return report

            for entry in uploads:
                self.cache.ack(entry)
            self._merge(server_films, server_prefs, report)

            on_server = {record.film_id for record in server_films}
            for film_id in self.cache.films():
                if film_id not in on_server and self.cache.apply_remote_deletion(film_id):
                    report.removed += 1
            self._record_success(full_sync=True)
        logger.info(
            "Full sync: %d uploaded, %d received, %d applied, %d removed",
            len(uploads), report.received, report.applied, report.removed
        )
        return report

    def sync_once(self):
        """
        One push-then-pull pass.

        The pull is a full sync when one was requested.

        Returns:
            Tuple of (PushReport, PullReport)
        """
        with self._sync_lock:
            self._set_state(SyncState.SYNCING)
            push = self.push_pending()
            with self._lock:
                full = self._full_sync_requested
            pull = self.full_sync() if full else self.pull()
            if push.failed and not pull.failed:
                # The store answered the pull but the pushes are still backing off
                self._set_state(SyncState.OFFLINE)
        return push, pull

    # ==================== BACKGROUND THREAD ====================

    def start(self) -> None:
        """Start background sync; the first pass is a full sync."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        with self._lock:
            self._full_sync_requested = True
            if self._state is SyncState.STOPPED:
                self._state = SyncState.IDLE
        self._unsubscribe = self.cache.subscribe(self._on_cache_change)
        self._thread = threading.Thread(target=self._run, name="filmsync-sync", daemon=True)
        self._thread.start()
        logger.info("Sync coordinator started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop background sync and wait for the current pass to finish."""
        self._stop.set()
        self._wake.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._set_state(SyncState.STOPPED)
        logger.info("Sync coordinator stopped")

    def request_sync(self, full: bool = False) -> None:
        """Ask for an immediate pass, e.g. on reconnect or when the app regains focus."""
        with self._lock:
            self._sync_requested = True
            if full:
                self._full_sync_requested = True
        self._wake.set()

    def _on_cache_change(self, change: StateChange) -> None:
        if change.origin != "local":
            return
        with self._lock:
            # Debounce: a burst of edits produces one push
            self._push_at = time.monotonic() + self.settings.debounce_seconds
        self._wake.set()

    def _retry_delay(self) -> Optional[float]:
        """Seconds until the earliest deferred change is due, if any are queued."""
        pending = self.cache.pending()
        if not pending:
            return None
        now = self._clock()
        return max(0.0, min(
            (e.next_attempt_at - now).total_seconds() if e.next_attempt_at else 0.0
            for e in pending
        ))

    def _run(self) -> None:
        next_pull = time.monotonic() + self.settings.pull_interval
        while not self._stop.is_set():
            self._wake.clear()
            now = time.monotonic()
            with self._lock:
                full = self._full_sync_requested
                requested = self._sync_requested
                self._sync_requested = False
                push_due = self._push_at is not None and now >= self._push_at
                if push_due:
                    self._push_at = None
            try:
                if full:
                    self.push_pending()
                    self.full_sync()
                    next_pull = now + self.settings.pull_interval
                elif requested or now >= next_pull:
                    self.sync_once()
                    next_pull = now + self.settings.pull_interval
                elif push_due or self._retry_delay() == 0:
                    self.push_pending()
            except Exception:
                logger.exception("Sync pass failed")

            if self._state is SyncState.SIGNED_OUT:
                break
            self._wake.wait(self._sleep_time(next_pull))

    def _sleep_time(self, next_pull: float) -> float:
        now = time.monotonic()
        delays = [next_pull - now]
        with self._lock:
            if self._full_sync_requested or self._sync_requested:
                return 0.0
            if self._push_at is not None:
                delays.append(self._push_at - now)
        retry = self._retry_delay()
        if retry is not None:
            delays.append(retry)
        return max(0.0, min(delays))
