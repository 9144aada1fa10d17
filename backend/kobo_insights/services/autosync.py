"""
Periodic re-sync of KoboToolbox projects.

A dataset with auto-sync enabled is fetched again once its next_sync_time
has passed, using the stored token it is linked to. Due projects run in a
thread pool bounded by ``sync_max_concurrency``; a project that is already
syncing (through the scheduler or a manual sync) is skipped. A failed sync
is retried after ``auto_sync_retry_minutes``.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from kobo_insights.core.config import get_settings
from kobo_insights.core.errors import KoboAPIError, SyncInProgress, TokenNotFound
from kobo_insights.core.schemas import Dataset
from kobo_insights.services import repository, tokens
from kobo_insights.services.kobo import KoboClient, sync_project
from kobo_insights.services.values import from_utc_iso, to_utc_iso

logger = logging.getLogger(__name__)


class AutoSyncService:
    """Finds due projects and syncs them; optionally polls in a background thread."""

    def __init__(self, client_factory: Callable[[str], KoboClient] = KoboClient):
        self.client_factory = client_factory
        self._syncing: Set[str] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_run: Optional[Dict[str, Any]] = None

    def _claim(self, dataset_id: str) -> bool:
        with self._lock:
            if dataset_id in self._syncing:
                return False
            self._syncing.add(dataset_id)
            return True

    def _release(self, dataset_id: str):
        with self._lock:
            self._syncing.discard(dataset_id)

    @property
    def currently_syncing(self) -> List[str]:
        with self._lock:
            return sorted(self._syncing)

    def due_datasets(self, now: Optional[datetime] = None) -> List[Dataset]:
        """Enabled datasets whose next sync time has passed, earliest first."""
        now = now or datetime.now(timezone.utc)
        due = [
            d for d in repository.list_datasets()
            if d.auto_sync_enabled and d.token_id and d.next_sync_time
            and from_utc_iso(d.next_sync_time) <= now
        ]
        return sorted(due, key=lambda d: d.next_sync_time)

    def sync_now(self, client: KoboClient, asset_uid: str, name: Optional[str] = None, token_id: Optional[str] = None) -> Dataset:
        """
        Sync one project right away.

        Raises:
            SyncInProgress: If the project is already being synced
            KoboAPIError: If KoboToolbox cannot be read
        """
        if not self._claim(asset_uid):
            raise SyncInProgress(asset_uid)
        try:
            return sync_project(client, asset_uid, name, token_id=token_id)
        finally:
            self._release(asset_uid)

    def _sync_claimed(self, dataset: Dataset, now: datetime) -> Dict[str, Any]:
        dataset_id = dataset.dataset_id
        try:
            token = tokens.get_token(dataset.token_id)
            synced = sync_project(self.client_factory(token.token), dataset_id, token_id=dataset.token_id)
        except (KoboAPIError, TokenNotFound) as e:
            if isinstance(e, TokenNotFound):
                error = f"API token {dataset.token_id} no longer exists"
            else:
                error = str(e)
            retry_at = now + timedelta(minutes=get_settings().auto_sync_retry_minutes)
            repository.record_sync_result(dataset_id, to_utc_iso(retry_at), error=error)
            logger.error(f"Auto-sync failed for {dataset_id}: {error}; retrying at {to_utc_iso(retry_at)}")
            return {"dataset_id": dataset_id, "success": False, "error": error}
        finally:
            self._release(dataset_id)

        next_sync = now + timedelta(minutes=dataset.auto_sync_interval or repository.DEFAULT_SYNC_INTERVAL_MINUTES)
        repository.record_sync_result(dataset_id, to_utc_iso(next_sync))
        logger.info(f"Auto-synced {dataset_id}: {len(synced.records)} submissions")
        return {"dataset_id": dataset_id, "success": True, "total_submissions": len(synced.records)}

    def run_due_syncs(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Sync every due project once.

        Returns:
            Counts plus one result per attempted project
        """
        now = now or datetime.now(timezone.utc)
        due = self.due_datasets(now)
        claimed = [d for d in due if self._claim(d.dataset_id)]
        claimed_ids = {d.dataset_id for d in claimed}
        skipped = [d.dataset_id for d in due if d.dataset_id not in claimed_ids]
        for dataset_id in skipped:
            logger.info(f"Project {dataset_id} is already syncing, skipping")

        results: List[Dict[str, Any]] = []
        if claimed:
            workers = min(get_settings().sync_max_concurrency, len(claimed))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(lambda d: self._sync_claimed(d, now), claimed))

        summary = {
            "ran_at": to_utc_iso(now),
            "due": len(due),
            "synced": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"]),
            "skipped": skipped,
            "results": results,
        }
        if due:
            logger.info(f"Auto-sync run: {summary['synced']} synced, {summary['failed']} failed, {len(skipped)} skipped")
        self.last_run = summary
        return summary

    # Background polling

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, poll_seconds: float):
        while not self._stop.is_set():
            try:
                self.run_due_syncs()
            except Exception as e:
                logger.error(f"Auto-sync run failed: {e}", exc_info=True)
            self._stop.wait(poll_seconds)

    def start(self, poll_seconds: Optional[float] = None):
        if self.is_running:
            return
        poll_seconds = poll_seconds or get_settings().auto_sync_poll_seconds
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, args=(poll_seconds,), name="auto-sync", daemon=True)
        self._thread.start()
        logger.info(f"Auto-sync scheduler started (every {poll_seconds}s)")

    def stop(self, timeout: Optional[float] = 5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Auto-sync scheduler stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "currently_syncing": self.currently_syncing,
            "max_concurrent": get_settings().sync_max_concurrency,
            "queue": [
                {"dataset_id": d.dataset_id, "name": d.name, "next_sync_time": d.next_sync_time}
                for d in sorted(repository.list_datasets(), key=lambda d: d.next_sync_time or "")
                if d.auto_sync_enabled
            ],
            "last_run": self.last_run,
        }


_auto_sync: Optional[AutoSyncService] = None


def get_auto_sync() -> AutoSyncService:
    global _auto_sync
    if _auto_sync is None:
        _auto_sync = AutoSyncService()
    return _auto_sync


def reset_auto_sync():
    """Stop and forget the scheduler (used by tests)."""
    global _auto_sync
    if _auto_sync is not None:
        _auto_sync.stop()
    _auto_sync = None
