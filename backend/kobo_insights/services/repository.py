"""
Persistence of datasets, chart configs and analysis logs.

Everything is kept in the pluggable key/value storage backend:

- ``dataset:<id>``          the synced submissions and column selection
- ``charts:<dataset_id>``   the dataset's chart configs, as one list
- ``chart_index:<chart_id>`` dataset id owning a chart
- ``analysis_logs:<dataset_id>`` most recent analysis runs, newest first

A dataset also carries its auto-sync schedule (token id, interval, next run).
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kobo_insights.core.cache import invalidate_dataset
from kobo_insights.core.errors import ChartNotFound, DatasetNotFound
from kobo_insights.core.schemas import (
    AnalysisLogEntry,
    ChartConfigRecord,
    ChartConfigUpdate,
    ChartSuggestion,
    Dataset,
    Record,
)
from kobo_insights.core.storage import get_storage
from kobo_insights.services.values import to_utc_iso, utc_now_iso

logger = logging.getLogger(__name__)

# Read-modify-write of list values is serialized within a process.
_write_lock = threading.RLock()

AUTO_SYNC_FIELDS = ("token_id", "auto_sync_enabled", "auto_sync_interval", "next_sync_time", "last_sync_error")


def _dataset_key(dataset_id: str) -> str:
    return f"dataset:{dataset_id}"


def _charts_key(dataset_id: str) -> str:
    return f"charts:{dataset_id}"


def _chart_index_key(chart_id: str) -> str:
    return f"chart_index:{chart_id}"


def _logs_key(dataset_id: str) -> str:
    return f"analysis_logs:{dataset_id}"


def collect_columns(records: Iterable[Record]) -> List[str]:
    """Union of record keys in first-seen order."""
    seen: Dict[str, None] = {}
    for record in records:
        for key in record:
            seen.setdefault(key, None)
    return list(seen)


# Datasets

def save_dataset(
    dataset_id: str,
    records: Sequence[Record],
    name: Optional[str] = None,
    columns: Optional[List[str]] = None,
    token_id: Optional[str] = None,
) -> Dataset:
    """
    Create or overwrite a dataset.

    Re-syncing replaces the submissions; a previous column selection is kept
    for the columns that still exist, and so are the auto-sync settings.
    """
    with _write_lock:
        storage = get_storage()
        existing = storage.get(_dataset_key(dataset_id))
        available = list(columns) if columns is not None else collect_columns(records)

        schedule: Dict[str, Any] = {}
        selected: List[str] = []
        if existing:
            selected = [c for c in existing.get('selected_columns', []) if c in available]
            name = name or existing.get('name')
            schedule = {field: existing[field] for field in AUTO_SYNC_FIELDS if field in existing}
        if token_id:
            schedule['token_id'] = token_id

        dataset = Dataset(
            dataset_id=dataset_id,
            name=name or "Untitled Project",
            records=list(records),
            available_columns=available,
            selected_columns=selected,
            synced_at=utc_now_iso(),
            **schedule,
        )
        storage.set(_dataset_key(dataset_id), dataset.model_dump())
        invalidate_dataset(dataset_id)

    logger.info(f"Stored dataset {dataset_id}: {len(dataset.records)} records, {len(available)} columns")
    return dataset


def get_dataset(dataset_id: str) -> Dataset:
    data = get_storage().get(_dataset_key(dataset_id))
    if not data:
        raise DatasetNotFound(dataset_id)
    return Dataset(**data)


def dataset_exists(dataset_id: str) -> bool:
    return get_storage().get(_dataset_key(dataset_id)) is not None


def select_columns(dataset_id: str, columns: Sequence[str]) -> Dataset:
    """
    Store the user's column selection for a dataset.

    Raises:
        DatasetNotFound: If the dataset does not exist
        ValueError: If a selected column is not part of the dataset
    """
    with _write_lock:
        dataset = get_dataset(dataset_id)
        unknown = [c for c in columns if c not in dataset.available_columns]
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(unknown)}")

        dataset.selected_columns = list(dict.fromkeys(columns))
        get_storage().set(_dataset_key(dataset_id), dataset.model_dump())
    return dataset


def delete_dataset(dataset_id: str) -> bool:
    with _write_lock:
        delete_dataset_charts(dataset_id, auto_generated_only=False)
        get_storage().delete(_logs_key(dataset_id))
        invalidate_dataset(dataset_id)
        return get_storage().delete(_dataset_key(dataset_id))


def list_datasets() -> List[Dataset]:
    storage = get_storage()
    datasets = []
    for key in storage.keys("dataset:"):
        data = storage.get(key)
        if data:
            datasets.append(Dataset(**data))
    return datasets


# Auto-sync schedule

DEFAULT_SYNC_INTERVAL_MINUTES = 30


def configure_auto_sync(
    dataset_id: str,
    enabled: bool,
    interval_minutes: Optional[int] = None,
    token_id: Optional[str] = None,
) -> Dataset:
    """
    Turn periodic re-syncing of a dataset on or off.

    Enabling schedules the first sync one interval from now. The interval
    defaults to the previous one, then to 30 minutes.

    Raises:
        DatasetNotFound: If the dataset does not exist
        ValueError: If enabling without a stored token to sync with
    """
    with _write_lock:
        dataset = get_dataset(dataset_id)
        dataset.token_id = token_id or dataset.token_id
        dataset.auto_sync_interval = interval_minutes or dataset.auto_sync_interval or DEFAULT_SYNC_INTERVAL_MINUTES
        dataset.auto_sync_enabled = enabled

        if enabled:
            if not dataset.token_id:
                raise ValueError("Auto-sync needs a stored API token")
            next_sync = datetime.now(timezone.utc) + timedelta(minutes=dataset.auto_sync_interval)
            dataset.next_sync_time = to_utc_iso(next_sync)
        else:
            dataset.next_sync_time = None
        dataset.last_sync_error = None

        get_storage().set(_dataset_key(dataset_id), dataset.model_dump())

    logger.info(f"Auto-sync for {dataset_id}: enabled={enabled}, every {dataset.auto_sync_interval} min")
    return dataset


def record_sync_result(dataset_id: str, next_sync_time: Optional[str], error: Optional[str] = None) -> Dataset:
    """Store when a dataset syncs next and why the last attempt failed, if it did."""
    with _write_lock:
        dataset = get_dataset(dataset_id)
        dataset.next_sync_time = next_sync_time if dataset.auto_sync_enabled else None
        dataset.last_sync_error = error
        get_storage().set(_dataset_key(dataset_id), dataset.model_dump())
    return dataset


def detach_token(token_id: str) -> int:
    """Disable auto-sync on every dataset using a token. Returns how many changed."""
    changed = 0
    with _write_lock:
        for dataset in list_datasets():
            if dataset.token_id != token_id:
                continue
            dataset.token_id = None
            dataset.auto_sync_enabled = False
            dataset.next_sync_time = None
            get_storage().set(_dataset_key(dataset.dataset_id), dataset.model_dump())
            changed += 1
    return changed


# Chart configs

def _load_charts(dataset_id: str) -> List[ChartConfigRecord]:
    return [ChartConfigRecord(**c) for c in get_storage().get(_charts_key(dataset_id)) or []]


def _store_charts(dataset_id: str, charts: List[ChartConfigRecord]):
    get_storage().set(_charts_key(dataset_id), [c.model_dump() for c in charts])


def replace_auto_charts(dataset_id: str, suggestions: Sequence[ChartSuggestion]) -> List[ChartConfigRecord]:
    """
    Replace a dataset's auto-generated chart configs with fresh suggestions.

    Charts the user created by hand are kept and listed after the new ones.
    """
    with _write_lock:
        storage = get_storage()
        kept = []
        for chart in _load_charts(dataset_id):
            if chart.is_auto_generated:
                storage.delete(_chart_index_key(chart.id))
            else:
                kept.append(chart)

        now = utc_now_iso()
        created = [
            ChartConfigRecord(
                id=uuid.uuid4().hex,
                dataset_id=dataset_id,
                name=suggestion.name,
                chart_type=suggestion.chart_type,
                configuration=suggestion.configuration,
                is_auto_generated=True,
                is_enabled=True,
                display_order=index,
                created_at=now,
                updated_at=now,
            )
            for index, suggestion in enumerate(suggestions)
        ]
        for offset, chart in enumerate(kept):
            chart.display_order = len(created) + offset

        for chart in created:
            storage.set(_chart_index_key(chart.id), dataset_id)
        _store_charts(dataset_id, created + kept)

    logger.info(f"Saved {len(created)} chart configs for dataset {dataset_id}")
    return created


def list_charts(dataset_id: str, enabled_only: bool = False) -> List[ChartConfigRecord]:
    charts = _load_charts(dataset_id)
    if enabled_only:
        charts = [c for c in charts if c.is_enabled]
    return sorted(charts, key=lambda c: c.display_order)


def _owner(chart_id: str) -> str:
    dataset_id = get_storage().get(_chart_index_key(chart_id))
    if not dataset_id:
        raise ChartNotFound(chart_id)
    return dataset_id


def get_chart(chart_id: str) -> ChartConfigRecord:
    for chart in _load_charts(_owner(chart_id)):
        if chart.id == chart_id:
            return chart
    raise ChartNotFound(chart_id)


def update_chart(chart_id: str, update: ChartConfigUpdate) -> ChartConfigRecord:
    """Apply the fields set on ``update`` to a chart config."""
    changes: Dict[str, Any] = update.model_dump(exclude_unset=True, exclude_none=True)
    with _write_lock:
        dataset_id = _owner(chart_id)
        charts = _load_charts(dataset_id)
        for index, chart in enumerate(charts):
            if chart.id != chart_id:
                continue
            if 'configuration' in changes:
                changes['configuration'] = update.configuration
            updated = chart.model_copy(update={**changes, 'updated_at': utc_now_iso()})
            charts[index] = updated
            _store_charts(dataset_id, charts)
            return updated
    raise ChartNotFound(chart_id)


def toggle_chart(chart_id: str) -> ChartConfigRecord:
    chart = get_chart(chart_id)
    return update_chart(chart_id, ChartConfigUpdate(is_enabled=not chart.is_enabled))


def delete_chart(chart_id: str) -> None:
    with _write_lock:
        dataset_id = _owner(chart_id)
        charts = _load_charts(dataset_id)
        remaining = [c for c in charts if c.id != chart_id]
        if len(remaining) == len(charts):
            raise ChartNotFound(chart_id)
        _store_charts(dataset_id, remaining)
        get_storage().delete(_chart_index_key(chart_id))


def delete_dataset_charts(dataset_id: str, auto_generated_only: bool = False) -> int:
    """Delete a dataset's chart configs. Returns how many were removed."""
    with _write_lock:
        charts = _load_charts(dataset_id)
        doomed = {c.id for c in charts if c.is_auto_generated or not auto_generated_only}
        for chart_id in doomed:
            get_storage().delete(_chart_index_key(chart_id))
        _store_charts(dataset_id, [c for c in charts if c.id not in doomed])
        return len(doomed)


# Analysis logs

def append_analysis_log(entry: AnalysisLogEntry, limit: int = 100) -> None:
    with _write_lock:
        storage = get_storage()
        logs = storage.get(_logs_key(entry.dataset_id)) or []
        logs.insert(0, entry.model_dump())
        storage.set(_logs_key(entry.dataset_id), logs[:limit])


def get_analysis_logs(dataset_id: str, limit: Optional[int] = None) -> List[AnalysisLogEntry]:
    """Most recent analysis runs for a dataset, newest first."""
    logs = get_storage().get(_logs_key(dataset_id)) or []
    if limit is not None:
        logs = logs[:limit]
    return [AnalysisLogEntry(**entry) for entry in logs]


def get_analysis_stats(dataset_id: str) -> Dict[str, Any]:
    logs = get_analysis_logs(dataset_id)
    successful = sum(1 for entry in logs if entry.success)
    return {
        "total": len(logs),
        "successful": successful,
        "failed": len(logs) - successful,
        "last_analysis": logs[0].created_at if logs else None,
    }
