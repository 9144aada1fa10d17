"""
Unit tests for the auto-sync scheduler, using a fake KoboToolbox server.
"""
import json
import threading
from datetime import datetime, timedelta, timezone
import pytest
from kobo_insights.core.config import reload_settings
from kobo_insights.core.errors import SyncInProgress
from kobo_insights.services import repository, tokens
from kobo_insights.services.autosync import AutoSyncService
from kobo_insights.services.kobo import KoboClient
from kobo_insights.services.values import to_utc_iso

BASE = "https://kobo.test"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = "OK" if self.ok else "Error"
        self.text = json.dumps(payload)

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Serves submissions per asset uid; unknown assets answer 500."""

    def __init__(self, submissions, on_get=None):
        self.submissions = submissions
        self.on_get = on_get
        self.headers = {}

    def get(self, url, timeout=None):
        if self.on_get:
            self.on_get(url)
        uid = url.rstrip("/").split("/")[-2]
        if uid not in self.submissions:
            return FakeResponse({"detail": "error"}, status_code=500)
        return FakeResponse({"results": self.submissions[uid], "next": None})


@pytest.fixture
def token():
    return tokens.add_token("secret-token-123", name="Field team")


def make_service(submissions, on_get=None, seen_tokens=None):
    def factory(value):
        if seen_tokens is not None:
            seen_tokens.append(value)
        return KoboClient(value, base_url=BASE, session=FakeSession(submissions, on_get))
    return AutoSyncService(client_factory=factory)


def schedule(dataset_id, token_id, due_at, interval=30, records=None):
    repository.save_dataset(dataset_id, records or [{"a": 1}], token_id=token_id)
    repository.configure_auto_sync(dataset_id, True, interval)
    repository.record_sync_result(dataset_id, to_utc_iso(due_at))


@pytest.mark.unit
def test_due_datasets_earliest_first(token):
    schedule("later", token.id, NOW - timedelta(minutes=1))
    schedule("sooner", token.id, NOW - timedelta(minutes=5))
    schedule("future", token.id, NOW + timedelta(minutes=5))
    repository.save_dataset("manual", [{"a": 1}])

    due = make_service({}).due_datasets(NOW)
    assert [d.dataset_id for d in due] == ["sooner", "later"]


@pytest.mark.unit
def test_run_due_syncs_refreshes_and_reschedules(token, farm_records):
    schedule("aFarm", token.id, NOW - timedelta(minutes=1), interval=45)
    seen = []
    service = make_service({"aFarm": farm_records}, seen_tokens=seen)

    summary = service.run_due_syncs(NOW)

    assert summary["due"] == 1
    assert summary["synced"] == 1
    assert summary["results"] == [{"dataset_id": "aFarm", "success": True, "total_submissions": 20}]
    assert seen == ["secret-token-123"]
    dataset = repository.get_dataset("aFarm")
    assert len(dataset.records) == 20
    assert dataset.next_sync_time == to_utc_iso(NOW + timedelta(minutes=45))
    assert dataset.auto_sync_enabled is True
    assert service.currently_syncing == []


@pytest.mark.unit
def test_failed_sync_is_retried_later(token):
    schedule("aBroken", token.id, NOW - timedelta(minutes=1), records=[{"a": 1}])

    summary = make_service({}).run_due_syncs(NOW)

    assert summary["failed"] == 1
    dataset = repository.get_dataset("aBroken")
    assert dataset.records == [{"a": 1}]
    assert dataset.next_sync_time == to_utc_iso(NOW + timedelta(minutes=10))
    assert "500" in dataset.last_sync_error


@pytest.mark.unit
def test_missing_token_fails_the_sync(token):
    schedule("aFarm", "gone", NOW - timedelta(minutes=1))

    result = make_service({"aFarm": []}).run_due_syncs(NOW)["results"][0]

    assert result["success"] is False
    assert "no longer exists" in result["error"]


@pytest.mark.unit
def test_project_already_syncing_is_skipped(token, farm_records):
    schedule("aFarm", token.id, NOW - timedelta(minutes=1))
    service = make_service({"aFarm": farm_records})
    service._claim("aFarm")

    summary = service.run_due_syncs(NOW)

    assert summary["skipped"] == ["aFarm"]
    assert summary["results"] == []
    assert len(repository.get_dataset("aFarm").records) == 1


@pytest.mark.unit
def test_concurrency_is_bounded(token, monkeypatch):
    monkeypatch.setenv("SYNC_MAX_CONCURRENCY", "2")
    reload_settings()

    uids = [f"p{i}" for i in range(5)]
    for uid in uids:
        schedule(uid, token.id, NOW - timedelta(minutes=1))

    lock = threading.Lock()
    active = {"now": 0, "peak": 0}
    release = threading.Event()

    def on_get(url):
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        release.wait(0.05)
        with lock:
            active["now"] -= 1

    summary = make_service({uid: [{"b": 2}] for uid in uids}, on_get=on_get).run_due_syncs(NOW)

    assert summary["synced"] == 5
    assert 1 <= active["peak"] <= 2


@pytest.mark.unit
def test_sync_now_refuses_a_project_that_is_syncing(farm_records):
    service = make_service({"aFarm": farm_records})
    client = KoboClient("t", base_url=BASE, session=FakeSession({"aFarm": farm_records}))

    assert len(service.sync_now(client, "aFarm", "Farm Survey").records) == 20
    service._claim("aFarm")
    with pytest.raises(SyncInProgress):
        service.sync_now(client, "aFarm")


@pytest.mark.unit
def test_status_lists_scheduled_projects(token):
    schedule("aFarm", token.id, NOW + timedelta(minutes=5))
    repository.save_dataset("manual", [{"a": 1}])

    status = make_service({}).status()

    assert status["running"] is False
    assert status["max_concurrent"] == 3
    assert [q["dataset_id"] for q in status["queue"]] == ["aFarm"]


@pytest.mark.unit
def test_start_and_stop(token):
    service = make_service({})
    service.start(poll_seconds=0.01)
    assert service.is_running
    service.stop()
    assert not service.is_running
