"""
Integration tests for API endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from main import app
from kobo_insights.core.config import reload_settings
from kobo_insights.core.rate_limit import limiter
from kobo_insights.services.autosync import get_auto_sync


@pytest.fixture
def client():
    """Create a test client with a fresh rate limit window."""
    limiter.reset()
    return TestClient(app)


@pytest.fixture
def stored(client, farm_records):
    """Farm survey stored under dataset id 'aFarm'."""
    response = client.put("/api/datasets/aFarm", json={"name": "Farm Survey", "records": farm_records})
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
def test_health_check(client):
    """Test the health check endpoint."""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_root_endpoint(client):
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.integration
def test_store_dataset(stored):
    assert stored["dataset_id"] == "aFarm"
    assert stored["name"] == "Farm Survey"
    assert stored["available_columns"] == ["_id", "region", "land_area_ha", "maize_yield_kg"]


@pytest.mark.integration
def test_get_dataset(client, stored):
    response = client.get("/api/datasets/aFarm")
    assert response.status_code == 200
    assert len(response.json()["records"]) == 20


@pytest.mark.integration
def test_missing_dataset(client):
    response = client.get("/api/datasets/nope", headers={"X-Correlation-ID": "corr-1"})

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["code"] == "DATASET_NOT_FOUND"
    assert detail["correlation_id"] == "corr-1"
    assert response.headers["X-Correlation-ID"] == "corr-1"


@pytest.mark.integration
def test_invalid_dataset_id(client):
    response = client.get("/api/datasets/bad..id")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_DATASET"


@pytest.mark.integration
def test_too_many_records(client, monkeypatch):
    monkeypatch.setenv("MAX_RECORDS_PER_REQUEST", "100")
    reload_settings()

    records = [{"region": "Amhara"}] * 101
    response = client.put("/api/datasets/big", json={"records": records})
    assert response.status_code == 413


@pytest.mark.integration
def test_select_columns(client, stored):
    response = client.put("/api/datasets/aFarm/columns", json={"selected_columns": ["region", "maize_yield_kg"]})
    assert response.status_code == 200
    assert response.json()["selected_columns"] == ["region", "maize_yield_kg"]

    response = client.put("/api/datasets/aFarm/columns", json={"selected_columns": ["crop_type"]})
    assert response.status_code == 400
    assert "crop_type" in response.json()["detail"]["detail"]


@pytest.mark.integration
def test_analyze_stored_dataset(client, stored):
    response = client.post("/api/datasets/aFarm/analyze")

    assert response.status_code == 200
    data = response.json()
    assert data["total_records"] == 20
    assert 0 < len(data["suggestions"]) <= 15
    assert data["suggestions"][0]["name"] == "Land Area by region"
    assert "X-Response-Time" in response.headers

    charts = client.get("/api/datasets/aFarm/charts").json()
    assert [c["name"] for c in charts] == [s["name"] for s in data["suggestions"]]


@pytest.mark.integration
def test_analyze_uses_column_selection(client, stored):
    client.put("/api/datasets/aFarm/columns", json={"selected_columns": ["region", "maize_yield_kg"]})
    data = client.post("/api/datasets/aFarm/analyze").json()

    assert list(data["column_profiles"]) == ["region", "maize_yield_kg"]


@pytest.mark.integration
def test_analyze_posted_records(client, dated_records):
    response = client.post("/api/datasets/adhoc/analyze", json={"records": dated_records})

    assert response.status_code == 200
    assert response.json()["suggestions"][0]["chart_type"] == "line"


@pytest.mark.integration
def test_analyze_posted_records_for_unknown_id_saves_nothing(client, dated_records):
    response = client.post("/api/datasets/adhoc/analyze", json={"records": dated_records})

    assert response.status_code == 200
    assert response.json()["suggestions"]
    assert client.get("/api/datasets/adhoc/charts").json() == []
    assert client.get("/api/datasets/adhoc/analysis-logs").json()["stats"]["total"] == 0
    assert client.get("/api/datasets/adhoc").status_code == 404


@pytest.mark.integration
def test_analyze_posted_records_for_stored_dataset_saves_charts(client, stored, dated_records):
    suggestions = client.post("/api/datasets/aFarm/analyze", json={"records": dated_records}).json()["suggestions"]

    charts = client.get("/api/datasets/aFarm/charts").json()
    assert [c["name"] for c in charts] == [s["name"] for s in suggestions]
    assert client.get("/api/datasets/aFarm/analysis-logs").json()["stats"]["total"] == 1


@pytest.mark.integration
def test_analyze_missing_dataset(client):
    response = client.post("/api/datasets/nope/analyze")
    assert response.status_code == 404


@pytest.mark.integration
def test_analyze_malformed_records(client):
    response = client.post("/api/datasets/adhoc/analyze", json={"records": [1, 2, 3]})
    assert response.status_code == 422


@pytest.mark.integration
def test_analyze_rate_limit(client, stored, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "2")
    reload_settings()

    assert client.post("/api/datasets/aFarm/analyze").status_code == 200
    assert client.post("/api/datasets/aFarm/analyze").status_code == 200

    response = client.post("/api/datasets/aFarm/analyze")
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert "Retry-After" in response.headers


@pytest.mark.integration
def test_quality_endpoint_saves_nothing(client, stored):
    response = client.post("/api/datasets/aFarm/quality")

    assert response.status_code == 200
    data = response.json()
    assert data["data_quality"]["meaningful_columns"] == 3
    assert data["domain_insights"]["geographic"]["has_regions"] is True
    assert client.get("/api/datasets/aFarm/charts").json() == []
    assert client.get("/api/datasets/aFarm/analysis-logs").json()["stats"]["total"] == 0


@pytest.mark.integration
def test_analysis_logs(client, stored):
    client.post("/api/datasets/aFarm/analyze")
    client.post("/api/datasets/aFarm/analyze")

    data = client.get("/api/datasets/aFarm/analysis-logs?limit=1").json()
    assert len(data["logs"]) == 1
    assert data["stats"]["total"] == 2
    assert data["stats"]["successful"] == 2


@pytest.mark.integration
def test_render_endpoint(client, farm_records):
    response = client.post("/api/charts/render", json={
        "chart_type": "pie",
        "configuration": {"column": "region"},
        "records": farm_records,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["labels"] == ["Amhara", "Oromia", "Tigray", "Sidama"]
    assert data["datasets"][0]["data"] == [5, 5, 5, 5]


@pytest.mark.integration
def test_render_without_columns(client, farm_records):
    response = client.post("/api/charts/render", json={
        "chart_type": "scatter",
        "configuration": {"x_column": "land_area_ha"},
        "records": farm_records,
    })

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_CHART_CONFIG"


@pytest.mark.integration
def test_chart_lifecycle(client, stored):
    client.post("/api/datasets/aFarm/analyze")
    chart = client.get("/api/datasets/aFarm/charts").json()[0]

    data = client.get(f"/api/charts/{chart['id']}/data").json()
    assert data["metadata"]["chart_id"] == chart["id"]
    assert data["metadata"]["name"] == "Land Area by region"
    assert data["labels"] == ["Amhara", "Oromia", "Tigray", "Sidama"]

    patched = client.patch(f"/api/charts/{chart['id']}", json={"name": "Farm size"}).json()
    assert patched["name"] == "Farm size"
    assert patched["chart_type"] == chart["chart_type"]

    toggled = client.post(f"/api/charts/{chart['id']}/toggle").json()
    assert toggled["is_enabled"] is False
    enabled = client.get("/api/datasets/aFarm/charts?enabled_only=true").json()
    assert chart["id"] not in [c["id"] for c in enabled]

    assert client.delete(f"/api/charts/{chart['id']}").json() == {"deleted": True}
    assert client.get(f"/api/charts/{chart['id']}/data").status_code == 404


@pytest.mark.integration
def test_unknown_chart(client):
    assert client.get("/api/charts/missing/data").status_code == 404
    assert client.patch("/api/charts/missing", json={"name": "x"}).status_code == 404
    assert client.post("/api/charts/missing/toggle").status_code == 404
    response = client.delete("/api/charts/missing")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "CHART_NOT_FOUND"


@pytest.mark.integration
def test_delete_dataset_charts(client, stored):
    suggestions = client.post("/api/datasets/aFarm/analyze").json()["suggestions"]

    response = client.delete("/api/datasets/aFarm/charts?auto_generated_only=true")
    assert response.json() == {"deleted": len(suggestions)}
    assert client.get("/api/datasets/aFarm/charts").json() == []


@pytest.mark.integration
def test_export_csv(client, stored):
    response = client.get("/api/datasets/aFarm/export?format=csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "Farm_Survey_data.csv" in response.headers["content-disposition"]
    lines = response.content.decode("utf-8-sig").splitlines()
    assert lines[0] == "No.,region,land_area_ha,maize_yield_kg"
    assert len(lines) == 21


@pytest.mark.integration
def test_export_all_columns_as_json(client, stored):
    response = client.get("/api/datasets/aFarm/export?format=json&include_all_columns=true")

    rows = response.json()
    assert rows[0]["No"] == 1
    assert rows[0]["_id"] == 1000


@pytest.mark.integration
def test_export_errors(client, stored):
    response = client.get("/api/datasets/aFarm/export?format=pdf")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "UNSUPPORTED_EXPORT_FORMAT"

    client.put("/api/datasets/empty", json={"records": []})
    response = client.get("/api/datasets/empty/export")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "NO_SUBMISSIONS"


@pytest.mark.integration
def test_metrics_endpoint(client, stored):
    client.post("/api/datasets/aFarm/analyze")
    response = client.get("/api/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["performance"]["analyze_dataset"]["count"] == 1
    assert "request_duration" in data["performance"]
    assert data["cache"]["analysis_cache"]["size"] == 1


@pytest.mark.integration
def test_app_lifespan_runs_auto_sync_scheduler(monkeypatch):
    monkeypatch.setenv("AUTO_SYNC_SCHEDULER_ENABLED", "true")
    reload_settings()

    with TestClient(app):
        assert get_auto_sync().is_running
    assert not get_auto_sync().is_running
