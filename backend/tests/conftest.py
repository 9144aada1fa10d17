"""
Shared fixtures: fresh storage, cache and metrics per test, and sample surveys.
"""
import pytest
from kobo_insights.core.cache import get_analysis_cache
from kobo_insights.core.config import reload_settings
from kobo_insights.core.performance import PerformanceMonitor
from kobo_insights.core.storage import reset_storage
from kobo_insights.services.autosync import reset_auto_sync

REGIONS = ["Amhara", "Oromia", "Tigray", "Sidama"]


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    """Every test starts with in-memory storage, an empty cache, no metrics and no scheduler."""
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("AUTO_SYNC_SCHEDULER_ENABLED", "false")
    reload_settings()
    reset_storage()
    reset_auto_sync()
    get_analysis_cache().clear()
    PerformanceMonitor.clear_metrics()
    yield
    reset_auto_sync()
    reset_storage()
    get_analysis_cache().clear()


@pytest.fixture
def farm_records():
    """20 farm survey submissions: system id, region, land area and maize yield."""
    return [
        {
            "_id": 1000 + i,
            "region": REGIONS[i % 4],
            "land_area_ha": round(0.5 + i * 0.75, 2),
            "maize_yield_kg": 1200 + i * 85,
        }
        for i in range(20)
    ]


@pytest.fixture
def notes_records():
    """60 submissions of free text with 50 distinct answers."""
    return [{"notes": f"Observation number {i % 50} from the field visit"} for i in range(60)]


@pytest.fixture
def dated_records():
    """Submissions spread over three days with a numeric income and a categorical answer."""
    days = ["2024-03-01", "2024-03-02", "2024-03-03"]
    return [
        {
            "planting_date": f"{days[i % 3]}T0{i % 9}:30:00+00:00",
            "household_income": 100 + i * 10,
            "has_irrigation": "yes" if i % 2 else "no",
            "crop_type": ["maize", "teff", "sorghum"][i % 3],
        }
        for i in range(12)
    ]
