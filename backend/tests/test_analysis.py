"""
Unit tests for the analysis pipeline.
"""
import copy
import pytest
from kobo_insights.core.config import reload_settings
from kobo_insights.core.errors import AnalysisError
from kobo_insights.core.performance import PerformanceMonitor
from kobo_insights.services import analysis
from kobo_insights.services.analysis import analyze_dataset
from kobo_insights.services.repository import get_analysis_logs


@pytest.mark.unit
def test_analyze_farm_survey(farm_records):
    result = analyze_dataset("farm", farm_records)

    assert result.dataset_id == "farm"
    assert result.total_records == 20
    assert list(result.column_profiles) == ["_id", "region", "land_area_ha", "maize_yield_kg"]
    assert 0 < len(result.suggestions) <= 15
    assert result.data_quality.meaningful_columns == 3
    assert result.domain_insights["agriculture"]["has_data"] is True
    assert result.analysis_timestamp.endswith("Z")


@pytest.mark.unit
def test_explicit_columns_limit_the_analysis(farm_records):
    result = analyze_dataset("farm", farm_records, ["region", "maize_yield_kg"])

    assert list(result.column_profiles) == ["region", "maize_yield_kg"]
    assert all(
        s.configuration.primary_x in ("region", "maize_yield_kg") for s in result.suggestions
    )


@pytest.mark.unit
def test_columns_missing_from_records_are_empty(farm_records):
    result = analyze_dataset("farm", farm_records, ["region", "crop_type"])
    assert result.column_profiles["crop_type"].value_type == "empty"


@pytest.mark.unit
@pytest.mark.parametrize("records, columns", [
    (None, None),
    ("not a list", None),
    ([{"a": 1}, "row"], None),
    ([{"a": 1}], "a"),
    ([{"a": 1}], ["a", 3]),
])
def test_malformed_input_raises(records, columns):
    with pytest.raises(AnalysisError):
        analyze_dataset("bad", records, columns)


@pytest.mark.unit
def test_empty_dataset_is_not_an_error():
    result = analyze_dataset("empty", [], ["region", "maize_yield_kg"])

    assert result.total_records == 0
    assert result.suggestions == []
    assert result.data_quality.score == 0


@pytest.mark.unit
def test_no_records_and_no_columns():
    result = analyze_dataset("empty", [])

    assert result.column_profiles == {}
    assert result.suggestions == []


@pytest.mark.unit
def test_records_are_not_mutated(farm_records):
    snapshot = copy.deepcopy(farm_records)
    analyze_dataset("farm", farm_records)
    assert farm_records == snapshot


@pytest.mark.unit
def test_analysis_is_idempotent(farm_records):
    first = analyze_dataset("farm", farm_records, use_cache=False)
    second = analyze_dataset("farm", farm_records, use_cache=False)

    assert first.suggestions == second.suggestions
    assert first.column_profiles == second.column_profiles
    assert first.data_quality == second.data_quality


@pytest.mark.unit
def test_successful_run_is_logged(farm_records):
    result = analyze_dataset("farm", farm_records)
    logs = get_analysis_logs("farm")

    assert len(logs) == 1
    assert logs[0].success is True
    assert logs[0].record_count == 20
    assert logs[0].column_count == 4
    assert logs[0].suggestion_count == len(result.suggestions)


@pytest.mark.unit
def test_failed_run_is_logged():
    with pytest.raises(AnalysisError):
        analyze_dataset("farm", None)

    logs = get_analysis_logs("farm")
    assert logs[0].success is False
    assert "list" in logs[0].error_message


@pytest.mark.unit
def test_store_log_false_skips_log(farm_records):
    analyze_dataset("farm", farm_records, store_log=False)
    assert get_analysis_logs("farm") == []


@pytest.mark.unit
def test_log_storage_failure_does_not_fail_analysis(farm_records, monkeypatch):
    def broken_log(entry, limit=100):
        raise RuntimeError("storage down")

    monkeypatch.setattr(analysis, "append_analysis_log", broken_log)
    result = analyze_dataset("farm", farm_records)

    assert len(result.suggestions) > 0


@pytest.mark.unit
def test_identical_input_is_served_from_cache(farm_records, monkeypatch):
    first = analyze_dataset("farm", farm_records)

    def fail(*args, **kwargs):
        raise AssertionError("pipeline should not run on a cache hit")

    monkeypatch.setattr(analysis, "run_analysis", fail)
    second = analyze_dataset("farm", farm_records)

    assert second.suggestions == first.suggestions
    assert len(get_analysis_logs("farm")) == 2


@pytest.mark.unit
def test_changed_records_miss_the_cache(farm_records):
    first = analyze_dataset("farm", farm_records)
    second = analyze_dataset("farm", farm_records[:3])

    assert first.total_records == 20
    assert second.total_records == 3


@pytest.mark.unit
def test_zero_ttl_disables_cache(farm_records, monkeypatch):
    monkeypatch.setenv("ANALYSIS_CACHE_TTL_SECONDS", "0")
    reload_settings()

    calls = []
    real_run = analysis.run_analysis

    def counting_run(*args, **kwargs):
        calls.append(1)
        return real_run(*args, **kwargs)

    monkeypatch.setattr(analysis, "run_analysis", counting_run)
    analyze_dataset("farm", farm_records)
    analyze_dataset("farm", farm_records)

    assert len(calls) == 2


@pytest.mark.unit
def test_max_suggestions_setting(farm_records, monkeypatch):
    monkeypatch.setenv("MAX_SUGGESTIONS", "2")
    reload_settings()

    result = analyze_dataset("farm", farm_records, use_cache=False)
    assert len(result.suggestions) == 2


@pytest.mark.unit
def test_analysis_duration_is_recorded(farm_records):
    analyze_dataset("farm", farm_records)
    with pytest.raises(AnalysisError):
        analyze_dataset("farm", None)

    stats = PerformanceMonitor.get_stats("analyze_dataset")
    assert stats["count"] == 2
    assert stats["errors"] == 1
