"""
Smart analysis orchestration.

Classify every column, suggest charts, report data quality, and record the
outcome of the run. The pipeline itself is pure; the analysis log and the
result cache are side-channels that never change the result.
"""
import logging
from typing import Any, List, Optional

from kobo_insights.core.cache import generate_analysis_cache_key, get_analysis_cache
from kobo_insights.core.config import get_settings
from kobo_insights.core.errors import AnalysisError
from kobo_insights.core.performance import track_performance
from kobo_insights.core.schemas import AnalysisLogEntry, AnalysisResult, Record
from kobo_insights.services.classifier import ColumnClassifier, default_classifier
from kobo_insights.services.quality import assess_data_quality, generate_domain_insights
from kobo_insights.services.repository import append_analysis_log, collect_columns
from kobo_insights.services.suggestions import ChartSuggestionEngine, SuggestionSettings
from kobo_insights.services.values import utc_now_iso

logger = logging.getLogger(__name__)


def build_engine() -> ChartSuggestionEngine:
    """Suggestion engine tuned by the application settings."""
    settings = get_settings()
    return ChartSuggestionEngine(SuggestionSettings(
        max_suggestions=settings.max_suggestions,
        meaningful_column_limit=settings.meaningful_column_limit,
    ))


def _validate(records: Any, columns: Any):
    if records is None or not isinstance(records, list):
        raise AnalysisError("Records must be a list of submissions")
    if any(not isinstance(record, dict) for record in records):
        raise AnalysisError("Every submission must be an object")
    if columns is not None and (
        not isinstance(columns, list) or any(not isinstance(c, str) for c in columns)
    ):
        raise AnalysisError("Columns must be a list of column names")


def _log_run(entry: AnalysisLogEntry):
    try:
        append_analysis_log(entry, limit=get_settings().analysis_log_limit)
    except Exception as e:
        logger.error(f"Failed to store analysis log for {entry.dataset_id}: {e}")


def run_analysis(
    dataset_id: str,
    records: List[Record],
    columns: List[str],
    classifier: ColumnClassifier = default_classifier,
    engine: Optional[ChartSuggestionEngine] = None,
) -> AnalysisResult:
    """The pure classify-suggest-report pipeline over validated input."""
    engine = engine or build_engine()

    prioritized = classifier.prioritize_columns(columns)
    logger.info(
        f"Analyzing {dataset_id}: {len(records)} records, {len(columns)} columns "
        f"({len(prioritized['high'])} high, {len(prioritized['medium'])} medium, "
        f"{len(prioritized['low'])} low, {len(prioritized['system'])} system)"
    )

    profiles = classifier.profile_columns(columns, records)
    suggestions = engine.suggest(profiles)

    return AnalysisResult(
        dataset_id=dataset_id,
        total_records=len(records),
        column_profiles=profiles,
        suggestions=suggestions,
        data_quality=assess_data_quality(profiles, len(records)),
        domain_insights=generate_domain_insights(profiles),
        analysis_timestamp="",
    )


@track_performance("analyze_dataset")
def analyze_dataset(
    dataset_id: str,
    records: Optional[List[Record]],
    columns: Optional[List[str]] = None,
    store_log: bool = True,
    use_cache: bool = True,
) -> AnalysisResult:
    """
    Analyze a set of submissions and suggest charts.

    Args:
        dataset_id: Identifier of the dataset (Kobo asset uid)
        records: Raw submissions; never mutated
        columns: Columns to analyze, in order; defaults to every key seen in records
        store_log: Append the outcome to the dataset's analysis log
        use_cache: Reuse a previous result for identical input

    Returns:
        AnalysisResult with profiles, at most max_suggestions suggestions and a quality report

    Raises:
        AnalysisError: If records or columns are missing or malformed
    """
    try:
        _validate(records, columns)
    except AnalysisError as e:
        logger.warning(f"Analysis of {dataset_id} rejected: {e}")
        if store_log:
            _log_run(AnalysisLogEntry(
                dataset_id=dataset_id, success=False, error_message=str(e), created_at=utc_now_iso(),
            ))
        raise

    columns = list(columns) if columns is not None else collect_columns(records)

    cache = get_analysis_cache()
    ttl = get_settings().analysis_cache_ttl_seconds
    cache_key = generate_analysis_cache_key(dataset_id, records, columns) if use_cache and ttl else None
    result = cache.get(cache_key) if cache_key else None

    if result is None:
        try:
            result = run_analysis(dataset_id, records, columns)
        except Exception as e:
            logger.error(f"Analysis of {dataset_id} failed: {e}", exc_info=True)
            if store_log:
                _log_run(AnalysisLogEntry(
                    dataset_id=dataset_id, success=False, error_message=str(e),
                    record_count=len(records), column_count=len(columns), created_at=utc_now_iso(),
                ))
            raise
        if cache_key:
            cache.set(cache_key, result, ttl=ttl)
    else:
        logger.info(f"Using cached analysis for {dataset_id}")

    result = result.model_copy(update={"analysis_timestamp": utc_now_iso()})

    logger.info(
        f"Analysis of {dataset_id} complete: {len(result.suggestions)} suggestions, "
        f"quality score {result.data_quality.score}"
    )
    if store_log:
        _log_run(AnalysisLogEntry(
            dataset_id=dataset_id,
            success=True,
            record_count=len(records),
            column_count=len(columns),
            suggestion_count=len(result.suggestions),
            created_at=result.analysis_timestamp,
        ))

    return result

