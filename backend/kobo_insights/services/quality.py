"""
Data quality reporting and domain insights for analyzed datasets.
"""
from typing import Any, Dict, Mapping

from kobo_insights.core.schemas import ColumnProfile, DataQualityReport

LOW_COMPLETENESS = 0.5
MEANINGFUL_RELEVANCE = 0.6
HIGH_QUALITY_COMPLETENESS = 0.8

AGRICULTURE_DOMAINS = ("land_use", "land_area", "crop_production", "livestock")


def assess_data_quality(profiles: Mapping[str, ColumnProfile], record_count: int = 0) -> DataQualityReport:
    """
    Score a dataset from its column profiles.

    The score is the mean of completeness x relevance over every column,
    scaled to 0-100. System columns count toward the total but never toward
    the meaningful column count.
    """
    issues = []
    weighted = 0.0

    for name, profile in profiles.items():
        if profile.completeness < LOW_COMPLETENESS:
            issues.append(f"Low data completeness in {name} ({profile.completeness * 100:.1f}%)")
        if profile.value_type == "empty":
            issues.append(f"Unable to determine data type for {name}")
        weighted += profile.completeness * profile.relevance_score

    total = len(profiles)
    score = round(100 * weighted / total) if total else 0

    return DataQualityReport(
        score=score,
        issues=issues,
        total_columns=total,
        meaningful_columns=sum(
            1 for p in profiles.values()
            if not p.is_system and p.relevance_score > MEANINGFUL_RELEVANCE
        ),
        analyzed_records=record_count,
    )


def generate_domain_insights(profiles: Mapping[str, ColumnProfile]) -> Dict[str, Dict[str, Any]]:
    """Summarise which survey domains a dataset covers."""
    insights: Dict[str, Dict[str, Any]] = {
        "agriculture": {},
        "geographic": {},
        "economic": {},
        "data_quality": {},
    }

    agriculture = [p for p in profiles.values() if p.domain in AGRICULTURE_DOMAINS]
    if agriculture:
        insights["agriculture"] = {
            "has_data": True,
            "column_count": len(agriculture),
            "domains": sorted({p.domain for p in agriculture}),
        }

    regions = [p.name for p in profiles.values() if p.domain == "geographic"]
    if regions:
        insights["geographic"] = {"has_regions": True, "region_columns": regions}

    economic = [p.name for p in profiles.values() if p.domain == "economic"]
    if economic:
        insights["economic"] = {"has_data": True, "columns": economic}

    total = len(profiles)
    high_quality = sum(
        1 for p in profiles.values()
        if p.completeness > HIGH_QUALITY_COMPLETENESS and p.relevance_score > MEANINGFUL_RELEVANCE
    )
    insights["data_quality"] = {
        "high_quality_ratio": high_quality / total if total else 0.0,
        "total_columns": total,
    }

    return insights
