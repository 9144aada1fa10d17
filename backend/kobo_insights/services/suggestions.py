"""
Chart suggestion service.

Turns column profiles into a short, ranked list of chart suggestions.
Four independent strategies propose candidates (agriculture, key insights,
correlations, trends); candidates are then deduplicated by their column
bindings, filtered by relevance, ranked by strategy weight and truncated.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from kobo_insights.core.schemas import ChartConfiguration, ChartSuggestion, ColumnProfile

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_WEIGHTS: Dict[str, float] = {
    "agriculture": 4,
    "correlation": 3,
    "trend": 2.5,
    "insight": 2,
    "general": 1,
}

# (pattern for one column, pattern for the other, boost); checked in both orders
DEFAULT_CORRELATION_BOOSTS: Tuple[Tuple[Pattern, Pattern, float], ...] = (
    (re.compile(r'(area|size)', re.IGNORECASE), re.compile(r'(production|yield)', re.IGNORECASE), 0.3),
    (re.compile(r'(income|price)', re.IGNORECASE), re.compile(r'(production|yield)', re.IGNORECASE), 0.2),
    (re.compile(r'(rainfall|water)', re.IGNORECASE), re.compile(r'(yield|production)', re.IGNORECASE), 0.25),
)


@dataclass(frozen=True)
class SuggestionSettings:
    """Tuned constants of the suggestion heuristics. Only their relative ordering matters."""
    # Quality gate for generic generation
    meaningful_min_completeness: float = 0.6
    meaningful_min_relevance: float = 0.5
    meaningful_column_limit: int = 20

    # Stricter per-chart check used by the agriculture charts
    chart_min_non_empty: int = 5
    chart_min_completeness: float = 0.7
    chart_min_relevance: float = 0.6

    land_use_max_distinct: int = 8
    insight_max_distinct: int = 10
    insight_categorical_charts: int = 3
    insight_numeric_charts: int = 2
    histogram_bins: int = 8
    correlation_candidates: int = 5
    correlation_base: float = 0.6
    correlation_same_domain_boost: float = 0.2
    correlation_threshold: float = 0.75
    correlation_boosts: Tuple[Tuple[Pattern, Pattern, float], ...] = DEFAULT_CORRELATION_BOOSTS

    agriculture_limit: int = 5
    insight_limit: int = 6
    correlation_limit: int = 3
    trend_limit: int = 2

    min_relevance: float = 0.7
    max_suggestions: int = 15
    priority_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS))


def _suggestion(name: str, chart_type: str, score: float, tag: str, description: Optional[str] = None, **config) -> ChartSuggestion:
    return ChartSuggestion(
        name=name,
        chart_type=chart_type,
        configuration=ChartConfiguration(data_source=tag, **config),
        relevance_score=score,
        domain_tag=tag,
        description=description,
    )


class ChartSuggestionEngine:
    """Rule-based chart suggestion over column profiles. Holds no per-request state."""

    def __init__(self, settings: Optional[SuggestionSettings] = None):
        self.settings = settings or SuggestionSettings()

    def is_chartable(self, profile: ColumnProfile) -> bool:
        return not profile.is_system and profile.non_empty_count > 0 and profile.value_type != "empty"

    def is_meaningful(self, profile: ColumnProfile) -> bool:
        s = self.settings
        return (
            self.is_chartable(profile)
            and profile.completeness > s.meaningful_min_completeness
            and profile.relevance_score > s.meaningful_min_relevance
        )

    def is_good_for_chart(self, profile: Optional[ColumnProfile]) -> bool:
        if profile is None or not self.is_chartable(profile):
            return False
        s = self.settings
        return (
            profile.non_empty_count >= s.chart_min_non_empty
            and profile.completeness > s.chart_min_completeness
            and profile.relevance_score > s.chart_min_relevance
        )

    def meaningful_columns(self, profiles: Iterable[ColumnProfile]) -> List[ColumnProfile]:
        """Meaningful columns, most relevant first, limited to the configured top N."""
        meaningful = [p for p in profiles if self.is_meaningful(p)]
        meaningful.sort(key=lambda p: p.relevance_score, reverse=True)
        return meaningful[:self.settings.meaningful_column_limit]

    def agriculture_charts(self, profiles: Sequence[ColumnProfile]) -> List[ChartSuggestion]:
        """Region, land use and livestock charts built from the full profile set."""
        def first(domain: str) -> Optional[ColumnProfile]:
            return next((p for p in profiles if p.domain == domain and self.is_chartable(p)), None)

        region = first("geographic")
        area = first("land_area")
        production = first("crop_production")
        land_use = first("land_use")
        livestock = first("livestock")

        charts: List[ChartSuggestion] = []

        if region is not None:
            if self.is_good_for_chart(area):
                charts.append(_suggestion(
                    f"Land Area by {region.name}", "bar", 0.95, "agriculture",
                    "Distribution of land area across different regions",
                    x_column=region.name, y_column=area.name, group_by=region.name,
                ))
            if self.is_good_for_chart(production):
                charts.append(_suggestion(
                    f"Production by {region.name}", "bar", 0.92, "agriculture",
                    f"Total {production.name} for each {region.name}",
                    x_column=region.name, y_column=production.name, group_by=region.name,
                ))

        if (
            self.is_good_for_chart(land_use)
            and land_use.unique_value_count <= self.settings.land_use_max_distinct
        ):
            charts.append(_suggestion(
                "Land Use Distribution", "pie", 0.88, "agriculture",
                f"Share of each {land_use.name} category",
                column=land_use.name,
            ))

        if region is not None and self.is_good_for_chart(livestock):
            charts.append(_suggestion(
                f"Livestock by {region.name}", "bar", 0.87, "agriculture",
                f"Total {livestock.name} for each {region.name}",
                x_column=region.name, y_column=livestock.name, group_by=region.name,
            ))

        return charts[:self.settings.agriculture_limit]

    def insight_charts(self, meaningful: Sequence[ColumnProfile]) -> List[ChartSuggestion]:
        s = self.settings
        categorical = [
            p for p in meaningful
            if p.value_type == "categorical" and p.unique_value_count <= s.insight_max_distinct
        ][:s.insight_categorical_charts]
        numeric = [p for p in meaningful if p.value_type == "numeric"][:s.insight_numeric_charts]

        charts: List[ChartSuggestion] = []
        for profile in categorical:
            charts.append(_suggestion(
                f"Distribution: {profile.name}", "pie", 0.85, "insight",
                f"Share of answers for {profile.name}",
                column=profile.name,
            ))

        for profile in numeric:
            charts.append(_suggestion(
                f"Values: {profile.name}", "bar", 0.82, "insight",
                f"How {profile.name} values are distributed",
                column=profile.name, bins=s.histogram_bins,
            ))

        if categorical and numeric:
            category, value = categorical[0], numeric[0]
            charts.append(_suggestion(
                f"{value.name} by {category.name}", "bar", 0.88, "insight",
                f"Comparison of {value.name} across {category.name}",
                x_column=category.name, y_column=value.name, group_by=category.name,
            ))

        return charts[:s.insight_limit]

    def correlation_score(self, first: ColumnProfile, second: ColumnProfile) -> float:
        s = self.settings
        score = s.correlation_base
        if first.domain == second.domain:
            score += s.correlation_same_domain_boost
        for left, right, boost in s.correlation_boosts:
            if (left.search(first.name) and right.search(second.name)) or (
                left.search(second.name) and right.search(first.name)
            ):
                score += boost
        return round(min(score, 1.0), 4)

    def correlation_charts(self, meaningful: Sequence[ColumnProfile]) -> List[ChartSuggestion]:
        s = self.settings
        numeric = [p for p in meaningful if p.value_type == "numeric"][:s.correlation_candidates]

        charts: List[ChartSuggestion] = []
        for i, first in enumerate(numeric):
            for second in numeric[i + 1:]:
                score = self.correlation_score(first, second)
                if score >= s.correlation_threshold:
                    charts.append(_suggestion(
                        f"{first.name} vs {second.name}", "scatter", score, "correlation",
                        f"Relationship between {first.name} and {second.name}",
                        x_column=first.name, y_column=second.name,
                    ))

        return charts[:s.correlation_limit]

    def trend_charts(self, meaningful: Sequence[ColumnProfile]) -> List[ChartSuggestion]:
        dates = [p for p in meaningful if p.value_type == "date"]
        numeric = [p for p in meaningful if p.value_type == "numeric"]
        if not dates or not numeric:
            return []

        date_column, value_column = dates[0], numeric[0]
        charts = [_suggestion(
            f"Trend: {value_column.name} Over Time", "line", 0.9, "trend",
            f"Daily average of {value_column.name} by {date_column.name}",
            date_column=date_column.name, value_column=value_column.name,
        )]
        return charts[:self.settings.trend_limit]

    @staticmethod
    def deduplicate(charts: Iterable[ChartSuggestion]) -> List[ChartSuggestion]:
        """Keep the first chart for each (chart type, x column, y column) signature."""
        seen = set()
        unique = []
        for chart in charts:
            if chart.signature in seen:
                continue
            seen.add(chart.signature)
            unique.append(chart)
        return unique

    def rank(self, charts: Iterable[ChartSuggestion]) -> List[ChartSuggestion]:
        s = self.settings
        weights = s.priority_weights
        kept = [c for c in charts if c.relevance_score >= s.min_relevance]
        kept.sort(key=lambda c: (weights.get(c.domain_tag, 1), c.relevance_score), reverse=True)
        return kept[:s.max_suggestions]

    def suggest(self, profiles: Mapping[str, ColumnProfile]) -> List[ChartSuggestion]:
        """
        Produce ranked chart suggestions for a dataset.

        Args:
            profiles: Column profiles keyed by column name, in column order

        Returns:
            At most max_suggestions charts, sorted by strategy weight then relevance
        """
        all_profiles = list(profiles.values())
        meaningful = self.meaningful_columns(all_profiles)
        logger.debug(f"Focusing on {len(meaningful)} high-quality columns")

        candidates: List[ChartSuggestion] = []
        candidates.extend(self.agriculture_charts(all_profiles))
        candidates.extend(self.insight_charts(meaningful))
        candidates.extend(self.correlation_charts(meaningful))
        candidates.extend(self.trend_charts(meaningful))

        final = self.rank(self.deduplicate(candidates))
        logger.info(f"Selected {len(final)} chart suggestions from {len(candidates)} candidates")
        return final


def suggest_charts(profiles: Mapping[str, ColumnProfile], settings: Optional[SuggestionSettings] = None) -> List[ChartSuggestion]:
    return ChartSuggestionEngine(settings).suggest(profiles)
