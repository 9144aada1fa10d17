"""
Column classification service.

Assigns every submission column a semantic domain, a priority tier, a
relevance score and a value type, and summarises its values. Domains are
decided by an ordered table of name patterns where the first matching rule
wins, so system metadata is recognised before any domain rule and the
agriculture domains before the general-purpose ones.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from kobo_insights.core.schemas import ColumnProfile, Record
from kobo_insights.services.values import (
    BOOLEAN_PATTERN,
    ISO_DATE_PREFIX,
    is_missing,
    looks_numeric,
    non_empty,
    normalize,
    parse_dates,
    to_numbers,
)

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5
TOP_VALUES = 5


def _patterns(*expressions: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(expr, re.IGNORECASE) for expr in expressions)


@dataclass(frozen=True)
class DomainRule:
    """A named group of column-name patterns mapped to a domain and tier."""
    domain: str
    priority: str
    patterns: Tuple[Pattern, ...]

    def matches(self, column_name: str) -> bool:
        return any(pattern.search(column_name) for pattern in self.patterns)


# Evaluated top to bottom; the first match decides the domain.
DEFAULT_DOMAIN_RULES: Tuple[DomainRule, ...] = (
    DomainRule("system", "system", _patterns(
        r'^_id$', r'^_uuid$', r'^_submission_time$', r'^_validation_status$',
        r'^_tags$', r'^_notes$', r'^_status$', r'^_attachments$', r'^formhub/uuid$',
        r'^_xform_id_string$', r'^__version__$', r'^_submitted_by$', r'^deviceid$',
        r'^subscriberid$', r'^simserial$', r'^phonenumber$', r'^meta/', r'^_geolocation',
        r'^start$', r'^end$', r'^today$',
    )),

    # Agriculture and administrative geography
    DomainRule("geographic", "high", _patterns(
        r'region', r'zone', r'woreda', r'kebele', r'district', r'location', r'village',
    )),
    DomainRule("land_use", "high", _patterns(
        r'land.*use', r'land.*cover', r'grazing', r'forest', r'cultivation', r'farm', r'agriculture',
    )),
    DomainRule("land_area", "high", _patterns(
        r'area', r'hectare', r'acre', r'size', r'total.*land', r'plot.*size',
    )),
    DomainRule("crop_production", "high", _patterns(
        r'yield', r'production', r'harvest', r'crop', r'planting',
    )),
    DomainRule("livestock", "high", _patterns(
        r'livestock', r'cattle', r'goat', r'sheep', r'poultry', r'animal',
    )),

    DomainRule("economic", "medium", _patterns(
        r'income', r'price', r'cost', r'revenue', r'market', r'sale', r'profit',
    )),
    DomainRule("environmental", "medium", _patterns(
        r'rainfall', r'temperature', r'soil', r'water', r'climate', r'irrigation',
    )),
    DomainRule("demographic", "medium", _patterns(
        r'household', r'family', r'population', r'age', r'gender', r'education',
    )),
    DomainRule("infrastructure", "medium", _patterns(
        r'equipment', r'tool', r'machine', r'vehicle', r'facility',
    )),
    DomainRule("measurement", "medium", _patterns(
        r'height', r'weight', r'length', r'width', r'depth', r'volume',
    )),
    DomainRule("quality", "medium", _patterns(
        r'quality', r'rating', r'score', r'grade', r'satisfaction',
    )),

    DomainRule("status", "low", _patterns(r'status', r'condition', r'state', r'phase')),
    DomainRule("count", "low", _patterns(r'number', r'count', r'quantity', r'amount', r'total')),
    DomainRule("percentage", "low", _patterns(r'percentage', r'percent', r'ratio', r'proportion')),
)

DEFAULT_TIER_BOOSTS: Dict[str, float] = {"high": 0.3, "medium": 0.2}
STRONG_INDICATOR = re.compile(r'(region|area|yield|income|production)', re.IGNORECASE)
STRONG_INDICATOR_BOOST = 0.2

IMAGE_NAME = _patterns(r'_url$', r'_attachment$', r'photo', r'image', r'picture')
IMAGE_VALUE = re.compile(r'\.(jpg|jpeg|png|gif|bmp|webp)$', re.IGNORECASE)
DATE_NAME = _patterns(r'date', r'time', r'timestamp')
GEOGRAPHIC_NAME = _patterns(r'gps', r'location', r'latitude', r'longitude', r'address')

# Secondary hints reported for columns no domain rule claimed
GENERAL_PATTERNS: Tuple[Tuple[str, Tuple[Pattern, ...]], ...] = (
    ("demographic", _patterns(r'age', r'gender', r'education', r'occupation')),
    ("geographic", _patterns(r'location', r'gps', r'address', r'region')),
    ("temporal", _patterns(r'date', r'time', r'year', r'month')),
    ("assessment", _patterns(r'rating', r'score', r'quality', r'satisfaction')),
    ("measurement", _patterns(r'height', r'weight', r'temperature', r'measurement')),
    ("financial", _patterns(r'price', r'cost', r'amount', r'budget')),
)

TYPE_MAJORITY = 0.7
CATEGORICAL_MAX_UNIQUE = 15
CATEGORICAL_MAX_UNIQUE_RATIO = 0.4


def categorize_area(mean_area: float) -> str:
    if mean_area < 1:
        return "Small"
    if mean_area < 5:
        return "Medium"
    if mean_area < 20:
        return "Large"
    return "Very Large"


def _any_match(patterns: Sequence[Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


class ColumnClassifier:
    """
    Stateless column classifier.

    The rule table is configuration: pass a different ordered sequence of
    DomainRule objects to classify another survey vocabulary. Instances are
    never mutated after construction and can be shared between requests.
    """

    def __init__(
        self,
        rules: Sequence[DomainRule] = DEFAULT_DOMAIN_RULES,
        tier_boosts: Optional[Dict[str, float]] = None,
        strong_indicator: Pattern = STRONG_INDICATOR,
        strong_indicator_boost: float = STRONG_INDICATOR_BOOST,
    ):
        self.rules = tuple(rules)
        self.tier_boosts = dict(tier_boosts or DEFAULT_TIER_BOOSTS)
        self.strong_indicator = strong_indicator
        self.strong_indicator_boost = strong_indicator_boost

    def classify_name(self, column_name: str) -> Tuple[str, str]:
        """Return (domain, priority) for a column name."""
        for rule in self.rules:
            if rule.matches(column_name):
                return rule.domain, rule.priority
        return "general", "low"

    def relevance(self, column_name: str, priority: str) -> float:
        score = 0.5 + self.tier_boosts.get(priority, 0.0)
        if self.strong_indicator.search(column_name):
            score += self.strong_indicator_boost
        return round(min(score, 1.0), 4)

    def prioritize_columns(self, columns: Iterable[str]) -> Dict[str, List[Dict[str, str]]]:
        """Group column names into high/medium/low/system tiers, keeping input order."""
        prioritized: Dict[str, List[Dict[str, str]]] = {"high": [], "medium": [], "low": [], "system": []}
        for column in columns:
            domain, priority = self.classify_name(column)
            prioritized[priority].append({"column": column, "domain": domain})

        logger.debug(
            "Column prioritization: %d high, %d medium, %d low, %d system",
            len(prioritized["high"]), len(prioritized["medium"]),
            len(prioritized["low"]), len(prioritized["system"]),
        )
        return prioritized

    def infer_value_type(self, column_name: str, values: List[Any], domain: str, unique_count: int) -> str:
        """
        Infer the value type from the column name and its non-empty values.

        Checks run in a fixed order and the first hit wins: image, date,
        geographic, boolean, numeric, categorical, then text.
        """
        if not values:
            return "empty"

        strings = [str(v).strip() for v in values]

        if _any_match(IMAGE_NAME, column_name) or any(
            IMAGE_VALUE.search(s) or "attachment" in s or "download_url" in s for s in strings
        ):
            return "image"

        if _any_match(DATE_NAME, column_name) or any(ISO_DATE_PREFIX.match(s) for s in strings):
            return "date"

        if _any_match(GEOGRAPHIC_NAME, column_name):
            return "geographic"

        boolean_count = sum(1 for s in strings if BOOLEAN_PATTERN.match(s))
        if boolean_count / len(values) > TYPE_MAJORITY:
            return "boolean"

        numeric_count = sum(1 for v in values if looks_numeric(v))
        if domain == "land_area" or numeric_count / len(values) > TYPE_MAJORITY:
            return "numeric"

        if (
            domain == "geographic"
            or unique_count <= CATEGORICAL_MAX_UNIQUE
            or unique_count / len(values) < CATEGORICAL_MAX_UNIQUE_RATIO
        ):
            return "categorical"

        return "text"

    def summarize(self, value_type: str, values: List[Any], domain: str = "general") -> Dict[str, Any]:
        """Summary statistics for non-empty values; unparseable values are skipped."""
        stats: Dict[str, Any] = {}

        if value_type == "numeric":
            numbers = to_numbers(values)
            if not numbers.empty:
                stats["min"] = float(numbers.min())
                stats["max"] = float(numbers.max())
                stats["mean"] = float(numbers.mean())
                stats["median"] = float(numbers.median())
                stats["sum"] = float(numbers.sum())
                if domain == "land_area":
                    stats["area_category"] = categorize_area(stats["mean"])

        elif value_type == "categorical":
            counts = Counter(normalize(v) for v in values)
            stats["distinct_values"] = len(counts)
            stats["most_common"] = [[value, count] for value, count in counts.most_common(TOP_VALUES)]

        elif value_type == "date":
            dates = parse_dates(values).dropna()
            if not dates.empty:
                stats["earliest"] = dates.min().isoformat()
                stats["latest"] = dates.max().isoformat()

        return stats

    def detect_pattern(self, column_name: str, domain: str) -> str:
        if domain != "general":
            return domain
        for pattern_type, patterns in GENERAL_PATTERNS:
            if _any_match(patterns, column_name):
                return pattern_type
        return "general"

    def classify_column(self, column_name: str, values: Optional[Iterable[Any]] = None) -> ColumnProfile:
        """
        Build the profile of one column.

        Args:
            column_name: Column (question) name as it appears in submissions
            values: The column's values across all records; None, missing and
                blank entries are allowed and counted as gaps

        Returns:
            ColumnProfile for the column
        """
        domain, priority = self.classify_name(column_name)
        present = [v for v in (values or []) if not is_missing(v)]
        filled = non_empty(present)

        total = len(present)
        completeness = len(filled) / total if total else 0.0
        unique_count = len({normalize(v) for v in filled})
        value_type = self.infer_value_type(column_name, filled, domain, unique_count)

        return ColumnProfile(
            name=column_name,
            domain=domain,
            priority=priority,
            value_type=value_type,
            total_count=total,
            non_empty_count=len(filled),
            completeness=completeness,
            relevance_score=self.relevance(column_name, priority),
            unique_value_count=unique_count,
            sample_values=filled[:SAMPLE_SIZE],
            summary_statistics=self.summarize(value_type, filled, domain) if filled else {},
            detected_pattern=self.detect_pattern(column_name, domain),
        )

    def profile_column(self, column_name: str, records: Sequence[Record]) -> ColumnProfile:
        return self.classify_column(column_name, [record.get(column_name) for record in records])

    def profile_columns(self, columns: Sequence[str], records: Sequence[Record]) -> Dict[str, ColumnProfile]:
        """Profile every column, keeping the caller's column order."""
        return {column: self.profile_column(column, records) for column in columns}


default_classifier = ColumnClassifier()


def classify_column(column_name: str, values: Optional[Iterable[Any]] = None) -> ColumnProfile:
    """Classify a column with the default rule table."""
    return default_classifier.classify_column(column_name, values)


def profile_columns(columns: Sequence[str], records: Sequence[Record]) -> Dict[str, ColumnProfile]:
    return default_classifier.profile_columns(columns, records)
