"""
Chart data renderer.

Turns one chart configuration plus the raw submissions into plotting-ready
series (Chart.js shaped: labels + datasets). Records that cannot contribute
to a series are skipped one by one; only a configuration without any usable
column binding is an error.
"""
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from kobo_insights.core.errors import ChartRenderError
from kobo_insights.core.performance import track_performance
from kobo_insights.core.schemas import ChartConfiguration, ChartData, Record
from kobo_insights.services.values import is_empty, label, parse_dates, to_number, utc_now_iso

logger = logging.getLogger(__name__)

LINE_COLOR = '#3b82f6'
LINE_FILL = 'rgba(59, 130, 246, 0.1)'
SCATTER_COLOR = 'rgba(59, 130, 246, 0.6)'


def generate_colors(count: int, hue_shift: float = 0.0) -> List[str]:
    """Evenly spaced HSL colors; the same inputs always give the same palette."""
    return [f"hsl({(i * 360 / count + hue_shift * 360) % 360:g}, 70%, 60%)" for i in range(count)]


def _count_values(column: str, records: Sequence[Record]) -> "OrderedDict[str, int]":
    counts: "OrderedDict[str, int]" = OrderedDict()
    for record in records:
        value = record.get(column)
        if is_empty(value):
            continue
        key = label(value)
        counts[key] = counts.get(key, 0) + 1
    return counts


def prepare_pie_data(column: str, records: Sequence[Record]) -> ChartData:
    counts = _count_values(column, records)
    labels = list(counts.keys())
    data = list(counts.values())
    total = sum(data)

    return ChartData(
        labels=labels,
        datasets=[{
            "label": column,
            "data": data,
            "backgroundColor": generate_colors(len(labels)),
        }],
        raw_data=[
            {"label": key, "count": count, "percentage": round(count / total * 100, 1)}
            for key, count in counts.items()
        ],
    )


def prepare_count_bar_data(column: str, records: Sequence[Record]) -> ChartData:
    counts = _count_values(column, records)
    labels = list(counts.keys())

    return ChartData(
        labels=labels,
        datasets=[{
            "label": f"Count of {column}",
            "data": list(counts.values()),
            "backgroundColor": generate_colors(len(labels)),
        }],
        raw_data=[{"label": key, "count": count} for key, count in counts.items()],
    )


def prepare_histogram_data(column: str, bins: int, records: Sequence[Record]) -> ChartData:
    """Equal-width histogram of a numeric column; falls back to counts when it cannot be binned."""
    values = [n for n in (to_number(record.get(column)) for record in records) if n is not None]
    if not values:
        return prepare_count_bar_data(column, records)

    try:
        counts, edges = np.histogram(np.asarray(values, dtype=float), bins=bins)
    except ValueError as e:
        # numpy cannot bin a range wider than the float maximum
        logger.warning(f"Cannot bin '{column}' into {bins} bins ({e}), counting values instead")
        return prepare_count_bar_data(column, records)
    if not np.all(np.isfinite(edges)):
        logger.warning(f"Bin edges of '{column}' overflow, counting values instead")
        return prepare_count_bar_data(column, records)

    labels = [f"{edges[i]:g} - {edges[i + 1]:g}" for i in range(len(counts))]

    return ChartData(
        labels=labels,
        datasets=[{
            "label": f"Count of {column}",
            "data": [int(c) for c in counts],
            "backgroundColor": generate_colors(len(labels)),
        }],
        raw_data=[
            {"label": labels[i], "min": float(edges[i]), "max": float(edges[i + 1]), "count": int(counts[i])}
            for i in range(len(counts))
        ],
    )


def prepare_grouped_bar_data(x_column: str, y_column: str, group_by: Optional[str], records: Sequence[Record]) -> ChartData:
    """Sum y per x value, one series per group value."""
    split = bool(group_by) and group_by != x_column
    groups: "OrderedDict[str, Dict[str, float]]" = OrderedDict()
    labels: List[str] = []
    raw = []

    for record in records:
        x_value = record.get(x_column)
        if is_empty(x_value):
            continue
        x_key = label(x_value)
        if x_key not in labels:
            labels.append(x_key)

        group_key = label(record.get(group_by)) if split else "all"
        raw.append({"x": x_key, "y": record.get(y_column), "group": group_key})

        y_value = to_number(record.get(y_column))
        if y_value is None:
            continue
        sums = groups.setdefault(group_key, {})
        sums[x_key] = sums.get(x_key, 0.0) + y_value

    group_count = max(1, len(groups))
    datasets = [
        {
            "label": group if split else y_column,
            "data": [sums.get(x_key, 0) for x_key in labels],
            "backgroundColor": generate_colors(1, index / group_count)[0],
        }
        for index, (group, sums) in enumerate(groups.items())
    ]

    return ChartData(labels=labels, datasets=datasets, raw_data=raw)


def prepare_line_data(date_column: str, value_column: str, records: Sequence[Record], fill: bool = False) -> ChartData:
    """Average a numeric column per calendar day (UTC), days ascending."""
    dates = parse_dates([record.get(date_column) for record in records])
    days: Dict[str, Dict[str, float]] = {}

    for record, timestamp in zip(records, dates):
        value = to_number(record.get(value_column))
        if value is None or pd.isna(timestamp):
            continue
        day = timestamp.date().isoformat()
        bucket = days.setdefault(day, {"sum": 0.0, "count": 0})
        bucket["sum"] += value
        bucket["count"] += 1

    labels = sorted(days)
    averages = [days[day]["sum"] / days[day]["count"] for day in labels]

    dataset: Dict[str, Any] = {
        "label": value_column,
        "data": averages,
        "borderColor": LINE_COLOR,
        "backgroundColor": LINE_FILL,
    }
    if fill:
        dataset["fill"] = True

    return ChartData(
        labels=labels,
        datasets=[dataset],
        raw_data=[
            {"date": day, "value": avg, "count": int(days[day]["count"])}
            for day, avg in zip(labels, averages)
        ],
    )


def prepare_scatter_data(x_column: str, y_column: str, records: Sequence[Record]) -> ChartData:
    points = []
    for record in records:
        x = to_number(record.get(x_column))
        y = to_number(record.get(y_column))
        if x is None or y is None:
            continue
        points.append({"x": x, "y": y})

    return ChartData(
        labels=[],
        datasets=[{
            "label": f"{y_column} vs {x_column}",
            "data": points,
            "backgroundColor": SCATTER_COLOR,
        }],
        raw_data=points,
    )


@track_performance("render_chart")
def render_chart(chart_type: str, configuration: ChartConfiguration, records: Sequence[Record]) -> ChartData:
    """
    Prepare chart data for a single chart.

    Args:
        chart_type: bar, line, pie, doughnut, scatter or area
        configuration: Column bindings of the chart
        records: Raw submissions

    Returns:
        ChartData with labels, datasets, raw_data and metadata

    Raises:
        ChartRenderError: If the configuration binds no column the chart type needs
    """
    config = configuration
    x_column = config.primary_x
    y_column = config.primary_y

    if chart_type in ("pie", "doughnut"):
        if not x_column:
            raise ChartRenderError(f"{chart_type} chart needs a column")
        data = prepare_pie_data(x_column, records)

    elif chart_type in ("line", "area"):
        date_column = config.date_column or config.x_column
        value_column = config.value_column or config.y_column
        if not date_column or not value_column:
            raise ChartRenderError(f"{chart_type} chart needs a date column and a value column")
        data = prepare_line_data(date_column, value_column, records, fill=chart_type == "area")

    elif chart_type == "scatter":
        if not x_column or not y_column:
            raise ChartRenderError("scatter chart needs an x column and a y column")
        data = prepare_scatter_data(x_column, y_column, records)

    else:
        if chart_type != "bar":
            logger.warning(f"Unknown chart type '{chart_type}', rendering as bar")
        if not x_column:
            raise ChartRenderError("bar chart needs a column")
        if y_column:
            data = prepare_grouped_bar_data(x_column, y_column, config.group_by, records)
        elif config.bins:
            data = prepare_histogram_data(x_column, config.bins, records)
        else:
            data = prepare_count_bar_data(x_column, records)

    data.metadata = {
        "chart_type": chart_type,
        "data_source": config.data_source,
        "total_data_points": len(records),
        "generated_at": utc_now_iso(),
    }
    return data
