"""
Derived Series Calculators.

A calculator folds over every raw point, writing into a cache keyed by time
bucket. After the pass the engine turns the cache into a new series.

    calculator(point, series, cache) -> None

The calculator owns the policy for an existing bucket: overwrite, accumulate
or ignore.
"""

from datetime import datetime
from typing import Any, Optional

from chart_pipeline.models import (
    DerivedSeriesConfig,
    MetricDataSeries,
    SeriesCache,
    TimestampExtractor,
    TooltipExtractor,
    ValueExtractor,
    to_utc,
)


def bucket_key(timestamp: datetime) -> str:
    """ISO-8601 key of the UTC instant."""
    return to_utc(timestamp).isoformat()


class RunningMaxCalculator:
    """
    Keeps, per timestamp, the point with the largest value seen so far.

    Used to draw a "total" line as the max across otherwise independent
    series (e.g. total WPT test count reported by each browser run).
    A missing value counts as 0.
    """

    def __init__(
        self,
        get_timestamp: TimestampExtractor,
        get_value: ValueExtractor,
    ) -> None:
        self._get_timestamp = get_timestamp
        self._get_value = get_value

    def _value_of(self, point: Any) -> float:
        value = self._get_value(point)
        return 0 if value is None else value

    def __call__(
        self,
        point: Any,
        series: MetricDataSeries,
        cache: SeriesCache,
    ) -> None:
        key = bucket_key(self._get_timestamp(point))
        value = self._value_of(point)

        cached = cache.get(key)
        if cached is None:
            cache[key] = point
        elif self._value_of(cached) < value:
            cache[key] = point


def calculate_max(
    point: Any,
    series: MetricDataSeries,
    cache: SeriesCache,
) -> None:
    """Running maximum using the accessors of the series being folded."""
    key = bucket_key(series.get_timestamp(point))
    value = series.get_value(point) or 0

    cached = cache.get(key)
    if cached is None or (series.get_value(cached) or 0) < value:
        cache[key] = point


def max_series_config(
    label: str,
    get_timestamp: TimestampExtractor,
    get_value: ValueExtractor,
    get_tooltip: Optional[TooltipExtractor] = None,
) -> DerivedSeriesConfig:
    """Build a derived config computing the max of get_value per timestamp."""
    return DerivedSeriesConfig(
        label=label,
        calculator=RunningMaxCalculator(get_timestamp, get_value),
        get_timestamp=get_timestamp,
        get_value=get_value,
        get_tooltip=get_tooltip,
    )
