"""
Aggregation Engine - Concurrent fetch, derived series and merge.

============================================================
PURPOSE
============================================================
Turns a list of fetch configurations into one time-indexed table.

PIPELINE:

    FetchConfig[] ──► fetch all (concurrent, join barrier)
                          │
                          ▼
                   raw MetricDataSeries[]
                          │
    DerivedSeriesConfig[] ┤  (fold calculators, fresh cache per run)
                          ▼
                 raw + derived series
                          │
                          ▼
                     MergedTable

INVARIANTS:
- No partial table is returned: any source or accessor error propagates
- Derived caches live for exactly one run
- Merge output does not depend on source completion order

============================================================
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from chart_pipeline.models import (
    ColumnRole,
    DerivedSeriesConfig,
    FetchConfig,
    MergedTable,
    MetricDataSeries,
    SeriesCache,
    TableColumn,
    from_time_key,
    normalize_value,
    time_key,
)


logger = logging.getLogger(__name__)

DOMAIN_LABEL = "Time"


# ============================================================
# MERGE
# ============================================================

def build_columns(series_list: Sequence[MetricDataSeries]) -> List[TableColumn]:
    """Domain column, then one data (+ tooltip) column per series."""
    columns = [TableColumn(role=ColumnRole.DOMAIN, label=DOMAIN_LABEL, type="date")]
    for series in series_list:
        columns.append(TableColumn(role=ColumnRole.DATA, label=series.label))
        if series.has_tooltip:
            columns.append(
                TableColumn(role=ColumnRole.TOOLTIP, label=series.label, type="string")
            )
    return columns


def merge_series(series_list: Sequence[MetricDataSeries]) -> MergedTable:
    """
    Join series into one table keyed by timestamp.

    Within a series, the last point for a timestamp wins. Values of None or
    NaN become None; 0 is kept.

    Args:
        series_list: Series in column order

    Returns:
        MergedTable with rows ascending by time
    """
    # time key -> label -> (value, tooltip)
    slots: Dict[int, Dict[str, tuple]] = {}

    for series in series_list:
        for point in series.points:
            key = time_key(series.get_timestamp(point))
            value = normalize_value(series.get_value(point))
            tooltip = series.get_tooltip(point) if series.get_tooltip else None
            slots.setdefault(key, {})[series.label] = (value, tooltip)

    rows = []
    for key in sorted(slots):
        entries = slots[key]
        row: List[Any] = [from_time_key(key)]
        for series in series_list:
            value, tooltip = entries.get(series.label, (None, None))
            row.append(value)
            if series.has_tooltip:
                row.append(tooltip)
        rows.append(tuple(row))

    return MergedTable(columns=build_columns(series_list), rows=rows)


# ============================================================
# ENGINE
# ============================================================

class AggregationEngine:
    """
    Orchestrates one aggregation run.

    Usage:
        engine = AggregationEngine()
        table = await engine.aggregate(fetch_configs, [max_config])

    The engine holds no per-run state; one instance may serve concurrent
    runs.
    """

    async def aggregate(
        self,
        fetch_configs: Sequence[FetchConfig],
        derived_configs: Optional[Sequence[DerivedSeriesConfig]] = None,
    ) -> MergedTable:
        """
        Fetch every source, apply derived calculators, merge.

        Args:
            fetch_configs: Raw series to fetch, in column order
            derived_configs: Optional derived series, appended after raw series

        Returns:
            MergedTable

        Raises:
            Whatever a fetch source or accessor raised, unchanged.
        """
        self._warn_on_shared_labels(fetch_configs, derived_configs or [])
        logger.debug(
            f"Aggregating {len(fetch_configs)} sources, "
            f"{len(derived_configs or [])} derived series"
        )

        series_list = await self.fetch_all(fetch_configs)

        if derived_configs:
            series_list.extend(self.derive(series_list, derived_configs))

        table = merge_series(series_list)
        logger.debug(
            f"Merged table: {len(table.columns)} columns, {len(table.rows)} rows"
        )
        return table

    async def fetch_all(
        self,
        fetch_configs: Sequence[FetchConfig],
    ) -> List[MetricDataSeries]:
        """Run every source concurrently and wait for all of them."""
        buffers = [config.empty_series() for config in fetch_configs]

        await asyncio.gather(*(
            self._drain(config, buffer)
            for config, buffer in zip(fetch_configs, buffers)
        ))

        return buffers

    async def _drain(self, config: FetchConfig, buffer: MetricDataSeries) -> None:
        """Append every page of one source to its buffer, in order."""
        pages = 0
        async for page in config.fetch_source():
            buffer.points.extend(page)
            pages += 1
        logger.debug(f"[{config.label}] {pages} pages, {len(buffer.points)} points")

    def derive(
        self,
        raw_series: Sequence[MetricDataSeries],
        derived_configs: Sequence[DerivedSeriesConfig],
    ) -> List[MetricDataSeries]:
        """
        Fold every derived calculator over every raw point.

        Caches are allocated here, so nothing survives between runs.
        """
        caches: List[SeriesCache] = [{} for _ in derived_configs]

        for series in raw_series:
            for point in series.points:
                for config, cache in zip(derived_configs, caches):
                    config.calculator(point, series, cache)

        return [
            config.series_from_cache(cache)
            for config, cache in zip(derived_configs, caches)
        ]

    def _warn_on_shared_labels(
        self,
        fetch_configs: Sequence[FetchConfig],
        derived_configs: Sequence[DerivedSeriesConfig],
    ) -> None:
        counts = Counter(c.label for c in [*fetch_configs, *derived_configs])
        for label, count in counts.items():
            if count > 1:
                logger.warning(f"Series label '{label}' used {count} times; columns will alias")


_default_engine = AggregationEngine()


async def aggregate(
    fetch_configs: Sequence[FetchConfig],
    derived_configs: Optional[Sequence[DerivedSeriesConfig]] = None,
) -> MergedTable:
    """Module-level shortcut for AggregationEngine().aggregate()."""
    return await _default_engine.aggregate(fetch_configs, derived_configs)
