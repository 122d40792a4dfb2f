"""
Chart Panels - Concrete line charts of the status dashboard.

============================================================
PURPOSE
============================================================
A panel ties one chart together:

    dependencies (client, start, end, ...) ──► ChartTask
                                                  │
                   create_fetch_configs() ────────┤
                   create_derived_configs() ──────┤
                                                  ▼
                                         AggregationEngine
                                                  │
                                                  ▼
                                  ChartSpec(table, options) ──► sink

PANELS:
- GlobalFeatureCountPanel        features supported per browser + Baseline total
- MissingOneImplementationPanel  features missing only in one browser
- FeatureWPTProgressPanel        WPT pass counts per browser + max total
- FeatureUsagePanel              Chrome daily usage of a feature

Fetch configurations are rebuilt on every run so that their sources close
over the current dependencies.

============================================================
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from chart_pipeline.aggregation import AggregationEngine
from chart_pipeline.calculators import max_series_config
from chart_pipeline.chart_options import (
    ALL_BROWSERS,
    BROWSER_ID_TO_LABEL,
    DESKTOP_BROWSERS,
    MOBILE_BROWSERS,
    ChartDisplayOptionsInput,
    ChartSpec,
    generate_chart_options,
    series_colors,
)
from chart_pipeline.lifecycle import ChartTask
from chart_pipeline.models import (
    DerivedSeriesConfig,
    FetchConfig,
    MergedTable,
    from_time_key,
    time_key,
)
from chart_pipeline.providers.webstatus import (
    STABLE_CHANNEL,
    Point,
    WebStatusClient,
    parse_timestamp,
)


logger = logging.getLogger(__name__)

INITIAL_MESSAGE = "Preparing request for stats."
PENDING_MESSAGE = "Loading stats."
ERROR_MESSAGE = "Error when loading stats."
NO_DATA_MESSAGE = "No data."


def point_timestamp(point: Point) -> datetime:
    return parse_timestamp(point["timestamp"])


def point_count(point: Point) -> Optional[float]:
    return point.get("count")


def round_to_hours(timestamp: datetime, hours: int = 1) -> datetime:
    """Round to the nearest multiple of `hours` (half rounds up)."""
    bucket_ms = hours * 3_600_000
    rounded = math.floor(time_key(timestamp) / bucket_ms + 0.5) * bucket_ms
    return from_time_key(rounded)


# ============================================================
# BASE PANEL
# ============================================================

class LineChartPanel(ABC):
    """
    Base class for line chart panels.

    Subclasses provide the fetch configurations and display inputs; the
    base class owns the ChartTask and rendering.
    """

    def __init__(
        self,
        client: Optional[WebStatusClient],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        engine: Optional[AggregationEngine] = None,
        keep_previous_value: bool = False,
    ) -> None:
        self.client = client
        self.start_date = start_date
        self.end_date = end_date
        self._engine = engine or AggregationEngine()
        self._task = ChartTask(
            task_fn=self.load,
            args_fn=self.dependencies,
            keep_previous_value=keep_previous_value,
            name=self.panel_id,
        )

    @property
    @abstractmethod
    def panel_id(self) -> str:
        """DOM-style identifier of the panel."""
        pass

    @property
    @abstractmethod
    def panel_text(self) -> str:
        """Panel heading."""
        pass

    @abstractmethod
    def create_fetch_configs(
        self,
        client: WebStatusClient,
        start_date: datetime,
        end_date: datetime,
        *extra: Any,
    ) -> List[FetchConfig]:
        """Raw series for one run."""
        pass

    @abstractmethod
    def display_options_input(self) -> ChartDisplayOptionsInput:
        """Colors and axis title."""
        pass

    def create_derived_configs(self, *extra: Any) -> List[DerivedSeriesConfig]:
        """Derived series for one run (none by default)."""
        return []

    def extra_dependencies(self) -> Tuple[Any, ...]:
        """Panel-specific dependencies appended after (client, start, end)."""
        return ()

    @property
    def task(self) -> ChartTask:
        return self._task

    def dependencies(self) -> Tuple[Any, ...]:
        return (self.client, self.start_date, self.end_date, *self.extra_dependencies())

    def refresh(self) -> Optional[asyncio.Task]:
        """Re-run the loading task if any dependency changed."""
        return self._task.request_update()

    async def load(self, client, start_date, end_date, *extra) -> Optional[Any]:
        """Task body: aggregate unless a dependency is still missing."""
        if any(dep is None for dep in (client, start_date, end_date, *extra)):
            logger.debug(f"[{self.panel_id}] Dependencies incomplete, skipping load")
            return None
        return await self._engine.aggregate(
            self.create_fetch_configs(client, start_date, end_date, *extra),
            self.create_derived_configs(*extra),
        )

    def chart_options(self) -> dict:
        return generate_chart_options(
            self.start_date, self.end_date, self.display_options_input()
        )

    def render(self) -> Any:
        """Status message, or a ChartSpec once the table is ready."""
        return self._task.render(
            initial=lambda: INITIAL_MESSAGE,
            pending=lambda: PENDING_MESSAGE,
            complete=self.render_complete,
            error=self.render_error,
        )

    def render_complete(self, table: Optional[MergedTable]) -> Any:
        if table is None:
            return NO_DATA_MESSAGE
        return ChartSpec(
            table=table,
            options=self.chart_options(),
            container_id=f"{self.panel_id}-chart-container",
        )

    def render_error(self, error: BaseException) -> str:
        return ERROR_MESSAGE


# ============================================================
# STATS PANELS
# ============================================================

class GlobalFeatureCountPanel(LineChartPanel):
    """Features supported per browser, plus the Baseline total."""

    BASELINE_LABEL = "Total number of Baseline features"

    def __init__(self, *args, browsers: Sequence[str] = ALL_BROWSERS, **kwargs) -> None:
        self.browsers = list(browsers)
        super().__init__(*args, **kwargs)

    @property
    def panel_id(self) -> str:
        return "global-feature-support"

    @property
    def panel_text(self) -> str:
        return "Global feature support"

    def extra_dependencies(self) -> Tuple[Any, ...]:
        return (tuple(self.browsers),)

    def create_fetch_configs(self, client, start_date, end_date, *extra) -> List[FetchConfig]:
        configs = [
            FetchConfig(
                label=BROWSER_ID_TO_LABEL[browser],
                fetch_source=lambda browser=browser: client.get_feature_counts_for_browser(
                    browser, start_date, end_date
                ),
                get_timestamp=point_timestamp,
                get_value=point_count,
            )
            for browser in self.browsers
        ]
        configs.append(FetchConfig(
            label=self.BASELINE_LABEL,
            fetch_source=lambda: client.list_aggregated_baseline_status_counts(
                start_date, end_date
            ),
            get_timestamp=point_timestamp,
            get_value=point_count,
        ))
        return configs

    def display_options_input(self) -> ChartDisplayOptionsInput:
        return ChartDisplayOptionsInput(
            series_colors=series_colors(self.browsers),
            v_axis_title="Number of features supported",
        )


class MissingOneImplementationPanel(LineChartPanel):
    """Features implemented by every other selected browser but this one."""

    def __init__(self, *args, browsers: Sequence[str] = ALL_BROWSERS, **kwargs) -> None:
        self.browsers = list(browsers)
        super().__init__(*args, **kwargs)

    @property
    def panel_id(self) -> str:
        return "missing-one-implementation"

    @property
    def panel_text(self) -> str:
        return "Features missing in only 1 browser"

    def extra_dependencies(self) -> Tuple[Any, ...]:
        return (tuple(self.browsers),)

    def create_fetch_configs(self, client, start_date, end_date, *extra) -> List[FetchConfig]:
        return [
            FetchConfig(
                label=BROWSER_ID_TO_LABEL[browser],
                fetch_source=lambda browser=browser: client.get_missing_one_implementation_counts(
                    browser,
                    [other for other in self.browsers if other != browser],
                    start_date,
                    end_date,
                ),
                get_timestamp=point_timestamp,
                get_value=point_count,
            )
            for browser in self.browsers
        ]

    def display_options_input(self) -> ChartDisplayOptionsInput:
        return ChartDisplayOptionsInput(
            series_colors=series_colors(self.browsers, include_total=False),
            v_axis_title="Number of features missing",
        )


# ============================================================
# FEATURE PANELS
# ============================================================

class FeatureWPTProgressPanel(LineChartPanel):
    """
    WPT pass counts of one feature, one table per view (desktop, mobile).

    Runs of different browsers land minutes apart, and their reported
    total_tests_count can disagree. Run timestamps are rounded to the hour
    and the "Total" line is the max total across browsers per timestamp.
    """

    TAB_VIEWS = ["Desktop", "Mobile"]
    BROWSERS_BY_VIEW = [DESKTOP_BROWSERS, MOBILE_BROWSERS]
    TEST_VIEW_TO_STRING = {
        "subtest_counts": "subtests",
        "test_counts": "tests",
    }

    def __init__(
        self,
        *args,
        feature_id: Optional[str] = None,
        test_view: str = "subtest_counts",
        rounding_hours: int = 1,
        channel: str = STABLE_CHANNEL,
        **kwargs,
    ) -> None:
        self.feature_id = feature_id
        self.test_view = test_view
        self.rounding_hours = rounding_hours
        self.channel = channel
        super().__init__(*args, **kwargs)

    @property
    def panel_id(self) -> str:
        return "feature-wpt-implementation-progress"

    @property
    def panel_text(self) -> str:
        return "Implementation progress"

    def extra_dependencies(self) -> Tuple[Any, ...]:
        return (self.feature_id, self.test_view)

    def run_timestamp(self, point: Point) -> datetime:
        return round_to_hours(parse_timestamp(point["run_timestamp"]), self.rounding_hours)

    def create_fetch_configs(
        self,
        client,
        start_date,
        end_date,
        feature_id=None,
        test_view=None,
        browsers: Optional[Sequence[str]] = None,
    ) -> List[FetchConfig]:
        return [
            FetchConfig(
                label=BROWSER_ID_TO_LABEL[browser],
                fetch_source=lambda browser=browser: client.get_feature_stats_by_browser_and_channel(
                    feature_id, browser, self.channel, start_date, end_date, test_view
                ),
                get_timestamp=self.run_timestamp,
                get_value=lambda point: point.get("test_pass_count") or 0,
                get_tooltip=lambda point, label=BROWSER_ID_TO_LABEL[browser]: (
                    f"{label}: {point.get('test_pass_count')} of {point.get('total_tests_count')}"
                ),
            )
            for browser in (browsers if browsers is not None else self.BROWSERS_BY_VIEW[0])
        ]

    def create_derived_configs(self, feature_id=None, test_view=None) -> List[DerivedSeriesConfig]:
        return [
            max_series_config(
                label=f"Total number of {self.TEST_VIEW_TO_STRING[test_view]}",
                get_timestamp=self.run_timestamp,
                get_value=lambda point: point.get("total_tests_count") or 0,
            )
        ]

    async def load(self, client, start_date, end_date, *extra) -> Optional[List[MergedTable]]:
        """One aggregation per view, run concurrently."""
        if any(dep is None for dep in (client, start_date, end_date, *extra)):
            logger.debug(f"[{self.panel_id}] Dependencies incomplete, skipping load")
            return None
        return list(await asyncio.gather(*(
            self._engine.aggregate(
                self.create_fetch_configs(client, start_date, end_date, *extra, browsers=browsers),
                self.create_derived_configs(*extra),
            )
            for browsers in self.BROWSERS_BY_VIEW
        )))

    def display_options_input(self) -> ChartDisplayOptionsInput:
        return self.view_options_input(0)

    def view_options_input(self, view: int) -> ChartDisplayOptionsInput:
        return ChartDisplayOptionsInput(
            series_colors=series_colors(self.BROWSERS_BY_VIEW[view]),
            v_axis_title=f"Number of {self.TEST_VIEW_TO_STRING[self.test_view]} passed",
        )

    def render_complete(self, tables: Optional[List[MergedTable]]) -> Any:
        if tables is None:
            return NO_DATA_MESSAGE
        return [
            ChartSpec(
                table=table,
                options=generate_chart_options(
                    self.start_date, self.end_date, self.view_options_input(view)
                ),
                container_id=f"{self.panel_id}-{view}-chart-container",
            )
            for view, table in enumerate(tables)
        ]


def usage_percent(usage: Optional[float]) -> float:
    """
    Usage ratio as a percentage, keeping small values visible.

    >= 0.1% has one decimal, >= 0.01% two, anything smaller three.
    """
    percent = (usage or 0) * 100
    if percent == 0 or percent >= 0.1:
        return round(percent, 1)
    if percent >= 0.01:
        return round(percent, 2)
    return round(percent, 3)


def format_usage(percent: float) -> str:
    if percent >= 100:
        return "100%"
    if percent == 0 or percent >= 0.1:
        return f"{percent:.1f}%"
    if percent >= 0.01:
        return f"{percent:.2f}%"
    return f"{percent:.3f}%"


class FeatureUsagePanel(LineChartPanel):
    """Chrome daily usage of one feature, in percent."""

    def __init__(self, *args, feature_id: Optional[str] = None, **kwargs) -> None:
        self.feature_id = feature_id
        super().__init__(*args, **kwargs)

    @property
    def panel_id(self) -> str:
        return "feature-usage"

    @property
    def panel_text(self) -> str:
        return "Feature Usage"

    def extra_dependencies(self) -> Tuple[Any, ...]:
        return (self.feature_id,)

    def create_fetch_configs(self, client, start_date, end_date, feature_id=None) -> List[FetchConfig]:
        label = BROWSER_ID_TO_LABEL["chrome"]
        return [
            FetchConfig(
                label=label,
                fetch_source=lambda: client.get_chrome_daily_usage_stats(
                    feature_id, start_date, end_date
                ),
                get_timestamp=point_timestamp,
                get_value=lambda point: usage_percent(point.get("usage")),
                get_tooltip=lambda point: f"{label}: {format_usage(usage_percent(point.get('usage')))}",
            )
        ]

    def display_options_input(self) -> ChartDisplayOptionsInput:
        return ChartDisplayOptionsInput(
            series_colors=series_colors(["chrome"], include_total=False),
            v_axis_title="Usage (%)",
        )
