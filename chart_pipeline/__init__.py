"""
Chart Pipeline Package - Multi-series chart data aggregation.

Fetches paginated time series from several sources concurrently, computes
derived series and merges everything into one time-indexed table for a line
chart. A small task lifecycle publishes initial/pending/complete/error state
and re-runs when its dependencies change.

Quick Start:
    from chart_pipeline import (
        AggregationEngine,
        FetchConfig,
        max_series_config,
    )

    async def build():
        configs = [
            FetchConfig(
                label="Chrome",
                fetch_source=lambda: client.get_feature_counts_for_browser("chrome", start, end),
                get_timestamp=lambda p: parse_timestamp(p["timestamp"]),
                get_value=lambda p: p.get("count"),
            ),
            ...
        ]
        total = max_series_config("Total", get_timestamp, get_value)
        table = await AggregationEngine().aggregate(configs, [total])

        for row in table.rows:
            print(row)

Adding New Panels:
    1. Subclass LineChartPanel
    2. Implement: panel_id, panel_text, create_fetch_configs(), display_options_input()
    3. Optionally: create_derived_configs(), extra_dependencies()
"""

from chart_pipeline.aggregation import AggregationEngine, aggregate, merge_series
from chart_pipeline.calculators import RunningMaxCalculator, calculate_max, max_series_config
from chart_pipeline.chart_options import (
    ALL_BROWSERS,
    BROWSER_ID_TO_COLOR,
    BROWSER_ID_TO_LABEL,
    ChartDisplayOptionsInput,
    ChartSpec,
    generate_chart_options,
)
from chart_pipeline.config import PipelineConfig, get_config, set_config
from chart_pipeline.exceptions import (
    ChartPipelineError,
    ConfigurationError,
    FetchError,
    InvalidTransitionError,
    RateLimitError,
)
from chart_pipeline.lifecycle import ChartTask, TaskTransitionEvent, dependencies_changed
from chart_pipeline.logging_setup import setup_logging
from chart_pipeline.models import (
    ColumnRole,
    DerivedSeriesConfig,
    FetchConfig,
    MergedTable,
    MetricDataSeries,
    TableColumn,
    TaskState,
    TaskStatus,
)
from chart_pipeline.panels import (
    FeatureUsagePanel,
    FeatureWPTProgressPanel,
    GlobalFeatureCountPanel,
    LineChartPanel,
    MissingOneImplementationPanel,
)
from chart_pipeline.providers import WebStatusClient


__version__ = "1.0.0"

__all__ = [
    # Models
    "MetricDataSeries",
    "FetchConfig",
    "DerivedSeriesConfig",
    "MergedTable",
    "TableColumn",
    "ColumnRole",
    "TaskStatus",
    "TaskState",

    # Engine
    "AggregationEngine",
    "aggregate",
    "merge_series",

    # Calculators
    "RunningMaxCalculator",
    "calculate_max",
    "max_series_config",

    # Lifecycle
    "ChartTask",
    "TaskTransitionEvent",
    "dependencies_changed",

    # Chart sink
    "ChartSpec",
    "ChartDisplayOptionsInput",
    "generate_chart_options",
    "ALL_BROWSERS",
    "BROWSER_ID_TO_LABEL",
    "BROWSER_ID_TO_COLOR",

    # Panels
    "LineChartPanel",
    "GlobalFeatureCountPanel",
    "MissingOneImplementationPanel",
    "FeatureWPTProgressPanel",
    "FeatureUsagePanel",

    # Providers
    "WebStatusClient",

    # Config / logging
    "PipelineConfig",
    "get_config",
    "set_config",
    "setup_logging",

    # Exceptions
    "ChartPipelineError",
    "ConfigurationError",
    "FetchError",
    "RateLimitError",
    "InvalidTransitionError",
]
