"""
Chart Sink Contract - Display options and browser constants.

The charting widget itself is external. It accepts a MergedTable (column 0
is the time domain, then data columns each optionally followed by a tooltip
column) and the options dict built here.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from chart_pipeline.models import MergedTable


# ============================================================
# BROWSERS
# ============================================================

ALL_BROWSERS: List[str] = [
    "chrome",
    "firefox",
    "safari",
    "edge",
    "chrome_android",
    "firefox_android",
    "safari_ios",
]

DESKTOP_BROWSERS: List[str] = ["chrome", "firefox", "safari", "edge"]
MOBILE_BROWSERS: List[str] = ["chrome_android", "firefox_android", "safari_ios"]

BROWSER_ID_TO_LABEL: Dict[str, str] = {
    "chrome": "Chrome",
    "firefox": "Firefox",
    "safari": "Safari",
    "edge": "Edge",
    "chrome_android": "Chrome Android",
    "firefox_android": "Firefox Android",
    "safari_ios": "Safari iOS",
}

BROWSER_ID_TO_COLOR: Dict[str, str] = {
    "chrome": "#34A853",
    "chrome_android": "#34A853",
    "firefox": "#F48400",
    "firefox_android": "#F48400",
    "safari": "#4285F4",
    "safari_ios": "#4285F4",
    "edge": "#7851A9",
    "total": "#888888",
}


def series_colors(browsers: List[str], include_total: bool = True) -> List[str]:
    """Colors for browser series, optionally followed by the total series."""
    keys = [*browsers, "total"] if include_total else list(browsers)
    return [BROWSER_ID_TO_COLOR[key] for key in keys]


# ============================================================
# OPTIONS
# ============================================================

@dataclass
class ChartDisplayOptionsInput:
    """Per-panel inputs to the line chart options."""
    series_colors: List[str]
    v_axis_title: str


def generate_chart_options(
    start_date: Union[date, datetime],
    end_date: Union[date, datetime],
    options_input: ChartDisplayOptionsInput,
) -> Dict[str, Any]:
    """
    Build line chart options for the date range.

    The horizontal window ends one day after end_date so the last day's
    points are inside the plot.
    """
    return {
        "height": 300,
        "hAxis": {
            "title": "",
            "titleTextStyle": {"color": "#333"},
            "viewWindow": {"min": start_date, "max": end_date + timedelta(days=1)},
        },
        "vAxis": {
            "minValue": 0,
            "title": options_input.v_axis_title,
            "format": "#,###",
        },
        "legend": {"position": "top"},
        "colors": options_input.series_colors,
        "chartArea": {"left": 100, "right": 16, "top": 40, "bottom": 40},
        "interpolateNulls": True,
        "explorer": {
            "actions": ["dragToZoom", "rightClickToReset"],
            "axis": "horizontal",
            "keepInBounds": True,
            "maxZoomIn": 4,
            "maxZoomOut": 4,
            "zoomDelta": 0.01,
        },
    }


@dataclass
class ChartSpec:
    """Everything the chart sink needs for one chart."""
    table: MergedTable
    options: Dict[str, Any] = field(default_factory=dict)
    container_id: Optional[str] = None
    chart_type: str = "LineChart"
