"""
Chart Pipeline - CLI.

============================================================
USAGE
============================================================
python app.py --panel global-feature-support --start-date 2024-01-01 --end-date 2024-06-30
python app.py --panel feature-wpt-implementation-progress --feature-id grid \\
    --start-date 2024-01-01 --end-date 2024-06-30 --test-view test_counts

Prints the merged table(s) of one panel as JSON on stdout.

============================================================
"""

import argparse
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from chart_pipeline.chart_options import ALL_BROWSERS, ChartSpec
from chart_pipeline.config import PipelineConfig
from chart_pipeline.panels import (
    FeatureUsagePanel,
    FeatureWPTProgressPanel,
    GlobalFeatureCountPanel,
    LineChartPanel,
    MissingOneImplementationPanel,
)
from chart_pipeline.providers.webstatus import WebStatusClient


logger = logging.getLogger(__name__)

PANELS = {
    "global-feature-support": GlobalFeatureCountPanel,
    "missing-one-implementation": MissingOneImplementationPanel,
    "feature-wpt-implementation-progress": FeatureWPTProgressPanel,
    "feature-usage": FeatureUsagePanel,
}

FEATURE_PANELS = {"feature-wpt-implementation-progress", "feature-usage"}


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="chart-pipeline",
        description="Fetch and merge the time series of one dashboard chart",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Panels:
  global-feature-support               Features supported per browser
  missing-one-implementation           Features missing in only one browser
  feature-wpt-implementation-progress  WPT pass counts of a feature (needs --feature-id)
  feature-usage                        Chrome usage of a feature (needs --feature-id)
        """,
    )

    parser.add_argument(
        "--panel", "-p",
        type=str,
        choices=sorted(PANELS),
        default="global-feature-support",
        help="Chart panel to load (default: global-feature-support)",
    )
    parser.add_argument("--start-date", type=str, required=True, metavar="YYYY-MM-DD")
    parser.add_argument("--end-date", type=str, required=True, metavar="YYYY-MM-DD")
    parser.add_argument("--feature-id", type=str, help="Feature id for feature panels")
    parser.add_argument(
        "--test-view",
        type=str,
        choices=["subtest_counts", "test_counts"],
        default="subtest_counts",
    )
    parser.add_argument(
        "--browser",
        action="append",
        choices=ALL_BROWSERS,
        help="Restrict stats panels to these browsers (repeatable)",
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument("--config", type=str, metavar="PATH", help="YAML config file")
    config_group.add_argument("--base-url", type=str, help="Override the API base URL")
    config_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the log level",
    )
    config_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Override the log format",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate parsed arguments; return a list of error messages."""
    errors = []
    try:
        start = datetime.strptime(args.start_date, "%Y-%m-%d")
        end = datetime.strptime(args.end_date, "%Y-%m-%d")
        if start > end:
            errors.append("--start-date must not be after --end-date")
    except ValueError as e:
        errors.append(f"Invalid date: {e}")

    if args.panel in FEATURE_PANELS and not args.feature_id:
        errors.append(f"--feature-id is required for panel {args.panel}")

    return errors


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Load configuration (YAML or environment), then apply CLI overrides."""
    config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig.from_env()
    if args.base_url:
        config.api_base_url = args.base_url
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config


def build_panel(args: argparse.Namespace, client: WebStatusClient, config: PipelineConfig) -> LineChartPanel:
    """Instantiate the requested panel."""
    start = datetime.strptime(args.start_date, "%Y-%m-%d")
    end = datetime.strptime(args.end_date, "%Y-%m-%d")
    panel_cls = PANELS[args.panel]

    kwargs: Dict[str, Any] = {}
    if args.panel == "feature-wpt-implementation-progress":
        kwargs.update(
            feature_id=args.feature_id,
            test_view=args.test_view,
            rounding_hours=config.wpt_timestamp_rounding_hours,
        )
    elif args.panel == "feature-usage":
        kwargs["feature_id"] = args.feature_id
    elif args.browser:
        kwargs["browsers"] = args.browser

    return panel_cls(client, start, end, **kwargs)


def spec_to_dict(spec: ChartSpec) -> Dict[str, Any]:
    return {"container_id": spec.container_id, **spec.table.to_dict()}


async def run_panel(panel: LineChartPanel) -> Optional[Any]:
    """Load one panel and return its JSON-ready rendering."""
    panel.refresh()
    await panel.task.wait()

    rendered = panel.render()
    if isinstance(rendered, ChartSpec):
        return spec_to_dict(rendered)
    if isinstance(rendered, list):
        return [spec_to_dict(spec) for spec in rendered]
    return rendered


def dump(result: Any) -> str:
    return json.dumps(result, indent=2, default=str)
