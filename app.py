#!/usr/bin/env python3
"""
Web Status Chart Pipeline - Application Entry Point.

============================================================
USAGE
============================================================
    python app.py --panel global-feature-support \\
        --start-date 2024-01-01 --end-date 2024-06-30

    CHART_API_BASE_URL=http://localhost:8080 python app.py \\
        --panel feature-usage --feature-id grid \\
        --start-date 2024-01-01 --end-date 2024-06-30

Environment-based configuration (a .env file is honored):
    CHART_API_BASE_URL, CHART_REQUEST_TIMEOUT, CHART_MAX_RETRIES,
    CHART_LOG_LEVEL, CHART_LOG_FORMAT

============================================================
"""

import asyncio
import logging
import sys

from chart_pipeline.cli import (
    build_config,
    build_panel,
    create_parser,
    dump,
    run_panel,
    validate_args,
)
from chart_pipeline.exceptions import ChartPipelineError
from chart_pipeline.logging_setup import setup_logging
from chart_pipeline.providers.webstatus import WebStatusClient


async def run_application(args) -> int:
    """
    Load one panel and print its tables.

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
    except ChartPipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)
    logger.info(f"Loading panel {args.panel} from {config.api_base_url}")

    async with WebStatusClient.from_config(config) as client:
        panel = build_panel(args, client, config)
        try:
            result = await run_panel(panel)
        except ChartPipelineError as e:
            logger.error(f"Failed to load {args.panel}: {e}")
            return 1
        except Exception as e:
            logger.error(f"Fatal error loading {args.panel}: {e}", exc_info=True)
            return 1

    print(dump(result))
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run_application(args))
    except KeyboardInterrupt:
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
