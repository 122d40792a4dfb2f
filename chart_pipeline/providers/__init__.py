"""
Providers package - Paginated API clients feeding the aggregation engine.
"""

from chart_pipeline.providers.base import BasePaginatedSource, build_query
from chart_pipeline.providers.webstatus import (
    STABLE_CHANNEL,
    WebStatusClient,
    format_date,
    parse_timestamp,
)


__all__ = [
    "BasePaginatedSource",
    "build_query",
    "WebStatusClient",
    "STABLE_CHANNEL",
    "format_date",
    "parse_timestamp",
]
