"""
Web Status API Client - Paginated statistics endpoints.

Every method is an async generator of pages, so a bound call can be used
directly as a FetchConfig.fetch_source:

    FetchConfig(
        label="Chrome",
        fetch_source=lambda: client.get_feature_counts_for_browser("chrome", start, end),
        ...
    )
"""

import re
from datetime import date, datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import aiohttp

from chart_pipeline.config import PipelineConfig
from chart_pipeline.providers.base import BasePaginatedSource


DateLike = Union[date, datetime]

STABLE_CHANNEL = "stable"

FRACTION_PATTERN = re.compile(r"(?<=\d\d:\d\d:\d\d)\.(\d+)")

# Point shapes as returned by the API (JSON objects):
#   BrowserReleaseFeatureMetric: {"timestamp": str, "count": int}
#   BaselineStatusMetric:        {"timestamp": str, "count": int}
#   WPTRunMetric:                {"run_timestamp": str, "test_pass_count": int,
#                                 "total_tests_count": int}
#   ChromeUsageStat:             {"timestamp": str, "usage": float}
Point = Dict[str, Any]


def format_date(value: DateLike) -> str:
    """Format as YYYY-MM-DD."""
    return value.isoformat()[:10]


def parse_timestamp(value: str) -> datetime:
    """
    Parse an API date-time string (RFC 3339, "Z" suffix allowed).

    The backend trims trailing zeros of fractional seconds, so the fraction
    is padded or truncated to microseconds before parsing.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    return datetime.fromisoformat(value)


class WebStatusClient(BasePaginatedSource):
    """
    Client for the web-status statistics API.

    Endpoints used:
    - /v1/stats/features/browsers/{browser}/feature_counts
    - /v1/stats/baseline_status/low_date_feature_counts
    - /v1/stats/features/browsers/{browser}/missing_one_implementation_counts
    - /v1/features/{feature_id}/stats/wpt/browsers/{browser}/channels/{channel}/{metric_view}
    - /v1/features/{feature_id}/stats/usage/chrome/daily_stats
    """

    DEFAULT_BASE_URL = "https://api.webstatus.dev"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = BasePaginatedSource.DEFAULT_TIMEOUT,
        max_retries: int = BasePaginatedSource.MAX_RETRIES,
        retry_backoff_base: float = BasePaginatedSource.RETRY_BACKOFF_BASE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, timeout, max_retries, retry_backoff_base, session)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "WebStatusClient":
        """Create a client from pipeline configuration."""
        return cls(
            base_url=config.api_base_url,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
            retry_backoff_base=config.retry_backoff_base,
            session=session,
        )

    def _date_range(self, start: DateLike, end: DateLike) -> Dict[str, str]:
        return {"startAt": format_date(start), "endAt": format_date(end)}

    def get_feature_counts_for_browser(
        self,
        browser: str,
        start: DateLike,
        end: DateLike,
    ) -> AsyncIterator[List[Point]]:
        """Feature counts supported by a browser over time."""
        return self.paginate(
            f"/v1/stats/features/browsers/{browser}/feature_counts",
            {**self._date_range(start, end), "include_baseline_mobile_browsers": True},
        )

    def list_aggregated_baseline_status_counts(
        self,
        start: DateLike,
        end: DateLike,
    ) -> AsyncIterator[List[Point]]:
        """Count of features that reached Baseline over time."""
        return self.paginate(
            "/v1/stats/baseline_status/low_date_feature_counts",
            self._date_range(start, end),
        )

    def get_missing_one_implementation_counts(
        self,
        browser: str,
        other_browsers: List[str],
        start: DateLike,
        end: DateLike,
    ) -> AsyncIterator[List[Point]]:
        """Features supported by every other browser but not this one."""
        return self.paginate(
            f"/v1/stats/features/browsers/{browser}/missing_one_implementation_counts",
            {
                **self._date_range(start, end),
                "browser": list(other_browsers),
                "include_baseline_mobile_browsers": True,
            },
        )

    def get_feature_stats_by_browser_and_channel(
        self,
        feature_id: str,
        browser: str,
        channel: str,
        start: DateLike,
        end: DateLike,
        metric_view: str,
    ) -> AsyncIterator[List[Point]]:
        """WPT run metrics of a feature for one browser and channel."""
        return self.paginate(
            f"/v1/features/{feature_id}/stats/wpt/browsers/{browser}"
            f"/channels/{channel}/{metric_view}",
            self._date_range(start, end),
        )

    def get_chrome_daily_usage_stats(
        self,
        feature_id: str,
        start: DateLike,
        end: DateLike,
    ) -> AsyncIterator[List[Point]]:
        """Chrome daily usage of a feature."""
        return self.paginate(
            f"/v1/features/{feature_id}/stats/usage/chrome/daily_stats",
            self._date_range(start, end),
        )
