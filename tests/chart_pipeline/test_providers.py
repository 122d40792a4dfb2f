"""
Tests for the paginated API client.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from chart_pipeline.config import PipelineConfig
from chart_pipeline.exceptions import FetchError, RateLimitError
from chart_pipeline.providers.base import BasePaginatedSource, build_query
from chart_pipeline.providers.webstatus import (
    WebStatusClient,
    format_date,
    parse_timestamp,
)


def page(data, next_page_token=None):
    metadata = {"next_page_token": next_page_token} if next_page_token else {}
    return {"metadata": metadata, "data": data}


def mock_session(status=200, json_data=None, text="", headers=None):
    """Session whose request() context yields one canned response."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.request = MagicMock(return_value=context)
    return session


async def collect(pages):
    return [items async for items in pages]


class TestBuildQuery:
    """Tests for build_query."""

    def test_scalars(self):
        assert build_query({"startAt": "2024-01-01", "limit": 10}) == [
            ("startAt", "2024-01-01"),
            ("limit", "10"),
        ]

    def test_lists_repeat_the_key(self):
        assert build_query({"browser": ["firefox", "safari"]}) == [
            ("browser", "firefox"),
            ("browser", "safari"),
        ]

    def test_none_dropped_and_bools_lowercased(self):
        assert build_query({"a": None, "b": True, "c": False}) == [
            ("b", "true"),
            ("c", "false"),
        ]

    def test_page_token_appended(self):
        assert build_query({"a": 1}, page_token="abc") == [("a", "1"), ("page_token", "abc")]

    def test_empty(self):
        assert build_query(None) == []


class TestPaginate:
    """Tests for page-token pagination."""

    @pytest.mark.asyncio
    async def test_follows_next_page_token(self):
        """Test that every page is requested and yielded in order."""
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        source._make_request = AsyncMock(side_effect=[
            page([1, 2], next_page_token="t1"),
            page([3], next_page_token="t2"),
            page([4]),
        ])

        pages = await collect(source.paginate("/v1/items", {"q": "x"}))

        assert pages == [[1, 2], [3], [4]]
        tokens = [call.args[2] for call in source._make_request.await_args_list]
        assert tokens == [
            [("q", "x")],
            [("q", "x"), ("page_token", "t1")],
            [("q", "x"), ("page_token", "t2")],
        ]

    @pytest.mark.asyncio
    async def test_missing_data_is_an_empty_page(self):
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        source._make_request = AsyncMock(return_value={"metadata": {}})

        assert await collect(source.paginate("/v1/items")) == [[]]

    @pytest.mark.asyncio
    async def test_pages_are_lazy(self):
        """Test that nothing is requested before iteration."""
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        source._make_request = AsyncMock(return_value=page([1]))

        pages = source.paginate("/v1/items")
        source._make_request.assert_not_awaited()

        await collect(pages)
        source._make_request.assert_awaited_once()


class TestRetry:
    """Tests for _fetch_with_retry."""

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        source._make_request = AsyncMock(side_effect=[
            FetchError("HTTP 503", status_code=503),
            page([1]),
        ])

        with patch("chart_pipeline.providers.base.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await source._fetch_with_retry("GET", "/v1/items")

        assert result == page([1])
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after(self):
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        source._make_request = AsyncMock(side_effect=[
            RateLimitError("Rate limit exceeded", retry_after_seconds=7),
            page([1]),
        ])

        with patch("chart_pipeline.providers.base.asyncio.sleep", new=AsyncMock()) as sleep:
            await source._fetch_with_retry("GET", "/v1/items")

        sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        """Test that a 4xx fails immediately."""
        source = BasePaginatedSource("https://api.test", session=MagicMock())
        not_found = FetchError("HTTP 404", status_code=404)
        source._make_request = AsyncMock(side_effect=not_found)

        with pytest.raises(FetchError) as exc_info:
            await source._fetch_with_retry("GET", "/v1/items")

        assert exc_info.value is not_found
        source._make_request.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        source = BasePaginatedSource("https://api.test", max_retries=3, session=MagicMock())
        source._make_request = AsyncMock(side_effect=FetchError("HTTP 500", status_code=500))

        with patch("chart_pipeline.providers.base.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(FetchError) as exc_info:
                await source._fetch_with_retry("GET", "/v1/items")

        assert "Failed after 3 attempts" in str(exc_info.value)
        assert exc_info.value.original_error.status_code == 500
        assert source._make_request.await_count == 3
        assert sleep.await_count == 2


class TestMakeRequest:
    """Tests for HTTP status mapping."""

    @pytest.mark.asyncio
    async def test_success_returns_json(self):
        session = mock_session(json_data=page([1]))
        source = BasePaginatedSource("https://api.test/", session=session)

        result = await source._make_request("GET", "/v1/items", [("a", "1")])

        assert result == page([1])
        session.request.assert_called_once_with(
            "GET", "https://api.test/v1/items", params=[("a", "1")]
        )
        assert source.request_count == 1

    @pytest.mark.asyncio
    async def test_429_raises_rate_limit(self):
        session = mock_session(status=429, headers={"Retry-After": "5"})
        source = BasePaginatedSource("https://api.test", session=session)

        with pytest.raises(RateLimitError) as exc_info:
            await source._make_request("GET", "/v1/items")

        assert exc_info.value.retry_after_seconds == 5

    @pytest.mark.asyncio
    async def test_error_status_raises_fetch_error(self):
        session = mock_session(status=500, text="internal")
        source = BasePaginatedSource("https://api.test", session=session)

        with pytest.raises(FetchError) as exc_info:
            await source._make_request("GET", "/v1/items")

        assert exc_info.value.status_code == 500
        assert exc_info.value.response_body == "internal"
        assert exc_info.value.is_server_error()

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self):
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        source = BasePaginatedSource("https://api.test", session=session)

        with pytest.raises(FetchError) as exc_info:
            await source._make_request("GET", "/v1/items")

        assert isinstance(exc_info.value.original_error, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        session = mock_session()
        session.close = AsyncMock()

        async with BasePaginatedSource("https://api.test", session=session):
            pass

        session.close.assert_not_awaited()


class TestWebStatusClient:
    """Tests for WebStatusClient endpoints."""

    def make_client(self):
        client = WebStatusClient("https://api.test", session=MagicMock())
        client._make_request = AsyncMock(return_value=page([{"count": 1}]))
        return client

    def request_of(self, client):
        _, path, query = client._make_request.await_args.args
        return path, query

    @pytest.mark.asyncio
    async def test_feature_counts_for_browser(self):
        client = self.make_client()

        await collect(client.get_feature_counts_for_browser(
            "chrome", date(2024, 1, 1), date(2024, 6, 30)
        ))

        assert self.request_of(client) == (
            "/v1/stats/features/browsers/chrome/feature_counts",
            [
                ("startAt", "2024-01-01"),
                ("endAt", "2024-06-30"),
                ("include_baseline_mobile_browsers", "true"),
            ],
        )

    @pytest.mark.asyncio
    async def test_baseline_status_counts(self):
        client = self.make_client()

        await collect(client.list_aggregated_baseline_status_counts(
            datetime(2024, 1, 1), datetime(2024, 2, 1)
        ))

        path, query = self.request_of(client)
        assert path == "/v1/stats/baseline_status/low_date_feature_counts"
        assert query == [("startAt", "2024-01-01"), ("endAt", "2024-02-01")]

    @pytest.mark.asyncio
    async def test_missing_one_implementation_repeats_browser(self):
        client = self.make_client()

        await collect(client.get_missing_one_implementation_counts(
            "safari", ["chrome", "firefox"], date(2024, 1, 1), date(2024, 2, 1)
        ))

        path, query = self.request_of(client)
        assert path == "/v1/stats/features/browsers/safari/missing_one_implementation_counts"
        assert [v for k, v in query if k == "browser"] == ["chrome", "firefox"]

    @pytest.mark.asyncio
    async def test_wpt_stats_path(self):
        client = self.make_client()

        await collect(client.get_feature_stats_by_browser_and_channel(
            "grid", "firefox", "stable", date(2024, 1, 1), date(2024, 2, 1), "test_counts"
        ))

        path, _ = self.request_of(client)
        assert path == "/v1/features/grid/stats/wpt/browsers/firefox/channels/stable/test_counts"

    @pytest.mark.asyncio
    async def test_chrome_usage_path(self):
        client = self.make_client()

        await collect(client.get_chrome_daily_usage_stats(
            "grid", date(2024, 1, 1), date(2024, 2, 1)
        ))

        path, _ = self.request_of(client)
        assert path == "/v1/features/grid/stats/usage/chrome/daily_stats"

    def test_from_config(self):
        config = PipelineConfig(api_base_url="http://localhost:8080/", max_retries=5)

        client = WebStatusClient.from_config(config)

        assert repr(client) == "<WebStatusClient(base_url=http://localhost:8080)>"
        assert client._max_retries == 5


class TestDateHelpers:
    """Tests for format_date and parse_timestamp."""

    def test_format_date(self):
        assert format_date(date(2024, 3, 9)) == "2024-03-09"
        assert format_date(datetime(2024, 3, 9, 15, 30)) == "2024-03-09"

    def test_parse_timestamp_with_z(self):
        assert parse_timestamp("2024-01-02T03:04:05Z") == datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
        )

    def test_parse_timestamp_with_offset(self):
        parsed = parse_timestamp("2024-01-02T05:04:05+02:00")

        assert parsed == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value,microsecond", [
        ("2024-01-01T12:00:00.12345Z", 123450),
        ("2024-01-01T12:00:00.123456789Z", 123456),
        ("2024-01-01T12:00:00.5Z", 500000),
        ("2024-01-01T12:00:00.123+00:00", 123000),
    ])
    def test_parse_timestamp_any_fraction_length(self, value, microsecond):
        """Test fractions trimmed or extended beyond microseconds."""
        assert parse_timestamp(value) == datetime(
            2024, 1, 1, 12, 0, 0, microsecond, tzinfo=timezone.utc
        )
