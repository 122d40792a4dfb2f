"""
Tests for the application entry point.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

import app
from chart_pipeline.cli import create_parser
from chart_pipeline.exceptions import FetchError


def parse(*argv):
    return create_parser().parse_args([
        "--start-date", "2024-01-01", "--end-date", "2024-02-01", *argv,
    ])


class TestRunApplication:
    """Tests for run_application exit codes."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        with patch("app.setup_logging"):
            yield

    @pytest.mark.asyncio
    async def test_success_prints_json(self, capsys):
        with patch("app.run_panel", new=AsyncMock(return_value={"cols": [], "rows": []})):
            code = await app.run_application(parse())

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"cols": [], "rows": []}

    @pytest.mark.asyncio
    async def test_pipeline_error_exits_1(self, capsys):
        failure = FetchError("HTTP 500", status_code=500)
        with patch("app.run_panel", new=AsyncMock(side_effect=failure)):
            code = await app.run_application(parse())

        assert code == 1
        assert capsys.readouterr().out == ""

    @pytest.mark.asyncio
    async def test_accessor_error_exits_1(self, capsys):
        """Test that a raw error from a point accessor does not escape."""
        with patch("app.run_panel", new=AsyncMock(side_effect=KeyError("run_timestamp"))):
            code = await app.run_application(parse())

        assert code == 1
        assert capsys.readouterr().out == ""

    @pytest.mark.asyncio
    async def test_invalid_config_exits_1(self, capsys):
        code = await app.run_application(parse("--config", "/nonexistent/chart.yaml"))

        assert code == 1
        assert "Cannot load config" in capsys.readouterr().err
