"""Tests for the command-line interface."""

from typing import Any

import httpx
import pytest
import respx

from src.cli import main

THREAD_URL = "http://threads.test/api/thread"
RANGE_ARGS = ["--start", "2024-05-01T10:00:00+00:00", "--end", "2024-05-01T15:00:00+00:00", "-q"]


def _threads_response(thread_id: str) -> httpx.Response:
    thread = {
        "id": thread_id,
        "createdAt": "2024-05-01T10:30:00Z",
        "messages": [
            {
                "role": "status",
                "createdAt": "2024-05-01T10:30:00Z",
                "content": [{"kind": "text", "text": "**Tool Name:** `search-hotels`"}],
            },
            {"role": "assistant", "createdAt": "2024-05-01T10:30:02Z", "content": [{"kind": "text", "text": "ok"}]},
        ],
    }
    return httpx.Response(200, json={"threads": [{"thread": thread}]})


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.mark.integration
class TestFetchCommand:
    @respx.mock
    def test_prints_statuses_and_count(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        respx.post(THREAD_URL).mock(side_effect=[_threads_response("t1"), _threads_response("t2")])

        assert _run(["fetch", *RANGE_ARGS]) == 0

        out = capsys.readouterr().out
        assert "2024-05-01 10:00-12:00  200" in out
        assert "Threads: 2" in out

    @respx.mock
    def test_all_chunks_failed_exits_1(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        respx.post(THREAD_URL).mock(return_value=httpx.Response(503))

        assert _run(["fetch", *RANGE_ARGS]) == 1
        assert "2 of 2 chunks failed" in capsys.readouterr().out

    def test_missing_token_exits_1(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        mock_settings.threads_api_token = "   "

        assert _run(["fetch", *RANGE_ARGS]) == 1
        assert "Configuration error" in capsys.readouterr().err

    @pytest.mark.parametrize(("field", "value"), [("fetch_max_attempts", 0), ("chunk_boundary_hours", "5,3")])
    def test_invalid_fetch_setting_exits_1(
        self, mock_settings: Any, capsys: pytest.CaptureFixture[str], field: str, value: object
    ) -> None:
        setattr(mock_settings, field, value)

        assert _run(["fetch", *RANGE_ARGS]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_start_after_end_exits_2(self, mock_settings: Any) -> None:
        argv = ["fetch", "--start", "2024-05-02T00:00:00+00:00", "--end", "2024-05-01T00:00:00+00:00"]
        assert _run(argv) == 2

    def test_bad_datetime_is_usage_error(self, mock_settings: Any) -> None:
        assert _run(["fetch", "--start", "yesterday", "--end", "2024-05-01"]) == 2


@pytest.mark.integration
class TestToolsCommand:
    @respx.mock
    def test_lists_tools(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        respx.post(THREAD_URL).mock(side_effect=[_threads_response("t1"), _threads_response("t2")])

        assert _run(["tools", *RANGE_ARGS]) == 0

        out = capsys.readouterr().out
        assert "search-hotels" in out
        assert "mean    2.00s" in out
        assert "Travel agent rate: 100.00% (2 of 2 threads)" in out
        assert "Contact rate: 0.00% (0 of 2 threads)" in out

    @respx.mock
    def test_no_tools(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        respx.post(THREAD_URL).mock(return_value=httpx.Response(200, json={"threads": []}))

        assert _run(["tools", *RANGE_ARGS]) == 0
        assert "No tool calls detected." in capsys.readouterr().out


class TestCacheCommands:
    def test_cache_stats(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(["cache-stats"]) == 0

        out = capsys.readouterr().out
        assert "Scope:   test" in out
        assert "Entries: 0" in out

    def test_clear_cache(self, mock_settings: Any, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(["clear-cache"]) == 0
        assert "Removed 0 cache entries (scope=test)." in capsys.readouterr().out

    def test_subcommand_required(self) -> None:
        assert _run([]) == 2
