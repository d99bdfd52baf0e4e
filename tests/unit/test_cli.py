"""Unit tests for the command-line entry point."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from themesync.__main__ import build_parser, main, run


def _close_and_return(code: int):
    def runner(coro):
        coro.close()
        return code

    return runner


class TestParser:
    """Tests for build_parser()."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_restore_takes_name(self):
        args = build_parser().parse_args(["restore", "acme_2026-10-18_09-00-00"])
        assert args.command == "restore"
        assert args.name == "acme_2026-10-18_09-00-00"

    def test_log_count(self):
        assert build_parser().parse_args(["log"]).count == 10
        assert build_parser().parse_args(["log", "--count", "25"]).count == 25

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["deploy-everything"])


class TestRun:
    """Tests for run() against wired components."""

    @pytest.fixture
    def wired(self, components):
        with (
            patch("themesync.__main__.build_components", return_value=components),
            patch("themesync.__main__.get_settings"),
        ):
            yield components

    async def test_status_prints_json(self, wired, capsys):
        code = await run(build_parser().parse_args(["status"]))
        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["data"]["repo_name"] == "acme-theme"

    async def test_update_installs(self, wired, capsys):
        code = await run(build_parser().parse_args(["update"]))
        assert code == 0
        assert (wired.settings.theme_dir / "style.css").exists()
        assert json.loads(capsys.readouterr().out)["success"] is True

    async def test_failure_exit_code(self, wired, github, capsys):
        github.fail("commit", 401, "Bad credentials")
        code = await run(build_parser().parse_args(["check"]))
        assert code == 1
        assert json.loads(capsys.readouterr().out)["kind"] == "authentication_failed"

    async def test_serve_runs_server(self, wired):
        with patch("themesync.__main__.serve_forever", new_callable=AsyncMock) as mock_serve:
            code = await run(build_parser().parse_args(["serve"]))
        assert code == 0
        mock_serve.assert_awaited_once()


class TestMain:
    """Tests for main()."""

    @patch("themesync.__main__.setup_logging")
    @patch("themesync.__main__.get_settings")
    def test_returns_run_exit_code(self, mock_get_settings, mock_setup):
        with patch("themesync.__main__.asyncio.run", side_effect=_close_and_return(1)):
            assert main(["status"]) == 1
        mock_setup.assert_called_once_with(mock_get_settings.return_value)

    @patch("themesync.__main__.setup_logging")
    @patch("themesync.__main__.get_settings", return_value=MagicMock())
    def test_keyboard_interrupt(self, mock_get_settings, mock_setup):
        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch("themesync.__main__.asyncio.run", side_effect=interrupted):
            assert main(["serve"]) == 130
