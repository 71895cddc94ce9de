"""Tests for the forj command line."""

from unittest.mock import patch

from click.testing import CliRunner

from forj_api.cli import cli
from forj_api.settings import Settings


class TestServe:
    """Starting the HTTP API from the CLI."""

    def test_defaults_come_from_settings(self):
        settings = Settings(api_host="127.0.0.1", api_port=9100, log_level="WARNING")
        with patch("forj_api.cli.get_settings", return_value=settings), patch("forj_api.cli.uvicorn.run") as run:
            result = CliRunner().invoke(cli, ["serve"])

        assert result.exit_code == 0, result.output
        run.assert_called_once_with(
            "forj_api.main:app", host="127.0.0.1", port=9100, log_level="warning", reload=False
        )

    def test_options_override_settings(self):
        settings = Settings(api_host="127.0.0.1", api_port=9100)
        with patch("forj_api.cli.get_settings", return_value=settings), patch("forj_api.cli.uvicorn.run") as run:
            result = CliRunner().invoke(cli, ["serve", "--host", "0.0.0.0", "--port", "8080"])

        assert result.exit_code == 0, result.output
        assert run.call_args.kwargs["host"] == "0.0.0.0"
        assert run.call_args.kwargs["port"] == 8080

    def test_reload_refused_outside_development(self):
        settings = Settings(environment="production")
        with patch("forj_api.cli.get_settings", return_value=settings), patch("forj_api.cli.uvicorn.run") as run:
            result = CliRunner().invoke(cli, ["serve", "--reload"])

        assert result.exit_code == 2
        assert "--reload" in result.output
        run.assert_not_called()
