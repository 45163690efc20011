"""Tests for Gatehouse CLI."""

from __future__ import annotations

import json
from unittest.mock import patch

import click
import pytest
from click.testing import CliRunner

from gatehouse.cli import build_config, main, parse_user
from gatehouse.core.config import clear_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    clear_settings()
    yield
    clear_settings()


def build(**kwargs):
    params = {
        "config_file": None,
        "host": None,
        "port": None,
        "blocklist": None,
        "ban": (),
        "static_dir": None,
        "engine_url": None,
        "users": (),
        "session_ttl": None,
        "metrics": None,
        "log_level": None,
    }
    params.update(kwargs)
    return build_config(**params)


class TestCLIBasics:
    """Basic CLI tests."""

    def test_main_with_help(self):
        """Test --help shows help message."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Gatehouse - Policy gateway" in result.output
        assert "--blocklist" in result.output
        assert "--user" in result.output
        assert "check-blocklist" in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "gatehouse" in result.output

    def test_starts_server(self, tmp_path):
        """Test the gateway is built and handed to the event loop."""
        runner = CliRunner()
        with patch("gatehouse.cli.asyncio.run") as mock_run:
            result = runner.invoke(
                main,
                [
                    "--port", "9090",
                    "--blocklist", str(tmp_path / "blocklist.json"),
                    "--user", "alice:secret",
                    "--static-dir", str(tmp_path),
                ],
            )

        assert result.exit_code == 0, result.output
        assert mock_run.called
        mock_run.call_args.args[0].close()
        assert "0.0.0.0:9090" in result.output
        assert "alice" in result.output
        assert "secret" not in result.output

    def test_malformed_blocklist_exits(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text("{oops", encoding="utf-8")

        runner = CliRunner()
        with patch("gatehouse.cli.asyncio.run") as mock_run:
            result = runner.invoke(main, ["--blocklist", str(path)])

        assert result.exit_code == 1
        assert "malformed_blocklist" in result.output
        assert not mock_run.called

    def test_invalid_user_flag(self):
        runner = CliRunner()
        with patch("gatehouse.cli.asyncio.run"):
            result = runner.invoke(main, ["--user", "nopassword"])

        assert result.exit_code != 0
        assert "NAME:PASSWORD" in result.output


class TestBuildConfig:
    """Tests for layering CLI flags over configuration."""

    def test_port_and_host(self):
        config = build(port=9000)
        assert config.bind == "0.0.0.0:9000"
        assert build(host="127.0.0.1").bind == "127.0.0.1:8080"

    def test_ban_extends_defaults(self):
        config = build(ban=("198.51.100.0/24",))
        assert "198.51.100.0/24" in config.banned_addresses
        assert "203.0.113.42" in config.banned_addresses

    def test_users_merge_with_file(self, tmp_path):
        path = tmp_path / "gatehouse.yaml"
        path.write_text("users:\n  alice: one\n", encoding="utf-8")

        config = build(config_file=str(path), users=("bob:two",))
        assert config.users == {"alice": "one", "bob": "two"}

    def test_flags_override(self):
        config = build(session_ttl=60.0, metrics=True, log_level="debug", engine_url="http://127.0.0.1:8081")
        assert config.session_ttl == 60.0
        assert config.metrics_enabled is True
        assert config.log_level == "debug"
        assert config.engine_url == "http://127.0.0.1:8081"

    def test_parse_user(self):
        assert parse_user("alice:pa:ss") == ("alice", "pa:ss")
        with pytest.raises(click.BadParameter):
            parse_user(":pw")


class TestCheckBlocklistCommand:
    """Tests for check-blocklist command."""

    def test_valid_file(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text(json.dumps(["bad.example", "worse.example/"]), encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(main, ["check-blocklist", str(path), "--show"])

        assert result.exit_code == 0
        assert "2 entries OK" in result.output
        assert "worse.example" in result.output

    def test_url_checks(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text(json.dumps(["bad.example"]), encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(
            main,
            ["check-blocklist", str(path), "-u", "https://BAD.example/x", "-u", "https://good.example"],
        )

        assert result.exit_code == 0
        assert "blocked https://BAD.example/x" in result.output
        assert "allowed https://good.example" in result.output

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text('["a", 1]', encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(main, ["check-blocklist", str(path)])

        assert result.exit_code == 1
        assert "malformed_blocklist" in result.output

    def test_missing_file(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(main, ["check-blocklist", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
