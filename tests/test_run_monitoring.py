"""
Tests for the run_monitoring command line entry point.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

import run_monitoring
from registry.repositories import StorageError


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "missing.yaml")


@pytest.fixture
def cli(session):
    """Patch database setup so main() runs against the test session."""
    provider = MagicMock()
    provider.session_scope.return_value.__enter__.return_value = session
    provider.session_scope.return_value.__exit__.return_value = False

    with patch("run_monitoring.init_db", return_value=provider) as init_db, \
            patch("run_monitoring.close_db") as close_db, \
            patch("run_monitoring.setup_logging"):
        yield MagicMock(init_db=init_db, close_db=close_db)


class TestArguments:
    def test_help(self, capsys):
        assert run_monitoring.main(["help"]) == 0
        assert "usage" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert run_monitoring.main(["bogus"]) == 1
        assert "Unknown command: bogus" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("database: [unclosed\n")

        assert run_monitoring.main(["quick", "--config", str(path)]) == 1
        assert "Configuration error" in capsys.readouterr().err


class TestCommands:
    """Tests for each monitoring command against the test registry."""

    def test_quick_healthy(self, cli, config_path, make_company, capsys):
        make_company("Obscure Widgets", "OBWX")

        assert run_monitoring.main(["quick", "--config", config_path]) == 0

        out = capsys.readouterr().out
        assert "Healthy: Yes" in out
        assert "Critical Issues: 0" in out
        cli.close_db.assert_called_once()

    def test_quick_json(self, cli, config_path, make_company, capsys):
        make_company("Widget Maker")

        assert run_monitoring.main(["quick", "--json", "--config", config_path]) == 1
        assert json.loads(capsys.readouterr().out) == {"healthy": False, "critical_issues": 1}

    def test_full_report_with_critical_issue(self, cli, config_path, make_company, capsys):
        make_company("Widget Maker")

        assert run_monitoring.main(["--config", config_path]) == 1

        out = capsys.readouterr().out
        assert "Overall Health: CRITICAL" in out
        assert "[CRITICAL] Critical: Very Low Ticker Coverage" in out
        assert "Recommendations:" in out

    def test_metrics(self, cli, config_path, make_company, capsys):
        make_company("Obscure Widgets", "OBWX")
        make_company("Widget Maker")

        assert run_monitoring.main(["metrics", "--config", config_path]) == 0

        out = capsys.readouterr().out
        assert "- Total Companies: 2" in out
        assert "- Ticker Coverage: 50.0%" in out

    def test_metrics_json(self, cli, config_path, make_company, capsys):
        make_company("Obscure Widgets", "OBWX")

        assert run_monitoring.main(["metrics", "--json", "--config", config_path]) == 0

        metrics = json.loads(capsys.readouterr().out)
        assert metrics["total_companies"] == 1
        assert metrics["ticker_coverage"] == 100.0

    def test_storage_error_exits_nonzero(self, cli, config_path):
        cli.init_db.side_effect = StorageError("connection refused")

        assert run_monitoring.main(["full", "--config", config_path]) == 1
        cli.close_db.assert_called_once()
