"""Tests for deploykit.cli — typer commands."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

import deploykit
from deploykit.cli import _resolve_deploy_mode, _resolve_timeout, app
from deploykit.core.models import DeployMode, EnvironmentSnapshot
from deploykit.data.store import DataStore

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / "widget.json"
    path.write_text(json.dumps({
        "app": {"vendor": "Contoso", "name": "Widget", "version": "2.1.0"},
        "commands": {"install": "exit 0", "uninstall": "exit 0", "repair": "exit 0"},
        "dependencies": [
            {"name": "Helper", "required_version": "1.0", "commands": {"install": "exit 0"}},
        ],
    }), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def quiet_host(monkeypatch):
    """Keep host probing and ambient config out of CLI runs."""
    monkeypatch.delenv("DEPLOYKIT_DEPLOY_MODE", raising=False)
    monkeypatch.delenv("DEPLOYKIT_TIMEOUT", raising=False)
    with patch("deploykit.core.probes.EnvironmentDetector") as MockDetector, \
            patch("deploykit.core.orchestrator.detect_running_processes", return_value=[]):
        MockDetector.detect_current.return_value = EnvironmentSnapshot(is_admin=True)
        yield


# ---------------------------------------------------------------------------
# Simple commands
# ---------------------------------------------------------------------------

class TestVersionAndConfig:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert deploykit.__version__ in result.output

    def test_config_get_defaults(self, db_path):
        result = runner.invoke(app, ["config", "get", "--db", db_path])
        assert result.exit_code == 0
        assert "deploy_mode = interactive" in result.output
        assert "timeout = 3600" in result.output

    def test_config_set_then_get(self, db_path):
        result = runner.invoke(app, ["config", "set", "deploy_mode", "SILENT", "--db", db_path])
        assert result.exit_code == 0
        result = runner.invoke(app, ["config", "get", "deploy_mode", "--db", db_path])
        assert "deploy_mode = silent" in result.output

    def test_config_rejects_unknown_key(self, db_path):
        result = runner.invoke(app, ["config", "set", "colour", "blue", "--db", db_path])
        assert result.exit_code == 1

    @pytest.mark.parametrize("value", ["-1", "0", "abc"])
    def test_config_rejects_bad_timeout(self, db_path, value):
        # "--" stops option parsing so "-1" reaches the value check
        result = runner.invoke(app, ["config", "set", "--db", db_path, "--", "timeout", value])
        assert result.exit_code == 1
        assert "positive number" in result.output
        store = DataStore(db_path=db_path)
        assert store.get_config("timeout") == "3600"
        store.close()


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

class TestOperations:
    def test_install_then_report(self, manifest, db_path, tmp_path):
        out = tmp_path / "reports" / "install.json"
        result = runner.invoke(app, [
            "install", str(manifest), "--db", db_path, "-m", "noninteractive", "-o", str(out),
        ])
        assert result.exit_code == 0, result.output

        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["outcome"]["status"] == "Success"
        assert data["dependencyStatus"][0]["name"] == "Helper"
        assert data["session"]["deployMode"] == "noninteractive"

        result = runner.invoke(app, ["report", "--json", "--db", db_path])
        assert result.exit_code == 0
        assert data["session"]["id"] in result.output

        result = runner.invoke(app, ["history", "--db", db_path])
        assert result.exit_code == 0
        assert "Deployment Sessions" in result.output

    def test_install_twice_is_no_op(self, manifest, db_path):
        runner.invoke(app, ["install", str(manifest), "--db", db_path, "-m", "silent"])
        result = runner.invoke(app, ["install", str(manifest), "--db", db_path, "-m", "silent"])
        assert result.exit_code == 0
        store = DataStore(db_path=db_path)
        assert store.list_sessions()[0]["outcome"] == "NoActionRequired"
        store.close()

    def test_failing_installer_exit_code(self, tmp_path, db_path):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({
            "app": {"name": "Broken", "version": "1.0"},
            "commands": {"install": "exit 1603"},
        }), encoding="utf-8")
        result = runner.invoke(app, ["install", str(path), "--db", db_path, "-m", "silent"])
        assert result.exit_code == 60004

    def test_invalid_manifest(self, tmp_path, db_path):
        path = tmp_path / "bad.json"
        path.write_text("{", encoding="utf-8")
        result = runner.invoke(app, ["install", str(path), "--db", db_path])
        assert result.exit_code == 2
        assert "Error" in result.output

    def test_check_shows_missing(self, manifest, db_path):
        result = runner.invoke(app, ["check", str(manifest), "--db", db_path])
        assert result.exit_code == 0
        assert "Missing" in result.output

    def test_report_without_sessions(self, db_path):
        result = runner.invoke(app, ["report", "--db", db_path])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Config resolution
# ---------------------------------------------------------------------------

class TestResolution:
    def test_flag_beats_env_and_config(self, temp_db, monkeypatch):
        monkeypatch.setenv("DEPLOYKIT_DEPLOY_MODE", "silent")
        assert _resolve_deploy_mode("noninteractive", temp_db) == DeployMode.NONINTERACTIVE

    def test_env_beats_config(self, temp_db, monkeypatch):
        temp_db.set_config("deploy_mode", "noninteractive")
        monkeypatch.setenv("DEPLOYKIT_DEPLOY_MODE", "silent")
        assert _resolve_deploy_mode(None, temp_db) == DeployMode.SILENT

    def test_config_used_last(self, temp_db):
        temp_db.set_config("deploy_mode", "silent")
        assert _resolve_deploy_mode(None, temp_db) == DeployMode.SILENT

    def test_timeout_from_env(self, temp_db, monkeypatch):
        monkeypatch.setenv("DEPLOYKIT_TIMEOUT", "90")
        assert _resolve_timeout(None, temp_db) == 90.0

    def test_timeout_default_from_config(self, temp_db):
        assert _resolve_timeout(None, temp_db) == 3600.0
