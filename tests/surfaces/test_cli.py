"""Tests for studysync CLI commands."""

import pytest
import requests
from typer.testing import CliRunner

from conftest import RAW_ALGEBRA_URL
from studysync.cli.commands import app

runner = CliRunner()

API_URL = "https://api.github.com/repos/acme/banks/contents/manifest.json?ref=main"


@pytest.fixture
def cli_orchestrator(orchestrator, session, algebra_csv, monkeypatch):
    """Point the CLI at the test orchestrator with algebra.csv served."""
    session.route(RAW_ALGEBRA_URL, algebra_csv)
    session.route(API_URL, {"content": "W10="})  # base64 of "[]"
    monkeypatch.setattr("studysync.cli.commands.get_orchestrator", lambda: orchestrator)
    return orchestrator


class TestAddCommand:
    """Tests for `studysync add`."""

    def test_add_source(self, cli_orchestrator):
        result = runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        assert result.exit_code == 0
        assert "Suscripción añadida: algebra" in result.stdout
        assert len(cli_orchestrator.list_sources()) == 1

    def test_add_with_name(self, cli_orchestrator):
        result = runner.invoke(app, ["add", RAW_ALGEBRA_URL, "--name", "Álgebra básica"])

        assert result.exit_code == 0
        assert cli_orchestrator.list_sources()[0].name == "Álgebra básica"

    def test_add_duplicate(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])
        result = runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        assert result.exit_code == 1
        assert "ya está suscrita" in result.stdout

    def test_add_unreachable(self, cli_orchestrator, session):
        session.route(RAW_ALGEBRA_URL, requests.ConnectionError)

        result = runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        assert result.exit_code == 1
        assert "No se pudo descargar" in result.stdout
        assert cli_orchestrator.list_sources() == []


class TestListCommands:
    """Tests for `studysync list` and `studysync banks`."""

    def test_list_empty(self, cli_orchestrator):
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No hay suscripciones" in result.stdout

    def test_list_sources(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "algebra" in result.stdout
        assert "auto" in result.stdout

    def test_banks_by_name_prefix(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["banks", "alg"])

        assert result.exit_code == 0
        assert "csv_1" in result.stdout
        assert "4" in result.stdout

    def test_unknown_source(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["banks", "zzz"])

        assert result.exit_code == 1
        assert "Suscripciones disponibles" in result.stdout


class TestSyncCommands:
    """Tests for sync, sync-all and manifest."""

    def test_sync_one(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["sync", "1"])

        assert result.exit_code == 0
        assert "Sincronización completada" in result.stdout

    def test_sync_failure_exits_nonzero(self, cli_orchestrator, session):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])
        session.route(RAW_ALGEBRA_URL, "foo,bar\n1,2\n")

        result = runner.invoke(app, ["sync", "algebra"])

        assert result.exit_code == 1

    def test_sync_all(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["sync-all"])

        assert result.exit_code == 0
        assert "1/1" in result.stdout

    def test_sync_all_background_respects_cooldown(self, cli_orchestrator):
        first = runner.invoke(app, ["sync-all", "--background"])
        second = runner.invoke(app, ["sync-all", "--background"])

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert "omitida" in second.stdout

    def test_manifest_cooldown(self, cli_orchestrator):
        first = runner.invoke(app, ["manifest"])
        second = runner.invoke(app, ["manifest"])
        forced = runner.invoke(app, ["manifest", "--force"])

        assert first.exit_code == 0
        assert "Manifiesto actualizado" in first.stdout
        assert second.exit_code == 1
        assert forced.exit_code == 0


class TestManageCommands:
    """Tests for auto-update and remove."""

    def test_auto_update_off(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["auto-update", "algebra", "--off"])

        assert result.exit_code == 0
        assert cli_orchestrator.list_sources()[0].auto_update is False

    def test_remove_with_confirmation_declined(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["remove", "algebra"], input="n\n")

        assert result.exit_code == 0
        assert len(cli_orchestrator.list_sources()) == 1

    def test_remove_yes(self, cli_orchestrator):
        runner.invoke(app, ["add", RAW_ALGEBRA_URL])

        result = runner.invoke(app, ["remove", "algebra", "--yes"])

        assert result.exit_code == 0
        assert cli_orchestrator.list_sources() == []
