"""Tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from autogarou.cli.main import app, run_bot_game
from autogarou.config import CONFIG_ENV_VAR
from autogarou.engine.state import GameSettings
from autogarou.io.persistence import load_snapshot

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


class TestConfigCommands:
    def test_init_config(self, isolated):
        result = runner.invoke(app, ["init-config", "--output", "rules.yaml"])

        assert result.exit_code == 0
        assert (isolated / "rules.yaml").exists()

    def test_init_config_refuses_overwrite(self, isolated):
        (isolated / "rules.yaml").write_text("auto_mode: true\n", encoding="utf-8")

        result = runner.invoke(app, ["init-config", "-o", "rules.yaml"])
        assert result.exit_code == 1

        result = runner.invoke(app, ["init-config", "-o", "rules.yaml", "--force", "--template"])
        assert result.exit_code == 0
        assert "rule_variants:" in (isolated / "rules.yaml").read_text(encoding="utf-8")

    def test_show_config(self, isolated):
        (isolated / "rules.yaml").write_text("random_seed: 11\n", encoding="utf-8")

        result = runner.invoke(app, ["show-config", "--config", "rules.yaml"])

        assert result.exit_code == 0
        assert "# Source: rules.yaml" in result.output
        assert "random_seed: 11" in result.output

    def test_show_defaults(self):
        result = runner.invoke(app, ["show-config"])
        assert "built-in defaults" in result.output


class TestSimulate:
    def test_bot_game_finishes(self):
        coordinator, game = run_bot_game(GameSettings(random_seed=5))

        assert game.is_over
        assert game.winner is not None
        assert all(p.is_bot for p in coordinator.get_players(game.id))

    def test_simulate_and_inspect(self, isolated):
        result = runner.invoke(app, ["simulate", "--seed", "3", "--output", "game.json"])

        assert result.exit_code == 0
        assert "GAME RESULT" in result.output
        snapshot = load_snapshot(isolated / "game.json")
        assert snapshot.game.winner is not None

        full = runner.invoke(app, ["inspect", "game.json"])
        public = runner.invoke(app, ["inspect", "game.json", "--public"])

        assert full.exit_code == 0
        assert public.exit_code == 0
        assert "game_started" in public.output
        assert len(public.output.splitlines()) <= len(full.output.splitlines())

    def test_unknown_log_level(self):
        result = runner.invoke(app, ["simulate", "--log-level", "loud"])
        assert result.exit_code == 1

    def test_inspect_missing_file(self):
        result = runner.invoke(app, ["inspect", "missing.json"])
        assert result.exit_code == 1
