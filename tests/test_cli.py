"""Tests for the command line interface."""

from typer.testing import CliRunner

from main import app

runner = CliRunner()


def test_estimate_prints_breakdown(tmp_path):
    result = runner.invoke(app, [
        "estimate", "What is 6 x 7?",
        "--models", "openai/gpt-4o,anthropic/claude-3.5-sonnet,google/gemini-1.5-pro",
        "--config", str(tmp_path / "missing.yaml"),
    ])

    assert result.exit_code == 0
    assert "Estimated cost" in result.stdout
    assert "openai/gpt-4o:response" in result.stdout
    assert "anthropic/claude-3.5-sonnet:synthesis" in result.stdout


def test_run_rejects_too_few_participants(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    result = runner.invoke(app, [
        "run", "What is 6 x 7?",
        "--models", "openai/gpt-4o",
        "--config", str(tmp_path / "missing.yaml"),
    ])
    assert result.exit_code == 2


def test_commands_are_registered():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "estimate", "check", "serve"):
        assert command in result.stdout
