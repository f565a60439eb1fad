"""Tests for the command-line interface."""

import sys
from pathlib import Path

from typer.testing import CliRunner

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hierarchical_tasks import __version__
from hierarchical_tasks.cli import app, parse_params
from registry import make_identity

runner = CliRunner()


def test_version():
    """Test the version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_identity_command():
    """Test that the identity command prints the computed identity."""
    result = runner.invoke(app, ["identity", "Story about ABC", "tone=formal", "words=500"])
    assert result.exit_code == 0
    assert make_identity("Story about ABC", {"tone": "formal", "words": "500"}) in result.output


def test_identity_rejects_bad_params():
    """Test parameters without an equals sign."""
    result = runner.invoke(app, ["identity", "Story", "no-equals-sign"])
    assert result.exit_code != 0


def test_identity_rejects_empty_topic():
    """Test a topic with nothing left after slugging."""
    result = runner.invoke(app, ["identity", "!!!"])
    assert result.exit_code == 1


def test_parse_params():
    """Test key=value parsing."""
    assert parse_params(["a=1", "b=x=y"]) == {"a": "1", "b": "x=y"}


def test_demo():
    """Test the two-pool demo."""
    result = runner.invoke(app, ["demo", "--global-units", "3", "--local-units", "2", "--tasks", "3"])
    assert result.exit_code == 0
    assert "pool-a" in result.output
    assert "pool-b" in result.output
    assert "Peak concurrency" in result.output


def test_demo_with_failing_task():
    """Test that a failing demo task is reported without aborting."""
    result = runner.invoke(app, ["demo", "--tasks", "3", "--fail", "1"])
    assert result.exit_code == 0
    assert "task 1 failed" in result.output


def test_check_store_memory(monkeypatch):
    """Test check-store against the memory backend."""
    monkeypatch.setenv("TASKS_STORE_BACKEND", "memory")
    result = runner.invoke(app, ["check-store"])
    assert result.exit_code == 0
    assert "0 record(s)" in result.output
