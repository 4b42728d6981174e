"""Tests for the workspace and tracing helpers."""

import logging
import shutil

import pytest

from helm_x.context import chart_workspace, trace_context


def test_workspace_removed() -> None:
    """Test the workspace is removed when the block exits."""
    with chart_workspace() as workspace:
        assert workspace.root.is_dir()
        assert workspace.root.name.startswith("helm-x-")
        workspace.chart_dir.mkdir()
    assert not workspace.root.exists()


def test_workspace_removed_on_error() -> None:
    """Test the workspace is removed when the block raises."""
    with pytest.raises(ValueError):
        with chart_workspace() as workspace:
            raise ValueError("failed")
    assert not workspace.root.exists()


def test_workspaces_are_isolated() -> None:
    """Test concurrent operations get their own directories."""
    with chart_workspace() as first, chart_workspace() as second:
        assert first.root != second.root


def test_workspace_retained(caplog: pytest.LogCaptureFixture) -> None:
    """Test the workspace is kept for debugging."""
    caplog.set_level(logging.INFO)
    with chart_workspace(retain=True) as workspace:
        pass
    try:
        assert workspace.root.is_dir()
        assert f"helm chart has been written to {workspace.root}" in caplog.text
    finally:
        shutil.rmtree(workspace.root)


def test_trace_context(caplog: pytest.LogCaptureFixture) -> None:
    """Test nested stages are logged with their parents."""
    caplog.set_level(logging.DEBUG)
    with trace_context("Chartify"):
        with trace_context("Resolve"):
            pass
    assert "[Trace] > Chartify > Resolve" in caplog.text
    assert "[Trace] < Chartify" in caplog.text
