"""Tests for resolving inputs into manifest sources."""

from pathlib import Path

import pytest

from helm_x.command import Command
from helm_x.config import ChartifyOptions
from helm_x.context import chart_workspace
from helm_x.exceptions import HelmException, InputException, SourceResolutionError
from helm_x.pipeline import JsonPatchSpec
from helm_x.source import (
    KustomizeOverlay,
    LocalChart,
    PlainDirectory,
    RemoteChartRef,
    classify,
    resolve,
)

from .fakes import FakeRunner, arg_value

TESTDATA_DIR = Path(__file__).parent / "testdata"

RENDERED = """---
apiVersion: v1
kind: ConfigMap
metadata:
  name: release-name-config
data:
  greeting: hello
"""

OVERLAY = """---
apiVersion: v1
kind: ConfigMap
metadata:
  name: overlay-settings
data:
  mode: production
"""


def test_classify_plain_directory() -> None:
    """Test a directory of manifests."""
    source = classify(str(TESTDATA_DIR / "manifests"), ChartifyOptions())
    assert source == PlainDirectory((TESTDATA_DIR / "manifests").resolve())


def test_classify_kustomization() -> None:
    """Test a directory with a kustomization."""
    source = classify(str(TESTDATA_DIR / "overlay"), ChartifyOptions())
    assert isinstance(source, KustomizeOverlay)


def test_classify_kustomization_precedence(tmp_path: Path) -> None:
    """Test a kustomization wins over a Chart.yaml in the same directory."""
    (tmp_path / "Chart.yaml").write_text("name: x\nversion: 1.0.0\n")
    (tmp_path / "kustomization.yaml").write_text("resources: []\n")
    assert isinstance(classify(str(tmp_path), ChartifyOptions()), KustomizeOverlay)


def test_classify_local_chart() -> None:
    """Test a chart directory."""
    source = classify(str(TESTDATA_DIR / "chart"), ChartifyOptions())
    assert isinstance(source, LocalChart)


@pytest.mark.parametrize(
    "ref",
    [
        "stable/mysql",
        "oci://registry.example.com/charts/podinfo",
        "https://charts.example.com/podinfo-1.0.0.tgz",
    ],
)
def test_classify_remote_chart(ref: str) -> None:
    """Test references to charts that are not on the local filesystem."""
    source = classify(ref, ChartifyOptions(chart_version="1.2.3"))
    assert source == RemoteChartRef(chart=ref, version="1.2.3")


def test_classify_bare_chart_name_with_repo() -> None:
    """Test a chart name with an explicit repository URL."""
    source = classify("podinfo", ChartifyOptions(chart_repo="https://charts.example.com"))
    assert source == RemoteChartRef(chart="podinfo", repo="https://charts.example.com")


def test_classify_unknown() -> None:
    """Test an input that is neither a directory nor a chart reference."""
    with pytest.raises(SourceResolutionError, match="neither an existing directory"):
        classify("does-not-exist", ChartifyOptions())


def test_classify_file() -> None:
    """Test a file is not a valid input."""
    with pytest.raises(SourceResolutionError) as exc_info:
        classify(str(TESTDATA_DIR / "manifests" / "service.yaml"), ChartifyOptions())
    assert exc_info.value.variant == "PlainDirectory"
    assert isinstance(exc_info.value, InputException)


async def test_resolve_plain_directory() -> None:
    """Test reading the manifests of a plain directory in name order."""
    runner = FakeRunner()
    with chart_workspace() as workspace:
        resolved = await resolve(
            str(TESTDATA_DIR / "manifests"), ChartifyOptions(), workspace, runner
        )
    assert [str(doc.identity) for doc in resolved.documents] == [
        "Deployment/web",
        "Service/web",
    ]
    assert resolved.metadata.name == "manifests"
    assert resolved.metadata.version == "1.0.0"
    assert resolved.metadata.app_version == "1.0.0"
    assert not resolved.is_chart
    assert not runner.commands


async def test_resolve_plain_directory_version() -> None:
    """Test the generated chart version follows the version option."""
    with chart_workspace() as workspace:
        resolved = await resolve(
            str(TESTDATA_DIR / "manifests"),
            ChartifyOptions(chart_version="2.3.4"),
            workspace,
            FakeRunner(),
        )
    assert resolved.metadata.version == "2.3.4"
    assert resolved.metadata.app_version == "2.3.4"


async def test_resolve_empty_directory(tmp_path: Path) -> None:
    """Test a directory with nothing to turn into a chart."""
    (tmp_path / "notes.txt").write_text("nothing to see")
    with chart_workspace() as workspace:
        with pytest.raises(SourceResolutionError) as exc_info:
            await resolve(str(tmp_path), ChartifyOptions(), workspace, FakeRunner())
    assert exc_info.value.variant == "PlainDirectory"
    assert exc_info.value.missing is not None
    assert "Chart.yaml" in exc_info.value.missing


async def test_resolve_invalid_manifest(tmp_path: Path) -> None:
    """Test a manifest file that is not a kubernetes object."""
    (tmp_path / "bad.yaml").write_text("apiVersion: v1\nmetadata:\n  name: x\n")
    with chart_workspace() as workspace:
        with pytest.raises(SourceResolutionError, match="bad.yaml"):
            await resolve(str(tmp_path), ChartifyOptions(), workspace, FakeRunner())


async def test_resolve_kustomization() -> None:
    """Test building a kustomization overlay."""
    runner = FakeRunner(lambda cmd: OVERLAY)
    with chart_workspace() as workspace:
        resolved = await resolve(
            str(TESTDATA_DIR / "overlay"), ChartifyOptions(), workspace, runner
        )
    assert [doc.name for doc in resolved.documents] == ["overlay-settings"]
    assert runner.args("kustomize") == [["kustomize", "build", "."]]
    assert runner.commands[0].cwd == (TESTDATA_DIR / "overlay").resolve()
    assert resolved.metadata.name == "overlay"


async def test_resolve_local_chart_without_stages() -> None:
    """Test a chart is copied and not rendered when there is nothing to apply."""
    runner = FakeRunner()
    with chart_workspace() as workspace:
        resolved = await resolve(
            str(TESTDATA_DIR / "chart"), ChartifyOptions(), workspace, runner
        )
        assert (workspace.chart_dir / "templates" / "configmap.yaml").is_file()
    assert resolved.is_chart
    assert not resolved.rendered
    assert resolved.documents == []
    assert resolved.metadata.name == "podinfo"
    assert [dep.name for dep in resolved.metadata.dependencies] == ["redis"]
    assert not runner.commands


async def test_resolve_local_chart_with_stages() -> None:
    """Test a chart is rendered so that patches apply to concrete manifests."""
    runner = FakeRunner(lambda cmd: RENDERED)
    options = ChartifyOptions(
        namespace="demo",
        stages=(JsonPatchSpec.from_str("patch.json@kind=ConfigMap"),),
    )
    with chart_workspace() as workspace:
        resolved = await resolve(str(TESTDATA_DIR / "chart"), options, workspace, runner)
    assert resolved.rendered
    assert [doc.name for doc in resolved.documents] == ["release-name-config"]
    [args] = runner.args("helm")
    assert args[:3] == ["helm", "template", "release-name"]
    assert arg_value(args, "--namespace") == "demo"
    assert "--dependency-update" in args


async def test_resolve_remote_chart() -> None:
    """Test a remote chart is fetched and then treated as a local chart."""

    def handler(cmd: Command) -> str:
        dest = Path(arg_value(cmd.cmd, "--untardir"))
        chart_dir = dest / "mysql"
        chart_dir.mkdir(parents=True)
        (chart_dir / "Chart.yaml").write_text("apiVersion: v2\nname: mysql\nversion: 1.6.0\n")
        return ""

    runner = FakeRunner(handler)
    options = ChartifyOptions(chart_version="1.6.0")
    with chart_workspace() as workspace:
        resolved = await resolve("stable/mysql", options, workspace, runner)
        assert (workspace.chart_dir / "Chart.yaml").is_file()
    assert isinstance(resolved.source, RemoteChartRef)
    assert resolved.source.path is not None
    assert resolved.metadata.name == "mysql"
    [args] = runner.args("helm")
    assert args[:3] == ["helm", "pull", "stable/mysql"]
    assert arg_value(args, "--version") == "1.6.0"


async def test_resolve_remote_chart_fetch_failure() -> None:
    """Test a chart that can't be fetched."""

    def handler(cmd: Command) -> str:
        raise cmd.exc("chart not found")

    with chart_workspace() as workspace:
        with pytest.raises(HelmException, match="chart not found"):
            await resolve("stable/missing", ChartifyOptions(), workspace, FakeRunner(handler))
