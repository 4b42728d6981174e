"""Tests for the patch and injection pipeline."""

import asyncio
from collections.abc import Sequence
import copy
from pathlib import Path
import shutil
from typing import Any

import pytest
import yaml

from helm_x.command import Command, CommandRunner, Task
from helm_x.exceptions import InputException, PipelineStageError
from helm_x.manifest import ManifestDocument, parse_documents
from helm_x.pipeline import (
    InjectorSpec,
    JsonPatchSpec,
    Pipeline,
    StrategicMergePatchSpec,
    TargetSelector,
)

from .fakes import FakeRunner, file_arg

TESTDATA_DIR = Path(__file__).parent / "testdata"
PATCHES_DIR = TESTDATA_DIR / "patches"


def load_manifests() -> list[ManifestDocument]:
    docs: list[ManifestDocument] = []
    for name in ("deployment.yaml", "service.yaml"):
        docs.extend(parse_documents((TESTDATA_DIR / "manifests" / name).read_text()))
    return docs


def by_kind(docs: list[ManifestDocument], kind: str) -> dict[str, Any]:
    [body] = [doc.body for doc in docs if doc.kind == kind]
    return body


def annotate_injector(cmd: Command) -> str:
    """Fake injector that records the replicas it saw as an annotation."""
    body = yaml.safe_load(file_arg(cmd.cmd).read_text())
    annotations = body["metadata"].setdefault("annotations", {})
    annotations["injected"] = str(body.get("spec", {}).get("replicas", "none"))
    return yaml.dump(body)


async def test_no_stages(tmp_path: Path) -> None:
    """Test the manifest set is unchanged when there are no stages."""
    docs = load_manifests()
    runner = FakeRunner()
    result = await Pipeline([], runner, tmp_path).apply(docs)
    assert result == docs
    assert not runner.commands


async def test_json_patch_with_target(tmp_path: Path) -> None:
    """Test a JSON patch operation list applied to the selected documents."""
    docs = load_manifests()
    original = copy.deepcopy(docs)
    stage = JsonPatchSpec.from_str(f"{PATCHES_DIR / 'replicas.json'}@kind=Deployment,name=web")
    result = await Pipeline([stage], FakeRunner(), tmp_path).apply(docs)
    assert by_kind(result, "Deployment")["spec"]["replicas"] == 3
    assert by_kind(result, "Service") == by_kind(docs, "Service")
    assert docs == original


async def test_json_patch_deterministic(tmp_path: Path) -> None:
    """Test applying the same pipeline twice gives the same result."""
    stages = [
        JsonPatchSpec.from_str(f"{PATCHES_DIR / 'replicas.json'}@kind=Deployment"),
        JsonPatchSpec.from_str(str(PATCHES_DIR / "targeted.yaml")),
    ]
    pipeline = Pipeline(stages, FakeRunner(), tmp_path)
    first = await pipeline.apply(load_manifests())
    second = await pipeline.apply(load_manifests())
    assert first == second


async def test_json_patch_target_list(tmp_path: Path) -> None:
    """Test a patch file with a target for each list of operations."""
    stage = JsonPatchSpec.from_str(str(PATCHES_DIR / "targeted.yaml"))
    result = await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())
    service = by_kind(result, "Service")
    assert service["metadata"]["annotations"] == {"example.com/exposed": "true"}
    deployment = by_kind(result, "Deployment")
    assert deployment["spec"]["template"]["spec"]["containers"][0]["env"] == [
        {"name": "MODE", "value": "production"}
    ]


async def test_json_patch_target_list_with_selector(tmp_path: Path) -> None:
    """Test a selector is rejected for a file that targets each entry itself."""
    stage = JsonPatchSpec.from_str(f"{PATCHES_DIR / 'targeted.yaml'}@kind=Service")
    with pytest.raises(PipelineStageError, match="cannot be combined"):
        await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())


async def test_json_patch_requires_target(tmp_path: Path) -> None:
    """Test an operation list without a selector is rejected."""
    stage = JsonPatchSpec.from_str(str(PATCHES_DIR / "replicas.json"))
    with pytest.raises(PipelineStageError, match="requires a target selector"):
        await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())


async def test_json_patch_no_match(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Test a patch whose target matches nothing is skipped by default."""
    docs = load_manifests()
    stage = JsonPatchSpec.from_str(str(PATCHES_DIR / "missing-target.yaml"))
    result = await Pipeline([stage], FakeRunner(), tmp_path).apply(docs)
    assert result == docs
    assert "matched no documents" in caplog.text


async def test_json_patch_no_match_strict(tmp_path: Path) -> None:
    """Test a patch whose target matches nothing fails in strict mode."""
    stage = JsonPatchSpec.from_str(str(PATCHES_DIR / "missing-target.yaml"))
    pipeline = Pipeline([stage], FakeRunner(), tmp_path, strict=True)
    with pytest.raises(PipelineStageError, match="kind=StatefulSet,name=db"):
        await pipeline.apply(load_manifests())


async def test_json_patch_invalid_operation(tmp_path: Path) -> None:
    """Test an operation that does not apply to the document."""
    patch_file = tmp_path / "bad.json"
    patch_file.write_text('[{"op": "replace", "path": "/spec/missing/field", "value": 1}]')
    stage = JsonPatchSpec.from_str(f"{patch_file}@kind=Service")
    with pytest.raises(PipelineStageError) as exc_info:
        await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())
    assert exc_info.value.document == "Service/web"
    assert exc_info.value.stage.startswith("json-patch[0]")


async def test_json_patch_missing_file(tmp_path: Path) -> None:
    """Test a patch file that does not exist."""
    stage = JsonPatchSpec.from_str(f"{tmp_path / 'missing.json'}@kind=Service")
    with pytest.raises(PipelineStageError, match="unable to read"):
        await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())


async def test_injector(tmp_path: Path) -> None:
    """Test an injector is run once for every document."""
    runner = FakeRunner(annotate_injector)
    stage = InjectorSpec.from_str("fake-inject kube-inject -f FILE")
    result = await Pipeline([stage], runner, tmp_path).apply(load_manifests())
    assert [doc.body["metadata"]["annotations"]["injected"] for doc in result] == [
        "1",
        "none",
    ]
    assert len(runner.commands) == 2
    for cmd in runner.commands:
        assert cmd.cmd[:3] == ["fake-inject", "kube-inject", "-f"]
        assert cmd.cmd[3].startswith(str(tmp_path))


async def test_legacy_injector(tmp_path: Path) -> None:
    """Test the deprecated injector flag syntax."""
    runner = FakeRunner(annotate_injector)
    stage = InjectorSpec.from_legacy_str("fake-inject kube-inject,f=FILE")
    await Pipeline([stage], runner, tmp_path).apply(load_manifests())
    for cmd in runner.commands:
        assert cmd.cmd[:2] == ["fake-inject", "kube-inject"]
        assert cmd.cmd[2].startswith(f"--f={tmp_path}")


async def test_injector_failure(tmp_path: Path) -> None:
    """Test a failing injector aborts the pipeline."""

    def handler(cmd: Command) -> str:
        raise cmd.exc("injector exploded")

    stages = [
        InjectorSpec.from_str("fake-inject FILE"),
        JsonPatchSpec.from_str(f"{PATCHES_DIR / 'replicas.json'}@kind=Deployment"),
    ]
    with pytest.raises(PipelineStageError, match="injector exploded") as exc_info:
        await Pipeline(stages, FakeRunner(handler), tmp_path).apply(load_manifests())
    assert exc_info.value.stage.startswith("inject[0]")


async def test_injector_duplicates(tmp_path: Path) -> None:
    """Test an injector that produces a document that already exists."""

    def handler(cmd: Command) -> str:
        return (TESTDATA_DIR / "manifests" / "service.yaml").read_text()

    stage = InjectorSpec.from_str("fake-inject FILE")
    with pytest.raises(PipelineStageError, match="same identity") as exc_info:
        await Pipeline([stage], FakeRunner(handler), tmp_path).apply(load_manifests())
    assert exc_info.value.stage == "validate"
    assert exc_info.value.document == "Service/web"


async def test_injector_write_failure(tmp_path: Path) -> None:
    """Test a manifest that cannot be written for the injector."""
    (tmp_path / "00-inject" / "0000.yaml").mkdir(parents=True)
    stage = InjectorSpec.from_str("fake-inject FILE")
    with pytest.raises(PipelineStageError, match="injector failed on") as exc_info:
        await Pipeline([stage], FakeRunner(annotate_injector), tmp_path).apply(
            load_manifests()
        )
    assert exc_info.value.stage.startswith("inject[0]")
    assert exc_info.value.document == "Deployment/web"


class BlockingRunner(CommandRunner):
    """Fails the first injector and blocks every other one until cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.cancelled: list[str] = []
        self.blocked = asyncio.Event()

    async def run_piped(self, cmds: Sequence[Task]) -> str:
        [cmd] = cmds
        assert isinstance(cmd, Command)
        if cmd.cmd[-1].endswith("0000.yaml"):
            await self.blocked.wait()
            raise cmd.exc("injector exploded")
        self.blocked.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.append(cmd.cmd[-1])
            raise
        return ""


async def test_injector_failure_cancels_others(tmp_path: Path) -> None:
    """Test injectors still running are cancelled when one of them fails."""
    runner = BlockingRunner()
    stage = InjectorSpec.from_str("fake-inject FILE")
    with pytest.raises(PipelineStageError, match="injector exploded"):
        await Pipeline([stage], runner, tmp_path).apply(load_manifests())
    assert [Path(path).name for path in runner.cancelled] == ["0001.yaml"]


async def test_stage_order(tmp_path: Path) -> None:
    """Test stages see the output of the stages declared before them."""
    stages = [
        JsonPatchSpec.from_str(f"{PATCHES_DIR / 'replicas.json'}@kind=Deployment"),
        InjectorSpec.from_str("fake-inject FILE"),
    ]
    result = await Pipeline(stages, FakeRunner(annotate_injector), tmp_path).apply(
        load_manifests()
    )
    assert by_kind(result, "Deployment")["metadata"]["annotations"]["injected"] == "3"

    stages.reverse()
    result = await Pipeline(stages, FakeRunner(annotate_injector), tmp_path).apply(
        load_manifests()
    )
    deployment = by_kind(result, "Deployment")
    assert deployment["metadata"]["annotations"]["injected"] == "1"
    assert deployment["spec"]["replicas"] == 3


async def test_strategic_merge(tmp_path: Path) -> None:
    """Test a strategic merge patch is handed to kustomize for the matched document."""
    seen: dict[str, Any] = {}

    def handler(cmd: Command) -> str:
        assert cmd.cwd is not None
        seen["kustomization"] = yaml.safe_load((cmd.cwd / "kustomization.yaml").read_text())
        seen["patch"] = yaml.safe_load((cmd.cwd / "patch.yaml").read_text())
        resources = list(yaml.safe_load_all((cmd.cwd / "resources.yaml").read_text()))
        for resource in resources:
            resource["spec"]["template"]["spec"]["containers"][0]["resources"] = {
                "limits": {"memory": "128Mi"}
            }
        return yaml.dump_all(resources)

    runner = FakeRunner(handler)
    stage = StrategicMergePatchSpec(PATCHES_DIR / "merge.yaml")
    result = await Pipeline([stage], runner, tmp_path).apply(load_manifests())
    assert runner.args("kustomize") == [["kustomize", "build", "."]]
    assert seen["kustomization"]["patches"] == [{"path": "patch.yaml"}]
    assert seen["patch"]["apiVersion"] == "apps/v1"
    container = by_kind(result, "Deployment")["spec"]["template"]["spec"]["containers"][0]
    assert container["resources"] == {"limits": {"memory": "128Mi"}}
    assert by_kind(result, "Service") == by_kind(load_manifests(), "Service")


async def test_strategic_merge_invalid_patch(tmp_path: Path) -> None:
    """Test a merge patch without an identity."""
    patch_file = tmp_path / "merge.yaml"
    patch_file.write_text("spec:\n  replicas: 2\n")
    stage = StrategicMergePatchSpec(patch_file)
    with pytest.raises(PipelineStageError, match="requires kind and metadata.name"):
        await Pipeline([stage], FakeRunner(), tmp_path).apply(load_manifests())


@pytest.mark.skipif(shutil.which("kustomize") is None, reason="kustomize not installed")
async def test_strategic_merge_kustomize(tmp_path: Path) -> None:
    """Test a strategic merge patch with the real kustomize binary."""
    stage = StrategicMergePatchSpec(PATCHES_DIR / "merge.yaml")
    result = await Pipeline([stage], CommandRunner(), tmp_path).apply(load_manifests())
    container = by_kind(result, "Deployment")["spec"]["template"]["spec"]["containers"][0]
    assert container["resources"] == {"limits": {"memory": "128Mi"}}
    assert container["image"] == "nginx:1.25"


def test_target_selector() -> None:
    """Test matching documents by selector fields."""
    [deployment, service] = load_manifests()
    selector = TargetSelector.from_str("kind=Deployment,group=apps,version=v1")
    assert selector.matches(deployment)
    assert not selector.matches(service)
    assert TargetSelector.from_str("name=web,group=").matches(service)
    assert str(selector) == "kind=Deployment,group=apps,version=v1"


@pytest.mark.parametrize(
    "value,match",
    [
        ("kind", "key=value"),
        ("kind=Deployment,color=blue", "Invalid patch target keys"),
        ("namespace=demo", "must set kind or name"),
    ],
)
def test_target_selector_invalid(value: str, match: str) -> None:
    """Test invalid selectors."""
    with pytest.raises(InputException, match=match):
        TargetSelector.from_str(value)


def test_injector_command() -> None:
    """Test replacing the FILE placeholder."""
    spec = InjectorSpec.from_legacy_str("istioctl kube-inject,f=FILE,meshConfigFile=mesh.yaml")
    assert spec.args == ("istioctl", "kube-inject", "--f=FILE", "--meshConfigFile=mesh.yaml")
    assert spec.command(Path("/tmp/doc.yaml")) == [
        "istioctl",
        "kube-inject",
        "--f=/tmp/doc.yaml",
        "--meshConfigFile=mesh.yaml",
    ]
    assert InjectorSpec.from_str("linkerd inject FILE").command(Path("a.yaml")) == [
        "linkerd",
        "inject",
        "a.yaml",
    ]
