"""Resolve an input directory or chart reference into a manifest source.

The input is classified exactly once into one of four variants:

- `PlainDirectory`: a directory of Kubernetes manifests
- `KustomizeOverlay`: a directory containing a kustomization file
- `LocalChart`: a directory containing `Chart.yaml`
- `RemoteChartRef`: a `REPO/CHART` reference, URL or OCI reference that is
  fetched and then treated as a local chart
"""

from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
import re
import shutil
from typing import ClassVar

import aiofiles
from aiofiles.ospath import isfile
import yaml

from . import kustomize
from .command import CommandRunner
from .config import ChartifyOptions
from .context import Workspace, trace_context
from .exceptions import (
    InputException,
    MaterializationError,
    SourceResolutionError,
)
from .helm import Helm
from .manifest import (
    CHART_FILE,
    DEFAULT_CHART_VERSION,
    REQUIREMENTS_FILE,
    ChartMetadata,
    ManifestDocument,
    parse_documents,
)

__all__ = [
    "PlainDirectory",
    "KustomizeOverlay",
    "LocalChart",
    "RemoteChartRef",
    "ManifestSource",
    "ResolvedSource",
    "classify",
    "resolve",
]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")

# Matches REPO/CHART references to charts in a configured helm repository
CHART_REF_RE = re.compile(r"^[A-Za-z0-9][\w.-]*/[A-Za-z0-9][\w.-]*$")
CHART_NAME_RE = re.compile(r"^[A-Za-z0-9][\w.-]*$")
REMOTE_PREFIXES = ("oci://", "http://", "https://")


@dataclass(frozen=True)
class PlainDirectory:
    """A directory of plain Kubernetes manifests."""

    variant: ClassVar[str] = "PlainDirectory"

    path: Path


@dataclass(frozen=True)
class KustomizeOverlay:
    """A directory containing a kustomization."""

    variant: ClassVar[str] = "KustomizeOverlay"

    path: Path


@dataclass(frozen=True)
class LocalChart:
    """A helm chart directory on the local filesystem."""

    variant: ClassVar[str] = "LocalChart"

    path: Path


@dataclass(frozen=True)
class RemoteChartRef:
    """A chart in a remote repository."""

    variant: ClassVar[str] = "RemoteChartRef"

    chart: str
    """The chart reference as given e.g. `stable/mysql`."""

    version: str | None = None
    """The chart version to fetch, or the latest if unset."""

    repo: str | None = None
    """The repository URL, for references that are a bare chart name."""

    path: Path | None = None
    """The local chart directory once fetched."""


ManifestSource = PlainDirectory | KustomizeOverlay | LocalChart | RemoteChartRef


@dataclass
class ResolvedSource:
    """A classified source with its raw manifest set."""

    source: ManifestSource
    """The variant the input was classified as."""

    metadata: ChartMetadata
    """Chart metadata, generated or read from the chart."""

    documents: list[ManifestDocument] = field(default_factory=list)
    """The raw manifest set. Only populated for charts when they were rendered."""

    chart_dir: Path | None = None
    """For chart sources, the copy of the chart inside the workspace."""

    rendered: bool = False
    """True when the documents are the rendered output of a chart."""

    @property
    def is_chart(self) -> bool:
        return isinstance(self.source, (LocalChart, RemoteChartRef))


def classify(ref: str, options: ChartifyOptions) -> ManifestSource:
    """Determine the variant of the input by probing the filesystem."""
    path = Path(ref)
    if path.is_dir():
        path = path.resolve()
        if kustomize.find_kustomization(path):
            return KustomizeOverlay(path)
        if (path / CHART_FILE).is_file():
            return LocalChart(path)
        return PlainDirectory(path)
    if path.exists():
        raise SourceResolutionError(
            f"Input '{ref}' is a file but a directory or chart reference is required",
            variant=PlainDirectory.variant,
            missing="directory",
        )
    if (
        ref.startswith(REMOTE_PREFIXES)
        or CHART_REF_RE.match(ref)
        or (options.chart_repo and CHART_NAME_RE.match(ref))
    ):
        return RemoteChartRef(
            chart=ref, version=options.chart_version, repo=options.chart_repo
        )
    raise SourceResolutionError(
        f"Input '{ref}' is neither an existing directory nor a chart reference",
        variant=RemoteChartRef.variant,
        missing="REPO/CHART reference",
    )


async def read_manifest_dir(path: Path) -> list[ManifestDocument]:
    """Read every top-level manifest file in the directory, in name order."""
    docs: list[ManifestDocument] = []
    for manifest_path in sorted(path.iterdir()):
        if manifest_path.suffix not in MANIFEST_SUFFIXES or not manifest_path.is_file():
            continue
        async with aiofiles.open(manifest_path) as manifest_file:
            content = await manifest_file.read()
        try:
            docs.extend(parse_documents(content))
        except InputException as err:
            raise SourceResolutionError(
                f"Invalid manifest file {manifest_path}: {err}",
                variant=PlainDirectory.variant,
            ) from err
    return docs


async def read_chart_metadata(chart_dir: Path) -> ChartMetadata:
    """Read Chart.yaml, and requirements.yaml if present, from a chart directory."""
    async with aiofiles.open(chart_dir / CHART_FILE) as chart_file:
        content = await chart_file.read()
    requirements = None
    if await isfile(chart_dir / REQUIREMENTS_FILE):
        async with aiofiles.open(chart_dir / REQUIREMENTS_FILE) as requirements_file:
            requirements = yaml.safe_load(await requirements_file.read())
    try:
        return ChartMetadata.parse_doc(yaml.safe_load(content), requirements)
    except (yaml.YAMLError, InputException) as err:
        raise SourceResolutionError(
            f"Invalid chart {chart_dir}: {err}",
            variant=LocalChart.variant,
            missing=CHART_FILE,
        ) from err


def generated_metadata(path: Path, options: ChartifyOptions) -> ChartMetadata:
    """Chart metadata for a chart generated from a directory of manifests."""
    version = options.chart_version or DEFAULT_CHART_VERSION
    return ChartMetadata(name=path.name, version=version, app_version=version)


async def _resolve_plain(
    source: PlainDirectory, options: ChartifyOptions
) -> ResolvedSource:
    docs = await read_manifest_dir(source.path)
    if not docs:
        raise SourceResolutionError(
            f"Directory {source.path} contains no Kubernetes manifests",
            variant=source.variant,
            missing=f"*.yaml, {kustomize.KUSTOMIZATION_FILES[0]} or {CHART_FILE}",
        )
    return ResolvedSource(
        source=source,
        metadata=generated_metadata(source.path, options),
        documents=docs,
    )


async def _resolve_kustomize(
    source: KustomizeOverlay, options: ChartifyOptions, runner: CommandRunner
) -> ResolvedSource:
    docs = await kustomize.build(source.path, runner).objects()
    if not docs:
        raise SourceResolutionError(
            f"Kustomization {source.path} produced no manifests",
            variant=source.variant,
            missing="resources",
        )
    return ResolvedSource(
        source=source,
        metadata=generated_metadata(source.path, options),
        documents=docs,
    )


async def _resolve_chart(
    chart_path: Path,
    source: LocalChart | RemoteChartRef,
    options: ChartifyOptions,
    workspace: Workspace,
    runner: CommandRunner,
) -> ResolvedSource:
    try:
        shutil.copytree(chart_path, workspace.chart_dir, symlinks=True)
    except OSError as err:
        raise MaterializationError(
            f"Unable to copy chart {chart_path} to {workspace.chart_dir}: {err}"
        ) from err
    metadata = await read_chart_metadata(workspace.chart_dir)
    resolved = ResolvedSource(
        source=source, metadata=metadata, chart_dir=workspace.chart_dir
    )
    if not options.stages:
        return resolved

    # Patches operate on concrete manifests, not template expressions
    helm = Helm(runner, kube_context=options.kube_context)
    cmd = helm.template(
        workspace.chart_dir,
        options.release_name,
        options.namespace,
        options.values,
        dependency_update=bool(metadata.dependencies),
    )
    resolved.documents = await cmd.objects()
    resolved.rendered = True
    return resolved


async def resolve(
    ref: str,
    options: ChartifyOptions,
    workspace: Workspace,
    runner: CommandRunner,
) -> ResolvedSource:
    """Classify the input and extract its raw manifest set."""
    source = classify(ref, options)
    _LOGGER.debug("Resolved %s as %s", ref, source.variant)
    with trace_context(f"Resolve {source.variant}"):
        if isinstance(source, PlainDirectory):
            return await _resolve_plain(source, options)
        if isinstance(source, KustomizeOverlay):
            return await _resolve_kustomize(source, options, runner)
        if isinstance(source, LocalChart):
            return await _resolve_chart(
                source.path, source, options, workspace, runner
            )
        if isinstance(source, RemoteChartRef):
            helm = Helm(runner, kube_context=options.kube_context)
            path = await helm.fetch(
                source.chart, workspace.fetch_dir, source.version, source.repo
            )
            return await _resolve_chart(
                path, replace(source, path=path), options, workspace, runner
            )
    raise SourceResolutionError(
        f"Unsupported manifest source {source}", variant=type(source).__name__
    )
