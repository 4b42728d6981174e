"""Turn a manifest source into a temporary, self-contained helm chart.

This is the chartify engine. The input is resolved into a raw manifest set,
the patch and injection pipeline is applied, ad-hoc dependencies are merged
into the chart metadata and finally the chart is written into the workspace:

```python
from helm_x.chart import chartify
from helm_x.command import CommandRunner
from helm_x.config import ChartifyOptions
from helm_x.context import chart_workspace

with chart_workspace() as workspace:
    chart = await chartify("path/to/manifests", ChartifyOptions(), workspace, CommandRunner())
    print(chart.path)
```
"""

from dataclasses import dataclass, replace
import logging
from pathlib import Path
import re
import shutil

import aiofiles
from aiofiles.os import makedirs, remove
from aiofiles.ospath import exists, isdir
import yaml

from .command import CommandRunner
from .config import ChartifyOptions, ValueLayers
from .context import Workspace, trace_context
from .dependency import merge_dependencies
from .exceptions import MaterializationError
from .manifest import (
    CHART_FILE,
    CHARTS_DIR,
    REQUIREMENTS_FILE,
    TEMPLATES_DIR,
    VALUES_FILE,
    ChartMetadata,
    ManifestDocument,
)
from .pipeline import Pipeline
from .source import ManifestSource, resolve

__all__ = [
    "GeneratedChart",
    "chartify",
    "materialize",
]

_LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9.-]+")


@dataclass
class GeneratedChart:
    """A chart materialized in the workspace, ready for helm."""

    path: Path
    """The chart directory."""

    metadata: ChartMetadata
    """The chart metadata as written to Chart.yaml."""

    values: ValueLayers
    """Values to pass to helm, files first then `--set` overrides."""

    source: ManifestSource
    """The variant the chart was generated from."""

    documents: list[ManifestDocument] | None = None
    """The manifests written as templates, or None when the chart's own templates were kept."""

    @property
    def has_dependencies(self) -> bool:
        return bool(self.metadata.dependencies)


def template_filename(index: int, doc: ManifestDocument) -> str:
    """Return a stable template file name for the document."""
    name = _UNSAFE_CHARS.sub("-", f"{doc.kind}-{doc.name}".lower()).strip("-")
    return f"{index:04d}-{name}.yaml"


async def _write(path: Path, content: str) -> None:
    async with aiofiles.open(path, mode="w") as out_file:
        await out_file.write(content)


async def _write_templates(chart_dir: Path, docs: list[ManifestDocument]) -> None:
    for subdir in (TEMPLATES_DIR, CHARTS_DIR):
        # Rendered output already contains the subcharts and old templates
        if await isdir(chart_dir / subdir):
            shutil.rmtree(chart_dir / subdir)
    templates_dir = chart_dir / TEMPLATES_DIR
    await makedirs(templates_dir)
    for index, doc in enumerate(docs):
        await _write(templates_dir / template_filename(index, doc), doc.yaml())


async def _write_metadata(chart_dir: Path, metadata: ChartMetadata) -> None:
    await _write(
        chart_dir / CHART_FILE, yaml.dump(metadata.chart_dict(), sort_keys=False)
    )
    requirements_path = chart_dir / REQUIREMENTS_FILE
    if (requirements := metadata.requirements_dict()) is not None:
        await _write(requirements_path, yaml.dump(requirements, sort_keys=False))
    elif await exists(requirements_path):
        await remove(requirements_path)


async def materialize(
    chart_dir: Path,
    metadata: ChartMetadata,
    docs: list[ManifestDocument] | None,
    values: ValueLayers,
    source: ManifestSource,
) -> GeneratedChart:
    """Write the chart metadata and manifests into the chart directory.

    When `docs` is None the chart directory must already hold a copied chart
    whose templates are kept as they are. Any failure raises
    `MaterializationError` and leaves the partial directory to the caller.
    """
    with trace_context(f"Materialize {metadata.name}"):
        try:
            await makedirs(chart_dir, exist_ok=True)
            if docs is not None:
                await _write_templates(chart_dir, docs)
            await _write_metadata(chart_dir, metadata)
            if not await exists(chart_dir / VALUES_FILE):
                await _write(chart_dir / VALUES_FILE, "{}\n")
        except OSError as err:
            raise MaterializationError(
                f"Unable to write chart to {chart_dir}: {err}"
            ) from err
    _LOGGER.debug(
        "Materialized chart %s %s in %s", metadata.name, metadata.version, chart_dir
    )
    return GeneratedChart(
        path=chart_dir,
        metadata=metadata,
        values=values,
        source=source,
        documents=docs,
    )


async def chartify(
    ref: str,
    options: ChartifyOptions,
    workspace: Workspace,
    runner: CommandRunner,
) -> GeneratedChart:
    """Turn a directory or chart reference into a chart inside the workspace."""
    with trace_context(f"Chartify {ref}"):
        resolved = await resolve(ref, options, workspace, runner)
        metadata = resolved.metadata
        docs: list[ManifestDocument] | None = None
        if not resolved.is_chart or resolved.rendered:
            pipeline = Pipeline(
                options.stages,
                runner,
                workspace.pipeline_dir,
                strict=options.strict_patches,
            )
            docs = await pipeline.apply(resolved.documents)
        if resolved.rendered:
            metadata = replace(metadata, dependencies=[])
        metadata = merge_dependencies(metadata, options.dependencies)
        return await materialize(
            workspace.chart_dir, metadata, docs, options.values, resolved.source
        )
