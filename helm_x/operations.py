"""Operation drivers that consume a generated chart or release state.

Each driver owns a fresh workspace for its lifetime, so the temporary chart
is removed on every exit path unless debug retention is requested.
"""

from dataclasses import replace
import logging

from .adopt import adopt
from .chart import GeneratedChart, chartify
from .command import CommandRunner
from .config import (
    AdoptOptions,
    ChartifyOptions,
    DiffOptions,
    TemplateOptions,
    UpgradeOptions,
)
from .context import chart_workspace, trace_context
from .exceptions import ReleaseNotFoundError
from .helm import Helm
from .kustomize import Kustomize
from .manifest import ManifestDocument, ReleaseRecord
from .release import ReleaseStorage
from .resource_diff import DocumentDiff, diff_documents

__all__ = [
    "upgrade",
    "template",
    "diff",
    "dump",
    "list_releases",
]

_LOGGER = logging.getLogger(__name__)


def render(
    chart: GeneratedChart, options: ChartifyOptions, runner: CommandRunner
) -> Kustomize:
    """Return the command that renders the generated chart."""
    helm = Helm(runner, kube_context=options.kube_context)
    return helm.template(
        chart.path,
        options.release_name,
        options.namespace,
        chart.values,
        dependency_update=chart.has_dependencies,
    )


async def upgrade(
    ref: str,
    release: str,
    options: UpgradeOptions,
    runner: CommandRunner,
) -> str:
    """Chartify the input and install or upgrade the release.

    Resources listed in `options.adopt` are adopted into the release before
    the upgrade. Returns the helm transcript.
    """
    chartify_options = replace(options.chartify, release_name=release)
    with chart_workspace(retain=chartify_options.debug) as workspace:
        chart = await chartify(ref, chartify_options, workspace, runner)
        if options.adopt:
            await adopt(
                AdoptOptions(
                    release=release,
                    namespace=chartify_options.namespace,
                    resources=options.adopt,
                    kube_context=chartify_options.kube_context,
                ),
                runner,
            )
        with trace_context(f"Upgrade {release}"):
            helm = Helm(runner, kube_context=chartify_options.kube_context)
            return await helm.upgrade(
                chart.path,
                release,
                replace(options, chartify=chartify_options),
                dependency_update=chart.has_dependencies,
            )


async def template(ref: str, options: TemplateOptions, runner: CommandRunner) -> str:
    """Chartify the input and return the rendered manifests."""
    with chart_workspace(retain=options.chartify.debug) as workspace:
        chart = await chartify(ref, options.chartify, workspace, runner)
        with trace_context(f"Template {chart.metadata.name}"):
            return await render(chart, options.chartify, runner).run()


async def diff(
    ref: str,
    release: str,
    options: DiffOptions,
    runner: CommandRunner,
) -> list[DocumentDiff]:
    """Compare the manifests of the chartified input with the installed release."""
    chartify_options = replace(options.chartify, release_name=release)
    storage = ReleaseStorage(
        chartify_options.namespace,
        runner,
        driver=options.storage_driver,
        kube_context=chartify_options.kube_context,
    )
    current: list[ManifestDocument] = []
    try:
        record = await storage.get_release(release)
        current = record.documents
    except ReleaseNotFoundError:
        if not options.allow_unreleased:
            raise
        _LOGGER.info("Release %s not found, comparing with no manifests", release)

    with chart_workspace(retain=chartify_options.debug) as workspace:
        chart = await chartify(ref, chartify_options, workspace, runner)
        with trace_context(f"Render {chart.metadata.name}"):
            rendered = await render(chart, chartify_options, runner).objects()

    # Hooks and tests are not part of the stored release manifest
    new = [doc for doc in rendered if not doc.is_hook]

    return diff_documents(current, new, list(options.strip_attrs))


async def dump(
    release: str,
    namespace: str | None,
    runner: CommandRunner,
    driver: str,
    kube_context: str | None = None,
) -> ReleaseRecord:
    """Return the latest record of the release for inspection."""
    storage = ReleaseStorage(namespace, runner, driver=driver, kube_context=kube_context)
    return await storage.get_release(release)


async def list_releases(
    namespace: str | None,
    runner: CommandRunner,
    driver: str,
    kube_context: str | None = None,
) -> list[ReleaseRecord]:
    """Return the latest record of every release in the namespace."""
    storage = ReleaseStorage(namespace, runner, driver=driver, kube_context=kube_context)
    return await storage.list_releases()
