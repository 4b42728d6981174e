"""Library for running helm to render, fetch and install charts.

This is an example that renders a local chart:
```python
from helm_x.command import CommandRunner
from helm_x.config import ValueLayers
from helm_x.helm import Helm

helm = Helm(CommandRunner())
cmd = helm.template(Path("/tmp/chart"), "my-release", "default", ValueLayers())
for doc in await cmd.objects():
    print(f"Found object {doc.api_version} {doc.kind}")
```
"""

import logging
from pathlib import Path

from aiofiles.os import makedirs

from . import command
from .config import ValueLayers, UpgradeOptions
from .exceptions import HelmException
from .kustomize import Kustomize
from .manifest import CHART_FILE

__all__ = [
    "Helm",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"


class Helm:
    """Issues helm commands on behalf of the chartify engine and drivers."""

    def __init__(
        self, runner: command.CommandRunner, kube_context: str | None = None
    ) -> None:
        """Initialize Helm."""
        self._runner = runner
        self._kube_context = kube_context

    @property
    def _context_args(self) -> list[str]:
        if self._kube_context:
            return ["--kube-context", self._kube_context]
        return []

    def template(
        self,
        chart_dir: Path,
        release_name: str,
        namespace: str | None,
        values: ValueLayers,
        dependency_update: bool = False,
    ) -> Kustomize:
        """Return command to render the templates of the chart into manifests."""
        args: list[str] = [HELM_BIN, "template", release_name, str(chart_dir)]
        if namespace:
            args.extend(["--namespace", namespace])
        if dependency_update:
            args.append("--dependency-update")
        args.extend(values.args)
        return Kustomize([command.Command(args, exc=HelmException)], self._runner)

    async def fetch(
        self,
        chart: str,
        dest: Path,
        version: str | None = None,
        repo: str | None = None,
    ) -> Path:
        """Download and unpack a remote chart, returning the chart directory."""
        await makedirs(dest, exist_ok=True)
        args = [HELM_BIN, "pull", chart, "--untar", "--untardir", str(dest)]
        if version:
            args.extend(["--version", version])
        if repo:
            args.extend(["--repo", repo])
        await self._runner.run(command.Command(args, exc=HelmException))
        charts = sorted(path.parent for path in dest.glob(f"*/{CHART_FILE}"))
        if len(charts) != 1:
            raise HelmException(
                f"Expected one chart after fetching {chart} into {dest} but found {len(charts)}"
            )
        _LOGGER.debug("Fetched chart %s into %s", chart, charts[0])
        return charts[0]

    async def upgrade(
        self,
        chart_dir: Path,
        release_name: str,
        options: UpgradeOptions,
        dependency_update: bool = False,
    ) -> str:
        """Install or upgrade the release, returning the helm transcript."""
        args: list[str] = [HELM_BIN, "upgrade", release_name, str(chart_dir)]
        if options.install:
            args.append("--install")
        if namespace := options.chartify.namespace:
            args.extend(["--namespace", namespace])
        args.extend(["--timeout", f"{options.timeout}s"])
        if options.dry_run:
            args.append("--dry-run")
        if dependency_update:
            args.append("--dependency-update")
        args.extend(self._context_args)
        args.extend(options.chartify.values.args)
        # helm enforces --timeout itself
        cmd = command.Command(args, exc=HelmException, timeout=None)
        return await self._runner.run(cmd)
