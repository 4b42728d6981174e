"""Library for generating kustomize commands to build manifests.

Kustomize build is used both to turn a kustomization overlay into a manifest
set and to apply strategic merge patches to documents selected by the patch
pipeline.

This example returns the objects inside an overlay using `kustomize build`:
```python
from helm_x import kustomize
from helm_x.command import CommandRunner

docs = await kustomize.build(Path('/path/to/overlay'), CommandRunner()).objects()
for doc in docs:
    print(f"Found object {doc.api_version} {doc.kind}")
```
"""

import logging
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.os import makedirs
import yaml

from .command import Command, CommandRunner, Task, format_path
from .exceptions import InputException, KustomizeException
from .manifest import ManifestDocument, dump_documents, parse_documents

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "build",
    "strategic_merge",
    "Kustomize",
]

KUSTOMIZE_BIN = "kustomize"

KUSTOMIZATION_FILES = ["kustomization.yaml", "kustomization.yml", "Kustomization"]

_RESOURCES_FILE = "resources.yaml"
_PATCH_FILE = "patch.yaml"


class Kustomize:
    """A chain of commands that produce a manifest stream."""

    def __init__(self, cmds: list[Task], runner: CommandRunner) -> None:
        """Initialize Kustomize, used internally for copying object."""
        self._cmds = cmds
        self._runner = runner

    async def run(self) -> str:
        """Run the command chain and return the output as a string."""
        return await self._runner.run_piped(self._cmds)

    async def objects(self) -> list[ManifestDocument]:
        """Run the command chain and return the result as a manifest set."""
        out = await self.run()
        try:
            return parse_documents(out)
        except InputException as err:
            raise KustomizeException(
                f"Unable to parse command output: {self}: {err}"
            ) from err

    async def stash(self) -> "Kustomize":
        """Memoize the contents built so far for efficient reuse."""
        content = await self.run()
        return Kustomize([Stash(content.encode("utf-8"))], self._runner)

    def __str__(self) -> str:
        """Render as a debug string."""
        return " | ".join(str(cmd) for cmd in self._cmds)


class Stash(Task):
    """A task that memoizes output from a previous command."""

    def __init__(self, out: bytes) -> None:
        """Initialize Stash."""
        self._out = out

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the task."""
        return self._out

    def __str__(self) -> str:
        return "stash"


def find_kustomization(path: Path) -> Path | None:
    """Return the kustomization file in the directory, if any."""
    for name in KUSTOMIZATION_FILES:
        if (candidate := path / name).is_file():
            return candidate
    return None


def build(path: Path, runner: CommandRunner) -> Kustomize:
    """Build the kustomization overlay in the specified directory."""
    args = [KUSTOMIZE_BIN, "build"]
    cwd: Path | None = None
    if path.is_absolute():
        args.append(".")
        cwd = path
    else:
        args.append(str(path))
    _LOGGER.debug("Building kustomization %s", format_path(path))
    return Kustomize([Command(args, cwd=cwd, exc=KustomizeException)], runner)


def _patch_kustomization() -> dict[str, Any]:
    return {
        "apiVersion": "kustomize.config.k8s.io/v1beta1",
        "kind": "Kustomization",
        "resources": [_RESOURCES_FILE],
        "patches": [{"path": _PATCH_FILE}],
    }


async def strategic_merge(
    docs: list[ManifestDocument],
    patch: dict[str, Any],
    workdir: Path,
    runner: CommandRunner,
) -> list[ManifestDocument]:
    """Apply a strategic merge patch to the documents using kustomize.

    The documents should already be the ones selected by the patch. The
    result is keyed by identity since kustomize may reorder its output.
    """
    await makedirs(workdir, exist_ok=True)
    async with aiofiles.open(workdir / _RESOURCES_FILE, mode="w") as resources_file:
        await resources_file.write(dump_documents(docs))
    async with aiofiles.open(workdir / _PATCH_FILE, mode="w") as patch_file:
        await patch_file.write(yaml.dump(patch, sort_keys=False))
    async with aiofiles.open(workdir / KUSTOMIZATION_FILES[0], mode="w") as ks_file:
        await ks_file.write(yaml.dump(_patch_kustomization(), sort_keys=False))
    results = await build(workdir, runner).objects()
    by_identity = {doc.identity: doc for doc in results}
    patched: list[ManifestDocument] = []
    for doc in docs:
        if (result := by_identity.get(doc.identity)) is None:
            raise KustomizeException(
                f"kustomize output did not contain patched object {doc.identity}"
            )
        patched.append(result)
    return patched
