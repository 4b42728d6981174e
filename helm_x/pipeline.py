"""Patch and injection pipeline applied to a manifest set.

Stages run in the order they were declared, and each stage sees the output
of the previous one. A failing stage raises `PipelineStageError` and the
remaining stages are skipped; the input manifest set is never modified so a
failure leaves nothing half-patched.

Stage types:
- `InjectorSpec`: an external command run once per document, e.g.
  `istioctl kube-inject -f FILE`, whose output replaces the document.
- `JsonPatchSpec`: RFC 6902 operations applied to the documents matched by
  an explicit target selector.
- `StrategicMergePatchSpec`: partial objects merged into the document with
  the same kind and name, applied with kustomize.
"""

import asyncio
from collections import Counter
import copy
from dataclasses import dataclass
import logging
from pathlib import Path
import shlex
from typing import Any, ClassVar

import aiofiles
from aiofiles.os import makedirs
import jsonpatch
import jsonpointer
import yaml

from . import kustomize
from .command import Command, CommandRunner
from .context import trace_context
from .exceptions import (
    CollaboratorExecutionError,
    InputException,
    PipelineStageError,
)
from .manifest import ManifestDocument, parse_documents

__all__ = [
    "TargetSelector",
    "InjectorSpec",
    "JsonPatchSpec",
    "StrategicMergePatchSpec",
    "Stage",
    "Pipeline",
    "validate_unique",
]

_LOGGER = logging.getLogger(__name__)

FILE_PLACEHOLDER = "FILE"
_TARGET_SEPARATOR = "@"
_SELECTOR_KEYS = ("kind", "name", "namespace", "group", "version")


def _split_api_version(api_version: str) -> tuple[str, str]:
    """Return the group and version of an apiVersion, group is empty for core."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


@dataclass(frozen=True)
class TargetSelector:
    """Selects documents by identity fields, unset fields match anything."""

    kind: str | None = None
    name: str | None = None
    namespace: str | None = None
    group: str | None = None
    version: str | None = None

    @classmethod
    def parse_doc(cls, doc: Any) -> "TargetSelector":
        """Parse a selector from a mapping like a kustomize patch target."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid patch target is not a mapping: {doc}")
        if unknown := set(doc) - set(_SELECTOR_KEYS):
            raise InputException(
                f"Invalid patch target keys {sorted(unknown)}, expected {list(_SELECTOR_KEYS)}"
            )
        selector = cls(**{key: str(value) for key, value in doc.items()})
        if not selector.kind and not selector.name:
            raise InputException(f"Patch target must set kind or name: {doc}")
        return selector

    @classmethod
    def from_str(cls, value: str) -> "TargetSelector":
        """Parse a selector from `key=value` pairs, e.g. `kind=Deployment,name=web`."""
        doc: dict[str, str] = {}
        for pair in value.split(","):
            if "=" not in pair:
                raise InputException(f"Expected key=value format but got '{pair}'")
            key, val = pair.split("=", 1)
            doc[key.strip()] = val.strip()
        return cls.parse_doc(doc)

    def matches(self, doc: ManifestDocument) -> bool:
        """Return true if the document has all the selected fields."""
        if self.kind is not None and doc.kind != self.kind:
            return False
        if self.name is not None and doc.name != self.name:
            return False
        if self.namespace is not None and doc.namespace != self.namespace:
            return False
        group, version = _split_api_version(doc.api_version)
        if self.group is not None and group != self.group:
            return False
        if self.version is not None and version != self.version:
            return False
        return True

    def __str__(self) -> str:
        return ",".join(
            f"{key}={value}"
            for key in _SELECTOR_KEYS
            if (value := getattr(self, key)) is not None
        )


@dataclass(frozen=True)
class InjectorSpec:
    """An external command that rewrites one manifest file."""

    stage_type: ClassVar[str] = "inject"

    args: tuple[str, ...]
    """Command line, where a `FILE` argument is replaced by the manifest path."""

    @classmethod
    def from_str(cls, value: str) -> "InjectorSpec":
        """Parse an injector like `istioctl kube-inject -f FILE`."""
        args = shlex.split(value)
        if not args:
            raise InputException("Injector command must not be empty")
        return cls(args=tuple(args))

    @classmethod
    def from_legacy_str(cls, value: str) -> "InjectorSpec":
        """Parse the deprecated `CMD SUBCMD,FLAG1=VAL1,FLAG2=VAL2` syntax.

        Flags are given without the leading `--`.
        """
        segments = [segment.strip() for segment in value.split(",")]
        words = shlex.split(segments[0]) if segments else []
        args = [word for word in words if "=" not in word]
        if not args:
            raise InputException(f"Injector command must not be empty: '{value}'")
        flags = [word for word in words if "=" in word]
        flags.extend(segment for segment in segments[1:] if segment)
        for flag in flags:
            if "=" not in flag:
                raise InputException(
                    f"Expected injector flag in FLAG=VALUE format but got '{flag}'"
                )
            args.append(f"--{flag}")
        return cls(args=tuple(args))

    def command(self, path: Path) -> list[str]:
        """Return the command line for injecting the specified file."""
        result = []
        for arg in self.args:
            if arg == FILE_PLACEHOLDER:
                result.append(str(path))
            elif arg.endswith(f"={FILE_PLACEHOLDER}"):
                result.append(arg[: -len(FILE_PLACEHOLDER)] + str(path))
            else:
                result.append(arg)
        return result

    def __str__(self) -> str:
        return shlex.join(self.args)


@dataclass(frozen=True)
class JsonPatchSpec:
    """A JSON patch file and the selector for the documents it applies to."""

    stage_type: ClassVar[str] = "json-patch"

    path: Path
    """A file with an operation array, or a list of `{target, patch}` entries."""

    target: TargetSelector | None = None
    """Selector for a file containing a bare operation array."""

    @classmethod
    def from_str(cls, value: str) -> "JsonPatchSpec":
        """Parse `FILE` or `FILE@kind=Deployment,name=web`."""
        if _TARGET_SEPARATOR in value:
            path, target = value.rsplit(_TARGET_SEPARATOR, 1)
            return cls(path=Path(path), target=TargetSelector.from_str(target))
        return cls(path=Path(value))

    def __str__(self) -> str:
        if self.target:
            return f"{self.path}{_TARGET_SEPARATOR}{self.target}"
        return str(self.path)


@dataclass(frozen=True)
class StrategicMergePatchSpec:
    """A file of partial Kubernetes objects merged into matching documents."""

    stage_type: ClassVar[str] = "strategic-merge-patch"

    path: Path

    @classmethod
    def from_str(cls, value: str) -> "StrategicMergePatchSpec":
        """Parse the path of the patch file."""
        if not value:
            raise InputException("Strategic merge patch file must not be empty")
        return cls(path=Path(value))

    def __str__(self) -> str:
        return str(self.path)


Stage = InjectorSpec | JsonPatchSpec | StrategicMergePatchSpec


def validate_unique(docs: list[ManifestDocument]) -> None:
    """Raise if two documents in the set share an identity."""
    counts = Counter(doc.identity for doc in docs)
    for identity, count in counts.items():
        if count > 1:
            raise PipelineStageError(
                "validate",
                f"found {count} documents with the same identity",
                document=str(identity),
            )


def _is_operation_list(doc: Any) -> bool:
    return isinstance(doc, list) and all(
        isinstance(item, dict) and "op" in item for item in doc
    )


def _is_target_list(doc: Any) -> bool:
    return isinstance(doc, list) and all(
        isinstance(item, dict) and "target" in item and "patch" in item
        for item in doc
    )


class Pipeline:
    """Applies patch and injector stages to a manifest set in order."""

    def __init__(
        self,
        stages: tuple[Stage, ...] | list[Stage],
        runner: CommandRunner,
        workdir: Path,
        strict: bool = False,
    ) -> None:
        """Initialize Pipeline."""
        self._stages = list(stages)
        self._runner = runner
        self._workdir = workdir
        self._strict = strict

    async def apply(self, docs: list[ManifestDocument]) -> list[ManifestDocument]:
        """Return a new manifest set with every stage applied."""
        current = list(docs)
        for index, stage in enumerate(self._stages):
            label = f"{stage.stage_type}[{index}] {stage}"
            with trace_context(label):
                if isinstance(stage, InjectorSpec):
                    current = await self._inject(index, label, stage, current)
                elif isinstance(stage, JsonPatchSpec):
                    current = await self._json_patch(label, stage, current)
                elif isinstance(stage, StrategicMergePatchSpec):
                    current = await self._strategic_merge(index, label, stage, current)
                else:
                    raise PipelineStageError(label, f"unsupported stage {stage!r}")
        validate_unique(current)
        return current

    def _no_match(self, label: str, selector: TargetSelector) -> None:
        if self._strict:
            raise PipelineStageError(
                label, f"patch target '{selector}' matched no documents"
            )
        _LOGGER.warning(
            "Patch %s target '%s' matched no documents", label, selector
        )

    async def _read(self, label: str, path: Path) -> str:
        try:
            async with aiofiles.open(path) as patch_file:
                return await patch_file.read()
        except OSError as err:
            raise PipelineStageError(label, f"unable to read {path}: {err}") from err

    async def _inject(
        self,
        index: int,
        label: str,
        stage: InjectorSpec,
        docs: list[ManifestDocument],
    ) -> list[ManifestDocument]:
        stage_dir = self._workdir / f"{index:02d}-{stage.stage_type}"

        async def inject_one(doc_index: int, doc: ManifestDocument) -> list[ManifestDocument]:
            path = stage_dir / f"{doc_index:04d}.yaml"
            try:
                async with aiofiles.open(path, mode="w") as manifest_file:
                    await manifest_file.write(doc.yaml())
                cmd = Command(stage.command(path), exc=CollaboratorExecutionError)
                out = await self._runner.run(cmd)
                result = parse_documents(out)
            except OSError as err:
                raise PipelineStageError(
                    label, f"injector failed on {path}: {err}", document=str(doc.identity)
                ) from err
            except (CollaboratorExecutionError, InputException) as err:
                raise PipelineStageError(label, str(err), document=str(doc.identity)) from err
            if not result:
                raise PipelineStageError(
                    label, "injector produced no manifests", document=str(doc.identity)
                )
            return result

        try:
            await makedirs(stage_dir, exist_ok=True)
        except OSError as err:
            raise PipelineStageError(label, f"unable to create {stage_dir}: {err}") from err

        # Injectors act on independent files so may run concurrently
        tasks = [
            asyncio.create_task(inject_one(doc_index, doc))
            for doc_index, doc in enumerate(docs)
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # Stop sibling injectors before the workspace is removed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [doc for group in results for doc in group]

    async def _load_json_patch(
        self, label: str, stage: JsonPatchSpec
    ) -> list[tuple[TargetSelector, jsonpatch.JsonPatch]]:
        content = await self._read(label, stage.path)
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as err:
            raise PipelineStageError(label, f"invalid patch file: {err}") from err
        if doc is None:
            return []
        if stage.target is not None and doc and _is_target_list(doc):
            raise PipelineStageError(
                label,
                "a selector cannot be combined with a patch file of {target, patch} "
                "entries, set the target of each entry instead",
            )
        try:
            if _is_target_list(doc):
                return [
                    (TargetSelector.parse_doc(entry["target"]), jsonpatch.JsonPatch(entry["patch"]))
                    for entry in doc
                ]
            if _is_operation_list(doc):
                if stage.target is None:
                    raise PipelineStageError(
                        label,
                        "a JSON patch operation list requires a target selector "
                        "e.g. FILE@kind=Deployment,name=web",
                    )
                return [(stage.target, jsonpatch.JsonPatch(doc))]
        except (
            InputException,
            jsonpatch.JsonPatchException,
            jsonpointer.JsonPointerException,
            TypeError,
        ) as err:
            raise PipelineStageError(label, f"invalid patch file: {err}") from err
        raise PipelineStageError(
            label,
            "invalid patch file: expected a list of operations or a list of "
            "{target, patch} entries",
        )

    async def _json_patch(
        self,
        label: str,
        stage: JsonPatchSpec,
        docs: list[ManifestDocument],
    ) -> list[ManifestDocument]:
        result = list(docs)
        for selector, patch in await self._load_json_patch(label, stage):
            matched = [i for i, doc in enumerate(result) if selector.matches(doc)]
            if not matched:
                self._no_match(label, selector)
                continue
            for i in matched:
                identity = str(result[i].identity)
                try:
                    body = patch.apply(result[i].body, in_place=False)
                    result[i] = ManifestDocument.parse_doc(body)
                except (
                    jsonpatch.JsonPatchException,
                    jsonpointer.JsonPointerException,
                    InputException,
                ) as err:
                    raise PipelineStageError(label, str(err), document=identity) from err
        return result

    async def _load_merge_patches(
        self, label: str, stage: StrategicMergePatchSpec
    ) -> list[dict[str, Any]]:
        content = await self._read(label, stage.path)
        try:
            patches = [doc for doc in yaml.safe_load_all(content) if doc is not None]
        except yaml.YAMLError as err:
            raise PipelineStageError(label, f"invalid patch file: {err}") from err
        for patch in patches:
            if (
                not isinstance(patch, dict)
                or not patch.get("kind")
                or not isinstance(patch.get("metadata"), dict)
                or not patch["metadata"].get("name")
            ):
                raise PipelineStageError(
                    label,
                    f"invalid patch file: each patch requires kind and metadata.name: {patch}",
                )
        return patches

    async def _strategic_merge(
        self,
        index: int,
        label: str,
        stage: StrategicMergePatchSpec,
        docs: list[ManifestDocument],
    ) -> list[ManifestDocument]:
        result = list(docs)
        stage_dir = self._workdir / f"{index:02d}-{stage.stage_type}"
        for patch_index, patch in enumerate(await self._load_merge_patches(label, stage)):
            selector = TargetSelector(
                kind=patch["kind"],
                name=patch["metadata"]["name"],
                namespace=patch["metadata"].get("namespace"),
            )
            matched = [i for i, doc in enumerate(result) if selector.matches(doc)]
            if not matched:
                self._no_match(label, selector)
                continue
            for i in matched:
                target = result[i]
                # The patch must carry the target's full identity for kustomize to match it
                patch_doc = copy.deepcopy(patch)
                patch_doc["apiVersion"] = target.api_version
                if target.namespace:
                    patch_doc["metadata"]["namespace"] = target.namespace
                try:
                    [result[i]] = await kustomize.strategic_merge(
                        [target],
                        patch_doc,
                        stage_dir / f"{patch_index:02d}-{i:04d}",
                        self._runner,
                    )
                except CollaboratorExecutionError as err:
                    raise PipelineStageError(
                        label, str(err), document=str(target.identity)
                    ) from err
        return result
