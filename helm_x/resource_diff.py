"""Module for computing differences between two manifest sets.

This is used by the diff driver to compare the manifests of a generated
chart with the manifests stored in the installed release. Documents are
joined by identity and reported as added, removed or changed, with the
changed field paths and a unified diff of the YAML.
"""

from collections.abc import Callable, Generator, Iterable
import copy
from dataclasses import dataclass, field
import difflib
import json
import logging
import pathlib
import tempfile
from typing import Any, AsyncGenerator, TypeVar

import yaml

from . import command
from .config import DiffOptions
from .manifest import ManifestDocument, ResourceIdentity, strip_resource_attributes

__all__ = [
    "DocumentDiff",
    "diff_documents",
    "perform_object_diff",
    "perform_yaml_diff",
    "perform_json_diff",
    "perform_external_diff",
    "format_diff",
]

_LOGGER = logging.getLogger(__name__)

_TRUNCATE = "[Diff truncated by helm-x]"

ADDED = "added"
REMOVED = "removed"
CHANGED = "changed"

OUTPUT_DIFF = "diff"
OUTPUT_YAML = "yaml"
OUTPUT_JSON = "json"
OUTPUTS = [OUTPUT_DIFF, OUTPUT_YAML, OUTPUT_JSON]

T = TypeVar("T")


def _unique_keys(k1: dict[T, Any], k2: dict[T, Any]) -> Iterable[T]:
    """Return an ordered set."""
    return {
        **{k: True for k in k1.keys()},
        **{k: True for k in k2.keys()},
    }.keys()


@dataclass
class DocumentDiff:
    """The difference for one document identity."""

    identity: ResourceIdentity
    change: str
    """One of added, removed or changed."""

    fields: list[str] = field(default_factory=list)
    """Paths of the fields that differ, e.g. `spec.replicas`."""

    a: list[str] = field(default_factory=list)
    """Lines of the original document YAML."""

    b: list[str] = field(default_factory=list)
    """Lines of the new document YAML."""


def changed_fields(a: Any, b: Any, prefix: str = "") -> list[str]:
    """Return the dotted paths of the fields that differ between two values."""
    if isinstance(a, dict) and isinstance(b, dict):
        results: list[str] = []
        for key in _unique_keys(a, b):
            path = f"{prefix}.{key}" if prefix else str(key)
            if key not in a or key not in b:
                results.append(path)
                continue
            results.extend(changed_fields(a[key], b[key], path))
        return results
    if isinstance(a, list) and isinstance(b, list) and len(a) == len(b):
        results = []
        for index, (a_item, b_item) in enumerate(zip(a, b)):
            results.extend(changed_fields(a_item, b_item, f"{prefix}[{index}]"))
        return results
    if a != b:
        return [prefix]
    return []


def _index(
    docs: list[ManifestDocument], strip_attributes: list[str]
) -> dict[ResourceIdentity, dict[str, Any]]:
    result = {}
    for doc in docs:
        body = copy.deepcopy(doc.body)
        strip_resource_attributes(body, strip_attributes)
        result[doc.identity] = body
    return result


def _lines(body: dict[str, Any] | None) -> list[str]:
    if body is None:
        return []
    return ["---", *yaml.dump(body, sort_keys=False).split("\n")]


def diff_documents(
    a: list[ManifestDocument],
    b: list[ManifestDocument],
    strip_attributes: list[str] | None = None,
) -> list[DocumentDiff]:
    """Compare two manifest sets, returning only the documents that differ."""
    a_docs = _index(a, strip_attributes or [])
    b_docs = _index(b, strip_attributes or [])
    results: list[DocumentDiff] = []
    for identity in _unique_keys(a_docs, b_docs):
        a_body = a_docs.get(identity)
        b_body = b_docs.get(identity)
        if a_body == b_body:
            continue
        if a_body is None:
            change = ADDED
            fields: list[str] = []
        elif b_body is None:
            change = REMOVED
            fields = []
        else:
            change = CHANGED
            fields = changed_fields(a_body, b_body)
        _LOGGER.debug("Document %s %s", identity, change)
        results.append(
            DocumentDiff(
                identity=identity,
                change=change,
                fields=fields,
                a=_lines(a_body),
                b=_lines(b_body),
            )
        )
    return results


def _unified(diff: DocumentDiff, n: int) -> Iterable[str]:
    label = f"{diff.identity.compact_label} ({diff.change})"
    return difflib.unified_diff(
        a=diff.a, b=diff.b, fromfile=label, tofile=label, n=n, lineterm=""
    )


def perform_object_diff(
    diffs: list[DocumentDiff], n: int, limit_bytes: int
) -> Generator[str, None, None]:
    """Generate unified diffs for each changed document."""
    for diff in diffs:
        size = 0
        for line in _unified(diff, n):
            size += len(line)
            if limit_bytes and size > limit_bytes:
                yield _TRUNCATE
                break
            yield line


async def perform_external_diff(
    cmd: list[str],
    diffs: list[DocumentDiff],
    limit_bytes: int,
) -> AsyncGenerator[str, None]:
    """Generate diffs for each changed document with an external program."""
    runner = command.CommandRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        for diff in diffs:
            a_file = pathlib.Path(tmpdir) / "a.yaml"
            a_file.write_text("\n".join(diff.a))
            b_file = pathlib.Path(tmpdir) / "b.yaml"
            b_file.write_text("\n".join(diff.b))
            result = await runner.run(
                command.Command(cmd + [str(a_file), str(b_file)], retcodes=[0, 1])
            )
            if result:
                if limit_bytes and len(result) > limit_bytes:
                    result = result[:limit_bytes] + "\n" + _TRUNCATE
                yield result


def perform_yaml_diff(
    diffs: list[DocumentDiff],
    n: int,
    limit_bytes: int,
) -> Generator[str, None, None]:
    """Generate a YAML document describing each changed document."""

    def diff_func(data: list[dict[str, Any]]) -> str:
        return yaml.dump(data, sort_keys=False, explicit_start=True, default_style=None)

    for result in _perform_function_diff(diffs, n, limit_bytes, diff_func):
        yield result


def perform_json_diff(
    diffs: list[DocumentDiff],
    n: int,
    limit_bytes: int,
) -> Generator[str, None, None]:
    """Generate a JSON document describing each changed document."""

    def diff_func(data: list[dict[str, Any]]) -> str:
        return json.dumps(data, sort_keys=False, indent=4)

    for result in _perform_function_diff(diffs, n, limit_bytes, diff_func):
        yield result


def _perform_function_diff(
    diffs: list[DocumentDiff],
    n: int,
    limit_bytes: int,
    diff_func: Callable[[list[dict[str, Any]]], str],
) -> Generator[str, None, None]:
    results: list[dict[str, Any]] = []
    for diff in diffs:
        diff_content = "\n".join(_unified(diff, n))
        if limit_bytes and len(diff_content) > limit_bytes:
            diff_content = diff_content[:limit_bytes] + "\n" + _TRUNCATE
        obj: dict[str, Any] = {
            "kind": diff.identity.kind,
            "api_version": diff.identity.api_version,
        }
        if diff.identity.namespace:
            obj["namespace"] = diff.identity.namespace
        obj["name"] = diff.identity.name
        obj["change"] = diff.change
        if diff.fields:
            obj["fields"] = diff.fields
        obj["diff"] = diff_content
        results.append(obj)
    if results:
        yield diff_func(results)


async def format_diff(
    diffs: list[DocumentDiff], options: DiffOptions
) -> AsyncGenerator[str, None]:
    """Render the diffs in the output format selected by the options."""
    n, limit_bytes = options.unified, options.limit_bytes
    if options.output == OUTPUT_YAML:
        for line in perform_yaml_diff(diffs, n, limit_bytes):
            yield line
    elif options.output == OUTPUT_JSON:
        for line in perform_json_diff(diffs, n, limit_bytes):
            yield line
    elif options.external_diff:
        async for line in perform_external_diff(
            list(options.external_diff), diffs, limit_bytes
        ):
            yield line
    else:
        for line in perform_object_diff(diffs, n, limit_bytes):
            yield line
