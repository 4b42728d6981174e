"""Library for reading and updating live cluster objects with kubectl."""

import json
import logging
from typing import Any

from . import command
from .exceptions import KubectlException

__all__ = [
    "Kubectl",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"

# Namespace used by kubectl when the context does not set one
DEFAULT_NAMESPACE = "default"


class Kubectl:
    """Issues kubectl commands against the current cluster."""

    def __init__(
        self, runner: command.CommandRunner, kube_context: str | None = None
    ) -> None:
        """Initialize Kubectl."""
        self._runner = runner
        self._kube_context = kube_context

    def _args(self, *args: str, namespace: str | None = None) -> list[str]:
        result = [KUBECTL_BIN, *args]
        if namespace:
            result.extend(["--namespace", namespace])
        if self._kube_context:
            result.extend(["--context", self._kube_context])
        return result

    async def _run_json(self, args: list[str]) -> dict[str, Any]:
        out = await self._runner.run(command.Command(args, exc=KubectlException))
        try:
            return json.loads(out)
        except json.JSONDecodeError as err:
            raise KubectlException(
                f"Unable to parse output of '{' '.join(args)}': {err}"
            ) from err

    async def current_namespace(self) -> str:
        """Return the namespace of the current context."""
        args = self._args(
            "config", "view", "--minify", "--output", "jsonpath={..namespace}"
        )
        out = await self._runner.run(command.Command(args, exc=KubectlException))
        return out.strip() or DEFAULT_NAMESPACE

    async def get_objects(
        self, kind: str, namespace: str | None, selector: str
    ) -> list[dict[str, Any]]:
        """Return the objects of the kind that match the label selector."""
        args = self._args(
            "get", kind, "--selector", selector, "--output", "json", namespace=namespace
        )
        result = await self._run_json(args)
        return result.get("items") or []

    async def get_object(
        self, kind: str, name: str, namespace: str | None
    ) -> dict[str, Any]:
        """Return a single object by kind and name."""
        args = self._args("get", kind, name, "--output", "json", namespace=namespace)
        return await self._run_json(args)

    async def annotate(
        self,
        kind: str,
        name: str,
        namespace: str | None,
        annotations: dict[str, str],
    ) -> None:
        """Set annotations on a live object, replacing existing values."""
        pairs = [f"{key}={value}" for key, value in annotations.items()]
        args = self._args("annotate", kind, name, *pairs, "--overwrite", namespace=namespace)
        await self._runner.run(command.Command(args, exc=KubectlException))

    async def label(
        self,
        kind: str,
        name: str,
        namespace: str | None,
        labels: dict[str, str],
    ) -> None:
        """Set labels on a live object, replacing existing values."""
        pairs = [f"{key}={value}" for key, value in labels.items()]
        args = self._args("label", kind, name, *pairs, "--overwrite", namespace=namespace)
        await self._runner.run(command.Command(args, exc=KubectlException))
