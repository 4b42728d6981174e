"""Adopt existing cluster resources into a helm release.

Helm only manages objects that carry its ownership metadata. Adoption sets
that metadata on live objects so that the next upgrade of the release takes
them over instead of failing because they already exist.

Resources are given as `kind/name`, e.g. `configmap/foo.v1 secret/bar`, and
are adopted in order. The first failure stops the run; resources adopted
before it keep their metadata and the error reports which remain.
"""

from dataclasses import dataclass, field
import logging

from .command import CommandRunner
from .config import AdoptOptions
from .context import trace_context
from .exceptions import (
    AdoptionPartialFailureError,
    CollaboratorExecutionError,
    InputException,
)
from .kubectl import Kubectl

__all__ = [
    "AdoptionResult",
    "adopt",
    "parse_resource",
]

_LOGGER = logging.getLogger(__name__)

RELEASE_NAME_ANNOTATION = "meta.helm.sh/release-name"
RELEASE_NAMESPACE_ANNOTATION = "meta.helm.sh/release-namespace"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_HELM = "Helm"


@dataclass
class AdoptionResult:
    """Resources adopted into the release."""

    release: str
    namespace: str | None
    adopted: list[str] = field(default_factory=list)


def parse_resource(resource: str) -> tuple[str, str]:
    """Split a `kind/name` resource reference."""
    kind, sep, name = resource.partition("/")
    if not sep or not kind or not name or "/" in name:
        raise InputException(
            f"Invalid resource '{resource}', expected kind/name e.g. configmap/foo"
        )
    return kind, name


async def _check_owner(
    kubectl: Kubectl, kind: str, name: str, release: str, namespace: str
) -> None:
    obj = await kubectl.get_object(kind, name, namespace)
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    owner = annotations.get(RELEASE_NAME_ANNOTATION)
    if owner and owner != release:
        raise InputException(f"already owned by release '{owner}'")
    owner_namespace = annotations.get(RELEASE_NAMESPACE_ANNOTATION)
    if owner and owner_namespace and owner_namespace != namespace:
        raise InputException(
            f"already owned by release '{owner}' in namespace '{owner_namespace}'"
        )


async def adopt(options: AdoptOptions, runner: CommandRunner) -> AdoptionResult:
    """Attach release ownership metadata to each resource in order.

    Without an explicit namespace the release namespace is the one of the
    current kube context, since helm refuses objects without it.
    """
    references = [parse_resource(resource) for resource in options.resources]
    kubectl = Kubectl(runner, kube_context=options.kube_context)
    namespace = options.namespace or await kubectl.current_namespace()
    annotations = {
        RELEASE_NAME_ANNOTATION: options.release,
        RELEASE_NAMESPACE_ANNOTATION: namespace,
    }
    result = AdoptionResult(release=options.release, namespace=namespace)
    with trace_context(f"Adopt {options.release}"):
        for index, (kind, name) in enumerate(references):
            resource = options.resources[index]
            try:
                await _check_owner(kubectl, kind, name, options.release, namespace)
                await kubectl.annotate(kind, name, namespace, annotations)
                await kubectl.label(
                    kind, name, namespace, {MANAGED_BY_LABEL: MANAGED_BY_HELM}
                )
            except (CollaboratorExecutionError, InputException) as err:
                raise AdoptionPartialFailureError(
                    adopted=list(result.adopted),
                    failed=resource,
                    remaining=list(options.resources[index + 1 :]),
                    cause=str(err),
                ) from err
            _LOGGER.info("Adopted %s into release %s", resource, options.release)
            result.adopted.append(resource)
    return result
