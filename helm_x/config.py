"""Configuration objects for helm-x.

Options are built once per invocation from the command line flags and are
passed explicitly to each component.
"""

from dataclasses import dataclass, field
import os
import shlex
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .dependency import DependencySpec
    from .pipeline import Stage

DEFAULT_RELEASE_NAME = "release-name"
DEFAULT_TIMEOUT = 300

STORAGE_DRIVER_SECRET = "secret"
STORAGE_DRIVER_CONFIGMAP = "configmap"
STORAGE_DRIVERS = [STORAGE_DRIVER_SECRET, STORAGE_DRIVER_CONFIGMAP]


def default_storage_driver() -> str:
    """Return the release storage driver selected by the environment."""
    driver = os.environ.get("HELM_DRIVER", STORAGE_DRIVER_SECRET).lower()
    if driver in ("secrets", STORAGE_DRIVER_SECRET):
        return STORAGE_DRIVER_SECRET
    if driver in ("configmaps", STORAGE_DRIVER_CONFIGMAP):
        return STORAGE_DRIVER_CONFIGMAP
    return driver


def default_external_diff() -> tuple[str, ...]:
    """Return the external diff program selected by the environment."""
    return tuple(shlex.split(os.environ.get("DIFF", "")))


@dataclass(frozen=True)
class ValueLayers:
    """Chart values, applied as files first and then key=value overrides."""

    files: tuple[str, ...] = ()
    """Values files or URLs, in the order given."""

    set_values: tuple[str, ...] = ()
    """`--set` overrides, applied last."""

    @property
    def args(self) -> list[str]:
        """Helm command line flags for the value layers."""
        args: list[str] = []
        for values_file in self.files:
            args.extend(["--values", values_file])
        for value in self.set_values:
            args.extend(["--set", value])
        return args


@dataclass(frozen=True)
class ChartifyOptions:
    """Options for turning a source into a temporary chart."""

    values: ValueLayers = field(default_factory=ValueLayers)
    """Values used to render local charts and to install the result."""

    namespace: str | None = None
    """Namespace of the release."""

    release_name: str = DEFAULT_RELEASE_NAME
    """Release name used when rendering a local chart."""

    chart_version: str | None = None
    """Version of a remote chart, or the version of a generated chart."""

    chart_repo: str | None = None
    """Repository URL to fetch a remote chart from."""

    stages: tuple["Stage", ...] = ()
    """Patches and injectors in the order they were declared."""

    dependencies: tuple["DependencySpec", ...] = ()
    """Ad-hoc dependencies added to the chart."""

    strict_patches: bool = False
    """Fail when a patch matches no documents."""

    debug: bool = False
    """Keep the temporary chart directory after the operation."""

    kube_context: str | None = None
    """The kubeconfig context to use."""


@dataclass(frozen=True)
class UpgradeOptions:
    """Options for installing or upgrading a release."""

    chartify: ChartifyOptions
    install: bool = True
    dry_run: bool = False
    timeout: int = DEFAULT_TIMEOUT
    adopt: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateOptions:
    """Options for printing the rendered manifests."""

    chartify: ChartifyOptions


@dataclass(frozen=True)
class DiffOptions:
    """Options for comparing a generated chart against the installed release."""

    chartify: ChartifyOptions
    storage_driver: str = STORAGE_DRIVER_SECRET
    allow_unreleased: bool = False
    output: str = "diff"
    unified: int = 3
    limit_bytes: int = 0
    strip_attrs: tuple[str, ...] = ()
    external_diff: tuple[str, ...] = ()


@dataclass(frozen=True)
class AdoptOptions:
    """Options for adopting existing resources into a release."""

    release: str
    namespace: str | None = None
    resources: tuple[str, ...] = ()
    kube_context: str | None = None
