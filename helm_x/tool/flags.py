"""Library for flags shared between helm-x commands."""

from argparse import (
    Action,
    ArgumentError,
    ArgumentParser,
    ArgumentTypeError,
    Namespace,
)
import functools
import logging
from typing import Any

from helm_x.config import (
    ChartifyOptions,
    STORAGE_DRIVERS,
    ValueLayers,
    default_storage_driver,
)
from helm_x.dependency import DependencySpec
from helm_x.exceptions import InputException
from helm_x.pipeline import InjectorSpec, JsonPatchSpec, StrategicMergePatchSpec

_LOGGER = logging.getLogger(__name__)

# Type for command line flags of comma separated list
CSV = functools.partial(str.split, sep=",")


class StageAppendAction(Action):
    """Append a pipeline stage, keeping the order stages appear on the command line.

    The `const` of the argument is the function that parses the flag value.
    """

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        try:
            stage = self.const(values)
        except InputException as err:
            raise ArgumentError(self, str(err))
        result = list(getattr(namespace, self.dest) or [])
        result.append(stage)
        setattr(namespace, self.dest, result)


def _dependency(value: str) -> DependencySpec:
    try:
        return DependencySpec.from_str(value)
    except InputException as err:
        raise ArgumentTypeError(str(err))


def add_client_flags(args: ArgumentParser) -> None:
    """Add flags for talking to the cluster."""
    args.add_argument(
        "--kube-context",
        "--kubecontext",
        dest="kube_context",
        help="The kubeconfig context to use",
    )


def add_storage_flags(args: ArgumentParser) -> None:
    """Add flags for reading the release storage."""
    args.add_argument(
        "--storage-driver",
        choices=STORAGE_DRIVERS,
        default=default_storage_driver(),
        help="Kind of object the release records are stored in (default from $HELM_DRIVER)",
    )


def add_chartify_flags(args: ArgumentParser) -> None:
    """Add flags for turning the input into a chart."""
    args.add_argument(
        "chart",
        metavar="DIR_OR_CHART",
        help="Directory of manifests, kustomization, local chart or REPO/CHART reference",
    )
    args.add_argument(
        "--inject",
        dest="stages",
        action=StageAppendAction,
        const=InjectorSpec.from_str,
        metavar="'CMD ARG1 ARG2'",
        help='Injector to use (must be pre-installed) e.g. "istioctl kube-inject -f FILE". '
        '"FILE" is replaced with the Kubernetes manifest file being injected',
    )
    args.add_argument(
        "--injector",
        dest="stages",
        action=StageAppendAction,
        const=InjectorSpec.from_legacy_str,
        metavar="'CMD SUBCMD,FLAG1=VAL1'",
        help="DEPRECATED: Use --inject instead. Injector with flags given without the "
        "leading --, e.g. 'istioctl kube-inject,f=FILE'",
    )
    args.add_argument(
        "--json-patch",
        dest="stages",
        action=StageAppendAction,
        const=JsonPatchSpec.from_str,
        metavar="FILE[@SELECTOR]",
        help="JSON Patch file applied to the rendered manifests, with an optional "
        "target selector like @kind=Deployment,name=web",
    )
    args.add_argument(
        "--strategic-merge-patch",
        dest="stages",
        action=StageAppendAction,
        const=StrategicMergePatchSpec.from_str,
        metavar="FILE",
        help="Strategic Merge Patch file applied to the rendered manifests",
    )
    args.add_argument(
        "--strict-patches",
        action="store_true",
        help="Fail when a patch matches no manifests",
    )
    args.add_argument(
        "--adhoc-dependency",
        dest="dependencies",
        action="append",
        type=_dependency,
        default=[],
        metavar="ALIAS=REPO/CHART:VERSION",
        help="Dependency added to the temporary chart e.g. mydb=stable/mysql:1.2.3",
    )
    args.add_argument(
        "--values",
        "-f",
        dest="values_files",
        action="append",
        default=[],
        help="Values in a YAML file or a URL (can specify multiple)",
    )
    args.add_argument(
        "--set",
        dest="set_values",
        action="append",
        default=[],
        help="Set values on the command line (can specify multiple)",
    )
    args.add_argument(
        "--namespace",
        "-n",
        help="Namespace of the release, defaults to the kubeconfig context namespace",
    )
    args.add_argument(
        "--version",
        dest="chart_version",
        help="Version of the remote chart, or of the chart generated from manifests",
    )
    args.add_argument(
        "--repo",
        dest="chart_repo",
        help="Chart repository URL to fetch a remote chart from",
    )
    args.add_argument(
        "--debug",
        action="store_true",
        help="Keep the temporary chart directory for inspection",
    )
    add_client_flags(args)
    args.set_defaults(stages=[])


def build_chartify_options(
    values_files: list[str] | None = None,
    set_values: list[str] | None = None,
    namespace: str | None = None,
    chart_version: str | None = None,
    chart_repo: str | None = None,
    stages: list[Any] | None = None,
    dependencies: list[DependencySpec] | None = None,
    strict_patches: bool = False,
    debug: bool = False,
    kube_context: str | None = None,
    **kwargs: Any,  # pylint: disable=unused-argument
) -> ChartifyOptions:
    """Build the chartify options from the command line flags."""
    return ChartifyOptions(
        values=ValueLayers(
            files=tuple(values_files or []), set_values=tuple(set_values or [])
        ),
        namespace=namespace,
        chart_version=chart_version,
        chart_repo=chart_repo,
        stages=tuple(stages or []),
        dependencies=tuple(dependencies or []),
        strict_patches=strict_patches,
        debug=debug,
        kube_context=kube_context,
    )
