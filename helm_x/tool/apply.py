"""helm-x apply and upgrade actions."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import logging
from typing import cast

from helm_x import operations
from helm_x.command import CommandRunner
from helm_x.config import DEFAULT_TIMEOUT, UpgradeOptions

from . import flags

_LOGGER = logging.getLogger(__name__)

DESCRIPTION = """Under the hood, this generates Kubernetes manifests from a
    directory containing manifests, a kustomization or a local helm chart, or
    from a remote helm chart, then injects sidecars and applies patches, and
    finally installs the result as a Helm release by running
    "helm upgrade --install". A directory of manifests is turned into a chart
    whose version and appVersion are set to the value of the --version flag."""


class ApplyAction:
    """helm-x apply action, installs the release if missing by default."""

    command_name = "apply"
    install_default = True

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                cls.command_name,
                help="Install or upgrade the helm release from the directory or the chart specified",
                description=DESCRIPTION,
            ),
        )
        args.add_argument("release", metavar="RELEASE", help="Name of the release")
        flags.add_chartify_flags(args)
        args.add_argument(
            "--timeout",
            type=int,
            default=DEFAULT_TIMEOUT,
            help="Time in seconds to wait for any individual Kubernetes operation",
        )
        args.add_argument(
            "--dry-run",
            action="store_true",
            help="Simulate an upgrade",
        )
        args.add_argument(
            "--install",
            action=BooleanOptionalAction,
            default=cls.install_default,
            help="Install the release if missing",
        )
        args.add_argument(
            "--adopt",
            type=flags.CSV,
            action="extend",
            default=[],
            metavar="KIND/NAME",
            help="Adopt existing k8s resources before apply",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        release: str,
        chart: str,
        timeout: int,
        dry_run: bool,
        install: bool,
        adopt: list[str],
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        options = UpgradeOptions(
            chartify=flags.build_chartify_options(**kwargs),
            install=install,
            dry_run=dry_run,
            timeout=timeout,
            adopt=tuple(resource for resource in adopt if resource),
        )
        transcript = await operations.upgrade(chart, release, options, CommandRunner())
        with open(output_file, "w") as file:
            print(transcript, end="", file=file)


class UpgradeAction(ApplyAction):
    """helm-x upgrade action, only installs the release when --install is set."""

    command_name = "upgrade"
    install_default = False
