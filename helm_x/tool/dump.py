"""helm-x dump and list actions for inspecting release state."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from helm_x import operations
from helm_x.command import CommandRunner

from . import flags
from .format import PrintFormatter, format_release

_LOGGER = logging.getLogger(__name__)


def _add_namespace_flag(args: ArgumentParser) -> None:
    args.add_argument(
        "--namespace",
        "-n",
        help="Namespace of the release storage, defaults to the kubeconfig context namespace",
    )


class DumpAction:
    """helm-x dump action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "dump",
                help="Dump the latest release record of the release",
                description="""Reads the release record from the release storage
                    and prints its metadata, values and manifests.""",
            ),
        )
        args.add_argument("release", metavar="RELEASE", help="Name of the release")
        _add_namespace_flag(args)
        flags.add_storage_flags(args)
        flags.add_client_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        release: str,
        namespace: str | None,
        storage_driver: str,
        kube_context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        record = await operations.dump(
            release,
            namespace,
            CommandRunner(),
            driver=storage_driver,
            kube_context=kube_context,
        )
        for line in format_release(record):
            print(line)


class ListAction:
    """helm-x list action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "list",
                help="List the releases in the namespace",
            ),
        )
        _add_namespace_flag(args)
        flags.add_storage_flags(args)
        flags.add_client_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        namespace: str | None,
        storage_driver: str,
        kube_context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        records = await operations.list_releases(
            namespace,
            CommandRunner(),
            driver=storage_driver,
            kube_context=kube_context,
        )
        results = [
            {
                "name": record.name,
                "namespace": record.namespace,
                "revision": record.revision,
                "status": record.status or "",
                "chart": f"{record.chart_name}-{record.chart_version}",
            }
            for record in records
        ]
        if not results:
            print("no releases found")
            return
        PrintFormatter(["name", "namespace", "revision", "status", "chart"]).print(
            results
        )
