"""helm-x adopt action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from helm_x import adopt
from helm_x.command import CommandRunner
from helm_x.config import AdoptOptions

from . import flags

_LOGGER = logging.getLogger(__name__)


class AdoptAction:
    """helm-x adopt action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "adopt",
                help="Adopt the existing kubernetes resources into the release",
                description="""Marks existing resources as owned by the release so
                    that the next upgrade manages them. Resources are adopted in
                    the order given and adoption stops at the first failure.""",
            ),
        )
        args.add_argument("release", metavar="RELEASE", help="Name of the release")
        args.add_argument(
            "resources",
            metavar="KIND/NAME",
            nargs="+",
            help="Resources to adopt e.g. configmap/foo",
        )
        args.add_argument(
            "--namespace",
            "-n",
            help="Namespace of the release and the resources",
        )
        flags.add_client_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        release: str,
        resources: list[str],
        namespace: str | None,
        kube_context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        result = await adopt.adopt(
            AdoptOptions(
                release=release,
                namespace=namespace,
                resources=tuple(resources),
                kube_context=kube_context,
            ),
            CommandRunner(),
        )
        for resource in result.adopted:
            print(f"adopted {resource} into release {release}")
