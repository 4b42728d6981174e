"""helm-x template action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from dataclasses import replace
from typing import cast

from helm_x import operations
from helm_x.command import CommandRunner
from helm_x.config import DEFAULT_RELEASE_NAME, TemplateOptions

from . import flags

_LOGGER = logging.getLogger(__name__)


class TemplateAction:
    """helm-x template action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "template",
                help="Print Kubernetes manifests that would be generated by `helm-x apply`",
                description="""Generates the same temporary chart as apply, then
                    renders it with "helm template" and prints the resulting
                    manifests. This never changes the cluster.""",
            ),
        )
        flags.add_chartify_flags(args)
        args.add_argument(
            "--name",
            default=DEFAULT_RELEASE_NAME,
            help="Release name used to render the chart",
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
        chart: str,
        name: str,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        chartify_options = replace(
            flags.build_chartify_options(**kwargs), release_name=name
        )
        content = await operations.template(
            chart, TemplateOptions(chartify=chartify_options), CommandRunner()
        )
        with open(output_file, "w") as file:
            print(content, end="", file=file)
