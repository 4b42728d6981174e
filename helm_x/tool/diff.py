"""helm-x diff action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from helm_x import operations
from helm_x.command import CommandRunner
from helm_x.config import DiffOptions, default_external_diff
from helm_x.resource_diff import OUTPUT_DIFF, OUTPUTS, format_diff

from . import flags

_LOGGER = logging.getLogger(__name__)


def add_diff_flags(args: ArgumentParser) -> None:
    """Add diff output flags."""
    args.add_argument(
        "--output",
        "-o",
        choices=OUTPUTS,
        default=OUTPUT_DIFF,
        help="Output format of the command",
    )
    args.add_argument(
        "--unified",
        "-u",
        type=int,
        default=3,
        help="output NUM (default 3) lines of unified context",
    )
    args.add_argument(
        "--strip-attrs",
        help="Labels or annotations to strip from the diff",
        type=flags.CSV,
    )
    args.add_argument(
        "--limit-bytes",
        help="Maximum bytes for each diff output (0=unlimited)",
        type=int,
        default=0,
    )


class DiffAction:
    """helm-x diff action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "diff",
                help="Show a diff explaining what `helm-x apply` would change",
                description="""Generates the same temporary chart as apply and
                    compares the rendered manifests with the manifests of the
                    installed release. The external program in $DIFF is used
                    for the default output format when set.""",
            ),
        )
        args.add_argument("release", metavar="RELEASE", help="Name of the release")
        flags.add_chartify_flags(args)
        flags.add_storage_flags(args)
        add_diff_flags(args)
        args.add_argument(
            "--allow-unreleased",
            action="store_true",
            help="Compare against no manifests when the release is not installed",
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
        storage_driver: str,
        output: str,
        unified: int,
        strip_attrs: list[str] | None,
        limit_bytes: int,
        allow_unreleased: bool,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        options = DiffOptions(
            chartify=flags.build_chartify_options(**kwargs),
            storage_driver=storage_driver,
            allow_unreleased=allow_unreleased,
            output=output,
            unified=unified,
            limit_bytes=limit_bytes,
            strip_attrs=tuple(strip_attrs or []),
            external_diff=default_external_diff(),
        )
        diffs = await operations.diff(chart, release, options, CommandRunner())
        if not diffs:
            _LOGGER.info("No changes for release %s", release)

        with open(output_file, "w") as file:
            async for line in format_diff(diffs, options):
                print(line, file=file)
