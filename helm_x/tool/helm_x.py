"""Command line tool for turning manifests, kustomizations and charts into helm releases."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from helm_x.exceptions import HelmXException
from . import adopt, apply, diff, dump, template

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="helm-x",
        description="Turn Kubernetes manifests, Kustomization, Helm Chart into "
        "Helm release. Sidecar injection supported.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    apply.ApplyAction.register(subparsers)
    apply.UpgradeAction.register(subparsers)
    diff.DiffAction.register(subparsers)
    template.TemplateAction.register(subparsers)
    dump.DumpAction.register(subparsers)
    dump.ListAction.register(subparsers)
    adopt.AdoptAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """helm-x command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)
    yaml.add_representer(str, str_presenter, Dumper=yaml.SafeDumper)

    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except HelmXException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("helm-x error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
