"""Library for formatting release state for the console."""

from collections.abc import Generator, Iterable
import sys
from typing import Any, TextIO

import yaml

from helm_x.manifest import ReleaseRecord

PADDING = 4


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the header and rows with every column padded to its widest value."""
    table = [headers, *rows]
    widths = [max(len(row[col]) for row in table) + PADDING for col in range(len(headers))]
    for row in table:
        yield "".join(value.ljust(width) for value, width in zip(row, widths))


class PrintFormatter:
    """Prints a list of objects as a table with one column per key."""

    def __init__(self, keys: list[str]) -> None:
        """Initialize PrintFormatter."""
        self._keys = keys

    def format(self, data: Iterable[dict[str, Any]]) -> Generator[str, None, None]:
        """Format the objects, yielding nothing when there are none."""
        rows = [[str(item.get(key, "")) for key in self._keys] for item in data]
        if not rows:
            return
        yield from format_columns([key.upper() for key in self._keys], rows)

    def print(self, data: Iterable[dict[str, Any]], file: TextIO = sys.stdout) -> None:
        """Print the objects."""
        for line in self.format(data):
            print(line, file=file)


def format_release(record: ReleaseRecord) -> Generator[str, None, None]:
    """Format a release record as YAML followed by its raw manifest."""
    data = record.to_dict()
    manifest = data.pop("manifest", "")
    yield yaml.dump(data, sort_keys=False, explicit_start=True).rstrip("\n")
    yield "manifest:"
    yield manifest.rstrip("\n")
