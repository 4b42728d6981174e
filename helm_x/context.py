"""Utilities for tracing stages and owning the temporary chart workspace."""

from collections.abc import Generator
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import shutil
import tempfile
from time import perf_counter


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "trace_context",
    "chart_workspace",
    "Workspace",
]

WORKSPACE_PREFIX = "helm-x-"

trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry and exit of a named stage, nested under any enclosing stage."""
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))


def remove_workspace(path: Path) -> None:
    """Remove a workspace directory, logging instead of raising on failure."""
    try:
        shutil.rmtree(path)
    except OSError as err:
        _LOGGER.warning("Failed to remove temporary directory %s: %s", path, err)


@dataclass(frozen=True)
class Workspace:
    """Layout of the temporary directory owned by one operation."""

    root: Path

    @property
    def chart_dir(self) -> Path:
        """The directory the chart is materialized into."""
        return self.root / "chart"

    @property
    def fetch_dir(self) -> Path:
        """The directory remote charts are downloaded into."""
        return self.root / "fetch"

    @property
    def pipeline_dir(self) -> Path:
        """Scratch space for patch and injector stages."""
        return self.root / "pipeline"


@contextmanager
def chart_workspace(retain: bool = False) -> Generator[Workspace, None, None]:
    """Acquire a fresh temporary directory owned by a single operation.

    The directory is removed when the block exits for any reason, including
    errors and cancellation, unless `retain` is set for debugging.
    """
    path = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX))
    _LOGGER.debug("Created workspace %s", path)
    try:
        yield Workspace(path)
    finally:
        if retain:
            _LOGGER.info(
                "helm chart has been written to %s for you to see. "
                "please remove it afterwards",
                path,
            )
        else:
            remove_workspace(path)
