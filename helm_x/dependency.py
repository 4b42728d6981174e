"""Merge ad-hoc dependencies into chart metadata.

Dependencies are declared on the command line as `ALIAS=REPO/CHART:VERSION`,
e.g. `mydb=stable/mysql:1.2.3`. The alias and version are optional. The
charts themselves are not fetched here; helm resolves them when the chart is
rendered or installed.
"""

from dataclasses import dataclass, replace
import logging
import re

from .exceptions import DependencyConflictError, InputException
from .manifest import ChartDependency, ChartMetadata

__all__ = [
    "DependencySpec",
    "merge_dependencies",
]

_LOGGER = logging.getLogger(__name__)

_SPEC_RE = re.compile(
    r"^(?:(?P<alias>[\w.-]+)=)?(?P<repo>.+)/(?P<chart>[\w.-]+?)(?::(?P<version>[^:/]+))?$"
)


@dataclass(frozen=True)
class DependencySpec:
    """An ad-hoc chart dependency."""

    alias: str
    repository: str
    chart_name: str
    version: str | None = None

    @classmethod
    def from_str(cls, value: str) -> "DependencySpec":
        """Parse `ALIAS=REPO/CHART:VERSION`."""
        if not (match := _SPEC_RE.match(value.strip())):
            raise InputException(
                f"Invalid dependency '{value}', expected ALIAS=REPO/CHART:VERSION "
                "e.g. mydb=stable/mysql:1.2.3"
            )
        chart_name = match.group("chart")
        return cls(
            alias=match.group("alias") or chart_name,
            repository=match.group("repo"),
            chart_name=chart_name,
            version=match.group("version"),
        )

    @property
    def repository_ref(self) -> str:
        """Repository as written in Chart.yaml, a URL or an `@name` alias."""
        if "://" in self.repository or self.repository.startswith("@"):
            return self.repository
        return f"@{self.repository}"

    def chart_dependency(self) -> ChartDependency:
        return ChartDependency(
            name=self.chart_name,
            repository=self.repository_ref,
            version=self.version,
            alias=self.alias,
        )


def merge_dependencies(
    metadata: ChartMetadata, specs: tuple[DependencySpec, ...] | list[DependencySpec]
) -> ChartMetadata:
    """Return the metadata with the dependencies appended.

    Raises `DependencyConflictError` when an alias is used twice, either
    among the specs or by a dependency the chart already declares.
    """
    if not specs:
        return metadata
    seen = {dep.effective_alias for dep in metadata.dependencies}
    dependencies = list(metadata.dependencies)
    for spec in specs:
        if spec.alias in seen:
            raise DependencyConflictError(spec.alias)
        seen.add(spec.alias)
        _LOGGER.debug("Adding dependency %s to chart %s", spec, metadata.name)
        dependencies.append(spec.chart_dependency())
    return replace(metadata, dependencies=dependencies)
