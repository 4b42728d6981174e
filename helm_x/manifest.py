"""Representation of Kubernetes manifests, chart metadata and release records.

A manifest set is an ordered list of `ManifestDocument` objects, each one a
single Kubernetes object keyed by its `ResourceIdentity`. Chart metadata and
release records are serializable dataclasses so they can be written back
out as `Chart.yaml` or dumped for inspection.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
import yaml

from .exceptions import InputException

__all__ = [
    "ResourceIdentity",
    "ManifestDocument",
    "parse_documents",
    "dump_documents",
    "ChartDependency",
    "ChartMetadata",
    "ReleaseRecord",
]

_LOGGER = logging.getLogger(__name__)


CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"
REQUIREMENTS_FILE = "requirements.yaml"
TEMPLATES_DIR = "templates"
CHARTS_DIR = "charts"

CHART_API_VERSION_V1 = "v1"
CHART_API_VERSION_V2 = "v2"

# Version and appVersion of generated charts when no --version is given
DEFAULT_CHART_VERSION = "1.0.0"

LIST_KIND = "List"

# Hook objects are stored apart from the release manifest
HOOK_ANNOTATION = "helm.sh/hook"


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for serializable manifest objects."""

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml.dump(self.to_dict(), sort_keys=False)

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class ResourceIdentity:
    """Identifier for a kubernetes object within a manifest set."""

    kind: str
    api_version: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def compact_label(self) -> str:
        return f"{self.kind}: {self.namespaced_name}"

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class ManifestDocument:
    """A single Kubernetes object."""

    body: dict[str, Any]
    """The raw structured body of the object."""

    @classmethod
    def parse_doc(cls, doc: Any) -> "ManifestDocument":
        """Parse a ManifestDocument from a raw kubernetes object."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid object is not a mapping: {doc}")
        if not doc.get("kind"):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not doc.get("apiVersion"):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        if not (metadata := doc.get("metadata")) or not isinstance(metadata, dict):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not metadata.get("name"):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        return cls(body=doc)

    @property
    def kind(self) -> str:
        return str(self.body["kind"])

    @property
    def api_version(self) -> str:
        return str(self.body["apiVersion"])

    @property
    def name(self) -> str:
        return str(self.body["metadata"]["name"])

    @property
    def namespace(self) -> str | None:
        return self.body["metadata"].get("namespace")

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity(
            kind=self.kind,
            api_version=self.api_version,
            namespace=self.namespace,
            name=self.name,
        )

    @property
    def is_hook(self) -> bool:
        annotations = self.body["metadata"].get("annotations") or {}
        return HOOK_ANNOTATION in annotations

    def yaml(self) -> str:
        """Return the object as a single YAML document."""
        return yaml.dump(self.body, sort_keys=False, explicit_start=True)


def parse_documents(content: str) -> list[ManifestDocument]:
    """Parse a multi-document YAML stream into a manifest set.

    Empty documents are skipped and `List` objects are flattened into their
    items.
    """
    try:
        raw_docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse manifests: {err}") from err
    docs: list[ManifestDocument] = []
    for doc in raw_docs:
        if doc is None:
            continue
        if isinstance(doc, dict) and doc.get("kind") == LIST_KIND:
            docs.extend(ManifestDocument.parse_doc(item) for item in doc.get("items") or [])
            continue
        docs.append(ManifestDocument.parse_doc(doc))
    return docs


def dump_documents(docs: list[ManifestDocument]) -> str:
    """Serialize a manifest set as a multi-document YAML stream."""
    return yaml.dump_all(
        [doc.body for doc in docs], sort_keys=False, explicit_start=True
    )


def _strip_attrs(metadata: dict[str, Any], strip_attributes: list[str]) -> None:
    """Update the resource object, stripping any requested labels to simplify diff."""

    for attr_key in ("annotations", "labels"):
        if not (val := metadata.get(attr_key)):
            continue
        for key in strip_attributes:
            if key in val:
                del val[key]
            if not val:
                del metadata[attr_key]
                break


def strip_resource_attributes(
    resource: dict[str, Any], strip_attributes: list[str]
) -> None:
    """Strip labels and annotations that add noise to a diff."""
    if not strip_attributes:
        return
    if metadata := resource.get("metadata"):
        _strip_attrs(metadata, strip_attributes)
    if (
        (spec := resource.get("spec"))
        and isinstance(spec, dict)
        and (templ := spec.get("template"))
        and isinstance(templ, dict)
        and (meta := templ.get("metadata"))
    ):
        _strip_attrs(meta, strip_attributes)


@dataclass
class ChartDependency(BaseManifest):
    """An entry in the dependency list of a chart."""

    name: str
    """The name of the chart within the repository."""

    repository: str
    """The repository URL or `@name` alias of a configured repository."""

    version: str | None = None
    """The version constraint of the chart."""

    alias: str | None = None
    """The name the dependency is installed under within the parent chart."""

    contents: dict[str, Any] | None = field(
        default=None, compare=False, metadata={"serialize": "omit"}
    )
    """Raw dependency entry, keeping condition, tags and import-values."""

    def entry_dict(self) -> dict[str, Any]:
        """Return the dependency entry, preserving unmodeled fields."""
        return {**(self.contents or {}), **self.to_dict()}

    @property
    def effective_alias(self) -> str:
        return self.alias or self.name

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartDependency":
        """Parse a ChartDependency from a Chart.yaml dependencies entry."""
        if not (name := doc.get("name")):
            raise InputException(f"Invalid chart dependency missing name: {doc}")
        return cls(
            name=name,
            repository=doc.get("repository", ""),
            version=doc.get("version"),
            alias=doc.get("alias"),
            contents=doc,
        )


@dataclass
class ChartMetadata(BaseManifest):
    """The contents of a Chart.yaml file."""

    name: str
    """The name of the chart."""

    version: str
    """The SemVer version of the chart."""

    api_version: str = field(
        default=CHART_API_VERSION_V2, metadata=field_options(alias="apiVersion")
    )
    """The chart API version, v1 for helm 2 style charts."""

    app_version: str | None = field(
        default=None, metadata=field_options(alias="appVersion")
    )
    """The version of the app the chart contains."""

    dependencies: list[ChartDependency] = field(default_factory=list)
    """Chart dependencies, from Chart.yaml or requirements.yaml for v1 charts."""

    contents: dict[str, Any] | None = field(
        default=None, metadata={"serialize": "omit"}
    )
    """Raw Chart.yaml contents, used to keep fields not modeled here."""

    @classmethod
    def parse_doc(
        cls, doc: dict[str, Any], requirements: dict[str, Any] | None = None
    ) -> "ChartMetadata":
        """Parse ChartMetadata from Chart.yaml and optional requirements.yaml contents."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {CHART_FILE} is not a mapping: {doc}")
        if not (name := doc.get("name")):
            raise InputException(f"Invalid {CHART_FILE} missing name: {doc}")
        if not (version := doc.get("version")):
            raise InputException(f"Invalid {CHART_FILE} missing version: {doc}")
        api_version = doc.get("apiVersion", CHART_API_VERSION_V1)
        deps = doc.get("dependencies") or []
        if api_version == CHART_API_VERSION_V1 and requirements:
            deps = requirements.get("dependencies") or []
        app_version = doc.get("appVersion")
        return cls(
            name=str(name),
            version=str(version),
            api_version=api_version,
            app_version=str(app_version) if app_version is not None else None,
            dependencies=[ChartDependency.parse_doc(dep) for dep in deps],
            contents=doc,
        )

    @property
    def uses_requirements_file(self) -> bool:
        """Return true if dependencies belong in requirements.yaml."""
        return self.api_version == CHART_API_VERSION_V1

    def chart_dict(self) -> dict[str, Any]:
        """Return the Chart.yaml contents, preserving unmodeled fields."""
        result = {**(self.contents or {}), **self.to_dict()}
        result.pop("dependencies", None)
        if self.dependencies and not self.uses_requirements_file:
            result["dependencies"] = [dep.entry_dict() for dep in self.dependencies]
        return result

    def requirements_dict(self) -> dict[str, Any] | None:
        """Return the requirements.yaml contents for v1 charts, if any."""
        if not self.uses_requirements_file or not self.dependencies:
            return None
        return {"dependencies": [dep.entry_dict() for dep in self.dependencies]}


@dataclass
class ReleaseRecord(BaseManifest):
    """One revision of a release read from the release storage."""

    name: str
    """The release name."""

    namespace: str
    """The namespace the release is installed into."""

    revision: int
    """The revision number of this record."""

    manifest: str = ""
    """The rendered manifests that were applied in this revision."""

    config: dict[str, Any] = field(default_factory=dict)
    """The user supplied values for this revision."""

    status: str | None = None
    """The release status e.g. deployed, superseded, failed."""

    chart_name: str | None = None
    """The name of the chart that was installed."""

    chart_version: str | None = None
    """The version of the chart that was installed."""

    app_version: str | None = None
    """The app version of the chart that was installed."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ReleaseRecord":
        """Parse a ReleaseRecord from a decoded helm release object."""
        if not (name := doc.get("name")):
            raise InputException(f"Invalid release missing name: {list(doc)}")
        if (revision := doc.get("version")) is None:
            raise InputException(f"Invalid release '{name}' missing version")
        info = doc.get("info") or {}
        chart_metadata = (doc.get("chart") or {}).get("metadata") or {}
        return cls(
            name=name,
            namespace=doc.get("namespace", ""),
            revision=int(revision),
            manifest=doc.get("manifest") or "",
            config=doc.get("config") or {},
            status=info.get("status"),
            chart_name=chart_metadata.get("name"),
            chart_version=chart_metadata.get("version"),
            app_version=chart_metadata.get("appVersion"),
        )

    @property
    def documents(self) -> list[ManifestDocument]:
        """Return the manifest text parsed into a manifest set."""
        return parse_documents(self.manifest)
