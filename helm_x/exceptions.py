"""Exceptions related to helm-x."""

__all__ = [
    "HelmXException",
    "InputException",
    "SourceResolutionError",
    "PipelineStageError",
    "DependencyConflictError",
    "MaterializationError",
    "CollaboratorExecutionError",
    "ReleaseNotFoundError",
    "AdoptionPartialFailureError",
]


class HelmXException(Exception):
    """Generic base exception used for this library."""


class InputException(HelmXException):
    """Raised when the input files or values are not formatted as expected."""


class SourceResolutionError(InputException):
    """Raised when an input path or chart reference can't be turned into manifests."""

    def __init__(self, message: str, variant: str, missing: str | None = None) -> None:
        details = f"{message} (probed {variant}"
        if missing:
            details += f", missing {missing}"
        super().__init__(details + ")")
        self.variant = variant
        self.missing = missing


class PipelineStageError(HelmXException):
    """Raised when a patch or injector stage fails, aborting the pipeline."""

    def __init__(self, stage: str, cause: str, document: str | None = None) -> None:
        message = f"Pipeline stage {stage} failed"
        if document:
            message += f" for {document}"
        super().__init__(f"{message}: {cause}")
        self.stage = stage
        self.cause = cause
        self.document = document


class DependencyConflictError(InputException):
    """Raised when two chart dependencies share the same alias."""

    def __init__(self, alias: str) -> None:
        super().__init__(f"Chart dependency alias '{alias}' is declared more than once")
        self.alias = alias


class MaterializationError(HelmXException):
    """Raised when the temporary chart directory can't be written."""


class CollaboratorExecutionError(HelmXException):
    """Raised when there is a failure running an external command."""


class KustomizeException(CollaboratorExecutionError):
    """Raised when there is a failure running a kustomize command."""


class HelmException(CollaboratorExecutionError):
    """Raised when there is a failure running a helm command."""


class KubectlException(CollaboratorExecutionError):
    """Raised when there is a failure running a kubectl command."""


class ReleaseNotFoundError(HelmXException):
    """Raised when a release has no record in the release storage."""

    def __init__(self, name: str, namespace: str) -> None:
        super().__init__(f"Release '{name}' not found in namespace '{namespace}'")
        self.name = name
        self.namespace = namespace


class AdoptionPartialFailureError(HelmXException):
    """Raised when adoption stops part way through the requested resources.

    Resources adopted before the failure keep their ownership metadata.
    """

    def __init__(
        self,
        adopted: list[str],
        failed: str,
        remaining: list[str],
        cause: str,
    ) -> None:
        super().__init__(
            f"Failed to adopt {failed}: {cause} "
            f"(adopted: {', '.join(adopted) or 'none'}; "
            f"not adopted: {', '.join([failed, *remaining])})"
        )
        self.adopted = adopted
        self.failed = failed
        self.remaining = remaining
        self.cause = cause
