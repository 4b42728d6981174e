"""Read release records from the helm release storage.

Helm stores one object per release revision in the release namespace, either
as a Secret (the default) or a ConfigMap. The release is a gzipped JSON
document, base64 encoded in the `release` data key, and Secret data carries
one more layer of base64 encoding.

```python
from helm_x.command import CommandRunner
from helm_x.release import ReleaseStorage

storage = ReleaseStorage("default", CommandRunner())
release = await storage.get_release("my-release")
print(release.revision, release.status)
```
"""

import base64
import binascii
import gzip
import json
import logging
from typing import Any

from .command import CommandRunner
from .config import STORAGE_DRIVER_CONFIGMAP, STORAGE_DRIVER_SECRET, STORAGE_DRIVERS
from .exceptions import InputException, ReleaseNotFoundError
from .kubectl import Kubectl
from .manifest import ReleaseRecord

__all__ = [
    "ReleaseStorage",
    "decode_release",
]

_LOGGER = logging.getLogger(__name__)

OWNER_SELECTOR = "owner=helm"
RELEASE_KEY = "release"
# Used in messages when the namespace comes from the kubeconfig context
DEFAULT_NAMESPACE_LABEL = "(current context)"
_GZIP_MAGIC = b"\x1f\x8b\x08"

_DRIVER_KINDS = {
    STORAGE_DRIVER_SECRET: "secrets",
    STORAGE_DRIVER_CONFIGMAP: "configmaps",
}


def decode_release(data: str) -> dict[str, Any]:
    """Decode the helm encoded `release` value into a release object."""
    try:
        raw = base64.b64decode(data)
        if raw.startswith(_GZIP_MAGIC):
            raw = gzip.decompress(raw)
        return json.loads(raw)
    except (binascii.Error, OSError, ValueError) as err:
        raise InputException(f"Unable to decode release data: {err}") from err


class ReleaseStorage:
    """Read-only access to the release records in one namespace."""

    def __init__(
        self,
        namespace: str | None,
        runner: CommandRunner,
        driver: str = STORAGE_DRIVER_SECRET,
        kube_context: str | None = None,
    ) -> None:
        """Initialize ReleaseStorage."""
        if driver not in STORAGE_DRIVERS:
            raise InputException(
                f"Unsupported release storage driver '{driver}', expected one of {STORAGE_DRIVERS}"
            )
        self._namespace = namespace
        self._driver = driver
        self._kubectl = Kubectl(runner, kube_context=kube_context)

    @property
    def namespace(self) -> str:
        return self._namespace or DEFAULT_NAMESPACE_LABEL

    def _parse_object(self, obj: dict[str, Any]) -> ReleaseRecord:
        name = obj.get("metadata", {}).get("name", "")
        if not (data := (obj.get("data") or {}).get(RELEASE_KEY)):
            raise InputException(f"Release storage object {name} has no release data")
        if self._driver == STORAGE_DRIVER_SECRET:
            try:
                data = base64.b64decode(data).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as err:
                raise InputException(
                    f"Unable to decode release secret {name}: {err}"
                ) from err
        record = ReleaseRecord.parse_doc(decode_release(data))
        if not record.namespace:
            record.namespace = self._namespace or ""
        return record

    async def _list(self, selector: str) -> list[ReleaseRecord]:
        objs = await self._kubectl.get_objects(
            _DRIVER_KINDS[self._driver], self._namespace, selector
        )
        records = [self._parse_object(obj) for obj in objs]
        records.sort(key=lambda record: (record.name, record.revision))
        return records

    async def history(self, name: str) -> list[ReleaseRecord]:
        """Return every stored revision of the release, oldest first."""
        return await self._list(f"{OWNER_SELECTOR},name={name}")

    async def get_release(self, name: str, revision: int | None = None) -> ReleaseRecord:
        """Return the latest, or the specified, revision of the release."""
        records = await self.history(name)
        if revision is not None:
            records = [record for record in records if record.revision == revision]
        if not records:
            raise ReleaseNotFoundError(name, self.namespace)
        _LOGGER.debug(
            "Found release %s revision %d in %s", name, records[-1].revision, self.namespace
        )
        return records[-1]

    async def list_releases(self) -> list[ReleaseRecord]:
        """Return the latest revision of every release in the namespace."""
        latest: dict[str, ReleaseRecord] = {}
        for record in await self._list(OWNER_SELECTOR):
            latest[record.name] = record
        return list(latest.values())
