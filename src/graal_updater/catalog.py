"""Catalog model - parse and query component catalogs.

Catalog format (JSON):
{
  "requires": {"graalvm_version": "0.33"},
  "components": [
    {
      "id": "org.graalvm.ruby",
      "name": "TruffleRuby",
      "version": "1.0.0",
      "requires": {"graalvm_version": "0.33", "os_name": "linux"},
      "url": "ruby-installable-1.0.0.zip",
      "checksum": "<sha256 of the archive>",
      "files": [{"path": "bin/ruby", "permissions": 493}]
    }
  ],
  "checksum": "sha256:<hex>"
}

The document checksum covers the canonical JSON form of everything except
the ``checksum`` field itself. Unknown fields are ignored.
"""

import json
import logging
from typing import Any
from urllib.parse import urljoin

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from .exceptions import CatalogParseError
from .schema import CAP_GRAALVM_VERSION
from .schema import ComponentDescriptor
from .schema import FileEntry
from .schema import is_valid_component_id
from .utils import sha256_bytes
from .utils import version_sort_key

logger = logging.getLogger(__name__)

CHECKSUM_PREFIX = "sha256:"


class CatalogConflict(BaseModel):
    """Same component id offered by two merged catalogs."""

    model_config = ConfigDict(frozen=True)

    component_id: str
    replaced_source: str
    winning_source: str


class Catalog(BaseModel):
    """
    Validated, immutable catalog.

    ``components`` maps component id to all offered versions, oldest first.
    """

    model_config = ConfigDict(frozen=True)

    source_url: str = ""
    requires: dict[str, str] = Field(default_factory=dict)
    checksum: str = ""
    components: dict[str, tuple[ComponentDescriptor, ...]] = Field(default_factory=dict)
    conflicts: tuple[CatalogConflict, ...] = ()

    @property
    def required_version(self) -> str | None:
        return self.requires.get(CAP_GRAALVM_VERSION)

    def component_ids(self) -> list[str]:
        return sorted(self.components)

    def versions(self, component_id: str) -> tuple[ComponentDescriptor, ...]:
        return self.components.get(component_id, ())

    def find_component(self, component_id: str, version: str | None = None) -> ComponentDescriptor | None:
        """
        Find a component by exact id.

        Args:
            component_id: Component id
            version: Exact version to select; newest version when None

        Returns:
            Descriptor or None if not offered
        """
        candidates = self.components.get(component_id)
        if not candidates:
            return None
        if version is None:
            return candidates[-1]
        for descriptor in candidates:
            if descriptor.version == version:
                return descriptor
        return None

    def latest_components(self) -> list[ComponentDescriptor]:
        """Newest version of every component, ordered by id."""
        return [self.components[cid][-1] for cid in self.component_ids()]


def canonical_json(document: dict[str, Any]) -> bytes:
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_checksum(document: dict[str, Any]) -> str:
    """Integrity token for a catalog document (ignores any existing checksum)."""
    body = {key: value for key, value in document.items() if key != "checksum"}
    return CHECKSUM_PREFIX + sha256_bytes(canonical_json(body))


def parse_catalog(data: bytes, source_url: str = "") -> Catalog:
    """
    Parse and fully validate a catalog document.

    Either the whole document is valid and a Catalog is returned, or
    CatalogParseError is raised; partial catalogs are never produced.

    Args:
        data: Raw catalog bytes
        source_url: Where the catalog came from (base for relative archive URLs)

    Raises:
        CatalogParseError: Malformed document, missing required fields or checksum mismatch
    """
    context = {"source": source_url}
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CatalogParseError(f"Catalog is not valid JSON: {e}", context=context) from e

    if not isinstance(document, dict):
        raise CatalogParseError("Catalog document must be a JSON object", context=context)

    declared = document.get("checksum")
    if not isinstance(declared, str) or not declared:
        raise CatalogParseError("Catalog has no integrity checksum", context=context)
    if not declared.startswith(CHECKSUM_PREFIX):
        declared = CHECKSUM_PREFIX + declared
    actual = compute_checksum(document)
    if declared.lower() != actual:
        raise CatalogParseError(
            f"Catalog checksum mismatch: declared {declared}, computed {actual}",
            context=context,
        )

    requires = document.get("requires")
    if not isinstance(requires, dict) or not isinstance(requires.get(CAP_GRAALVM_VERSION), str):
        raise CatalogParseError(f"Catalog does not declare requires.{CAP_GRAALVM_VERSION}", context=context)

    entries = document.get("components")
    if not isinstance(entries, list):
        raise CatalogParseError("Catalog 'components' must be a list", context=context)

    components: dict[str, list[ComponentDescriptor]] = {}
    for index, entry in enumerate(entries):
        descriptor = _parse_component(entry, index, source_url)
        versions = components.setdefault(descriptor.id, [])
        if any(existing.version == descriptor.version for existing in versions):
            raise CatalogParseError(
                f"Component {descriptor.id} version {descriptor.version} is listed twice",
                context=context,
            )
        versions.append(descriptor)

    logger.debug(f"Parsed catalog {source_url or '<memory>'} with {len(components)} components")
    return Catalog(
        source_url=source_url,
        requires={str(k): str(v) for k, v in requires.items()},
        checksum=actual,
        components={
            cid: tuple(sorted(versions, key=lambda d: version_sort_key(d.version)))
            for cid, versions in components.items()
        },
    )


def _parse_component(entry: Any, index: int, source_url: str) -> ComponentDescriptor:
    if not isinstance(entry, dict):
        raise CatalogParseError(f"Catalog component #{index} is not an object", context={"source": source_url})

    for key in ("id", "version"):
        if not isinstance(entry.get(key), str) or not entry[key]:
            raise CatalogParseError(
                f"Catalog component #{index} is missing required field '{key}'",
                context={"source": source_url},
            )
    if not is_valid_component_id(entry["id"]):
        raise CatalogParseError(
            f"Catalog component #{index} has an invalid id {entry['id']!r}",
            context={"source": source_url},
        )

    url = entry.get("url")
    if isinstance(url, str) and source_url:
        url = urljoin(source_url, url)

    try:
        return ComponentDescriptor(
            id=entry["id"],
            version=entry["version"],
            name=entry.get("name", ""),
            requires={str(k): str(v) for k, v in (entry.get("requires") or {}).items()},
            files=tuple(FileEntry.model_validate(f) for f in entry.get("files", [])),
            post_install=entry.get("post_install"),
            url=url,
            checksum=entry.get("checksum"),
        )
    except (ValidationError, AttributeError, TypeError) as e:
        raise CatalogParseError(
            f"Catalog component {entry['id']} is invalid: {e}",
            context={"source": source_url, "component": entry["id"]},
        ) from e


def merge_catalogs(catalogs: list[Catalog]) -> Catalog:
    """
    Merge catalogs from several channels into one logical catalog.

    Components are keyed by id. When two catalogs offer the same id, the
    later catalog wins and the conflict is recorded on the result.

    Args:
        catalogs: Catalogs in registration order

    Returns:
        Merged catalog
    """
    if len(catalogs) == 1:
        return catalogs[0]

    merged: dict[str, tuple[ComponentDescriptor, ...]] = {}
    owners: dict[str, str] = {}
    conflicts: list[CatalogConflict] = []
    requires: dict[str, str] = {}

    for catalog in catalogs:
        requires.update(catalog.requires)
        for cid, versions in catalog.components.items():
            if cid in merged:
                conflict = CatalogConflict(
                    component_id=cid,
                    replaced_source=owners[cid],
                    winning_source=catalog.source_url,
                )
                conflicts.append(conflict)
                logger.warning(
                    f"Component {cid} offered by {owners[cid]} and {catalog.source_url}; "
                    f"using {catalog.source_url}"
                )
            merged[cid] = versions
            owners[cid] = catalog.source_url

    return Catalog(
        source_url="|".join(c.source_url for c in catalogs),
        requires=requires,
        components=merged,
        conflicts=tuple(conflicts),
    )
