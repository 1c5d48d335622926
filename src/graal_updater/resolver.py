"""Component resolution - turn install requests into concrete, checked components.

Resolution yields exactly one descriptor plus a local archive per request, or
fails. Capability requirements are checked before anything is written to the
installation tree.
"""

import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from .archive import read_descriptor
from .catalog import Catalog
from .exceptions import AmbiguousSourceError
from .exceptions import ComponentNotFoundError
from .exceptions import MetadataError
from .exceptions import UnsupportedComponentError
from .protocols import ComponentSourceProtocol
from .schema import CAP_GRAALVM_VERSION
from .schema import BaseSystemInfo
from .schema import ComponentDescriptor
from .sources import CatalogSource
from .sources import FileSource
from .sources import SourceKind
from .sources import SourceSelection
from .sources import UrlSource
from .utils import is_version_compatible

logger = logging.getLogger(__name__)

CatalogLoader = Callable[[], Awaitable[Catalog]]


@dataclass(frozen=True)
class ResolvedComponent:
    """A component ready for installation."""

    descriptor: ComponentDescriptor
    source: ComponentSourceProtocol
    archive: Path


def split_request(requested: str) -> tuple[str, str | None]:
    """Split ``id`` or ``id@version``."""
    component_id, sep, version = requested.partition("@")
    return component_id, (version or None) if sep else None


def match_component(catalog: Catalog, requested: str) -> ComponentDescriptor:
    """
    Find the catalog component for a request.

    Resolution order:
    1. Exact component id
    2. Dot-separated id suffix ("ruby" matches "org.graalvm.ruby")

    The newest version is selected unless ``id@version`` names one.

    Raises:
        ComponentNotFoundError: No component (or version) matches
        AmbiguousSourceError: The suffix matches several components
    """
    component_id, version = split_request(requested)

    if component_id in catalog.components:
        candidates = [component_id]
    else:
        candidates = [cid for cid in catalog.component_ids() if cid.endswith("." + component_id)]

    if not candidates:
        raise ComponentNotFoundError(
            f"Component {component_id} not found in catalog",
            context={"component": component_id},
        )
    if len(candidates) > 1:
        raise AmbiguousSourceError(
            f"Component name {component_id} is ambiguous, it matches: {', '.join(candidates)}",
            context={"component": component_id, "candidates": candidates},
        )

    descriptor = catalog.find_component(candidates[0], version)
    if descriptor is None:
        raise ComponentNotFoundError(
            f"Component {candidates[0]} version {version} not found in catalog",
            context={"component": candidates[0], "version": version},
        )
    logger.debug(f"Resolved '{requested}' to {descriptor.id} {descriptor.version}")
    return descriptor


def check_requirements(descriptor: ComponentDescriptor, base_info: BaseSystemInfo) -> None:
    """
    Check every required capability against the base installation.

    ``graalvm_version`` is a minimum version; other capabilities must match
    case-insensitively.

    Raises:
        UnsupportedComponentError: Naming the first unmet capability
        MetadataError: If a version requirement cannot be parsed
    """
    for capability, required in sorted(descriptor.requires.items()):
        available = base_info.get(capability)
        if available is None:
            raise UnsupportedComponentError(descriptor.id, capability, required, None)

        if capability.lower() == CAP_GRAALVM_VERSION:
            try:
                satisfied = is_version_compatible(available, required)
            except ValueError as e:
                raise MetadataError(
                    f"Invalid version requirement {required!r} in {descriptor.id}",
                    context={"component": descriptor.id},
                ) from e
        else:
            satisfied = available.lower() == required.lower()

        if not satisfied:
            raise UnsupportedComponentError(descriptor.id, capability, required, available)


async def resolve_components(
    selection: SourceSelection,
    requested: list[str],
    base_info: BaseSystemInfo,
    work_dir: Path,
    catalog_loader: CatalogLoader | None = None,
    session: requests.Session | None = None,
    show_progress: bool = False,
) -> list[ResolvedComponent]:
    """
    Resolve install requests into components with local archives.

    Args:
        selection: Active installation source
        requested: Component ids (catalog source only)
        base_info: Capabilities of the target installation
        work_dir: Scratch directory for downloads
        catalog_loader: Returns the merged catalog (catalog source only)
        session: Optional requests session for downloads
        show_progress: Show download progress bars

    Returns:
        Resolved components in request order

    Raises:
        AmbiguousSourceError: Ids combined with files/urls, or one id supplied twice
        ComponentNotFoundError: Requested id not in catalog
        UnsupportedComponentError: Unmet capability requirement
    """
    sources: list[tuple[ComponentSourceProtocol, ComponentDescriptor | None]] = []

    if selection.kind is SourceKind.CATALOG:
        if catalog_loader is None:
            raise ValueError("catalog_loader is required for catalog installs")
        catalog = await catalog_loader()
        for request in requested:
            descriptor = match_component(catalog, request)
            # Fail before downloading anything
            check_requirements(descriptor, base_info)
            sources.append((CatalogSource(descriptor, session=session, show_progress=show_progress), descriptor))
    else:
        if requested:
            option = "--files" if selection.kind is SourceKind.FILES else "--url"
            raise AmbiguousSourceError(
                f"Component ids ({', '.join(requested)}) cannot be combined with {option}",
                context={"requested": requested},
            )
        if selection.kind is SourceKind.FILES:
            sources.extend((FileSource(path), None) for path in selection.files)
        else:
            sources.extend((UrlSource(url, session=session, show_progress=show_progress), None) for url in selection.urls)

    resolved: list[ResolvedComponent] = []
    seen: dict[str, str] = {}
    for source, expected in sources:
        archive = await source.fetch_to(work_dir)
        descriptor = read_descriptor(archive)

        if expected is not None:
            if descriptor.id != expected.id:
                raise MetadataError(
                    f"Archive {source.uri} contains {descriptor.id}, catalog lists {expected.id}",
                    context={"component": expected.id, "archive": source.uri},
                )
            descriptor = descriptor.model_copy(update={"url": expected.url, "checksum": expected.checksum})

        if descriptor.id in seen:
            raise AmbiguousSourceError(
                f"Component {descriptor.id} is supplied by both {seen[descriptor.id]} and {source.uri}",
                context={"component": descriptor.id},
            )
        seen[descriptor.id] = source.uri

        check_requirements(descriptor, base_info)
        resolved.append(ResolvedComponent(descriptor=descriptor, source=source, archive=archive))

    return resolved
