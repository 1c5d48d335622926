"""Software channels - pluggable sources of catalogs.

Channels are supplied explicitly by the application as a list of provider
callables; there is no implicit discovery. A provider that fails to build or
initialize is logged and skipped so the remaining channels stay usable.
"""

import asyncio
import logging
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Protocol
from typing import runtime_checkable

from .archive import read_descriptor
from .catalog import Catalog
from .catalog import merge_catalogs
from .downloader import RemoteCatalogDownloader
from .downloader import local_path_for
from .exceptions import ComponentError
from .exceptions import MetadataError
from .schema import BaseSystemInfo
from .utils import sha256_file
from .utils import version_sort_key

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".jar")


@runtime_checkable
class SoftwareChannel(Protocol):
    """Protocol for catalog sources."""

    name: str

    def init(self, base_info: BaseSystemInfo) -> None:
        """Prepare the channel for the given base installation."""
        ...

    def fetch_catalog(self, downloader: RemoteCatalogDownloader) -> Catalog:
        """Return a fully validated catalog."""
        ...

    def global_options(self) -> dict[str, str]:
        """Property names this channel understands, mapped to their help text."""
        ...


class CatalogChannel:
    """Remote (or file URL) catalog document."""

    def __init__(self, url: str):
        self.url = url
        self.name = url

    def init(self, base_info: BaseSystemInfo) -> None:
        if not self.url.strip():
            raise ValueError("Catalog URL is empty")

    def fetch_catalog(self, downloader: RemoteCatalogDownloader) -> Catalog:
        return downloader.open(self.url)

    def global_options(self) -> dict[str, str]:
        return {}


class DirectoryChannel:
    """Local directory of component archives, used as a catalog."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.name = str(directory)

    def init(self, base_info: BaseSystemInfo) -> None:
        if not self.directory.is_dir():
            raise NotADirectoryError(f"Component directory not found: {self.directory}")

    def fetch_catalog(self, downloader: RemoteCatalogDownloader) -> Catalog:
        components: dict[str, list] = {}
        for archive in sorted(self.directory.iterdir()):
            if not archive.is_file() or archive.suffix not in ARCHIVE_SUFFIXES:
                continue
            try:
                descriptor = read_descriptor(archive)
            except MetadataError as e:
                logger.warning(f"Skipping {archive}: {e.message}")
                continue
            descriptor = descriptor.model_copy(update={"url": archive.as_uri(), "checksum": sha256_file(archive)})
            components.setdefault(descriptor.id, []).append(descriptor)

        logger.debug(f"Directory channel {self.directory} offers {len(components)} components")
        return Catalog(
            source_url=self.directory.as_uri(),
            components={
                cid: tuple(sorted(versions, key=lambda d: version_sort_key(d.version)))
                for cid, versions in components.items()
            },
        )

    def global_options(self) -> dict[str, str]:
        return {}


ChannelProvider = Callable[[], SoftwareChannel]


@dataclass
class ChannelDiscovery:
    """Channels that initialized, and failures of those that did not."""

    channels: list[SoftwareChannel] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def global_options(self) -> dict[str, str]:
        options: dict[str, str] = {}
        for channel in self.channels:
            options.update(channel.global_options())
        return options


def channel_for(location: str) -> SoftwareChannel:
    """Pick the channel type for a catalog location."""
    path = local_path_for(location)
    if path is not None and path.is_dir():
        return DirectoryChannel(path)
    return CatalogChannel(location)


def providers_for(catalog_urls: Iterable[str]) -> list[ChannelProvider]:
    """Providers for a ``|`` separated catalog setting, in registration order."""
    return [lambda location=location: channel_for(location) for location in catalog_urls]


def discover_channels(providers: Iterable[ChannelProvider], base_info: BaseSystemInfo) -> ChannelDiscovery:
    """
    Build and initialize channels, isolating broken providers.

    Args:
        providers: Channel factories in registration order
        base_info: Capabilities of the target installation

    Returns:
        ChannelDiscovery with usable channels and error descriptions
    """
    discovery = ChannelDiscovery()
    for provider in providers:
        try:
            channel = provider()
            channel.init(base_info)
        except Exception as e:
            message = f"Software channel is broken: {e}"
            logger.error(message)
            discovery.errors.append(message)
            continue
        discovery.channels.append(channel)
    return discovery


async def load_catalog(channels: list[SoftwareChannel], downloader: RemoteCatalogDownloader) -> Catalog:
    """
    Fetch every channel's catalog concurrently and merge them.

    Each fetch returns an immutable catalog and touches no shared state (a
    downloader without an injected session opens one per fetch);
    merging happens afterwards in registration order, so a later channel
    wins on duplicate component ids.

    Raises:
        ComponentError: The first failure of any channel
    """
    if not channels:
        raise ComponentError("No usable software channel is configured")
    catalogs = await asyncio.gather(*(asyncio.to_thread(channel.fetch_catalog, downloader) for channel in channels))
    return merge_catalogs(list(catalogs))
