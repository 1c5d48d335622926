"""Protocols for component archive sources."""

from pathlib import Path
from typing import Protocol


class ComponentSourceProtocol(Protocol):
    """Protocol for component archive sources.

    The installer only needs a local archive file; how it gets there is up to
    the source.

    Implementations:
    - FileSource: local archive path
    - UrlSource: archive downloaded from a URL
    - CatalogSource: archive of a catalog component, verified against the catalog
    """

    uri: str

    async def fetch_to(self, work_dir: Path) -> Path:
        """Make the archive available locally.

        Args:
            work_dir: Scratch directory the source may download into

        Returns:
            Path of the local archive

        Raises:
            Exception: If the archive cannot be obtained
        """
        ...
