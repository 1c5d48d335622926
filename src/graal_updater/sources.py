"""Installation sources: selection and archive providers.

Exactly one kind of source is active per invocation: local archive files,
direct download URLs, or a catalog (the configured one, or an explicit
foreign catalog).
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

import requests
from rich.progress import BarColumn
from rich.progress import DownloadColumn
from rich.progress import Progress
from rich.progress import TextColumn
from rich.progress import TransferSpeedColumn

from .downloader import DEFAULT_CONNECT_TIMEOUT
from .downloader import DEFAULT_READ_TIMEOUT
from .downloader import local_path_for
from .exceptions import DownloadError
from .exceptions import MetadataError
from .exceptions import MultipleSourcesUnsupportedError
from .schema import ComponentDescriptor
from .utils import sha256_file

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class SourceKind(str, Enum):
    CATALOG = "catalog"
    FILES = "files"
    URLS = "urls"


@dataclass(frozen=True)
class SourceSelection:
    """The single installation source chosen on the command line."""

    kind: SourceKind = SourceKind.CATALOG
    files: tuple[Path, ...] = ()
    urls: tuple[str, ...] = ()
    catalog_url: str | None = None
    foreign: bool = False


def split_list(values: list[str] | None) -> list[str]:
    """Flatten repeated and comma separated option values."""
    items: list[str] = []
    for value in values or []:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def select_sources(
    files: list[str] | None = None,
    catalog: str | None = None,
    foreign_catalog: str | None = None,
    urls: list[str] | None = None,
) -> SourceSelection:
    """
    Validate and build the installation source selection.

    Performs no I/O, so conflicting options are rejected before anything is
    read or downloaded.

    Raises:
        MultipleSourcesUnsupportedError: If more than one source option is given
    """
    given = [
        option
        for option, value in (
            ("--files", files),
            ("--catalog", catalog),
            ("--foreign-catalog", foreign_catalog),
            ("--url", urls),
        )
        if value
    ]
    if len(given) > 1:
        raise MultipleSourcesUnsupportedError(
            f"Only one installation source may be used at a time, got: {', '.join(given)}",
            context={"options": given},
        )

    if files:
        return SourceSelection(kind=SourceKind.FILES, files=tuple(Path(f) for f in split_list(files)))
    if urls:
        return SourceSelection(kind=SourceKind.URLS, urls=tuple(split_list(urls)))
    if foreign_catalog:
        return SourceSelection(kind=SourceKind.CATALOG, catalog_url=foreign_catalog, foreign=True)
    return SourceSelection(kind=SourceKind.CATALOG, catalog_url=catalog)


def _archive_name(url: str, fallback: str) -> str:
    name = Path(urlparse(url).path).name
    return name or fallback


def download_archive(
    url: str,
    target: Path,
    session: requests.Session | None = None,
    timeout: tuple[float, float] = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT),
    show_progress: bool = False,
) -> Path:
    """
    Download an archive to ``target``; local URLs are used in place.

    Returns:
        Path of the local archive

    Raises:
        DownloadError: If the archive cannot be fetched
    """
    local = local_path_for(url)
    if local is not None:
        if not local.is_file():
            raise DownloadError(f"Component archive not found: {url}", context={"url": url})
        return local

    if session is None:
        with requests.Session() as owned:
            return _stream(owned, url, target, timeout, show_progress)
    return _stream(session, url, target, timeout, show_progress)


def _stream(
    session: requests.Session,
    url: str,
    target: Path,
    timeout: tuple[float, float],
    show_progress: bool,
) -> Path:
    logger.info(f"Downloading {url}")
    try:
        with session.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            total = int(response.headers.get("content-length", 0)) or None
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                if show_progress:
                    with Progress(
                        TextColumn("{task.description}"),
                        BarColumn(),
                        DownloadColumn(),
                        TransferSpeedColumn(),
                        transient=True,
                    ) as progress:
                        task = progress.add_task(f"Downloading {target.name}", total=total)
                        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                            f.write(chunk)
                            progress.update(task, advance=len(chunk))
                else:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        f.write(chunk)
    except requests.exceptions.RequestException as e:
        target.unlink(missing_ok=True)
        raise DownloadError(f"Cannot download {url}: {e}", context={"url": url}) from e
    return target


class FileSource:
    """Local component archive."""

    def __init__(self, path: Path):
        self.path = path
        self.uri = str(path)

    async def fetch_to(self, work_dir: Path) -> Path:
        if not self.path.is_file():
            raise FileNotFoundError(f"Component archive not found: {self.path}")
        return self.path


class UrlSource:
    """Component archive at an explicit URL."""

    def __init__(self, url: str, session: requests.Session | None = None, show_progress: bool = False):
        self.url = url
        self.uri = url
        self.session = session
        self.show_progress = show_progress

    async def fetch_to(self, work_dir: Path) -> Path:
        target = work_dir / _archive_name(self.url, "component.zip")
        return await asyncio.to_thread(
            download_archive, self.url, target, self.session, show_progress=self.show_progress
        )


class CatalogSource:
    """Archive of a catalog component, verified against the catalog checksum."""

    def __init__(
        self,
        descriptor: ComponentDescriptor,
        session: requests.Session | None = None,
        show_progress: bool = False,
    ):
        if not descriptor.url:
            raise MetadataError(
                f"Catalog entry for {descriptor.id} has no archive URL",
                context={"component": descriptor.id},
            )
        self.descriptor = descriptor
        self.uri = descriptor.url
        self.session = session
        self.show_progress = show_progress

    async def fetch_to(self, work_dir: Path) -> Path:
        target = work_dir / _archive_name(self.uri, f"{self.descriptor.id}.zip")
        archive = await asyncio.to_thread(
            download_archive, self.uri, target, self.session, show_progress=self.show_progress
        )
        if self.descriptor.checksum:
            actual = sha256_file(archive)
            if actual.lower() != self.descriptor.checksum.lower():
                raise MetadataError(
                    f"Archive of {self.descriptor.id} is corrupted: checksum {actual} "
                    f"does not match catalog checksum {self.descriptor.checksum}",
                    context={"component": self.descriptor.id, "url": self.uri},
                )
        return archive
