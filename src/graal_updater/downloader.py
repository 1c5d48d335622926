"""Remote catalog downloader.

Fetches catalog documents over http(s) or from file URLs, validates them and
gates them on the base installation version. Network failures are reported
as CatalogDownloadError and never retried here; retrying is the caller's
decision.
"""

import logging
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from .catalog import Catalog
from .catalog import parse_catalog
from .exceptions import CatalogDownloadError
from .exceptions import CatalogParseError
from .exceptions import CorruptedCatalogFileError
from .exceptions import MetadataError
from .exceptions import UnsupportedGraalVersionError
from .schema import BaseSystemInfo
from .utils import is_version_compatible

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 60.0


def local_path_for(url: str) -> Path | None:
    """Filesystem path for ``file:`` URLs and plain paths, None for remote URLs."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    # Single letter schemes are Windows drive letters
    if parsed.scheme == "" or len(parsed.scheme) == 1:
        return Path(url)
    return None


class RemoteCatalogDownloader:
    """
    Download and validate catalogs for one base installation.

    Every catalog returned by open() has passed parsing, the integrity check
    and the version gate; there is no way to obtain an unvalidated catalog.

    Without an injected session every fetch opens and closes its own
    requests.Session, so one downloader can serve concurrent fetches.
    """

    def __init__(
        self,
        base_info: BaseSystemInfo,
        session: requests.Session | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        """Initialize downloader.

        Args:
            base_info: Capabilities of the target installation
            session: Optional requests session (proxies, auth, test doubles);
                the caller owns it and must not share it across threads
            connect_timeout: Seconds to wait for a connection
            read_timeout: Seconds to wait between received bytes
        """
        self.base_info = base_info
        self.session = session
        self.timeout = (connect_timeout, read_timeout)

    def fetch(self, url: str) -> bytes:
        """
        Fetch raw catalog bytes.

        Raises:
            CatalogDownloadError: Connection, proxy, timeout, HTTP or local read failure
        """
        path = local_path_for(url)
        if path is not None:
            try:
                return path.read_bytes()
            except OSError as e:
                raise CatalogDownloadError(
                    f"Cannot read catalog {url}: {e}",
                    context={"url": url},
                ) from e

        logger.debug(f"Downloading catalog {url}")
        if self.session is not None:
            return self._get(self.session, url)
        with requests.Session() as session:
            return self._get(session, url)

    def _get(self, session: requests.Session, url: str) -> bytes:
        try:
            response = session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.ProxyError as e:
            raise CatalogDownloadError(
                f"Cannot download catalog {url} through the configured proxy. "
                f"Check the http_proxy/https_proxy settings: {e}",
                context={"url": url, "proxy": True},
            ) from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise CatalogDownloadError(
                f"Cannot connect to catalog {url}. Check your network or proxy settings: {e}",
                context={"url": url},
            ) from e
        except requests.exceptions.RequestException as e:
            raise CatalogDownloadError(f"Cannot download catalog {url}: {e}", context={"url": url}) from e
        return response.content

    def open(self, url: str) -> Catalog:
        """
        Fetch, parse and validate one catalog.

        Args:
            url: Catalog URL (http, https, file or a local path)

        Returns:
            Fully validated catalog

        Raises:
            CatalogDownloadError: Catalog could not be fetched
            CorruptedCatalogFileError: Malformed document or checksum mismatch
            UnsupportedGraalVersionError: Catalog requires a newer base installation
        """
        data = self.fetch(url)
        try:
            catalog = parse_catalog(data, source_url=url)
        except CatalogParseError as e:
            raise CorruptedCatalogFileError(
                f"Catalog {url} is corrupted: {e.message}",
                context={"url": url, **e.context},
            ) from e

        self._check_version(catalog, url)
        logger.info(f"Loaded catalog {url} ({len(catalog.components)} components)")
        return catalog

    def _check_version(self, catalog: Catalog, url: str) -> None:
        required = catalog.required_version
        available = self.base_info.version
        if required is None:
            # parse_catalog guarantees the requirement
            raise CorruptedCatalogFileError(f"Catalog {url} has no version requirement", context={"url": url})
        if available is None:
            raise MetadataError("Base installation does not declare its version")
        try:
            compatible = is_version_compatible(available, required)
        except ValueError as e:
            raise CorruptedCatalogFileError(
                f"Catalog {url} declares an invalid version requirement {required!r}",
                context={"url": url},
            ) from e
        if not compatible:
            raise UnsupportedGraalVersionError(
                f"Catalog {url} requires version {required}, installed version is {available}",
                context={"url": url, "required": required, "available": available},
            )
