"""Installer configuration - built once per process and passed to every command.

Where things come from:
- Installation root: ``--home`` option, then the ``GRAAL_HOME`` environment variable
- Catalog URL: ``--catalog``/``--foreign-catalog`` option, then the
  ``org.graalvm.component.catalog`` property (``-D key=value``), then the
  ``GRAALVM_CATALOG`` environment variable, then ``component_catalog`` in the
  release file, then the built-in default
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .downloader import DEFAULT_CONNECT_TIMEOUT
from .downloader import DEFAULT_READ_TIMEOUT
from .exceptions import MetadataError
from .exceptions import UsageError
from .registry import STORAGE_RELATIVE_PATH
from .schema import RELEASE_FILE
from .schema import BaseSystemInfo
from .sources import SourceSelection

logger = logging.getLogger(__name__)

ENV_GRAAL_HOME = "GRAAL_HOME"
ENV_CATALOG_URL = "GRAALVM_CATALOG"
PROP_CATALOG_URL = "org.graalvm.component.catalog"
DEFAULT_CATALOG_URL = "https://www.graalvm.org/component-catalog/graal-updater-component-catalog.json"
CATALOG_SEPARATOR = "|"

CORE_PROPERTIES = {
    PROP_CATALOG_URL: "Catalog URL, overrides the GRAALVM_CATALOG environment variable",
}


def parse_properties(values: list[str] | None) -> dict[str, str]:
    """
    Parse ``KEY=VALUE`` property definitions.

    Raises:
        UsageError: If a definition has no '=' or an empty key
    """
    properties: dict[str, str] = {}
    for value in values or []:
        key, sep, prop_value = value.partition("=")
        if not sep or not key.strip():
            raise UsageError(f"Invalid property definition {value!r}, expected KEY=VALUE")
        properties[key.strip()] = prop_value
    return properties


def find_home(explicit: Path | None = None, environ: Mapping[str, str] | None = None) -> Path:
    """
    Locate and sanity check the base installation directory.

    Raises:
        UsageError: If no installation directory is configured
        MetadataError: If the directory is not a valid installation
    """
    environ = os.environ if environ is None else environ
    if explicit is not None:
        home = explicit
    elif environ.get(ENV_GRAAL_HOME):
        home = Path(environ[ENV_GRAAL_HOME])
    else:
        raise UsageError(f"Installation directory not set; use --home or the {ENV_GRAAL_HOME} environment variable")

    home = home.expanduser().resolve()
    if not home.is_dir() or not (home / RELEASE_FILE).is_file():
        raise MetadataError(
            f"{home} is not a valid installation directory (no {RELEASE_FILE} file)",
            context={"home": str(home)},
        )
    return home


class InstallerConfig(BaseModel):
    """Global options and paths for one installer invocation."""

    model_config = ConfigDict(frozen=True)

    home: Path
    verbose: bool = False
    debug: bool = False
    auto_yes: bool = False
    non_interactive: bool = False
    show_progress: bool = True
    properties: dict[str, str] = Field(default_factory=dict)
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT

    @property
    def storage_path(self) -> Path:
        return self.home / STORAGE_RELATIVE_PATH

    @property
    def release_path(self) -> Path:
        return self.home / RELEASE_FILE

    def load_base_info(self) -> BaseSystemInfo:
        return BaseSystemInfo.from_release_file(self.release_path)

    def catalog_urls(
        self,
        selection: SourceSelection,
        base_info: BaseSystemInfo,
        environ: Mapping[str, str] | None = None,
    ) -> list[str]:
        """
        Catalog locations to use, in registration order.

        A setting may list several locations separated by '|'.
        """
        environ = os.environ if environ is None else environ
        if selection.catalog_url:
            setting = selection.catalog_url
        elif self.properties.get(PROP_CATALOG_URL):
            setting = self.properties[PROP_CATALOG_URL]
        elif environ.get(ENV_CATALOG_URL):
            setting = environ[ENV_CATALOG_URL]
        elif base_info.catalog_url:
            setting = base_info.catalog_url
        else:
            setting = DEFAULT_CATALOG_URL

        urls = [part.strip() for part in setting.split(CATALOG_SEPARATOR) if part.strip()]
        logger.debug(f"Catalog locations: {urls}")
        return urls
