"""Per-invocation command environment.

Bundles what every command handler needs: configuration, the active
installation source, the installation's capabilities and registry, output
consoles, and lazy access to the merged catalog.
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import requests
from rich.console import Console
from rich.prompt import Confirm

from .catalog import Catalog
from .channels import ChannelProvider
from .channels import discover_channels
from .channels import load_catalog
from .channels import providers_for
from .config import CORE_PROPERTIES
from .config import InstallerConfig
from .downloader import RemoteCatalogDownloader
from .exceptions import ComponentError
from .exceptions import UserAbortError
from .registry import ComponentRegistry
from .schema import BaseSystemInfo
from .sources import SourceSelection

logger = logging.getLogger(__name__)


@dataclass
class Environment:
    """Everything a command handler may use; created once per invocation."""

    config: InstallerConfig
    selection: SourceSelection
    parameters: list[str]
    base_info: BaseSystemInfo
    registry: ComponentRegistry
    console: Console = field(default_factory=Console)
    err_console: Console = field(default_factory=lambda: Console(stderr=True))
    session: requests.Session | None = None
    channel_providers: list[ChannelProvider] | None = None
    _catalog: Catalog | None = field(default=None, init=False, repr=False)

    @classmethod
    def create(
        cls,
        config: InstallerConfig,
        selection: SourceSelection,
        parameters: list[str],
        **kwargs,
    ) -> "Environment":
        """Load installation metadata and registry for ``config.home``.

        Raises:
            MetadataError: If the release file or a registry record is invalid
        """
        base_info = config.load_base_info()
        registry = ComponentRegistry(config.storage_path, config.home)
        return cls(
            config=config,
            selection=selection,
            parameters=parameters,
            base_info=base_info,
            registry=registry,
            **kwargs,
        )

    @property
    def home(self) -> Path:
        return self.config.home

    def downloader(self) -> RemoteCatalogDownloader:
        return RemoteCatalogDownloader(
            self.base_info,
            session=self.session,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
        )

    async def load_catalog(self) -> Catalog:
        """
        Merged catalog of all configured channels (loaded once).

        Raises:
            ComponentError: If no channel is usable or a channel fails
        """
        if self._catalog is not None:
            return self._catalog

        providers = self.channel_providers
        if providers is None:
            providers = providers_for(self.config.catalog_urls(self.selection, self.base_info))

        discovery = discover_channels(providers, self.base_info)
        known = CORE_PROPERTIES | discovery.global_options()
        for key in self.config.properties:
            if key not in known:
                logger.warning(f"Unknown property {key} is ignored")

        if not discovery.channels:
            raise ComponentError(
                "No usable software channel: " + "; ".join(discovery.errors),
                context={"errors": discovery.errors},
            )

        self._catalog = await load_catalog(discovery.channels, self.downloader())
        for conflict in self._catalog.conflicts:
            self.err_console.print(
                f"Component {conflict.component_id} from {conflict.replaced_source} "
                f"is overridden by {conflict.winning_source}",
                style="yellow",
                markup=False,
            )
        return self._catalog

    def confirm(self, question: str) -> bool:
        """
        Ask a yes/no question.

        Raises:
            UserAbortError: In non-interactive mode without --auto-yes
        """
        if self.config.auto_yes:
            return True
        if self.config.non_interactive:
            raise UserAbortError(f"{question} Confirmation required; use --auto-yes in non-interactive mode")
        return Confirm.ask(question, console=self.console, default=False)

    def error(self, message: str) -> None:
        self.err_console.print(f"Error: {message}", style="red", markup=False)

    def warning(self, message: str) -> None:
        self.err_console.print(f"Warning: {message}", style="yellow", markup=False)

    def report(self, error: ComponentError, secondary: list[str] | None = None) -> int:
        """Print a failure and any rollback problems; return its exit code."""
        self.error(error.message)
        for message in secondary or []:
            self.err_console.print(f"  (also) {message}", style="red", markup=False)
        return error.exit_code
