"""graal-updater - Component installer for GraalVM installations.

Public API for embedding the installer; the ``gu`` command line lives in
``graal_updater.cli``.
"""

from .archive import extract
from .archive import read_descriptor
from .catalog import Catalog
from .catalog import compute_checksum
from .catalog import merge_catalogs
from .catalog import parse_catalog
from .channels import CatalogChannel
from .channels import DirectoryChannel
from .channels import SoftwareChannel
from .channels import discover_channels
from .config import InstallerConfig
from .downloader import RemoteCatalogDownloader
from .exceptions import ComponentError
from .exceptions import ErrorKind
from .installer import InstallTransaction
from .installer import TransactionResult
from .installer import TransactionState
from .installer import install_component
from .installer import uninstall_component
from .protocols import ComponentSourceProtocol
from .registry import ComponentRegistry
from .registry import InstalledComponent
from .registry import ManifestEntry
from .resolver import ResolvedComponent
from .resolver import check_requirements
from .resolver import match_component
from .resolver import resolve_components
from .schema import BaseSystemInfo
from .schema import ComponentDescriptor
from .schema import FileEntry
from .sources import SourceSelection
from .sources import select_sources

__all__ = [
    # Metadata
    "BaseSystemInfo",
    "ComponentDescriptor",
    "FileEntry",
    # Catalogs
    "Catalog",
    "parse_catalog",
    "compute_checksum",
    "merge_catalogs",
    "RemoteCatalogDownloader",
    # Channels
    "SoftwareChannel",
    "CatalogChannel",
    "DirectoryChannel",
    "discover_channels",
    # Archives
    "extract",
    "read_descriptor",
    # Registry
    "ComponentRegistry",
    "InstalledComponent",
    "ManifestEntry",
    # Resolution
    "SourceSelection",
    "select_sources",
    "ComponentSourceProtocol",
    "ResolvedComponent",
    "match_component",
    "check_requirements",
    "resolve_components",
    # Installation
    "InstallTransaction",
    "TransactionResult",
    "TransactionState",
    "install_component",
    "uninstall_component",
    # Configuration
    "InstallerConfig",
    # Exceptions
    "ComponentError",
    "ErrorKind",
]

__version__ = "0.1.0"
