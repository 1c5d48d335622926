"""Command handlers and dispatch.

Every handler follows the same two-step contract: ``init(env)`` receives the
per-invocation Environment, ``execute()`` performs the command and returns a
process exit code. dispatch() is the single place where failures become exit
codes.
"""

import asyncio
import logging
import tempfile
from collections.abc import Callable
from pathlib import Path

from rich.table import Table

from .archive import read_descriptor
from .environment import Environment
from .exceptions import EXIT_ABORTED
from .exceptions import EXIT_DATA
from .exceptions import EXIT_OK
from .exceptions import ComponentError
from .exceptions import ComponentNotFoundError
from .exceptions import HookError
from .exceptions import UsageError
from .exceptions import UserAbortError
from .exceptions import classify_os_error
from .hooks import rebuild_images
from .hooks import run_post_install
from .installer import install_component
from .installer import uninstall_component
from .resolver import match_component
from .resolver import resolve_components
from .schema import ComponentDescriptor
from .sources import SourceKind
from .sources import UrlSource

logger = logging.getLogger(__name__)


class InstallerCommand:
    """Base class for command handlers."""

    name = ""

    def init(self, env: Environment) -> None:
        self.env = env

    def execute(self) -> int:
        raise NotImplementedError


class InstallCommand(InstallerCommand):
    """Install components from the catalog, local archives or URLs."""

    name = "install"

    def __init__(self, replace: bool = False):
        self.replace = replace

    def execute(self) -> int:
        env = self.env
        if env.selection.kind is SourceKind.CATALOG and not env.parameters:
            raise UsageError("No components specified")

        with tempfile.TemporaryDirectory(prefix="gu-download-") as work_dir:
            resolved = asyncio.run(
                resolve_components(
                    env.selection,
                    env.parameters,
                    base_info=env.base_info,
                    work_dir=Path(work_dir),
                    catalog_loader=env.load_catalog,
                    session=env.session,
                    show_progress=env.config.show_progress,
                )
            )
            if not resolved:
                raise UsageError("No components specified")

            for component in resolved:
                descriptor = component.descriptor
                env.console.print(f"Installing {descriptor.display_name} {descriptor.version} ({descriptor.id})")
                result = install_component(descriptor, component.archive, env.home, env.registry, replace=self.replace)
                if not result.ok:
                    assert result.error is not None
                    return env.report(result.error, result.secondary_errors)
                self._post_install(descriptor)

        return EXIT_OK

    def _post_install(self, descriptor: ComponentDescriptor) -> None:
        # The component stays installed even if its hook fails
        try:
            run_post_install(descriptor, self.env.home)
        except (HookError, FileNotFoundError) as e:
            self.env.warning(f"Post-install step of {descriptor.id} failed: {e}")


class UninstallCommand(InstallerCommand):
    """Remove installed components."""

    name = "uninstall"

    def execute(self) -> int:
        env = self.env
        if not env.parameters:
            raise UsageError("No components specified")

        # Validate every id before removing anything
        components = []
        for component_id in env.parameters:
            component = env.registry.find(component_id)
            if component is None:
                raise ComponentNotFoundError(
                    f"Component {component_id} is not installed",
                    context={"component": component_id},
                )
            components.append(component)

        names = ", ".join(f"{c.id} {c.version}" for c in components)
        if not env.confirm(f"Uninstall {names}?"):
            raise UserAbortError("Uninstallation cancelled")

        for component in components:
            result = uninstall_component(component.id, env.home, env.registry)
            if not result.ok:
                assert result.error is not None
                return env.report(result.error, result.secondary_errors)
            env.console.print(f"Uninstalled {component.id} {component.version}")
        return EXIT_OK


def _matches(component_id: str, filters: list[str]) -> bool:
    if not filters:
        return True
    return any(component_id == f or component_id.endswith("." + f) for f in filters)


class ListInstalledCommand(InstallerCommand):
    """List installed components and report registry problems."""

    name = "list"

    def execute(self) -> int:
        env = self.env
        installed = [c for c in env.registry.list_installed() if _matches(c.id, env.parameters)]
        if not installed:
            env.console.print("No components installed.")
        else:
            table = Table("ID", "Version", "Name")
            for component in installed:
                table.add_row(component.id, component.version, component.descriptor.display_name)
            env.console.print(table)

        for problem in env.registry.verify():
            env.warning(problem)
        return EXIT_OK


class AvailableCommand(InstallerCommand):
    """List components offered by the catalog."""

    name = "available"

    def execute(self) -> int:
        env = self.env
        if env.selection.kind is not SourceKind.CATALOG:
            raise UsageError("The available command works with catalogs only")

        catalog = asyncio.run(env.load_catalog())
        components = [d for d in catalog.latest_components() if _matches(d.id, env.parameters)]
        if not components:
            env.console.print("No components available.")
            return EXIT_OK

        table = Table("ID", "Version", "Name", "Installed")
        for descriptor in components:
            installed = env.registry.find(descriptor.id)
            table.add_row(
                descriptor.id,
                descriptor.version,
                descriptor.display_name,
                installed.version if installed else "",
            )
        env.console.print(table)
        return EXIT_OK


class InfoCommand(InstallerCommand):
    """Show details of components from the catalog, archives or URLs."""

    name = "info"

    def execute(self) -> int:
        env = self.env
        for descriptor in self._descriptors():
            self._print(descriptor)
        return EXIT_OK

    def _descriptors(self) -> list[ComponentDescriptor]:
        env = self.env
        kind = env.selection.kind
        if kind is SourceKind.CATALOG:
            if not env.parameters:
                raise UsageError("No components specified")
            catalog = asyncio.run(env.load_catalog())
            return [match_component(catalog, request) for request in env.parameters]
        if kind is SourceKind.FILES:
            return [read_descriptor(path) for path in env.selection.files]

        descriptors = []
        with tempfile.TemporaryDirectory(prefix="gu-download-") as work_dir:
            for url in env.selection.urls:
                source = UrlSource(url, session=env.session, show_progress=env.config.show_progress)
                descriptors.append(read_descriptor(asyncio.run(source.fetch_to(Path(work_dir)))))
        return descriptors

    def _print(self, descriptor: ComponentDescriptor) -> None:
        env = self.env
        table = Table(show_header=False, box=None)
        table.add_row("ID", descriptor.id)
        table.add_row("Name", descriptor.display_name)
        table.add_row("Version", descriptor.version)
        for capability, value in sorted(descriptor.requires.items()):
            table.add_row(f"Requires {capability}", value)
        if descriptor.url:
            table.add_row("Archive", descriptor.url)
        if descriptor.files:
            table.add_row("Files", str(len(descriptor.files)))
        installed = env.registry.find(descriptor.id)
        table.add_row("Installed", installed.version if installed else "no")
        env.console.print(table)


class RebuildImagesCommand(InstallerCommand):
    """Run the installation's rebuild-images tool."""

    name = "rebuild-images"

    def execute(self) -> int:
        return rebuild_images(self.env.home, self.env.parameters)


def build_command_table() -> dict[str, type[InstallerCommand]]:
    """Fresh command-name to handler table."""
    commands: list[type[InstallerCommand]] = [
        InstallCommand,
        UninstallCommand,
        ListInstalledCommand,
        AvailableCommand,
        InfoCommand,
        RebuildImagesCommand,
    ]
    return {command.name: command for command in commands}


def dispatch(command: InstallerCommand, env_factory: Callable[[], Environment], env_errors: Callable[[str], None]) -> int:
    """
    Create the environment, run a command and map failures to exit codes.

    Args:
        command: Handler to run
        env_factory: Builds the Environment (may fail on invalid installations)
        env_errors: Prints an error message when no Environment exists yet

    Returns:
        Process exit code
    """
    report = env_errors
    try:
        env = env_factory()
        report = env.error
        command.init(env)
        return command.execute()
    except UsageError as e:
        report(e.message)
        report("Run 'gu --help' for usage.")
        return e.exit_code
    except ComponentError as e:
        logger.debug(f"{command.name} failed", exc_info=True)
        report(e.message)
        return e.exit_code
    except OSError as e:
        logger.debug(f"{command.name} failed", exc_info=True)
        report(str(e))
        return classify_os_error(e).exit_code
    except KeyboardInterrupt:
        report("Aborted")
        return EXIT_ABORTED
    except Exception as e:
        logger.error(f"Internal error in {command.name}: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        report(f"Internal error: {e}")
        return EXIT_DATA
