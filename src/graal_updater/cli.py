"""``gu`` command line interface.

Global options are parsed once by the application callback into
GlobalOptions; each command turns them into an Environment and hands its
handler to dispatch().
"""

import importlib
import logging
import sys
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from types import ModuleType

import click
import typer
from rich.console import Console
from rich.logging import RichHandler

from .commands import build_command_table
from .commands import dispatch
from .config import InstallerConfig
from .config import find_home
from .config import parse_properties
from .environment import Environment
from .exceptions import EXIT_ABORTED
from .exceptions import EXIT_OK
from .exceptions import EXIT_USAGE
from .sources import select_sources

app = typer.Typer(
    name="gu",
    help="Install, remove and inspect components of a GraalVM installation.",
    add_completion=False,
)


@dataclass
class GlobalOptions:
    home: Path | None = None
    verbose: bool = False
    debug: bool = False
    catalog: str | None = None
    files: list[str] = field(default_factory=list)
    foreign_catalog: str | None = None
    urls: list[str] = field(default_factory=list)
    auto_yes: bool = False
    non_interactive: bool = False
    show_progress: bool = True
    properties: list[str] = field(default_factory=list)


def configure_logging(verbose: bool, debug: bool) -> None:
    """Route library logging to stderr through rich."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=False,
                show_path=debug,
                rich_tracebacks=debug,
            )
        ],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    home: Path | None = typer.Option(
        None, "--home", help="Installation directory (default: GRAAL_HOME environment variable)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print progress information."),
    debug: bool = typer.Option(False, "--debug", "-e", help="Print debugging information and stack traces."),
    catalog: str | None = typer.Option(None, "--catalog", "-c", help="Install from this catalog URL."),
    files: list[str] | None = typer.Option(
        None, "--files", "-L", help="Install from local archives (comma separated or repeated)."
    ),
    foreign_catalog: str | None = typer.Option(None, "--foreign-catalog", help="Install from a third-party catalog."),
    urls: list[str] | None = typer.Option(
        None, "--url", "-u", help="Install archives downloaded from URLs (comma separated or repeated)."
    ),
    auto_yes: bool = typer.Option(False, "--auto-yes", "-y", help="Answer yes to all questions."),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", "-n", help="Never ask; fail where a question would be asked."
    ),
    no_download_progress: bool = typer.Option(
        False, "--no-download-progress", help="Do not show download progress."
    ),
    properties: list[str] | None = typer.Option(
        None, "--property", "-D", help="Set a property, e.g. -D org.graalvm.component.catalog=URL."
    ),
) -> None:
    """Install, remove and inspect components of a GraalVM installation."""
    configure_logging(verbose, debug)
    if ctx.invoked_subcommand is None:
        typer.echo("Error: Missing command.", err=True)
        typer.echo(ctx.get_help())
        raise typer.Exit(code=EXIT_USAGE)

    ctx.obj = GlobalOptions(
        home=home,
        verbose=verbose,
        debug=debug,
        catalog=catalog,
        files=files or [],
        foreign_catalog=foreign_catalog,
        urls=urls or [],
        auto_yes=auto_yes,
        non_interactive=non_interactive,
        show_progress=not no_download_progress,
        properties=properties or [],
    )


def _run(ctx: typer.Context, command_name: str, parameters: list[str], **handler_options) -> None:
    options: GlobalOptions = ctx.obj
    handler = build_command_table()[command_name](**handler_options)
    err_console = Console(stderr=True)

    def env_factory() -> Environment:
        # Source options are checked before anything is read or downloaded
        selection = select_sources(
            files=options.files,
            catalog=options.catalog,
            foreign_catalog=options.foreign_catalog,
            urls=options.urls,
        )
        config = InstallerConfig(
            home=find_home(options.home),
            verbose=options.verbose,
            debug=options.debug,
            auto_yes=options.auto_yes,
            non_interactive=options.non_interactive,
            show_progress=options.show_progress,
            properties=parse_properties(options.properties),
        )
        return Environment.create(config, selection, parameters, err_console=err_console)

    def early_error(message: str) -> None:
        err_console.print(f"Error: {message}", style="red", markup=False)

    raise typer.Exit(code=dispatch(handler, env_factory, early_error))


@app.command("install")
def install(
    ctx: typer.Context,
    components: list[str] | None = typer.Argument(None, help="Component ids (catalog installs)."),
    replace: bool = typer.Option(
        False, "--replace", "-r", help="Overwrite existing files and reinstall installed components."
    ),
) -> None:
    """Install components."""
    _run(ctx, "install", components or [], replace=replace)


@app.command("uninstall")
def uninstall(
    ctx: typer.Context,
    components: list[str] | None = typer.Argument(None, help="Installed component ids."),
) -> None:
    """Uninstall components."""
    _run(ctx, "uninstall", components or [])


@app.command("list")
def list_installed(
    ctx: typer.Context,
    components: list[str] | None = typer.Argument(None, help="Only show these components."),
) -> None:
    """List installed components."""
    _run(ctx, "list", components or [])


@app.command("available")
def available(
    ctx: typer.Context,
    components: list[str] | None = typer.Argument(None, help="Only show these components."),
) -> None:
    """List components available in the catalog."""
    _run(ctx, "available", components or [])


@app.command("info")
def info(
    ctx: typer.Context,
    components: list[str] | None = typer.Argument(None, help="Component ids (catalog only)."),
) -> None:
    """Show component details."""
    _run(ctx, "info", components or [])


@app.command(
    "rebuild-images",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def rebuild_images_command(ctx: typer.Context) -> None:
    """Rebuild native images of the installation."""
    _run(ctx, "rebuild-images", list(ctx.args))


def _click_exceptions() -> ModuleType:
    """Exceptions module of the click implementation typer builds its commands on."""
    command = typer.main.get_command(app)
    for cls in type(command).__mro__:
        if cls.__name__ in ("Group", "Command") and cls.__module__.endswith(".core"):
            return importlib.import_module(cls.__module__.rsplit(".", 1)[0] + ".exceptions")
    return click.exceptions


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return its exit code instead of exiting."""
    exceptions = _click_exceptions()
    try:
        result = app(args=argv, prog_name="gu", standalone_mode=False)
    except (exceptions.UsageError, click.UsageError) as e:
        e.show()
        return EXIT_USAGE
    except (exceptions.Abort, click.Abort):
        return EXIT_ABORTED
    return result if isinstance(result, int) else EXIT_OK


def run() -> None:
    sys.exit(main())
