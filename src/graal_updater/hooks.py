"""External hook commands (post-install hooks, image rebuilding).

Hooks are opaque executables inside the installation; the installer only
runs them and reports their exit status.
"""

import logging
import shlex
import subprocess
from pathlib import Path

from .exceptions import HookError
from .schema import ComponentDescriptor

logger = logging.getLogger(__name__)

REBUILD_IMAGES_PATH = Path("bin") / "rebuild-images"


def _run(command: list[str], home: Path) -> int:
    executable = Path(command[0])
    if not executable.is_absolute():
        executable = home / executable
    if not executable.exists():
        raise FileNotFoundError(f"Hook command not found: {executable}")

    logger.debug(f"Running {executable} {' '.join(command[1:])} in {home}")
    try:
        completed = subprocess.run([str(executable), *command[1:]], cwd=home, check=False)
    except OSError as e:
        raise HookError(f"Cannot run {executable}: {e}", context={"command": str(executable)}) from e
    return completed.returncode


def run_post_install(descriptor: ComponentDescriptor, home: Path) -> None:
    """
    Run a component's post-install hook, if it declares one.

    The command is relative to the installation root and runs with the root
    as working directory.

    Raises:
        FileNotFoundError: If the hook executable is missing
        HookError: If the hook cannot run or exits non-zero
    """
    if not descriptor.post_install:
        return
    command = shlex.split(descriptor.post_install)
    returncode = _run(command, home)
    if returncode != 0:
        raise HookError(
            f"Post-install hook of {descriptor.id} failed with exit code {returncode}",
            context={"component": descriptor.id, "returncode": returncode},
        )
    logger.info(f"Post-install hook of {descriptor.id} completed")


def rebuild_images(home: Path, arguments: list[str]) -> int:
    """
    Run the installation's ``rebuild-images`` tool.

    Returns:
        The tool's exit code

    Raises:
        FileNotFoundError: If the tool is not part of the installation
    """
    return _run([str(REBUILD_IMAGES_PATH), *arguments], home)
