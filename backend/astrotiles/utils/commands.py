"""Execution wrapper for the external command-line tools.

This module runs the tools the tiling workflow depends on (``gdal2tiles``
through a Python interpreter and ``azcopy`` for Azure transfers) as
subprocesses. Their output is not captured: the child inherits the parent's
stdout and stderr so progress bars and errors land in the service log.

Each call produces exactly one outcome. A zero exit status returns normally;
a nonzero exit status or a failure to start the process at all raises
CommandError. Nothing here retries.

Example:
    Run gdal2tiles:
        >>> from astrotiles.utils.commands import run_command, CommandError

        >>> try:
        ...     run_command([
        ...         "python", "-m", "osgeo_utils.gdal2tiles",
        ...         "--xyz", "-z", "0-5", "input.tif", "tiles/"
        ...     ])
        ... except CommandError as e:
        ...     print(f"Tiling failed: {e} (exit code {e.returncode})")
"""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

from astrotiles.core.logging import get_logger

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

LOGGER = get_logger(__name__)


class CommandError(RuntimeError):
    """Exception raised when an external command fails.

    Raised when the command exits with a non-zero status code, or when it
    cannot be spawned at all (for instance because the executable is not on
    PATH). In the latter case ``returncode`` is None and the underlying
    OSError is chained as ``__cause__``.

    Attributes:
        command: The argument list that was executed.
        returncode: Exit status of the process, None if it never started.
    """

    def __init__(
        self,
        message: str,
        command: list[str],
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode


def run_command(
    command: Iterable[str | pathlib.Path],
    workdir: pathlib.Path | None = None,
) -> None:
    """Execute a command and raise on non-zero exit.

    Args:
        command: Iterable arguments to execute (e.g., ["azcopy", "sync", ...]).
        workdir: Optional working directory for the command execution.

    Raises:
        CommandError: if the command exits with a non-zero status code or
            cannot be started.
    """
    args = [str(part) for part in command]
    LOGGER.debug("running command", extra={"command": args})
    try:
        result = subprocess.run(args, cwd=workdir, check=False)
    except OSError as exc:
        raise CommandError(f"{args[0]} could not be started: {exc}", args) from exc

    if result.returncode != 0:
        raise CommandError(
            f"{args[0]} exited {result.returncode}",
            args,
            result.returncode,
        )
