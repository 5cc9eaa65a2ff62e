"""Async external command execution with consistent logging."""

import asyncio
import logging
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ..exceptions import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


async def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
) -> CmdResult:
    """Run a command and capture its output.

    Args:
        argv: Program and arguments
        check: Raise on a non-zero exit status
        env: Extra environment variables
        cwd: Working directory
        input_text: Text written to the command's stdin

    Returns:
        CmdResult

    Raises:
        CommandError: If ``check`` is set and the command fails, or the
            program cannot be started
    """
    argv_list = list(argv)
    logger.info("CMD %s", format_argv(argv_list))

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv_list,
            stdin=asyncio.subprocess.PIPE if input_text is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
    except OSError as e:
        raise CommandError(argv_list, 127, str(e)) from e

    stdout, stderr = await proc.communicate(
        input_text.encode("utf-8") if input_text is not None else None
    )
    result = CmdResult(
        argv=argv_list,
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )

    if result.stdout:
        logger.debug("STDOUT %s", result.stdout.strip())
    if result.stderr:
        logger.debug("STDERR %s", result.stderr.strip())

    if check and result.returncode != 0:
        raise CommandError(argv_list, result.returncode, result.stderr)

    return result
