"""External program actions.

Runs scanners, image builders and registry clients as child processes of the
engine. Credentials reach the child only through its environment; the
combined stdout/stderr stream goes to the stage's build log with every
credential value masked.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import shlex
from collections.abc import Collection, Mapping, Sequence
from pathlib import Path
from typing import TextIO

from shipline.kernel.logging import get_logger
from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction
from shipline.kernel.utils.redaction import redact

logger = get_logger(__name__)

EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126
TERMINATE_GRACE_SECONDS = 5.0
READ_CHUNK_SIZE = 64 * 1024


async def run_command(
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    log_path: Path | None = None,
    redactions: frozenset[str] = frozenset(),
    unset_env: Collection[str] = (),
) -> int:
    """Run ``args`` and return its exit status.

    The child inherits the engine's environment without the variables in
    ``unset_env``, overlaid with ``env``. Output is appended to ``log_path``
    (redacted), or discarded.

    A missing executable gives 127 and a non-executable one 126, like a
    shell would. If reading the output fails or the caller is cancelled,
    the child is terminated before the error propagates.
    """
    command_line = redact(shlex.join(args), redactions)
    child_env = {name: value for name, value in os.environ.items() if name not in unset_env}
    child_env.update(env or {})

    log_file: TextIO | None = None
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = log_path.open("a", encoding="utf-8")

    output = asyncio.subprocess.PIPE if log_file is not None else asyncio.subprocess.DEVNULL
    try:
        if log_file is not None:
            log_file.write(f"$ {command_line}\n")
            log_file.flush()
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                env=child_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=output,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return _spawn_failed(log_file, command_line, "command not found", EXIT_NOT_FOUND)
        except PermissionError:
            return _spawn_failed(log_file, command_line, "permission denied", EXIT_NOT_EXECUTABLE)

        logger.debug("Started pid {}: {}", process.pid, command_line)
        try:
            if process.stdout is not None and log_file is not None:
                await _copy_output(process.stdout, log_file, redactions)
            status = await process.wait()
        except BaseException:
            await _terminate(process)
            raise
    finally:
        if log_file is not None:
            log_file.close()

    logger.debug("Command exited with status {}: {}", status, command_line)
    return status


async def _copy_output(
    stream: asyncio.StreamReader, log_file: TextIO, redactions: frozenset[str]
) -> None:
    """Copy the child's output into the log, masking secrets.

    Complete lines are masked and written as they arrive. A line longer than
    one read is flushed in pieces, holding back enough characters that a
    secret split across two reads is still masked.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    hold_back = max((len(value) for value in redactions if value), default=1) - 1
    pending = ""
    while chunk := await stream.read(READ_CHUNK_SIZE):
        pending += decoder.decode(chunk)
        lines, newline, pending = pending.rpartition("\n")
        if newline:
            log_file.write(redact(lines + newline, redactions))
        if len(pending) > READ_CHUNK_SIZE:
            pending = redact(pending, redactions)
            cut = len(pending) - hold_back
            log_file.write(pending[:cut])
            pending = pending[cut:]
    pending += decoder.decode(b"", final=True)
    if pending:
        log_file.write(redact(pending, redactions))


def _spawn_failed(log_file: TextIO | None, command_line: str, reason: str, status: int) -> int:
    logger.warning("Cannot run {}: {}", command_line, reason)
    if log_file is not None:
        log_file.write(f"shipline: {reason}\n")
    return status


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
    logger.warning("Terminated pid {}", process.pid)


class CommandAction(StageAction):
    """Runs the stage's argument list as a child process in the workspace.

    Examples
    --------
    Manifest usage::

        - name: build
          action:
            kind: command
            args: [docker, build, -t, "backend:${tag}", .]
    """

    async def aexecute(self, invocation: ActionInvocation) -> ActionResult:
        status = await run_command(
            invocation.args,
            env=invocation.env,
            cwd=invocation.workspace,
            log_path=invocation.log_path,
            redactions=invocation.redactions,
            unset_env=invocation.unset_env,
        )
        detail = None
        if status == EXIT_NOT_FOUND:
            detail = f"command not found: {invocation.args[0]}"
        elif status == EXIT_NOT_EXECUTABLE:
            detail = f"command not executable: {invocation.args[0]}"
        return ActionResult(exit_status=status, detail=detail)
