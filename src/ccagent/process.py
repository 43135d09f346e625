"""Synchronous execution of external commands.

Every git call and every CLI agent invocation goes through run_command, which
captures stdout/stderr and either raises on a nonzero exit or hands the status
back to the caller. Capture is bounded: a child that writes more than the
limit to either stream is killed.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Union

from ccagent.errors import CommandFailed, OutputLimitExceeded

logger = logging.getLogger(__name__)

# Per-stream capture bound (20 MiB)
MAX_OUTPUT_BYTES = 20 * 1024 * 1024

READ_CHUNK_BYTES = 64 * 1024


@dataclass
class CommandResult:
    """Result of an external command."""

    status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.status == 0


def _drain(
    stream: IO[bytes],
    chunks: list[bytes],
    limit: int,
    overflow: threading.Event,
    process: subprocess.Popen,
) -> None:
    """Read a pipe into chunks, killing the process once limit is passed."""
    total = 0
    try:
        while True:
            chunk = stream.read1(READ_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                overflow.set()
                process.kill()
                break
            chunks.append(chunk)
    finally:
        stream.close()


def run_command(
    command: str,
    args: Optional[list[str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[dict[str, str]] = None,
    allow_failure: bool = False,
    max_output: int = MAX_OUTPUT_BYTES,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        command: Executable name or path
        args: Arguments passed to the executable
        cwd: Working directory (defaults to the current directory)
        env: Extra environment variables merged over os.environ
        allow_failure: If True, a nonzero exit is returned instead of raised
        max_output: Maximum bytes captured per stream; the child is killed
            as soon as either stream goes past it

    Returns:
        CommandResult with status, stdout and stderr

    Raises:
        CommandFailed: If the command cannot be spawned, or exits nonzero
            while allow_failure is False
        OutputLimitExceeded: If either stream exceeds max_output
    """
    argv = [command] + list(args or [])
    merged_env = {**os.environ, **env} if env else None

    logger.debug(f"Running: {argv[0]} ({len(argv) - 1} args) in {cwd or os.getcwd()}")
    try:
        process = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise CommandFailed(argv, None, str(e), original_error=e) from e

    overflow = threading.Event()
    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    readers = [
        threading.Thread(
            target=_drain,
            args=(process.stdout, stdout_chunks, max_output, overflow, process),
            daemon=True,
        ),
        threading.Thread(
            target=_drain,
            args=(process.stderr, stderr_chunks, max_output, overflow, process),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    try:
        for reader in readers:
            reader.join()
        returncode = process.wait()
    except KeyboardInterrupt:
        process.kill()
        raise

    if overflow.is_set():
        raise OutputLimitExceeded(
            argv,
            returncode,
            f"Output exceeded {max_output} bytes",
        )

    stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
    stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")

    if not allow_failure and returncode != 0:
        raise CommandFailed(argv, returncode, stderr.strip() or stdout.strip())

    return CommandResult(status=returncode, stdout=stdout, stderr=stderr)
