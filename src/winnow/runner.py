# Copyright (c) Syntropy Systems
"""Process runner for command-line simulators, with orphan prevention."""
from __future__ import annotations

import contextlib
import ctypes
import json
import os
import signal
import subprocess
import sys
import tempfile
import time
from typing import IO, TYPE_CHECKING, cast

if TYPE_CHECKING:
    from pathlib import Path


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so child dies when parent dies.

    This prevents orphan simulator processes when the engine crashes.
    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        # Can't set PDEATHSIG, continue without it
        return


def substitute_templates(argv: list[str], replication: int, seed: int) -> list[str]:
    """Replace {{replication}} and {{seed}} in command argv."""
    result = []
    for arg in argv:
        arg = arg.replace("{{replication}}", str(replication))
        arg = arg.replace("{{seed}}", str(seed))
        result.append(arg)
    return result


def parse_response(output: str, response: str) -> float:
    """Extract a response value from simulator stdout.

    The last non-empty line is either a bare number or a JSON object
    holding the response by name.
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        msg = "Simulator produced no output"
        raise ValueError(msg)
    last = lines[-1]

    with contextlib.suppress(ValueError):
        return float(last)

    try:
        record = cast("object", json.loads(last))
    except json.JSONDecodeError as e:
        msg = f"Could not parse simulator output: {last!r}"
        raise ValueError(msg) from e
    if isinstance(record, dict):
        record_dict = cast("dict[str, object]", record)
        value = record_dict.get(response)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    msg = f"Simulator output has no numeric '{response}'"
    raise ValueError(msg)


class ReplicationRunner:
    """Runs one replication of a command-line simulator.

    Features:
    - Uses start_new_session=True for reliable process group
    - Sets PDEATHSIG on Linux to prevent orphans
    - Captures stdout to a temporary file for the response value
    - Provides graceful and forceful termination
    """

    command_argv: list[str]
    workdir: Path | None
    env: dict[str, str]
    _process: subprocess.Popen[bytes] | None
    _exit_code: int | None
    _stdout: str
    _output_file: IO[str] | None

    def __init__(
        self,
        command_argv: list[str],
        workdir: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize a replication runner.

        Args:
            command_argv: Command as list of argv tokens (no shell)
            workdir: Working directory to run the command in
            env: Additional environment variables

        """
        self.command_argv = command_argv
        self.workdir = workdir

        # Merge environment
        self.env = os.environ.copy()
        if env:
            self.env.update(env)

        self._process = None
        self._exit_code = None
        self._stdout = ""
        self._output_file = None

    def start(self) -> None:
        """Start the simulator process."""
        # A file rather than a pipe, so a chatty simulator never blocks
        self._output_file = tempfile.TemporaryFile("w+")

        self._process = subprocess.Popen(  # noqa: S603
            self.command_argv,
            stdout=self._output_file,
            stderr=subprocess.DEVNULL,
            env=self.env,
            cwd=str(self.workdir) if self.workdir is not None else None,
            start_new_session=True,  # Creates new process group
            preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
        )

    def poll(self) -> int | None:
        """Check if process has finished.

        Returns exit code if finished, None if still running.
        """
        if self._process is None:
            return self._exit_code

        code = self._process.poll()
        if code is not None:
            self._collect()
        return code

    def wait(self) -> int:
        """Wait for the process to finish and return exit code."""
        if self._process is None:
            return self._exit_code or 0
        self._collect()
        return self._exit_code or 0

    def kill(self, grace_period: float = 10.0) -> int:
        """Kill the simulator process.

        First sends SIGTERM to the process group, waits for grace_period,
        then sends SIGKILL if still alive.

        Args:
            grace_period: Seconds to wait after SIGTERM before SIGKILL

        Returns:
            Exit code (negative signal number if killed)

        """
        if self._process is None:
            return self._exit_code or 0

        # Already finished?
        if self._process.poll() is not None:
            self._collect()
            return self._exit_code or 0

        # Get the process group ID (same as session ID with start_new_session)
        try:
            pgid = os.getpgid(self._process.pid)
        except (OSError, ProcessLookupError):
            # Process already gone
            return self._exit_code or -signal.SIGKILL

        # Send SIGTERM to process group
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGTERM)

        # Wait for grace period
        deadline = time.time() + grace_period
        while time.time() < deadline:
            if self._process.poll() is not None:
                self._collect()
                return self._exit_code or 0
            time.sleep(0.1)

        # Still alive - SIGKILL
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)

        self._collect(timeout=5.0)
        return self._exit_code or -signal.SIGKILL

    def _collect(self, timeout: float | None = None) -> None:
        """Wait for exit, read captured stdout and release the file."""
        if self._process is None:
            return
        with contextlib.suppress(subprocess.TimeoutExpired):
            _ = self._process.wait(timeout=timeout)
        self._exit_code = self._process.returncode
        self._cleanup()

    def _cleanup(self) -> None:
        """Cleanup resources."""
        if self._output_file:
            with contextlib.suppress(OSError, ValueError):
                _ = self._output_file.seek(0)
                self._stdout = self._output_file.read()
            with contextlib.suppress(Exception):
                self._output_file.close()
            self._output_file = None

    @property
    def pid(self) -> int | None:
        """Get the process ID."""
        if self._process is None:
            return None
        return self._process.pid

    @property
    def exit_code(self) -> int | None:
        """Get the exit code if finished."""
        return self._exit_code

    @property
    def stdout(self) -> str:
        """Output captured so far."""
        return self._stdout

    @property
    def is_running(self) -> bool:
        """Check if the process is still running."""
        if self._process is None:
            return False
        return self._process.poll() is None
