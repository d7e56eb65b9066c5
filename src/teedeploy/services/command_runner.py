"""Subprocess execution service for teedeploy."""

import subprocess
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Tuple

from teedeploy.errors import DeployerError

TAIL_LINES = 40


@dataclass(frozen=True)
class StreamResult:
    returncode: int
    tail: Tuple[str, ...]

    @property
    def output(self) -> str:
        return "\n".join(self.tail)


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
            )
        except FileNotFoundError as exc:
            raise DeployerError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise DeployerError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0 or not check:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        raise DeployerError(message)

    def stream(self, cmd: List[str], on_line: Optional[Callable[[str], None]] = None) -> StreamResult:
        """Runs a command, passing each output line through as it arrives.

        Returns only after the process has exited. The last lines of combined
        stdout/stderr are kept for error classification.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Streaming: %s", cmd_str)

        try:
            process = self.subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as exc:
            raise DeployerError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc

        last_lines: Deque[str] = deque(maxlen=TAIL_LINES)
        with process:
            if process.stdout is not None:
                for raw_line in process.stdout:
                    line = raw_line.rstrip()
                    last_lines.append(line)
                    if on_line is not None:
                        on_line(line)
            returncode = process.wait()

        return StreamResult(returncode=returncode, tail=tuple(last_lines))
