"""Runs the external Bluetooth diagnostic report command."""

import logging
import subprocess
from typing import Sequence

log = logging.getLogger(__name__)

DEFAULT_COMMAND = ("system_profiler", "SPBluetoothDataType")
DEFAULT_TIMEOUT_SECONDS = 15.0


class DiagnosticCollector:
    """Blocking, bounded invocation of the diagnostic command.

    Every failure (missing binary, non-zero exit, timeout, undecodable
    output) yields an empty string. Call it off the event loop.
    """

    def __init__(self, command: Sequence[str] = DEFAULT_COMMAND,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.command = list(command)
        self.timeout = timeout

    def collect(self) -> str:
        if not self.command:
            return ""
        try:
            proc = subprocess.run(
                self.command,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            log.debug("Diagnostic command not found: %s", self.command[0])
            return ""
        except subprocess.TimeoutExpired:
            log.debug("Diagnostic command timed out after %.0fs", self.timeout)
            return ""
        except OSError as e:
            log.debug("Diagnostic command failed to start: %s", e)
            return ""

        if proc.returncode != 0:
            log.debug("%s exited with status %d", self.command[0], proc.returncode)
            return ""

        try:
            return proc.stdout.decode("utf-8")
        except UnicodeDecodeError:
            log.debug("Diagnostic output is not valid UTF-8")
            return ""
