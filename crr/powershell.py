"""
Thin wrapper around powershell.exe for the cluster and scheduler cmdlets.
"""

import json
import subprocess
from typing import Any, List, Optional

from loguru import logger


class PowerShellError(Exception):
    """Raised when a PowerShell command fails, times out or returns garbage."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


def ps_quote(value: str) -> str:
    """Quote a value as a single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


class PowerShellRunner:
    """Runs PowerShell scripts in a non-interactive child process."""

    def __init__(self, executable: str = "powershell.exe", timeout: int = 120):
        self.executable = executable
        self.timeout = timeout

    def run(self, script: str, timeout: Optional[int] = None) -> str:
        """
        Execute a script and return its stdout.

        Args:
            script: PowerShell script text
            timeout: Timeout in seconds (defaults to the runner's timeout)

        Returns:
            Captured standard output

        Raises:
            PowerShellError: on non-zero exit, timeout or launch failure
        """
        # Terminating errors must produce a non-zero exit code
        wrapped = "$ErrorActionPreference = 'Stop'; " + script
        cmd = [self.executable, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", wrapped]
        logger.debug(f"Running PowerShell: {script}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise PowerShellError(f"PowerShell command timed out after {e.timeout}s") from e
        except OSError as e:
            raise PowerShellError(f"Failed to launch {self.executable}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise PowerShellError(
                f"PowerShell command failed with exit code {result.returncode}: {stderr or 'no error output'}",
                returncode=result.returncode,
                stderr=stderr,
            )

        return result.stdout

    def run_json(self, script: str, timeout: Optional[int] = None) -> Any:
        """Run a script whose output is piped through ConvertTo-Json; None if it printed nothing."""
        output = self.run(f"{script} | ConvertTo-Json -Compress -Depth 4", timeout=timeout).strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise PowerShellError(f"Could not parse PowerShell JSON output: {e}") from e

    def run_json_list(self, script: str, timeout: Optional[int] = None) -> List[Any]:
        """Like run_json, but always returns a list (ConvertTo-Json unwraps single items)."""
        data = self.run_json(script, timeout=timeout)
        if data is None:
            return []
        if isinstance(data, list):
            return data
        return [data]
