"""Common utilities and types for terraform task orchestration."""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CYAN = '\033[36m'
RESET = '\033[0m'


class TaskError(Exception):
    """Base exception for task definition and execution errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    With capture=False the command inherits the terminal, so stdout and
    stderr come back empty.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout or '', result.stderr or ''
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def print_status(message: str, color: bool = True) -> None:
    """Print a status line, in cyan when color is enabled on a terminal."""
    if color and sys.stdout.isatty():
        print(f"{CYAN}{message}{RESET}")
    else:
        print(message)
