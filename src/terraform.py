"""Terraform command-line client.

Builds argv for `terraform init` and `terraform plan` from option bags and
runs them from a working directory. Options left out of a bag produce no
flag at all; only the options a caller passes show up on the command line.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Optional

from common import TaskError, run_command

logger = logging.getLogger(__name__)


class TerraformError(TaskError):
    """A terraform command failed or could not be started."""

    def __init__(self, command: str, returncode: int, detail: str = ''):
        self.command = command
        self.returncode = returncode
        message = f"terraform {command} failed (exit {returncode})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__("E301", message)


class TerraformNotFound(TaskError):
    """The terraform binary is not on PATH."""

    def __init__(self, binary: str):
        self.binary = binary
        super().__init__("E302", f"{binary} not found on PATH")


def format_value(value: Any) -> str:
    """Render a value for -var or -backend-config."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


def locate_binary(binary: str) -> str:
    """Return the full path of `binary`, raising TerraformNotFound if missing."""
    path = shutil.which(binary)
    if path is None:
        raise TerraformNotFound(binary)
    return path


class Terraform:
    """Issues terraform commands from a fixed working directory."""

    def __init__(
        self,
        binary: str = 'terraform',
        cwd: Optional[Path] = None,
        timeout: Optional[int] = None,
        debug: bool = False
    ):
        self.binary = binary
        self.cwd = cwd
        self.timeout = timeout
        self.debug = debug

    def init_command(
        self,
        backend_config: Optional[dict] = None,
        no_color: bool = False
    ) -> list[str]:
        cmd = [self.binary, 'init']
        for key, value in (backend_config or {}).items():
            cmd.append(f'-backend-config={key}={format_value(value)}')
        if no_color:
            cmd.append('-no-color')
        return cmd

    def plan_command(
        self,
        no_color: bool = False,
        destroy: bool = False,
        state: Optional[str] = None,
        plan: Optional[str] = None,
        vars: Optional[dict] = None,  # pylint: disable=redefined-builtin
        var_file: Optional[str] = None
    ) -> list[str]:
        cmd = [self.binary, 'plan']
        if destroy:
            cmd.append('-destroy')
        if no_color:
            cmd.append('-no-color')
        if state is not None:
            cmd.append(f'-state={state}')
        if plan is not None:
            cmd.append(f'-out={plan}')
        for key, value in (vars or {}).items():
            cmd.extend(['-var', f'{key}={format_value(value)}'])
        if var_file is not None:
            cmd.append(f'-var-file={var_file}')
        return cmd

    def init(self, **options) -> None:
        """Run terraform init. Raises TerraformError on failure."""
        self._run('init', self.init_command(**options))

    def plan(self, **options) -> None:
        """Run terraform plan. Raises TerraformError on failure."""
        self._run('plan', self.plan_command(**options))

    def version(self) -> str:
        """Return the first line of `terraform version`."""
        rc, out, err = run_command([self.binary, 'version'], cwd=self.cwd, timeout=30)
        if rc != 0:
            raise TerraformError('version', rc, err.strip())
        return out.strip().splitlines()[0] if out.strip() else ''

    def _environment(self) -> Optional[dict]:
        if self.debug:
            return {**os.environ, 'TF_LOG': 'DEBUG'}
        return None

    def _run(self, command: str, cmd: list[str]) -> None:
        level = logging.INFO if self.debug else logging.DEBUG
        logger.log(level, f"Running in {self.cwd}: {' '.join(cmd)}")
        rc, _, err = run_command(
            cmd,
            cwd=self.cwd,
            timeout=self.timeout,
            capture=False,
            env=self._environment()
        )
        if rc != 0:
            raise TerraformError(command, rc, err.strip())
