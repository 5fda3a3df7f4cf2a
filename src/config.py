"""Settings and task file discovery.

Settings are merged from, lowest to highest precedence:
- Settings dataclass defaults
- the `settings:` section of the task file
- TF_TASKS_* environment variables

Task file resolution order:
1. Explicit --file path
2. $TF_TASKS_FILE environment variable
3. tasks.yaml or terraform-tasks.yaml in the current directory
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

TASK_FILE_NAMES = ('tasks.yaml', 'terraform-tasks.yaml')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class Settings:
    """How terraform is invoked."""
    terraform_binary: str = 'terraform'  # e.g., "tofu" for OpenTofu
    timeout: Optional[int] = None  # seconds per terraform command, None = wait forever
    tasks_file: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.tasks_file, str):
            self.tasks_file = Path(self.tasks_file)
        self.timeout = _parse_timeout(self.timeout)

    def apply(self, data: dict) -> None:
        """Apply values from a `settings:` mapping."""
        if not isinstance(data, dict):
            raise ConfigError(f"settings must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(self)}
        for key, value in data.items():
            if key not in known:
                raise ConfigError(f"Unknown setting: {key}. Available: {', '.join(sorted(known))}")
            setattr(self, key, value)
        self.__post_init__()

    def apply_environment(self, environ: Optional[dict] = None) -> None:
        """Apply TF_TASKS_* overrides."""
        environ = os.environ if environ is None else environ
        if binary := environ.get('TF_TASKS_BINARY'):
            self.terraform_binary = binary
        if timeout := environ.get('TF_TASKS_TIMEOUT'):
            self.timeout = _parse_timeout(timeout)
        if tasks_file := environ.get('TF_TASKS_FILE'):
            self.tasks_file = Path(tasks_file)


def _parse_timeout(value) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        timeout = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid timeout: {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {timeout}")
    return timeout


def parse_yaml(path: Path) -> dict:
    """Parse a YAML file whose top level is a mapping."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def load_settings(data: Optional[dict] = None, environ: Optional[dict] = None) -> Settings:
    """Build Settings from a `settings:` mapping plus the environment."""
    settings = Settings()
    if data:
        settings.apply(data)
    settings.apply_environment(environ)
    return settings


def find_tasks_file(
    explicit: Optional[Path] = None,
    environ: Optional[dict] = None,
    cwd: Optional[Path] = None
) -> Path:
    """Discover the task file (see module docstring for order)."""
    environ = os.environ if environ is None else environ

    # 1. Explicit path (highest priority)
    if explicit:
        path = Path(explicit)
        if path.is_file():
            return path
        raise ConfigError(f"Task file {path} does not exist")

    # 2. Environment variable
    if env_path := environ.get('TF_TASKS_FILE'):
        path = Path(env_path)
        if path.is_file():
            return path
        raise ConfigError(f"TF_TASKS_FILE={env_path} does not exist")

    # 3. Well-known names in the current directory
    base = Path(cwd) if cwd else Path.cwd()
    for name in TASK_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate

    raise ConfigError(
        "No task file found. "
        f"Pass --file, set TF_TASKS_FILE, or create {' or '.join(TASK_FILE_NAMES)}."
    )
