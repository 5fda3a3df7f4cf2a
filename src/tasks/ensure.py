"""terraform:ensure task: check the terraform binary is usable."""

import logging
from typing import Optional

from config import Settings, load_settings
from parameters import TaskArguments
from tasks import Task, TaskRegistry
from terraform import Terraform, locate_binary

logger = logging.getLogger(__name__)

NAME = 'terraform:ensure'


def define(registry: TaskRegistry, settings: Optional[Settings] = None) -> Task:
    """Register terraform:ensure at the top level of `registry`."""
    settings = settings or load_settings()

    def ensure(_arguments: TaskArguments) -> None:
        path = locate_binary(settings.terraform_binary)
        version = Terraform(binary=path).version()
        logger.info(f"[{NAME}] Using {path} ({version or 'unknown version'})")

    return registry.define(
        Task(
            name=NAME,
            action=ensure,
            description=f"Ensure {settings.terraform_binary} is installed",
        ),
        scoped=False
    )
