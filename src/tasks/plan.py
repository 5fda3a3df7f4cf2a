"""Plan task: stage a terraform configuration and run init + plan.

Defining a plan task:

    PlanTask.define(
        argument_names=['deployment_identifier', 'bucket_name'],
        configuration_name='network',
        source_directory='infra/network',
        work_directory='build',
        backend_config=lambda args, t: {
            'bucket': args.bucket_name,
            'key': f'{t.configuration_name}.tfstate',
        },
        vars=lambda args, t: {
            'deployment_identifier': args.deployment_identifier,
            'state_bucket': t.backend_config['bucket'],
        },
    )

or with a configuration block that assigns attributes on `t`. Callables are
factories, called as factory(args, t) at invocation time, where `t` holds the
parameters resolved so far. Parameters resolve in PLAN_PARAMETERS order.

Invoking the task:
1. Resolves all parameters (MissingRequiredParameter before any side effect)
2. Prints "Planning <configuration_name>"
3. Stages source_directory into work_directory/source_directory
4. Runs `terraform init` then `terraform plan` from the staged directory

A destroy plan is still `terraform plan`, with -destroy.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from common import print_status
from config import Settings, load_settings
from parameters import ABSENT, Parameter, ParameterSet, TaskArguments
from staging import WorkingContext, configuration_directory_for, stage, working_context
from tasks import Task, TaskRegistry, default_registry
from tasks import ensure
from terraform import Terraform

logger = logging.getLogger(__name__)

DEFAULT_NAME = 'plan'
DEFAULT_ENSURE_TASK = ensure.NAME

# Declaration order is resolution order
PLAN_PARAMETERS = (
    Parameter('configuration_name', required=True),
    Parameter('source_directory', required=True),
    Parameter('work_directory', required=True),
    Parameter('backend_config'),
    Parameter('vars', default={}),
    Parameter('var_file'),
    Parameter('state_file'),
    Parameter('debug', default=False),
    Parameter('no_color', default=False),
    Parameter('plan_file'),
    Parameter('destroy', default=False),
)


@dataclass
class PlanInvocation:
    """Fully resolved parameters for one run of a plan task."""
    configuration_name: str
    source_directory: str
    work_directory: str
    backend_config: Any = ABSENT
    vars: dict = field(default_factory=dict)
    var_file: Any = ABSENT
    state_file: Any = ABSENT
    debug: bool = False
    no_color: bool = False
    plan_file: Any = ABSENT
    destroy: bool = False
    arguments: TaskArguments = field(default_factory=TaskArguments)

    @property
    def configuration_directory(self) -> Path:
        return configuration_directory_for(self.source_directory, self.work_directory)

    @classmethod
    def from_resolved(cls, resolved, arguments: TaskArguments) -> 'PlanInvocation':
        values = resolved.to_dict()
        names = {f.name for f in fields(cls)}
        return cls(arguments=arguments, **{k: v for k, v in values.items() if k in names})


def init_options(invocation: PlanInvocation) -> dict:
    """Options for terraform init. Absent backend config is left out."""
    options: dict[str, Any] = {}
    if invocation.backend_config is not ABSENT:
        options['backend_config'] = invocation.backend_config
    options['no_color'] = invocation.no_color
    return options


def plan_options(invocation: PlanInvocation) -> dict:
    """Options for terraform plan. Absent paths are left out."""
    options: dict[str, Any] = {
        'no_color': invocation.no_color,
        'destroy': invocation.destroy,
    }
    if invocation.state_file is not ABSENT:
        options['state'] = invocation.state_file
    if invocation.plan_file is not ABSENT:
        options['plan'] = invocation.plan_file
    options['vars'] = invocation.vars
    if invocation.var_file is not ABSENT:
        options['var_file'] = invocation.var_file
    return options


class PlanTask:
    """Definition of a terraform plan task."""

    def __init__(
        self,
        name: str = DEFAULT_NAME,
        argument_names: Sequence[str] = (),
        ensure_task_name: Optional[str] = DEFAULT_ENSURE_TASK,
        description: Optional[str] = None,
        settings: Optional[Settings] = None
    ):
        self.name = name
        self.argument_names = list(argument_names)
        self.ensure_task_name = ensure_task_name
        self.settings = settings or load_settings()
        self.options = ParameterSet(PLAN_PARAMETERS)
        self.task: Optional[Task] = None
        self._description = description

    @classmethod
    def define(
        cls,
        configure: Optional[Callable[[ParameterSet], None]] = None,
        *,
        name: str = DEFAULT_NAME,
        argument_names: Sequence[str] = (),
        ensure_task_name: Optional[str] = DEFAULT_ENSURE_TASK,
        description: Optional[str] = None,
        settings: Optional[Settings] = None,
        registry: Optional[TaskRegistry] = None,
        **options: Any
    ) -> 'PlanTask':
        """Build a plan task from options and/or a block, and register it."""
        definition = cls(
            name=name,
            argument_names=argument_names,
            ensure_task_name=ensure_task_name,
            description=description,
            settings=settings,
        )
        definition.options.update(options)
        if configure is not None:
            configure(definition.options)
        definition.register(registry if registry is not None else default_registry())
        return definition

    @property
    def description(self) -> str:
        if self._description:
            return self._description
        configuration_name = self.options.literal('configuration_name')
        if configuration_name is None:
            return 'Plan terraform configuration'
        return f'Plan {configuration_name} using terraform'

    @property
    def prerequisites(self) -> list[str]:
        return [self.ensure_task_name] if self.ensure_task_name else []

    def register(self, registry: TaskRegistry) -> Task:
        if self.ensure_task_name == DEFAULT_ENSURE_TASK and DEFAULT_ENSURE_TASK not in registry:
            ensure.define(registry, settings=self.settings)
        self.task = registry.define(Task(
            name=self.name,
            action=self.execute,
            description=self.description,
            prerequisites=self.prerequisites,
            argument_names=list(self.argument_names),
            preview=self.preview,
        ))
        return self.task

    @property
    def qualified_name(self) -> str:
        return self.task.name if self.task else self.name

    def resolve(self, arguments: TaskArguments) -> PlanInvocation:
        """Resolve parameters for one invocation.

        Raises:
            MissingRequiredParameter: If an identity field has no value
        """
        resolved = self.options.resolve(arguments)
        return PlanInvocation.from_resolved(resolved, arguments)

    def terraform_for(self, invocation: PlanInvocation, context: WorkingContext) -> Terraform:
        return Terraform(
            binary=self.settings.terraform_binary,
            cwd=context.cwd,
            timeout=self.settings.timeout,
            debug=invocation.debug,
        )

    def execute(self, arguments: TaskArguments) -> None:
        """Resolve, stage, then run terraform init and plan."""
        invocation = self.resolve(arguments)

        print_status(f"Planning {invocation.configuration_name}", color=not invocation.no_color)
        configuration_directory = stage(invocation.source_directory, invocation.work_directory)

        with working_context(configuration_directory) as context:
            terraform = self.terraform_for(invocation, context)
            logger.info(f"[{self.qualified_name}] Running terraform init...")
            terraform.init(**init_options(invocation))
            mode = 'destroy plan' if invocation.destroy else 'plan'
            logger.info(f"[{self.qualified_name}] Running terraform {mode}...")
            terraform.plan(**plan_options(invocation))

    def preview(self, arguments: TaskArguments) -> list[str]:
        """Dry-run description: resolved parameters and the two commands."""
        invocation = self.resolve(arguments)
        terraform = Terraform(binary=self.settings.terraform_binary)

        lines = [f"Configuration: {invocation.configuration_name}"]
        lines.append(f"Staging: {invocation.source_directory} -> {invocation.configuration_directory}")
        for f in fields(PlanInvocation):
            value = getattr(invocation, f.name)
            if f.name == 'arguments' or value is ABSENT:
                continue
            lines.append(f"  {f.name}: {value!r}")
        lines.append("Commands:")
        lines.append(f"  {' '.join(terraform.init_command(**init_options(invocation)))}")
        lines.append(f"  {' '.join(terraform.plan_command(**plan_options(invocation)))}")
        return lines
