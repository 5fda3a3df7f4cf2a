"""Task registration and invocation."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, Optional

from common import TaskError
from parameters import TaskArguments, check_argument_names

logger = logging.getLogger(__name__)


class TaskNotFound(TaskError):
    """No task registered under the requested name."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        super().__init__("E401", f"Unknown task: {name}. Available: {available}")


class CircularDependency(TaskError):
    """A task depends on itself through its prerequisites."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__("E402", f"Circular prerequisites: {' -> '.join(chain)}")


@dataclass
class Task:
    """A named unit of work.

    Attributes:
        name: Fully qualified name (e.g., 'network:plan')
        action: Called with the bound TaskArguments; raises on failure
        description: Human-readable description for listings
        prerequisites: Fully qualified names of tasks to run first
        argument_names: Names bound, in order, to positional runtime arguments
        preview: Optional callable returning dry-run lines for given arguments
    """
    name: str
    action: Callable[[TaskArguments], None]
    description: str = ''
    prerequisites: list[str] = field(default_factory=list)
    argument_names: list[str] = field(default_factory=list)
    preview: Optional[Callable[[TaskArguments], list[str]]] = None


class TaskRegistry:
    """Tasks by qualified name, with namespacing and prerequisite-first invocation."""

    def __init__(self):
        self._tasks: dict[str, Task] = {}
        self._scope: list[str] = []

    @contextmanager
    def namespace(self, name: str) -> Iterator['TaskRegistry']:
        """Prefix tasks defined inside the block with `name:`."""
        self._scope.append(name)
        try:
            yield self
        finally:
            self._scope.pop()

    def qualify(self, name: str) -> str:
        return ':'.join(self._scope + [name])

    def define(self, task: Task, scoped: bool = True) -> Task:
        """Register a task under the current namespace and return it."""
        check_argument_names(task.argument_names)
        if scoped:
            task = replace(task, name=self.qualify(task.name))
        if task.name in self._tasks:
            logger.warning(f"Redefining task: {task.name}")
        self._tasks[task.name] = task
        logger.debug(f"Defined task {task.name} (prerequisites: {task.prerequisites})")
        return task

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def get(self, name: str) -> Task:
        if name not in self._tasks:
            raise TaskNotFound(name, self.names())
        return self._tasks[name]

    def names(self) -> list[str]:
        return sorted(self._tasks)

    def tasks(self) -> list[Task]:
        return [self._tasks[name] for name in self.names()]

    def invoke(self, name: str, *args: Any) -> None:
        """Run a task after its prerequisites.

        Each task runs at most once per call. Prerequisites receive the
        values of arguments they declare under the same names.
        """
        task = self.get(name)
        arguments = TaskArguments(task.argument_names, args)
        self._invoke(task, arguments, invoked=set(), chain=[])

    def _invoke(self, task: Task, arguments: TaskArguments,
                invoked: set[str], chain: list[str]) -> None:
        if task.name in chain:
            raise CircularDependency(chain + [task.name])
        if task.name in invoked:
            return

        for prerequisite_name in task.prerequisites:
            prerequisite = self.get(prerequisite_name)
            self._invoke(
                prerequisite,
                arguments.scoped(prerequisite.argument_names),
                invoked,
                chain + [task.name]
            )

        invoked.add(task.name)
        logger.info(f"Running task: {task.name}")
        start = time.time()
        task.action(arguments)
        logger.debug(f"Task {task.name} completed in {time.time() - start:.1f}s")

    def preview(self, name: str, *args: Any) -> list[str]:
        """Describe what invoking `name` would do, without running anything."""
        task = self.get(name)
        lines = [f"Task: {task.name}"]
        if task.prerequisites:
            lines.append(f"Prerequisites: {', '.join(task.prerequisites)}")
        if task.preview is not None:
            lines.extend(task.preview(TaskArguments(task.argument_names, args)))
        elif task.description:
            lines.append(task.description)
        return lines


# Default registry used when a definition does not pass its own
_registry = TaskRegistry()


def default_registry() -> TaskRegistry:
    return _registry


def register_task(task: Task) -> Task:
    """Register a task in the default registry."""
    return _registry.define(task)


def get_task(name: str) -> Task:
    """Get a task from the default registry."""
    return _registry.get(name)


def list_tasks() -> list[str]:
    """List task names in the default registry."""
    return _registry.names()


from tasks.plan import PlanTask  # noqa: E402, F401
