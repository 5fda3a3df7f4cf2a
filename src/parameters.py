"""Parameter model and ordered resolution for task definitions.

Each parameter slot on a task ends up holding one of:
- a literal value assigned by the caller
- a factory, called as factory(arguments, resolved) at invocation time
- nothing, in which case the declared default applies, or ABSENT

Resolution walks the parameters in declaration order, so a factory may read
any parameter declared before it through the `resolved` view. Reading a
parameter declared later raises ResolutionFailure.

Literal values and static defaults are deep copied on every resolution so an
invocation can never mutate the task definition it came from.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from common import TaskError

logger = logging.getLogger(__name__)

# Attributes of TaskArguments that an argument of the same name would hide
RESERVED_ARGUMENT_NAMES = ('names', 'get', 'extras', 'scoped', 'to_dict')


class _Absent:
    """Marker for an optional parameter nobody supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'ABSENT'

    def __copy__(self):
        return self

    def __deepcopy__(self, _memo):
        return self

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()


class MissingRequiredParameter(TaskError):
    """A required parameter has no value after resolution."""

    def __init__(self, name: str):
        self.name = name
        super().__init__("E101", f"Required parameter not set: {name}")


class ResolutionFailure(TaskError):
    """A factory read a parameter that is unknown or not yet resolved."""

    def __init__(self, message: str):
        super().__init__("E102", message)


class UnknownParameterError(TaskError):
    """A definition assigned an option the task does not declare."""

    def __init__(self, name: str, known: Iterable[str]):
        self.name = name
        super().__init__(
            "E103",
            f"Unknown parameter: {name}. Available: {', '.join(known)}"
        )


class ReservedArgumentName(TaskError):
    """An argument name collides with an attribute of TaskArguments."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            "E104",
            f"Argument name '{name}' is reserved; reserved names are "
            f"{', '.join(RESERVED_ARGUMENT_NAMES)} and names starting with '_'"
        )


def check_argument_names(names: Iterable[str]) -> None:
    """Raise ReservedArgumentName if any name would be shadowed on `args`."""
    for name in names:
        if name in RESERVED_ARGUMENT_NAMES or name.startswith('_'):
            raise ReservedArgumentName(name)


@dataclass(frozen=True)
class Literal:
    """A value assigned directly by the caller."""
    value: Any


@dataclass(frozen=True)
class Factory:
    """A value computed at invocation time from arguments and earlier fields."""
    function: Callable[['TaskArguments', 'ResolvedParameters'], Any]


def assignment_for(value: Any):
    """Wrap a caller-supplied value: callables become factories."""
    if isinstance(value, (Literal, Factory)):
        return value
    if callable(value):
        return Factory(value)
    return Literal(value)


@dataclass(frozen=True)
class Parameter:
    """A named configuration slot declared by a task.

    Attributes:
        name: Identifier, unique within a task
        required: If True, resolution fails when no value can be found
        default: Static value, or a callable(arguments, resolved) computing one
    """
    name: str
    required: bool = False
    default: Any = ABSENT

    def resolve(self, assignment, arguments: 'TaskArguments',
                resolved: 'ResolvedParameters') -> Any:
        """Resolve this parameter for one invocation.

        None, whether assigned or returned by a factory, counts as not
        supplied and falls through to the default.
        """
        value: Any = ABSENT
        if isinstance(assignment, Literal):
            value = copy.deepcopy(assignment.value)
        elif isinstance(assignment, Factory):
            value = assignment.function(arguments, resolved)

        if value is None or value is ABSENT:
            if callable(self.default):
                value = self.default(arguments, resolved)
            else:
                value = copy.deepcopy(self.default)

        if value is None:
            value = ABSENT
        if value is ABSENT and self.required:
            raise MissingRequiredParameter(self.name)
        return value


class TaskArguments:
    """Positional runtime arguments bound to a task's argument names.

    Names without a supplied value read as None. Values beyond the declared
    names are kept in `extras`. Names in RESERVED_ARGUMENT_NAMES, or starting
    with an underscore, are rejected because attribute access would not reach
    them.
    """

    def __init__(self, names: Sequence[str] = (), values: Sequence[Any] = ()):
        names = tuple(names)
        check_argument_names(names)
        values = tuple(values)
        self._names = names
        self._values = {
            name: values[index] if index < len(values) else None
            for index, name in enumerate(names)
        }
        self.extras = values[len(names):]

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        values = self.__dict__.get('_values', {})
        if name not in values:
            raise AttributeError(
                f"No argument named '{name}'. Declared: {list(self._names)}"
            )
        return values[name]

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, default: Any = None) -> Any:
        value = self._values.get(name)
        return default if value is None else value

    def scoped(self, names: Sequence[str]) -> 'TaskArguments':
        """Bind the values of matching names to another task's argument names."""
        return TaskArguments(names, [self._values.get(name) for name in names])

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"TaskArguments({self._values!r})"


class ResolvedParameters:
    """Read-only view of the parameters resolved so far in one invocation."""

    def __init__(self, declared: Iterable[str]):
        object.__setattr__(self, '_declared', tuple(declared))
        object.__setattr__(self, '_values', {})

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Resolved parameters are read-only")

    def _record(self, name: str, value: Any) -> None:
        self._values[name] = value

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        values = self.__dict__['_values']
        if name in values:
            return values[name]
        if name in self.__dict__['_declared']:
            raise ResolutionFailure(
                f"Parameter '{name}' read before it was resolved; "
                f"factories may only read parameters declared earlier"
            )
        raise ResolutionFailure(f"Unknown parameter: {name}")

    def __getitem__(self, name: str) -> Any:
        return self.__getattr__(name)

    def __contains__(self, name: str) -> bool:
        return self._values.get(name, ABSENT) is not ABSENT

    def get(self, name: str, default: Any = None) -> Any:
        value = self._values.get(name, ABSENT)
        return default if value is ABSENT else value

    def supplied(self) -> dict[str, Any]:
        """Resolved parameters, leaving out ABSENT ones."""
        return {k: v for k, v in self._values.items() if v is not ABSENT}

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"ResolvedParameters({self._values!r})"


class ParameterSet:
    """Ordered parameter schema plus the caller's assignments.

    This is the `t` a definition block receives. Attribute assignment records
    a literal, or a factory when the value is callable:

        t.configuration_name = 'network'
        t.vars = lambda args, t: {'region': args.region}

    Reading an attribute back gives the literal (or static default); values
    that only exist at invocation time raise ResolutionFailure.
    """

    def __init__(self, parameters: Sequence[Parameter]):
        object.__setattr__(self, '_parameters', {p.name: p for p in parameters})
        object.__setattr__(self, '_assignments', {})

    @property
    def names(self) -> list[str]:
        return list(self._parameters)

    def __setattr__(self, name: str, value: Any) -> None:
        self.assign(name, value)

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        parameters = self.__dict__['_parameters']
        if name not in parameters:
            raise UnknownParameterError(name, parameters)
        assignment = self.__dict__['_assignments'].get(name)
        if isinstance(assignment, Literal):
            return assignment.value
        if assignment is None and not callable(parameters[name].default):
            default = parameters[name].default
            return None if default is ABSENT else default
        raise ResolutionFailure(
            f"Parameter '{name}' is computed at invocation time; "
            f"read it from the resolved parameters inside a factory"
        )

    def assign(self, name: str, value: Any) -> None:
        if name not in self._parameters:
            raise UnknownParameterError(name, self._parameters)
        self._assignments[name] = assignment_for(value)

    def update(self, options: dict[str, Any]) -> None:
        for name, value in options.items():
            self.assign(name, value)

    def literal(self, name: str, default: Any = None) -> Any:
        """Return the literal assigned to `name`, or `default`."""
        assignment = self._assignments.get(name)
        if isinstance(assignment, Literal) and assignment.value is not None:
            return assignment.value
        return default

    def assignment(self, name: str) -> Optional[Any]:
        return self._assignments.get(name)

    def resolve(self, arguments: TaskArguments) -> ResolvedParameters:
        """Resolve every parameter, in declaration order, into a fresh view."""
        resolved = ResolvedParameters(self._parameters)
        for name, parameter in self._parameters.items():
            value = parameter.resolve(self._assignments.get(name), arguments, resolved)
            resolved._record(name, value)
            logger.debug(f"Resolved {name} = {value!r}")
        return resolved
