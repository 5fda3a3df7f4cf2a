"""Task file loading.

A task file declares plan tasks in YAML:

    settings:
      terraform_binary: tofu
    tasks:
      - namespace: network
        argument_names: [deployment_identifier, bucket_name]
        configuration_name: network
        source_directory: infra/network
        work_directory: build
        backend_config:
          bucket: "{args.bucket_name}"
          key: "{t.configuration_name}.tfstate"
        vars:
          deployment_identifier: "{args.deployment_identifier}"
          state_bucket: "{t.backend_config[bucket]}"

Entry keys other than the metadata keys (type, namespace, name,
argument_names, ensure_task_name, description) are task parameters.

A parameter value containing `{...}` fields anywhere inside it becomes a
factory: at invocation time every string in it is rendered with
str.format_map, where `args` holds the runtime arguments and `t` the
parameters resolved so far. Use `{{` and `}}` for literal braces.

A value that is exactly one field, such as "{args.var_file}", resolves to the
object itself, so an argument nobody supplied reads as None and the
parameter falls back to its default.
"""

import logging
from contextlib import nullcontext
from pathlib import Path
from string import Formatter
from typing import Any, Optional

from config import ConfigError, Settings, load_settings, parse_yaml
from parameters import ReservedArgumentName, UnknownParameterError
from tasks import TaskRegistry, default_registry
from tasks.plan import PlanTask

logger = logging.getLogger(__name__)

TASK_TYPES = {
    'plan': PlanTask,
}

METADATA_KEYS = ('type', 'namespace', 'name', 'argument_names', 'ensure_task_name', 'description')

TEMPLATE_ROOTS = ('args', 't')


def _template_fields(value: Any) -> list[str]:
    """Collect format field names anywhere inside value."""
    if isinstance(value, str):
        try:
            return [name for _, name, _, _ in Formatter().parse(value) if name is not None]
        except ValueError as e:
            raise ConfigError(f"Invalid template {value!r}: {e}") from e
    if isinstance(value, dict):
        return [name for item in value.values() for name in _template_fields(item)]
    if isinstance(value, list):
        return [name for item in value for name in _template_fields(item)]
    return []


def _render_string(value: str, namespace: dict) -> Any:
    formatter = Formatter()
    parsed = list(formatter.parse(value))
    field_names = [name for _, name, _, _ in parsed if name is not None]
    if not field_names:
        return value.format_map(namespace) if '{' in value or '}' in value else value

    # A field naming an unsupplied value makes the whole string unsupplied
    values = [formatter.get_field(name, (), namespace)[0] for name in field_names]
    if any(item is None for item in values):
        return None

    literal, _, format_spec, conversion = parsed[0]
    if len(parsed) == 1 and not literal and not format_spec and conversion is None:
        return values[0]
    return value.format_map(namespace)


def render(value: Any, namespace: dict) -> Any:
    """Render every string inside value with str.format_map.

    A string that is exactly one field yields the looked-up object itself.
    A string naming a value that is None renders to None, and such entries
    are dropped from mappings and lists.
    """
    if isinstance(value, str):
        return _render_string(value, namespace)
    if isinstance(value, dict):
        rendered = {key: render(item, namespace) for key, item in value.items()}
        return {
            key: item for key, item in rendered.items()
            if item is not None or not _template_fields(value[key])
        }
    if isinstance(value, list):
        pairs = [(item, render(item, namespace)) for item in value]
        return [
            rendered for item, rendered in pairs
            if rendered is not None or not _template_fields(item)
        ]
    return value


def coerce_option(value: Any) -> Any:
    """Turn a templated value into a factory; unescape plain values."""
    field_names = _template_fields(value)
    if not field_names:
        return render(value, {})

    for name in field_names:
        root = name.split('.', 1)[0].split('[', 1)[0]
        if root not in TEMPLATE_ROOTS:
            raise ConfigError(
                f"Unknown template field {{{name}}}; use args.<name> or t.<parameter>"
            )

    def factory(arguments, resolved):
        return render(value, {'args': arguments, 't': resolved})

    return factory


def define_task(
    entry: dict,
    registry: TaskRegistry,
    settings: Settings,
    index: int = 0
) -> PlanTask:
    """Define one task from a task file entry."""
    if not isinstance(entry, dict):
        raise ConfigError(f"Task #{index}: entry must be a mapping")

    task_type = entry.get('type', 'plan')
    if task_type not in TASK_TYPES:
        raise ConfigError(
            f"Task #{index}: unknown type '{task_type}'. Available: {list(TASK_TYPES)}"
        )

    metadata = {key: entry[key] for key in METADATA_KEYS[2:] if key in entry}
    if not isinstance(metadata.get('argument_names', []), list):
        raise ConfigError(f"Task #{index}: argument_names must be a list")
    options = {
        key: coerce_option(value)
        for key, value in entry.items()
        if key not in METADATA_KEYS
    }

    namespace = entry.get('namespace')
    scope = registry.namespace(str(namespace)) if namespace else nullcontext()
    with scope:
        try:
            definition = TASK_TYPES[task_type].define(
                registry=registry,
                settings=settings,
                **metadata,
                **options
            )
        except (UnknownParameterError, ReservedArgumentName) as e:
            raise ConfigError(f"Task #{index}: {e.message}") from e

    logger.debug(f"Loaded task {definition.qualified_name} from task file")
    return definition


def load_tasks(
    path: Path,
    registry: Optional[TaskRegistry] = None,
    environ: Optional[dict] = None
) -> list[PlanTask]:
    """Define every task in the task file at `path`."""
    registry = registry if registry is not None else default_registry()
    data = parse_yaml(path)
    settings = load_settings(data.get('settings'), environ)

    entries = data.get('tasks') or []
    if not isinstance(entries, list):
        raise ConfigError(f"{path}: 'tasks' must be a list")

    definitions = [
        define_task(entry, registry, settings, index)
        for index, entry in enumerate(entries)
    ]
    logger.info(f"Loaded {len(definitions)} task(s) from {path}")
    return definitions
