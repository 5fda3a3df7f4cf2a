#!/usr/bin/env python3
"""CLI entry point for terraform-tasks.

Tasks are loaded from a task file (see taskfile.py) and run by name:
- terraform-tasks list
- terraform-tasks run network:plan staging my-bucket
- terraform-tasks run 'network:plan[staging,my-bucket]'
- terraform-tasks run network:plan staging --dry-run
"""

import argparse
import logging
import re
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from common import TaskError
from config import ConfigError, find_tasks_file
from tasks import TaskRegistry
from taskfile import load_tasks

logger = logging.getLogger(__name__)

# Rake-style task reference: name[arg1,arg2]
TASK_REFERENCE = re.compile(r'^(?P<name>[^\[\]]+)\[(?P<args>.*)\]$')


def get_version() -> str:
    try:
        return version('terraform-tasks')
    except PackageNotFoundError:
        return 'dev'


def parse_task_reference(value: str, extra: Optional[list[str]] = None) -> tuple[str, list[str]]:
    """Split 'name[a,b]' into ('name', ['a', 'b']) and append extra arguments."""
    arguments: list[str] = []
    name = value
    if match := TASK_REFERENCE.match(value):
        name = match.group('name')
        if match.group('args').strip():
            arguments = [arg.strip() for arg in match.group('args').split(',')]
    return name, arguments + list(extra or [])


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='terraform-tasks',
        description='Run declaratively defined terraform tasks'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {get_version()}')
    parser.add_argument('-f', '--file', help='Task file (default: $TF_TASKS_FILE or ./tasks.yaml)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List defined tasks')

    run_parser = subparsers.add_parser('run', help='Run a task')
    run_parser.add_argument('task', help="Task name, optionally with arguments: 'name[a,b]'")
    run_parser.add_argument('arguments', nargs='*', help='Positional task arguments')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Show resolved parameters and commands without running')
    return parser


def load_registry(file: Optional[str]) -> TaskRegistry:
    registry = TaskRegistry()
    load_tasks(find_tasks_file(file), registry=registry)
    return registry


def cmd_list(registry: TaskRegistry) -> int:
    tasks = registry.tasks()
    if not tasks:
        print("No tasks defined")
        return 0
    labels = [
        task.name + (f"[{','.join(task.argument_names)}]" if task.argument_names else '')
        for task in tasks
    ]
    width = max(len(label) for label in labels)
    for label, task in zip(labels, tasks):
        print(f"  {label:<{width}}  {task.description}")
    return 0


def cmd_run(registry: TaskRegistry, task: str, arguments: list[str], dry_run: bool = False) -> int:
    name, task_args = parse_task_reference(task, arguments)
    if dry_run:
        for line in registry.preview(name, *task_args):
            print(line)
        print("")
        print("Mode: DRY-RUN (no changes made)")
        return 0
    registry.invoke(name, *task_args)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        registry = load_registry(args.file)
        if args.command == 'list':
            return cmd_list(registry)
        return cmd_run(registry, args.task, args.arguments, dry_run=args.dry_run)
    except (TaskError, ConfigError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
