"""Staging of terraform configuration trees into a work directory.

The source tree is copied to work_directory/source_directory after any
previous copy there is removed, so staging the same pair twice always
produces the same tree. Terraform then runs from the staged copy through an
explicit WorkingContext; the process-wide current directory is never changed.

Two invocations staging into the same directory at the same time will
corrupt each other. Callers must not do that; nothing here locks.
"""

import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Callable, Iterator, Union

from common import TaskError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class StagingFailure(TaskError):
    """Cleaning, creating or copying the staged tree failed."""

    def __init__(self, step: str, path: PathLike, error: Exception):
        self.step = step
        self.path = path
        self.error = error
        super().__init__("E201", f"Staging failed during {step} of {path}: {error}")


@dataclass
class WorkingContext:
    """The directory terraform commands are issued from."""
    directory: Path
    active: bool = True

    @property
    def cwd(self) -> Path:
        if not self.active:
            raise RuntimeError(f"Working context for {self.directory} has been exited")
        return self.directory


def configuration_directory_for(source_directory: PathLike, work_directory: PathLike) -> Path:
    """Join work_directory and source_directory.

    An absolute source directory is treated as relative to its anchor so the
    result always stays under work_directory.

    Raises:
        StagingFailure: If source_directory contains '..'
    """
    source = PurePath(source_directory)
    if '..' in source.parts:
        raise StagingFailure(
            'clean', source_directory,
            ValueError("source directory must not contain '..'")
        )
    if source.anchor:
        source = source.relative_to(source.anchor)
    return Path(work_directory) / source


def _check_overlap(source_directory: PathLike, configuration_directory: Path) -> None:
    """Refuse to stage into the source tree or one of its ancestors."""
    source = Path(source_directory).resolve()
    target = configuration_directory.resolve()
    if source == target or source in target.parents or target in source.parents:
        raise StagingFailure(
            'clean', configuration_directory,
            ValueError(f"staged directory overlaps source directory {source_directory}")
        )


def clean_directory(directory: PathLike) -> None:
    """Remove a directory tree. A missing directory is fine."""
    path = Path(directory)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def make_directories(path: PathLike) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def copy_tree(source: PathLike, destination: PathLike) -> None:
    shutil.copytree(source, destination, symlinks=True)


def _run_step(step: str, path: PathLike, function: Callable, *args) -> None:
    try:
        function(*args)
    except OSError as e:
        raise StagingFailure(step, path, e) from e


def stage(source_directory: PathLike, work_directory: PathLike) -> Path:
    """Copy source_directory into work_directory and return the staged path.

    Raises:
        StagingFailure: If the staged directory overlaps the source tree, in
            which case nothing is removed, or if any filesystem step fails.
            Whatever was staged before the failure is left on disk.
    """
    configuration_directory = configuration_directory_for(source_directory, work_directory)
    logger.debug(f"Staging {source_directory} -> {configuration_directory}")
    _check_overlap(source_directory, configuration_directory)

    _run_step('clean', configuration_directory, clean_directory, configuration_directory)
    _run_step('mkdir', configuration_directory.parent, make_directories,
              configuration_directory.parent)
    _run_step('copy', configuration_directory, copy_tree, source_directory,
              configuration_directory)

    logger.debug(f"Staged {configuration_directory}")
    return configuration_directory


@contextmanager
def working_context(directory: PathLike) -> Iterator[WorkingContext]:
    """Scope commands to `directory`; the context is closed however the block exits."""
    context = WorkingContext(directory=Path(directory))
    logger.debug(f"Entering {context.directory}")
    try:
        yield context
    finally:
        context.active = False
        logger.debug(f"Leaving {context.directory}")
