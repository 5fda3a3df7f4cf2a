"""Shared pytest fixtures for terraform-tasks tests."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch, MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep TF_TASKS_* settings from the developer's shell out of tests."""
    for name in ('TF_TASKS_BINARY', 'TF_TASKS_TIMEOUT', 'TF_TASKS_FILE'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def registry():
    """Fresh TaskRegistry with a no-op terraform:ensure task.

    Mirrors a project that defines its own ensure task, so plan tasks never
    look for a real terraform binary.
    """
    from tasks import Task, TaskRegistry
    reg = TaskRegistry()
    reg.define(Task(name='terraform:ensure', action=lambda _args: None), scoped=False)
    return reg


@pytest.fixture
def stubs():
    """Stub out staging filesystem calls and the terraform client.

    Yields a namespace with:
        clean, mkdir, copy: the staging step mocks
        terraform_cls: the patched Terraform class in tasks.plan
        terraform: the instance plan tasks will use
        calls: a parent mock recording the order of every call
    """
    calls = MagicMock()
    terraform = MagicMock()
    terraform_cls = MagicMock(return_value=terraform)
    calls.attach_mock(terraform.init, 'init')
    calls.attach_mock(terraform.plan, 'plan')

    with patch('staging.clean_directory') as clean, \
         patch('staging.make_directories') as mkdir, \
         patch('staging.copy_tree') as copy, \
         patch('tasks.plan.Terraform', terraform_cls), \
         patch('tasks.plan.print_status') as status:
        calls.attach_mock(clean, 'clean')
        calls.attach_mock(mkdir, 'mkdir')
        calls.attach_mock(copy, 'copy')
        yield SimpleNamespace(
            clean=clean,
            mkdir=mkdir,
            copy=copy,
            terraform_cls=terraform_cls,
            terraform=terraform,
            status=status,
            calls=calls,
        )


@pytest.fixture
def source_tree(tmp_path, monkeypatch):
    """Create infra/network with a nested module and chdir into tmp_path."""
    network = tmp_path / 'infra' / 'network'
    (network / 'modules' / 'vpc').mkdir(parents=True)
    (network / 'main.tf').write_text('resource "null_resource" "network" {}\n')
    (network / 'variables.tf').write_text('variable "deployment_identifier" {}\n')
    (network / 'modules' / 'vpc' / 'main.tf').write_text('# vpc\n')
    monkeypatch.chdir(tmp_path)
    return network
