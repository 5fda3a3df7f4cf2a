#!/usr/bin/env python3
"""Tests for parameters.py - parameter model and ordered resolution.

Tests verify:
1. Literal > factory > default > ABSENT precedence
2. Factories see runtime arguments and earlier parameters only
3. Required parameters fail resolution when unset
4. Resolution never mutates the definition
5. TaskArguments binding
"""

import pickle
import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from parameters import (
    ABSENT,
    Factory,
    Literal,
    MissingRequiredParameter,
    Parameter,
    ParameterSet,
    ReservedArgumentName,
    ResolutionFailure,
    TaskArguments,
    UnknownParameterError,
    assignment_for,
)


def _schema():
    return ParameterSet([
        Parameter('configuration_name', required=True),
        Parameter('backend_config'),
        Parameter('vars', default={}),
        Parameter('no_color', default=False),
    ])


class TestAbsent:
    """Test the ABSENT marker."""

    def test_is_falsy_singleton(self):
        """ABSENT is falsy and there is only one."""
        assert not ABSENT
        assert type(ABSENT)() is ABSENT

    def test_distinct_from_zero_values(self):
        """ABSENT is not equal to empty or zero values."""
        for value in ('', 0, False, {}, [], None):
            assert ABSENT is not value
            assert ABSENT != value

    def test_survives_copy_and_pickle(self):
        """Copies of ABSENT are ABSENT."""
        import copy
        assert copy.deepcopy(ABSENT) is ABSENT
        assert pickle.loads(pickle.dumps(ABSENT)) is ABSENT


class TestAssignmentFor:
    """Test wrapping of caller-supplied values."""

    def test_plain_value_is_literal(self):
        assert assignment_for('network') == Literal('network')

    def test_callable_is_factory(self):
        def build(args, t):
            return 'x'
        assert assignment_for(build) == Factory(build)

    def test_existing_wrappers_pass_through(self):
        literal = Literal(len)
        assert assignment_for(literal) is literal


class TestParameterResolve:
    """Test single-parameter precedence."""

    def test_literal_wins_over_default(self):
        """A literal is used and a default factory is never invoked."""
        default = MagicMock(return_value='from-default')
        parameter = Parameter('name', default=default)
        value = parameter.resolve(Literal('from-literal'), TaskArguments(), MagicMock())
        assert value == 'from-literal'
        default.assert_not_called()

    def test_factory_receives_arguments_and_resolved(self):
        """Factories are called with (arguments, resolved)."""
        factory = MagicMock(return_value='computed')
        arguments = TaskArguments(['a'], ['1'])
        resolved = MagicMock()
        value = Parameter('name').resolve(Factory(factory), arguments, resolved)
        assert value == 'computed'
        factory.assert_called_once_with(arguments, resolved)

    def test_static_default_used_when_unassigned(self):
        assert Parameter('destroy', default=False).resolve(None, TaskArguments(), MagicMock()) is False

    def test_default_factory_used_when_unassigned(self):
        parameter = Parameter('name', default=lambda args, t: 'made')
        assert parameter.resolve(None, TaskArguments(), MagicMock()) == 'made'

    def test_optional_without_default_is_absent(self):
        assert Parameter('var_file').resolve(None, TaskArguments(), MagicMock()) is ABSENT

    def test_none_falls_through_to_default(self):
        """None means not supplied, whether assigned or returned by a factory."""
        parameter = Parameter('vars', default={})
        assert parameter.resolve(Literal(None), TaskArguments(), MagicMock()) == {}
        assert parameter.resolve(Factory(lambda a, t: None), TaskArguments(), MagicMock()) == {}

    def test_zero_values_are_kept(self):
        """Empty string, False and 0 are real values, not absence."""
        parameter = Parameter('value', default='default')
        for value in ('', False, 0):
            assert parameter.resolve(Literal(value), TaskArguments(), MagicMock()) == value

    def test_required_without_value_raises(self):
        with pytest.raises(MissingRequiredParameter) as exc_info:
            Parameter('source_directory', required=True).resolve(None, TaskArguments(), MagicMock())
        assert exc_info.value.name == 'source_directory'
        assert exc_info.value.code == 'E101'
        assert 'source_directory' in str(exc_info.value)

    def test_required_factory_returning_none_raises(self):
        parameter = Parameter('work_directory', required=True)
        with pytest.raises(MissingRequiredParameter):
            parameter.resolve(Factory(lambda a, t: None), TaskArguments(), MagicMock())

    def test_factory_exception_propagates_unchanged(self):
        """Errors raised by a factory are not wrapped."""
        def broken(args, t):
            raise KeyError('bucket')
        with pytest.raises(KeyError):
            Parameter('backend_config').resolve(Factory(broken), TaskArguments(), MagicMock())


class TestParameterSet:
    """Test the definition-time builder and ordered resolution."""

    def test_attribute_assignment_records_literal(self):
        params = _schema()
        params.configuration_name = 'network'
        assert params.assignment('configuration_name') == Literal('network')
        assert params.configuration_name == 'network'

    def test_unknown_assignment_raises(self):
        params = _schema()
        with pytest.raises(UnknownParameterError) as exc_info:
            params.configuraton_name = 'network'
        assert 'configuraton_name' in str(exc_info.value)
        assert 'configuration_name' in str(exc_info.value)

    def test_reading_default_at_definition_time(self):
        params = _schema()
        assert params.no_color is False
        assert params.backend_config is None

    def test_reading_factory_at_definition_time_raises(self):
        params = _schema()
        params.backend_config = lambda args, t: {'bucket': args.bucket}
        with pytest.raises(ResolutionFailure):
            params.backend_config

    def test_literal_helper(self):
        params = _schema()
        params.update({'configuration_name': 'network', 'vars': lambda a, t: {}})
        assert params.literal('configuration_name') == 'network'
        assert params.literal('vars') is None
        assert params.literal('backend_config', 'fallback') == 'fallback'

    def test_resolves_in_declaration_order(self):
        """A later factory observes the fully resolved earlier factory."""
        params = _schema()
        params.configuration_name = 'network'
        params.backend_config = lambda args, t: {
            'bucket': args.bucket_name,
            'key': f'{t.configuration_name}.tfstate',
            'region': 'eu-west-2',
        }
        params.vars = lambda args, t: {
            'deployment_identifier': args.deployment_identifier,
            'configuration_name': t.configuration_name,
            'state_bucket': t.backend_config['bucket'],
        }

        arguments = TaskArguments(
            ['deployment_identifier', 'bucket_name'],
            ['staging', 'bucket-from-args']
        )
        resolved = params.resolve(arguments)

        assert resolved.backend_config == {
            'bucket': 'bucket-from-args',
            'key': 'network.tfstate',
            'region': 'eu-west-2',
        }
        assert resolved.vars == {
            'deployment_identifier': 'staging',
            'configuration_name': 'network',
            'state_bucket': 'bucket-from-args',
        }

    def test_reading_later_parameter_raises(self):
        """Factories may not read parameters declared after them."""
        params = _schema()
        params.configuration_name = 'network'
        params.backend_config = lambda args, t: {'colour': t.no_color}
        with pytest.raises(ResolutionFailure) as exc_info:
            params.resolve(TaskArguments())
        assert 'no_color' in str(exc_info.value)
        assert exc_info.value.code == 'E102'

    def test_reading_unknown_parameter_raises(self):
        params = _schema()
        params.configuration_name = 'network'
        params.backend_config = lambda args, t: t.bucket
        with pytest.raises(ResolutionFailure, match='Unknown parameter: bucket'):
            params.resolve(TaskArguments())

    def test_missing_required_raises(self):
        with pytest.raises(MissingRequiredParameter):
            _schema().resolve(TaskArguments())

    def test_each_resolution_is_a_fresh_copy(self):
        """Mutating one invocation's values leaves the definition untouched."""
        params = _schema()
        params.configuration_name = 'network'
        params.backend_config = {'bucket': 'some-bucket'}

        first = params.resolve(TaskArguments())
        first.backend_config['bucket'] = 'changed'
        first.vars['extra'] = '1'

        second = params.resolve(TaskArguments())
        assert second.backend_config == {'bucket': 'some-bucket'}
        assert second.vars == {}
        assert params.backend_config == {'bucket': 'some-bucket'}

    def test_resolved_view_is_read_only(self):
        params = _schema()
        params.configuration_name = 'network'
        resolved = params.resolve(TaskArguments())
        with pytest.raises(AttributeError):
            resolved.configuration_name = 'other'

    def test_resolved_view_helpers(self):
        params = _schema()
        params.configuration_name = 'network'
        resolved = params.resolve(TaskArguments())

        assert 'configuration_name' in resolved
        assert 'backend_config' not in resolved
        assert resolved.backend_config is ABSENT
        assert resolved['configuration_name'] == 'network'
        assert resolved.get('backend_config', 'none') == 'none'
        assert resolved.supplied() == {
            'configuration_name': 'network',
            'vars': {},
            'no_color': False,
        }


class TestTaskArguments:
    """Test positional argument binding."""

    def test_binds_in_order(self):
        args = TaskArguments(['deployment_identifier', 'region'], ['staging', 'eu-west-2'])
        assert args.deployment_identifier == 'staging'
        assert args.region == 'eu-west-2'
        assert args['region'] == 'eu-west-2'
        assert args.names == ('deployment_identifier', 'region')

    def test_missing_values_are_none(self):
        args = TaskArguments(['deployment_identifier', 'region'], ['staging'])
        assert args.region is None
        assert args.get('region', 'default') == 'default'
        assert args.to_dict() == {'deployment_identifier': 'staging', 'region': None}

    def test_extra_values_kept(self):
        args = TaskArguments(['a'], ['1', '2', '3'])
        assert args.a == '1'
        assert args.extras == ('2', '3')

    def test_undeclared_name_raises_attribute_error(self):
        args = TaskArguments(['a'], ['1'])
        with pytest.raises(AttributeError, match='bucket_name'):
            args.bucket_name
        assert 'bucket_name' not in args

    def test_scoped_rebinds_by_name(self):
        args = TaskArguments(['deployment_identifier', 'region'], ['staging', 'eu-west-2'])
        scoped = args.scoped(['region', 'other'])
        assert scoped.to_dict() == {'region': 'eu-west-2', 'other': None}

    @pytest.mark.parametrize('name', ['names', 'get', 'extras', 'scoped', 'to_dict', '_values'])
    def test_reserved_names_rejected(self, name):
        with pytest.raises(ReservedArgumentName) as exc_info:
            TaskArguments(['deployment_identifier', name], ['staging', 'x'])
        assert exc_info.value.code == 'E104'
        assert exc_info.value.name == name
