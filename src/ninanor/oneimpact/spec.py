"""Declarative specification of workflow inputs and outputs.

A ``ModelSpec`` lists the ``Input`` types a workflow accepts in its args
dict and the ``Output`` files it writes.  Inputs know how to validate and
preprocess their raw value; outputs know their path in the workspace.
"""
import contextlib
import importlib
import json
import logging
import os
import re
import typing

import taskgraph
from osgeo import gdal
from osgeo import osr
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import field_validator
from pydantic import model_validator

from . import utils
from .file_registry import FileRegistry
from .validation import check_permissions
from .validation import get_message

LOGGER = logging.getLogger(__name__)


class Input(BaseModel):
    """A data input, or parameter, of a workflow.

    This does not store the value of the parameter for a specific run.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    """Input identifier, unique within a workflow"""

    name: typing.Union[str, None] = None
    """Short, lower-case, user-facing name"""

    about: typing.Union[str, None] = None
    """User-facing description of the input"""

    required: typing.Union[bool, str] = True
    """Whether the input must have a value.  A string is evaluated as an
    expression of the other args, e.g. ``'calc_cumulative'``."""

    hidden: bool = False
    """Whether the input is left out of ``input_field_order``"""

    def validate(self, value):
        """Return an error message for ``value``, or ``None``."""
        return None

    def preprocess(self, value):
        """Convert a raw value into the type the workflow uses."""
        return value


class Output(BaseModel):
    """A data output, or result, of a workflow."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    """Output identifier, unique within a workflow"""

    about: typing.Union[str, None] = None
    """User-facing description of the output"""

    created_if: typing.Union[bool, str] = True
    """Whether the output is created.  A string is evaluated as an
    expression of the preprocessed args."""


class FileInput(Input):
    """A generic file input."""
    permissions: str = 'r'
    """Any of ``r``, ``w`` and ``x``"""

    type: typing.ClassVar[str] = 'file'

    def validate(self, filepath):
        if not os.path.exists(filepath):
            return get_message('FILE_NOT_FOUND')
        return check_permissions(
            filepath, self.permissions, 'NEED_PERMISSION_FILE')

    def preprocess(self, value):
        return None if value in {None, ''} else os.path.abspath(value)


class SingleBandRasterInput(FileInput):
    """A GDAL raster with one band."""
    projected: bool = False
    """Whether the raster must be projected in linear units"""

    type: typing.ClassVar[str] = 'raster'

    def validate(self, filepath):
        file_warning = super().validate(filepath)
        if file_warning:
            return file_warning

        try:
            gdal_dataset = gdal.OpenEx(filepath, gdal.OF_RASTER)
        except RuntimeError:
            return get_message('NOT_GDAL_RASTER')
        if gdal_dataset is None:
            return get_message('NOT_GDAL_RASTER')
        if gdal_dataset.RasterCount != 1:
            return get_message('NOT_SINGLE_BAND').format(
                n_bands=gdal_dataset.RasterCount)

        if self.projected:
            srs = gdal_dataset.GetSpatialRef()
            if srs is None or srs.IsSame(osr.SpatialReference()):
                return get_message('INVALID_PROJECTION')
            if not srs.IsProjected():
                return get_message('NOT_PROJECTED')
        gdal_dataset = None
        return None


class DirectoryInput(Input):
    """A directory, such as the workspace."""
    permissions: str = ''
    """Any of ``r``, ``w`` and ``x``"""

    must_exist: bool = True
    """Set to False if the directory will be created"""

    type: typing.ClassVar[str] = 'directory'

    def validate(self, dirpath):
        if self.must_exist and not os.path.exists(dirpath):
            return get_message('DIR_NOT_FOUND')

        if os.path.exists(dirpath):
            if not os.path.isdir(dirpath):
                return get_message('NOT_A_DIR')
        else:
            # check the permissions of the closest existing parent
            parent = os.path.normcase(os.path.abspath(dirpath))
            while not os.path.exists(parent):
                parent = os.path.dirname(parent)
            dirpath = parent

        return check_permissions(
            dirpath, self.permissions, 'NEED_PERMISSION_DIRECTORY')


class NumberInput(Input):
    """A floating point number."""
    expression: typing.Union[str, None] = None
    """A condition on ``value``, e.g. ``"(value > 0) & (value < 1)"``"""

    type: typing.ClassVar[str] = 'number'

    def validate(self, value):
        try:
            float(value)
        except (TypeError, ValueError):
            return get_message('NOT_A_NUMBER').format(value=value)

        if self.expression:
            if 'value' not in self.expression:
                raise AssertionError(
                    'The variable name value is not found in the '
                    f'expression: {self.expression}')
            if not utils.evaluate_expression(
                    self.expression, {'value': float(value)}):
                return get_message('INVALID_VALUE').format(
                    condition=self.expression)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else float(value)


class IntegerInput(NumberInput):
    """An integer."""
    type: typing.ClassVar[str] = 'integer'

    def validate(self, value):
        message = super().validate(value)
        if message:
            return message
        # cast to float first to handle both string and float inputs
        if not float(value).is_integer():
            return get_message('NOT_AN_INTEGER').format(value=value)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else int(float(value))


class NWorkersInput(IntegerInput):

    def preprocess(self, value):
        # no value means single process mode
        if value is None or value == '':
            return -1
        return super().preprocess(value)


class NumberListInput(Input):
    """One number or many, as a sequence or a comma-separated string."""
    expression: typing.Union[str, None] = None
    """A condition every ``value`` must meet"""

    type: typing.ClassVar[str] = 'number_list'

    @staticmethod
    def _split(value):
        if isinstance(value, str):
            return [item for item in re.split(r'[,\s]+', value.strip())
                    if item]
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    def validate(self, value):
        items = self._split(value)
        if not items:
            return get_message('NOT_A_NUMBER_LIST').format(value=value)
        for item in items:
            message = NumberInput(
                id=self.id, expression=self.expression).validate(item)
            if message:
                return message
        return None

    def preprocess(self, value):
        if value in {None, ''}:
            return None
        return [float(item) for item in self._split(value)]


class BooleanInput(Input):
    """True or False."""
    type: typing.ClassVar[str] = 'boolean'

    def validate(self, value):
        if not isinstance(value, bool):
            return get_message('NOT_BOOLEAN').format(value=value)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else bool(value)


class StringInput(Input):
    """Free text, optionally matching ``regexp``."""
    regexp: typing.Union[str, None] = None

    type: typing.ClassVar[str] = 'string'

    @field_validator('regexp', mode='after')
    @classmethod
    def check_regexp(cls, regexp):
        if regexp is not None:
            try:
                re.compile(regexp)
            except re.error:
                raise ValueError(f'Failed to compile regexp {regexp}')
        return regexp

    def validate(self, value):
        if self.regexp and not re.fullmatch(self.regexp, str(value)):
            return get_message('REGEXP_MISMATCH').format(regexp=self.regexp)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else str(value)


class ResultsSuffixInput(StringInput):

    def preprocess(self, value):
        value = super().preprocess(value)
        if value is None:
            return ''
        # suffix should always start with an underscore
        if not value.startswith('_'):
            value = '_' + value
        return value


class Option(BaseModel):
    """An option of an ``OptionStringInput``."""
    key: str
    about: typing.Union[str, None] = None


class OptionStringInput(Input):
    """A string limited to a set of options, compared case-insensitively."""
    options: list[Option]

    type: typing.ClassVar[str] = 'option_string'

    def list_options(self):
        """Return a sorted list of the option keys."""
        return sorted(option.key.lower() for option in self.options)

    def validate(self, value):
        option_keys = self.list_options()
        if str(value).lower() not in option_keys:
            return get_message('INVALID_OPTION').format(
                option_list=option_keys)
        return None

    def preprocess(self, value):
        return None if value in {None, ''} else str(value).lower()


class FileOutput(Output):
    """A file written to the workspace."""
    path: str
    """Path to the output file within the workspace directory"""


class SingleBandRasterOutput(FileOutput):
    """A single band raster written to the workspace."""


class ModelSpec(BaseModel):
    """Inputs and outputs of a workflow."""

    model_id: str
    """Short snake-case identifier"""

    model_title: str
    """User-facing title"""

    input_field_order: list[list[str]]
    """Groups of input ids, in display order.  Every input appears exactly
    once, unless it is hidden."""

    inputs: list[Input]
    outputs: list[Output]

    module_name: str
    """The importable module that has the ``execute`` function"""

    @model_validator(mode='after')
    def check_inputs_in_field_order(self):
        found_keys = set()
        for group in self.input_field_order:
            for key in group:
                if key in found_keys:
                    raise ValueError(
                        f'Key {key} appears more than once in '
                        'input_field_order')
                found_keys.add(key)
        for _input in self.inputs:
            if _input.hidden:
                if _input.id in found_keys:
                    raise ValueError(
                        f'Input {_input.id} is hidden but appears in '
                        'input_field_order')
                found_keys.add(_input.id)
        if found_keys != set(_input.id for _input in self.inputs):
            raise ValueError(
                'Mismatch between keys in inputs and input_field_order')
        return self

    def get_input(self, key):
        """Get an Input by its id."""
        return {_input.id: _input for _input in self.inputs}[key]

    def preprocess_inputs(self, input_values):
        """Preprocess a dict of raw input values.

        The result has exactly the input ids of this spec; inputs that were
        not provided are preprocessed from ``None``.
        """
        return {
            _input.id: _input.preprocess(input_values.get(_input.id, None))
            for _input in self.inputs}

    def outputs_to_be_created(self, args):
        """Ids of the outputs created for a set of preprocessed args."""
        return set(
            output.id for output in self.outputs
            if bool(utils.evaluate_expression(
                expression=f'{output.created_if}', variable_map=args)))

    def create_output_directories(self, args):
        """Create the directories of the outputs to be created."""
        expected = self.outputs_to_be_created(args)
        for output in self.outputs:
            if output.id in expected:
                os.makedirs(os.path.join(
                    args['workspace_dir'], os.path.dirname(output.path)),
                    exist_ok=True)

    def setup(self, args, taskgraph_key='taskgraph_cache'):
        """Preprocess args, create directories and start a task graph.

        Returns:
            Tuple of ``(args, file_registry, graph)``.
        """
        args = self.preprocess_inputs(args)
        self.create_output_directories(args)
        file_registry = FileRegistry(
            outputs=self.outputs,
            workspace_dir=args['workspace_dir'],
            file_suffix=args['results_suffix'])
        graph = taskgraph.TaskGraph(
            os.path.dirname(file_registry[taskgraph_key]),
            n_workers=args['n_workers'])
        return args, file_registry, graph

    def execute(self, args, create_logfile=False, log_level=logging.NOTSET,
                save_file_registry=False):
        """Run the workflow's ``execute`` function with logging around it.

        Args:
            args (dict): the raw args dict.
            create_logfile (bool): write all logging to a file in the
                workspace.
            log_level (int): the threshold of the logfile.
            save_file_registry (bool): write the returned file registry as
                ``file_registry<suffix>.json`` in the workspace.

        Returns:
            The file registry dict.
        """
        if create_logfile:
            context = utils.prepare_workspace(
                args['workspace_dir'], model_id=self.model_id,
                logging_level=log_level)
        else:
            context = contextlib.nullcontext()

        with context:
            LOGGER.info(
                'Starting workflow with parameters: \n' +
                utils.format_args_dict(args, self.model_id))
            module = importlib.import_module(self.module_name)
            registry = module.execute(args)

            if save_file_registry:
                preprocessed_args = self.preprocess_inputs(args)
                registry_path = os.path.join(
                    preprocessed_args['workspace_dir'],
                    f'file_registry{preprocessed_args["results_suffix"]}.json')
                with open(registry_path, 'w') as json_file:
                    json.dump(registry, json_file, indent=4)
            return registry


WORKSPACE = DirectoryInput(
    id='workspace_dir',
    name='workspace',
    about=(
        'The folder where all the output files will be written.  If this '
        'folder does not exist, it will be created.'),
    permissions='rwx',
    must_exist=False,
)
SUFFIX = ResultsSuffixInput(
    id='results_suffix',
    name='file suffix',
    about='Suffix that will be appended to all output file names.',
    required=False,
    regexp='[a-zA-Z0-9_-]*',
)
N_WORKERS = NWorkersInput(
    id='n_workers',
    name='taskgraph n_workers parameter',
    about=(
        'The n_workers parameter to provide to taskgraph.  -1 runs all jobs '
        'synchronously, 0 in the same process but asynchronously, and a '
        'positive integer spawns that many processes.'),
    required=False,
    hidden=True,
    expression='value >= -1',
)
TASKGRAPH_CACHE = FileOutput(
    id='taskgraph_cache',
    path='taskgraph_cache/taskgraph.db',
    about=(
        'Cache that stores data between runs.  This directory contains no '
        'human-readable data and you may ignore it.'),
)
