"""Validation of workflow args against a ``ModelSpec``."""
import copy
import inspect
import importlib
import logging
import os
import pprint

from . import utils

LOGGER = logging.getLogger(__name__)

MESSAGES = {
    'MISSING_KEY': 'Key is missing from the args dict',
    'MISSING_VALUE': 'Input is required but has no value',
    'NOT_A_NUMBER': 'Value "{value}" could not be interpreted as a number',
    'NOT_A_NUMBER_LIST': (
        'Value "{value}" could not be interpreted as a list of numbers'),
    'UNEXPECTED_ERROR': 'An unexpected error occurred in validation',
    'DIR_NOT_FOUND': 'Directory not found',
    'NOT_A_DIR': 'Path must be a directory',
    'FILE_NOT_FOUND': 'File not found',
    'INVALID_PROJECTION': 'Dataset must have a valid projection.',
    'NOT_PROJECTED': 'Dataset must be projected in linear units.',
    'NOT_GDAL_RASTER': 'File could not be opened as a GDAL raster',
    'NOT_SINGLE_BAND': 'Raster must have exactly one band, found {n_bands}',
    'REGEXP_MISMATCH': 'Value did not match expected pattern {regexp}',
    'INVALID_OPTION': 'Value must be one of: {option_list}',
    'INVALID_VALUE': 'Value does not meet condition {condition}',
    'NOT_AN_INTEGER': 'Value "{value}" does not represent an integer',
    'NOT_BOOLEAN': 'Value must be either True or False, not {value}',
    'NEED_PERMISSION_DIRECTORY': (
        'You must have {permission} access to this directory'),
    'NEED_PERMISSION_FILE': 'You must have {permission} access to this file',
}


def get_message(key):
    return MESSAGES[key]


def check_permissions(path, permissions, message_key):
    """Check rwx permissions on a path; return an error message or None."""
    for letter, mode, descriptor in (
            ('r', os.R_OK, 'read'),
            ('w', os.W_OK, 'write'),
            ('x', os.X_OK, 'execute')):
        if letter in permissions and not os.access(path, mode):
            return get_message(message_key).format(permission=descriptor)
    return None


def validate(args, model_spec):
    """Validate an args dict against a model spec.

    Validation is done in two phases: first, required inputs must be present
    and have a value; then every input with a value is checked by its
    type-specific ``validate`` method.

    Args:
        args (dict): The args dict to validate.
        model_spec (spec.ModelSpec): The spec to validate against.

    Returns:
        A list of tuples where the first element of the tuple is an iterable of
        keys affected by the error in question and the second element of the
        tuple is the string message of the error.  If no validation errors were
        found, an empty list is returned.
    """
    validation_warnings = []

    missing_keys = set()
    required_keys_with_no_value = set()
    keys_with_falsey_values = set()
    expression_values = {
        input_spec.id: args.get(input_spec.id, False)
        for input_spec in model_spec.inputs}
    for parameter_spec in model_spec.inputs:
        key = parameter_spec.id
        required = parameter_spec.required
        if isinstance(required, str):
            required = bool(utils.evaluate_expression(
                expression=required, variable_map=expression_values))

        if required:
            if key not in args:
                missing_keys.add(key)
            elif args[key] in ('', None):
                required_keys_with_no_value.add(key)
        elif args.get(key) in ('', None):
            keys_with_falsey_values.add(key)

    if missing_keys:
        validation_warnings.append(
            (sorted(missing_keys), get_message('MISSING_KEY')))
    if required_keys_with_no_value:
        validation_warnings.append(
            (sorted(required_keys_with_no_value), get_message('MISSING_VALUE')))

    insufficient_keys = (
        missing_keys | required_keys_with_no_value | keys_with_falsey_values)
    for key in sorted(set(args) - insufficient_keys):
        try:
            parameter_spec = copy.deepcopy(model_spec.get_input(key))
        except KeyError:
            LOGGER.debug(f'Provided key {key} does not exist in MODEL_SPEC')
            continue

        try:
            warning_msg = parameter_spec.validate(args[key])
        except Exception:
            LOGGER.exception(
                f'Error when validating key {key} with value {args[key]}')
            warning_msg = get_message('UNEXPECTED_ERROR')
        if warning_msg:
            validation_warnings.append(([key], warning_msg))

    return sorted(validation_warnings, key=lambda warning: warning[0][0])


def model_validator(validate_func):
    """Decorator to enforce the signature and results of ``validate``.

    The decorated function must take ``(args, limit_to=None)``.  When
    ``limit_to`` is a key, only that input is validated, with the spec found
    in the ``MODEL_SPEC`` of the decorated function's module.

    Raises:
        AssertionError: when ``args`` or ``limit_to`` are malformed.

    Example::

        @validation.model_validator
        def validate(args, limit_to=None):
            return validation.validate(args, MODEL_SPEC)
    """
    def _wrapped_validate_func(args, limit_to=None):
        validate_func_args = inspect.getfullargspec(validate_func)
        assert validate_func_args.args == ['args', 'limit_to'], (
            'validate has invalid parameters: parameters are: '
            f'{validate_func_args.args}.')
        assert isinstance(args, dict), 'args parameter must be a dictionary.'
        assert limit_to is None or isinstance(limit_to, str), (
            'limit_to parameter must be either a string key or None.')
        if limit_to is not None:
            assert limit_to in args, (
                f'limit_to key "{limit_to}" must exist in args.')
        for key in args:
            assert isinstance(key, str), 'All args keys must be strings.'

        if limit_to is None:
            LOGGER.info('Starting whole-model validation with MODEL_SPEC')
            warnings_ = validate_func(args)
        else:
            LOGGER.info('Starting single-input validation with MODEL_SPEC')
            model_module = importlib.import_module(validate_func.__module__)
            args_key_spec = model_module.MODEL_SPEC.get_input(limit_to)
            args_value = args[limit_to]

            error_msg = None
            if args_key_spec.required is True and args_value in ('', None):
                error_msg = get_message('MISSING_VALUE')
            if args_value not in ('', None):
                error_msg = args_key_spec.validate(args_value)
            warnings_ = [] if error_msg is None else [([limit_to], error_msg)]

        LOGGER.debug(f'Validation warnings: {pprint.pformat(warnings_)}')
        return warnings_

    return _wrapped_validate_func
