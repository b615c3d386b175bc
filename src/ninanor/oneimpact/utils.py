"""Logging and workspace helpers shared by the ZoI workflows."""
import ast
import contextlib
import logging
import os
import time
from datetime import datetime

from osgeo import gdal

LOGGER = logging.getLogger(__name__)
_OSGEO_LOGGER = logging.getLogger('osgeo')
LOG_FMT = (
    "%(asctime)s "
    "(%(name)s) "
    "%(module)s.%(funcName)s(%(lineno)d) "
    "%(levelname)s %(message)s")

# GDAL has 5 error levels, python's logging has 6.  We skip logging.INFO.
GDAL_ERROR_LEVELS = {
    gdal.CE_None: logging.NOTSET,
    gdal.CE_Debug: logging.DEBUG,
    gdal.CE_Warning: logging.WARNING,
    gdal.CE_Failure: logging.ERROR,
    gdal.CE_Fatal: logging.CRITICAL,
}


def _log_gdal_errors(err_level, err_no, err_msg):
    """Forward a GDAL error message to the ``osgeo`` logger.

    Args:
        err_level (int): The GDAL error level (e.g. ``gdal.CE_Failure``)
        err_no (int): The GDAL error number.
        err_msg (string): The error string.

    Returns:
        ``None``
    """
    _OSGEO_LOGGER.log(
        level=GDAL_ERROR_LEVELS.get(err_level, logging.ERROR),
        msg=f'[errno {err_no}] {err_msg.replace(chr(10), "")}')


@contextlib.contextmanager
def capture_gdal_logging():
    """Context manager for logging GDAL errors with python logging.

    GDAL messages that are not raised as exceptions (warnings, debug
    messages) are logged with the ``osgeo`` logger at the matching level.
    """
    gdal.PushErrorHandler(_log_gdal_errors)
    try:
        yield
    finally:
        gdal.PopErrorHandler()


def _format_time(seconds):
    """Render a number of seconds as ``'1h 2m 3s'``."""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    hours = int(hours)
    minutes = int(minutes)

    if hours > 0:
        return f'{hours}h {minutes}m {seconds}s'
    if minutes > 0:
        return f'{minutes}m {seconds}s'
    return f'{seconds}s'


@contextlib.contextmanager
def log_to_file(logfile, logging_level=logging.NOTSET, log_fmt=LOG_FMT,
                date_fmt=None):
    """Log all messages within this context to a file.

    Args:
        logfile (string): Where the logfile will be written.  An existing
            file is overwritten.
        logging_level (int): Messages below this level are left out of the
            logfile.
        log_fmt (string): The logging format string.
        date_fmt (string): The logging date format string.  ISO8601 if not
            provided.

    Yields:
        The ``logging.FileHandler`` writing to ``logfile``.
    """
    if os.path.exists(logfile):
        LOGGER.warning(f'Logfile {logfile} exists and will be overwritten')

    handler = logging.FileHandler(logfile, 'w', encoding='UTF-8')
    handler.setFormatter(logging.Formatter(log_fmt, date_fmt))
    handler.setLevel(logging_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.NOTSET)
    root_logger.addHandler(handler)
    try:
        yield handler
    finally:
        handler.close()
        root_logger.removeHandler(handler)


@contextlib.contextmanager
def prepare_workspace(workspace, model_id, logging_level=logging.NOTSET):
    """Create the workspace and log everything within this context to it.

    The logfile is named ``oneimpact-<model_id>-log-<timestamp>.txt``.
    """
    if not os.path.exists(workspace):
        os.makedirs(workspace)

    logfile = os.path.join(
        workspace,
        f'oneimpact-{model_id}-log-'
        f'{datetime.now().strftime("%Y-%m-%d--%H_%M_%S")}.txt')

    with capture_gdal_logging(), log_to_file(
            logfile, logging_level=logging_level):
        logging.captureWarnings(True)
        LOGGER.info(f'Writing log messages to [{logfile}]')
        start_time = time.time()
        try:
            yield
        except Exception:
            LOGGER.exception(f'Exception while executing {model_id}')
            raise
        finally:
            LOGGER.info(
                'Elapsed time: '
                f'{_format_time(round(time.time() - start_time, 2))}')
            logging.captureWarnings(False)


def evaluate_expression(expression, variable_map):
    """Evaluate a python expression such as ``'calc_cumulative'``.

    Args:
        expression (string): A string expression that returns a value.
        variable_map (dict): Variable names and their values.

    Returns:
        Whatever value is returned from evaluating ``expression``.

    Raises:
        AssertionError: if the expression uses names that are neither in
            ``variable_map`` nor builtins.
    """
    if not isinstance(__builtins__, dict):
        builtins = __builtins__.__dict__
    else:
        builtins = __builtins__

    active_symbols = set()
    for tree_node in ast.walk(ast.parse(expression)):
        if isinstance(tree_node, ast.Name):
            active_symbols.add(tree_node.id)

    missing_symbols = (
        active_symbols - set(variable_map).union(builtins.keys()))
    if missing_symbols:
        raise AssertionError(
            f'Identifiers expected in the expression "{expression}" are '
            f'missing: {", ".join(sorted(missing_symbols))}')

    # Don't run untrusted code!!!
    return eval(expression, builtins, dict(variable_map))


def format_args_dict(args_dict, model_id):
    """Format an args dict as two left-aligned columns, sorted by key.

    Args:
        args_dict (dict): The args dictionary to format.
        model_id (string): The workflow ID (e.g. zone_of_influence)

    Returns:
        A formatted string.
    """
    sorted_args = sorted(args_dict.items(), key=lambda item: item[0])

    max_key_width = 0
    if sorted_args:
        max_key_width = max(len(key) for key, _ in sorted_args)

    args_string = '\n'.join(
        f'{key:<{max_key_width}} {value}' for key, value in sorted_args)
    return f'Arguments for {model_id}:\n{args_string}\n'
