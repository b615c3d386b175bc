"""Zone of influence of the nearest feature.

The distance from every cell to the nearest feature (a valid, non-zero
cell) is computed with a Euclidean distance transform and then transformed
with a decay function, cell by cell.  No neighborhood filtering is
involved.
"""
import logging
import math

import numpy

from . import decay
from . import errors
from . import filters

LOGGER = logging.getLogger(__name__)

#: Transformations of the distance that do not depend on a radius.
DISTANCE_TRANSFORMS = ('euclidean', 'log', 'sqrt')


def _identity_op(dist):
    return numpy.asarray(dist, dtype=numpy.float64)


def distance_transform_op(transform, log_base=math.e):
    """Get the elementwise op of a plain distance transform.

    Args:
        transform (str): one of ``DISTANCE_TRANSFORMS``.
        log_base (float): the base of the ``'log'`` transform.

    Raises:
        InvalidParameter: for unknown transforms and invalid bases.
    """
    if transform == 'euclidean':
        return _identity_op
    if transform == 'sqrt':
        return numpy.sqrt
    if transform != 'log':
        raise errors.InvalidParameter(
            f'Unknown distance transform "{transform}". Use one of: '
            f'{", ".join(DISTANCE_TRANSFORMS)}')

    try:
        log_base = float(log_base)
    except (TypeError, ValueError):
        raise errors.InvalidParameter(
            f'log_base must be a number, got {log_base!r}')
    if log_base <= 0 or log_base == 1:
        raise errors.InvalidParameter(
            f'log_base must be positive and different from 1, got {log_base}')

    def log_op(dist):
        """Logarithm of the distance plus one."""
        return numpy.log(dist + 1) / math.log(log_base)

    return log_op


def compute_nearest(grid, shape='euclidean', radius=None,
                    zero_as_no_data=False, log_base=math.e, **decay_kwargs):
    """Compute the ZoI of the nearest feature.

    Args:
        grid (grids.Grid): the features, non-zero valid cells being features.
        shape (str): a decay shape or alias, or one of the plain distance
            transforms: ``'euclidean'`` (the distance itself), ``'log'``
            (``log(distance + 1)`` in base ``log_base``) or ``'sqrt'``.
        radius (number or sequence): the ZoI radius.  A sequence returns one
            grid per radius, in order.  Not used by the distance transforms.
        zero_as_no_data (bool): if True, missing cells are treated like
            zeros and get a value; otherwise they stay missing.
        log_base (float): the base of the ``'log'`` transform.
        **decay_kwargs: decay parameters such as ``zoi_limit``,
            ``half_life`` or ``explicit_rate``, see
            ``decay.resolve_parameters``.

    Returns:
        A grid named ``zoi_nearest_<shape><radius>`` (or
        ``dist_<transform>``), or a list of them if ``radius`` is a
        sequence.
    """
    transform = str(shape).strip().lower()
    if transform in DISTANCE_TRANSFORMS:
        if radius is not None:
            LOGGER.debug(f'radius is not used by the {transform} transform')
        op = distance_transform_op(transform, log_base)
        distance = grid.distance_to_nearest(zero_as_no_data=zero_as_no_data)
        if transform == 'euclidean':
            return distance.rename('dist_euclidean')
        return distance.map(op).rename(f'dist_{transform}')

    shape = decay.resolve_shape(shape)
    many_radii = radius is not None and numpy.ndim(radius) > 0
    radii = filters.as_radius_list(radius) if many_radii else [radius]
    # resolve everything before computing the distance
    parameter_list = [
        decay.resolve_parameters(shape, radius=value, **decay_kwargs)
        for value in radii]

    distance = grid.distance_to_nearest(zero_as_no_data=zero_as_no_data)
    layers = []
    for value, parameters in zip(radii, parameter_list):
        label = f'zoi_nearest_{shape.value}'
        if value is not None:
            label += filters.format_radius(value)
        LOGGER.info(f'Calculating {label}')
        layers.append(
            distance.map(decay.decay_function(parameters)).rename(label))

    if many_radii:
        return layers
    return layers[0]
