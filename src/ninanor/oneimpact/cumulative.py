"""Cumulative zone of influence and density of features.

The cumulative ZoI of a cell is the sum of the influence of all the features
around it: the input grid, where features are non-zero cells, is filtered
with a weight matrix (see ``filters.build_filter``) whose center is 1.  The
density of features uses the same matrix normalized to sum 1.
"""
import logging

from . import decay
from . import errors
from . import filters
from . import grass
from . import grids

LOGGER = logging.getLogger(__name__)

BACKENDS = ('local', 'grass')


def compute_cumulative(
        grid, shape='circle', radius=100, output_type='cumulative_zoi',
        backend='local', zoi_limit=0.05, half_life=None, zoi_hl_ratio=None,
        explicit_rate=(1, 0.01), sigma=None, min_intensity=0.01,
        max_distance=50000, zero_as_no_data=False, extent=None,
        na_policy='all', na_rm=True, matrices=None, session=None,
        module='r.mfilter', **grass_options):
    """Compute the cumulative ZoI or density of features for many radii.

    One weight matrix is built per radius, at the resolution of ``grid``,
    and applied with a moving-window weighted sum.  All the matrices are
    built before any filtering, so invalid parameters fail before any work
    is done.

    Args:
        grid (grids.Grid or str): the features, non-zero cells being
            features.  With ``backend='grass'``, the name of a raster map in
            the GRASS mapset.
        shape (str): the ZoI shape or one of its aliases; ``'mfilter'``
            filters with ``matrices``.
        radius (number or sequence): the ZoI radii, in map units.
        output_type (str): ``'cumulative_zoi'`` (aliases ``'zoi'``,
            ``'cumulative'``) or ``'density'``.
        backend (str): ``'local'`` or ``'grass'``.
        zoi_limit, half_life, zoi_hl_ratio, explicit_rate, sigma: decay
            parameters, see ``decay.resolve_parameters``.
        min_intensity, max_distance: limits to the size of the exponential
            and Gaussian filters, see ``filters.build_filter``.
        zero_as_no_data (bool): if True, missing cells are set to 0 before
            filtering.
        extent (tuple): ``(xmin, xmax, ymin, ymax)`` to crop every output
            to.  Defaults to the extent of ``grid``.
        na_policy (str): which cells are computed: ``'all'``, ``'only'``
            (only missing cells) or ``'omit'`` (skip missing cells).
        na_rm (bool): whether missing neighbors are left out of the sum
            (True) or make the cell missing (False).
        matrices (array-like or sequence): user-defined weight matrices,
            with ``shape='mfilter'``.
        session (grass.GrassSession): the GRASS mapset, with
            ``backend='grass'``.
        module (str): the GRASS module, with ``backend='grass'``.
        **grass_options: other arguments of
            ``grass.compute_cumulative_grass``.

    Returns:
        A list of grids (or GRASS map names), one per radius in the order of
        ``radius``, named by ``filters.filter_label``.
    """
    if backend not in BACKENDS:
        raise errors.InvalidParameter(
            f'Unknown backend "{backend}"; use one of {", ".join(BACKENDS)}')
    output_type = filters.OutputType.resolve(output_type)
    decay_kwargs = dict(
        zoi_limit=zoi_limit, half_life=half_life, zoi_hl_ratio=zoi_hl_ratio,
        explicit_rate=explicit_rate, sigma=sigma)

    if backend == 'grass':
        if zero_as_no_data:
            LOGGER.warning(
                'zero_as_no_data is not used by the GRASS GIS backend')
        if not na_rm:
            LOGGER.warning(
                'GRASS GIS filters always leave null neighbors out of the '
                'sum; na_rm=False is not used')
        return grass.compute_cumulative_grass(
            session, grid, shape=shape, radius=radius, module=module,
            output_type=output_type, min_intensity=min_intensity,
            max_distance=max_distance, matrices=matrices,
            na_policy=na_policy, extent=extent, **decay_kwargs,
            **grass_options)

    if grass_options:
        raise errors.InvalidParameter(
            'Unexpected arguments for the local backend: '
            f'{", ".join(sorted(grass_options))}')
    if not isinstance(grid, grids.Grid):
        raise errors.InvalidParameter(
            f'The local backend needs a Grid, got {type(grid).__name__}')
    shape = decay.resolve_shape(shape)
    na_policy = grids.NoDataPolicy.resolve(na_policy)

    weight_matrices = filters.build_filters(
        grid.resolution(), shape, radii=radius, matrices=matrices,
        normalize=output_type.normalize, min_intensity=min_intensity,
        max_distance=max_distance,
        **({} if shape is decay.DecayShape.USER_DEFINED else decay_kwargs))
    if shape is decay.DecayShape.USER_DEFINED:
        labels = [
            filters.filter_label(
                shape, None if len(weight_matrices) == 1 else index + 1,
                output_type)
            for index in range(len(weight_matrices))]
    else:
        labels = [
            filters.filter_label(shape, value, output_type)
            for value in filters.as_radius_list(radius)]

    if zero_as_no_data:
        grid = grid.fill_nodata(0)

    layers = []
    for matrix, label in zip(weight_matrices, labels):
        LOGGER.info(
            f'Calculating {output_type.value} {label} with a '
            f'{matrix.shape[0]}x{matrix.shape[1]} filter')
        layer = grid.windowed_reduce(matrix, na_policy=na_policy, na_rm=na_rm)
        if extent is not None:
            layer = layer.crop(extent)
        layers.append(layer.rename(label))
    return layers
