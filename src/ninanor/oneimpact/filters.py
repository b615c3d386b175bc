"""Weight matrices (filters) for the cumulative zone of influence.

A filter is a square matrix with an odd number of cells per side whose
center cell is the focal cell of a moving-window weighted sum.  Each cell
holds the decay function evaluated at the distance between that cell's
center and the focal cell.  Filters are returned as read-only float64
arrays and can be exported as text files for the GRASS GIS ``r.mfilter``
module.
"""
import enum
import logging
import math

import numpy

from . import decay
from . import errors
from . import grids

LOGGER = logging.getLogger(__name__)

# repr of float64 needs 17 significant digits to round trip
_FLOAT_FORMAT = '{:.17g}'


class OutputType(str, enum.Enum):
    """The product of the cumulative ZoI.

    ``CUMULATIVE_ZOI`` keeps the filter's center at 1, so the result is the
    sum of the influence of all features.  User-defined filters are scaled
    to a maximum of 1 instead, since their center may be 0.  ``DENSITY``
    normalizes the filter to sum 1, so the result is a weighted density of
    features.
    """

    CUMULATIVE_ZOI = 'cumulative_zoi'
    DENSITY = 'density'

    @property
    def normalize(self):
        return self is OutputType.DENSITY

    @property
    def prefix(self):
        """The prefix of layer names for this output type."""
        if self is OutputType.DENSITY:
            return 'density'
        return 'zoi_cumulative'

    @classmethod
    def resolve(cls, name):
        if isinstance(name, cls):
            return name
        try:
            return _OUTPUT_TYPE_ALIASES[str(name).strip().lower()]
        except KeyError:
            raise errors.InvalidParameter(
                f'Unknown output type "{name}". Use one of: '
                f'{", ".join(sorted(_OUTPUT_TYPE_ALIASES))}')


_OUTPUT_TYPE_ALIASES = {
    'cumulative_zoi': OutputType.CUMULATIVE_ZOI,
    'cumulative': OutputType.CUMULATIVE_ZOI,
    'zoi': OutputType.CUMULATIVE_ZOI,
    'density': OutputType.DENSITY,
}


def as_radius_list(radii):
    """Return ``radii`` as a list of floats, a single radius included."""
    if radii is None:
        raise errors.InvalidParameter('At least one radius is required.')
    if numpy.ndim(radii) == 0:
        radii = [radii]
    radii = list(radii)
    if not radii:
        raise errors.InvalidParameter('At least one radius is required.')
    return radii


def as_matrix_list(matrices):
    """Return a single matrix or a sequence of matrices as a list."""
    if matrices is None:
        raise errors.InvalidParameter(
            'A weight matrix is required for user-defined filters.')
    if isinstance(matrices, numpy.ndarray):
        if matrices.ndim == 3:
            return list(matrices)
        return [matrices]
    matrices = list(matrices)
    if matrices and all(numpy.ndim(item) == 2 for item in matrices):
        return matrices
    return [matrices]


def format_radius(radius):
    """Format a radius for layer and file names: ``500.0`` -> ``'500'``."""
    radius = float(radius)
    if radius.is_integer():
        return str(int(radius))
    return f'{radius:g}'


def filter_label(shape, radius, output_type='cumulative_zoi'):
    """Build the name of the layer made with a filter.

    Args:
        shape (str or DecayShape): the filter shape.
        radius (number): the ZoI radius.  For user-defined filters, the
            1-based index of the matrix in its batch, or None when there is
            a single matrix.
        output_type (str or OutputType): cumulative ZoI or density.

    Returns:
        ``'zoi_cumulative_<shape><radius>'`` or ``'density_<shape><radius>'``
        for shapes defined by a radius; ``'zoi_cumulative'``,
        ``'zoi_cumulative<index>'`` (or the density equivalents) for
        user-defined filters.
    """
    shape = decay.resolve_shape(shape)
    prefix = OutputType.resolve(output_type).prefix
    if shape is decay.DecayShape.USER_DEFINED:
        if radius is None:
            return prefix
        return f'{prefix}{radius}'
    return f'{prefix}_{shape.value}{format_radius(radius)}'


def _read_only(matrix):
    matrix = numpy.array(matrix, dtype=numpy.float64)
    matrix.flags.writeable = False
    return matrix


def _normalize(matrix, normalize):
    if normalize:
        total = numpy.sum(matrix[numpy.isfinite(matrix)])
        if total == 0:
            raise errors.InvalidParameter(
                'Cannot normalize a filter whose weights sum to 0.')
        return matrix / total
    half_size = matrix.shape[0] // 2
    center = matrix[half_size, half_size]
    if center == 0 or not numpy.isfinite(center):
        raise errors.InvalidParameter(
            'Cannot rescale a filter whose center weight is '
            f'{center}; use a density output or a matrix with a non-zero '
            'center.')
    return matrix / center


def _half_size(parameters, resolution, min_intensity, max_distance):
    """Number of cells between the center and the edge of a filter."""
    if parameters.shape.vanishing:
        return int(math.ceil(parameters.radius / resolution))

    max_half_size = int(math.floor(max_distance / resolution))
    reach = decay.distance_at_intensity(parameters, min_intensity)
    if math.isinf(reach) or reach > max_distance:
        LOGGER.warning(
            f'The {parameters.shape.value} filter only drops to '
            f'{min_intensity} at {reach} map units; its size was capped to '
            f'max_distance {max_distance} ({2 * max_half_size + 1} cells)')
        return max_half_size
    return int(math.ceil(reach / resolution))


def build_filter(resolution, shape, radius=None, normalize=False,
                 zoi_limit=0.05, half_life=None, zoi_hl_ratio=None,
                 explicit_rate=(1, 0.01), sigma=None, constant=1,
                 intercept=1, max_distance=50000, min_intensity=0.01,
                 matrix=None):
    """Create a weight matrix for a ZoI shape and radius.

    The matrix size is set so that it covers the ZoI: ``2 * ceil(radius /
    resolution) + 1`` cells per side for vanishing shapes, and for the
    exponential and Gaussian shapes the smallest size where the function has
    dropped to ``min_intensity`` at the edge, but never larger than
    ``max_distance``.

    Args:
        resolution (float): the cell size of the raster the filter will be
            applied to, in map units.
        shape (str or DecayShape): the filter shape.  ``'rectangle'`` gives a
            matrix of ones; ``'mfilter'`` uses ``matrix``.
        radius (float): the ZoI radius, in map units.
        normalize (bool): if True, the weights sum to 1 (density).  If
            False, the center weight is 1 (cumulative ZoI), or for
            user-defined filters the maximum weight is 1.
        zoi_limit, half_life, zoi_hl_ratio, explicit_rate, sigma, constant,
            intercept: decay parameters, see ``decay.resolve_parameters``.
        max_distance (float): maximum distance between the center and the
            edge of the filter, in map units.
        min_intensity (float): the value at which the non-vanishing shapes
            are truncated.
        matrix (array-like): the weights of a user-defined filter.

    Returns:
        A read-only square ``numpy.ndarray`` of float64 with an odd side.

    Raises:
        InvalidParameter: for invalid resolutions, radii or decay inputs,
            or negative or all-zero user weights.
        DimensionMismatch: if a user matrix is not square with an odd side.
        UnknownShape: if ``shape`` is not recognized.
    """
    shape = decay.resolve_shape(shape)
    decay.check_positive('resolution', resolution)
    resolution = float(resolution)

    if shape is decay.DecayShape.USER_DEFINED:
        if matrix is None:
            raise errors.InvalidParameter(
                'A weight matrix is required for user-defined filters.')
        matrix = grids.check_matrix(matrix)
        if numpy.any(matrix < 0):
            raise errors.InvalidParameter(
                'User-defined filters may not have negative weights.')
        if normalize:
            return _read_only(_normalize(matrix, normalize))
        # the center may be 0, e.g. for ring-shaped filters
        peak = numpy.max(matrix)
        if peak == 0 or not numpy.isfinite(peak):
            raise errors.InvalidParameter(
                f'Cannot rescale a filter whose maximum weight is {peak}.')
        return _read_only(matrix / peak)

    decay.check_positive('min_intensity', min_intensity)
    decay.check_positive('max_distance', max_distance)
    parameters = decay.resolve_parameters(
        shape, radius=radius, zoi_limit=zoi_limit, half_life=half_life,
        zoi_hl_ratio=zoi_hl_ratio, sigma=sigma, explicit_rate=explicit_rate,
        constant=constant, intercept=intercept)

    half_size = _half_size(
        parameters, resolution, float(min_intensity), float(max_distance))
    LOGGER.debug(
        f'{shape.value} filter for radius {radius}: '
        f'{2 * half_size + 1}x{2 * half_size + 1} cells')

    if shape is decay.DecayShape.RECTANGLE:
        matrix = numpy.ones((2 * half_size + 1, 2 * half_size + 1))
    else:
        row_index, col_index = numpy.ogrid[
            -half_size:half_size + 1, -half_size:half_size + 1]
        distance = resolution * numpy.hypot(row_index, col_index)
        matrix = decay.decay_function(parameters)(distance)

    return _read_only(_normalize(matrix, normalize))


def build_filters(resolution, shape, radii=None, matrices=None, **kwargs):
    """Create one weight matrix per radius, in order.

    For user-defined filters (``shape='mfilter'``), one matrix is returned
    per matrix in ``matrices`` instead.

    Args:
        resolution (float): the cell size, in map units.
        shape (str or DecayShape): the filter shape.
        radii (number or sequence): the ZoI radii.
        matrices (array-like or sequence): user-defined weights.
        **kwargs: passed to ``build_filter``.

    Returns:
        A list of read-only matrices, in the order of ``radii``.
    """
    shape = decay.resolve_shape(shape)
    if shape is decay.DecayShape.USER_DEFINED:
        return [
            build_filter(resolution, shape, matrix=matrix, **kwargs)
            for matrix in as_matrix_list(matrices)]
    return [
        build_filter(resolution, shape, radius=radius, **kwargs)
        for radius in as_radius_list(radii)]


def save_filter(matrix, path, save_format='grass_rmfilter', divisor=1,
                title=None, parallel=True, separator=' '):
    """Write a weight matrix to a text file.

    The ``grass_rmfilter`` format is the filter file read by GRASS GIS
    ``r.mfilter``::

        TITLE <title>
        MATRIX <n>
        <n rows of n weights>
        DIVISOR <divisor>
        TYPE <P or S>

    The ``raw`` format holds only the rows of weights.

    Args:
        matrix (array-like): a square matrix with an odd side.
        path (str): the target file.
        save_format (str): ``'grass_rmfilter'`` or ``'raw'``.
        divisor (number): the GRASS divisor; 0 makes GRASS divide by the sum
            of the weights of the non-null cells.
        title (str): the GRASS filter title.
        parallel (bool): GRASS filter type, parallel (``P``) or sequential
            (``S``).
        separator (str): separator between the weights of a row.

    Returns:
        ``None``
    """
    matrix = grids.check_matrix(matrix)
    save_format = str(save_format).lower()
    if save_format not in ('grass_rmfilter', 'raw'):
        raise errors.InvalidParameter(
            f'Unknown filter format "{save_format}"; use "grass_rmfilter" or '
            '"raw"')
    rows = [
        separator.join(_FLOAT_FORMAT.format(value) for value in row)
        for row in matrix]

    with open(path, 'w') as filter_file:
        if save_format == 'grass_rmfilter':
            if title is None:
                title = f'ZoI filter {matrix.shape[0]}x{matrix.shape[1]}'
            filter_file.write(f'TITLE {title}\n')
            filter_file.write(f'MATRIX {matrix.shape[0]}\n')
            filter_file.write('\n'.join(rows) + '\n')
            filter_file.write(f'DIVISOR {_FLOAT_FORMAT.format(divisor)}\n')
            filter_file.write(f'TYPE {"P" if parallel else "S"}\n')
        else:
            filter_file.write('\n'.join(rows) + '\n')
    LOGGER.debug(f'Saved {matrix.shape[0]}x{matrix.shape[1]} filter to {path}')


def load_filter(path):
    """Read a weight matrix written by ``save_filter``.

    Both the ``grass_rmfilter`` and ``raw`` formats are recognized; rows may
    be separated by whitespace or commas.  The divisor of GRASS filters is
    not applied.

    Returns:
        A read-only float64 matrix.
    """
    rows = []
    with open(path) as filter_file:
        for line in filter_file:
            line = line.strip()
            if not line:
                continue
            keyword = line.split()[0].upper()
            if keyword in ('TITLE', 'MATRIX', 'DIVISOR', 'TYPE'):
                continue
            rows.append([float(value) for value in line.replace(
                ',', ' ').split()])
    try:
        matrix = numpy.array(rows, dtype=numpy.float64)
    except ValueError:
        raise errors.DimensionMismatch(
            f'The rows of the filter in {path} have different lengths')
    return _read_only(grids.check_matrix(matrix))
