"""Raster grids the ZoI engines operate on.

``Grid`` is the set of capabilities the decay, cumulative and nearest
modules need from a raster: its resolution and extent, per-cell values,
cropping, elementwise maps, a moving-window weighted sum and a Euclidean
distance transform.  Two implementations are provided:

    * ``ArrayGrid``, an in-memory ``numpy`` array with a geotransform, reduced
      with ``scipy.signal.convolve``.
    * ``RasterGrid``, a single band GDAL raster on disk, processed with
      ``pygeoprocessing``.

Grids are never modified in place; every operation returns a new grid.
Missing cells are the cells equal to the grid's nodata value, or NaN.
``to_array`` always returns a float64 array with missing cells set to NaN.
"""
import abc
import atexit
import enum
import logging
import math
import os
import shutil
import tempfile

import numpy
import pygeoprocessing
import scipy.ndimage
import scipy.signal
from osgeo import gdal

from . import errors

LOGGER = logging.getLogger(__name__)

FLOAT64_NODATA = float(numpy.finfo(numpy.float32).min)


class NoDataPolicy(str, enum.Enum):
    """Which center cells the windowed reduction computes.

    ``ALL`` computes every cell.  ``ONLY`` computes only the cells whose
    center is missing; the other cells keep their input value.  ``OMIT``
    skips missing centers, which stay missing in the output.
    """

    ALL = 'all'
    ONLY = 'only'
    OMIT = 'omit'

    @classmethod
    def resolve(cls, policy):
        """Resolve a policy name or one of its long aliases."""
        if isinstance(policy, cls):
            return policy
        name = str(policy).strip().lower()
        try:
            return _NODATA_POLICY_ALIASES[name]
        except KeyError:
            raise errors.InvalidParameter(
                f'Unknown no-data policy "{policy}". Use one of: '
                f'{", ".join(sorted(_NODATA_POLICY_ALIASES))}')


_NODATA_POLICY_ALIASES = {
    'all': NoDataPolicy.ALL,
    'compute_everywhere': NoDataPolicy.ALL,
    'only': NoDataPolicy.ONLY,
    'only_where_missing': NoDataPolicy.ONLY,
    'omit': NoDataPolicy.OMIT,
    'skip_missing_centers': NoDataPolicy.OMIT,
}


def check_matrix(matrix):
    """Validate a weight matrix and return it as a float64 array.

    Raises:
        DimensionMismatch: if the matrix is not 2D and square with an odd
            side.
        InvalidParameter: if the matrix has non-finite values.
    """
    matrix = numpy.asarray(matrix, dtype=numpy.float64)
    if (matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]
            or matrix.shape[0] % 2 != 1):
        raise errors.DimensionMismatch(
            'Filter matrices must be square with an odd number of rows and '
            f'columns, got shape {matrix.shape}')
    if not numpy.all(numpy.isfinite(matrix)):
        raise errors.InvalidParameter(
            'Filter matrices may only contain finite values.')
    return matrix


def combine_reduction(values, valid_mask, weighted_sum, valid_neighbors,
                      footprint_size, na_policy, na_rm):
    """Apply both no-data axes to a moving-window weighted sum.

    Args:
        values (numpy.array): the input values.
        valid_mask (numpy.array): boolean, True where ``values`` is valid.
        weighted_sum (numpy.array): the weighted sum of the valid neighbors
            of every cell, missing and out-of-grid neighbors counting as 0.
        valid_neighbors (numpy.array): the number of valid cells under the
            non-zero weights of every cell.  Only used if ``na_rm`` is False
            and may be ``None`` otherwise.
        footprint_size (int): the number of non-zero weights in the matrix.
        na_policy (NoDataPolicy): which center cells are computed.
        na_rm (bool): if False, a cell whose footprint includes a missing or
            out-of-grid cell becomes missing.

    Returns:
        A float64 array with missing cells set to NaN.
    """
    result = numpy.array(weighted_sum, dtype=numpy.float64)
    computed = numpy.ones(result.shape, dtype=bool)
    if not na_rm:
        computed = valid_neighbors > (footprint_size - 0.5)

    if na_policy is NoDataPolicy.ALL:
        result_valid = computed
    elif na_policy is NoDataPolicy.ONLY:
        result = numpy.where(valid_mask, values, result)
        result_valid = valid_mask | computed
    else:
        result_valid = valid_mask & computed

    result[~result_valid] = numpy.nan
    return result


class Grid(abc.ABC):
    """A georeferenced single band raster."""

    name = None

    @abc.abstractmethod
    def resolution(self):
        """The cell size in map units."""

    @abc.abstractmethod
    def extent(self):
        """The ``(xmin, xmax, ymin, ymax)`` bounds in map units."""

    @property
    @abc.abstractmethod
    def shape(self):
        """``(n_rows, n_cols)``."""

    @property
    @abc.abstractmethod
    def nodata(self):
        """The value flagging missing cells, or ``None``."""

    @abc.abstractmethod
    def cell(self, row, col):
        """The value at ``(row, col)``, or ``None`` if the cell is missing."""

    @abc.abstractmethod
    def crop(self, extent):
        """A new grid restricted to ``(xmin, xmax, ymin, ymax)``."""

    @abc.abstractmethod
    def fill_nodata(self, value):
        """A new grid with missing cells set to ``value``."""

    @abc.abstractmethod
    def map(self, op):
        """A new float64 grid with ``op`` applied to the valid cells."""

    @abc.abstractmethod
    def windowed_reduce(self, matrix, na_policy='all', na_rm=True):
        """A new grid of the weighted sums of the neighbors of every cell.

        Args:
            matrix (numpy.array): square weight matrix with an odd side,
                centered on the target cell.
            na_policy (str or NoDataPolicy): which center cells are computed.
            na_rm (bool): if True, missing neighbors are left out of the
                weighted sum.  If False, any missing or out-of-grid cell under
                a non-zero weight makes the result missing.
        """

    @abc.abstractmethod
    def distance_to_nearest(self, zero_as_no_data=False):
        """A new grid of the distance to the nearest valid non-zero cell.

        Distances are in map units.  If ``zero_as_no_data`` is False, cells
        missing in this grid stay missing; otherwise they are treated as
        zeros and get a distance too.
        """

    @abc.abstractmethod
    def rename(self, name):
        """The same grid under another layer name."""

    @abc.abstractmethod
    def to_array(self):
        """The values as float64, missing cells as NaN."""

    def __repr__(self):
        return (f'{type(self).__name__}(name={self.name!r}, '
                f'shape={self.shape}, resolution={self.resolution()})')


def _pixel_size_tuple(pixel_size):
    """Expand a scalar cell size into ``(x, y)`` with a north-up y."""
    if numpy.ndim(pixel_size) == 0:
        return (float(pixel_size), -float(pixel_size))
    pixel_x, pixel_y = pixel_size
    return (float(pixel_x), float(pixel_y))


def _square_resolution(pixel_size, name):
    pixel_x, pixel_y = pixel_size
    if not math.isclose(abs(pixel_x), abs(pixel_y)):
        LOGGER.warning(
            f'Grid {name} has non-square pixels {pixel_size}; using the x '
            'size as the resolution')
    return abs(pixel_x)


def _crop_window(extent, origin, pixel_size, shape):
    """Convert a map extent into a ``(row0, row1, col0, col1)`` window."""
    xmin, xmax, ymin, ymax = extent
    if xmin >= xmax or ymin >= ymax:
        raise errors.InvalidParameter(
            f'Invalid extent {extent}; expected (xmin, xmax, ymin, ymax)')
    origin_x, origin_y = origin
    pixel_x, pixel_y = abs(pixel_size[0]), abs(pixel_size[1])
    n_rows, n_cols = shape
    col0 = max(0, int(round((xmin - origin_x) / pixel_x)))
    col1 = min(n_cols, int(round((xmax - origin_x) / pixel_x)))
    row0 = max(0, int(round((origin_y - ymax) / pixel_y)))
    row1 = min(n_rows, int(round((origin_y - ymin) / pixel_y)))
    if col0 >= col1 or row0 >= row1:
        raise errors.InvalidParameter(
            f'The extent {extent} does not overlap the grid')
    return row0, row1, col0, col1


class ArrayGrid(Grid):
    """An in-memory grid.

    Args:
        array (numpy.array): 2D array of values.
        pixel_size (number or tuple): the cell size, or ``(x, y)`` cell
            sizes as in a GDAL geotransform (y is usually negative).
        origin (tuple): map coordinates of the upper left corner.
        nodata (number): value flagging missing cells.  NaN is always
            treated as missing.
        projection_wkt (str): the coordinate system, used when the grid is
            written to disk.
        name (str): the layer name.
    """

    def __init__(self, array, pixel_size, origin=(0, 0), nodata=None,
                 projection_wkt=None, name=None):
        array = numpy.asarray(array)
        if array.ndim != 2:
            raise errors.DimensionMismatch(
                f'Grids must be 2D, got an array of shape {array.shape}')
        self._array = array.copy()
        self._array.flags.writeable = False
        self.pixel_size = _pixel_size_tuple(pixel_size)
        self.origin = (float(origin[0]), float(origin[1]))
        self._nodata = nodata
        self.projection_wkt = projection_wkt
        self.name = name

    @property
    def shape(self):
        return self._array.shape

    @property
    def nodata(self):
        return self._nodata

    def resolution(self):
        return _square_resolution(self.pixel_size, self.name)

    def extent(self):
        n_rows, n_cols = self.shape
        x_values = (self.origin[0], self.origin[0] + n_cols * self.pixel_size[0])
        y_values = (self.origin[1], self.origin[1] + n_rows * self.pixel_size[1])
        return (min(x_values), max(x_values), min(y_values), max(y_values))

    def valid_mask(self):
        """Boolean array, True where the cell is not missing."""
        valid = ~pygeoprocessing.array_equals_nodata(self._array, self._nodata)
        if numpy.issubdtype(self._array.dtype, numpy.floating):
            valid &= ~numpy.isnan(self._array)
        return valid

    def _derive(self, array, name=None, origin=None):
        return ArrayGrid(
            array, self.pixel_size,
            origin=self.origin if origin is None else origin,
            nodata=None, projection_wkt=self.projection_wkt,
            name=self.name if name is None else name)

    def cell(self, row, col):
        value = self._array[row, col]
        if (numpy.issubdtype(self._array.dtype, numpy.floating)
                and numpy.isnan(value)):
            return None
        if self._nodata is not None and value == self._nodata:
            return None
        return value.item()

    def crop(self, extent):
        left, _, _, top = self.extent()
        row0, row1, col0, col1 = _crop_window(
            extent, (left, top), self.pixel_size, self.shape)
        return ArrayGrid(
            self._array[row0:row1, col0:col1], self.pixel_size,
            origin=(left + col0 * abs(self.pixel_size[0]),
                    top - row0 * abs(self.pixel_size[1])),
            nodata=self._nodata, projection_wkt=self.projection_wkt,
            name=self.name)

    def fill_nodata(self, value):
        array = self.to_array()
        array[numpy.isnan(array)] = value
        return self._derive(array)

    def map(self, op):
        valid = self.valid_mask()
        result = numpy.full(self.shape, numpy.nan, dtype=numpy.float64)
        result[valid] = op(self._array[valid].astype(numpy.float64))
        return self._derive(result)

    def windowed_reduce(self, matrix, na_policy='all', na_rm=True):
        matrix = check_matrix(matrix)
        na_policy = NoDataPolicy.resolve(na_policy)
        valid = self.valid_mask()
        signal = numpy.where(valid, self._array, 0).astype(numpy.float64)
        # direct summation keeps small weighted sums exact
        weighted_sum = scipy.signal.convolve(
            signal, matrix, mode='same', method='direct')

        footprint = (matrix != 0).astype(numpy.float64)
        valid_neighbors = None
        if not na_rm:
            valid_neighbors = scipy.signal.convolve(
                valid.astype(numpy.float64), footprint, mode='same',
                method='direct')
        result = combine_reduction(
            self._array.astype(numpy.float64), valid, weighted_sum,
            valid_neighbors, int(footprint.sum()), na_policy, na_rm)
        return self._derive(result)

    def distance_to_nearest(self, zero_as_no_data=False):
        valid = self.valid_mask()
        features = valid & (self._array != 0)
        if not numpy.any(features):
            LOGGER.warning(
                f'Grid {self.name} has no features; all distances are '
                'infinite')
            distance = numpy.full(self.shape, numpy.inf)
        else:
            distance = scipy.ndimage.distance_transform_edt(
                ~features, sampling=(abs(self.pixel_size[1]),
                                     abs(self.pixel_size[0])))
        if not zero_as_no_data:
            distance[~valid] = numpy.nan
        return self._derive(distance)

    def rename(self, name):
        return ArrayGrid(
            self._array, self.pixel_size, origin=self.origin,
            nodata=self._nodata, projection_wkt=self.projection_wkt,
            name=name)

    def to_array(self):
        array = self._array.astype(numpy.float64)
        array[~self.valid_mask()] = numpy.nan
        return array

    def to_raster(self, target_path):
        """Write the grid to a GeoTIFF and return it as a ``RasterGrid``."""
        pygeoprocessing.numpy_array_to_raster(
            base_array=numpy.nan_to_num(
                self.to_array(), nan=FLOAT64_NODATA),
            target_nodata=FLOAT64_NODATA,
            pixel_size=self.pixel_size,
            origin=self.origin,
            projection_wkt=self.projection_wkt,
            target_path=target_path)
        return RasterGrid(
            target_path, working_dir=os.path.dirname(target_path),
            name=self.name)


def write_kernel_raster(matrix, target_path, pixel_size=(1, -1)):
    """Write a weight matrix as a float64 raster for ``convolve_2d``."""
    pygeoprocessing.numpy_array_to_raster(
        base_array=check_matrix(matrix),
        target_nodata=None,
        pixel_size=pixel_size,
        origin=(0, 0),
        projection_wkt=None,
        target_path=target_path)


def _valid_mask_op(nodata):
    def valid_op(array):
        """1 where the pixel is valid, 0 where it is nodata."""
        valid = ~pygeoprocessing.array_equals_nodata(array, nodata)
        if numpy.issubdtype(array.dtype, numpy.floating):
            valid &= ~numpy.isnan(array)
        return valid.astype(numpy.uint8)
    return valid_op


def convolve_raster(signal_path_band, kernel_path_band, target_path,
                    na_policy='all', na_rm=True, working_dir=None):
    """Compute the moving-window weighted sum of a raster.

    The weighted sum is computed with ``pygeoprocessing.convolve_2d``, with
    nodata and out-of-raster pixels counting as 0.  The no-data policy and
    ``na_rm`` are then applied: see ``combine_reduction``.

    Args:
        signal_path_band (tuple): A 2-tuple of (signal_raster_path,
            band_index) to filter.
        kernel_path_band (tuple): A 2-tuple of (kernel_raster_path,
            band_index) with the weight matrix.  The kernel is not
            normalized.
        target_path (string): Where the float64 target raster should be
            written.
        na_policy (str or NoDataPolicy): which center cells are computed.
        na_rm (bool): whether missing neighbors are left out of the sum
            (True) or make the result missing (False).
        working_dir (string): The working directory that
            ``pygeoprocessing.convolve_2d`` may use for its intermediate
            files.

    Returns:
        ``None``
    """
    na_policy = NoDataPolicy.resolve(na_policy)
    signal_nodata = pygeoprocessing.get_raster_info(
        signal_path_band[0])['nodata'][signal_path_band[1] - 1]
    tmp_dir = tempfile.mkdtemp(dir=working_dir, prefix='convolve_')
    try:
        _convolve_in_dir(
            signal_path_band, kernel_path_band, target_path, signal_nodata,
            na_policy, na_rm, tmp_dir)
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def _convolve_in_dir(signal_path_band, kernel_path_band, target_path,
                     signal_nodata, na_policy, na_rm, tmp_dir):
    sum_path = os.path.join(tmp_dir, 'weighted_sum.tif')
    pygeoprocessing.convolve_2d(
        signal_path_band=signal_path_band,
        kernel_path_band=kernel_path_band,
        target_path=sum_path,
        ignore_nodata_and_edges=False,
        mask_nodata=False,
        normalize_kernel=False,
        target_datatype=gdal.GDT_Float64,
        working_dir=tmp_dir)

    base_rasters = [signal_path_band, (sum_path, 1)]
    footprint_size = 0
    if not na_rm:
        footprint = (pygeoprocessing.raster_to_numpy_array(
            kernel_path_band[0], band_id=kernel_path_band[1]) != 0)
        footprint_size = int(footprint.sum())
        footprint_path = os.path.join(tmp_dir, 'footprint.tif')
        write_kernel_raster(footprint.astype(numpy.float64), footprint_path)

        valid_path = os.path.join(tmp_dir, 'valid.tif')
        pygeoprocessing.raster_calculator(
            [signal_path_band], _valid_mask_op(signal_nodata), valid_path,
            gdal.GDT_Byte, None)
        valid_count_path = os.path.join(tmp_dir, 'valid_neighbors.tif')
        pygeoprocessing.convolve_2d(
            signal_path_band=(valid_path, 1),
            kernel_path_band=(footprint_path, 1),
            target_path=valid_count_path,
            ignore_nodata_and_edges=False,
            mask_nodata=False,
            target_datatype=gdal.GDT_Float64,
            working_dir=tmp_dir)
        base_rasters.append((valid_count_path, 1))

    def _policy_op(values, weighted_sum, valid_neighbors=None):
        valid = _valid_mask_op(signal_nodata)(values).astype(bool)
        result = combine_reduction(
            values.astype(numpy.float64), valid, weighted_sum,
            valid_neighbors, footprint_size, na_policy, na_rm)
        result[numpy.isnan(result)] = FLOAT64_NODATA
        return result

    pygeoprocessing.raster_calculator(
        base_rasters, _policy_op, target_path, gdal.GDT_Float64,
        FLOAT64_NODATA)


def distance_raster(signal_path_band, target_path, zero_as_no_data=False,
                    working_dir=None):
    """Compute the distance from every pixel to the nearest feature.

    Features are valid, non-zero pixels.  Distances are in map units.

    Args:
        signal_path_band (tuple): A 2-tuple of (raster_path, band_index)
            with the features.
        target_path (string): Where the float64 distance raster is written.
        zero_as_no_data (bool): if True, nodata pixels get a distance like
            any other non-feature pixel.  Otherwise they are nodata in the
            target.
        working_dir (string): where intermediate files may be written.

    Returns:
        ``None``
    """
    raster_info = pygeoprocessing.get_raster_info(signal_path_band[0])
    pixel_x, pixel_y = raster_info['pixel_size']
    nodata = raster_info['nodata'][signal_path_band[1] - 1]
    def mask_op(values, distance):
        """Set the distance of nodata input pixels to nodata."""
        result = distance.astype(numpy.float64)
        if not zero_as_no_data:
            result[_valid_mask_op(nodata)(values) == 0] = FLOAT64_NODATA
        return result

    tmp_dir = tempfile.mkdtemp(dir=working_dir, prefix='distance_')
    try:
        distance_path = os.path.join(tmp_dir, 'distance.tif')
        pygeoprocessing.distance_transform_edt(
            signal_path_band, distance_path,
            sampling_distance=(abs(pixel_x), abs(pixel_y)),
            working_dir=tmp_dir)
        pygeoprocessing.raster_calculator(
            [signal_path_band, (distance_path, 1)], mask_op, target_path,
            gdal.GDT_Float64, FLOAT64_NODATA)
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


_DEFAULT_WORKING_DIR = None


def _default_working_dir():
    """A temporary directory shared by raster grids, removed at exit."""
    global _DEFAULT_WORKING_DIR
    if _DEFAULT_WORKING_DIR is None:
        _DEFAULT_WORKING_DIR = tempfile.mkdtemp(prefix='oneimpact_')
        atexit.register(
            shutil.rmtree, _DEFAULT_WORKING_DIR, ignore_errors=True)
    return _DEFAULT_WORKING_DIR


class RasterGrid(Grid):
    """A single band of a GDAL raster on disk.

    Derived grids are written as GeoTIFFs to ``working_dir``.  If not given,
    a temporary directory shared by all raster grids is used; it is removed
    when the interpreter exits.

    Args:
        path (str): path to a GDAL-readable raster.
        band (int): the 1-based band index.
        working_dir (str): where derived rasters are written.
        name (str): the layer name, defaults to the file's base name.
    """

    def __init__(self, path, band=1, working_dir=None, name=None):
        self.path = path
        self.band = band
        self.raster_info = pygeoprocessing.get_raster_info(path)
        if working_dir is None:
            working_dir = _default_working_dir()
        self.working_dir = working_dir
        if name is None:
            name = os.path.splitext(os.path.basename(path))[0]
        self.name = name

    @property
    def shape(self):
        n_cols, n_rows = self.raster_info['raster_size']
        return (n_rows, n_cols)

    @property
    def nodata(self):
        return self.raster_info['nodata'][self.band - 1]

    @property
    def path_band(self):
        return (self.path, self.band)

    def resolution(self):
        return _square_resolution(self.raster_info['pixel_size'], self.name)

    def extent(self):
        xmin, ymin, xmax, ymax = self.raster_info['bounding_box']
        return (xmin, xmax, ymin, ymax)

    def _new_path(self, prefix):
        file_handle, path = tempfile.mkstemp(
            suffix='.tif', prefix=f'{prefix}_', dir=self.working_dir)
        os.close(file_handle)
        return path

    def _derive(self, path, name=None):
        return RasterGrid(
            path, working_dir=self.working_dir,
            name=self.name if name is None else name)

    def cell(self, row, col):
        raster = gdal.OpenEx(self.path, gdal.OF_RASTER)
        band = raster.GetRasterBand(self.band)
        value = band.ReadAsArray(xoff=col, yoff=row, win_xsize=1,
                                 win_ysize=1)
        band = None
        raster = None
        valid = _valid_mask_op(self.nodata)(value)
        if not valid[0, 0]:
            return None
        return value[0, 0].item()

    def crop(self, extent):
        xmin, xmax, ymin, ymax = extent
        if (xmin >= xmax) or (ymin >= ymax):
            raise errors.InvalidParameter(
                f'Invalid extent {extent}; expected (xmin, xmax, ymin, ymax)')
        target_path = self._new_path('crop')
        pygeoprocessing.warp_raster(
            self.path, self.raster_info['pixel_size'], target_path, 'near',
            target_bb=[xmin, ymin, xmax, ymax])
        return self._derive(target_path)

    def fill_nodata(self, value):
        nodata = self.nodata

        def fill_op(array):
            """Replace nodata pixels with the fill value."""
            result = array.astype(numpy.float64)
            result[_valid_mask_op(nodata)(array) == 0] = value
            return result

        target_path = self._new_path('filled')
        pygeoprocessing.raster_calculator(
            [self.path_band], fill_op, target_path, gdal.GDT_Float64,
            FLOAT64_NODATA)
        return self._derive(target_path)

    def map(self, op):
        target_path = self._new_path('map')
        pygeoprocessing.raster_map(
            op=op,
            rasters=[self.path],
            target_path=target_path,
            target_dtype=numpy.float64,
            target_nodata=FLOAT64_NODATA)
        return self._derive(target_path)

    def windowed_reduce(self, matrix, na_policy='all', na_rm=True):
        kernel_path = self._new_path('kernel')
        pixel_size = self.raster_info['pixel_size']
        write_kernel_raster(matrix, kernel_path, pixel_size=pixel_size)
        target_path = self._new_path('reduce')
        convolve_raster(
            self.path_band, (kernel_path, 1), target_path,
            na_policy=na_policy, na_rm=na_rm, working_dir=self.working_dir)
        return self._derive(target_path)

    def distance_to_nearest(self, zero_as_no_data=False):
        target_path = self._new_path('distance')
        distance_raster(
            self.path_band, target_path, zero_as_no_data=zero_as_no_data,
            working_dir=self.working_dir)
        return self._derive(target_path)

    def rename(self, name):
        return RasterGrid(
            self.path, band=self.band, working_dir=self.working_dir,
            name=name)

    def to_array(self):
        array = pygeoprocessing.raster_to_numpy_array(
            self.path, band_id=self.band).astype(numpy.float64)
        array[_valid_mask_op(self.nodata)(array) == 0] = numpy.nan
        return array
