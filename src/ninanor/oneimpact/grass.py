"""Cumulative zones of influence computed by GRASS GIS.

GRASS GIS modules are run as subprocesses of the ``grass`` executable in
``--exec`` mode, inside the mapset given to a ``GrassSession``.  Every module
call is described by a typed request (``MFilterRequest``,
``ResampFilterRequest``, ``MapcalcRequest``, ``RegionRequest``,
``RemoveRequest``) and returns a ``ModuleResult``.  Maps are referred to by
their names in the mapset.
"""
import dataclasses
import logging
import os
import shutil
import subprocess
import tempfile
from typing import ClassVar

from . import decay
from . import errors
from . import filters
from . import grids

LOGGER = logging.getLogger(__name__)

GRASS_MODULES = ('r.mfilter', 'r.resamp.filter', 'r.neighbors')

RESAMP_FILTERS = (
    'box', 'bartlett', 'gauss', 'normal', 'hermite', 'sinc', 'lanczos1',
    'lanczos2', 'lanczos3', 'hann', 'hamming', 'blackman')

# r.resamp.filter filters that have an equivalent weight matrix, which is
# needed to rescale their density into a cumulative ZoI
_RESAMP_FILTER_SHAPES = {
    'box': decay.DecayShape.RECTANGLE,
    'bartlett': decay.DecayShape.LINEAR,
    'gauss': decay.DecayShape.GAUSSIAN,
}
_SHAPE_RESAMP_FILTERS = {
    shape: name for name, shape in _RESAMP_FILTER_SHAPES.items()}


def _format_value(value):
    """Format a module parameter the way GRASS expects it on the CLI."""
    if isinstance(value, (list, tuple)):
        return ','.join(_format_value(item) for item in value)
    if isinstance(value, float):
        return f'{value:.17g}'
    return str(value)


@dataclasses.dataclass(frozen=True)
class ModuleResult:
    """The outcome of a GRASS module call."""
    module: str
    args: tuple
    returncode: int
    stdout: str
    stderr: str


@dataclasses.dataclass(frozen=True)
class MFilterRequest:
    """Apply a filter file to a raster map with ``r.mfilter``."""
    module: ClassVar[str] = 'r.mfilter'
    writes_output: ClassVar[bool] = True

    input: str
    output: str
    filter_path: str
    null_only: bool = False

    def parameters(self):
        return {'input': self.input, 'output': self.output,
                'filter': self.filter_path}

    def flags(self):
        # -z: filter only null cells
        return ('z',) if self.null_only else ()


@dataclasses.dataclass(frozen=True)
class ResampFilterRequest:
    """Filter a raster map with ``r.resamp.filter`` built-in filters."""
    module: ClassVar[str] = 'r.resamp.filter'
    writes_output: ClassVar[bool] = True

    input: str
    output: str
    filters: tuple
    radius: tuple

    def parameters(self):
        return {'input': self.input, 'output': self.output,
                'filter': tuple(self.filters), 'radius': tuple(self.radius)}

    def flags(self):
        return ()


@dataclasses.dataclass(frozen=True)
class MapcalcRequest:
    """Evaluate a map algebra expression with ``r.mapcalc``."""
    module: ClassVar[str] = 'r.mapcalc'
    writes_output: ClassVar[bool] = True

    expression: str

    def parameters(self):
        return {'expression': self.expression}

    def flags(self):
        return ()


@dataclasses.dataclass(frozen=True)
class RegionRequest:
    """Set or print the computational region with ``g.region``.

    ``raster`` matches the region to a map; ``extent`` is ``(xmin, xmax,
    ymin, ymax)``.  With neither, the region is only printed.
    """
    module: ClassVar[str] = 'g.region'
    writes_output: ClassVar[bool] = False

    raster: str = None
    extent: tuple = None
    align: bool = True
    print_shell: bool = False

    def parameters(self):
        parameters = {}
        if self.raster is not None:
            parameters['raster'] = self.raster
        if self.extent is not None:
            xmin, xmax, ymin, ymax = self.extent
            parameters.update(
                {'w': float(xmin), 'e': float(xmax), 's': float(ymin),
                 'n': float(ymax)})
        return parameters

    def flags(self):
        flags = []
        if self.align and self.raster is not None:
            flags.append('a')
        if self.print_shell:
            flags.append('g')
        return tuple(flags)


@dataclasses.dataclass(frozen=True)
class RemoveRequest:
    """Delete maps from the mapset with ``g.remove``."""
    module: ClassVar[str] = 'g.remove'
    writes_output: ClassVar[bool] = False

    names: tuple
    map_type: str = 'raster'

    def parameters(self):
        return {'type': self.map_type, 'name': tuple(self.names)}

    def flags(self):
        return ('f',)


class GrassSession:
    """A GRASS GIS mapset that modules are run in.

    Args:
        mapset_path (str): path to an existing GRASS mapset
            (``<database>/<location>/<mapset>``).
        grass_executable (str): the GRASS GIS launcher.
        timeout (float): seconds after which a module call is killed.  None
            waits forever.
        quiet (bool): pass ``--quiet`` to every module.
        overwrite (bool): pass ``--overwrite`` to modules writing maps.
    """

    def __init__(self, mapset_path, grass_executable='grass', timeout=None,
                 quiet=True, overwrite=False):
        self.mapset_path = mapset_path
        self.grass_executable = grass_executable
        self.timeout = timeout
        self.quiet = quiet
        self.overwrite = overwrite

    def __repr__(self):
        return f'GrassSession({self.mapset_path!r})'

    def is_available(self):
        """Whether the GRASS executable can be found on the PATH."""
        return shutil.which(self.grass_executable) is not None

    def command(self, request):
        """The argument list running ``request`` in this mapset."""
        args = [self.grass_executable, self.mapset_path, '--exec',
                request.module]
        args.extend(f'-{flag}' for flag in request.flags())
        args.extend(
            f'{key}={_format_value(value)}'
            for key, value in request.parameters().items())
        if self.overwrite and request.writes_output:
            args.append('--overwrite')
        if self.quiet:
            args.append('--quiet')
        return args

    def run(self, request):
        """Run a module request.

        Returns:
            A ``ModuleResult``.

        Raises:
            BackendUnavailable: if GRASS cannot be started.
            BackendError: if the module exits with a non-zero code or times
                out.
        """
        args = self.command(request)
        LOGGER.debug(f'Running {" ".join(args)}')
        try:
            completed = subprocess.run(
                args, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise errors.BackendUnavailable(
                f'Could not find the GRASS GIS executable '
                f'"{self.grass_executable}"')
        except subprocess.TimeoutExpired:
            raise errors.BackendError(
                request.module, None,
                f'timed out after {self.timeout} seconds')
        if completed.returncode != 0:
            raise errors.BackendError(
                request.module, completed.returncode, completed.stderr)
        return ModuleResult(
            module=request.module, args=tuple(args),
            returncode=completed.returncode, stdout=completed.stdout,
            stderr=completed.stderr)

    def region(self):
        """The current computational region as a dict of numbers."""
        result = self.run(RegionRequest(print_shell=True))
        region = {}
        for line in result.stdout.splitlines():
            if '=' not in line:
                continue
            key, value = line.split('=', 1)
            try:
                region[key.strip()] = float(value)
            except ValueError:
                region[key.strip()] = value.strip()
        return region

    def resolution(self):
        """The north-south resolution of the computational region."""
        return self.region()['nsres']

    def set_region(self, raster=None, extent=None):
        """Match the computational region to a map or an extent."""
        return self.run(RegionRequest(raster=raster, extent=extent))

    def remove(self, names):
        """Delete raster maps from the mapset."""
        names = tuple(names)
        if not names:
            return None
        return self.run(RemoveRequest(names=names))


def resolve_resamp_filters(shape):
    """Convert a shape into the filter names of ``r.resamp.filter``.

    Args:
        shape (str): a ZoI shape or alias, a ``r.resamp.filter`` filter name,
            or a comma-separated list of them.

    Returns:
        A tuple of ``r.resamp.filter`` filter names.

    Raises:
        InvalidShape: if a shape has no ``r.resamp.filter`` equivalent.
    """
    if isinstance(shape, decay.DecayShape):
        names = [shape]
    else:
        names = [name.strip() for name in str(shape).split(',')]

    resamp_filters = []
    for name in names:
        if not isinstance(name, decay.DecayShape) and (
                name.lower() in RESAMP_FILTERS):
            resamp_filters.append(name.lower())
            continue
        try:
            resamp_filters.append(
                _SHAPE_RESAMP_FILTERS[decay.resolve_shape(name)])
        except (KeyError, errors.UnknownShape):
            raise errors.InvalidShape(
                'For the GRASS GIS module r.resamp.filter, choose among the '
                f'filters {", ".join(RESAMP_FILTERS)}; got "{name}"')
    return tuple(resamp_filters)


def compute_cumulative_grass(
        session, input_map, shape='circle', radius=100, module='r.mfilter',
        output_type='cumulative_zoi', zoi_limit=0.05, half_life=None,
        zoi_hl_ratio=None, explicit_rate=(1, 0.01), sigma=None,
        min_intensity=0.01, max_distance=50000, divisor=1, matrices=None,
        na_policy='all', extent=None, output_map_name=None,
        input_as_region=False, remove_intermediate=True, parallel=True):
    """Compute cumulative ZoI or density maps in GRASS GIS.

    With ``r.mfilter``, one filter per radius is built with
    ``filters.build_filter``, written to a temporary filter file and applied
    to ``input_map``.  With ``r.resamp.filter``, GRASS builds the filters
    itself; the density it computes is rescaled into a cumulative ZoI with
    ``r.mapcalc``, dividing by the maximum of the equivalent normalized
    weight matrix, which is only possible for the ``box``, ``bartlett`` and
    ``gauss`` filters.

    Args:
        session (GrassSession): the mapset to run in.
        input_map (str): name of the input raster map in the mapset.
        shape (str): the filter shape.  With ``r.resamp.filter``, native
            filter names and comma-separated lists are accepted too.
        radius (number or sequence): ZoI radii, in map units.
        module (str): ``'r.mfilter'`` or ``'r.resamp.filter'``.
            ``'r.neighbors'`` is recognized but not supported.
        output_type (str): ``'cumulative_zoi'`` or ``'density'``.
        zoi_limit, half_life, zoi_hl_ratio, explicit_rate, sigma,
            min_intensity, max_distance: filter parameters, see
            ``filters.build_filter``.
        divisor (number): the ``r.mfilter`` divisor.
        matrices (array-like or sequence): user-defined weights, for
            ``shape='mfilter'``.
        na_policy (str): ``'all'`` filters every cell; ``'only'`` filters
            only null cells.
        extent (tuple): ``(xmin, xmax, ymin, ymax)`` to crop the outputs to.
            The region is left at this extent.
        output_map_name (str): base name of the output maps.  Defaults to
            ``<input_map>_zoi_cumulative_<shape>`` or
            ``<input_map>_density_<shape>``.
        input_as_region (bool): match the region to ``input_map`` first.
        remove_intermediate (bool): delete temporary maps at the end.
        parallel (bool): write parallel (``TYPE P``) filter files.

    Returns:
        A list with the names of the output maps, in the order of
        ``radius``.
    """
    if session is None:
        raise errors.BackendUnavailable(
            'A GrassSession is required to compute the ZoI in GRASS GIS.')
    if module not in GRASS_MODULES:
        raise errors.InvalidParameter(
            f'Use one of the GRASS GIS modules {", ".join(GRASS_MODULES)}; '
            f'got "{module}"')
    if module == 'r.neighbors':
        raise errors.InvalidShape(
            'Computing the ZoI with r.neighbors is not supported; use '
            'r.mfilter or r.resamp.filter.')
    output_type = filters.OutputType.resolve(output_type)
    na_policy = grids.NoDataPolicy.resolve(na_policy)
    if na_policy is grids.NoDataPolicy.OMIT:
        raise errors.InvalidParameter(
            'GRASS GIS filters cannot skip null centers; use the "all" or '
            '"only" no-data policy.')

    decay_kwargs = dict(
        zoi_limit=zoi_limit, half_life=half_life, zoi_hl_ratio=zoi_hl_ratio,
        explicit_rate=explicit_rate, sigma=sigma,
        min_intensity=min_intensity, max_distance=max_distance)

    if input_as_region:
        session.set_region(raster=input_map)
    resolution = session.resolution()

    if module == 'r.resamp.filter':
        resamp_filters = resolve_resamp_filters(shape)
        if (output_type is filters.OutputType.CUMULATIVE_ZOI
                and resamp_filters[0] not in _RESAMP_FILTER_SHAPES):
            raise errors.InvalidShape(
                'The cumulative ZoI with r.resamp.filter is only available '
                'for the box, bartlett and gauss filters.')
        shape_label = ','.join(resamp_filters)
    else:
        shape = decay.resolve_shape(shape)
        shape_label = shape.value
    if output_map_name is None:
        output_map_name = f'{input_map}_{output_type.prefix}_{shape_label}'

    # (radius label, output map) for every product
    if module == 'r.mfilter' and shape is decay.DecayShape.USER_DEFINED:
        weight_matrices = filters.build_filters(
            resolution, shape, matrices=matrices,
            normalize=output_type.normalize)
        labels = (
            [''] if len(weight_matrices) == 1
            else [str(index + 1) for index in range(len(weight_matrices))])
        radii = [None] * len(weight_matrices)
    else:
        radii = filters.as_radius_list(radius)
        labels = [filters.format_radius(value) for value in radii]
        weight_matrices = None

    output_names = [f'{output_map_name}{label}' for label in labels]
    to_remove = []
    created = []
    tmp_dir = tempfile.mkdtemp(prefix='oneimpact_grass_')
    try:
        for index, (value, output_name) in enumerate(
                zip(radii, output_names)):
            LOGGER.info(
                f'Calculating {output_type.value} for radius {value}, shape '
                f'{shape_label} with {module}')
            filtered_name = output_name
            if extent is not None:
                filtered_name = f'{output_name}_uncropped'
                to_remove.append(filtered_name)

            if module == 'r.mfilter':
                if weight_matrices is not None:
                    matrix = weight_matrices[index]
                else:
                    matrix = filters.build_filter(
                        resolution, shape, radius=value,
                        normalize=output_type.normalize, **decay_kwargs)
                filter_path = os.path.join(tmp_dir, f'filter_{index}.txt')
                filters.save_filter(
                    matrix, filter_path, divisor=divisor,
                    title=f'{shape_label} {labels[index]}'.strip(),
                    parallel=parallel)
                session.run(MFilterRequest(
                    input=input_map, output=filtered_name,
                    filter_path=filter_path,
                    null_only=na_policy is grids.NoDataPolicy.ONLY))
                created.append(filtered_name)
            else:
                resamp_output = filtered_name
                if output_type is filters.OutputType.CUMULATIVE_ZOI:
                    resamp_output = f'{filtered_name}_temp'
                    to_remove.append(resamp_output)
                session.run(ResampFilterRequest(
                    input=input_map, output=resamp_output,
                    filters=resamp_filters,
                    radius=(float(value),) * len(resamp_filters)))
                created.append(resamp_output)
                if output_type is filters.OutputType.CUMULATIVE_ZOI:
                    matrix = filters.build_filter(
                        resolution, _RESAMP_FILTER_SHAPES[resamp_filters[0]],
                        radius=value, normalize=True, **decay_kwargs)
                    max_value = float(matrix.max())
                    LOGGER.info('Rescaling from density to cumulative ZoI')
                    session.run(MapcalcRequest(
                        expression=(
                            f'{filtered_name} = {resamp_output} / '
                            f'{max_value:.17g}')))
                    created.append(filtered_name)

        if extent is not None:
            session.set_region(extent=extent)
            for output_name in output_names:
                session.run(MapcalcRequest(
                    expression=f'{output_name} = {output_name}_uncropped'))
                created.append(output_name)
    except errors.OneImpactError:
        LOGGER.error(
            f'GRASS GIS ZoI computation failed; removing maps {created}')
        try:
            session.remove(created)
        except errors.OneImpactError:
            LOGGER.exception('Could not remove the partial outputs')
        raise
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    if remove_intermediate and to_remove:
        session.remove(to_remove)
    return output_names
