"""Zone of influence workflow on raster files.

Reads a single band raster of disturbance features and writes, for every
radius, the cumulative ZoI (or density) and/or the ZoI of the nearest
feature as GeoTIFFs in a workspace.
"""
import logging
import math
import os

import numpy
import pygeoprocessing
from osgeo import gdal

from . import decay
from . import errors
from . import filters
from . import grids
from . import nearest
from . import spec
from . import validation

LOGGER = logging.getLogger(__name__)

NEAREST_DECAY = 'decay'
_SHAPE_OPTIONS = [
    spec.Option(key=decay.DecayShape.THRESHOLD.value,
                about='Constant within the radius, 0 beyond it.'),
    spec.Option(key=decay.DecayShape.CIRCLE.value,
                about='Like threshold, with the radius itself included.'),
    spec.Option(key=decay.DecayShape.LINEAR.value,
                about='Decreases linearly from the feature to the radius.'),
    spec.Option(key=decay.DecayShape.EXPONENTIAL.value,
                about='Exponential decay with the distance.'),
    spec.Option(key=decay.DecayShape.GAUSSIAN.value,
                about='Gaussian (half normal) decay with the distance.'),
    spec.Option(key=decay.DecayShape.RECTANGLE.value,
                about='Square window of ones, for cumulative ZoI only.'),
    spec.Option(key=decay.DecayShape.USER_DEFINED.value,
                about='A user-defined filter read from a file, for '
                      'cumulative ZoI only.'),
]

MODEL_SPEC = spec.ModelSpec(
    model_id='zone_of_influence',
    model_title='Zone of Influence',
    module_name=__name__,
    input_field_order=[
        ['workspace_dir', 'results_suffix'],
        ['input_raster_path', 'calc_cumulative', 'calc_nearest'],
        ['shape', 'radii', 'filter_path', 'output_type'],
        ['zoi_limit', 'half_life', 'zoi_hl_ratio', 'sigma', 'exp_amplitude',
         'exp_rate'],
        ['min_intensity', 'max_distance'],
        ['na_policy', 'na_rm', 'zero_as_no_data'],
        ['nearest_transform', 'log_base'],
    ],
    inputs=[
        spec.WORKSPACE,
        spec.SUFFIX,
        spec.N_WORKERS,
        spec.SingleBandRasterInput(
            id='input_raster_path',
            name='disturbance features',
            about=(
                'A raster of infrastructure or disturbance features.  Valid, '
                'non-zero pixels are features; their values weight the '
                'cumulative ZoI.  Must be projected in linear units.'),
            projected=True,
        ),
        spec.BooleanInput(
            id='calc_cumulative',
            name='calculate cumulative ZoI',
            about='Whether to calculate the cumulative ZoI of all features.',
            required=False,
        ),
        spec.BooleanInput(
            id='calc_nearest',
            name='calculate ZoI of the nearest feature',
            about='Whether to calculate the ZoI of the nearest feature.',
            required=False,
        ),
        spec.OptionStringInput(
            id='shape',
            name='ZoI shape',
            about='The decay function or filter shape.',
            options=_SHAPE_OPTIONS,
        ),
        spec.NumberListInput(
            id='radii',
            name='ZoI radii',
            about=(
                'One or more ZoI radii, in map units, separated by commas.  '
                'Outputs are created for each radius.'),
            required='str(shape).lower() != "mfilter"',
            expression='value > 0',
        ),
        spec.FileInput(
            id='filter_path',
            name='filter file',
            about=(
                'A GRASS r.mfilter file or a plain matrix of weights, square '
                'with an odd side.  Required for the mfilter shape.'),
            required='str(shape).lower() == "mfilter"',
        ),
        spec.OptionStringInput(
            id='output_type',
            name='output type',
            about='Whether the cumulative filters are rescaled or normalized.',
            required=False,
            options=[
                spec.Option(
                    key=filters.OutputType.CUMULATIVE_ZOI.value,
                    about=(
                        'The filter is 1 at its center, or at its maximum '
                        'for user-defined filters.')),
                spec.Option(
                    key=filters.OutputType.DENSITY.value,
                    about='The filter sums to 1.'),
            ],
        ),
        spec.NumberInput(
            id='zoi_limit',
            name='ZoI limit',
            about=(
                'The value of the exponential and Gaussian functions at the '
                'ZoI radius.  Defaults to 0.05.'),
            required=False,
            expression='(value > 0) & (value < 1)',
        ),
        spec.NumberInput(
            id='half_life',
            name='half life',
            about=(
                'Half life of the exponential function, in map units.  Used '
                'when no radius is given.'),
            required=False,
            expression='value > 0',
        ),
        spec.NumberInput(
            id='zoi_hl_ratio',
            name='ZoI to half life ratio',
            about=(
                'Ratio between the ZoI radius and the half life of the '
                'exponential function.  Takes precedence over the ZoI limit.'),
            required=False,
            expression='value > 0',
        ),
        spec.NumberInput(
            id='sigma',
            name='sigma',
            about=(
                'Standard deviation of the Gaussian function, in map units.  '
                'Used when no radius is given.'),
            required=False,
            expression='value > 0',
        ),
        spec.NumberInput(
            id='exp_amplitude',
            name='amplitude',
            about=(
                'Value of the exponential and Gaussian functions at the '
                'feature.  Defaults to 1.'),
            required=False,
        ),
        spec.NumberInput(
            id='exp_rate',
            name='decay rate',
            about=(
                'Decay rate of the exponential and Gaussian functions, used '
                'when it cannot be derived from the other parameters.  '
                'Defaults to 0.01.'),
            required=False,
            expression='value >= 0',
        ),
        spec.NumberInput(
            id='min_intensity',
            name='minimum intensity',
            about=(
                'The value at which exponential and Gaussian filters are '
                'truncated.  Defaults to 0.01.'),
            required=False,
            expression='(value > 0) & (value < 1)',
        ),
        spec.NumberInput(
            id='max_distance',
            name='maximum filter distance',
            about=(
                'The maximum distance between the center and the edge of a '
                'filter, in map units.  Defaults to 50000.'),
            required=False,
            expression='value > 0',
        ),
        spec.OptionStringInput(
            id='na_policy',
            name='no-data policy',
            about='Which pixels the cumulative ZoI is calculated for.',
            required=False,
            options=[
                spec.Option(
                    key=grids.NoDataPolicy.ALL.value,
                    about='Every pixel.'),
                spec.Option(
                    key=grids.NoDataPolicy.ONLY.value,
                    about=('Only nodata pixels; the other pixels keep their '
                           'input value.')),
                spec.Option(
                    key=grids.NoDataPolicy.OMIT.value,
                    about='Every pixel except nodata pixels.'),
            ],
        ),
        spec.BooleanInput(
            id='na_rm',
            name='ignore nodata neighbors',
            about=(
                'If true (the default), nodata pixels are left out of the '
                'cumulative ZoI.  If false, any nodata pixel within a filter '
                'makes the result nodata.'),
            required=False,
        ),
        spec.BooleanInput(
            id='zero_as_no_data',
            name='treat nodata as zero',
            about='Whether nodata pixels are treated as pixels without '
                  'features.',
            required=False,
        ),
        spec.OptionStringInput(
            id='nearest_transform',
            name='nearest feature transform',
            about='What is applied to the distance to the nearest feature.',
            required=False,
            options=[
                spec.Option(
                    key=NEAREST_DECAY,
                    about='The decay function of the ZoI shape.'),
                spec.Option(key='euclidean', about='The distance itself.'),
                spec.Option(key='log', about='log(distance + 1).'),
                spec.Option(key='sqrt', about='The square root of the '
                                              'distance.'),
            ],
        ),
        spec.NumberInput(
            id='log_base',
            name='logarithm base',
            about='Base of the log transform.  Defaults to e.',
            required=False,
            expression='(value > 0) & (value != 1)',
        ),
    ],
    outputs=[
        spec.SingleBandRasterOutput(
            id='zoi_cumulative_[RADIUS]',
            path='zoi_cumulative_[RADIUS].tif',
            about='The cumulative ZoI of the features, for a radius.',
            created_if='calc_cumulative and output_type != "density"',
        ),
        spec.SingleBandRasterOutput(
            id='density_[RADIUS]',
            path='density_[RADIUS].tif',
            about='The density of the features, for a radius.',
            created_if='calc_cumulative and output_type == "density"',
        ),
        spec.SingleBandRasterOutput(
            id='zoi_nearest_[RADIUS]',
            path='zoi_nearest_[RADIUS].tif',
            about='The ZoI of the nearest feature, for a radius.',
            created_if=(
                'calc_nearest and nearest_transform in (None, "decay")'),
        ),
        spec.SingleBandRasterOutput(
            id='dist_[TRANSFORM]',
            path='dist_[TRANSFORM].tif',
            about='The transformed distance to the nearest feature.',
            created_if=(
                'calc_nearest and nearest_transform not in (None, "decay")'),
        ),
        spec.SingleBandRasterOutput(
            id='kernel_[RADIUS]',
            path='intermediate/kernel_[RADIUS].tif',
            about='The filter applied for a radius.',
            created_if='calc_cumulative',
        ),
        spec.SingleBandRasterOutput(
            id='filled_input',
            path='intermediate/filled_input.tif',
            about='The input raster with nodata pixels set to 0.',
            created_if='zero_as_no_data',
        ),
        spec.SingleBandRasterOutput(
            id='distance',
            path='intermediate/distance.tif',
            about='Distance to the nearest feature, in map units.',
            created_if='calc_nearest',
        ),
        spec.TASKGRAPH_CACHE,
    ],
)


def execute(args):
    """Zone of Influence.

    Args:
        args['workspace_dir'] (string): (required) Output directory for
            intermediate, temporary and final files.
        args['results_suffix'] (string): (optional) String to append to any
            output file.
        args['n_workers'] (int): (optional) The number of worker processes to
            use for executing the tasks of this workflow.  If omitted,
            computation will take place in the current process.
        args['input_raster_path'] (string): (required) A single band raster
            of features, projected in linear units.
        args['calc_cumulative'] (bool): whether to write the cumulative ZoI.
        args['calc_nearest'] (bool): whether to write the ZoI of the nearest
            feature.
        args['shape'] (string): (required) one of the ``decay.DecayShape``
            values.
        args['radii'] (list or string): (required unless the shape is
            ``mfilter``) one or more radii, in map units.
        args['filter_path'] (string): (required if the shape is ``mfilter``)
            a filter file readable with ``filters.load_filter``.
        args['output_type'] (string): ``cumulative_zoi`` (default) or
            ``density``.
        args['zoi_limit'], args['half_life'], args['zoi_hl_ratio'],
            args['sigma'] (number): (optional) decay parameters, see
            ``decay.resolve_parameters``.
        args['exp_amplitude'], args['exp_rate'] (number): (optional) the
            explicit amplitude and rate of the exponential and Gaussian
            functions.
        args['min_intensity'], args['max_distance'] (number): (optional)
            truncation of the exponential and Gaussian filters.
        args['na_policy'] (string): (optional) ``all``, ``only`` or ``omit``.
        args['na_rm'] (bool): (optional) whether nodata neighbors are left
            out of the cumulative ZoI.  Defaults to True.
        args['zero_as_no_data'] (bool): (optional) whether nodata pixels are
            treated as zeros.
        args['nearest_transform'] (string): (optional) ``decay`` (default),
            ``euclidean``, ``log`` or ``sqrt``.
        args['log_base'] (number): (optional) base of the ``log`` transform.

    Returns:
        File registry dictionary mapping MODEL_SPEC output ids to absolute paths

    Raises:
        ValueError: if the args are invalid.
    """
    validation_warnings = validate(args)
    if validation_warnings:
        raise ValueError(
            'Invalid args: ' + '; '.join(
                f'{", ".join(keys)}: {message}'
                for keys, message in validation_warnings))
    if not (args.get('calc_cumulative') or args.get('calc_nearest')):
        raise ValueError(
            'At least one of calc_cumulative and calc_nearest must be true.')

    LOGGER.info('Starting Zone of Influence workflow')
    args, file_registry, graph = MODEL_SPEC.setup(args)

    shape = decay.resolve_shape(args['shape'])
    output_type = filters.OutputType.resolve(
        args['output_type'] or filters.OutputType.CUMULATIVE_ZOI)
    na_policy = grids.NoDataPolicy.resolve(
        args['na_policy'] or grids.NoDataPolicy.ALL)
    na_rm = True if args['na_rm'] is None else args['na_rm']
    nearest_transform = args['nearest_transform'] or NEAREST_DECAY
    decay_kwargs = {
        'zoi_limit': _default(args['zoi_limit'], 0.05),
        'half_life': args['half_life'],
        'zoi_hl_ratio': args['zoi_hl_ratio'],
        'sigma': args['sigma'],
        'explicit_rate': (_default(args['exp_amplitude'], 1),
                          _default(args['exp_rate'], 0.01)),
    }

    input_grid = grids.RasterGrid(
        args['input_raster_path'],
        working_dir=os.path.join(args['workspace_dir'], 'intermediate'))
    resolution = input_grid.resolution()
    pixel_size = input_grid.raster_info['pixel_size']

    if shape is decay.DecayShape.USER_DEFINED:
        radius_keys = [shape.value]
    else:
        radii = filters.as_radius_list(args['radii'])
        radius_keys = [filters.format_radius(radius) for radius in radii]

    # check every decay parameter before scheduling any work
    build_kwargs = {}
    if args['calc_cumulative']:
        filter_kwargs = dict(
            decay_kwargs, normalize=output_type.normalize,
            min_intensity=_default(args['min_intensity'], 0.01),
            max_distance=_default(args['max_distance'], 50000))
        if shape is decay.DecayShape.USER_DEFINED:
            build_kwargs[shape.value] = filter_kwargs
            filters.build_filter(
                resolution, shape,
                matrix=filters.load_filter(args['filter_path']),
                **filter_kwargs)
        else:
            for radius, key in zip(radii, radius_keys):
                build_kwargs[key] = dict(filter_kwargs, radius=radius)
                filters.build_filter(resolution, shape, **build_kwargs[key])

    nearest_parameters = {}
    if args['calc_nearest'] and nearest_transform == NEAREST_DECAY:
        if shape is decay.DecayShape.USER_DEFINED:
            raise errors.InvalidShape(
                'The ZoI of the nearest feature needs a decay function; '
                'mfilter only supports the cumulative ZoI.')
        for radius, key in zip(radii, radius_keys):
            nearest_parameters[key] = decay.resolve_parameters(
                shape, radius=radius, **decay_kwargs)
    elif args['calc_nearest']:
        nearest.distance_transform_op(
            nearest_transform, _default(args['log_base'], math.e))

    signal_path = args['input_raster_path']
    input_tasks = []
    if args['zero_as_no_data']:
        signal_path = file_registry['filled_input']
        input_tasks.append(graph.add_task(
            _fill_nodata,
            kwargs={
                'source_raster_path': args['input_raster_path'],
                'target_raster_path': signal_path,
            },
            target_path_list=[signal_path],
            task_name='Set nodata pixels to 0'))

    if args['calc_cumulative']:
        output_id = f'{output_type.prefix}_[RADIUS]'
        for key in radius_keys:
            kernel_path = file_registry['kernel_[RADIUS]', key]
            kernel_task = graph.add_task(
                _write_kernel,
                kwargs={
                    'resolution': resolution,
                    'shape': shape.value,
                    'build_kwargs': build_kwargs[key],
                    'pixel_size': pixel_size,
                    'target_kernel_path': kernel_path,
                    'filter_path': args['filter_path'],
                },
                target_path_list=[kernel_path],
                task_name=f'Create {shape.value} kernel - {key}')

            target_path = file_registry[output_id, key]
            LOGGER.info(
                f'Calculating {output_type.prefix} for radius {key}, shape '
                f'{shape.value}')
            graph.add_task(
                grids.convolve_raster,
                kwargs={
                    'signal_path_band': (signal_path, 1),
                    'kernel_path_band': (kernel_path, 1),
                    'target_path': target_path,
                    'na_policy': na_policy.value,
                    'na_rm': na_rm,
                    'working_dir': os.path.dirname(kernel_path),
                },
                target_path_list=[target_path],
                dependent_task_list=[kernel_task] + input_tasks,
                task_name=f'Convolve {output_type.prefix} - {key}')

    if args['calc_nearest']:
        distance_task = graph.add_task(
            grids.distance_raster,
            kwargs={
                'signal_path_band': (signal_path, 1),
                'target_path': file_registry['distance'],
                'zero_as_no_data': bool(args['zero_as_no_data']),
                'working_dir': os.path.dirname(file_registry['distance']),
            },
            target_path_list=[file_registry['distance']],
            dependent_task_list=input_tasks,
            task_name='Distance to the nearest feature')

        if nearest_transform == NEAREST_DECAY:
            for key, parameters in nearest_parameters.items():
                target_path = file_registry['zoi_nearest_[RADIUS]', key]
                graph.add_task(
                    _decay_raster,
                    kwargs={
                        'distance_raster_path': file_registry['distance'],
                        'parameters': parameters,
                        'target_raster_path': target_path,
                    },
                    target_path_list=[target_path],
                    dependent_task_list=[distance_task],
                    task_name=f'ZoI of the nearest feature - {key}')
        else:
            target_path = file_registry['dist_[TRANSFORM]', nearest_transform]
            graph.add_task(
                _transform_distance_raster,
                kwargs={
                    'distance_raster_path': file_registry['distance'],
                    'transform': nearest_transform,
                    'log_base': _default(args['log_base'], math.e),
                    'target_raster_path': target_path,
                },
                target_path_list=[target_path],
                dependent_task_list=[distance_task],
                task_name=f'Transform the distance - {nearest_transform}')

    graph.close()
    graph.join()
    LOGGER.info('Zone of Influence workflow complete')
    return file_registry.registry


def _default(value, default):
    return default if value is None else value


def _fill_nodata(source_raster_path, target_raster_path):
    """Copy a raster with its nodata pixels set to 0."""
    grid = grids.RasterGrid(
        source_raster_path,
        working_dir=os.path.dirname(target_raster_path))
    nodata = grid.nodata

    def _fill(array):
        result = array.astype(numpy.float64)
        if nodata is not None:
            result[pygeoprocessing.array_equals_nodata(array, nodata)] = 0
        result[numpy.isnan(result)] = 0
        return result

    pygeoprocessing.raster_calculator(
        [grid.path_band], _fill, target_raster_path, gdal.GDT_Float64,
        grids.FLOAT64_NODATA)


def _write_kernel(resolution, shape, build_kwargs, pixel_size,
                  target_kernel_path, filter_path=None):
    """Build a filter and write it as a kernel raster.

    User-defined filters are read from ``filter_path``.
    """
    matrix = None
    if decay.resolve_shape(shape) is decay.DecayShape.USER_DEFINED:
        matrix = filters.load_filter(filter_path)
    matrix = filters.build_filter(
        resolution, shape, matrix=matrix, **build_kwargs)
    grids.write_kernel_raster(matrix, target_kernel_path, pixel_size)


def _decay_raster(distance_raster_path, parameters, target_raster_path):
    """Apply a decay function to a distance raster."""
    pygeoprocessing.raster_map(
        op=decay.decay_function(parameters),
        rasters=[distance_raster_path],
        target_path=target_raster_path,
        target_dtype=numpy.float64,
        target_nodata=grids.FLOAT64_NODATA)


def _transform_distance_raster(distance_raster_path, transform, log_base,
                               target_raster_path):
    """Apply one of the plain distance transforms to a distance raster."""
    pygeoprocessing.raster_map(
        op=nearest.distance_transform_op(transform, log_base),
        rasters=[distance_raster_path],
        target_path=target_raster_path,
        target_dtype=numpy.float64,
        target_nodata=grids.FLOAT64_NODATA)


@validation.model_validator
def validate(args, limit_to=None):
    return validation.validate(args, MODEL_SPEC)
