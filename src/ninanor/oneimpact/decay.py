"""Zone of Influence (ZoI) decay functions.

The functions in this module represent the multiple ways the zone of
influence of an infrastructure or disturbance might affect a process in
space.  Each function transforms a distance (a number, a ``numpy`` array or a
:class:`ninanor.oneimpact.grids.Grid` of distances) into ZoI values.  The rate
of decay is parameterized by the ZoI radius:

    * For vanishing functions (threshold, circle, linear, rectangle) the
      radius is the distance where the function reaches zero.
    * For non-vanishing functions (exponential, Gaussian), the radius is the
      distance where the function drops to ``zoi_limit``, a small value below
      which the effect is considered negligible.

Shape names are resolved case-insensitively through ``SHAPE_ALIASES``, so
``'tent'``, ``'bartlett'`` and ``'linear_decay'`` are the same shape.
"""
import dataclasses
import enum
import logging
import math

import numpy

from . import errors
from . import grids

LOGGER = logging.getLogger(__name__)


class DecayShape(str, enum.Enum):
    """The shape of a zone of influence function or filter."""

    THRESHOLD = 'threshold'
    CIRCLE = 'circle'
    LINEAR = 'linear'
    EXPONENTIAL = 'exp_decay'
    GAUSSIAN = 'gaussian'
    RECTANGLE = 'rectangle'
    USER_DEFINED = 'mfilter'

    @property
    def vanishing(self):
        """Whether the shape reaches exactly zero at the ZoI radius."""
        return self in VANISHING_SHAPES


VANISHING_SHAPES = frozenset([
    DecayShape.THRESHOLD, DecayShape.CIRCLE, DecayShape.LINEAR,
    DecayShape.RECTANGLE])

_ALIASES_BY_SHAPE = {
    DecayShape.THRESHOLD: (
        'threshold', 'threshold_decay', 'step', 'step_decay'),
    DecayShape.CIRCLE: ('circle', 'circular'),
    DecayShape.LINEAR: (
        'linear', 'linear_decay', 'bartlett', 'bartlett_decay', 'tent',
        'tent_decay'),
    DecayShape.EXPONENTIAL: (
        'exp_decay', 'exp', 'exponential', 'exponential_decay'),
    DecayShape.GAUSSIAN: (
        'gaussian', 'gauss', 'gaussian_decay', 'normal', 'normal_decay',
        'half_norm', 'half_norm_decay'),
    DecayShape.RECTANGLE: ('rectangle', 'rectangular', 'box'),
    DecayShape.USER_DEFINED: ('mfilter', 'user_defined'),
}

#: Lowercase shape name -> DecayShape.
SHAPE_ALIASES = {
    alias: shape
    for shape, aliases in _ALIASES_BY_SHAPE.items()
    for alias in aliases}


@dataclasses.dataclass(frozen=True)
class DecayParameters:
    """Resolved parameters that fully determine a decay function.

    Attributes:
        shape (DecayShape): the active shape.
        radius (float): the ZoI radius, or ``None`` when the rate came from
            a half life, sigma or explicit rate.
        amplitude (float): the value of the function at the origin.
        rate (float): the decay rate (lambda) of exponential and Gaussian
            functions, the slope of the linear function, ``None`` otherwise.
        origin (float): where the source of disturbance is located.
        one_sided (bool): if False, distances are taken as absolute values.
        rate_source (str): which input determined ``rate``: one of
            ``'radius_hl_ratio'``, ``'radius'``, ``'half_life'``,
            ``'sigma'``, ``'explicit'`` or ``None``.
    """
    shape: DecayShape
    radius: float = None
    amplitude: float = 1.0
    rate: float = None
    origin: float = 0.0
    one_sided: bool = True
    rate_source: str = None


def resolve_shape(shape):
    """Resolve a shape name or alias to a ``DecayShape``.

    Args:
        shape (str or DecayShape): the shape name, case-insensitive.

    Returns:
        The matching ``DecayShape``.

    Raises:
        UnknownShape: if ``shape`` is not a recognized name.
    """
    if isinstance(shape, DecayShape):
        return shape
    try:
        return SHAPE_ALIASES[str(shape).strip().lower()]
    except KeyError:
        raise errors.UnknownShape(
            f'Unknown ZoI shape "{shape}". Use one of: '
            f'{", ".join(sorted(SHAPE_ALIASES))}')


def check_positive(name, value):
    """Raise InvalidParameter unless ``value`` is None or a number > 0."""
    if value is None:
        return
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise errors.InvalidParameter(
            f'{name} must be a number, got {value!r}')
    # written this way so that NaN fails too
    if not value > 0:
        raise errors.InvalidParameter(
            f'{name} must be greater than 0, got {value}')


def _check_zoi_limit(zoi_limit):
    try:
        zoi_limit = float(zoi_limit)
    except (TypeError, ValueError):
        raise errors.InvalidParameter(
            f'zoi_limit must be a number, got {zoi_limit!r}')
    if not 0 < zoi_limit < 1:
        raise errors.InvalidParameter(
            f'zoi_limit must be between 0 and 1 (exclusive), got {zoi_limit}')


def _check_explicit_rate(explicit_rate):
    try:
        amplitude, rate = (float(value) for value in explicit_rate)
    except (TypeError, ValueError):
        raise errors.InvalidParameter(
            'explicit_rate must be a pair of numbers (amplitude, rate), got '
            f'{explicit_rate!r}')
    if not rate >= 0:
        raise errors.InvalidParameter(
            f'The explicit decay rate must be >= 0, got {rate}')
    return amplitude, rate


def resolve_parameters(
        shape, radius=None, zoi_limit=0.05, half_life=None,
        zoi_hl_ratio=None, sigma=None, explicit_rate=(1, 0.01), constant=1,
        intercept=1, origin=0, one_sided=True):
    """Validate decay inputs and resolve them into ``DecayParameters``.

    The decay rate of the exponential function comes from exactly one source,
    with this precedence:

        1. ``radius`` and ``zoi_hl_ratio``: ``half_life = radius /
           zoi_hl_ratio`` and ``rate = ln(2) / half_life``.  ``zoi_limit``
           is ignored.
        2. ``radius`` alone: ``rate = ln(1 / zoi_limit) / radius``.
        3. ``half_life``: ``rate = ln(2) / half_life``.
        4. the rate component of ``explicit_rate``.

    The Gaussian rate comes from ``radius`` (``ln(1 / zoi_limit) /
    radius**2``), then ``sigma`` (``1 / (2 * sigma**2)``), then
    ``explicit_rate``.  For both, the amplitude is the first element of
    ``explicit_rate``.

    Args:
        shape (str or DecayShape): the decay shape.
        radius (float): the ZoI radius.  Required for vanishing shapes.
        zoi_limit (float): the value of non-vanishing functions at the ZoI
            radius.  Must be within (0, 1).
        half_life (float): half life of the exponential function.
        zoi_hl_ratio (float): ratio between the ZoI radius and the half life
            of the exponential function.
        sigma (float): standard deviation of the Gaussian function.
        explicit_rate (tuple): ``(amplitude, rate)`` of the exponential or
            Gaussian function.
        constant (float): value of the threshold and circle functions
            within the ZoI.
        intercept (float): value of the linear function at the origin.
        origin (float): position of the source of disturbance.
        one_sided (bool): if False, negative distances are treated
            symmetrically.  Ignored by the Gaussian function.

    Returns:
        A ``DecayParameters`` instance.

    Raises:
        InvalidParameter: if a parameter is out of range or missing.
        InvalidShape: if ``shape`` is the user-defined filter shape, which
            has no decay function.
    """
    shape = resolve_shape(shape)
    if shape is DecayShape.USER_DEFINED:
        raise errors.InvalidShape(
            'User-defined filters (mfilter) have no distance decay function.')

    check_positive('radius', radius)
    if radius is not None:
        radius = float(radius)

    if shape.vanishing:
        if radius is None:
            raise errors.InvalidParameter(
                f'The radius is required for the {shape.value} shape.')
        if shape in (DecayShape.THRESHOLD, DecayShape.CIRCLE):
            return DecayParameters(
                shape=shape, radius=radius, amplitude=float(constant),
                origin=float(origin), one_sided=bool(one_sided))
        if shape is DecayShape.LINEAR:
            return DecayParameters(
                shape=shape, radius=radius, amplitude=float(intercept),
                rate=float(intercept) / radius, origin=float(origin),
                one_sided=bool(one_sided), rate_source='radius')
        return DecayParameters(
            shape=shape, radius=radius, amplitude=1.0, origin=float(origin),
            one_sided=bool(one_sided))

    _check_zoi_limit(zoi_limit)
    amplitude, explicit = _check_explicit_rate(explicit_rate)

    if shape is DecayShape.EXPONENTIAL:
        check_positive('half_life', half_life)
        check_positive('zoi_hl_ratio', zoi_hl_ratio)
        if radius is not None:
            if zoi_hl_ratio is not None:
                rate = math.log(2) / (radius / float(zoi_hl_ratio))
                rate_source = 'radius_hl_ratio'
            else:
                rate = math.log(1 / float(zoi_limit)) / radius
                rate_source = 'radius'
        elif half_life is not None:
            rate = math.log(2) / float(half_life)
            rate_source = 'half_life'
        else:
            rate = explicit
            rate_source = 'explicit'
        return DecayParameters(
            shape=shape, radius=radius, amplitude=amplitude, rate=rate,
            origin=float(origin), one_sided=bool(one_sided),
            rate_source=rate_source)

    # Gaussian
    check_positive('sigma', sigma)
    if radius is not None:
        rate = math.log(1 / float(zoi_limit)) / radius**2
        rate_source = 'radius'
    elif sigma is not None:
        rate = 1 / (2 * float(sigma)**2)
        rate_source = 'sigma'
    else:
        rate = explicit
        rate_source = 'explicit'
    return DecayParameters(
        shape=shape, radius=radius, amplitude=amplitude, rate=rate,
        origin=float(origin), one_sided=False, rate_source=rate_source)


def _distance_from_origin(distance, origin, one_sided):
    if one_sided:
        return distance - origin
    return numpy.abs(distance - origin)


def decay_function(parameters):
    """Build the decay operation for a set of resolved parameters.

    Args:
        parameters (DecayParameters): resolved parameters, as returned by
            ``resolve_parameters``.

    Returns:
        A function of one argument (a numpy array of distances) returning a
        float64 numpy array of ZoI values with the same shape.
    """
    shape = parameters.shape
    amplitude = parameters.amplitude
    radius = parameters.radius
    rate = parameters.rate
    origin = parameters.origin
    one_sided = parameters.one_sided

    if shape in (DecayShape.THRESHOLD, DecayShape.RECTANGLE):
        def threshold_op(distance):
            """Constant influence within the open ZoI radius."""
            dist = _distance_from_origin(distance, origin, one_sided)
            return numpy.where(dist < radius, amplitude, 0.0)
        return threshold_op

    if shape is DecayShape.CIRCLE:
        def circle_op(distance):
            """Constant influence within the closed ZoI radius."""
            dist = _distance_from_origin(distance, origin, one_sided)
            return numpy.where(dist <= radius, amplitude, 0.0)
        return circle_op

    if shape is DecayShape.LINEAR:
        def linear_op(distance):
            """Linear decay operation."""
            dist = _distance_from_origin(distance, origin, one_sided)
            return numpy.where(
                dist < radius, amplitude - rate * dist, 0.0)
        return linear_op

    if shape is DecayShape.EXPONENTIAL:
        def exp_op(distance):
            """Exponential decay operation."""
            dist = _distance_from_origin(distance, origin, one_sided)
            return amplitude * numpy.exp(-rate * dist)
        return exp_op

    def gaussian_op(distance):
        """Gaussian (half-normal) decay operation."""
        return amplitude * numpy.exp(-rate * (distance - origin)**2)
    return gaussian_op


def distance_at_intensity(parameters, intensity):
    """Find the distance where a non-vanishing function drops to a value.

    Args:
        parameters (DecayParameters): resolved exponential or Gaussian
            parameters.
        intensity (float): the target value, > 0.

    Returns:
        The distance from the origin (float) where the function reaches
        ``intensity``.  ``0`` if the amplitude is already at or below
        ``intensity``, ``inf`` if the function never decays.
    """
    if parameters.amplitude <= intensity:
        return 0.0
    if parameters.rate == 0:
        return math.inf
    log_ratio = math.log(parameters.amplitude / intensity)
    if parameters.shape is DecayShape.GAUSSIAN:
        return math.sqrt(log_ratio / parameters.rate)
    return log_ratio / parameters.rate


def _apply(distance, op):
    """Apply ``op`` to a number, array or Grid of distances."""
    if isinstance(distance, grids.Grid):
        return distance.map(op)
    values = numpy.asarray(distance, dtype=numpy.float64)
    result = op(values)
    if values.ndim == 0:
        return float(result)
    return numpy.asarray(result, dtype=numpy.float64)


def threshold_decay(distance, radius, constant=1, origin=0, one_sided=True):
    """Threshold (step) ZoI function.

    ``constant`` where the distance is strictly below ``radius``, 0 otherwise.
    """
    parameters = resolve_parameters(
        DecayShape.THRESHOLD, radius=radius, constant=constant,
        origin=origin, one_sided=one_sided)
    return _apply(distance, decay_function(parameters))


def circle_decay(distance, radius, constant=1, origin=0, one_sided=True):
    """Circular ZoI function: ``constant`` up to and including ``radius``."""
    parameters = resolve_parameters(
        DecayShape.CIRCLE, radius=radius, constant=constant,
        origin=origin, one_sided=one_sided)
    return _apply(distance, decay_function(parameters))


def linear_decay(distance, radius, intercept=1, origin=0, one_sided=True):
    """Linear (tent, Bartlett) ZoI function.

    Decreases linearly from ``intercept`` at the origin to zero at
    ``radius``, with slope ``-intercept / radius``.

    Args:
        distance (number, numpy.array or Grid): distances to the source.
        radius (float): the distance where the function reaches zero.
        intercept (float): the value at the origin.
        origin (float): the position of the source.
        one_sided (bool): if False, negative distances are treated
            symmetrically.

    Returns:
        ZoI values of the same kind as ``distance``.
    """
    parameters = resolve_parameters(
        DecayShape.LINEAR, radius=radius, intercept=intercept,
        origin=origin, one_sided=one_sided)
    return _apply(distance, decay_function(parameters))


def rectangle_decay(distance, radius, origin=0, one_sided=True):
    """One dimensional profile of the rectangular (box) filter."""
    parameters = resolve_parameters(
        DecayShape.RECTANGLE, radius=radius, origin=origin,
        one_sided=one_sided)
    return _apply(distance, decay_function(parameters))


def exp_decay(distance, radius=None, zoi_limit=0.05, half_life=None,
              zoi_hl_ratio=None, explicit_rate=(1, 0.01), origin=0,
              one_sided=True):
    """Exponential decay ZoI function.

    ``amplitude * exp(-rate * distance)``, where the rate is defined by the
    first available of ``radius`` (with ``zoi_hl_ratio`` or ``zoi_limit``),
    ``half_life`` or ``explicit_rate``.  See ``resolve_parameters``.

    For example, with ``radius=1200`` and ``zoi_hl_ratio=6`` the half life is
    200: the function is 0.5 at distance 200 and ``0.5**6`` at the radius.

    Args:
        distance (number, numpy.array or Grid): distances to the source.
        radius (float): the ZoI radius.
        zoi_limit (float): value of the function at ``radius``.
        half_life (float): distance where the function is half its maximum.
        zoi_hl_ratio (float): ratio between ``radius`` and the half life.
        explicit_rate (tuple): ``(amplitude, rate)``.  The rate is used only
            if both ``radius`` and ``half_life`` are None.
        origin (float): the position of the source.
        one_sided (bool): if False, negative distances are treated
            symmetrically.

    Returns:
        ZoI values of the same kind as ``distance``.
    """
    parameters = resolve_parameters(
        DecayShape.EXPONENTIAL, radius=radius, zoi_limit=zoi_limit,
        half_life=half_life, zoi_hl_ratio=zoi_hl_ratio,
        explicit_rate=explicit_rate, origin=origin, one_sided=one_sided)
    return _apply(distance, decay_function(parameters))


def gaussian_decay(distance, radius=None, zoi_limit=0.05, sigma=None,
                   explicit_rate=(1, 0.01), origin=0):
    """Gaussian (half-normal) decay ZoI function.

    ``amplitude * exp(-rate * distance**2)``, with the rate defined by
    ``radius`` and ``zoi_limit``, else ``sigma``, else ``explicit_rate``.
    Note the rate is defined differently than for ``exp_decay``.
    """
    parameters = resolve_parameters(
        DecayShape.GAUSSIAN, radius=radius, zoi_limit=zoi_limit,
        sigma=sigma, explicit_rate=explicit_rate, origin=origin)
    return _apply(distance, decay_function(parameters))


_DECAY_FUNCTIONS = {
    DecayShape.THRESHOLD: threshold_decay,
    DecayShape.CIRCLE: circle_decay,
    DecayShape.LINEAR: linear_decay,
    DecayShape.EXPONENTIAL: exp_decay,
    DecayShape.GAUSSIAN: gaussian_decay,
    DecayShape.RECTANGLE: rectangle_decay,
}


def dist_decay(distance, shape='exp_decay', **kwargs):
    """Compute ZoI values for any shape given by name.

    Args:
        distance (number, numpy.array or Grid): distances to the source.
        shape (str or DecayShape): the shape name or one of its aliases,
            case-insensitive.
        **kwargs: passed to the shape-specific function, e.g. ``radius``.

    Returns:
        ZoI values of the same kind as ``distance``.

    Raises:
        UnknownShape: if ``shape`` is not recognized.
        InvalidShape: for user-defined filters, which have no decay function.
    """
    shape = resolve_shape(shape)
    if shape is DecayShape.USER_DEFINED:
        raise errors.InvalidShape(
            'User-defined filters (mfilter) have no distance decay function.')
    if shape is DecayShape.GAUSSIAN:
        kwargs.pop('one_sided', None)
    return _DECAY_FUNCTIONS[shape](distance, **kwargs)


def dispatch(shape_name, distance, **kwargs):
    """Resolve ``shape_name`` and compute its ZoI values for ``distance``."""
    return dist_decay(distance, shape=shape_name, **kwargs)


threshold = step_decay = threshold_decay
linear = bartlett_decay = tent_decay = linear_decay
exponential = exp_decay
gaussian = half_norm_decay = gaussian_decay
