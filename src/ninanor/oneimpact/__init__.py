"""init module for ninanor.oneimpact."""
import importlib.metadata
import logging

from osgeo import gdal

LOGGER = logging.getLogger('ninanor.oneimpact')
LOGGER.addHandler(logging.NullHandler())
__all__ = [
    'build_filter',
    'build_filters',
    'compute_cumulative',
    'compute_nearest',
    'dist_decay',
]

try:
    __version__ = importlib.metadata.version('ninanor.oneimpact')
except importlib.metadata.PackageNotFoundError:
    # package is not installed.  Log the exception for debugging.
    LOGGER.exception('Could not load ninanor.oneimpact version information')
    __version__ = 'unknown'

gdal.UseExceptions()

from .cumulative import compute_cumulative  # noqa: E402
from .decay import dist_decay  # noqa: E402
from .filters import build_filter  # noqa: E402
from .filters import build_filters  # noqa: E402
from .nearest import compute_nearest  # noqa: E402
