"""Module for Regression Testing the Zone of Influence workflow."""
import os
import shutil
import tempfile
import unittest

import numpy
import numpy.testing
import pygeoprocessing
from osgeo import gdal
from osgeo import osr

gdal.UseExceptions()
_DEFAULT_ORIGIN = (444720, 3751320)
_DEFAULT_PIXEL_SIZE = (100, -100)
_DEFAULT_EPSG = 32731


def _make_features_raster(target_path, epsg=_DEFAULT_EPSG):
    """Write a 10x10 raster with a single feature at (5, 5)."""
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(epsg)
    array = numpy.zeros((10, 10), dtype=numpy.float32)
    array[5, 5] = 1
    array[0, 9] = -1
    pygeoprocessing.numpy_array_to_raster(
        array, -1, _DEFAULT_PIXEL_SIZE, _DEFAULT_ORIGIN, srs.ExportToWkt(),
        target_path)


def _distance_from_center(shape=(10, 10), center=(5, 5), resolution=100):
    rows, cols = numpy.indices(shape)
    return resolution * numpy.hypot(rows - center[0], cols - center[1])


class ZoneOfInfluenceTests(unittest.TestCase):
    """Regression tests for ninanor.oneimpact.zone_of_influence."""

    def setUp(self):
        """Overriding setUp func. to create temporary workspace directory."""
        self.workspace_dir = tempfile.mkdtemp()
        self.raster_path = os.path.join(self.workspace_dir, 'features.tif')
        _make_features_raster(self.raster_path)

    def tearDown(self):
        """Overriding tearDown function to remove temporary directory."""
        shutil.rmtree(self.workspace_dir)

    def _args(self, **kwargs):
        args = {
            'workspace_dir': os.path.join(self.workspace_dir, 'workspace'),
            'results_suffix': '',
            'n_workers': -1,
            'input_raster_path': self.raster_path,
            'calc_cumulative': True,
            'calc_nearest': True,
            'shape': 'threshold',
            'radii': '250, 500',
        }
        args.update(kwargs)
        return args

    def test_cumulative_and_nearest(self):
        """ZoI workflow: threshold ZoI of a single feature, both engines."""
        from ninanor.oneimpact import zone_of_influence

        args = self._args(results_suffix='test')
        registry = zone_of_influence.execute(args)

        self.assertEqual(
            sorted(registry['zoi_cumulative_[RADIUS]']), ['250', '500'])
        self.assertEqual(
            sorted(registry['zoi_nearest_[RADIUS]']), ['250', '500'])
        self.assertNotIn('density_[RADIUS]', registry)

        for radius in (250, 500):
            expected = numpy.where(
                _distance_from_center() < radius, 1.0, 0.0)
            cumulative_path = registry['zoi_cumulative_[RADIUS]'][str(radius)]
            self.assertEqual(
                os.path.basename(cumulative_path),
                f'zoi_cumulative_{radius}_test.tif')
            cumulative = pygeoprocessing.raster_to_numpy_array(
                cumulative_path)
            numpy.testing.assert_allclose(cumulative, expected, atol=1e-6)

            nearest = pygeoprocessing.raster_to_numpy_array(
                registry['zoi_nearest_[RADIUS]'][str(radius)])
            numpy.testing.assert_allclose(
                nearest[1:9, 1:9], expected[1:9, 1:9], atol=1e-6)

        # the nodata pixel stays nodata in the nearest ZoI
        nearest = pygeoprocessing.raster_to_numpy_array(
            registry['zoi_nearest_[RADIUS]']['500'])
        nodata = pygeoprocessing.get_raster_info(
            registry['zoi_nearest_[RADIUS]']['500'])['nodata'][0]
        self.assertEqual(nearest[0, 9], nodata)

        self.assertTrue(os.path.exists(registry['kernel_[RADIUS]']['250']))
        self.assertTrue(os.path.exists(registry['distance']))
        self.assertEqual(
            os.path.dirname(registry['distance']),
            os.path.join(args['workspace_dir'], 'intermediate'))

    def test_density(self):
        """ZoI workflow: density outputs sum to the feature weight."""
        from ninanor.oneimpact import zone_of_influence

        registry = zone_of_influence.execute(self._args(
            calc_nearest=False, shape='gaussian', radii=[200],
            output_type='density'))
        self.assertEqual(list(registry['density_[RADIUS]']), ['200'])
        self.assertNotIn('zoi_cumulative_[RADIUS]', registry)
        self.assertNotIn('distance', registry)

        array = pygeoprocessing.raster_to_numpy_array(
            registry['density_[RADIUS]']['200'])
        self.assertAlmostEqual(array.sum(), 1, places=6)

    def test_user_defined_filter(self):
        """ZoI workflow: a filter file applied to the features."""
        from ninanor.oneimpact import filters
        from ninanor.oneimpact import zone_of_influence

        filter_path = os.path.join(self.workspace_dir, 'filter.txt')
        filters.save_filter(numpy.ones((3, 3)), filter_path)
        registry = zone_of_influence.execute(self._args(
            calc_nearest=False, shape='mfilter', radii=None,
            filter_path=filter_path))

        array = pygeoprocessing.raster_to_numpy_array(
            registry['zoi_cumulative_[RADIUS]']['mfilter'])
        expected = numpy.zeros((10, 10))
        expected[4:7, 4:7] = 1
        numpy.testing.assert_allclose(array, expected, atol=1e-6)

    def test_user_defined_filter_needs_cumulative(self):
        """ZoI workflow: mfilter has no ZoI of the nearest feature."""
        from ninanor.oneimpact import errors
        from ninanor.oneimpact import filters
        from ninanor.oneimpact import zone_of_influence

        filter_path = os.path.join(self.workspace_dir, 'filter.txt')
        filters.save_filter(numpy.ones((3, 3)), filter_path)
        with self.assertRaises(errors.InvalidShape):
            zone_of_influence.execute(self._args(
                shape='mfilter', radii=None, filter_path=filter_path))

    def test_nearest_transform(self):
        """ZoI workflow: the euclidean distance to the nearest feature."""
        from ninanor.oneimpact import zone_of_influence

        registry = zone_of_influence.execute(self._args(
            calc_cumulative=False, nearest_transform='euclidean'))
        self.assertNotIn('zoi_nearest_[RADIUS]', registry)
        array = pygeoprocessing.raster_to_numpy_array(
            registry['dist_[TRANSFORM]']['euclidean'])
        self.assertAlmostEqual(array[5, 8], 300)
        self.assertAlmostEqual(array[2, 1], 500)

    def test_zero_as_no_data(self):
        """ZoI workflow: nodata pixels are filled with 0 first."""
        from ninanor.oneimpact import zone_of_influence

        registry = zone_of_influence.execute(self._args(
            calc_cumulative=False, zero_as_no_data=True, radii='1000'))
        self.assertTrue(os.path.exists(registry['filled_input']))
        array = pygeoprocessing.raster_to_numpy_array(
            registry['zoi_nearest_[RADIUS]']['1000'])
        # the distance from (0, 9) is 100 * sqrt(41) < 1000
        self.assertEqual(array[0, 9], 1)

    def test_invalid_args(self):
        """ZoI workflow: invalid args raise before any computation."""
        from ninanor.oneimpact import zone_of_influence

        with self.assertRaises(ValueError):
            zone_of_influence.execute(self._args(radii='100, -5'))
        with self.assertRaises(ValueError):
            zone_of_influence.execute(
                self._args(calc_cumulative=False, calc_nearest=False))
        self.assertFalse(os.path.exists(self._args()['workspace_dir']))


class ZoneOfInfluenceValidationTests(unittest.TestCase):
    """Tests for the Zone of Influence args validation."""

    def setUp(self):
        """Overriding setUp func. to create temporary workspace directory."""
        self.workspace_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Overriding tearDown function to remove temporary directory."""
        shutil.rmtree(self.workspace_dir)

    def test_missing_keys(self):
        """ZoI validation: required keys, conditionally required keys."""
        from ninanor.oneimpact import validation
        from ninanor.oneimpact import zone_of_influence

        self.assertEqual(zone_of_influence.validate({}), [(
            ['input_raster_path', 'radii', 'shape', 'workspace_dir'],
            validation.MESSAGES['MISSING_KEY'])])

        # a filter file, rather than radii, for user-defined filters
        warnings = zone_of_influence.validate({'shape': 'mfilter'})
        self.assertEqual(
            warnings[0][0], ['filter_path', 'input_raster_path',
                             'workspace_dir'])

    def test_invalid_values(self):
        """ZoI validation: values that do not meet their condition."""
        from ninanor.oneimpact import validation
        from ninanor.oneimpact import zone_of_influence

        raster_path = os.path.join(self.workspace_dir, 'features.tif')
        _make_features_raster(raster_path)
        args = {
            'workspace_dir': self.workspace_dir,
            'input_raster_path': raster_path,
            'shape': 'hexagon',
            'radii': '100, -5',
            'zoi_limit': 1.5,
            'calc_cumulative': 'yes',
        }
        warnings = dict(
            (keys[0], message)
            for keys, message in zone_of_influence.validate(args))
        self.assertEqual(
            sorted(warnings),
            ['calc_cumulative', 'radii', 'shape', 'zoi_limit'])
        self.assertEqual(
            warnings['calc_cumulative'],
            validation.MESSAGES['NOT_BOOLEAN'].format(value='yes'))
        self.assertEqual(
            warnings['radii'],
            validation.MESSAGES['INVALID_VALUE'].format(condition='value > 0'))

    def test_unprojected_raster(self):
        """ZoI validation: the input raster must be projected."""
        from ninanor.oneimpact import validation
        from ninanor.oneimpact import zone_of_influence

        raster_path = os.path.join(self.workspace_dir, 'features.tif')
        _make_features_raster(raster_path, epsg=4326)
        warnings = zone_of_influence.validate(
            {'input_raster_path': raster_path},
            limit_to='input_raster_path')
        self.assertEqual(warnings, [(
            ['input_raster_path'], validation.MESSAGES['NOT_PROJECTED'])])

    def test_limit_to(self):
        """ZoI validation: a single input can be validated."""
        from ninanor.oneimpact import validation
        from ninanor.oneimpact import zone_of_influence

        self.assertEqual(
            zone_of_influence.validate(
                {'radii': '100 500'}, limit_to='radii'), [])
        self.assertEqual(
            zone_of_influence.validate({'shape': ''}, limit_to='shape'),
            [(['shape'], validation.MESSAGES['MISSING_VALUE'])])
        with self.assertRaises(AssertionError):
            zone_of_influence.validate({}, limit_to='shape')
