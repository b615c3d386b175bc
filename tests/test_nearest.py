"""Module for Regression Testing the ZoI of the nearest feature."""
import math
import unittest

import numpy
import numpy.testing


def _line_grid(nodata=None):
    """A 5x7 grid, resolution 10, with a vertical line feature in column 1."""
    from ninanor.oneimpact import grids

    array = numpy.zeros((5, 7))
    array[:, 1] = 1
    if nodata is not None:
        array[0, 6] = nodata
    return grids.ArrayGrid(array, 10, nodata=nodata, name='road')


class NearestZoITests(unittest.TestCase):
    """Tests for ninanor.oneimpact.nearest.compute_nearest."""

    def test_euclidean_distance(self):
        """Nearest: the euclidean transform is the distance itself."""
        from ninanor.oneimpact import compute_nearest

        layer = compute_nearest(_line_grid())
        self.assertEqual(layer.name, 'dist_euclidean')
        numpy.testing.assert_allclose(
            layer.to_array()[0], [10, 0, 10, 20, 30, 40, 50])

    def test_log_and_sqrt_transforms(self):
        """Nearest: log and sqrt transforms of the distance."""
        from ninanor.oneimpact import compute_nearest

        layer = compute_nearest(_line_grid(), shape='log', log_base=10)
        self.assertEqual(layer.name, 'dist_log')
        self.assertAlmostEqual(layer.cell(2, 6), math.log10(51))
        self.assertAlmostEqual(layer.cell(2, 1), 0)

        layer = compute_nearest(_line_grid(), shape='sqrt')
        self.assertEqual(layer.name, 'dist_sqrt')
        self.assertAlmostEqual(layer.cell(3, 5), math.sqrt(40))

    def test_invalid_log_base(self):
        """Nearest: the log base must be positive and not 1."""
        from ninanor.oneimpact import compute_nearest
        from ninanor.oneimpact import errors

        for log_base in (0, 1, -2, 'ten'):
            with self.assertRaises(errors.InvalidParameter):
                compute_nearest(_line_grid(), shape='log', log_base=log_base)

    def test_decay_of_nearest_distance(self):
        """Nearest: the decay function applied to the distance."""
        from ninanor.oneimpact import compute_nearest
        from ninanor.oneimpact import decay

        layer = compute_nearest(_line_grid(), shape='tent', radius=30)
        self.assertEqual(layer.name, 'zoi_nearest_linear30')
        numpy.testing.assert_allclose(
            layer.to_array()[0], [2 / 3, 1, 2 / 3, 1 / 3, 0, 0, 0])

        layer = compute_nearest(
            _line_grid(), shape='exp_decay', radius=50, zoi_limit=0.01)
        numpy.testing.assert_allclose(
            layer.to_array()[4],
            decay.exp_decay(
                numpy.array([10, 0, 10, 20, 30, 40, 50]), radius=50,
                zoi_limit=0.01))
        self.assertAlmostEqual(layer.cell(4, 6), 0.01)

    def test_many_radii(self):
        """Nearest: a list of radii gives a list of layers, in order."""
        from ninanor.oneimpact import compute_nearest

        layers = compute_nearest(
            _line_grid(), shape='threshold', radius=[25, 5])
        self.assertEqual(
            [layer.name for layer in layers],
            ['zoi_nearest_threshold25', 'zoi_nearest_threshold5'])
        numpy.testing.assert_array_equal(
            layers[0].to_array()[0], [1, 1, 1, 1, 0, 0, 0])
        numpy.testing.assert_array_equal(
            layers[1].to_array()[0], [0, 1, 0, 0, 0, 0, 0])

    def test_decay_without_radius(self):
        """Nearest: non-vanishing shapes may use a half life instead."""
        from ninanor.oneimpact import compute_nearest

        layer = compute_nearest(_line_grid(), shape='exp', half_life=20)
        self.assertEqual(layer.name, 'zoi_nearest_exp_decay')
        self.assertAlmostEqual(layer.cell(0, 3), 0.5)

    def test_nodata_cells(self):
        """Nearest: nodata cells stay nodata unless treated as zeros."""
        from ninanor.oneimpact import compute_nearest

        layer = compute_nearest(_line_grid(nodata=-1), shape='circle',
                                radius=100)
        self.assertIsNone(layer.cell(0, 6))
        layer = compute_nearest(
            _line_grid(nodata=-1), shape='circle', radius=100,
            zero_as_no_data=True)
        self.assertEqual(layer.cell(0, 6), 1)

    def test_invalid_parameters_fail_first(self):
        """Nearest: invalid parameters raise before any computation."""
        from ninanor.oneimpact import compute_nearest
        from ninanor.oneimpact import errors

        with self.assertRaises(errors.InvalidShape):
            compute_nearest(_line_grid(), shape='mfilter', radius=10)
        with self.assertRaises(errors.InvalidParameter):
            compute_nearest(_line_grid(), shape='circle', radius=[10, 0])
        with self.assertRaises(errors.InvalidParameter):
            compute_nearest(_line_grid(), shape='linear')
        with self.assertRaises(errors.UnknownShape):
            compute_nearest(_line_grid(), shape='manhattan')

    def test_same_decay_as_filters(self):
        """Nearest: a single point gives the same ZoI as its filter."""
        from ninanor.oneimpact import compute_cumulative
        from ninanor.oneimpact import compute_nearest
        from ninanor.oneimpact import grids

        array = numpy.zeros((11, 11))
        array[5, 5] = 1
        grid = grids.ArrayGrid(array, 10)
        nearest_layer = compute_nearest(grid, shape='gaussian', radius=30)
        cumulative_layer, = compute_cumulative(
            grid, shape='gaussian', radius=30, min_intensity=1e-6)
        numpy.testing.assert_allclose(
            nearest_layer.to_array(), cumulative_layer.to_array(), atol=1e-8)
