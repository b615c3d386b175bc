"""Module for Regression Testing the ZoI decay functions."""
import math
import unittest

import numpy
import numpy.testing


class DecayShapeTests(unittest.TestCase):
    """Tests for shape names and aliases."""

    def test_aliases_resolve_to_the_same_shape(self):
        """Decay: aliases of a shape resolve to the same enum member."""
        from ninanor.oneimpact import decay

        for names, expected in [
                (('threshold', 'Step', 'STEP_DECAY', 'threshold_decay'),
                 decay.DecayShape.THRESHOLD),
                (('tent', 'bartlett', 'linear_decay', ' Linear '),
                 decay.DecayShape.LINEAR),
                (('exp', 'exponential', 'exp_decay'),
                 decay.DecayShape.EXPONENTIAL),
                (('gauss', 'half_norm', 'normal_decay'),
                 decay.DecayShape.GAUSSIAN),
                (('box', 'rectangular'), decay.DecayShape.RECTANGLE),
                (('circular',), decay.DecayShape.CIRCLE),
                (('user_defined', 'mfilter'), decay.DecayShape.USER_DEFINED)]:
            for name in names:
                self.assertIs(decay.resolve_shape(name), expected)

    def test_unknown_shape(self):
        """Decay: unknown shape names raise UnknownShape."""
        from ninanor.oneimpact import decay
        from ninanor.oneimpact import errors

        with self.assertRaises(errors.UnknownShape):
            decay.resolve_shape('triangle')
        # UnknownShape is also a ValueError
        with self.assertRaises(ValueError):
            decay.dist_decay(10, shape='cone', radius=1)

    def test_vanishing(self):
        """Decay: vanishing shapes are the ones with a finite support."""
        from ninanor.oneimpact import decay

        self.assertTrue(decay.DecayShape.LINEAR.vanishing)
        self.assertTrue(decay.DecayShape.RECTANGLE.vanishing)
        self.assertFalse(decay.DecayShape.EXPONENTIAL.vanishing)
        self.assertFalse(decay.DecayShape.GAUSSIAN.vanishing)


class DecayFunctionTests(unittest.TestCase):
    """Tests for the values of the decay functions."""

    def test_threshold_is_open_and_circle_is_closed(self):
        """Decay: threshold excludes the radius, circle includes it."""
        from ninanor.oneimpact import decay

        distances = numpy.array([0, 499.999, 500, 500.001])
        numpy.testing.assert_array_equal(
            decay.threshold_decay(distances, radius=500), [1, 1, 0, 0])
        numpy.testing.assert_array_equal(
            decay.circle_decay(distances, radius=500), [1, 1, 1, 0])
        numpy.testing.assert_array_equal(
            decay.threshold_decay(distances, radius=500, constant=3),
            [3, 3, 0, 0])

    def test_linear_decay(self):
        """Decay: linear decay from the intercept to 0 at the radius."""
        from ninanor.oneimpact import decay

        numpy.testing.assert_allclose(
            decay.linear_decay(
                numpy.array([0, 250, 500, 750]), radius=500),
            [1, 0.5, 0, 0])
        self.assertAlmostEqual(
            decay.linear_decay(100, radius=200, intercept=2), 1.0)
        self.assertIsInstance(decay.linear_decay(100, radius=200), float)

    def test_exp_decay_at_origin_and_radius(self):
        """Decay: exp_decay is 1 at 0 and zoi_limit at the radius."""
        from ninanor.oneimpact import decay

        self.assertAlmostEqual(decay.exp_decay(0, radius=1000), 1.0)
        self.assertAlmostEqual(
            decay.exp_decay(1000, radius=1000, zoi_limit=0.05), 0.05)
        self.assertAlmostEqual(
            decay.exp_decay(1000, radius=1000, zoi_limit=0.01), 0.01)

    def test_exp_decay_rate_precedence(self):
        """Decay: the exp rate comes from one source, by precedence."""
        from ninanor.oneimpact import decay

        # radius and zoi_hl_ratio: half life = 1200 / 6 = 200
        self.assertAlmostEqual(
            decay.exp_decay(200, radius=1200, zoi_hl_ratio=6,
                            zoi_limit=0.3, half_life=10), 0.5)
        self.assertAlmostEqual(
            decay.exp_decay(1200, radius=1200, zoi_hl_ratio=6), 0.5**6)
        # half life when no radius is given
        self.assertAlmostEqual(decay.exp_decay(100, half_life=100), 0.5)
        # explicit rate otherwise
        self.assertAlmostEqual(
            decay.exp_decay(10, explicit_rate=(2, 0.1)),
            2 * math.exp(-1))

        parameters = decay.resolve_parameters(
            'exp', radius=1200, zoi_hl_ratio=6, half_life=10)
        self.assertEqual(parameters.rate_source, 'radius_hl_ratio')
        self.assertAlmostEqual(parameters.rate, math.log(2) / 200)

    def test_gaussian_decay(self):
        """Decay: the Gaussian rate comes from radius, sigma or the rate."""
        from ninanor.oneimpact import decay

        self.assertAlmostEqual(decay.gaussian_decay(0, radius=500), 1.0)
        self.assertAlmostEqual(
            decay.gaussian_decay(500, radius=500, zoi_limit=0.05), 0.05)
        self.assertAlmostEqual(
            decay.gaussian_decay(10, sigma=10), math.exp(-0.5))
        self.assertAlmostEqual(
            decay.gaussian_decay(2, explicit_rate=(1, 0.25)), math.exp(-1))
        # symmetrical around the origin
        self.assertAlmostEqual(
            decay.gaussian_decay(-50, radius=500),
            decay.gaussian_decay(50, radius=500))

    def test_origin_and_one_sided(self):
        """Decay: distances are taken from the origin."""
        from ninanor.oneimpact import decay

        self.assertAlmostEqual(
            decay.linear_decay(150, radius=100, origin=100), 0.5)
        # negative distances from the origin are inside the ZoI when
        # one_sided is True
        self.assertAlmostEqual(
            decay.threshold_decay(-1000, radius=10), 1.0)
        self.assertAlmostEqual(
            decay.threshold_decay(-1000, radius=10, one_sided=False), 0.0)

    def test_dist_decay_dispatches_by_alias(self):
        """Decay: dist_decay gives the same values as the named function."""
        from ninanor.oneimpact import decay

        distances = numpy.linspace(0, 2000, 21)
        numpy.testing.assert_allclose(
            decay.dist_decay(distances, shape='bartlett', radius=1000),
            decay.linear_decay(distances, radius=1000))
        numpy.testing.assert_allclose(
            decay.dist_decay(distances, shape='half_norm_decay',
                             radius=1000, one_sided=False),
            decay.gaussian_decay(distances, radius=1000))
        numpy.testing.assert_allclose(
            decay.dispatch('exp', distances, radius=1000),
            decay.exp_decay(distances, radius=1000))
        self.assertIs(decay.step_decay, decay.threshold_decay)
        self.assertIs(decay.tent_decay, decay.linear_decay)

    def test_mfilter_has_no_decay(self):
        """Decay: user-defined filters have no decay function."""
        from ninanor.oneimpact import decay
        from ninanor.oneimpact import errors

        with self.assertRaises(errors.InvalidShape):
            decay.dist_decay(10, shape='mfilter', radius=10)
        with self.assertRaises(errors.InvalidShape):
            decay.resolve_parameters('user_defined', radius=10)

    def test_invalid_parameters(self):
        """Decay: out-of-range parameters raise InvalidParameter."""
        from ninanor.oneimpact import decay
        from ninanor.oneimpact import errors

        for kwargs in [
                {'radius': 0},
                {'radius': -10},
                {'radius': 100, 'zoi_limit': 0},
                {'radius': 100, 'zoi_limit': 1},
                {'half_life': -1},
                {'radius': 100, 'zoi_hl_ratio': 0},
                {'explicit_rate': (1, -0.1)},
                {'explicit_rate': 'fast'}]:
            with self.assertRaises(errors.InvalidParameter, msg=kwargs):
                decay.exp_decay(10, **kwargs)

        with self.assertRaises(errors.InvalidParameter):
            decay.gaussian_decay(10, sigma=0)
        with self.assertRaises(errors.InvalidParameter):
            decay.linear_decay(10, radius=None)

    def test_grid_input(self):
        """Decay: a Grid of distances gives a Grid of ZoI values."""
        from ninanor.oneimpact import decay
        from ninanor.oneimpact import grids

        distance = grids.ArrayGrid(
            numpy.array([[0, 50], [100, -1]], dtype=numpy.float64),
            pixel_size=10, nodata=-1)
        zoi = decay.linear_decay(distance, radius=100)
        self.assertIsInstance(zoi, grids.Grid)
        numpy.testing.assert_allclose(
            zoi.to_array(), [[1, 0.5], [0, numpy.nan]])
        # the input grid is unchanged
        self.assertEqual(distance.cell(1, 0), 100)

    def test_distance_at_intensity(self):
        """Decay: distance where a function drops to a given value."""
        from ninanor.oneimpact import decay

        parameters = decay.resolve_parameters('exp', radius=1000)
        self.assertAlmostEqual(
            decay.distance_at_intensity(parameters, 0.05), 1000)
        parameters = decay.resolve_parameters('gaussian', radius=300)
        self.assertAlmostEqual(
            decay.distance_at_intensity(parameters, 0.05), 300)
        parameters = decay.resolve_parameters(
            'exp', explicit_rate=(1, 0))
        self.assertEqual(
            decay.distance_at_intensity(parameters, 0.01), math.inf)
