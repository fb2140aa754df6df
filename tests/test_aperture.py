from unittest import TestCase

import numpy as np
from parameterized import parameterized

from plancomplexity.plans.aperture import (
    build_aperture_control_points,
    extract_apertures,
    incremental_metersets,
)
from plancomplexity.plans.control_point import JawWindow
from plancomplexity.plans.mlc import MLC_HD120, get_leaf_specs
from tests.utils import TEST_LEAF_SPECS, create_control_point

CLOSED = [0, 0, 0, 0]


class TestIncrementalMetersets(TestCase):
    def test_trapezoidal_rule(self):
        metersets = incremental_metersets([0, 0.25, 0.5, 1], 100)
        np.testing.assert_array_almost_equal([12.5, 25, 37.5, 25], metersets)

    def test_two_control_points(self):
        metersets = incremental_metersets([0, 1], 200)
        np.testing.assert_array_almost_equal([100, 100], metersets)

    @parameterized.expand(
        [
            ([0, 1],),
            ([0, 0.1, 0.1, 0.7, 1],),
            (np.linspace(0, 1, 178),),
            (np.sort(np.random.default_rng(42).random(50)).tolist() + [1],),
        ]
    )
    def test_sum_equals_beam_mu(self, weights):
        weights = [0, *weights[1:]]
        metersets = incremental_metersets(weights, 345.6)
        self.assertAlmostEqual(345.6, metersets.sum(), delta=345.6 * 1e-6)
        self.assertTrue(np.all(metersets >= 0))

    def test_degenerate_sequences(self):
        self.assertEqual(0, len(incremental_metersets([], 100)))
        np.testing.assert_array_equal([0], incremental_metersets([0], 100))


class TestExtractApertures(TestCase):
    def extract(self, bank0, bank1, jaws=JawWindow(-50, 50, -20, 20), mu=10):
        cp = create_control_point(bank0, bank1, jaws=jaws)
        return extract_apertures(cp, TEST_LEAF_SPECS, incremental_mu=mu)

    def test_single_square(self):
        cp = self.extract([0, -5, 0, 0], [0, 5, 0, 0])
        self.assertEqual(1, cp.aperture_count)
        aperture = cp.apertures[0]
        self.assertAlmostEqual(40, aperture.perimeter)
        self.assertAlmostEqual(20, aperture.edge_length)
        self.assertAlmostEqual(100, aperture.area)
        # the three other leaf pairs are closed within the jaws
        self.assertAlmostEqual(30, cp.closed_leaf_gap_sum)
        self.assertEqual(10, cp.incremental_mu)

    def test_rectangle_over_two_leaves(self):
        cp = self.extract([0, -5, -5, 0], [0, 5, 5, 0])
        self.assertEqual(1, cp.aperture_count)
        aperture = cp.apertures[0]
        self.assertAlmostEqual(60, aperture.perimeter)
        self.assertAlmostEqual(20, aperture.edge_length)
        self.assertAlmostEqual(200, aperture.area)

    def test_staggered_leaves(self):
        cp = self.extract([0, -5, 0, 0], [0, 5, 10, 0])
        self.assertEqual(1, cp.aperture_count)
        aperture = cp.apertures[0]
        self.assertAlmostEqual(70, aperture.perimeter)
        self.assertAlmostEqual(30, aperture.edge_length)
        self.assertAlmostEqual(200, aperture.area)

    def test_adjacent_openings_without_overlap_are_split(self):
        cp = self.extract([0, -10, 2, 0], [0, -2, 10, 0])
        self.assertEqual(2, cp.aperture_count)
        for aperture in cp.apertures:
            self.assertAlmostEqual(36, aperture.perimeter)
            self.assertAlmostEqual(16, aperture.edge_length)
            self.assertAlmostEqual(80, aperture.area)

    def test_apertures_split_by_closed_leaf(self):
        cp = self.extract([-5, 0, -10, 0], [5, 0, 10, 0])
        self.assertEqual(2, cp.aperture_count)
        self.assertAlmostEqual(100, cp.apertures[0].area)
        self.assertAlmostEqual(200, cp.apertures[1].area)
        self.assertAlmostEqual(20, cp.closed_leaf_gap_sum)

    def test_first_and_last_leaf_open(self):
        cp = self.extract([-5, -5, -5, -5], [5, 5, 5, 5])
        self.assertEqual(1, cp.aperture_count)
        aperture = cp.apertures[0]
        self.assertAlmostEqual(2 * (10 + 40), aperture.perimeter)
        self.assertAlmostEqual(20, aperture.edge_length)
        self.assertAlmostEqual(400, aperture.area)
        self.assertEqual(0, cp.closed_leaf_gap_sum)

    def test_closed_control_point(self):
        cp = self.extract(CLOSED, CLOSED)
        self.assertEqual((), cp.apertures)
        self.assertAlmostEqual(40, cp.closed_leaf_gap_sum)

    @parameterized.expand(
        [
            (0.5, 0, 1),
            (0.505, 0, 1),
            (0.51, 1, 0),
        ]
    )
    def test_minimum_leaf_gap(self, gap, num_apertures, num_closed):
        cp = self.extract([0, 0, 0, 0], [0, gap, 0, 0])
        self.assertEqual(num_apertures, cp.aperture_count)
        self.assertAlmostEqual(10 * (3 + num_closed), cp.closed_leaf_gap_sum)

    def test_y_jaw_blocks_part_of_the_leaf(self):
        jaws = JawWindow(-50, 50, -12, 20)
        cp = self.extract([-5, 0, 0, 0], [5, 0, 0, 0], jaws=jaws)
        self.assertEqual(1, cp.aperture_count)
        aperture = cp.apertures[0]
        # only 2 mm of the leaf pair is open
        self.assertAlmostEqual(20, aperture.area)
        self.assertAlmostEqual(20 + 2 * 2, aperture.perimeter)
        self.assertAlmostEqual(20, aperture.edge_length)

    def test_leaves_outside_the_y_jaws_are_ignored(self):
        jaws = JawWindow(-50, 50, -10, 10)
        cp = self.extract([-5, -5, -5, -5], [5, 5, 5, 5], jaws=jaws)
        self.assertEqual(1, cp.aperture_count)
        self.assertAlmostEqual(200, cp.apertures[0].area)
        cp = self.extract(CLOSED, CLOSED, jaws=jaws)
        self.assertAlmostEqual(20, cp.closed_leaf_gap_sum)

    def test_leaf_tips_behind_the_x_jaws_are_ignored(self):
        jaws = JawWindow(-3, 50, -20, 20)
        cp = self.extract([0, -5, 0, 0], [0, 5, 0, 0], jaws=jaws)
        self.assertEqual(0, cp.aperture_count)
        self.assertAlmostEqual(30, cp.closed_leaf_gap_sum)

    def test_leaf_behind_x_jaw_ends_the_aperture(self):
        jaws = JawWindow(-8, 50, -20, 20)
        cp = self.extract([0, -5, -10, -5], [0, 5, 10, 5])
        self.assertEqual(1, cp.aperture_count)
        cp = self.extract([0, -5, -10, -5], [0, 5, 10, 5], jaws=jaws)
        self.assertEqual(2, cp.aperture_count)
        self.assertAlmostEqual(100, cp.apertures[0].area)
        self.assertAlmostEqual(100, cp.apertures[1].area)

    def test_mismatched_leaf_count(self):
        cp = create_control_point([0, 0], [0, 0])
        with self.assertRaises(ValueError):
            extract_apertures(cp, TEST_LEAF_SPECS)

    def test_aperture_invariants_on_random_shapes(self):
        leaf_specs = get_leaf_specs(MLC_HD120)
        rng = np.random.default_rng(7)
        jaws = JawWindow(-60, 60, -70, 80)
        for _ in range(50):
            bank0 = rng.uniform(-50, 10, 60)
            bank1 = bank0 + rng.choice([0, 0.3, 1, 5, 20, 40], 60)
            cp = create_control_point(bank0, bank1, jaws=jaws)
            aperture_cp = extract_apertures(cp, leaf_specs, incremental_mu=1)
            total_area = 0
            for aperture in aperture_cp.apertures:
                self.assertGreater(aperture.area, 0)
                self.assertGreaterEqual(aperture.edge_length, 0)
                self.assertGreaterEqual(aperture.perimeter, aperture.edge_length)
                total_area += aperture.area
            self.assertLessEqual(total_area, jaws.area)

    def test_idempotent(self):
        cp = create_control_point([0, -10, 2, -5], [0, -2, 10, 5])
        first = extract_apertures(cp, TEST_LEAF_SPECS, incremental_mu=3)
        second = extract_apertures(cp, TEST_LEAF_SPECS, incremental_mu=3)
        self.assertEqual(first, second)


class TestBuildApertureControlPoints(TestCase):
    def test_weights_and_apertures(self):
        cps = [
            create_control_point([0, -5, 0, 0], [0, 5, 0, 0], index=idx, meterset_weight=w)
            for idx, w in enumerate([0, 0.5, 1])
        ]
        aperture_cps = build_aperture_control_points(cps, TEST_LEAF_SPECS, 100)
        self.assertEqual(3, len(aperture_cps))
        self.assertEqual([0, 1, 2], [cp.index for cp in aperture_cps])
        self.assertEqual([25, 50, 25], [cp.incremental_mu for cp in aperture_cps])
        self.assertTrue(all(cp.aperture_count == 1 for cp in aperture_cps))
