"""
DLAG layout and parameter Unittests.
:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import unittest
import numpy as np
from dlag import ConfigurationError, DLAGParams, GroupLayout


class TestGroupLayout(unittest.TestCase):
    """
    Unit tests for the block partition of observations and latents.
    """
    def setUp(self):
        self.layout = GroupLayout([3, 2], 2, [1, 0])

    def test_dimensions(self):
        self.assertEqual(self.layout.num_groups, 2)
        self.assertEqual(self.layout.y_dim, 5)
        self.assertEqual(self.layout.x_dim, 5)
        self.assertEqual(self.layout.n_units, 3)
        self.assertTrue(np.array_equal(self.layout.x_dims, [3, 2]))

    def test_latent_indices(self):
        self.assertTrue(np.array_equal(
            self.layout.latent_indices(0, 'across'), [0, 1]))
        self.assertTrue(np.array_equal(
            self.layout.latent_indices(0, 'within'), [2]))
        self.assertTrue(np.array_equal(
            self.layout.latent_indices(1, 'across'), [3, 4]))
        self.assertEqual(len(self.layout.latent_indices(1, 'within')), 0)
        with self.assertRaises(ValueError):
            self.layout.latent_indices(0, 'shared')

    def test_gp_units(self):
        units = self.layout.gp_units()
        self.assertEqual([kind for kind, _, _ in units],
                         ['across', 'across', 'within'])
        self.assertTrue(np.array_equal(units[1][2], [1, 4]))
        self.assertTrue(np.array_equal(units[2][1], [0]))
        self.assertTrue(np.array_equal(units[2][2], [2]))

    def test_big_indices(self):
        idx = self.layout.big_indices([1, 4], 3)
        self.assertTrue(np.array_equal(idx, [1, 4, 6, 9, 11, 14]))

    def test_loading_mask(self):
        mask = self.layout.loading_mask()
        self.assertEqual(mask.sum(), 3 * 3 + 2 * 2)
        self.assertFalse(mask[0, 3])
        self.assertTrue(mask[4, 4])

    def test_equality(self):
        self.assertEqual(self.layout, GroupLayout([3, 2], 2, [1, 0]))
        self.assertNotEqual(self.layout, GroupLayout([3, 2], 1, [1, 0]))

    def test_invalid_layouts(self):
        with self.assertRaises(ConfigurationError):
            GroupLayout([3, 2], 1, [1])
        with self.assertRaises(ConfigurationError):
            GroupLayout([3, 0], 1, [1, 1])
        with self.assertRaises(ConfigurationError):
            GroupLayout([3, 2], -1, [1, 1])


class TestDLAGParams(unittest.TestCase):
    """
    Unit tests for the parameter container.
    """
    def setUp(self):
        np.random.seed(3)
        self.layout = GroupLayout([3, 2], 1, [1, 1])
        self.params = DLAGParams(
            C=np.random.randn(5, 4) * self.layout.loading_mask(),
            d=np.zeros(5),
            R=np.ones(5),
            tau=[0.1, 0.2, 0.3],
            eps=[1e-3, 1e-3, 1e-3],
            D=[[0.], [0.05]])

    def test_validate(self):
        self.assertIs(self.params.validate(self.layout), self.params)

    def test_copy_is_independent(self):
        params = self.params.copy()
        params.C[0, 0] += 1
        params.D[1, 0] = 0.
        self.assertNotEqual(params.C[0, 0], self.params.C[0, 0])
        self.assertEqual(self.params.D[1, 0], 0.05)

    def test_blocks(self):
        block = np.arange(2.)[:, np.newaxis]
        self.params.set_block(self.layout, 1, 'within', block)
        self.assertTrue(np.array_equal(
            self.params.get_block(self.layout, 1, 'within'), block))
        self.assertTrue(np.array_equal(self.params.C[3:, 3], [0., 1.]))

    def test_unit_params(self):
        units = list(self.params.unit_params(self.layout))
        self.assertEqual(len(units), 3)
        u, kind, groups, latents, tau, eps, delays = units[0]
        self.assertEqual(kind, 'across')
        self.assertTrue(np.array_equal(delays, [0., 0.05]))
        self.assertTrue(np.array_equal(units[2][-1], [0.]))
        self.assertEqual(units[2][4], 0.3)

    def test_invalid_params(self):
        params = self.params.copy()
        params.C[0, 3] = 1.
        with self.assertRaises(ConfigurationError):
            params.validate(self.layout)

        params = self.params.copy()
        params.D[0, 0] = 0.01
        with self.assertRaises(ConfigurationError):
            params.validate(self.layout)

        params = self.params.copy()
        params.tau[1] = 0.
        with self.assertRaises(ConfigurationError):
            params.validate(self.layout)

        with self.assertRaises(ConfigurationError):
            self.params.validate(GroupLayout([3, 2], 2, [1, 1]))


if __name__ == "__main__":
    unittest.main()
