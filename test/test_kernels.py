"""
DLAG kernel Unittests.
:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import unittest
import numpy as np
from dlag import ConfigurationError, DLAGParams, GroupLayout
from dlag.kernels import (delayed_kernel_grads, make_gp_kernel, make_k_big,
                          rbf_covariance)


class TestKernels(unittest.TestCase):
    """
    Unit tests for the GP covariance functions.
    """
    def setUp(self):
        np.random.seed(0)
        self.bin_size = 0.02  # [s]
        self.layout = GroupLayout([3, 2, 2], 2, [1, 0, 2])
        self.params = DLAGParams(
            C=np.random.randn(self.layout.y_dim, self.layout.x_dim)
            * self.layout.loading_mask(),
            d=np.zeros(self.layout.y_dim),
            R=np.ones(self.layout.y_dim),
            tau=np.linspace(0.04, 0.1, self.layout.n_units),
            eps=1e-3 * np.ones(self.layout.n_units),
            D=np.array([[0., 0.], [0.02, -0.03], [0.05, 0.01]]))

    def test_rbf_covariance_symmetric_positive_definite(self):
        """
        Covariances must be symmetric and positive definite on any grid,
        including irregular grids and grids with repeated time points.
        """
        grids = [np.arange(30) * self.bin_size,
                 np.sort(np.random.rand(25)),
                 np.array([0., 0., 0.1, 0.1, 0.1, 0.5])]
        for grid in grids:
            for tau in (1e-3, 0.05, 10.):
                for eps in (1e-6, 1e-3, 0.5):
                    K = rbf_covariance(grid, tau, eps)
                    self.assertTrue(np.allclose(K, K.T))
                    self.assertGreater(np.linalg.eigvalsh(K).min(), 0)

    def test_rbf_covariance_values(self):
        tsdt = np.arange(5) * self.bin_size
        tau, eps, delay = 0.05, 0.01, 0.03
        K = rbf_covariance(tsdt, tau, eps, delay=delay)
        dif = tsdt[:, np.newaxis] - tsdt[np.newaxis, :] - delay
        test_K = (1 - eps) * np.exp(-dif ** 2 / (2 * tau ** 2)) \
            + eps * np.eye(5)
        self.assertTrue(np.allclose(K, test_K))

    def test_gp_kernel_only_learns_timescale(self):
        kernel = make_gp_kernel(0.05, 1e-3)
        self.assertTrue(np.allclose(kernel.theta, [np.log(0.05)]))

    def test_invalid_kernel_parameters(self):
        tsdt = np.arange(5) * self.bin_size
        for tau, eps in [(0., 1e-3), (-1., 1e-3), (0.05, 0.), (0.05, 1.)]:
            with self.assertRaises(ConfigurationError):
                rbf_covariance(tsdt, tau, eps)

    def test_k_big_structure(self):
        """
        K_big is symmetric positive definite, and latents of different GPs
        are uncorrelated.
        """
        T = 6
        K_big = make_k_big(self.params, self.layout, T, self.bin_size)
        self.assertEqual(K_big.shape, (self.layout.x_dim * T,) * 2)
        self.assertTrue(np.allclose(K_big, K_big.T))
        self.assertGreater(np.linalg.eigvalsh(K_big).min(), 0)

        unit_of = np.zeros(self.layout.x_dim, int)
        for u, (_, _, latents) in enumerate(self.layout.gp_units()):
            unit_of[latents] = u
        unit_of_big = np.tile(unit_of, T)
        different = unit_of_big[:, np.newaxis] != unit_of_big[np.newaxis, :]
        self.assertTrue(np.all(K_big[different] == 0))

    def test_k_big_delayed_copies(self):
        """
        The covariance between two group copies of an across-group latent
        is the RBF at their delayed time difference.
        """
        T = 4
        K_big = make_k_big(self.params, self.layout, T, self.bin_size)
        x_dim = self.layout.x_dim
        j, g1, g2, t1, t2 = 1, 0, 2, 3, 1
        i1 = self.layout.latent_indices(g1, 'across')[j]
        i2 = self.layout.latent_indices(g2, 'across')[j]
        tau = self.params.tau[j]
        eps = self.params.eps[j]
        s1 = t1 * self.bin_size - self.params.D[g1, j]
        s2 = t2 * self.bin_size - self.params.D[g2, j]
        test_k = (1 - eps) * np.exp(-(s1 - s2) ** 2 / (2 * tau ** 2))
        self.assertAlmostEqual(K_big[t1 * x_dim + i1, t2 * x_dim + i2],
                               test_k)

    def test_delayed_kernel_gradients(self):
        """
        Compare the analytical gradients to finite differences.
        """
        tsdt = np.arange(8) * self.bin_size
        tau, eps = 0.06, 1e-3
        delays = np.array([0., 0.015, -0.02])
        _, K_grads = delayed_kernel_grads(tsdt, tau, eps, delays)
        self.assertEqual(K_grads.shape[0], 3)

        h = 1e-6
        K_p, _ = delayed_kernel_grads(tsdt, tau * np.exp(h), eps, delays)
        K_m, _ = delayed_kernel_grads(tsdt, tau * np.exp(-h), eps, delays)
        self.assertTrue(np.allclose(K_grads[0], (K_p - K_m) / (2 * h),
                                    atol=1e-6))
        for g in (1, 2):
            step = np.zeros(3)
            step[g] = h
            K_p, _ = delayed_kernel_grads(tsdt, tau, eps, delays + step)
            K_m, _ = delayed_kernel_grads(tsdt, tau, eps, delays - step)
            self.assertTrue(np.allclose(K_grads[g], (K_p - K_m) / (2 * h),
                                        atol=1e-4))

    def test_delayed_kernel_without_delay_gradients(self):
        tsdt = np.arange(8) * self.bin_size
        _, K_grads = delayed_kernel_grads(
            tsdt, 0.06, 1e-3, np.array([0., 0.01]), grad_delays=False)
        self.assertEqual(K_grads.shape, (1, 16, 16))


if __name__ == "__main__":
    unittest.main()
