"""
DLAG util Unittests.
:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import unittest
import warnings
import numpy as np
from scipy import linalg
from dlag import (ConfigurationError, DegenerateInputWarning, DLAGParams,
                  GroupLayout, cut_trials, simulate_trials)
from dlag.dlag_util import logdet, orthonormalize, segment_by_trial, \
    sym_block_inversion


class TestCutTrials(unittest.TestCase):
    """
    Unit tests for the trial segmentation.
    """
    def setUp(self):
        np.random.seed(1)
        self.X = [np.random.randn(3, 45), np.random.randn(3, 20)]

    def test_segment_lengths(self):
        X_out = cut_trials(self.X, seg_length=20, random_state=0)
        # ceil(45 / 20) segments of the first trial, one of the second
        self.assertEqual(len(X_out), 4)
        for X_n in X_out:
            self.assertEqual(X_n.shape, (3, 20))
        self.assertTrue(np.array_equal(X_out[0], self.X[0][:, :20]))
        self.assertTrue(np.array_equal(X_out[2], self.X[0][:, -20:]))
        self.assertTrue(np.array_equal(X_out[3], self.X[1]))

    def test_reproducible(self):
        X_a = cut_trials(self.X, seg_length=20, random_state=3)
        X_b = cut_trials(self.X, seg_length=20, random_state=3)
        for X_a_n, X_b_n in zip(X_a, X_b):
            self.assertTrue(np.array_equal(X_a_n, X_b_n))

    def test_no_segmenting(self):
        X_out = cut_trials(self.X, seg_length=np.inf)
        self.assertEqual(len(X_out), 2)
        self.assertIs(X_out[0], self.X[0])

    def test_skips_short_trials(self):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter('always')
            X_out = cut_trials(self.X, seg_length=30, random_state=0)
        self.assertEqual(len(X_out), 2)
        self.assertTrue(any('index 1' in str(wi.message) for wi in w))

    def test_fallback_to_full_trials(self):
        """
        A trial shorter than one segment is returned unsegmented.
        """
        X = [np.random.randn(4, 10)]
        with self.assertWarns(DegenerateInputWarning):
            X_out = cut_trials(X, seg_length=25)
        self.assertEqual(len(X_out), 1)
        self.assertTrue(np.array_equal(X_out[0], X[0]))

    def test_invalid_seg_length(self):
        with self.assertRaises(ConfigurationError):
            cut_trials(self.X, seg_length=0)


class TestNumerics(unittest.TestCase):
    """
    Unit tests for the linear algebra helpers.
    """
    def setUp(self):
        np.random.seed(2)
        A = np.random.randn(9, 9)
        self.M = A.dot(A.T) + 9 * np.eye(9)

    def test_logdet(self):
        _, test_logdet = np.linalg.slogdet(self.M)
        self.assertAlmostEqual(logdet(self.M), test_logdet)

    def test_sym_block_inversion(self):
        t = 4
        Ainv = linalg.inv(self.M[:t, :t])
        Minv, logdet_M = sym_block_inversion(
            self.M, Ainv, -logdet(self.M[:t, :t]))
        self.assertTrue(np.allclose(Minv, linalg.inv(self.M)))
        self.assertAlmostEqual(logdet_M, logdet(self.M))

    def test_orthonormalize(self):
        for x_dim in (1, 3):
            l_mat = np.random.randn(6, x_dim)
            Z = np.random.randn(x_dim, 10)
            Z_orth, Lorth, TT = orthonormalize(Z, l_mat)
            self.assertTrue(np.allclose(Lorth.T.dot(Lorth), np.eye(x_dim)))
            self.assertTrue(np.allclose(Lorth.dot(Z_orth), l_mat.dot(Z)))
            self.assertTrue(np.allclose(TT.dot(Z), Z_orth))

    def test_segment_by_trial(self):
        seqs = np.empty(2, dtype=[('X', object)])
        seqs['X'][0] = np.zeros((2, 3))
        seqs['X'][1] = np.zeros((2, 4))
        Z = np.arange(7)[np.newaxis, :]
        seqs_new = segment_by_trial(seqs, Z, 'Z')
        self.assertTrue(np.array_equal(seqs_new['Z'][1], [[3, 4, 5, 6]]))
        with self.assertRaises(ValueError):
            segment_by_trial(seqs, Z[:, :5], 'Z')


class TestSimulateTrials(unittest.TestCase):
    """
    Unit tests for drawing synthetic trials.
    """
    def setUp(self):
        self.layout = GroupLayout([3, 4], 1, [1, 2])
        rng = np.random.RandomState(4)
        self.params = DLAGParams(
            C=rng.randn(self.layout.y_dim, self.layout.x_dim)
            * self.layout.loading_mask(),
            d=rng.randn(self.layout.y_dim),
            R=0.1 * np.ones(self.layout.y_dim),
            tau=0.1 * np.ones(self.layout.n_units),
            eps=1e-3 * np.ones(self.layout.n_units),
            D=np.array([[0.], [0.04]]))

    def test_shapes(self):
        X, Z = simulate_trials(self.params, self.layout, 3, [5, 8, 5], 0.02,
                               random_state=0)
        self.assertEqual([X_n.shape for X_n in X], [(7, 5), (7, 8), (7, 5)])
        self.assertEqual([Z_n.shape for Z_n in Z], [(5, 5), (5, 8), (5, 5)])

    def test_reproducible(self):
        X_a, _ = simulate_trials(self.params, self.layout, 2, 6, 0.02,
                                 random_state=5)
        X_b, _ = simulate_trials(self.params, self.layout, 2, 6, 0.02,
                                 random_state=5)
        self.assertTrue(np.array_equal(X_a[1], X_b[1]))


if __name__ == "__main__":
    unittest.main()
