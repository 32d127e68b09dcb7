"""
DLAG engine Unittests.
:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import unittest
import warnings
import numpy as np
from sklearn.exceptions import ConvergenceWarning
from dlag import DLAGParams, GroupLayout, dlag_engine, simulate_trials


class TestDLAGEngine(unittest.TestCase):
    """
    Unit tests for the result record of a single DLAG run.
    """
    def setUp(self):
        rng = np.random.RandomState(50)
        self.layout = GroupLayout([3, 3], 1, [0, 1])
        params = DLAGParams(
            C=rng.randn(6, self.layout.x_dim) * self.layout.loading_mask(),
            d=np.zeros(6),
            R=0.1 * np.ones(6),
            tau=0.1 * np.ones(self.layout.n_units),
            eps=1e-3 * np.ones(self.layout.n_units),
            D=np.array([[0.], [0.02]]))
        X, _ = simulate_trials(params, self.layout, 6, 12, 0.02,
                               random_state=rng)
        self.X_train, self.X_test = X[:4], X[4:]
        self.options = dict(y_dims=[3, 3], x_dim_across=1,
                            x_dim_within=[0, 1], em_max_iters=3,
                            random_state=0)

    def run_engine(self, *args, **kwargs):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            return dlag_engine(*args, **kwargs)

    def test_training_only(self):
        result = self.run_engine(self.X_train, **self.options)
        self.assertEqual(set(result), {'est_params', 'fit_info',
                                       'train_latent_seqs', 'll_train',
                                       'options'})
        self.assertNotIn('X', result['train_latent_seqs'].dtype.names)
        self.assertEqual(len(result['train_latent_seqs']), 4)
        self.assertEqual(result['options']['start_eps'], 1e-3)

    def test_with_test_trials(self):
        result = self.run_engine(self.X_train, self.X_test, **self.options)
        for key in ('MSE', 'MSEorth', 'R2', 'R2orth', 'll_test'):
            self.assertIn(key, result)
        self.assertEqual(result['MSEorth'].shape, (1,))
        self.assertNotIn('X_train', result)

    def test_save_data(self):
        result = self.run_engine(self.X_train, self.X_test, save_data=True,
                                 **self.options)
        self.assertIs(result['X_train'], self.X_train)
        self.assertIs(result['X_test'], self.X_test)
        self.assertIn('X', result['train_latent_seqs'].dtype.names)

    def test_warm_start_options(self):
        first = self.run_engine(self.X_train, **self.options)
        options = dict(self.options, init_method='params',
                       init_params=first['est_params'])
        result = self.run_engine(self.X_train, **options)
        for name in ('start_tau', 'start_eps', 'start_delay'):
            self.assertNotIn(name, result['options'])
        self.assertGreaterEqual(
            result['ll_train'],
            first['ll_train'] - 1e-6 * abs(first['ll_train']))

    def test_unknown_option(self):
        with self.assertRaises(TypeError):
            dlag_engine(self.X_train, maxIters=3, **self.options)


if __name__ == "__main__":
    unittest.main()
