"""
DLAG parameter initialization.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import warnings

import numpy as np
import scipy.linalg as linalg
from sklearn.decomposition import FactorAnalysis
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils import check_random_state

from .exceptions import ConfigurationError
from .params import DLAGParams

__all__ = [
    "initialize",
    "pcca"
]


def pcca(X_all, layout, x_dim, max_iters=10000, tol=1e-8,
         random_state=None):
    """
    Probabilistic canonical correlation analysis across groups
    (Bach & Jordan, 2005), fitted by Expectation Maximization.

    The model is ``y = C z + d + e`` with ``z ~ N(0, I)`` shared by all
    groups and ``e ~ N(0, Psi)``, where ``Psi`` is block diagonal with one
    full covariance block per group.

    Parameters
    ----------
    X_all : numpy.ndarray, shape (y_dim, N)
        Observations, one sample per column.
    layout : GroupLayout
    x_dim : int
        Number of shared latents.
    max_iters : int, optional, default=10000
    tol : float, optional, default=1e-8
        Relative log-likelihood stopping criterion.
    random_state : int, RandomState instance or None, optional
        Source of the random initial loadings.

    Returns
    -------
    C : numpy.ndarray, shape (y_dim, x_dim)
        Shared loadings.
    Psi : numpy.ndarray, shape (y_dim, y_dim)
        Block diagonal private covariance.
    d : numpy.ndarray, shape (y_dim,)
        Observation mean.
    lls : list
        Log-likelihood after each iteration.
    """
    rng = check_random_state(random_state)
    y_dim, N = X_all.shape
    d = X_all.mean(axis=1)
    Y = X_all - d[:, np.newaxis]
    cov = Y.dot(Y.T) / N

    block_mask = np.zeros((y_dim, y_dim), dtype=bool)
    for g in range(layout.num_groups):
        block_mask[layout.obs_slice(g), layout.obs_slice(g)] = True

    C = rng.standard_normal((y_dim, x_dim)) \
        * np.sqrt(np.diag(cov) / x_dim)[:, np.newaxis]
    Psi = np.where(block_mask, cov, 0)
    const = -y_dim / 2 * np.log(2 * np.pi)
    lls = []
    ll_old = ll_base = -np.inf

    for iter_id in range(1, max_iters + 1):
        # ==== E STEP =====
        Psi_inv = np.zeros_like(Psi)
        for g in range(layout.num_groups):
            sl = layout.obs_slice(g)
            Psi_inv[sl, sl] = linalg.inv(Psi[sl, sl])
        c_psi_inv = C.T.dot(Psi_inv)
        M = np.eye(x_dim) + c_psi_inv.dot(C)
        beta = linalg.solve(M, c_psi_inv, assume_a='pos')
        cov_beta = cov.dot(beta.T)
        Ezz = np.eye(x_dim) - beta.dot(C) + beta.dot(cov_beta)

        sigma = C.dot(C.T) + Psi
        _, logdet_sigma = np.linalg.slogdet(sigma)
        ll = N * const - N / 2 * (
            logdet_sigma + np.trace(linalg.solve(sigma, cov, assume_a='pos')))
        lls.append(ll)

        # ==== M STEP ====
        C = linalg.solve(Ezz, cov_beta.T, assume_a='pos').T
        Psi = np.where(block_mask, cov - C.dot(cov_beta.T), 0)
        Psi = (Psi + Psi.T) / 2

        if iter_id <= 2:
            ll_base = ll
        elif (ll - ll_base) < (1 + tol) * (ll_old - ll_base):
            break
        ll_old = ll
    else:
        warnings.warn(f'pCCA did not converge within {max_iters} '
                      'iterations.', ConvergenceWarning)

    return C, Psi, d, lls


def initialize(X, layout, init_method='pcca', init_params=None,
               bin_size=0.02, start_tau=None, start_eps=1.0E-3,
               start_delay=None, cov_type='rbf', random_state=None,
               verbose=False):
    """
    Produces starting parameters for DLAG's EM algorithm.

    Parameters
    ----------
    X : sequence of numpy.ndarray
        Training trials, each of shape (y_dim, T).
    layout : GroupLayout
    init_method : {'pcca', 'params'}, optional, default='pcca'
        ``'pcca'`` initializes the across-group loadings by probabilistic
        CCA across groups, and the within-group loadings and private
        variances by factor analysis of each group's residuals.
        ``'params'`` returns a copy of ``init_params`` unchanged, e.g., to
        continue training a previously fitted model. All ``start_*``
        arguments are then ignored.
    init_params : DLAGParams, optional
        Required for ``init_method='params'``.
    bin_size : float, optional, default=0.02
    start_tau : float, optional
        Initial GP timescale, in units of time. Default: ``2 * bin_size``.
    start_eps : float, optional, default=1e-3
        GP noise variance.
    start_delay : array-like of float, optional
        Initial delay of each group, shared by all across-group latents.
        Delays are taken relative to group 0. Default: zeros.
    cov_type : str, optional, default='rbf'
    random_state : int, RandomState instance or None, optional
    verbose : bool, optional, default=False

    Returns
    -------
    params : DLAGParams

    Raises
    ------
    ConfigurationError
        If ``init_method`` or ``cov_type`` is not supported, if
        ``init_params`` is missing or does not match ``layout``, or if
        ``start_delay`` does not have one entry per group.
    """
    if init_method == 'params':
        if init_params is None:
            raise ConfigurationError("init_method='params' requires "
                                     "'init_params'.")
        return init_params.copy().validate(layout)
    if init_method != 'pcca':
        raise ConfigurationError(
            f"Unsupported init_method: {init_method!r}. Use 'pcca' or "
            "'params'.")
    if cov_type != 'rbf':
        raise ConfigurationError("Only 'rbf' GP covariance type is "
                                 "supported.")

    rng = check_random_state(random_state)
    if start_tau is None:
        start_tau = 2 * bin_size
    if start_delay is None:
        start_delay = np.zeros(layout.num_groups)
    start_delay = np.asarray(start_delay, dtype=float).ravel()
    if len(start_delay) != layout.num_groups:
        raise ConfigurationError(
            f"'start_delay' has {len(start_delay)} entries, but there are "
            f"{layout.num_groups} groups.")

    X_all = np.hstack(X)
    x_dim_across = layout.x_dim_across
    C = np.zeros((layout.y_dim, layout.x_dim))
    R = np.zeros(layout.y_dim)
    params = DLAGParams(
        C, X_all.mean(axis=1), R,
        tau=start_tau * np.ones(layout.n_units),
        eps=start_eps * np.ones(layout.n_units),
        D=np.outer(start_delay - start_delay[0], np.ones(x_dim_across)),
        cov_type=cov_type)

    # residuals of the across-group fit, to be explained within groups
    resid = X_all - params.d[:, np.newaxis]
    if x_dim_across > 0:
        if verbose:
            print('Initializing across-group parameters using pCCA...')
        C_pcca, Psi, _, _ = pcca(X_all, layout, x_dim_across,
                                 random_state=rng)
        Z_all = C_pcca.T.dot(linalg.solve(
            C_pcca.dot(C_pcca.T) + Psi, resid, assume_a='pos'))
        resid = resid - C_pcca.dot(Z_all)
        for g in range(layout.num_groups):
            sl = layout.obs_slice(g)
            params.set_block(layout, g, 'across', C_pcca[sl])
            params.R[sl] = np.diag(Psi[sl, sl])

    for g in range(layout.num_groups):
        if layout.x_dim_within[g] == 0:
            if x_dim_across == 0:
                params.R[layout.obs_slice(g)] = np.var(
                    X_all[layout.obs_slice(g)], axis=1)
            continue
        if verbose:
            print(f'Initializing within-group parameters of group {g} '
                  'using factor analysis...')
        resid_g = resid[layout.obs_slice(g)]
        fa = FactorAnalysis(
            n_components=layout.x_dim_within[g], copy=True,
            noise_variance_init=np.diag(np.cov(resid_g, bias=True)),
            random_state=rng)
        fa.fit(resid_g.T)
        params.set_block(layout, g, 'within', fa.components_.T)
        params.R[layout.obs_slice(g)] = fa.noise_variance_

    return params.validate(layout)
