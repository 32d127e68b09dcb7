"""
DLAG latent inference and sufficient statistics.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

from functools import reduce

import numpy as np
import scipy.linalg as linalg
from joblib import Parallel, delayed

from .exceptions import ConfigurationError, NumericalInstabilityError
from .kernels import make_gp_kernel, stacked_times

__all__ = [
    "infer_latents",
    "sufficient_statistics",
    "gp_sufficient_statistics"
]


def _k_big_inv(params, layout, n_timesteps, bin_size):
    """
    Inverse and log-determinant of the GP covariance matrix across all
    latents and timesteps. As latents of different GP units are
    independent a priori, each unit is inverted on its own.
    """
    K_big_inv = np.zeros((layout.x_dim * n_timesteps,
                          layout.x_dim * n_timesteps))
    tsdt = np.arange(0, n_timesteps) * bin_size
    logdet_k_big = 0.0

    for _, _, _, latents, tau, eps, delays in params.unit_params(layout):
        K = make_gp_kernel(tau, eps)(
            stacked_times(tsdt, delays)[:, np.newaxis])
        K_chol = linalg.cho_factor(K, lower=True)
        idx = layout.big_indices(latents, n_timesteps)
        K_big_inv[np.ix_(idx, idx)] = linalg.cho_solve(K_chol,
                                                       np.eye(len(K)))
        logdet_k_big += 2 * np.log(np.diag(K_chol[0])).sum()

    return K_big_inv, logdet_k_big


def _trial_posterior(X_n, rows, d, rinv, c_rinv, M_inv, get_ll):
    """
    Posterior mean of one trial and its observation-dependent
    log-likelihood terms.
    """
    dif = X_n[rows] - d[:, np.newaxis]
    term1 = c_rinv.dot(dif).ravel(order='F')
    mu = M_inv.dot(term1)
    ll_term = np.nan
    if get_ll:
        ll_term = term1.dot(mu) - (rinv[:, np.newaxis] * dif ** 2).sum()
    return mu, ll_term


def infer_latents(X, params, layout, bin_size, get_ll=True, n_jobs=None,
                  observed_groups=None):
    """
    Extracts latent trajectories from observed data given DLAG model
    parameters.

    The posterior is computed in information form,

        M = K_big^-1 + I_T (x) C'R^-1 C,
        pZ_mu = M^-1 C'R^-1 (y - d),    cov = M^-1,

    where the GP covariance ``K_big`` is inverted GP unit by GP unit. The
    data log-likelihood follows from the matrix determinant lemma and
    Woodbury's identity, so that the (y_dim * T) x (y_dim * T) marginal
    covariance is never formed.

    Parameters
    ----------
    X : sequence of numpy.ndarray
        Trials, each of shape (y_dim, T). The trial id is its position.
    params : DLAGParams
    layout : GroupLayout
    bin_size : float
    get_ll : bool, optional, default=True
        specifies whether to compute data log likelihood
    n_jobs : int or None, optional
        Number of joblib workers that process trials of the same length.
    observed_groups : sequence of int, optional
        Condition only on the observations of these groups. Default: all.

    Returns
    -------
    latent_seqs : numpy.recarray
        One entry per trial, with fields
        X : numpy.ndarray of shape (y_dim, T)
            observations
        pZ_mu : numpy.ndarray of shape (x_dim, T)
            posterior mean of latent variables at each time bin
        pZ_cov : numpy.ndarray of shape (x_dim, x_dim, T)
            posterior covariance between latent variables at each
            timepoint
        pZ_covGP : list of numpy.ndarray
            posterior covariance of each GP unit over its stacked
            (time-major) group copies and time
        ll : float
            data log likelihood of the trial (nan if not `get_ll`)
    ll : float
        total data log likelihood, nan if not `get_ll`

    Raises
    ------
    ConfigurationError
        If `params`, `layout` and the trials disagree in dimensionality.
    NumericalInstabilityError
        If a covariance matrix is not positive definite. The message lists
        the indices of the affected trials.
    """
    params.validate(layout)
    for n, X_n in enumerate(X):
        if X_n.ndim != 2 or X_n.shape[0] != layout.y_dim:
            raise ConfigurationError(
                f"Trial {n} has shape {X_n.shape}, but {layout} requires "
                f"{layout.y_dim} rows.")

    if observed_groups is None:
        observed_groups = range(layout.num_groups)
    rows = np.hstack([np.arange(layout.y_dim)[layout.obs_slice(g)]
                      for g in observed_groups])
    C = params.C[rows]
    d = params.d[rows]
    rinv = 1.0 / params.R[rows]
    logdet_r = np.log(params.R[rows]).sum()
    y_dim = len(rows)
    x_dim = layout.x_dim

    c_rinv = C.T * rinv[np.newaxis, :]
    c_rinv_c = c_rinv.dot(C)

    latent_seqs = np.empty(len(X), dtype=[
        ('X', object), ('pZ_mu', object), ('pZ_cov', object),
        ('pZ_covGP', object), ('ll', float)])
    for n, X_n in enumerate(X):
        latent_seqs['X'][n] = X_n

    units = layout.gp_units()
    Tall = np.array([X_n.shape[1] for X_n in X])
    ll = 0.

    # Overview:
    # - Outer loop on each unique trial length.
    # - Posterior covariances do not depend on observations, so they are
    #   computed once per length. Means are computed trial by trial.
    for t in np.unique(Tall):
        n_list = np.where(Tall == t)[0]
        try:
            K_big_inv, logdet_k_big = _k_big_inv(params, layout, t, bin_size)
            M = K_big_inv + np.kron(np.eye(t), c_rinv_c)
            M_chol = linalg.cho_factor(M, lower=True)
        except np.linalg.LinAlgError as err:
            raise NumericalInstabilityError(
                f"Covariance is not positive definite for trials "
                f"{n_list.tolist()} (length {t}).") from err
        M_inv = linalg.cho_solve(M_chol, np.eye(len(M)))
        M_inv = (M_inv + M_inv.T) / 2
        logdet_M = 2 * np.log(np.diag(M_chol[0])).sum()

        # x_dim x x_dim posterior covariance for each timepoint
        vsm = np.full((x_dim, x_dim, t), np.nan)
        idx = np.arange(0, x_dim * t + 1, x_dim)
        for i in range(t):
            vsm[:, :, i] = M_inv[idx[i]:idx[i + 1], idx[i]:idx[i + 1]]

        # posterior covariance for each GP unit
        vsm_gp = []
        for _, _, latents in units:
            idx_u = layout.big_indices(latents, t)
            vsm_gp.append(M_inv[np.ix_(idx_u, idx_u)])

        results = Parallel(n_jobs=n_jobs, prefer='threads')(
            delayed(_trial_posterior)(
                X[n], rows, d, rinv, c_rinv, M_inv, get_ll)
            for n in n_list)

        val = -t * logdet_r - logdet_k_big - logdet_M \
            - y_dim * t * np.log(2 * np.pi)
        for n, (mu, ll_term) in zip(n_list, results):
            latent_seqs['pZ_mu'][n] = mu.reshape((x_dim, t), order='F')
            latent_seqs['pZ_cov'][n] = vsm
            latent_seqs['pZ_covGP'][n] = vsm_gp
            latent_seqs['ll'][n] = (val + ll_term) / 2
            if get_ll:
                ll = ll + val + ll_term

    if get_ll:
        ll /= 2
    else:
        ll = np.nan

    return latent_seqs, ll


def _trial_statistics(X_n, seq):
    mu = seq['pZ_mu']
    return {
        'P': seq['pZ_cov'].sum(axis=2) + mu.dot(mu.T),
        'XZ': X_n.dot(mu.T),
        'Z': mu.sum(axis=1),
        'X': X_n.sum(axis=1),
        'XX': (X_n * X_n).sum(axis=1),
        'T': X_n.shape[1],
    }


def _combine(a, b):
    return {key: a[key] + b[key] for key in a}


def sufficient_statistics(latent_seqs, n_jobs=None):
    """
    Sums of posterior moments across trials needed by the closed-form
    M-step.

    Parameters
    ----------
    latent_seqs : numpy.recarray
        Output of :func:`infer_latents`.
    n_jobs : int or None, optional
        Number of joblib workers processing the trials.

    Returns
    -------
    stats : dict
        P : (x_dim, x_dim) sum over bins of E[z z']
        XZ : (y_dim, x_dim) sum over bins of y E[z]'
        Z : (x_dim,) sum over bins of E[z]
        X : (y_dim,) sum over bins of y
        XX : (y_dim,) sum over bins of y ** 2
        T : total number of bins

    Notes
    -----
    Per-trial statistics are summed in trial order, so that the result
    does not depend on ``n_jobs``.
    """
    per_trial = Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(_trial_statistics)(seq['X'], seq) for seq in latent_seqs)
    return reduce(_combine, per_trial)


def gp_sufficient_statistics(latent_seqs, layout):
    """
    Sums of posterior second moments of each GP unit, by trial length.

    Returns
    -------
    precomp : dict
        Tmax : maximal trial length
        Tu : numpy.recarray, one entry per unique trial length with fields
            T : trial length
            numTrials : number of trials of that length
            PautoSUM : list, one (G*T, G*T) matrix per GP unit, holding the
                sum over trials of E[z_u z_u'] with z_u the stacked
                (time-major) latent sequence of unit u.
    """
    Tall = np.array([seq['pZ_mu'].shape[1] for seq in latent_seqs])
    unique_Ts = np.unique(Tall)
    units = layout.gp_units()
    precomp = {'Tmax': int(unique_Ts.max()),
               'Tu': np.empty(len(unique_Ts), dtype=[
                   ('T', int), ('numTrials', int), ('PautoSUM', object)])}

    for j, t in enumerate(unique_Ts):
        n_list = np.where(Tall == t)[0]
        p_auto_sum = []
        for u, (_, _, latents) in enumerate(units):
            idx_u = layout.big_indices(latents, t)
            mus = np.stack([latent_seqs[n]['pZ_mu'].ravel(order='F')[idx_u]
                            for n in n_list])
            p_auto_sum.append(len(n_list) * latent_seqs[n_list[0]][
                'pZ_covGP'][u] + mus.T.dot(mus))
        precomp['Tu'][j]['T'] = t
        precomp['Tu'][j]['numTrials'] = len(n_list)
        precomp['Tu'][j]['PautoSUM'] = p_auto_sum

    return precomp
