"""
Performance metrics of fitted DLAG models.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import numpy as np
from sklearn.metrics import r2_score

from .dlag_util import orthonormalize
from .exceptions import ConfigurationError
from .inference import infer_latents
from .kernels import make_k_big

__all__ = [
    "variance_weighted_r2",
    "group_r2",
    "denoise",
    "population_covariance",
    "pairwise_regress",
    "variance_explained"
]


def variance_weighted_r2(Y_true, Y_pred):
    """
    Coefficient of determination, pooled over features and weighted by the
    variance of each feature,

        R2 = 1 - sum((Y_true - Y_pred)^2) / sum((Y_true - mean(Y_true))^2),

    where the mean is taken per feature (row).

    Parameters
    ----------
    Y_true, Y_pred : numpy.ndarray, shape (n_features, n_samples)

    Returns
    -------
    r2 : float
        1.0 for a perfect prediction, 0.0 for predicting each feature's
        mean. Features without variance get zero weight.

    Raises
    ------
    ConfigurationError
        If the shapes of ``Y_true`` and ``Y_pred`` differ.
    """
    Y_true = np.atleast_2d(Y_true)
    Y_pred = np.atleast_2d(Y_pred)
    if Y_true.shape != Y_pred.shape:
        raise ConfigurationError(
            f"Shape mismatch: {Y_true.shape} vs. {Y_pred.shape}.")
    # no feature varies, e.g. for a single sample
    if Y_true.shape[1] < 2 or not np.any(np.var(Y_true, axis=1) > 0):
        return float(np.array_equal(Y_true, Y_pred))
    return r2_score(Y_true.T, Y_pred.T, multioutput='variance_weighted')


def group_r2(latent_seqs, params, layout):
    """
    Variance-weighted :math:`R^2` of reconstructing each group's
    observations from its own inferred latents, ``C_g z_g + d_g``.

    Parameters
    ----------
    latent_seqs : numpy.recarray
        Output of :func:`dlag.inference.infer_latents`, with fields ``X``
        and ``pZ_mu``.
    params : DLAGParams
    layout : GroupLayout

    Returns
    -------
    r2 : numpy.ndarray, shape (num_groups,)
    """
    X_all = np.hstack(latent_seqs['X'])
    # C is block diagonal, so each group only sees its own latents
    Y_pred = _reconstruct(np.hstack(latent_seqs['pZ_mu']), params.C,
                          params.d)
    r2 = np.zeros(layout.num_groups)
    for g in range(layout.num_groups):
        rows = layout.obs_slice(g)
        r2[g] = variance_weighted_r2(X_all[rows], Y_pred[rows])
    return r2


def _reconstruct(Z, C, d):
    return C.dot(Z) + d[:, np.newaxis]


def denoise(latent_seqs, params, layout):
    """
    Denoises observations by mapping their inferred latents back to the
    observation space, ``C z + d``.

    Parameters
    ----------
    latent_seqs : numpy.recarray
        Output of :func:`dlag.inference.infer_latents`, with field
        ``pZ_mu``.
    params : DLAGParams
    layout : GroupLayout

    Returns
    -------
    result : dict
        Y_denoised : list of numpy.ndarray
            denoised observations of each trial, shape (y_dim, T)
        Y_denoised_orth : list of list of numpy.ndarray
            entry ``k - 1`` holds the denoised observations of each trial
            when only the top k orthonormalized latents are kept,
            k = 1, ..., x_dim. The last entry equals ``Y_denoised``.
    """
    Z_all = np.hstack(latent_seqs['pZ_mu'])
    T_all = np.cumsum([Z_n.shape[1] for Z_n in latent_seqs['pZ_mu']])[:-1]
    Y_denoised = _reconstruct(Z_all, params.C, params.d)

    Y_orth = []
    if layout.x_dim > 0:
        Z_orth, C_orth, _ = orthonormalize(Z_all, params.C)
        for k in range(1, layout.x_dim + 1):
            Y_orth.append(np.split(
                _reconstruct(Z_orth[:k], C_orth[:, :k], params.d),
                T_all, axis=1))
    return {
        'Y_denoised': np.split(Y_denoised, T_all, axis=1),
        'Y_denoised_orth': Y_orth,
    }


def population_covariance(params, layout):
    """
    Model-implied covariance within a single time bin. Across-group copies
    of the same latent covary according to their relative delay.

    Parameters
    ----------
    params : DLAGParams
    layout : GroupLayout

    Returns
    -------
    result : dict
        latent_cov : numpy.ndarray, shape (x_dim, x_dim)
            covariance of all latents
        obs_cov : numpy.ndarray, shape (y_dim, y_dim)
            ``C latent_cov C' + diag(R)``
        obs_corr : numpy.ndarray, shape (y_dim, y_dim)
            correlation matrix of ``obs_cov``
    """
    # with a single bin, the bin size plays no role
    latent_cov = make_k_big(params, layout, 1, 1.0)
    obs_cov = params.C.dot(latent_cov).dot(params.C.T) + np.diag(params.R)
    sd = np.sqrt(np.diag(obs_cov))
    return {
        'latent_cov': latent_cov,
        'obs_cov': obs_cov,
        'obs_corr': obs_cov / np.outer(sd, sd),
    }


def pairwise_regress(X, params, layout, bin_size, r_groups=(0, 1),
                     n_jobs=None):
    """
    Predicts the observations of a target group from those of a source
    group. Latents are inferred conditioned on the source group alone, and
    the target's delayed copies of the across-group latents are mapped
    through the target's across-group loadings.

    Parameters
    ----------
    X : sequence of numpy.ndarray
        Test trials, each of shape (y_dim, T).
    params : DLAGParams
    layout : GroupLayout
    bin_size : float
    r_groups : tuple of int, optional, default=(0, 1)
        ``(source, target)`` groups.
    n_jobs : int or None, optional

    Returns
    -------
    result : dict
        MSE : float
            mean squared prediction error over the target's features and
            bins
        MSEorth : numpy.ndarray, shape (x_dim_across,)
            MSE when predicting from the top 1, 2, ... orthonormalized
            across-group latents
        R2 : float
            :math:`R^2` of the prediction, pooled over the target's
            features
        R2orth : numpy.ndarray, shape (x_dim_across,)
            :math:`R^2` counterpart of ``MSEorth``
        Y_pred : list of numpy.ndarray
            predicted target observations of each trial

    Raises
    ------
    ConfigurationError
        If ``r_groups`` does not name two distinct groups of ``layout``.
    """
    source, target = r_groups
    if source == target or not all(
            0 <= g < layout.num_groups for g in (source, target)):
        raise ConfigurationError(
            f"'r_groups' must name two distinct groups, got {r_groups}.")
    X = [np.asarray(X_n, dtype=float) for X_n in X]
    seqs, _ = infer_latents(X, params, layout, bin_size, get_ll=False,
                            n_jobs=n_jobs, observed_groups=[source])

    rows = layout.obs_slice(target)
    lat = layout.latent_indices(target, 'across')
    C_target = params.get_block(layout, target, 'across')
    d_target = params.d[rows][:, np.newaxis]

    Y_true = np.hstack([X_n[rows] for X_n in X])
    Z_all = np.hstack([seq['pZ_mu'][lat] for seq in seqs])
    Y_pred = C_target.dot(Z_all) + d_target

    def _scores(Y_hat):
        mse = ((Y_true - Y_hat) ** 2).mean()
        return mse, variance_weighted_r2(Y_true, Y_hat)

    mse, r2 = _scores(Y_pred)

    mse_orth = np.zeros(layout.x_dim_across)
    r2_orth = np.zeros(layout.x_dim_across)
    if layout.x_dim_across > 0:
        Z_orth, C_orth, _ = orthonormalize(Z_all, C_target)
        for k in range(1, layout.x_dim_across + 1):
            mse_orth[k - 1], r2_orth[k - 1] = _scores(
                C_orth[:, :k].dot(Z_orth[:k]) + d_target)

    T_all = np.cumsum([X_n.shape[1] for X_n in X])[:-1]
    return {
        'MSE': mse,
        'MSEorth': mse_orth,
        'R2': r2,
        'R2orth': r2_orth,
        'Y_pred': np.split(Y_pred, T_all, axis=1),
    }


def variance_explained(params, layout, total=False):
    """
    Fraction of each group's variance explained by its across-group and its
    within-group latents, computed from the loadings.

    Parameters
    ----------
    params : DLAGParams
    layout : GroupLayout
    total : bool, optional, default=False
        If False, fractions are relative to the shared variance
        ``trace(C_g C_g')``. If True, they are relative to the total
        variance ``trace(C_g C_g') + sum(R_g)``.

    Returns
    -------
    result : dict
        across : numpy.ndarray, shape (num_groups,)
        within : numpy.ndarray, shape (num_groups,)
        indiv_across : list of numpy.ndarray
            contribution of each across-group latent, per group
        indiv_within : list of numpy.ndarray
            contribution of each within-group latent, per group
    """
    result = {'across': np.zeros(layout.num_groups),
              'within': np.zeros(layout.num_groups),
              'indiv_across': [], 'indiv_within': []}
    for g in range(layout.num_groups):
        col_var = {kind: (params.get_block(layout, g, kind) ** 2).sum(axis=0)
                   for kind in ('across', 'within')}
        denom = col_var['across'].sum() + col_var['within'].sum()
        if total:
            denom += params.R[layout.obs_slice(g)].sum()
        if denom == 0:
            denom = np.nan
        for kind in ('across', 'within'):
            result[kind][g] = col_var[kind].sum() / denom
            result['indiv_' + kind].append(col_var[kind] / denom)
    return result
