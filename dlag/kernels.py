"""
GP covariance functions for DLAG.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import numpy as np
from sklearn.gaussian_process.kernels import RBF, WhiteKernel
from sklearn.gaussian_process.kernels import ConstantKernel

from .exceptions import ConfigurationError

__all__ = [
    "make_gp_kernel",
    "rbf_covariance",
    "stacked_times",
    "make_k_big",
    "delayed_kernel_grads"
]


def make_gp_kernel(tau, eps):
    """
    Builds the squared exponential GP kernel of a single latent,

        ConstantKernel(1 - eps, constant_value_bounds='fixed')
        * RBF(length_scale=tau)
        + ConstantKernel(eps, constant_value_bounds='fixed')
        * WhiteKernel(noise_level=1, noise_level_bounds='fixed')

    such that only the timescale ``tau`` is a free hyperparameter, i.e.,
    ``kernel.theta == [log(tau)]``.

    Raises
    ------
    ConfigurationError
        If ``tau <= 0`` or ``eps`` is not in (0, 1).
    """
    if not np.isfinite(tau) or tau <= 0:
        raise ConfigurationError(f"GP timescale must be positive, got {tau}.")
    if not 0 < eps < 1:
        raise ConfigurationError(
            f"GP noise variance must lie in (0, 1), got {eps}.")
    return ConstantKernel(
        1 - eps, constant_value_bounds='fixed'
        ) * RBF(length_scale=tau) + ConstantKernel(
            eps, constant_value_bounds='fixed'
            ) * WhiteKernel(noise_level=1, noise_level_bounds='fixed')


def rbf_covariance(time_points, tau, eps, delay=0.0):
    """
    Squared exponential covariance between two time grids offset by
    ``delay``,

        K[i, j] = (1 - eps) * exp(-(t_i - t_j - delay)^2 / (2 tau^2))
                  + eps * [i == j]

    Parameters
    ----------
    time_points : array-like, shape (T,)
        Sample times, in the same units as ``tau``.
    tau : float
        GP timescale.
    eps : float
        GP noise variance, in (0, 1).
    delay : float, optional, default=0.0
        Delay of the second time grid relative to the first.

    Returns
    -------
    K : numpy.ndarray, shape (T, T)
        Symmetric and positive definite for ``delay == 0``.
    """
    kernel = make_gp_kernel(tau, eps)
    t = np.asarray(time_points, dtype=float)[:, np.newaxis]
    # k1 is the scaled RBF term only, evaluated between the two grids
    return kernel.k1(t, t + delay) + eps * np.eye(len(t))


def stacked_times(tsdt, delays):
    """
    Time points of all group copies of one latent, time-major, i.e.,
    entry ``t * len(delays) + g`` holds ``tsdt[t] - delays[g]``.
    """
    return (tsdt[:, np.newaxis] - np.asarray(delays)[np.newaxis, :]).ravel()


def make_k_big(params, layout, n_timesteps, bin_size):
    """
    Constructs the full GP covariance matrix across all latents and
    timesteps.

    Parameters
    ----------
    params : DLAGParams
    layout : GroupLayout
    n_timesteps : int
        number of timesteps
    bin_size : float
        time between successive timesteps

    Returns
    -------
    K_big : numpy.ndarray
        GP covariance matrix with dimensions (x_dim * T) x (x_dim * T),
        indexed as described in :class:`GroupLayout`. Entries between
        latents of different GP units are zero. Across-group copies of the
        same latent covary according to their relative delay.
    """
    K_big = np.zeros((layout.x_dim * n_timesteps,
                      layout.x_dim * n_timesteps))
    tsdt = np.arange(0, n_timesteps) * bin_size

    for _, _, _, latents, tau, eps, delays in params.unit_params(layout):
        K = make_gp_kernel(tau, eps)(
            stacked_times(tsdt, delays)[:, np.newaxis])
        idx = layout.big_indices(latents, n_timesteps)
        K_big[np.ix_(idx, idx)] = K

    return K_big


def delayed_kernel_grads(tsdt, tau, eps, delays, grad_delays=True):
    """
    Covariance of one GP unit over the stacked, delayed time grid, with its
    gradients.

    Parameters
    ----------
    tsdt : numpy.ndarray, shape (T,)
        Sample times.
    tau, eps : float
        GP timescale and noise variance.
    delays : numpy.ndarray, shape (G,)
        Delay of each group copy. The first entry is the reference.
    grad_delays : bool, optional, default=True
        If True, also returns gradients with respect to ``delays[1:]``.

    Returns
    -------
    K : numpy.ndarray, shape (G * T, G * T)
    K_grads : numpy.ndarray, shape (n_params, G * T, G * T)
        Gradient with respect to ``log(tau)``, followed by the gradients
        with respect to each non-reference delay if ``grad_delays``.
    """
    n_groups = len(delays)
    times = stacked_times(tsdt, delays)
    K, K_gradient = make_gp_kernel(tau, eps)(
        times[:, np.newaxis], eval_gradient=True)
    grads = [K_gradient[:, :, 0]]

    if grad_delays and n_groups > 1:
        K_rbf = K - eps * np.eye(len(times))
        dif = times[:, np.newaxis] - times[np.newaxis, :]
        base = K_rbf * dif / tau ** 2
        group_of = np.tile(np.arange(n_groups), len(tsdt))
        for g in range(1, n_groups):
            ind = (group_of == g).astype(float)
            grads.append(base * (ind[:, np.newaxis] - ind[np.newaxis, :]))

    return K, np.stack(grads)
