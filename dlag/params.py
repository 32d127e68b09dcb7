"""
DLAG group layout and model parameters.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import numpy as np

from .exceptions import ConfigurationError

__all__ = [
    "GroupLayout",
    "DLAGParams"
]


class GroupLayout(object):
    """
    Block partition of the observed and latent spaces into groups.

    Every group observes its own, delayed copy of each of the ``x_dim_across``
    across-group latents, followed by its ``x_dim_within[g]`` within-group
    latents. The latent state at a single time bin is therefore of size
    ``x_dim = sum_g (x_dim_across + x_dim_within[g])``, ordered group by
    group. Sequences of latent states over ``T`` bins are stacked time-major,
    i.e., latent ``i`` at bin ``t`` sits at index ``t * x_dim + i``.

    Parameters
    ----------
    y_dims : array-like of int
        Number of observed features in each group.
    x_dim_across : int
        Number of across-group latents.
    x_dim_within : array-like of int
        Number of within-group latents, one entry per group.

    Raises
    ------
    ConfigurationError
        If ``x_dim_within`` does not have one entry per group, or if any
        dimensionality is negative (or, for ``y_dims``, not positive).
    """
    def __init__(self, y_dims, x_dim_across, x_dim_within):
        y_dims = np.atleast_1d(np.asarray(y_dims, dtype=int))
        x_dim_within = np.atleast_1d(np.asarray(x_dim_within, dtype=int))
        if y_dims.ndim != 1 or len(y_dims) == 0:
            raise ConfigurationError("'y_dims' must be a non-empty sequence.")
        if len(x_dim_within) != len(y_dims):
            raise ConfigurationError(
                f"'x_dim_within' has {len(x_dim_within)} entries, but there "
                f"are {len(y_dims)} groups.")
        if np.any(y_dims <= 0):
            raise ConfigurationError("All entries of 'y_dims' must be "
                                     "positive.")
        if int(x_dim_across) < 0 or np.any(x_dim_within < 0):
            raise ConfigurationError("Latent dimensionalities must be "
                                     "non-negative.")

        self.y_dims = y_dims
        self.x_dim_across = int(x_dim_across)
        self.x_dim_within = x_dim_within
        self.num_groups = len(y_dims)
        self.x_dims = self.x_dim_across + x_dim_within
        self.y_dim = int(y_dims.sum())
        self.x_dim = int(self.x_dims.sum())
        self.n_units = self.x_dim_across + int(x_dim_within.sum())

        self._y_starts = np.hstack([0, np.cumsum(y_dims)])
        self._x_starts = np.hstack([0, np.cumsum(self.x_dims)])
        for arr in (self.y_dims, self.x_dim_within, self.x_dims,
                    self._y_starts, self._x_starts):
            arr.setflags(write=False)

    def __repr__(self):
        return (f"GroupLayout(y_dims={self.y_dims.tolist()}, "
                f"x_dim_across={self.x_dim_across}, "
                f"x_dim_within={self.x_dim_within.tolist()})")

    def __eq__(self, other):
        if not isinstance(other, GroupLayout):
            return NotImplemented
        return (np.array_equal(self.y_dims, other.y_dims)
                and self.x_dim_across == other.x_dim_across
                and np.array_equal(self.x_dim_within, other.x_dim_within))

    def obs_slice(self, group):
        """Rows of the observations belonging to ``group``."""
        return slice(self._y_starts[group], self._y_starts[group + 1])

    def latent_slice(self, group):
        """Latent state entries (across copy and within) of ``group``."""
        return slice(self._x_starts[group], self._x_starts[group + 1])

    def latent_indices(self, group, kind):
        """
        Indices into the latent state of the ``kind`` block of ``group``.

        Parameters
        ----------
        group : int
        kind : {'across', 'within'}
        """
        start = self._x_starts[group]
        if kind == 'across':
            return np.arange(start, start + self.x_dim_across)
        if kind == 'within':
            return np.arange(start + self.x_dim_across,
                             self._x_starts[group + 1])
        raise ValueError(f"Unknown latent kind: {kind!r}")

    def gp_units(self):
        """
        Enumerate the independent GP priors of the model.

        Returns
        -------
        units : list of tuple
            One ``(kind, groups, latents)`` tuple per GP. ``kind`` is
            'across' or 'within', ``groups`` lists the groups whose latents
            share this GP and ``latents`` the matching latent state indices.
            Across-group GPs come first, followed by the within-group GPs of
            group 0, group 1, etc. This is also the order of
            :attr:`DLAGParams.tau` and :attr:`DLAGParams.eps`.
        """
        units = []
        groups = np.arange(self.num_groups)
        for j in range(self.x_dim_across):
            units.append(('across', groups, self._x_starts[:-1] + j))
        for g in range(self.num_groups):
            for idx in self.latent_indices(g, 'within'):
                units.append(('within', np.array([g]), np.array([idx])))
        return units

    def big_indices(self, latents, n_timesteps):
        """
        Indices into a stacked latent sequence of length ``n_timesteps``
        for the given latents, time-major: entry ``t * len(latents) + k``
        refers to ``latents[k]`` at bin ``t``.
        """
        steps = self.x_dim * np.arange(n_timesteps)
        return (steps[:, np.newaxis]
                + np.atleast_1d(latents)[np.newaxis, :]).ravel()

    def loading_mask(self):
        """Boolean (y_dim, x_dim) mask of the permitted non-zeros of C."""
        mask = np.zeros((self.y_dim, self.x_dim), dtype=bool)
        for g in range(self.num_groups):
            mask[self.obs_slice(g), self.latent_slice(g)] = True
        return mask


class DLAGParams(object):
    """
    DLAG model parameters.

    Parameters
    ----------
    C : numpy.ndarray, shape (y_dim, x_dim)
        Loading matrix, block diagonal over groups.
    d : numpy.ndarray, shape (y_dim,)
        Observation mean.
    R : numpy.ndarray, shape (y_dim,)
        Diagonal of the observation noise covariance.
    tau : numpy.ndarray, shape (n_units,)
        GP timescales in units of time, ordered as
        :meth:`GroupLayout.gp_units`.
    eps : numpy.ndarray, shape (n_units,)
        GP noise variances, same order as ``tau``.
    D : numpy.ndarray, shape (num_groups, x_dim_across)
        Delay of each across-group latent for each group, in units of time.
        Group 0 is the reference group, with zero delays.
    cov_type : str, default='rbf'
        GP covariance type.
    """
    def __init__(self, C, d, R, tau, eps, D, cov_type='rbf'):
        self.C = np.array(C, dtype=float)
        self.d = np.array(d, dtype=float).ravel()
        self.R = np.array(R, dtype=float).ravel()
        self.tau = np.array(tau, dtype=float).ravel()
        self.eps = np.array(eps, dtype=float).ravel()
        self.D = np.array(D, dtype=float).reshape(len(D), -1) \
            if np.size(D) else np.zeros((len(D), 0))
        self.cov_type = cov_type

    def __repr__(self):
        return (f"DLAGParams(y_dim={self.C.shape[0]}, "
                f"x_dim={self.C.shape[1]}, tau={self.tau}, D={self.D})")

    def copy(self):
        return DLAGParams(self.C, self.d, self.R, self.tau, self.eps,
                          self.D, cov_type=self.cov_type)

    def get_block(self, layout, group, kind):
        """Loading sub-block of ``group`` onto its ``kind`` latents."""
        return self.C[layout.obs_slice(group)][
            :, layout.latent_indices(group, kind)]

    def set_block(self, layout, group, kind, value):
        rows = np.arange(layout.y_dim)[layout.obs_slice(group)]
        cols = layout.latent_indices(group, kind)
        self.C[np.ix_(rows, cols)] = value

    def unit_params(self, layout):
        """Yields ``(unit_idx, kind, groups, latents, tau, eps, delays)``."""
        for u, (kind, groups, latents) in enumerate(layout.gp_units()):
            if kind == 'across':
                delays = self.D[groups, u]
            else:
                delays = np.zeros(1)
            yield u, kind, groups, latents, self.tau[u], self.eps[u], delays

    def validate(self, layout):
        """
        Checks that the parameters are consistent with ``layout``.

        Raises
        ------
        ConfigurationError
            If any parameter has the wrong shape, if ``C`` has non-zeros
            outside its block structure, if GP parameters are out of range,
            or if the reference group has non-zero delays.
        """
        expected = {
            'C': (layout.y_dim, layout.x_dim),
            'd': (layout.y_dim,),
            'R': (layout.y_dim,),
            'tau': (layout.n_units,),
            'eps': (layout.n_units,),
            'D': (layout.num_groups, layout.x_dim_across),
        }
        for name, shape in expected.items():
            if getattr(self, name).shape != shape:
                raise ConfigurationError(
                    f"Parameter '{name}' has shape "
                    f"{getattr(self, name).shape}, but {layout} requires "
                    f"{shape}.")
        if np.any(self.C[~layout.loading_mask()] != 0):
            raise ConfigurationError("Loading matrix 'C' has non-zero "
                                     "entries outside its group blocks.")
        if self.cov_type != 'rbf':
            raise ConfigurationError("Only 'rbf' GP covariance type is "
                                     "supported.")
        if np.any(self.tau <= 0):
            raise ConfigurationError("GP timescales must be positive.")
        if np.any(self.eps <= 0) or np.any(self.eps >= 1):
            raise ConfigurationError("GP noise variances must lie in (0, 1).")
        if np.any(self.R <= 0):
            raise ConfigurationError("Observation noise variances must be "
                                     "positive.")
        if layout.x_dim_across > 0 and np.any(self.D[0] != 0):
            raise ConfigurationError("Delays of the reference group 0 must "
                                     "be zero.")
        return self
