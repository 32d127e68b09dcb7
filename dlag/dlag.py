"""
Delayed Latents Across Groups (DLAG) estimator.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import time
import warnings

import numpy as np
import sklearn
import scipy.linalg as linalg
import scipy.optimize as optimize
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils import check_random_state
from tqdm import trange

from . import evaluation
from .dlag_util import cut_trials, logdet, orthonormalize, \
    segment_by_trial, sym_block_inversion
from .exceptions import ConfigurationError, NumericalInstabilityError
from .inference import gp_sufficient_statistics, infer_latents, \
    sufficient_statistics
from .initialization import initialize
from .kernels import delayed_kernel_grads
from .params import GroupLayout

__all__ = [
    "DLAG"
]

# relative tolerance below which a drop in data likelihood is attributed
# to numerical error
_LL_DECREASE_RTOL = 1.0E-6


class DLAG(sklearn.base.BaseEstimator):
    """Delayed Latents Across Groups (DLAG) is a dimensionality reduction
    technique for simultaneously recorded, multi-population time series
    data. It extracts smooth latent trajectories that are either shared
    across groups, where each group observes them after a group-specific
    delay, or private to a single group.

    DLAG operates on a set of time-series, where each time series is given
    by a ``y_dim`` x ``bins`` matrix whose rows are partitioned into groups
    of sizes ``y_dims``. The latent trajectories follow Gaussian Process
    (GP) priors with squared exponential kernels. Group ``g`` observes
    across-group latent ``j`` shifted in time by the delay ``D[g, j]``,
    where group 0 is the reference group with zero delays.

    Parameters
    ----------
    bin_size : float, optional, default=0.02
        Size of time-series data bins, in units of time. Timescales and
        delays are expressed in the same units.

    y_dims : array-like of int
        Number of observed features in each group.

    x_dim_across : int, optional, default=1
        Number of across-group latents.

    x_dim_within : array-like of int, optional, default=None
        Number of within-group latents, one per group. ``None`` means no
        within-group latents.

    init_method : {'pcca', 'params'}, optional, default='pcca'
        ``'pcca'`` initializes the model by probabilistic CCA across groups
        followed by factor analysis within groups. ``'params'`` starts
        from ``init_params`` and ignores all ``start_*`` options, e.g., to
        continue training a model.

    init_params : DLAGParams, optional, default=None
        Starting parameters for ``init_method='params'``.

    cov_type : str, optional, default='rbf'
        GP covariance type. Only 'rbf' is supported.

    start_tau : float, optional, default=None
        Initial GP timescale. ``None`` means ``2 * bin_size``.

    start_eps : float, optional, default=1e-3
        GP noise variance. Kept fixed during fitting.

    start_delay : array-like of float, optional, default=None
        Initial delay for each group, relative to group 0. ``None`` means
        zero delays.

    learn_delays : bool, optional, default=True
        If False, delays are kept at their initial values.

    max_delay_frac : float, optional, default=0.5
        Delays are constrained to lie within plus/minus this fraction of
        the shortest training trial duration.

    r_groups : tuple of int, optional, default=(0, 1)
        ``(source, target)`` groups for :meth:`pairwise_regress`.

    min_var_frac : float, optional, default=0.01
        Fraction of overall data variance for each observed dimension to set as
        the private variance floor. This is used to combat Heywood cases,
        where ML parameter learning returns one or more zero private variances
        (see Martin & McDonald, Psychometrika, Dec 1975).

    em_tol : float, optional, default=1e-8
        Stopping criterion for Expectation Maximization (EM) algorithm.

    em_max_iters : int, optional, default=500
        Maximum number of EM iterations.

    freq_ll : int, optional, default=5
        Frequency with which data likelihood is updated across EM iterations.

    freq_param : int, optional, default=100
        Frequency with which GP timescales and delays are stored across EM
        iterations.

    seg_length : int or numpy.inf, optional, default=numpy.inf
        If finite, training trials are cut into segments of this many bins
        to speed up fitting. The final latents are always inferred on the
        full trials.

    random_state : int, RandomState instance or None, optional, default=None
        Seeds the initialization and the trial segmentation.

    n_jobs : int or None, optional, default=None
        Number of joblib workers for per-trial and per-GP computations.

    verbose : bool, optional, default=False
        Determines whether to display status messages.


    Attributes
    ----------
    layout_ : GroupLayout
        Block partition of observations and latents.

    params_ : DLAGParams
        Estimated model parameters.

    fit_info_ : dict
        Parameter fitting information. Updated with each call to :meth:`fit`.

        - `iteration_time` : list
            Runtime for each EM iteration.

        - `log_likelihoods` : list
            Log likelihoods after each EM iteration, ``nan`` for iterations
            on which it was not computed.

        - `iterations` : int
            Number of EM iterations performed.

        - `status` : {'converged', 'iteration_limit'}
            Terminal state of the EM algorithm.

        - `ll_decreases` : int
            Number of times the data likelihood decreased.

        - `param_iterations`, `tau_history`, `delay_history` : list
            GP timescales and delays, stored every ``freq_param``
            iterations.

    train_latent_seqs_ : numpy.recarray
        Latent variable time-courses inferred for the full training trials
        (see :func:`dlag.inference.infer_latents` for the fields).

    ll_train_ : float
        Data log likelihood of the full training trials.

    Corth_ : numpy.ndarray, shape (y_dim, x_dim)
        Loading matrix with orthonormalized columns within each group.

    OrthTrans_ : numpy.ndarray, shape (x_dim, x_dim)
        Block diagonal transform mapping latents onto orthonormalized
        latents.

    Methods
    -------
    fit:
        Fits model parameters to training data.
    predict:
        Provides inferred latent variable time-series.
    score:
        Returns the data log-likelihood.
    pairwise_regress:
        Predicts one group's activity from another's.
    variance_explained:
        Fraction of variance explained by across- and within-group latents.
    group_r2:
        Variance-weighted R2 of the reconstruction of each group.
    denoise:
        Reconstructs observations from their inferred latents.
    population_covariance:
        Model-implied covariance of latents and observations in a single
        time bin.
    """

    def __init__(self, bin_size=0.02, y_dims=None, x_dim_across=1,
                 x_dim_within=None, init_method='pcca', init_params=None,
                 cov_type='rbf', start_tau=None, start_eps=1.0E-3,
                 start_delay=None, learn_delays=True, max_delay_frac=0.5,
                 r_groups=(0, 1), min_var_frac=0.01, em_tol=1.0E-8,
                 em_max_iters=500, freq_ll=5, freq_param=100,
                 seg_length=np.inf, random_state=None, n_jobs=None,
                 verbose=False):
        self.bin_size = bin_size
        self.y_dims = y_dims
        self.x_dim_across = x_dim_across
        self.x_dim_within = x_dim_within
        self.init_method = init_method
        self.init_params = init_params
        self.cov_type = cov_type
        self.start_tau = start_tau
        self.start_eps = start_eps
        self.start_delay = start_delay
        self.learn_delays = learn_delays
        self.max_delay_frac = max_delay_frac
        self.r_groups = r_groups
        self.min_var_frac = min_var_frac
        self.em_tol = em_tol
        self.em_max_iters = em_max_iters
        self.freq_ll = freq_ll
        self.freq_param = freq_param
        self.seg_length = seg_length
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.verbose = verbose

    valid_data_names = (
        'pZ_mu_orth',
        'pZ_mu',
        'pZ_cov',
        'pZ_covGP',
        'X')

    def _validate_params(self):
        """
        Checks the options before any computation and builds ``layout_``.

        Raises
        ------
        ConfigurationError
            If any option is out of range or inconsistent.
        """
        if self.y_dims is None:
            raise ConfigurationError("'y_dims' must be specified.")
        x_dim_within = self.x_dim_within
        if x_dim_within is None:
            x_dim_within = np.zeros(len(np.atleast_1d(self.y_dims)), int)
        self.layout_ = GroupLayout(self.y_dims, self.x_dim_across,
                                   x_dim_within)

        if self.cov_type != 'rbf':
            raise ConfigurationError("Only 'rbf' GP covariance type is "
                                     "supported.")
        if self.init_method not in ('pcca', 'params'):
            raise ConfigurationError(
                f"Unsupported init_method: {self.init_method!r}.")
        if not self.bin_size > 0:
            raise ConfigurationError("'bin_size' must be positive.")
        if self.start_tau is not None and not self.start_tau > 0:
            raise ConfigurationError("'start_tau' must be positive.")
        if not 0 < self.start_eps < 1:
            raise ConfigurationError("'start_eps' must lie in (0, 1).")
        if not 0 <= self.min_var_frac < 1:
            raise ConfigurationError("'min_var_frac' must lie in [0, 1).")
        if not self.max_delay_frac > 0:
            raise ConfigurationError("'max_delay_frac' must be positive.")
        for name in ('em_max_iters', 'freq_ll', 'freq_param'):
            if int(getattr(self, name)) < 1:
                raise ConfigurationError(f"'{name}' must be at least 1.")
        if not self.seg_length > 0:
            raise ConfigurationError("'seg_length' must be positive.")
        if self.init_method == 'params':
            if self.init_params is None:
                raise ConfigurationError("init_method='params' requires "
                                         "'init_params'.")
            self.init_params.validate(self.layout_)
        elif self.start_delay is not None and \
                np.size(self.start_delay) != self.layout_.num_groups:
            raise ConfigurationError(
                f"'start_delay' has {np.size(self.start_delay)} entries, but "
                f"there are {self.layout_.num_groups} groups.")
        # pairwise regression needs two groups
        if self.layout_.num_groups == 1:
            return
        r_groups = tuple(self.r_groups)
        if len(r_groups) != 2 or r_groups[0] == r_groups[1] or \
                not all(0 <= g < self.layout_.num_groups for g in r_groups):
            raise ConfigurationError(
                "'r_groups' must name two distinct groups, got "
                f"{self.r_groups}.")

    def fit(self, X):
        """
        Fit the DLAG model parameters to the given training data using the
        Expectation Maximization algorithm, and infer the latents of the
        full training trials.

        Parameters
        ----------
        X   : array-like
            An array-like sequence of high-dimensional time-series.
            Each element :math:`\\boldsymbol{X}_n` in this sequence is a
            ``y_dim`` x ``bins`` matrix whose rows are ordered group by
            group, as given by ``y_dims``. ``bins`` can differ across
            trials.

        Returns
        -------
        self : object
            Returns the instance itself.

        Raises
        ------
        ConfigurationError
            If an option is invalid, the data does not match ``y_dims``,
            or the covariance matrix of the input data is rank deficient.
        NumericalInstabilityError
            If EM encounters a covariance that is not positive definite, or
            a GP parameter update is not finite.

        Notes
        -----
        1. **Initialization**: see ``init_method``.

        2. **Expectation step**: Given current parameter estimates, the
           posterior over latents of every (segmented) training trial is
           computed, together with the data log-likelihood.

        3. **Maximization step**: :math:`\\boldsymbol{C}`,
           :math:`\\boldsymbol{d}` and :math:`\\boldsymbol{R}` are updated
           in closed form, group by group. GP timescales, and delays if
           ``learn_delays``, are then optimized one GP at a time by
           L-BFGS-B.

        4. **EM iteration**: Steps 2 and 3 are repeated until either the
           change in data likelihood drops below ``em_tol``, or
           ``em_max_iters`` is reached.
        """
        self._validate_params()
        layout = self.layout_
        X = [np.asarray(X_n, dtype=float) for X_n in X]
        if len(X) == 0:
            raise ConfigurationError("At least one training trial is "
                                     "required.")
        for n, X_n in enumerate(X):
            if X_n.ndim != 2 or X_n.shape[0] != layout.y_dim:
                raise ConfigurationError(
                    f"Trial {n} has shape {X_n.shape}, but y_dims sum to "
                    f"{layout.y_dim}.")
        rng = check_random_state(self.random_state)

        # ====================================================================
        # Cut trials: Extracts trial segments that are all of the same length.
        # ====================================================================
        X_in = cut_trials(X, seg_length=self.seg_length, random_state=rng)

        # =================================================
        # Check if training data's covariance is full rank.
        # =================================================
        X_all = np.hstack(X_in)
        if np.linalg.matrix_rank(np.cov(X_all)) < layout.y_dim:
            errmesg = 'Observation covariance matrix is rank deficient.\n' \
                      'Possible causes: ' \
                      'repeated units, not enough observations.'
            raise ConfigurationError(errmesg)

        if self.verbose:
            print(f'Number of training trials: {len(X_in)}')
            print(f'Across-group latent dimensionality: '
                  f'{layout.x_dim_across}')
            print(f'Within-group latent dimensionalities: '
                  f'{layout.x_dim_within.tolist()}')
            print(f'Observation dimensionalities: {layout.y_dims.tolist()}')

        # ========================================
        # Initialize model parameters
        # ========================================
        self.params_ = initialize(
            X_in, layout, init_method=self.init_method,
            init_params=self.init_params, bin_size=self.bin_size,
            start_tau=self.start_tau, start_eps=self.start_eps,
            start_delay=self.start_delay, cov_type=self.cov_type,
            random_state=rng, verbose=self.verbose)

        # =====================
        # Fit model parameters
        # =====================
        if self.verbose:
            print('\nFitting DLAG model...')

        self._em(X_in)

        # Extract latents for the full, unsegmented trials
        self.train_latent_seqs_, self.ll_train_ = self._infer_latents(X)

        # ===========================================
        # compute the orthonormalization parameters.
        # ===========================================
        self.Corth_ = np.zeros_like(self.params_.C)
        self.OrthTrans_ = np.zeros((layout.x_dim, layout.x_dim))
        for g in range(layout.num_groups):
            rows, lat = layout.obs_slice(g), layout.latent_slice(g)
            if layout.x_dims[g] == 0:
                continue
            _, Corth, TT = orthonormalize(
                np.zeros((layout.x_dims[g], 0)), self.params_.C[rows, lat])
            self.Corth_[rows, lat] = Corth
            self.OrthTrans_[lat, lat] = TT

        return self

    def predict(self, X=None, returned_data=['pZ_mu_orth']):
        """
        Provides the inferred latent variable time-courses and other
        moments thereof, if requested.

        Parameters
        ----------
        X   : array-like, default=None
            An array-like sequence of time-series. The format is the same
            as for :meth:`fit`.

            .. note::
                If ``X=None``, the latent state estimates for the last ``X``
                that :meth:`fit` was called with are returned.

        returned_data : list of str, default ['pZ_mu_orth']
            Determines which moments of the inferred latent variable
            time-courses, and other data are returned. Valid strings are:

                ``'pZ_mu'`` : posterior mean of latent variables before
                orthonormalization

                ``'pZ_mu_orth'`` : posterior mean of latent variables,
                orthonormalized within each group

                ``'pZ_cov'`` : posterior covariance between latent variables

                ``'pZ_covGP'`` : posterior covariance over time (and group
                copies) for each GP

                ``'X'`` : time-series data

        Returns
        -------
        numpy.ndarray or dict
            A single ``numpy.ndarray`` if only a single string is provided
            to ``returned_data``, otherwise a dictionary whose keys match
            the strings provided to ``returned_data``.

        ll : float
            data log likelihood

        Raises
        ------
        ValueError
            If `returned_data` contains strings that aren't present in
            `self.valid_data_names`.
        """
        invalid_keys = set(returned_data).difference(self.valid_data_names)
        if len(invalid_keys) > 0:
            raise ValueError("'returned_data' can only have the following "
                             f"entries: {self.valid_data_names}")
        if X is None:
            seqs, ll = self.train_latent_seqs_, self.ll_train_
        else:
            seqs, ll = self._infer_latents(X)
        if 'pZ_mu_orth' in returned_data:
            Z_all = np.hstack(seqs['pZ_mu'])
            seqs = segment_by_trial(
                seqs, self.OrthTrans_.dot(Z_all), 'pZ_mu_orth')
        if len(returned_data) == 1:
            return seqs[returned_data[0]], ll
        return {i: seqs[i] for i in returned_data}, ll

    def score(self, X=None):
        """
        Returns the data log-likelihood. If ``X = None``, the log-likelihood
        of the full training trials is returned.

        Parameters
        ----------
        X   : an array-like, default=None
            An array-like sequence of time-series. The format is the same as
            for :meth:`fit`.

        Returns
        -------
        log_likelihood : float
        """
        if X is None:
            return self.ll_train_
        _, ll = self._infer_latents(X)
        return ll

    def pairwise_regress(self, X):
        """
        Predicts the activity of group ``r_groups[1]`` from the activity of
        group ``r_groups[0]`` via the across-group latents.

        See :func:`dlag.evaluation.pairwise_regress`.
        """
        return evaluation.pairwise_regress(
            X, self.params_, self.layout_, self.bin_size,
            r_groups=self.r_groups, n_jobs=self.n_jobs)

    def variance_explained(self, total=False):
        """
        Fraction of each group's shared (or, if ``total``, total) variance
        explained by across- and within-group latents.

        See :func:`dlag.evaluation.variance_explained`.
        """
        return evaluation.variance_explained(self.params_, self.layout_,
                                             total=total)

    def group_r2(self, X=None):
        """
        Variance-weighted :math:`R^2` of each group's reconstruction from
        its inferred latents.

        Parameters
        ----------
        X   : an array-like, default=None
            If ``None``, the full training trials are used.

        Returns
        -------
        r2 : numpy.ndarray, shape (num_groups,)
        """
        if X is None:
            seqs = self.train_latent_seqs_
        else:
            seqs, _ = self._infer_latents(X, get_ll=False)
        return evaluation.group_r2(seqs, self.params_, self.layout_)

    def denoise(self, X=None):
        """
        Denoised observations ``C z + d``, from all inferred latents and
        from the top k orthonormalized latents.

        See :func:`dlag.evaluation.denoise`.

        Parameters
        ----------
        X   : an array-like, default=None
            If ``None``, the full training trials are used.
        """
        if X is None:
            seqs = self.train_latent_seqs_
        else:
            seqs, _ = self._infer_latents(X, get_ll=False)
        return evaluation.denoise(seqs, self.params_, self.layout_)

    def population_covariance(self):
        """
        See :func:`dlag.evaluation.population_covariance`.
        """
        return evaluation.population_covariance(self.params_, self.layout_)

    def _em(self, X):
        """
        Fits DLAG model parameter attributes by Expectation Maximization
        (EM). The method also updates ``self.fit_info_`` to store
        additional fitting information.

        Parameters
        ----------
        X   : list of numpy.ndarray
            (Segmented) training trials.

        Returns
        -------
        latent_seqs : numpy.recarray
            Latents inferred on ``X`` at the last E-step.
        """
        layout = self.layout_
        lls = []
        ll_old = ll_base = ll = 0.0
        iter_time = []
        ll_decreases = 0
        param_iters, tau_history, delay_history = [], [], []
        status = 'iteration_limit'
        var_floor = self.min_var_frac * np.diag(np.atleast_2d(
            np.cov(np.hstack(X))))
        Tmin = min(X_n.shape[1] for X_n in X)
        max_delay = self.max_delay_frac * Tmin * self.bin_size

        # Loop once for each iteration of EM algorithm
        for iter_id in trange(1, self.em_max_iters + 1, desc='EM iteration',
                              disable=not self.verbose):
            tic = time.time()
            get_ll = (np.fmod(iter_id, self.freq_ll) == 0) or (iter_id <= 2)

            # ==== E STEP =====
            if not np.isnan(ll):
                ll_old = ll
            try:
                latent_seqs, ll = self._infer_latents(X, get_ll=get_ll)
            except NumericalInstabilityError as err:
                raise NumericalInstabilityError(
                    f'{err} E-step failed at EM iteration {iter_id}.') \
                    from err
            lls.append(ll)

            # ==== M STEP ====
            stats = sufficient_statistics(latent_seqs, n_jobs=self.n_jobs)
            self._update_observation_params(stats, var_floor)
            self._learn_gp_params(latent_seqs, iter_id, max_delay)

            t_end = time.time() - tic
            iter_time.append(t_end)

            if np.fmod(iter_id, self.freq_param) == 0:
                param_iters.append(iter_id)
                tau_history.append(self.params_.tau.copy())
                delay_history.append(self.params_.D.copy())

            # Verify that likelihood is growing monotonically
            if iter_id <= 2:
                ll_base = ll
            elif ll < ll_old - _LL_DECREASE_RTOL * np.abs(ll_old):
                ll_decreases += 1
                warnings.warn('Data likelihood has decreased from '
                              f'{ll_old} to {ll} at EM iteration {iter_id}.',
                              ConvergenceWarning)
            elif (ll - ll_base) < (1 + self.em_tol) * (ll_old - ll_base):
                status = 'converged'
                break

        if self.verbose and status == 'converged':
            print(f'Fitting has converged after {len(lls)} EM iterations.')
        elif status == 'iteration_limit':
            warnings.warn(f'EM did not converge within {self.em_max_iters} '
                          'iterations.', ConvergenceWarning)

        if np.any(self.params_.R == var_floor):
            warnings.warn('Private variance floor used for one or more '
                          'observed dimensions in DLAG.')

        self.fit_info_ = {
            'iteration_time': iter_time,
            'log_likelihoods': lls,
            'iterations': len(lls),
            'status': status,
            'll_decreases': ll_decreases,
            'param_iterations': param_iters,
            'tau_history': tau_history,
            'delay_history': delay_history,
        }

        return latent_seqs

    def _infer_latents(self, X, get_ll=True, observed_groups=None):
        """
        Infers latent trajectories from observed data given the current
        DLAG model parameters.

        See :func:`dlag.inference.infer_latents`.
        """
        X = [np.asarray(X_n, dtype=float) for X_n in X]
        return infer_latents(X, self.params_, self.layout_, self.bin_size,
                             get_ll=get_ll, n_jobs=self.n_jobs,
                             observed_groups=observed_groups)

    def _update_observation_params(self, stats, var_floor):
        """
        Updates C, d and R in closed form, group by group, from the summed
        posterior moments. R is clamped at ``var_floor``.
        """
        layout = self.layout_
        params = self.params_
        T_sum = stats['T']
        for g in range(layout.num_groups):
            rows, lat = layout.obs_slice(g), layout.latent_slice(g)
            x_dim = layout.x_dims[g]
            sum_p_auto = stats['P'][lat, lat]
            sum_XZtrans = stats['XZ'][rows, lat]
            sum_Zall = stats['Z'][lat][:, np.newaxis]
            sum_Xall = stats['X'][rows][:, np.newaxis]

            # term is (x_dim+1) x (x_dim+1)
            term = np.vstack(
                    [np.hstack([sum_p_auto, sum_Zall]),
                     np.hstack([sum_Zall.T, np.array([[T_sum]])])]
                    )
            # y_dim x (x_dim+1)
            cd = linalg.solve(
                term.T, np.hstack([sum_XZtrans, sum_Xall]).T).T

            c = cd[:, :x_dim]
            d = cd[:, -1][:, np.newaxis]

            # R must be based on the new d
            sum_XXtrans = stats['XX'][rows][:, np.newaxis]
            xd = sum_Xall * d
            term = ((sum_XZtrans - d.dot(sum_Zall.T)) * c).sum(axis=1)
            term = term[:, np.newaxis]
            r = d ** 2 + (sum_XXtrans - 2 * xd - term) / T_sum

            # Set minimum private variance
            r = np.maximum(var_floor[rows][:, np.newaxis], r)

            params.C[rows, lat] = c
            params.d[rows] = d[:, 0]
            params.R[rows] = r[:, 0]

    def _learn_gp_params(self, latent_seqs, iter_id, max_delay):
        """
        Updates GP timescales, and delays if ``learn_delays``, given latent
        trajectories. Each GP is optimized independently by L-BFGS-B on
        the expected complete data log-likelihood.

        Raises
        ------
        NumericalInstabilityError
            If an optimized parameter is not finite.
        """
        layout = self.layout_
        params = self.params_
        precomp = gp_sufficient_statistics(latent_seqs, layout)
        tsdt = np.arange(0, precomp['Tmax']) * self.bin_size

        jobs = []
        for u, kind, _, _, tau, eps, delays in params.unit_params(layout):
            learn_delays = kind == 'across' and self.learn_delays \
                and layout.num_groups > 1
            init_theta = np.log([tau])
            bounds = [(None, None)]
            if learn_delays:
                init_theta = np.hstack([init_theta, delays[1:]])
                bounds += [(-max_delay, max_delay)] * (len(delays) - 1)
            jobs.append(delayed(optimize.minimize)(
                self._grad_bet_theta,
                init_theta,
                args=(u, eps, delays, learn_delays, precomp, tsdt),
                method='L-BFGS-B',
                jac=True,
                bounds=bounds
                ))
        results = Parallel(n_jobs=self.n_jobs, prefer='threads')(jobs)

        for (u, kind, *_), res_opt in zip(params.unit_params(layout),
                                          results):
            if not np.all(np.isfinite(res_opt.x)):
                raise NumericalInstabilityError(
                    f'GP parameter update of {kind}-group GP {u} is not '
                    f'finite at EM iteration {iter_id}.')
            params.tau[u] = np.exp(res_opt.x[0])
            if len(res_opt.x) > 1:
                params.D[1:, u] = res_opt.x[1:]
            if self.verbose:
                print(f'\n Converged theta; GP:{u}, theta:{res_opt.x}')

    def _grad_bet_theta(self, theta, u, eps, delays, learn_delays, precomp,
                        tsdt):
        """
        Objective and gradient for the GP parameter optimization of GP
        ``u``. This function is called by `_learn_gp_params()`

        Parameters
        ----------
        theta : numpy.array
            ``log(tau)``, followed by the delays of groups 1, 2, ... if
            ``learn_delays``
        u : int
            Index of the GP
        eps : float
            GP noise variance
        delays : numpy.ndarray
            Current delays of the GP's group copies
        learn_delays : bool
            Whether ``theta`` contains delays
        precomp : dict
            structure containing precomputations
        tsdt : numpy.ndarray
            sample times of the longest trial

        Returns
        -------
        f : float
            negative expected complete data log-likelihood -E[log P({x})]
            at {\\theta}
        df_arr : numpy.array
            gradients at {\\theta}
        """
        delays = np.array(delays, dtype=float)
        if learn_delays:
            delays[1:] = theta[1:]
        n_groups = len(delays)
        Kmax, K_gradient = delayed_kernel_grads(
            tsdt, np.exp(theta[0]), eps, delays, grad_delays=learn_delays)

        dEdtheta = np.zeros(len(theta))
        f = 0.0
        try:
            for j in range(len(precomp['Tu'])):
                T = precomp['Tu'][j]['T']
                n = n_groups * T
                if j == 0:
                    Kinv = linalg.inv(Kmax[:n, :n])
                    logdet_K = logdet(Kmax[:n, :n])
                else:
                    # Here, we compute the inverse of K for the current
                    # T from its known inverse for the previous T,
                    # using block matrix inversion identities.
                    Kinv, logdet_K = sym_block_inversion(
                        Kmax[:n, :n], Kinv, -logdet_K
                    )
                numTrials = precomp['Tu'][j]['numTrials']
                PautoSUM = precomp['Tu'][j]['PautoSUM'][u]
                KinvPKinv = Kinv.dot(PautoSUM).dot(Kinv)

                for k, dKdtheta in enumerate(K_gradient):
                    dK = dKdtheta[:n, :n]
                    dEdtheta[k] = dEdtheta[k] \
                        - 0.5 * numTrials * (Kinv * dK).sum() \
                        + 0.5 * (KinvPKinv * dK).sum()

                f = f - 0.5 * numTrials * logdet_K \
                    - 0.5 * (PautoSUM * Kinv).sum()
        except np.linalg.LinAlgError as err:
            raise NumericalInstabilityError(
                f'GP covariance of GP {u} is not positive definite.') from err
        f = -f
        df_arr = -dEdtheta
        return f, df_arr
