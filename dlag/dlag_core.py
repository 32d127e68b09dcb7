"""
DLAG engine: fits a single DLAG model and evaluates it on held-out trials.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

import numpy as np

from .dlag import DLAG

__all__ = [
    "dlag_engine"
]

_START_OPTIONS = ('start_tau', 'start_eps', 'start_delay')


def dlag_engine(X_train, X_test=None, save_data=False, **options):
    """
    Fits a DLAG model to training trials and, if test trials are given,
    evaluates its predictive performance. Independent calls share no state,
    so that e.g. cross-validation folds or dimensionalities can be mapped
    over a process pool.

    Parameters
    ----------
    X_train : sequence of numpy.ndarray
        Training trials, each of shape (y_dim, T).
    X_test : sequence of numpy.ndarray, optional
        Held-out trials.
    save_data : bool, optional, default=False
        If True, the training and test trials are included in the result.
    **options
        Keyword arguments of :class:`dlag.DLAG`.

    Returns
    -------
    result : dict
        est_params : DLAGParams
            estimated parameters
        fit_info : dict
            see :attr:`dlag.DLAG.fit_info_`
        train_latent_seqs : numpy.recarray
            posterior latents of the full training trials. Holds the
            observations (field ``X``) only if ``save_data``
        ll_train : float
            training data log likelihood
        options : dict
            options the model was fitted with. ``start_*`` options are left
            out for ``init_method='params'``
        MSE, MSEorth, R2, R2orth, ll_test
            pairwise regression metrics and test data log likelihood, only
            if ``X_test`` is given
        X_train, X_test
            only if ``save_data``

    Raises
    ------
    TypeError
        If ``options`` contains an unknown option.
    """
    model = DLAG(**options)
    model.fit(X_train)

    recorded = model.get_params()
    if recorded['init_method'] == 'params':
        for name in _START_OPTIONS:
            recorded.pop(name)

    latent_seqs = model.train_latent_seqs_
    if not save_data:
        names = [name for name in latent_seqs.dtype.names if name != 'X']
        latent_seqs = np.empty(len(model.train_latent_seqs_), dtype=[
            (name, model.train_latent_seqs_.dtype[name]) for name in names])
        for name in names:
            latent_seqs[name] = model.train_latent_seqs_[name]

    result = {
        'est_params': model.params_,
        'fit_info': model.fit_info_,
        'train_latent_seqs': latent_seqs,
        'll_train': model.ll_train_,
        'options': recorded,
    }

    if X_test is not None:
        metrics = model.pairwise_regress(X_test)
        for key in ('MSE', 'MSEorth', 'R2', 'R2orth'):
            result[key] = metrics[key]
        result['ll_test'] = model.score(X_test)

    if save_data:
        result['X_train'] = X_train
        result['X_test'] = X_test

    return result
