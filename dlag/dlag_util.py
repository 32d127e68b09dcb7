"""
DLAG util functions.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:copyright: Copyright 2014-2020 by the Elephant team.
:license: Modified BSD, see LICENSE.txt for details.
"""

import warnings

import numpy as np
import scipy.linalg as linalg
from sklearn.utils import check_random_state

from .exceptions import ConfigurationError, DegenerateInputWarning
from .kernels import make_k_big

__all__ = [
    "cut_trials",
    "logdet",
    "sym_block_inversion",
    "orthonormalize",
    "segment_by_trial",
    "simulate_trials"
]


def cut_trials(X_in, seg_length=20, random_state=None):
    """
    Extracts trial segments that are all of the same length.  Uses
    overlapping segments if trial length is not integer multiple
    of segment length.  Ignores trials with length shorter than
    one segment length.

    Parameters
    ----------
    X_in : a list of observation sequences, one per trial.
        Each element in X is a matrix of size #y_dim x #bins,
        containing an observation sequence. The input dimensionality
        #y_dim needs to be the same across elements in X, but #bins
        can be different for each observation sequence.

    seg_length : int
        length of segments to extract, in number of timesteps. If infinite,
        entire trials are extracted, i.e., no segmenting.
        Default: 20

    random_state : int, RandomState instance or None, optional
        Source of the random overlap sizes between segments.

    Returns
    -------
    X_out : list
        list of np.ndarrays whose n-th element (corresponding to the n-th
        segment) has shape of (#y_dim x #seg_length). If no trial is at
        least ``seg_length`` long, the unsegmented trials are returned
        instead and a :class:`DegenerateInputWarning` is issued.

    Raises
    ------
    ConfigurationError
        If `seg_length` is not positive.

    """
    if not seg_length > 0:
        raise ConfigurationError("'seg_length' must be positive.")
    if np.isinf(seg_length):
        return list(X_in)
    seg_length = int(seg_length)
    rng = check_random_state(random_state)

    X_out = []
    for n, X_in_n in enumerate(X_in):
        T = X_in_n.shape[1]

        # Skip trials that are shorter than segLength
        if T < seg_length:
            warnings.warn(f'trial corresponding to index {n} is shorter '
                          'than one segLength... skipping')
            continue

        numSeg = int(np.ceil(float(T) / seg_length))

        # Randomize the sizes of overlaps
        if numSeg == 1:
            cumOL = np.array([0, ])
        else:
            totalOL = (seg_length * numSeg) - T
            probs = np.ones(numSeg - 1, float) / (numSeg - 1)
            randOL = rng.multinomial(totalOL, probs)
            cumOL = np.hstack([0, np.cumsum(randOL)])

        for n_seg in range(numSeg):
            tStart = seg_length * n_seg - cumOL[n_seg]
            X_out.append(X_in_n[:, tStart:tStart + seg_length])

    if len(X_out) == 0:
        warnings.warn('No segments extracted for training. Defaulting '
                      'to segLength=Inf.', DegenerateInputWarning)
        return list(X_in)

    return X_out


def logdet(A):
    """
    log(det(A)) where A is positive-definite.
    This is faster and more stable than using log(det(A)).

    Raises
    ------
    numpy.linalg.LinAlgError
        If `A` is not positive definite.
    """
    U = np.linalg.cholesky(A)
    return 2 * (np.log(np.diag(U))).sum()


def sym_block_inversion(M, Ainv, logdet_Ainv):
    """
    Inverts the symmetric matrix M,
                  [ A   B ]^-1   [ MAinv   MBinv ]
    Minv = M^-1 = [       ]    = [               ]
                  [ B^T D ]      [ MBinv^T MDinv ]
    exploiting the existing knowledge of Ainv = A^-1 and its
    log-determinant logdet_Ainv = log(|A^-1|) to speed up the computation,
    see `Block matrix inversion
    <https://en.wikipedia.org/wiki/Block_matrix>`_.

    Parameters
    ----------
    M : numpy.ndarray
        The symmetric matrix to be inverted.
    Ainv : numpy.ndarray
        The (symmetric) inverse of the top-left block of M.
    logdet_Ainv : float
        The log-determinant of A^-1 already known.

    Returns
    -------
    Minv : numpy.ndarray
        Inverse of M
    logdet_M : float
        Log-determinant of M

    Raises
    ------
    numpy.linalg.LinAlgError
        If the Schur complement of A in M is not positive definite.
    """
    t = len(Ainv)
    B = M[:t, t:]
    D = M[t:, t:]
    AinvB = Ainv @ B
    MD = D - AinvB.T @ B
    MDinv = linalg.inv(MD)
    MCinv = - MDinv @ AinvB.T
    MAinv = Ainv + AinvB @ - MCinv

    Minv = np.block([
        [MAinv, MCinv.T],
        [MCinv, MDinv]
    ])
    logdet_M = -logdet_Ainv + logdet(MD)
    return Minv, logdet_M


def orthonormalize(Z, l_mat):
    """
    Orthonormalize the columns of the loading matrix and apply the
    corresponding linear transform to the latent variables.

    Parameters
    ----------
    Z :  (x_dim, T) numpy.ndarray
        Latent variables
    l_mat :  (y_dim, x_dim) numpy.ndarray
        Loading matrix

    Returns
    -------
    Z_orth : (x_dim, T) numpy.ndarray
        Orthonormalized latent variables
    Lorth : (y_dim, x_dim) numpy.ndarray
        Orthonormalized loading matrix
    TT :  (x_dim, x_dim) numpy.ndarray
       Linear transform applied to latent variables
    """
    x_dim = l_mat.shape[1]
    if x_dim == 1:
        TT = np.sqrt(np.dot(l_mat.T, l_mat))
        Lorth = np.linalg.solve(TT.T, l_mat.T).T
        Z_orth = np.dot(TT, Z)
    else:
        UU, DD, VV = linalg.svd(l_mat, full_matrices=False)
        # TT is transform matrix
        TT = np.dot(np.diag(DD), VV)

        Lorth = UU
        Z_orth = np.dot(TT, Z)
    return Z_orth, Lorth, TT


def segment_by_trial(seqs, Z, fn):
    """
    Segment and store data by trial.

    Parameters
    ----------
    seqs : numpy.recarray
        Data structure that has field X, the observations
    Z : numpy.ndarray
        Data to be segmented (any dimensionality x total number of timesteps)
    fn : str
        New field name of seq where segments of Z are stored

    Returns
    -------
    seqs_new : numpy.recarray
        Data structure with new field `fn`

    Raises
    ------
    ValueError
        If "`All timesteps` != Z.shape[1]".

    """
    T_all = [X_n.shape[1] for X_n in seqs['X']]
    if np.sum(T_all) != Z.shape[1]:
        raise ValueError('size of Z incorrect.')

    dtype_new = [(i, seqs[i].dtype) for i in seqs.dtype.names
                 if i != fn]
    dtype_new.append((fn, object))
    seqs_new = np.empty(len(seqs), dtype=dtype_new)
    for dtype_name in seqs.dtype.names:
        if dtype_name != fn:
            seqs_new[dtype_name] = seqs[dtype_name]

    ctr = 0
    for n, T_n in enumerate(T_all):
        seqs_new[n][fn] = Z[:, ctr:ctr + T_n]
        ctr += T_n

    return seqs_new


def simulate_trials(params, layout, n_trials, n_timesteps, bin_size,
                    random_state=None):
    """
    Draws synthetic trials from a DLAG model.

    Parameters
    ----------
    params : DLAGParams
        Ground truth parameters.
    layout : GroupLayout
    n_trials : int
    n_timesteps : int or sequence of int
        Number of timesteps, either shared or one per trial.
    bin_size : float
    random_state : int, RandomState instance or None, optional

    Returns
    -------
    X : list of numpy.ndarray, each of shape (y_dim, T)
        Observations.
    Z : list of numpy.ndarray, each of shape (x_dim, T)
        Latent trajectories that generated ``X``.
    """
    rng = check_random_state(random_state)
    params.validate(layout)
    Ts = np.broadcast_to(n_timesteps, (n_trials,))
    chol = {}
    X, Z = [], []
    for T in Ts:
        if T not in chol:
            chol[T] = np.linalg.cholesky(
                make_k_big(params, layout, T, bin_size))
        z = chol[T] @ rng.standard_normal(layout.x_dim * T)
        z = z.reshape((layout.x_dim, T), order='F')
        noise = np.sqrt(params.R)[:, np.newaxis] * rng.standard_normal(
            (layout.y_dim, T))
        X.append(params.C @ z + params.d[:, np.newaxis] + noise)
        Z.append(z)
    return X, Z
