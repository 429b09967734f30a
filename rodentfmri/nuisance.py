"""
rodentfmri.nuisance
===================

Nuisance covariate design and ordinary least squares regression.

The design matrix always starts with a constant column.  White matter
and CSF mean signals are appended when both are available, followed by
the head-motion expansion selected by :class:`~rodentfmri.motion.MotionModel`.

Regression uses :func:`numpy.linalg.lstsq`, i.e. an SVD based
pseudo-inverse.  Singular values below ``rcond`` times the largest one
are treated as zero, so a rank-deficient design (for instance a lagged
motion block that duplicates the current block) yields the minimum-norm
solution instead of failing.  The default tolerance is
``max(T, p) * eps``.  A reduced rank is reported through the logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from .exceptions import DimensionMismatchError, ValidationError
from .motion import MotionModel, expand_motion


logger = logging.getLogger(__name__)


@dataclass
class RegressionResult:
    """Output of :func:`regress_covariates`.

    Attributes
    ----------
    residual : np.ndarray
        Cleaned signal, same shape as the input signal.
    betas : np.ndarray
        Fitted coefficients, shape (p, V).
    rank : int
        Effective rank of the design at the chosen tolerance.
    """

    residual: np.ndarray
    betas: np.ndarray
    rank: int


def _as_column(signal: np.ndarray, name: str, n_timepoints: int) -> np.ndarray:
    col = np.asarray(signal, dtype=float).reshape(-1, 1)
    if col.shape[0] != n_timepoints:
        raise DimensionMismatchError(
            f"{name} signal has {col.shape[0]} rows, expected {n_timepoints}"
        )
    return col


def build_covariates(
    n_timepoints: int,
    wm_signal: Optional[np.ndarray] = None,
    csf_signal: Optional[np.ndarray] = None,
    motion: Optional[np.ndarray] = None,
    motion_model: Union[MotionModel, int, str] = MotionModel.FRISTON24,
) -> np.ndarray:
    """Assemble the nuisance design matrix.

    Parameters
    ----------
    n_timepoints : int
        Number of rows (volumes).
    wm_signal, csf_signal : np.ndarray, optional
        Mean white matter and CSF time courses.  Only used when both are
        given.
    motion : np.ndarray, optional
        Raw (T, 6) realignment parameters.
    motion_model : MotionModel
        Expansion applied to ``motion``.

    Returns
    -------
    np.ndarray
        Design of shape (T, p) with the constant in column 0.

    Raises
    ------
    DimensionMismatchError
        If any covariate has the wrong number of rows.
    ValidationError
        If the design contains NaN.
    """
    columns = [np.ones((n_timepoints, 1))]
    if wm_signal is not None and csf_signal is not None:
        columns.append(_as_column(wm_signal, 'WM', n_timepoints))
        columns.append(_as_column(csf_signal, 'CSF', n_timepoints))
    elif wm_signal is not None or csf_signal is not None:
        logger.warning('Only one of the WM/CSF signals was provided; tissue signals are not regressed')
    if motion is not None:
        expanded = expand_motion(motion, motion_model)
        if expanded.shape[0] != n_timepoints:
            raise DimensionMismatchError(
                f"Motion parameters have {expanded.shape[0]} rows, expected {n_timepoints}"
            )
        columns.append(expanded)
    design = np.hstack(columns)
    if np.isnan(design).any():
        raise ValidationError("Nuisance covariates contain NaN values")
    return design


def regress_covariates(
    signal: np.ndarray,
    covariates: np.ndarray,
    add_mean_back: bool = True,
    rcond: Optional[float] = None,
) -> RegressionResult:
    """Regress ``covariates`` out of every column of ``signal``.

    Parameters
    ----------
    signal : np.ndarray
        Array of shape (T, V).
    covariates : np.ndarray
        Design of shape (T, p) whose first column is the constant.
    add_mean_back : bool
        If ``True`` the constant column's contribution is kept, so each
        column retains its mean.  Otherwise the full fit is removed.
    rcond : float, optional
        Relative singular value cutoff.  Defaults to ``max(T, p) * eps``.

    Returns
    -------
    RegressionResult
    """
    y = np.asarray(signal, dtype=float)
    squeeze = y.ndim == 1
    if squeeze:
        y = y[:, np.newaxis]
    X = np.asarray(covariates, dtype=float)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    if X.shape[0] != y.shape[0]:
        raise DimensionMismatchError(
            f"Covariates have {X.shape[0]} rows but signal has {y.shape[0]}"
        )
    if np.isnan(X).any():
        raise ValidationError("Nuisance covariates contain NaN values")
    n, p = X.shape
    if rcond is None:
        rcond = max(n, p) * np.finfo(float).eps
    betas, _, rank, _ = np.linalg.lstsq(X, y, rcond=rcond)
    if rank < p:
        logger.warning('Nuisance design is rank deficient (rank %d of %d columns)', rank, p)
    if add_mean_back:
        fitted = X[:, 1:] @ betas[1:]
    else:
        fitted = X @ betas
    residual = y - fitted
    if squeeze:
        residual = residual[:, 0]
    return RegressionResult(residual=residual, betas=betas, rank=int(rank))


__all__ = [
    'RegressionResult',
    'build_covariates',
    'regress_covariates',
]
