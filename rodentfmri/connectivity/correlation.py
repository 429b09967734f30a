"""
rodentfmri.connectivity.correlation
===================================

Pearson correlation between time series and the Fisher r-to-z
transform.

Columns with zero standard deviation have their standard deviation
replaced by infinity before dividing, so a constant voxel (or ROI)
correlates 0 with everything instead of producing NaN.  The Fisher
transform saturates to +/-inf at |r| = 1 without raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from ..exceptions import DimensionMismatchError, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class ConnectivityMatrix:
    """Encapsulate an ROI x ROI functional connectivity matrix.

    Parameters
    ----------
    matrix : np.ndarray
        (N, N) Pearson correlation matrix, symmetric.
    zmatrix : np.ndarray
        Fisher z-transformed ``matrix`` with a zero diagonal.
    labels : Sequence[str]
        ROI labels for the rows/columns.
    method : str, optional
        Name of the method used (``'pearson'``).
    """

    matrix: np.ndarray
    zmatrix: np.ndarray
    labels: Sequence[str] = field(default_factory=list)
    method: str = 'pearson'


def fisher_z(r: np.ndarray) -> np.ndarray:
    """Fisher r-to-z transform ``0.5 * log((1 + r) / (1 - r))``.

    Values are clipped to [-1, 1] first so that rounding just above 1
    maps to +inf rather than NaN.
    """
    r = np.clip(np.asarray(r, dtype=float), -1.0, 1.0)
    with np.errstate(divide='ignore', invalid='ignore'):
        return 0.5 * np.log((1.0 + r) / (1.0 - r))


def _safe_std(matrix: np.ndarray) -> np.ndarray:
    std = np.std(matrix, axis=0, ddof=1)
    flat = std == 0
    if flat.any():
        logger.debug('%d zero-variance columns set to correlate 0', int(flat.sum()))
        std[flat] = np.inf
    return std


def pearson_columns(seeds: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """Correlate every column of ``seeds`` with every column of ``targets``.

    Parameters
    ----------
    seeds : np.ndarray
        (T,) or (T, S) seed time series.
    targets : np.ndarray
        (T, V) voxel or ROI time series.

    Returns
    -------
    np.ndarray
        (S, V) correlation coefficients.
    """
    seeds = np.asarray(seeds, dtype=float)
    targets = np.asarray(targets, dtype=float)
    if seeds.ndim == 1:
        seeds = seeds[:, np.newaxis]
    if targets.ndim == 1:
        targets = targets[:, np.newaxis]
    if seeds.shape[0] != targets.shape[0]:
        raise DimensionMismatchError(
            f"Seed series have {seeds.shape[0]} time points, targets have {targets.shape[0]}"
        )
    n_time = seeds.shape[0]
    if n_time < 2:
        raise ValidationError("Correlation needs at least two time points")
    seeds = seeds - seeds.mean(axis=0, keepdims=True)
    targets = targets - targets.mean(axis=0, keepdims=True)
    target_std = _safe_std(targets)
    seed_std = _safe_std(seeds)
    fc = seeds.T @ targets / (n_time - 1)
    return fc / target_std[np.newaxis, :] / seed_std[:, np.newaxis]


def compute_roi_connectivity(
    roi_timeseries: np.ndarray,
    labels: Optional[Sequence[str]] = None,
) -> ConnectivityMatrix:
    """Compute ROI x ROI correlation and its Fisher z transform.

    Parameters
    ----------
    roi_timeseries : np.ndarray
        Array of shape (T, N_ROI).
    labels : Sequence[str], optional
        ROI names; defaults to ``ROI1..ROIN``.

    Returns
    -------
    ConnectivityMatrix
        ``zmatrix`` has an exactly zero diagonal.
    """
    roi_timeseries = np.asarray(roi_timeseries, dtype=float)
    if roi_timeseries.ndim != 2:
        raise ValidationError("roi_timeseries must be a 2D array of shape (T, N_ROI)")
    n_roi = roi_timeseries.shape[1]
    if labels is None:
        labels = [f'ROI{i + 1}' for i in range(n_roi)]
    if len(labels) != n_roi:
        raise DimensionMismatchError("Number of labels must match number of columns in roi_timeseries")
    corr = pearson_columns(roi_timeseries, roi_timeseries)
    corr = (corr + corr.T) / 2.0
    zcorr = fisher_z(corr)
    np.fill_diagonal(zcorr, 0.0)
    return ConnectivityMatrix(matrix=corr, zmatrix=zcorr, labels=list(labels), method='pearson')


__all__ = [
    'ConnectivityMatrix',
    'fisher_z',
    'pearson_columns',
    'compute_roi_connectivity',
]
