"""
rodentfmri.scrubbing
====================

Temporal masking ("scrubbing") of motion corrupted volumes.

A temporal mask has one entry per volume; non-zero / ``True`` keeps the
volume.  Flagged volumes are either dropped (``cut``) or replaced by
interpolating each column from the retained volumes (``nearest``,
``linear``, ``spline``, ``pchip``).  Interpolation is evaluated at every
original volume index, so interpolating methods preserve the number of
time points.

``nearest`` and ``linear`` hold the first / last retained value beyond
the retained range; ``spline`` (not-a-knot cubic) and ``pchip``
extrapolate with their end polynomials.
"""

from __future__ import annotations

import enum
import logging
from typing import Union

import numpy as np
from scipy.interpolate import CubicSpline, PchipInterpolator, interp1d

from .exceptions import DimensionMismatchError, ScrubbingError


logger = logging.getLogger(__name__)


class ScrubbingMethod(str, enum.Enum):
    CUT = 'cut'
    NEAREST = 'nearest'
    LINEAR = 'linear'
    SPLINE = 'spline'
    PCHIP = 'pchip'

    @classmethod
    def parse(cls, value: Union['ScrubbingMethod', str]) -> 'ScrubbingMethod':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ScrubbingError(f"Unsupported scrubbing method '{value}'") from exc


class ScrubbingTiming(str, enum.Enum):
    """When scrubbing happens relative to detrending and filtering."""

    BEFORE_FILTERING = 'before_filtering'
    AFTER_FILTERING = 'after_filtering'

    @classmethod
    def parse(cls, value: Union['ScrubbingTiming', str]) -> 'ScrubbingTiming':
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            'beforefiltering': cls.BEFORE_FILTERING,
            'before_filtering': cls.BEFORE_FILTERING,
            'before': cls.BEFORE_FILTERING,
            'afterfiltering': cls.AFTER_FILTERING,
            'after_filtering': cls.AFTER_FILTERING,
            'after': cls.AFTER_FILTERING,
        }
        if key not in aliases:
            raise ScrubbingError(f"Unsupported scrubbing timing '{value}'")
        return aliases[key]


def scrub(
    matrix: np.ndarray,
    temporal_mask: np.ndarray,
    method: Union[ScrubbingMethod, str] = ScrubbingMethod.CUT,
) -> np.ndarray:
    """Remove or interpolate the volumes flagged in ``temporal_mask``.

    Parameters
    ----------
    matrix : np.ndarray
        Array of shape (T,) or (T, V).
    temporal_mask : array_like
        Length-T mask; truthy entries are kept.
    method : ScrubbingMethod or str
        ``'cut'`` drops flagged volumes; the other methods interpolate.

    Returns
    -------
    np.ndarray
        ``(T - k, V)`` for ``cut`` with ``k`` flagged volumes, ``(T, V)``
        otherwise.  An all-true mask returns an unchanged copy.

    Notes
    -----
    Flagged volumes before the first or after the last retained volume
    are filled with that edge value by ``nearest`` and ``linear``
    rather than NaN, so the regression that follows always sees finite
    rows.  ``spline`` and ``pchip`` extrapolate.
    """
    method = ScrubbingMethod.parse(method)
    data = np.array(matrix, dtype=float)
    mask = np.asarray(temporal_mask).ravel().astype(bool)
    if mask.shape[0] != data.shape[0]:
        raise DimensionMismatchError(
            f"Temporal mask has {mask.shape[0]} entries but data has {data.shape[0]} time points"
        )
    if mask.all():
        return data
    kept = np.flatnonzero(mask)
    retained = data[kept]
    logger.info('Scrubbing %d of %d volumes (%s)', data.shape[0] - kept.size, data.shape[0], method.value)
    if method is ScrubbingMethod.CUT:
        return retained
    if kept.size < 2:
        raise ScrubbingError("Interpolation needs at least two retained volumes")
    xi = np.arange(data.shape[0])
    if method in (ScrubbingMethod.NEAREST, ScrubbingMethod.LINEAR):
        fn = interp1d(
            kept,
            retained,
            kind=method.value,
            axis=0,
            bounds_error=False,
            fill_value=(retained[0], retained[-1]),
            assume_sorted=True,
        )
    elif method is ScrubbingMethod.SPLINE:
        fn = CubicSpline(kept, retained, axis=0, bc_type='not-a-knot', extrapolate=True)
    else:
        fn = PchipInterpolator(kept, retained, axis=0, extrapolate=True)
    return np.asarray(fn(xi), dtype=float)


__all__ = [
    'ScrubbingMethod',
    'ScrubbingTiming',
    'scrub',
]
