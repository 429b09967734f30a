"""
rodentfmri.filtering
====================

Temporal detrending and ideal band-pass filtering of time x signal
matrices.

Both operations work column by column, so a large (T, V) voxel matrix
is processed in ``n_chunks`` column segments to bound peak memory.  The
segmentation follows the classic ``CUTNUMBER`` rule: every segment has
``ceil(V / n_chunks)`` columns and the last one takes the remainder.

The band-pass filter is an ideal (brick wall) filter applied in the
frequency domain after zero padding to the next power of two.  It is
zero phase by construction.  The same frequency bin selection is reused
by the amplitude of low-frequency fluctuation metrics in
:mod:`rodentfmri.metrics.alff`.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np
from scipy.signal import detrend as _scipy_detrend

from .exceptions import ValidationError


logger = logging.getLogger(__name__)

DEFAULT_CHUNKS = 10


def iter_column_chunks(n_columns: int, n_chunks: int = DEFAULT_CHUNKS) -> Iterator[slice]:
    """Yield column slices covering ``range(n_columns)`` in ``n_chunks`` pieces."""
    if n_chunks < 1:
        raise ValidationError("n_chunks must be a positive integer")
    segment = int(np.ceil(n_columns / n_chunks))
    if segment == 0:
        return
    for i in range(n_chunks):
        start = i * segment
        if start >= n_columns:
            break
        stop = n_columns if i == n_chunks - 1 else min((i + 1) * segment, n_columns)
        yield slice(start, stop)


def next_power_of_two(n: int) -> int:
    """Smallest power of two that is >= ``n``."""
    if n <= 1:
        return 1
    return int(2 ** int(np.ceil(np.log2(n))))


def validate_band(band: Sequence[float], tr: float) -> Tuple[float, float]:
    """Check a (low, high) band in Hz against the sampling interval.

    A ``high`` of 0 means "no low-pass", i.e. everything up to Nyquist.
    """
    if tr is None or tr <= 0:
        raise ValidationError("TR must be a positive number of seconds")
    if len(band) != 2:
        raise ValidationError("band must be a (low, high) pair in Hz")
    low, high = float(band[0]), float(band[1])
    if low < 0 or high < 0:
        raise ValidationError("band frequencies must be non-negative")
    if high != 0 and low > high:
        raise ValidationError("low cutoff must not exceed high cutoff")
    return low, high


def frequency_band_indices(n_padded: int, tr: float, band: Sequence[float]) -> Tuple[int, int]:
    """Return the 0-based half-open range of FFT bins inside ``band``.

    Bin ``k`` of an ``n_padded`` point transform sampled every ``tr``
    seconds corresponds to ``k / (n_padded * tr)`` Hz.  The low edge is
    rounded up and the high edge truncated, so both edge frequencies are
    included only if they fall exactly on a bin.  Cutoffs at or above
    Nyquist (and a high cutoff of 0) select up to the Nyquist bin.
    """
    low, high = validate_band(band, tr)
    nyquist = 0.5 / tr
    half = n_padded // 2
    if low >= nyquist:
        lo = half + 1
    else:
        lo = int(np.ceil(low * n_padded * tr + 1))
    if high >= nyquist or high == 0:
        hi = half + 1
    else:
        hi = int(np.fix(high * n_padded * tr + 1))
    return lo - 1, hi


def ideal_frequency_mask(n_padded: int, tr: float, band: Sequence[float]) -> np.ndarray:
    """Boolean mask over the full FFT spectrum, mirrored for negative frequencies."""
    start, stop = frequency_band_indices(n_padded, tr, band)
    mask = np.zeros(n_padded, dtype=bool)
    if stop <= start:
        return mask
    mask[start:stop] = True
    # bins k and n_padded - k carry the same frequency
    positive = np.arange(start, stop)
    mirrored = (n_padded - positive) % n_padded
    mask[mirrored] = True
    return mask


def detrend(matrix: np.ndarray, n_chunks: int = DEFAULT_CHUNKS) -> np.ndarray:
    """Remove the least-squares linear trend (and mean) from every column.

    Parameters
    ----------
    matrix : np.ndarray
        Array of shape (T, V).
    n_chunks : int
        Number of column segments processed at a time.

    Returns
    -------
    np.ndarray
        Detrended copy of ``matrix``.
    """
    out = np.array(matrix, dtype=float)
    if out.ndim == 1:
        out = out[:, np.newaxis]
    logger.info('Detrending %d columns', out.shape[1])
    for segment in iter_column_chunks(out.shape[1], n_chunks):
        out[:, segment] = _scipy_detrend(out[:, segment], axis=0, type='linear')
        logger.debug('Detrended columns %d:%d', segment.start, segment.stop)
    return out


def _ideal_filter_block(block: np.ndarray, freq_mask: np.ndarray) -> np.ndarray:
    n_time = block.shape[0]
    n_padded = freq_mask.shape[0]
    padded = np.zeros((n_padded, block.shape[1]), dtype=float)
    padded[:n_time] = block - block.mean(axis=0, keepdims=True)
    spectrum = np.fft.fft(padded, axis=0)
    spectrum[~freq_mask, :] = 0
    return np.real(np.fft.ifft(spectrum, axis=0))[:n_time]


def ideal_filter(
    matrix: np.ndarray,
    tr: float,
    band: Optional[Sequence[float]],
    n_chunks: int = DEFAULT_CHUNKS,
) -> np.ndarray:
    """Apply a zero-phase ideal band-pass filter to each column.

    Parameters
    ----------
    matrix : np.ndarray
        Array of shape (T, V).
    tr : float
        Sampling interval in seconds.
    band : (low, high) or None
        Pass band in Hz.  ``None`` or an empty sequence returns an
        unfiltered copy.
    n_chunks : int
        Number of column segments processed at a time.

    Returns
    -------
    np.ndarray
        Filtered copy with column means removed.
    """
    out = np.array(matrix, dtype=float)
    if band is None or len(band) == 0:
        return out
    if out.ndim == 1:
        out = out[:, np.newaxis]
    n_padded = next_power_of_two(out.shape[0])
    freq_mask = ideal_frequency_mask(n_padded, tr, band)
    logger.info('Filtering %d columns, band %s Hz, TR %.3f s', out.shape[1], tuple(band), tr)
    for segment in iter_column_chunks(out.shape[1], n_chunks):
        out[:, segment] = _ideal_filter_block(out[:, segment], freq_mask)
        logger.debug('Filtered columns %d:%d', segment.start, segment.stop)
    return out


__all__ = [
    'DEFAULT_CHUNKS',
    'iter_column_chunks',
    'next_power_of_two',
    'validate_band',
    'frequency_band_indices',
    'ideal_frequency_mask',
    'detrend',
    'ideal_filter',
]
