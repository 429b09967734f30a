"""
rodentfmri.metrics.alff
=======================

Amplitude of low-frequency fluctuation (ALFF) and its fractional
variant (fALFF).

Every in-mask voxel series is demeaned and zero padded to the next
power of two ``P``.  The amplitude spectrum ``2 * |FFT| / T`` is then
averaged over the band bins (ALFF) or summed over the band and divided
by the sum over all positive-frequency bins up to Nyquist (fALFF).  The
band bins follow the same rule as the ideal band-pass filter.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import ValidationError
from ..filtering import DEFAULT_CHUNKS, frequency_band_indices, iter_column_chunks, next_power_of_two
from ..io import PathLike, Volume, load_mask, load_volume, save_volume
from ..timeseries import masked_matrix, unmask
from .maps import standardize


logger = logging.getLogger(__name__)

DEFAULT_BAND = (0.01, 0.08)


@dataclass
class AmplitudeMaps:
    """ALFF and fALFF maps with their mean-divided and z-scored versions."""

    alff: np.ndarray
    falff: np.ndarray
    malff: np.ndarray
    zalff: np.ndarray
    mfalff: np.ndarray
    zfalff: np.ndarray
    affine: np.ndarray
    header: Optional[object] = None

    def as_dict(self) -> Dict[str, np.ndarray]:
        return {
            'ALFF': self.alff,
            'mALFF': self.malff,
            'zALFF': self.zalff,
            'fALFF': self.falff,
            'mfALFF': self.mfalff,
            'zfALFF': self.zfalff,
        }


def amplitude_spectrum(matrix: np.ndarray, n_padded: int) -> np.ndarray:
    """One-sided amplitude ``2 * |FFT| / T`` of each demeaned column, bins 0..P/2."""
    n_time = matrix.shape[0]
    padded = np.zeros((n_padded, matrix.shape[1]))
    padded[:n_time] = matrix - matrix.mean(axis=0, keepdims=True)
    spectrum = np.fft.fft(padded, axis=0)[: n_padded // 2 + 1]
    return 2.0 * np.abs(spectrum) / n_time


def alff_falff(
    volume: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    mask: Union[PathLike, np.ndarray],
    tr: Optional[float] = None,
    band: Tuple[float, float] = DEFAULT_BAND,
    n_chunks: int = DEFAULT_CHUNKS,
) -> AmplitudeMaps:
    """Compute ALFF and fALFF for every voxel inside ``mask``.

    Parameters
    ----------
    volume : path, list of paths, array or Volume
        4D run, normally detrended and nuisance-regressed but not
        band-pass filtered.
    mask : path or array
        Brain mask.
    tr : float, optional
        Repetition time; defaults to the header value or 2 s.
    band : (float, float)
        Low-frequency band in Hz.
    n_chunks : int
        Voxel segments processed at a time.

    Returns
    -------
    AmplitudeMaps
    """
    vol = load_volume(volume)
    if vol.data.ndim != 4:
        raise ValidationError("ALFF requires a 4D functional run")
    brain = load_mask(mask, vol.spatial_shape)
    tr = tr or vol.tr or 2.0
    matrix, index = masked_matrix(vol.data, brain)
    n_padded = next_power_of_two(matrix.shape[0])
    start, stop = frequency_band_indices(n_padded, tr, band)
    if stop <= start:
        raise ValidationError(f"Band {tuple(band)} Hz contains no frequency bins")
    logger.info('ALFF/fALFF over %d voxels, band %s Hz, TR %.3f s', index.size, tuple(band), tr)

    alff = np.zeros(index.size)
    falff = np.zeros(index.size)
    for segment in iter_column_chunks(index.size, n_chunks):
        amplitude = amplitude_spectrum(matrix[:, segment], n_padded)
        in_band = amplitude[start:stop]
        alff[segment] = in_band.mean(axis=0)
        total = amplitude[1:].sum(axis=0)
        with np.errstate(divide='ignore', invalid='ignore'):
            ratio = in_band.sum(axis=0) / total
        falff[segment] = np.nan_to_num(ratio, nan=0.0, posinf=0.0, neginf=0.0)

    alff_map = unmask(alff, index, vol.spatial_shape)
    falff_map = unmask(falff, index, vol.spatial_shape)
    malff, zalff = standardize(alff_map, brain)
    mfalff, zfalff = standardize(falff_map, brain)
    return AmplitudeMaps(
        alff=alff_map,
        falff=falff_map,
        malff=malff,
        zalff=zalff,
        mfalff=mfalff,
        zfalff=zfalff,
        affine=vol.affine,
        header=vol.header,
    )


def alff_file(
    func_path: Union[PathLike, Sequence[PathLike]],
    mask_path: PathLike,
    save_dir: PathLike,
    tr: Optional[float] = None,
    band: Tuple[float, float] = DEFAULT_BAND,
) -> Dict[str, str]:
    """Compute the amplitude maps and write ``<name>.nii`` for each into ``save_dir``."""
    maps = alff_falff(func_path, mask_path, tr, band)
    os.makedirs(save_dir, exist_ok=True)
    written = {}
    for name, values in maps.as_dict().items():
        written[name] = save_volume(values, maps.affine, os.path.join(os.fspath(save_dir), f'{name}.nii'), maps.header)
    return written


__all__ = [
    'DEFAULT_BAND',
    'AmplitudeMaps',
    'amplitude_spectrum',
    'alff_falff',
    'alff_file',
]
