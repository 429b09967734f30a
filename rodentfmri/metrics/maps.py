"""
rodentfmri.metrics.maps
=======================

Helpers shared by the voxel-wise metric maps: standardisation against
the in-mask distribution and Gaussian smoothing by FWHM.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy.ndimage import gaussian_filter

from ..exceptions import ValidationError

FWHM_TO_SIGMA = 2.0 * np.sqrt(2.0 * np.log(2.0))


def standardize(values: np.ndarray, mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return the ``m`` (divided by the in-mask mean) and ``z`` versions of a map.

    Voxels outside ``mask`` are 0 in both outputs.  A zero mean or a
    zero standard deviation leaves the corresponding map at 0.
    """
    inside = np.nan_to_num(mask) != 0
    in_mask = values[inside]
    m_map = np.zeros_like(values, dtype=float)
    z_map = np.zeros_like(values, dtype=float)
    if in_mask.size == 0:
        return m_map, z_map
    mean = in_mask.mean()
    std = in_mask.std(ddof=1) if in_mask.size > 1 else 0.0
    if mean != 0:
        m_map[inside] = in_mask / mean
    if std > 0:
        z_map[inside] = (in_mask - mean) / std
    return m_map, z_map


def smooth_map(
    values: np.ndarray,
    fwhm: Union[float, Sequence[float]],
    voxel_size: Sequence[float],
    mask: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Gaussian smoothing of a 3D map with a kernel given as FWHM in mm."""
    fwhm = np.broadcast_to(np.asarray(fwhm, dtype=float), (3,))
    voxel_size = np.asarray(voxel_size, dtype=float)[:3]
    if np.any(fwhm < 0) or np.any(voxel_size <= 0):
        raise ValidationError("FWHM must be non-negative and voxel sizes positive")
    sigma = fwhm / voxel_size / FWHM_TO_SIGMA
    out = gaussian_filter(np.asarray(values, dtype=float), sigma=sigma, mode='constant')
    if mask is not None:
        out = out * (np.nan_to_num(mask) != 0)
    return out


__all__ = ['FWHM_TO_SIGMA', 'standardize', 'smooth_map']
