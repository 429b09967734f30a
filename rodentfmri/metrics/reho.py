"""
rodentfmri.metrics.reho
=======================

Regional homogeneity (ReHo): Kendall's coefficient of concordance of a
voxel's time series with those of its nearest neighbours.

Each in-mask voxel series is ranked over time (ties get the average
rank).  For a neighbourhood of ``K`` in-mask voxels and ``n`` time
points, with ``R_t`` the sum of ranks at time ``t``::

    W = 12 * sum_t (R_t - mean(R))^2 / (K^2 * (n^3 - n))

Neighbourhoods are 7 (faces), 19 (faces and edges) or 27 (full cube)
voxels including the centre; neighbours outside the mask are skipped.
"""

from __future__ import annotations

import itertools
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.stats import rankdata

from ..exceptions import ValidationError
from ..io import PathLike, Volume, load_mask, load_volume, save_volume
from .maps import smooth_map, standardize


logger = logging.getLogger(__name__)

CLUSTER_SIZES = (7, 19, 27)


@dataclass
class ReHoMaps:
    """Raw and standardised ReHo maps; ``smoothed`` holds the ``s`` prefixed ones."""

    reho: np.ndarray
    mreho: np.ndarray
    zreho: np.ndarray
    affine: np.ndarray
    header: Optional[object] = None
    smoothed: Dict[str, np.ndarray] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, np.ndarray]:
        maps = {'ReHo': self.reho, 'mReHo': self.mreho, 'zReHo': self.zreho}
        maps.update(self.smoothed)
        return maps


def neighbourhood_offsets(cluster_size: int) -> List[Tuple[int, int, int]]:
    """Voxel offsets (centre included) of a 7, 19 or 27 voxel neighbourhood."""
    if cluster_size not in CLUSTER_SIZES:
        raise ValidationError(f"cluster_size must be one of {CLUSTER_SIZES}, got {cluster_size}")
    max_manhattan = {7: 1, 19: 2, 27: 3}[cluster_size]
    return [
        off for off in itertools.product((-1, 0, 1), repeat=3)
        if sum(abs(o) for o in off) <= max_manhattan
    ]


def _shifted(array: np.ndarray, offset: Tuple[int, int, int]) -> np.ndarray:
    # value at voxel v + offset, zero where v + offset leaves the grid
    padded = np.pad(array, [(1, 1)] * 3 + [(0, 0)] * (array.ndim - 3))
    x, y, z = (1 + o for o in offset)
    nx, ny, nz = array.shape[:3]
    return padded[x:x + nx, y:y + ny, z:z + nz]


def kendall_w(
    data: np.ndarray,
    mask: np.ndarray,
    cluster_size: int = 27,
) -> np.ndarray:
    """Voxel-wise Kendall's W of a (X, Y, Z, T) array inside ``mask``."""
    offsets = neighbourhood_offsets(cluster_size)
    inside = np.nan_to_num(mask) != 0
    n_time = data.shape[3]
    if n_time < 2:
        raise ValidationError("ReHo needs at least two time points")
    ranks = np.zeros(data.shape, dtype=float)
    ranks[inside] = rankdata(data[inside], axis=1)
    weight = inside.astype(float)

    rank_sum = np.zeros(data.shape, dtype=float)
    count = np.zeros(data.shape[:3], dtype=float)
    for off in offsets:
        rank_sum += _shifted(ranks, off)
        count += _shifted(weight, off)

    mean_rank = rank_sum.mean(axis=3, keepdims=True)
    s = ((rank_sum - mean_rank) ** 2).sum(axis=3)
    w = np.zeros(data.shape[:3])
    valid = inside & (count > 0)
    w[valid] = 12.0 * s[valid] / (count[valid] ** 2 * (n_time ** 3 - n_time))
    return w


def reho(
    volume: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    mask: Union[PathLike, np.ndarray],
    cluster_size: int = 27,
    smooth_fwhm: Optional[Union[float, Sequence[float]]] = None,
) -> ReHoMaps:
    """Compute ReHo and optionally smooth the maps.

    Parameters
    ----------
    volume : path, list of paths, array or Volume
        4D run, normally band-pass filtered and unsmoothed.
    mask : path or array
        Brain mask.
    cluster_size : {7, 19, 27}
        Neighbourhood size.
    smooth_fwhm : float or (float, float, float), optional
        Gaussian FWHM in mm applied to the ReHo maps (``sReHo``,
        ``smReHo``, ``szReHo``).
    """
    vol = load_volume(volume)
    if vol.data.ndim != 4:
        raise ValidationError("ReHo requires a 4D functional run")
    brain = load_mask(mask, vol.spatial_shape)
    logger.info('ReHo with %d-voxel neighbourhoods over %d voxels',
                cluster_size, int(np.count_nonzero(np.nan_to_num(brain))))
    w = kendall_w(vol.data, brain, cluster_size)
    mreho, zreho = standardize(w, brain)
    maps = ReHoMaps(reho=w, mreho=mreho, zreho=zreho, affine=vol.affine, header=vol.header)
    if smooth_fwhm is not None:
        for name, values in (('ReHo', w), ('mReHo', mreho), ('zReHo', zreho)):
            maps.smoothed[f's{name}'] = smooth_map(values, smooth_fwhm, vol.voxel_size, brain)
    return maps


def reho_file(
    func_path: Union[PathLike, Sequence[PathLike]],
    mask_path: PathLike,
    save_dir: PathLike,
    cluster_size: int = 27,
    smooth_fwhm: Optional[Union[float, Sequence[float]]] = None,
) -> Dict[str, str]:
    """Compute ReHo and write one ``<name>.nii`` per map into ``save_dir``."""
    maps = reho(func_path, mask_path, cluster_size, smooth_fwhm)
    os.makedirs(save_dir, exist_ok=True)
    return {
        name: save_volume(values, maps.affine, os.path.join(os.fspath(save_dir), f'{name}.nii'), maps.header)
        for name, values in maps.as_dict().items()
    }


__all__ = [
    'CLUSTER_SIZES',
    'ReHoMaps',
    'neighbourhood_offsets',
    'kendall_w',
    'reho',
    'reho_file',
]
