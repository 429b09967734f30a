"""
rodentfmri.timeseries
=====================

Conversion between 4D volumes and time x signal matrices.

:func:`extract_roi_timeseries` condenses the voxels of every region in
a label (or binary) mask into one time course.  Regions are discovered
from the mask itself: every distinct finite, non-zero value is one ROI,
in ascending order.  Voxel values that are NaN or infinite are set to
zero before averaging.

:func:`masked_matrix` and :func:`unmask` move between the (X, Y, Z, T)
volume layout and the (T, V) in-mask matrix used by the denoising and
connectivity code.  Both use the same C-order voxel flattening.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

import numpy as np
from sklearn.decomposition import PCA

from .exceptions import DimensionMismatchError, ValidationError
from .io import PathLike, load_mask, load_volume


logger = logging.getLogger(__name__)

EXTRACTION_METHODS = ('mean', 'sum', 'pca')


@dataclass
class RoiTimeseries:
    """ROI signals and the mask label each column came from.

    Attributes
    ----------
    values : np.ndarray
        Array of shape (T, N_ROI); a single row for 3D input.
    labels : list of float
        Mask value of each column.
    method : str
        Extraction method used.
    """

    values: np.ndarray
    labels: List[float] = field(default_factory=list)
    method: str = 'mean'

    @property
    def names(self) -> List[str]:
        """Labels formatted as strings (integers without a decimal point)."""
        return [str(int(lbl)) if float(lbl).is_integer() else str(lbl) for lbl in self.labels]


def mask_labels(mask: np.ndarray) -> np.ndarray:
    """Distinct finite, non-zero values of ``mask`` in ascending order."""
    values = np.unique(np.asarray(mask, dtype=float))
    return values[np.isfinite(values) & (values != 0)]


def masked_matrix(data: np.ndarray, mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return the (T, V_in_mask) matrix and the flat indices of the mask voxels.

    A 3D ``data`` array is treated as a single time point.
    """
    data = np.asarray(data, dtype=float)
    if data.ndim == 3:
        data = data[..., np.newaxis]
    if data.ndim != 4:
        raise ValidationError("Data must be a 3D or 4D array")
    mask = np.asarray(mask, dtype=float)
    if mask.shape != data.shape[:3]:
        raise DimensionMismatchError(
            f"Mask shape {mask.shape} doesn't match data shape {data.shape[:3]}"
        )
    index = np.flatnonzero(np.nan_to_num(mask).reshape(-1) != 0)
    matrix = data.reshape(-1, data.shape[3])[index].T
    return matrix, index


def unmask(values: np.ndarray, index: np.ndarray, spatial_shape: Sequence[int]) -> np.ndarray:
    """Scatter in-mask values back into a zero-filled volume.

    Parameters
    ----------
    values : np.ndarray
        Shape (V,) for one map, or (T, V) for a time series matrix.
    index : np.ndarray
        Flat voxel indices returned by :func:`masked_matrix`.
    spatial_shape : sequence of int
        (X, Y, Z).

    Returns
    -------
    np.ndarray
        (X, Y, Z) or (X, Y, Z, T).
    """
    spatial_shape = tuple(spatial_shape[:3])
    n_voxels = int(np.prod(spatial_shape))
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        out = np.zeros(n_voxels)
        out[index] = values
        return out.reshape(spatial_shape)
    out = np.zeros((n_voxels, values.shape[0]))
    out[index] = values.T
    return out.reshape(spatial_shape + (values.shape[0],))


def _first_component(columns: np.ndarray) -> np.ndarray:
    # score of the first principal component of centred voxel series
    pca = PCA(n_components=1, svd_solver='full')
    return pca.fit_transform(columns)[:, 0]


def extract_roi_timeseries(
    data: np.ndarray,
    atlas: np.ndarray,
    method: str = 'mean',
) -> RoiTimeseries:
    """Extract one time course per region of a label mask.

    Parameters
    ----------
    data : np.ndarray
        4D (X, Y, Z, T) or 3D (X, Y, Z) array.
    atlas : np.ndarray
        3D label or binary mask with the same spatial shape.
    method : {'mean', 'sum', 'pca'}
        Voxel aggregation.  ``'pca'`` returns the first principal
        component score and needs a time dimension.

    Returns
    -------
    RoiTimeseries
        ``values`` has shape (T, N_ROI), or (1, N_ROI) for 3D input.

    Raises
    ------
    DimensionMismatchError
        If data and mask spatial shapes differ.
    ValidationError
        For an unknown method or ``'pca'`` on 3D data.
    """
    method = method.lower()
    if method not in EXTRACTION_METHODS:
        raise ValidationError(f"Unknown extraction method '{method}'")
    data = np.array(data, dtype=float)
    if data.ndim not in (3, 4):
        raise ValidationError("Data must be a 3D or 4D array")
    if data.ndim == 3 and method == 'pca':
        raise ValidationError("PCA extraction requires 4D data")
    data[~np.isfinite(data)] = 0.0
    atlas = np.asarray(atlas, dtype=float)
    if atlas.shape != data.shape[:3]:
        raise DimensionMismatchError('Data and mask not match')
    labels = mask_labels(atlas)
    n_time = data.shape[3] if data.ndim == 4 else 1
    flat = data.reshape(-1, n_time).T
    atlas_flat = atlas.reshape(-1)
    values = np.zeros((n_time, labels.size))
    for i, lbl in enumerate(labels):
        columns = flat[:, atlas_flat == lbl]
        if method == 'mean':
            values[:, i] = columns.mean(axis=1)
        elif method == 'sum':
            values[:, i] = columns.sum(axis=1)
        else:
            values[:, i] = _first_component(columns)
    logger.debug('Extracted %d ROI series (%s)', labels.size, method)
    return RoiTimeseries(values=values, labels=labels.tolist(), method=method)


def extract_from_files(
    data_source: Union[PathLike, Sequence[PathLike]],
    atlas_source: PathLike,
    method: str = 'mean',
) -> RoiTimeseries:
    """Load a volume (file, directory or file list) and an atlas, then extract."""
    volume = load_volume(data_source)
    atlas = load_mask(atlas_source)
    return extract_roi_timeseries(volume.data, atlas, method)


__all__ = [
    'EXTRACTION_METHODS',
    'RoiTimeseries',
    'mask_labels',
    'masked_matrix',
    'unmask',
    'extract_roi_timeseries',
    'extract_from_files',
]
