"""
rodentfmri.connectivity.roifc
=============================

ROI-wise functional connectivity written as ASCII matrices.

:func:`roi_fc` uses a single label atlas (one ROI per label) and writes
``FCmat.txt``/``zFCmat.txt``.  :func:`roi_fc_from_masks` builds the ROI
set from a list of seed mask files and writes ``FC_<name>.txt`` and
``zFC_<name>.txt``.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence, Union

import numpy as np

from ..exceptions import ValidationError
from ..io import PathLike, Volume, load_mask, load_volume, save_matrix_txt
from ..timeseries import extract_roi_timeseries
from .correlation import ConnectivityMatrix, compute_roi_connectivity


logger = logging.getLogger(__name__)


def save_connectivity(
    conn: ConnectivityMatrix,
    save_dir: PathLike,
    r_name: str = 'FCmat.txt',
    z_name: str = 'zFCmat.txt',
) -> List[str]:
    """Write the r and z matrices of ``conn`` into ``save_dir``."""
    os.makedirs(save_dir, exist_ok=True)
    save_dir = os.fspath(save_dir)
    return [
        save_matrix_txt(conn.matrix, os.path.join(save_dir, r_name)),
        save_matrix_txt(conn.zmatrix, os.path.join(save_dir, z_name)),
    ]


def roi_fc(
    func_source: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    atlas_source: Union[PathLike, np.ndarray],
    save_dir: Optional[PathLike] = None,
    prefix: str = '',
) -> ConnectivityMatrix:
    """Pearson and Fisher z matrices between the regions of an atlas.

    Parameters
    ----------
    func_source : path, list of paths, array or Volume
        Preprocessed 4D run.
    atlas_source : path or array
        Label mask; every distinct non-zero value is one ROI.
    save_dir : path, optional
        If given, the matrices are written there.
    prefix : str
        Non-empty to name the files ``FC_<prefix>.txt``/``zFC_<prefix>.txt``
        instead of ``FCmat.txt``/``zFCmat.txt``.
    """
    vol = load_volume(func_source)
    atlas = load_mask(atlas_source, vol.spatial_shape)
    ts = extract_roi_timeseries(vol.data, atlas, 'mean')
    conn = compute_roi_connectivity(ts.values, ts.names)
    logger.info('ROI connectivity between %d regions', len(ts.labels))
    if save_dir is not None:
        if prefix:
            save_connectivity(conn, save_dir, f'FC_{prefix}.txt', f'zFC_{prefix}.txt')
        else:
            save_connectivity(conn, save_dir)
    return conn


def _mask_name(path: str) -> str:
    fname = os.path.basename(path)
    for ext in ('.nii.gz', '.nii', '.img'):
        if fname.lower().endswith(ext):
            return fname[: -len(ext)]
    return fname


def roi_fc_from_masks(
    func_source: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    mask_paths: Sequence[PathLike],
    save_dir: Optional[PathLike] = None,
    name: str = 'subject',
) -> ConnectivityMatrix:
    """ROI x ROI connectivity where each seed mask file contributes its labels.

    The mean series of every label of every mask is concatenated in the
    order of ``mask_paths``.
    """
    if len(mask_paths) == 0:
        raise ValidationError("No seed masks given")
    vol = load_volume(func_source)
    columns = []
    labels: List[str] = []
    for path in mask_paths:
        path = os.fspath(path)
        ts = extract_roi_timeseries(vol.data, load_mask(path, vol.spatial_shape), 'mean')
        if ts.values.shape[1] == 0:
            raise ValidationError(f"Seed mask {path} is empty")
        columns.append(ts.values)
        stem = _mask_name(path)
        if len(ts.labels) == 1:
            labels.append(stem)
        else:
            labels.extend(f'{stem}_{lbl}' for lbl in ts.names)
    conn = compute_roi_connectivity(np.hstack(columns), labels)
    logger.info('ROI connectivity for %s from %d seed masks', name, len(mask_paths))
    if save_dir is not None:
        save_connectivity(conn, save_dir, f'FC_{name}.txt', f'zFC_{name}.txt')
    return conn


__all__ = [
    'save_connectivity',
    'roi_fc',
    'roi_fc_from_masks',
]
