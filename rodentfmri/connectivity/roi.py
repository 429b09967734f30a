"""
rodentfmri.connectivity.roi
===========================

Seed / ROI definitions.

A seed can be given as a 3D mask array, a time series, a sphere
(centre in world mm plus radius in mm) or a path to a mask image or a
text file of series.  Raw inputs are classified once by
:func:`parse_roi_definition` into one of four explicit variants and
then turned into either a mask or a series by :func:`resolve_roi`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
from nibabel.affines import apply_affine

from ..exceptions import DimensionMismatchError, ROIDefinitionError, ValidationError
from ..io import load_mask, load_matrix_txt


logger = logging.getLogger(__name__)

MASK_EXTENSIONS = ('.nii', '.img', '.gz')
SERIES_EXTENSIONS = ('.txt',)


@dataclass
class MaskVolume:
    """A 3D mask array with the data's spatial shape."""

    array: np.ndarray
    name: str = ''


@dataclass
class SeriesVector:
    """Seed time series, shape (T,) or (T, k)."""

    array: np.ndarray
    name: str = ''


@dataclass
class SphereSpec:
    """Sphere centred at ``center`` (world mm) with ``radius`` mm."""

    center: Tuple[float, float, float]
    radius: float
    name: str = ''


@dataclass
class FilePath:
    """Mask image (.nii, .nii.gz, .img) or series text file (.txt)."""

    path: str


ROIDefinition = Union[MaskVolume, SeriesVector, SphereSpec, FilePath]


@dataclass
class ResolvedROI:
    """A seed ready for extraction: exactly one of ``mask``/``series`` is set."""

    name: str
    mask: Optional[np.ndarray] = None
    series: Optional[np.ndarray] = None
    column_labels: Optional[List[str]] = None


def parse_roi_definition(
    obj: Any,
    spatial_shape: Sequence[int],
    n_timepoints: int,
) -> ROIDefinition:
    """Classify a raw seed definition.

    Arrays are matched against, in order, the spatial shape (mask), the
    number of time points (series) and a 4-element sphere vector.

    Raises
    ------
    FileNotFoundError
        If a path does not exist.
    ROIDefinitionError
        If an array matches none of the shapes.
    """
    if isinstance(obj, (MaskVolume, SeriesVector, SphereSpec, FilePath)):
        return obj
    if isinstance(obj, (str, os.PathLike)):
        path = os.fspath(obj)
        if not os.path.isfile(path):
            raise FileNotFoundError(f"File doesn't exist or wrong ROI definition, please check: {path}")
        return FilePath(path)
    arr = np.asarray(obj, dtype=float)
    if arr.shape == tuple(spatial_shape[:3]):
        return MaskVolume(arr)
    if arr.ndim in (1, 2) and arr.shape[0] == n_timepoints:
        return SeriesVector(arr)
    if arr.shape in ((4,), (1, 4)):
        flat = arr.ravel()
        return SphereSpec(center=(flat[0], flat[1], flat[2]), radius=float(flat[3]))
    raise ROIDefinitionError(f"Wrong ROI definition with shape {arr.shape}")


def sphere_mask(
    center: Sequence[float],
    radius: float,
    affine: np.ndarray,
    spatial_shape: Sequence[int],
) -> np.ndarray:
    """Binary mask of the voxels whose world coordinates lie within ``radius`` of ``center``."""
    if radius < 0:
        raise ValidationError("Sphere radius must be non-negative")
    grid = np.indices(tuple(spatial_shape[:3])).reshape(3, -1).T
    world = apply_affine(affine, grid)
    dist = np.linalg.norm(world - np.asarray(center, dtype=float)[np.newaxis, :], axis=1)
    return (dist <= radius).reshape(tuple(spatial_shape[:3])).astype(float)


def _extension(path: str) -> str:
    lower = path.lower()
    if lower.endswith('.nii.gz'):
        return '.gz'
    return os.path.splitext(lower)[1]


def resolve_roi(
    definition: ROIDefinition,
    spatial_shape: Sequence[int],
    affine: np.ndarray,
    index: int,
    multiple_label: bool = False,
) -> ResolvedROI:
    """Turn a definition into a mask or a series.

    Parameters
    ----------
    definition : ROIDefinition
        Output of :func:`parse_roi_definition`.
    spatial_shape : sequence of int
        Spatial shape of the functional data.
    affine : np.ndarray
        Voxel-to-world transform of the functional data (for spheres).
    index : int
        1-based position of the definition, used in generated names.
    multiple_label : bool
        Keep every column of a text series instead of averaging them.
    """
    shape = tuple(spatial_shape[:3])
    if isinstance(definition, MaskVolume):
        if definition.array.shape != shape:
            raise DimensionMismatchError(
                f"Mask does not match. Mask size is {definition.array.shape}, not same with required size {shape}"
            )
        return ResolvedROI(definition.name or f'Mask Matrix definition {index}', mask=definition.array)
    if isinstance(definition, SeriesVector):
        series = np.asarray(definition.array, dtype=float)
        if series.ndim == 1:
            series = series[:, np.newaxis]
        return ResolvedROI(definition.name or f'Seed Series definition {index}', series=series)
    if isinstance(definition, SphereSpec):
        mask = sphere_mask(definition.center, definition.radius, affine, shape)
        cx, cy, cz = definition.center
        name = definition.name or (
            f'Sphere definition (CenterX, CenterY, CenterZ, Radius): '
            f'{cx:g} {cy:g} {cz:g} {definition.radius:g}.'
        )
        return ResolvedROI(name, mask=mask)
    if isinstance(definition, FilePath):
        path = definition.path
        ext = _extension(path)
        if ext in SERIES_EXTENSIONS:
            series = load_matrix_txt(path)
            if multiple_label:
                labels = [f'Column {i + 1}' for i in range(series.shape[1])]
                return ResolvedROI(path, series=series, column_labels=labels)
            return ResolvedROI(path, series=series.mean(axis=1, keepdims=True))
        if ext in MASK_EXTENSIONS:
            return ResolvedROI(path, mask=load_mask(path, shape))
        raise ROIDefinitionError(f"Wrong ROI file type, please check: {path}")
    raise ROIDefinitionError(f"Unknown ROI definition {definition!r}")


__all__ = [
    'MaskVolume',
    'SeriesVector',
    'SphereSpec',
    'FilePath',
    'ROIDefinition',
    'ResolvedROI',
    'parse_roi_definition',
    'sphere_mask',
    'resolve_roi',
]
