"""
rodentfmri.io
=============

Reading and writing of the artefacts exchanged between pipeline stages.

Every stage of the pipeline reads one file and writes the next, so the
helpers here are small: NIfTI volumes are loaded and saved
through :mod:`nibabel`, numeric matrices are written as whitespace
delimited ASCII (the layout produced by MATLAB's ``save -ascii``) or as
MATLAB ``.mat`` files through :func:`scipy.io.savemat`, and the ROI
order key is a tab separated table written with :mod:`pandas`.

Volumes may be given as a single 4D file, a directory of 3D (or 4D)
images, an explicit list of files or an in-memory array.  Directory and
list inputs are stacked along the time axis in name order.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import nibabel as nib
import numpy as np
import pandas as pd
from scipy.io import savemat

from .exceptions import DimensionMismatchError, ValidationError


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]
IMAGE_EXTENSIONS = ('.nii', '.nii.gz', '.img')
# divisor taking a NIfTI time zoom to seconds
TIME_UNIT_SCALE = {'msec': 1000.0, 'usec': 1e6}


@dataclass
class Volume:
    """A loaded image together with its spatial metadata.

    Attributes
    ----------
    data : np.ndarray
        Voxel intensities, shape (X, Y, Z) or (X, Y, Z, T).
    affine : np.ndarray
        4x4 voxel-to-world transform.
    header : nibabel header | None
        Header of the first file read, reused when writing derived
        images so that the repetition time and units survive.
    """

    data: np.ndarray
    affine: np.ndarray
    header: Optional[Any] = None

    @property
    def spatial_shape(self) -> Tuple[int, int, int]:
        return tuple(self.data.shape[:3])

    @property
    def n_timepoints(self) -> int:
        return self.data.shape[3] if self.data.ndim == 4 else 1

    @property
    def voxel_size(self) -> np.ndarray:
        """Voxel edge lengths derived from the affine columns."""
        return np.sqrt(np.sum(self.affine[:3, :3] ** 2, axis=0))

    @property
    def tr(self) -> Optional[float]:
        """Repetition time in seconds from the header zooms, if recorded.

        The fourth zoom is converted according to the header's time
        units; headers without units are taken to be in seconds.
        """
        if self.header is None or self.data.ndim != 4:
            return None
        zooms = self.header.get_zooms()
        if len(zooms) < 4 or zooms[3] <= 0:
            return None
        tr = float(zooms[3])
        if hasattr(self.header, 'get_xyzt_units'):
            tr /= TIME_UNIT_SCALE.get(self.header.get_xyzt_units()[1], 1.0)
        return tr


def _is_image(fname: str) -> bool:
    return fname.lower().endswith(IMAGE_EXTENSIONS) and not fname.startswith('._')


def list_images(directory: PathLike) -> List[str]:
    """Return the image files of ``directory`` sorted by name.

    AppleDouble resource files (``._*``) left behind by macOS copies are
    ignored.
    """
    directory = os.fspath(directory)
    files = [os.path.join(directory, f) for f in sorted(os.listdir(directory)) if _is_image(f)]
    if not files:
        raise FileNotFoundError(f"No image files found in {directory}")
    return files


def _load_image(path: PathLike):
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Image does not exist: {path}")
    return nib.load(path)


def load_volume(source: Union[PathLike, Sequence[PathLike], np.ndarray, Volume]) -> Volume:
    """Load a 3D or 4D volume from any of the supported sources.

    Parameters
    ----------
    source : path, directory, list of paths, array or Volume
        A single image file, a directory of image files, a list of
        image files (stacked along time) or an array already in memory.
        Arrays get an identity affine and no header.

    Returns
    -------
    Volume
    """
    if isinstance(source, Volume):
        return source
    if isinstance(source, np.ndarray):
        return Volume(data=np.asarray(source, dtype=float), affine=np.eye(4), header=None)
    if isinstance(source, (str, os.PathLike)) and os.path.isdir(source):
        paths: List[str] = list_images(source)
    elif isinstance(source, (str, os.PathLike)):
        img = _load_image(source)
        return Volume(np.asanyarray(img.get_fdata()), img.affine.copy(), img.header.copy())
    else:
        paths = [os.fspath(p) for p in source]
        if not paths:
            raise ValidationError("Empty list of image files")
    first = _load_image(paths[0])
    frames = []
    for path in paths:
        data = np.asanyarray(_load_image(path).get_fdata())
        if data.ndim == 3:
            data = data[..., np.newaxis]
        if data.shape[:3] != first.shape[:3]:
            raise DimensionMismatchError(
                f"Image {path} has spatial shape {data.shape[:3]}, expected {first.shape[:3]}"
            )
        frames.append(data)
    logger.debug('Stacked %d image files', len(paths))
    return Volume(np.concatenate(frames, axis=3), first.affine.copy(), first.header.copy())


def load_mask(source: Union[PathLike, np.ndarray], shape: Optional[Sequence[int]] = None) -> np.ndarray:
    """Load a 3D mask and optionally check its spatial shape.

    Parameters
    ----------
    source : path or array
        Mask image or array.  Label values are preserved.
    shape : sequence of int, optional
        Required spatial shape (X, Y, Z).

    Raises
    ------
    DimensionMismatchError
        If the mask shape differs from ``shape``.
    """
    if isinstance(source, np.ndarray):
        mask = np.asarray(source, dtype=float)
    else:
        mask = np.asanyarray(_load_image(source).get_fdata())
    if mask.ndim == 4 and mask.shape[3] == 1:
        mask = mask[..., 0]
    if shape is not None and tuple(mask.shape) != tuple(shape[:3]):
        raise DimensionMismatchError(
            f"The size of mask {tuple(mask.shape)} doesn't match the required size {tuple(shape[:3])}"
        )
    return mask


def save_volume(
    data: np.ndarray,
    affine: np.ndarray,
    path: PathLike,
    header: Optional[Any] = None,
) -> str:
    """Write ``data`` as a float32 NIfTI image and return the path."""
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    img = nib.Nifti1Image(np.asarray(data, dtype=np.float32), affine, header)
    img.set_data_dtype(np.float32)
    nib.save(img, path)
    logger.debug('Wrote %s', path)
    return path


def save_matrix_txt(
    matrix: np.ndarray,
    path: PathLike,
    double: bool = False,
    delimiter: str = '  ',
) -> str:
    """Write a 2D matrix as ASCII text.

    ``double=False`` matches MATLAB's ``save -ascii`` (8 significant
    digits); ``double=True`` keeps 16.
    """
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    fmt = '%.15e' if double else '%.7e'
    np.savetxt(path, np.atleast_2d(matrix), fmt=fmt, delimiter=delimiter)
    return path


def save_matrix_mat(matrix: np.ndarray, path: PathLike, name: str) -> str:
    """Write ``matrix`` into a MATLAB ``.mat`` file under variable ``name``."""
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    savemat(path, {name: np.asarray(matrix, dtype=float)})
    return path


def load_matrix_txt(path: PathLike) -> np.ndarray:
    """Load a whitespace delimited numeric matrix."""
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Matrix file does not exist: {path}")
    return np.loadtxt(path, ndmin=2)


def write_order_key(entries: Sequence[Dict[str, Any]], path: PathLike, multiple_label: bool) -> str:
    """Write the ROI order key describing the columns of the seed series.

    Parameters
    ----------
    entries : sequence of dict
        One dict per output column with keys ``'Order'``,
        ``'ROI Definition'`` and, for multi-label extraction,
        ``'Label in Mask'``.
    path : path
        Destination ``.tsv`` file.
    multiple_label : bool
        Whether to include the ``Label in Mask`` column.
    """
    columns = ['Order', 'Label in Mask', 'ROI Definition'] if multiple_label else ['Order', 'ROI Definition']
    df = pd.DataFrame(list(entries))
    for col in columns:
        if col not in df.columns:
            df[col] = ''
    df = df[columns]
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    df.to_csv(path, sep='\t', index=False)
    return path


def scale_voxel_size(path: PathLike, factor: float, out_path: Optional[PathLike] = None) -> str:
    """Multiply the voxel-to-world transform of an image by ``factor``.

    Small-animal scanners report millimetre voxels that are an order of
    magnitude smaller than the human defaults the registration and
    smoothing tools are tuned for.  Scaling the affine by ten makes a
    rodent brain roughly human sized in world units.  Voxel data are not
    resampled.

    Parameters
    ----------
    path : path
        Input image.
    factor : float
        Scale factor applied to the affine (translation included).
    out_path : path, optional
        Output image.  Defaults to overwriting ``path``.
    """
    if factor <= 0:
        raise ValidationError("Scale factor must be positive")
    img = _load_image(path)
    affine = img.affine * factor
    affine[3, :] = [0.0, 0.0, 0.0, 1.0]
    # copy out of the memory map before a possible in-place overwrite
    data = np.array(img.dataobj)
    out = nib.Nifti1Image(data, affine, img.header.copy())
    out_path = os.fspath(out_path or path)
    nib.save(out, out_path)
    logger.info('Scaled voxel size of %s by %g -> %s', path, factor, out_path)
    return out_path


__all__ = [
    'Volume',
    'list_images',
    'load_volume',
    'load_mask',
    'save_volume',
    'save_matrix_txt',
    'save_matrix_mat',
    'load_matrix_txt',
    'write_order_key',
    'scale_voxel_size',
]
