"""
rodentfmri.motion
=================

Head-motion parameters produced by the realignment stage and the
quantities derived from them.

The realignment parameter file (``rp_*.txt``) is whitespace delimited
with one row per volume and six columns: three translations in mm and
three rotations in radians.  From it we build

* the motion covariate expansions used in nuisance regression
  (:class:`MotionModel`),
* the framewise displacement of Power et al. (2012), where rotations are
  converted to arc length on a sphere of radius 50 mm before summing the
  absolute first differences, and
* a per-subject summary (maximum translation / rotation) used to screen
  subjects after realignment.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd

from .exceptions import DimensionMismatchError, ValidationError


logger = logging.getLogger(__name__)

HEAD_RADIUS_MM = 50.0
N_MOTION_PARAMS = 6


class MotionModel(enum.IntEnum):
    """Head-motion covariate expansion schemes.

    RAW6
        The six realignment parameters.
    LAGGED12
        Six current plus six one-volume-lagged parameters.
    SQUARED12
        Six current plus their squares.
    FRISTON24
        Current, lagged, squared and lagged squared (Friston et al. 1996).
    """

    RAW6 = 1
    LAGGED12 = 2
    SQUARED12 = 3
    FRISTON24 = 4

    @classmethod
    def parse(cls, value: Union['MotionModel', int, str]) -> 'MotionModel':
        """Accept an enum member, its integer code or its name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if not key.isdigit():
                try:
                    return cls[key]
                except KeyError as exc:
                    raise ValidationError(f"Unknown motion model '{value}'") from exc
        try:
            return cls(int(value))
        except ValueError as exc:
            raise ValidationError(f"Unknown motion model '{value}'") from exc


@dataclass
class MotionSummary:
    """Maximum excursions and framewise displacement for one run."""

    max_translation: float
    max_rotation_deg: float
    max_motion: float
    mean_fd: float
    n_frames_over_threshold: Optional[int] = None


def load_motion_parameters(path: Union[str, os.PathLike]) -> np.ndarray:
    """Read a realignment parameter file into a (T, 6) array.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    DimensionMismatchError
        If the file does not have six columns.
    """
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Head motion file does not exist: {path}")
    df = pd.read_csv(path, sep=r'\s+', header=None)
    params = df.to_numpy(dtype=float)
    if params.ndim != 2 or params.shape[1] != N_MOTION_PARAMS:
        raise DimensionMismatchError(
            f"Expected {N_MOTION_PARAMS} motion parameters per row in {path}, got {params.shape[1]}"
        )
    return params


def _check_params(params: np.ndarray) -> np.ndarray:
    params = np.asarray(params, dtype=float)
    if params.ndim != 2 or params.shape[1] != N_MOTION_PARAMS:
        raise DimensionMismatchError("Motion parameters must have shape (T, 6)")
    return params


def lagged(params: np.ndarray) -> np.ndarray:
    """Shift rows down by one volume, filling the first row with zeros."""
    params = np.asarray(params, dtype=float)
    out = np.zeros_like(params)
    out[1:] = params[:-1]
    return out


def expand_motion(params: np.ndarray, model: Union[MotionModel, int, str] = MotionModel.FRISTON24) -> np.ndarray:
    """Build the motion covariates for ``model``.

    Column order is current, lagged, squared, lagged squared, keeping
    only the blocks the model uses.
    """
    params = _check_params(params)
    model = MotionModel.parse(model)
    prev = lagged(params)
    if model is MotionModel.RAW6:
        blocks = [params]
    elif model is MotionModel.LAGGED12:
        blocks = [params, prev]
    elif model is MotionModel.SQUARED12:
        blocks = [params, params ** 2]
    else:
        blocks = [params, prev, params ** 2, prev ** 2]
    return np.hstack(blocks)


def framewise_displacement(params: np.ndarray, head_radius: float = HEAD_RADIUS_MM) -> np.ndarray:
    """Power framewise displacement for every volume.

    The first difference gets a zero row prepended so that frame 0 has
    FD 0.  Rotational differences (columns 4-6, radians) are multiplied
    by ``head_radius`` before the absolute values of all six columns are
    summed.
    """
    params = _check_params(params)
    diff = np.vstack([np.zeros((1, N_MOTION_PARAMS)), np.diff(params, axis=0)])
    diff[:, 3:6] = diff[:, 3:6] * head_radius
    return np.sum(np.abs(diff), axis=1)


def temporal_mask(fd: np.ndarray, threshold: float) -> np.ndarray:
    """Boolean keep-mask: ``False`` where ``fd`` exceeds ``threshold``."""
    if threshold is None or threshold < 0:
        raise ValidationError("FD threshold must be a non-negative number")
    return ~(np.asarray(fd, dtype=float) > threshold)


def max_motion(params: np.ndarray) -> float:
    """Largest absolute excursion, translations in mm, rotations in degrees."""
    params = _check_params(params)
    peaks = np.max(np.abs(params), axis=0)
    peaks[3:6] = np.rad2deg(peaks[3:6])
    return float(np.max(peaks))


def summarize_motion(params: np.ndarray, fd_threshold: Optional[float] = None) -> MotionSummary:
    """Summarise a run's head motion for subject screening."""
    params = _check_params(params)
    peaks = np.max(np.abs(params), axis=0)
    fd = framewise_displacement(params)
    n_over = None
    if fd_threshold is not None:
        n_over = int(np.sum(~temporal_mask(fd, fd_threshold)))
    summary = MotionSummary(
        max_translation=float(np.max(peaks[:3])),
        max_rotation_deg=float(np.max(np.rad2deg(peaks[3:6]))),
        max_motion=max_motion(params),
        mean_fd=float(np.mean(fd)),
        n_frames_over_threshold=n_over,
    )
    logger.debug('Motion summary: %s', summary)
    return summary


__all__ = [
    'HEAD_RADIUS_MM',
    'MotionModel',
    'MotionSummary',
    'load_motion_parameters',
    'lagged',
    'expand_motion',
    'framewise_displacement',
    'temporal_mask',
    'max_motion',
    'summarize_motion',
]
