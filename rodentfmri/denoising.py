"""
rodentfmri.denoising
====================

Detrending, nuisance regression, band-pass filtering and scrubbing of a
4D resting-state run inside a brain mask.

The stages run in a fixed order:

1. voxels outside the brain mask are zeroed;
2. in-mask voxel series are linearly detrended (optional);
3. a nuisance design (constant, WM/CSF means, motion expansion) is
   regressed out of the in-mask series, optionally keeping the mean;
4. an ideal band-pass filter is applied (optional);
5. volumes whose framewise displacement exceeds a threshold are cut
   (optional, requires a motion file).

The WM and CSF signals are averaged from the masked, detrended data,
so tissue voxels outside the brain mask contribute zeros.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import ValidationError
from .filtering import DEFAULT_CHUNKS, detrend, ideal_filter, validate_band
from .io import PathLike, Volume, load_mask, load_volume, save_volume
from .motion import (
    MotionModel,
    framewise_displacement,
    load_motion_parameters,
    temporal_mask as fd_temporal_mask,
)
from .nuisance import build_covariates, regress_covariates
from .scrubbing import scrub
from .timeseries import unmask


logger = logging.getLogger(__name__)

DEFAULT_TR = 2.0


@dataclass
class DenoiseConfig:
    """Options for :func:`denoise`.

    Parameters
    ----------
    tr : float | None
        Repetition time in seconds used for filtering.  ``None`` takes
        the value from the image header, falling back to 2 s.
    band : (float, float) | None
        Band-pass range in Hz, e.g. ``(0.01, 0.08)``.  ``None`` skips
        filtering.
    motion_model : MotionModel
        Motion covariate expansion (1: 6 raw, 2: 6 + 6 lagged,
        3: 6 + 6 squared, 4: Friston 24).
    add_mean_back : bool
        Keep each voxel's mean when regressing covariates.
    detrend : bool
        Remove linear trends before regression.
    fd_threshold : float | None
        Framewise displacement threshold for cutting volumes.
    n_chunks : int
        Column segments used for detrending and filtering.
    """

    tr: Optional[float] = None
    band: Optional[Tuple[float, float]] = None
    motion_model: MotionModel = MotionModel.FRISTON24
    add_mean_back: bool = True
    detrend: bool = True
    fd_threshold: Optional[float] = None
    n_chunks: int = DEFAULT_CHUNKS

    def validate(self) -> None:
        self.motion_model = MotionModel.parse(self.motion_model)
        if self.tr is not None and self.tr <= 0:
            raise ValidationError("tr must be positive")
        if self.band is not None and len(self.band) > 0:
            validate_band(self.band, self.tr or DEFAULT_TR)
        if self.fd_threshold is not None and self.fd_threshold < 0:
            raise ValidationError("fd_threshold must be non-negative")
        if self.n_chunks < 1:
            raise ValidationError("n_chunks must be a positive integer")


@dataclass
class DenoiseResult:
    """Denoised run and the by-products of each stage.

    Attributes
    ----------
    data : np.ndarray
        Cleaned (X, Y, Z, T') array; T' < T when volumes were cut.
    affine : np.ndarray
        Affine of the input run.
    header : nibabel header | None
        Header of the input run.
    temporal_mask : np.ndarray | None
        Keep-mask over the original volumes when scrubbing was applied.
    fd : np.ndarray | None
        Framewise displacement when a motion file was given.
    qc_metrics : dict
        ``tSNR`` of the input, ``mean_FD``, ``n_scrubbed`` and the rank
        of the nuisance design.
    """

    data: np.ndarray
    affine: np.ndarray
    header: Optional[Any] = None
    temporal_mask: Optional[np.ndarray] = None
    fd: Optional[np.ndarray] = None
    qc_metrics: Dict[str, float] = field(default_factory=dict)


def _tsnr(matrix: np.ndarray) -> float:
    if matrix.size == 0:
        return 0.0
    mean_signal = matrix.mean(axis=0)
    std_signal = matrix.std(axis=0) + 1e-8
    return float(np.mean(mean_signal / std_signal))


def _tissue_mean(flat: np.ndarray, tissue_source, spatial_shape) -> np.ndarray:
    tissue = load_mask(tissue_source, spatial_shape)
    index = np.flatnonzero(np.nan_to_num(tissue).reshape(-1) != 0)
    if index.size == 0:
        raise ValidationError("Tissue mask is empty")
    return flat[:, index].mean(axis=1)


def denoise(
    volume: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    mask: Union[PathLike, np.ndarray],
    config: Optional[DenoiseConfig] = None,
    motion_file: Optional[Union[PathLike, np.ndarray]] = None,
    wm_mask: Optional[Union[PathLike, np.ndarray]] = None,
    csf_mask: Optional[Union[PathLike, np.ndarray]] = None,
) -> DenoiseResult:
    """Denoise a 4D run.

    Parameters
    ----------
    volume : path, list of paths, array or Volume
        The functional run.
    mask : path or array
        Brain mask with the run's spatial shape.
    config : DenoiseConfig, optional
        Processing options.  Defaults to :class:`DenoiseConfig()`.
    motion_file : path or array, optional
        Realignment parameters (T, 6).  Enables motion regression and
        FD scrubbing.
    wm_mask, csf_mask : path or array, optional
        Tissue masks; both are needed for tissue signal regression.

    Returns
    -------
    DenoiseResult
    """
    config = config or DenoiseConfig()
    config.validate()
    vol = load_volume(volume)
    if vol.data.ndim != 4:
        raise ValidationError("Denoising requires a 4D functional run")
    spatial_shape = vol.spatial_shape
    n_time = vol.n_timepoints
    brain = load_mask(mask, spatial_shape)
    brain_index = np.flatnonzero(np.nan_to_num(brain).reshape(-1) != 0)
    logger.info('Denoising %d volumes, %d in-mask voxels', n_time, brain_index.size)

    flat = np.zeros((n_time, int(np.prod(spatial_shape))))
    flat[:, brain_index] = vol.data.reshape(-1, n_time)[brain_index].T
    qc: Dict[str, float] = {'tSNR': _tsnr(flat[:, brain_index])}

    if config.detrend:
        flat[:, brain_index] = detrend(flat[:, brain_index], config.n_chunks)

    wm_signal = csf_signal = None
    if wm_mask is not None and csf_mask is not None:
        wm_signal = _tissue_mean(flat, wm_mask, spatial_shape)
        csf_signal = _tissue_mean(flat, csf_mask, spatial_shape)

    motion = None
    if motion_file is not None:
        if isinstance(motion_file, np.ndarray):
            motion = np.asarray(motion_file, dtype=float)
        else:
            motion = load_motion_parameters(motion_file)

    covariates = build_covariates(n_time, wm_signal, csf_signal, motion, config.motion_model)
    logger.info('Covariate regression with %d covariates', covariates.shape[1])
    regression = regress_covariates(flat[:, brain_index], covariates, add_mean_back=config.add_mean_back)
    flat[:, brain_index] = regression.residual
    qc['design_rank'] = float(regression.rank)

    if config.band is not None and len(config.band) > 0:
        tr = config.tr or vol.tr
        if tr is None:
            logger.warning('TR unknown; assuming %.1f s for filtering', DEFAULT_TR)
            tr = DEFAULT_TR
        flat[:, brain_index] = ideal_filter(flat[:, brain_index], tr, config.band, config.n_chunks)

    fd = None
    keep = None
    if motion is not None:
        fd = framewise_displacement(motion)
        qc['mean_FD'] = float(np.mean(fd))
    qc['n_scrubbed'] = 0.0
    if fd is not None and config.fd_threshold is not None:
        keep = fd_temporal_mask(fd, config.fd_threshold)
        if not keep.all():
            qc['n_scrubbed'] = float(np.sum(~keep))
            brain_series = scrub(flat[:, brain_index], keep, 'cut')
        else:
            brain_series = flat[:, brain_index]
    else:
        brain_series = flat[:, brain_index]

    data = unmask(brain_series, brain_index, spatial_shape)
    return DenoiseResult(
        data=data,
        affine=vol.affine,
        header=vol.header,
        temporal_mask=keep,
        fd=fd,
        qc_metrics=qc,
    )


def denoise_file(
    func_path: PathLike,
    mask_path: PathLike,
    save_dir: PathLike,
    config: Optional[DenoiseConfig] = None,
    motion_file: Optional[PathLike] = None,
    wm_mask: Optional[PathLike] = None,
    csf_mask: Optional[PathLike] = None,
    output_name: str = 'denoised_rest.nii',
) -> str:
    """Denoise ``func_path`` and write the result into ``save_dir``.

    Returns
    -------
    str
        Path of the written image.
    """
    result = denoise(func_path, mask_path, config, motion_file, wm_mask, csf_mask)
    os.makedirs(save_dir, exist_ok=True)
    out_path = os.path.join(os.fspath(save_dir), output_name)
    save_volume(result.data, result.affine, out_path, result.header)
    logger.info('Denoised image written to %s (QC %s)', out_path, result.qc_metrics)
    return out_path


__all__ = [
    'DEFAULT_TR',
    'DenoiseConfig',
    'DenoiseResult',
    'denoise',
    'denoise_file',
]
