"""
rodentfmri.connectivity.seed
============================

Seed-based correlation analysis (SCA).

Every in-mask voxel time course is correlated with one or more seed
time courses.  Seeds are described by ROI definitions (see
:mod:`rodentfmri.connectivity.roi`); mask seeds are averaged over the
voxels they share with the brain mask.  The brain data can optionally
be scrubbed, detrended and band-pass filtered before the seeds are
extracted.

:func:`run_sca` writes the seed series (``ROI_<name>.mat``/``.txt``),
the ROI order key and one r map plus one Fisher z map per seed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import DimensionMismatchError, ValidationError
from ..filtering import DEFAULT_CHUNKS, detrend, ideal_filter, validate_band
from ..io import PathLike, Volume, load_mask, load_volume, save_matrix_mat, save_matrix_txt, save_volume, write_order_key
from ..scrubbing import ScrubbingMethod, ScrubbingTiming, scrub
from ..timeseries import mask_labels, masked_matrix, unmask
from .correlation import fisher_z, pearson_columns
from .roi import parse_roi_definition, resolve_roi


logger = logging.getLogger(__name__)


@dataclass
class SCAConfig:
    """Options for seed-based correlation.

    Parameters
    ----------
    multiple_label : bool
        Treat every label of a mask (or every column of a text series)
        as a separate seed.
    detrend : bool
        Linearly detrend in-mask voxels before extracting seeds.
    band : (float, float) | None
        Band-pass range in Hz; ``None`` skips filtering.
    tr : float | None
        Repetition time; ``None`` reads it from the header (2 s if absent).
    temporal_mask : array_like | None
        Keep-mask over volumes used for scrubbing.
    scrubbing_method : str
        One of ``cut``, ``nearest``, ``linear``, ``spline``, ``pchip``.
    scrubbing_timing : str
        ``before_filtering`` or ``after_filtering``.
    n_chunks : int
        Column segments used for detrending and filtering.
    """

    multiple_label: bool = False
    detrend: bool = False
    band: Optional[Tuple[float, float]] = None
    tr: Optional[float] = None
    temporal_mask: Optional[Sequence[bool]] = None
    scrubbing_method: str = 'cut'
    scrubbing_timing: str = 'before_filtering'
    n_chunks: int = DEFAULT_CHUNKS

    def validate(self) -> None:
        ScrubbingMethod.parse(self.scrubbing_method)
        ScrubbingTiming.parse(self.scrubbing_timing)
        if self.tr is not None and self.tr <= 0:
            raise ValidationError("tr must be positive")
        if self.band is not None and len(self.band) > 0:
            validate_band(self.band, self.tr or 2.0)
        if self.n_chunks < 1:
            raise ValidationError("n_chunks must be a positive integer")


@dataclass
class SCAResult:
    """Per-seed connectivity maps for one run.

    Attributes
    ----------
    fc_maps : np.ndarray
        (n_seeds, X, Y, Z) Pearson r; zero outside the brain mask.
    z_maps : np.ndarray
        Fisher z of ``fc_maps``, multiplied by the brain mask.
    seed_series : np.ndarray
        (T', n_seeds) seed time courses after preprocessing.
    order_key : list of dict
        One row per seed: ``Order``, ``ROI Definition`` and, for
        multi-label extraction, ``Label in Mask``.
    affine, header
        Spatial metadata of the input run.
    outputs : list of str
        Files written by :func:`run_sca`.
    """

    fc_maps: np.ndarray
    z_maps: np.ndarray
    seed_series: np.ndarray
    order_key: List[Dict[str, Any]]
    affine: np.ndarray
    header: Optional[Any] = None
    outputs: List[str] = field(default_factory=list)

    @property
    def n_seeds(self) -> int:
        return self.fc_maps.shape[0]


def _label_text(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f'{value:g}'


def _temporal_filter(matrix: np.ndarray, config: SCAConfig, tr: float) -> np.ndarray:
    if config.detrend:
        matrix = detrend(matrix, config.n_chunks)
    if config.band is not None and len(config.band) > 0:
        matrix = ideal_filter(matrix, tr, config.band, config.n_chunks)
    return matrix


def seed_correlation(
    volume: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    roi_definitions: Sequence[Any],
    brain_mask: Optional[Union[PathLike, np.ndarray]] = None,
    config: Optional[SCAConfig] = None,
) -> SCAResult:
    """Correlate every brain voxel with each seed.

    Parameters
    ----------
    volume : path, list of paths, array or Volume
        4D functional run.
    roi_definitions : sequence
        Raw or parsed ROI definitions, one per seed group.
    brain_mask : path or array, optional
        Voxels to analyse; the whole volume when omitted.
    config : SCAConfig, optional

    Returns
    -------
    SCAResult
    """
    config = config or SCAConfig()
    config.validate()
    if len(roi_definitions) == 0:
        raise ValidationError("At least one ROI definition is required")
    vol = load_volume(volume)
    if vol.data.ndim != 4:
        raise ValidationError("Seed correlation requires a 4D functional run")
    spatial_shape = vol.spatial_shape
    if brain_mask is None:
        brain = np.ones(spatial_shape)
    else:
        brain = load_mask(brain_mask, spatial_shape)
    brain = (np.nan_to_num(brain) != 0).astype(float)
    matrix, index = masked_matrix(vol.data, brain)
    logger.info('Seed correlation over %d voxels, %d volumes', index.size, matrix.shape[0])

    timing = ScrubbingTiming.parse(config.scrubbing_timing)
    keep = None
    if config.temporal_mask is not None:
        keep = np.asarray(config.temporal_mask).ravel().astype(bool)
    if keep is not None and timing is ScrubbingTiming.BEFORE_FILTERING:
        matrix = scrub(matrix, keep, config.scrubbing_method)

    tr = config.tr or vol.tr or 2.0
    matrix = _temporal_filter(matrix, config, tr)

    if keep is not None and timing is ScrubbingTiming.AFTER_FILTERING:
        matrix = scrub(matrix, keep, config.scrubbing_method)

    n_time = matrix.shape[0]
    blocks: List[np.ndarray] = []
    order_key: List[Dict[str, Any]] = []
    for i, raw in enumerate(roi_definitions, start=1):
        definition = parse_roi_definition(raw, spatial_shape, n_time)
        resolved = resolve_roi(definition, spatial_shape, vol.affine, i, config.multiple_label)
        labels: Optional[List[str]] = None
        if resolved.series is not None:
            series = resolved.series
            if series.shape[0] != n_time:
                raise DimensionMismatchError(
                    f"Seed series {resolved.name} has {series.shape[0]} time points, expected {n_time}"
                )
            labels = resolved.column_labels
        else:
            roi_in_brain = np.nan_to_num(resolved.mask).reshape(-1)[index]
            if config.multiple_label:
                values = mask_labels(roi_in_brain)
                if values.size == 0:
                    raise ValidationError(f"ROI {resolved.name} has no voxels inside the brain mask")
                series = np.column_stack([matrix[:, roi_in_brain == v].mean(axis=1) for v in values])
                labels = [_label_text(v) for v in values]
            else:
                selected = roi_in_brain != 0
                if not selected.any():
                    raise ValidationError(f"ROI {resolved.name} has no voxels inside the brain mask")
                series = matrix[:, selected].mean(axis=1, keepdims=True)
        blocks.append(series)
        if config.multiple_label and labels:
            for lbl in labels:
                order_key.append({'Order': len(order_key) + 1, 'Label in Mask': lbl, 'ROI Definition': resolved.name})
        elif config.multiple_label:
            order_key.append({'Order': len(order_key) + 1, 'Label in Mask': '', 'ROI Definition': resolved.name})
        else:
            order_key.append({'Order': i, 'ROI Definition': resolved.name})
        logger.debug('Seed %d (%s): %d column(s)', i, resolved.name, series.shape[1])

    seed_series = np.hstack(blocks)
    fc = pearson_columns(seed_series, matrix)
    fc_maps = np.stack([unmask(row, index, spatial_shape) for row in fc])
    z_maps = fisher_z(fc_maps) * brain[np.newaxis]
    return SCAResult(
        fc_maps=fc_maps,
        z_maps=z_maps,
        seed_series=seed_series,
        order_key=order_key,
        affine=vol.affine,
        header=vol.header,
    )


def _split_output(path: str) -> Tuple[str, str, str]:
    directory, fname = os.path.split(path)
    if fname.lower().endswith('.nii.gz'):
        return directory, fname[:-7], fname[-7:]
    stem, ext = os.path.splitext(fname)
    return directory, stem, ext or '.nii'


def run_sca(
    func_source: Union[PathLike, Sequence[PathLike], np.ndarray, Volume],
    roi_definitions: Sequence[Any],
    output_path: PathLike,
    brain_mask: Optional[Union[PathLike, np.ndarray]] = None,
    config: Optional[SCAConfig] = None,
) -> SCAResult:
    """Run :func:`seed_correlation` and write the result files.

    For ``output_path = dir/name.nii`` the files are ``ROI_name.mat``,
    ``ROI_name.txt``, ``ROI_OrderKey_name.tsv`` and either
    ``name.nii``/``zname.nii`` (one seed) or ``ROI<i>name.nii``/
    ``zROI<i>name.nii`` (several seeds).
    """
    config = config or SCAConfig()
    result = seed_correlation(func_source, roi_definitions, brain_mask, config)
    directory, name, ext = _split_output(os.fspath(output_path))
    if directory:
        os.makedirs(directory, exist_ok=True)
    outputs = [
        save_matrix_mat(result.seed_series, os.path.join(directory, f'ROI_{name}.mat'), 'SeedSeries'),
        save_matrix_txt(result.seed_series, os.path.join(directory, f'ROI_{name}.txt'), double=True, delimiter='\t'),
        write_order_key(result.order_key, os.path.join(directory, f'ROI_OrderKey_{name}.tsv'), config.multiple_label),
    ]
    if result.n_seeds == 1:
        outputs.append(save_volume(result.fc_maps[0], result.affine, os.path.join(directory, f'{name}{ext}'), result.header))
        outputs.append(save_volume(result.z_maps[0], result.affine, os.path.join(directory, f'z{name}{ext}'), result.header))
    else:
        for i in range(result.n_seeds):
            outputs.append(save_volume(
                result.fc_maps[i], result.affine, os.path.join(directory, f'ROI{i + 1}{name}{ext}'), result.header
            ))
            outputs.append(save_volume(
                result.z_maps[i], result.affine, os.path.join(directory, f'zROI{i + 1}{name}{ext}'), result.header
            ))
    result.outputs = outputs
    logger.info('Seed correlation maps written for %d seed(s) to %s', result.n_seeds, directory or '.')
    return result


def voxel_fc(
    func_path: PathLike,
    brain_mask_path: PathLike,
    seed_mask_path: PathLike,
    save_dir: PathLike,
    config: Optional[SCAConfig] = None,
) -> SCAResult:
    """Whole-brain FC of one seed mask, written as ``FCBrain.nii`` in ``save_dir``."""
    os.makedirs(save_dir, exist_ok=True)
    output = os.path.join(os.fspath(save_dir), 'FCBrain.nii')
    return run_sca(func_path, [os.fspath(seed_mask_path)], output, brain_mask_path, config)


__all__ = [
    'SCAConfig',
    'SCAResult',
    'seed_correlation',
    'run_sca',
    'voxel_fc',
]
