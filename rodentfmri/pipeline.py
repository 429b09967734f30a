"""
rodentfmri.pipeline
===================

Cohort orchestration.

A run is described by a :class:`PipelineConfig` (usually loaded from a
JSON file) and consists of named stages applied to every subject folder
of the dataset.  Each stage is a plain function of the subject folder
and the configuration that returns the files it wrote.  Subjects are
processed independently: a subject whose stage raises a pipeline error,
an ``OSError`` or a ``ValueError`` is recorded as failed and the cohort
carries on with the next subject.

Stages, in their natural order:

``scale_realign``
    Voxel scaling of ``rest.nii``/``T2.nii``, SPM slice timing and
    realignment.
``register``
    Masking with the drawn ``sT2_mask.nii``/``meanasrest_mask.nii``,
    ANTs registration to the template and smoothing.
``denoise``
    The three denoised variants (``FunImgARWSDC``, ``FunImgARWDCF``,
    ``FunImgARWSDCF``).
``alff``, ``reho``, ``roifc``, ``voxelfc``
    Metrics computed from the denoised variants.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .connectivity import roi_fc, roi_fc_from_masks, voxel_fc
from .data_management import ANAT_DIR, REST_DIR, DatasetIndex, SubjectDir, list_seed_masks
from .denoising import DenoiseConfig, denoise_file
from .exceptions import RodentFMRIError, ValidationError
from .filtering import validate_band
from .metrics import alff_file, reho_file
from .motion import MotionModel, load_motion_parameters, summarize_motion
from .preprocessing import (
    PreprocessConfig,
    PreprocessPipeline,
    RegistrationConfig,
    SliceTimingConfig,
    SmoothingConfig,
    image_stem,
)


logger = logging.getLogger(__name__)

RAW_FUNC = 'rest.nii'
RAW_ANAT = 'T2.nii'
MOTION_FILE = 'rp_asrest.txt'
FUNC_MASK = 'meanasrest_mask.nii'
ANAT_MASK = 'sT2_mask.nii'
NORMALIZED_FUNC = 'wrasrest_inmask.nii'
SMOOTHED_FUNC = 'swrasrest_inmask.nii'

DEFAULT_STAGES = ('scale_realign', 'register', 'denoise', 'alff', 'reho', 'roifc', 'voxelfc')


@dataclass(frozen=True)
class DenoiseVariant:
    """One denoised copy of the preprocessed run and the metrics it feeds."""

    folder: str
    source: str
    output: str
    filtered: bool


DENOISE_VARIANTS = (
    # smoothed, unfiltered: ALFF/fALFF
    DenoiseVariant('FunImgARWSDC', SMOOTHED_FUNC, 'cdswrasrest.nii', filtered=False),
    # unsmoothed, filtered: ReHo and ROI-wise FC
    DenoiseVariant('FunImgARWDCF', NORMALIZED_FUNC, 'fcdwrasrest.nii', filtered=True),
    # smoothed, filtered: voxel-wise FC
    DenoiseVariant('FunImgARWSDCF', SMOOTHED_FUNC, 'fcdswrasrest.nii', filtered=True),
)


@dataclass
class PipelineConfig:
    """Settings of a cohort run.

    Paths to the template images are required by the stages that use
    them; ``validate`` only checks what every stage needs.
    """

    root: str = '.'
    subject_pattern: str = 'sub*'
    subjects: Optional[List[str]] = None
    stages: List[str] = field(default_factory=lambda: list(DEFAULT_STAGES))
    template: Optional[str] = None
    brain_mask: Optional[str] = None
    wm_mask: Optional[str] = None
    csf_mask: Optional[str] = None
    roi_dir: Optional[str] = None
    atlas: Optional[str] = None
    tr: float = 2.0
    band: Tuple[float, float] = (0.01, 0.08)
    motion_model: int = 4
    add_mean_back: bool = True
    detrend: bool = True
    fd_threshold: Optional[float] = None
    n_slices: int = 25
    slice_order: Optional[List[int]] = None
    ref_slice: int = 25
    n_threads: int = 8
    smoothing_fwhm: Tuple[float, float, float] = (4.0, 4.0, 4.0)
    reho_cluster_size: int = 27
    reho_fwhm: Optional[Tuple[float, float, float]] = (3.0, 3.0, 3.0)

    def validate(self) -> None:
        unknown = [s for s in self.stages if s not in STAGES]
        if unknown:
            raise ValidationError(f"Unknown stage(s): {', '.join(unknown)}")
        if self.tr <= 0:
            raise ValidationError("tr must be positive")
        validate_band(self.band, self.tr)
        MotionModel.parse(self.motion_model)

    @classmethod
    def from_json(cls, path: str) -> 'PipelineConfig':
        """Load a configuration file; relative paths are taken relative to it."""
        with open(path, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Malformed configuration file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"Configuration file {path} must hold a JSON object")
        known = {f.name for f in fields(cls)}
        extra = sorted(set(data) - known)
        if extra:
            raise ValidationError(f"Unknown configuration keys: {', '.join(extra)}")
        base = os.path.dirname(os.path.abspath(path))
        for key in ('root', 'template', 'brain_mask', 'wm_mask', 'csf_mask', 'roi_dir', 'atlas'):
            if data.get(key):
                data[key] = os.path.join(base, data[key])
        for key in ('band', 'smoothing_fwhm', 'reho_fwhm'):
            if data.get(key) is not None:
                data[key] = tuple(data[key])
        config = cls(**data)
        config.validate()
        return config

    def to_json(self, path: Optional[str] = None) -> str:
        text = json.dumps(asdict(self), indent=2)
        if path is not None:
            with open(path, 'w') as f:
                f.write(text)
        return text

    def denoise_config(self, filtered: bool) -> DenoiseConfig:
        return DenoiseConfig(
            tr=self.tr,
            band=self.band if filtered else None,
            motion_model=MotionModel.parse(self.motion_model),
            add_mean_back=self.add_mean_back,
            detrend=self.detrend,
            fd_threshold=self.fd_threshold,
        )

    def preprocess_config(self) -> PreprocessConfig:
        return PreprocessConfig(
            slice_timing=SliceTimingConfig(
                n_slices=self.n_slices, tr=self.tr, slice_order=self.slice_order, ref_slice=self.ref_slice
            ),
            registration=RegistrationConfig(template=self.template, n_threads=self.n_threads),
            smoothing=SmoothingConfig(fwhm=self.smoothing_fwhm),
        )


@dataclass
class SubjectResult:
    """Outcome of one subject: written files, scalar metrics or the error."""

    subject: str
    success: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None
    failed_stage: Optional[str] = None


@dataclass
class CohortReport:
    results: List[SubjectResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [r.subject for r in self.results if r.success]

    @property
    def failed(self) -> List[str]:
        return [r.subject for r in self.results if not r.success]

    def to_frame(self) -> pd.DataFrame:
        """One row per subject with status, failing stage, error and metrics."""
        rows = []
        for r in self.results:
            row: Dict[str, Any] = {
                'subject': r.subject,
                'success': r.success,
                'failed_stage': r.failed_stage or '',
                'error': r.error or '',
                'n_outputs': len(r.outputs),
            }
            row.update(r.metrics)
            rows.append(row)
        return pd.DataFrame(rows)

    def save(self, path: str) -> str:
        self.to_frame().to_csv(path, sep='\t', index=False)
        return path


def _require(path: Optional[str], what: str) -> str:
    if not path:
        raise ValidationError(f"{what} is not configured")
    if not os.path.exists(path):
        raise FileNotFoundError(f"{what} does not exist: {path}")
    return path


# -----------------------------------------------------------------------------
# Stages

def stage_scale_realign(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    pipeline = PreprocessPipeline(config.preprocess_config())
    paths = pipeline.scale_and_realign(
        _require(subject.path_for(REST_DIR, RAW_FUNC), 'Functional run'),
        _require(subject.path_for(ANAT_DIR, RAW_ANAT), 'Anatomical image'),
    )
    summary = paths.pop('motion_summary', None)
    out: Dict[str, Any] = {k: v for k, v in paths.items() if v}
    if summary is not None:
        out['max_motion'] = summary.max_motion
        out['mean_fd'] = summary.mean_fd
    return out


def stage_register(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    _require(config.template, 'Template image')
    pipeline = PreprocessPipeline(config.preprocess_config())
    return pipeline.mask_register_smooth(
        func_path=_require(subject.path_for(REST_DIR, 'rasrest.nii'), 'Realigned run'),
        mean_func_path=_require(subject.path_for(REST_DIR, 'meanasrest.nii'), 'Mean functional image'),
        anat_path=_require(subject.path_for(ANAT_DIR, 'sT2.nii'), 'Scaled anatomical image'),
        func_mask=_require(subject.path_for(REST_DIR, FUNC_MASK), 'Functional brain mask'),
        anat_mask=_require(subject.path_for(ANAT_DIR, ANAT_MASK), 'Anatomical brain mask'),
    )


def stage_denoise(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    brain_mask = _require(config.brain_mask, 'Brain mask')
    motion_file = _require(subject.path_for(REST_DIR, MOTION_FILE), 'Realignment parameters')
    wm = _require(config.wm_mask, 'WM mask') if config.wm_mask else None
    csf = _require(config.csf_mask, 'CSF mask') if config.csf_mask else None
    out: Dict[str, Any] = {}
    for variant in DENOISE_VARIANTS:
        out[variant.folder] = denoise_file(
            _require(subject.path_for(REST_DIR, variant.source), 'Preprocessed run'),
            brain_mask,
            subject.ensure_dir(variant.folder),
            config.denoise_config(variant.filtered),
            motion_file=motion_file,
            wm_mask=wm,
            csf_mask=csf,
            output_name=variant.output,
        )
    out['max_motion'] = summarize_motion(load_motion_parameters(motion_file)).max_motion
    return out


def _variant_path(subject: SubjectDir, folder: str) -> str:
    variant = next(v for v in DENOISE_VARIANTS if v.folder == folder)
    return _require(subject.path_for(variant.folder, variant.output), f'{folder} run')


def stage_alff(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    written = alff_file(
        _variant_path(subject, 'FunImgARWSDC'),
        _require(config.brain_mask, 'Brain mask'),
        subject.ensure_dir('ALFF'),
        tr=config.tr,
        band=config.band,
    )
    return {f'ALFF/{k}': v for k, v in written.items()}


def stage_reho(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    written = reho_file(
        _variant_path(subject, 'FunImgARWDCF'),
        _require(config.brain_mask, 'Brain mask'),
        subject.ensure_dir('ReHo'),
        cluster_size=config.reho_cluster_size,
        smooth_fwhm=config.reho_fwhm,
    )
    return {f'ReHo/{k}': v for k, v in written.items()}


def stage_roifc(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    func = _variant_path(subject, 'FunImgARWDCF')
    save_dir = subject.ensure_dir('ROIwiseFC')
    if config.atlas:
        roi_fc(func, _require(config.atlas, 'Atlas'), save_dir, prefix=subject.name)
    else:
        masks = list_seed_masks(_require(config.roi_dir, 'ROI folder'))
        roi_fc_from_masks(func, masks, save_dir, name=subject.name)
    return {
        'FC': os.path.join(save_dir, f'FC_{subject.name}.txt'),
        'zFC': os.path.join(save_dir, f'zFC_{subject.name}.txt'),
    }


def stage_voxelfc(subject: SubjectDir, config: PipelineConfig) -> Dict[str, Any]:
    func = _variant_path(subject, 'FunImgARWSDCF')
    brain_mask = _require(config.brain_mask, 'Brain mask')
    out: Dict[str, Any] = {}
    for seed in list_seed_masks(_require(config.roi_dir, 'ROI folder')):
        name = image_stem(seed)
        result = voxel_fc(func, brain_mask, seed, subject.ensure_dir(os.path.join('VoxelwiseFC', name)))
        for path in result.outputs:
            out[f'VoxelwiseFC/{name}/{os.path.basename(path)}'] = path
    return out


STAGES: Dict[str, Callable[[SubjectDir, PipelineConfig], Dict[str, Any]]] = {
    'scale_realign': stage_scale_realign,
    'register': stage_register,
    'denoise': stage_denoise,
    'alff': stage_alff,
    'reho': stage_reho,
    'roifc': stage_roifc,
    'voxelfc': stage_voxelfc,
}


def run_subject(subject: SubjectDir, config: PipelineConfig, stages: Sequence[str]) -> SubjectResult:
    """Run ``stages`` in order for one subject; stop at the first failure."""
    result = SubjectResult(subject=subject.name, success=True)
    for stage in stages:
        logger.info('%s: %s', subject.name, stage)
        try:
            produced = STAGES[stage](subject, config)
        except (RodentFMRIError, OSError, ValueError) as e:
            logger.error('%s failed at stage %s: %s', subject.name, stage, e)
            result.success = False
            result.error = f'{type(e).__name__}: {e}'
            result.failed_stage = stage
            return result
        for key, value in produced.items():
            if isinstance(value, str):
                result.outputs[key] = value
            else:
                result.metrics[key] = float(value)
    logger.info('%s done', subject.name)
    return result


def run_cohort(config: PipelineConfig, stages: Optional[Sequence[str]] = None) -> CohortReport:
    """Run the configured stages for every selected subject."""
    config.validate()
    stages = list(stages or config.stages)
    unknown = [s for s in stages if s not in STAGES]
    if unknown:
        raise ValidationError(f"Unknown stage(s): {', '.join(unknown)}")
    index = DatasetIndex(config.root, config.subject_pattern)
    missing = [s for s in (config.subjects or []) if s not in index.list_subjects()]
    if missing:
        raise ValidationError(f"Subject(s) not found under {config.root}: {', '.join(missing)}")
    report = CohortReport()
    for subject in index.select(config.subjects):
        report.results.append(run_subject(subject, config, stages))
    logger.info('Cohort finished: %d succeeded, %d failed', len(report.succeeded), len(report.failed))
    return report


__all__ = [
    'DEFAULT_STAGES',
    'DENOISE_VARIANTS',
    'DenoiseVariant',
    'PipelineConfig',
    'SubjectResult',
    'CohortReport',
    'STAGES',
    'run_subject',
    'run_cohort',
]
