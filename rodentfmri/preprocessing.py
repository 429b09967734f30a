"""
rodentfmri.preprocessing
========================

File based preprocessing of rodent resting-state runs.

Each step takes the path of an image and returns the path of the image
it produced, following the filename prefix convention of SPM:

====================  ======  ============================================
Step                  Prefix  Tool
====================  ======  ============================================
VoxelScalingStep      ``s``   native (affine x 10)
SliceTimingStep       ``a``   SPM through MATLAB/Octave
RealignStep           ``r``   SPM through MATLAB/Octave (``rp_*.txt``)
ApplyMaskStep         suffix  ``fslmaths -mul`` (``_inmask.nii.gz``)
RegistrationStep      ``w``   ``antsRegistrationSyN.sh``/``antsApplyTransforms``
SmoothingStep         ``s``   native Gaussian, FWHM in mm
====================  ======  ============================================

Rodent brains are roughly ten times smaller than human brains, so the
voxel size is scaled by ten before any of the external tools run; their
default kernels and search ranges then behave as on human data.  The
tissue masks used by :class:`ApplyMaskStep` are drawn by hand on the
scaled anatomical image and on the mean realigned functional image, so
the pipeline is run in two phases (:meth:`PreprocessPipeline.scale_and_realign`
and :meth:`PreprocessPipeline.mask_register_smooth`).
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter

from .exceptions import ValidationError
from .externaltools import run_command, run_matlab
from .io import load_volume, save_volume, scale_voxel_size
from .metrics.maps import FWHM_TO_SIGMA
from .motion import load_motion_parameters, summarize_motion


logger = logging.getLogger(__name__)


def prefixed(path: str, prefix: str) -> str:
    """``dir/name`` -> ``dir/<prefix>name``."""
    directory, fname = os.path.split(os.fspath(path))
    return os.path.join(directory, prefix + fname)


def image_stem(path: str) -> str:
    """File name without the ``.nii``/``.nii.gz``/``.img`` extension."""
    fname = os.path.basename(os.fspath(path))
    for ext in ('.nii.gz', '.nii', '.img'):
        if fname.lower().endswith(ext):
            return fname[: -len(ext)]
    return fname


def _matlab_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _scan_list(path: str) -> str:
    # every volume of a 4D file as SPM "file,index" entries
    directory, fname = os.path.split(os.path.abspath(path))
    pattern = '^' + fname.replace('.', '\\.') + '$'
    return f"cellstr(spm_select('ExtFPList', {_matlab_string(directory)}, {_matlab_string(pattern)}, Inf))"


class ProcessingStep(ABC):
    """Abstract base class for a preprocessing step.

    A step reads the image at ``in_path`` and writes a new image next to
    it.  ``meta`` carries auxiliary inputs (masks, anatomical images)
    and receives auxiliary outputs (motion files, transforms).
    """

    @abstractmethod
    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Execute the step and return the output path and updated metadata."""
        raise NotImplementedError


# -----------------------------------------------------------------------------
# Config dataclasses

@dataclass
class VoxelScalingConfig:
    factor: float = 10.0
    prefix: str = 's'


@dataclass
class SliceTimingConfig:
    """SPM slice timing.  ``slice_order`` and ``ref_slice`` are 1-based."""

    n_slices: int = 25
    tr: float = 2.0
    slice_order: Optional[List[int]] = None
    ref_slice: int = 25
    prefix: str = 'a'

    def resolved_order(self) -> List[int]:
        # interleaved odd then even by default
        if self.slice_order:
            return list(self.slice_order)
        return list(range(1, self.n_slices + 1, 2)) + list(range(2, self.n_slices + 1, 2))


@dataclass
class RealignConfig:
    quality: float = 0.9
    separation: float = 4.0
    fwhm: float = 5.0
    register_to_mean: bool = True
    prefix: str = 'r'


@dataclass
class ApplyMaskConfig:
    suffix: str = '_inmask'


@dataclass
class RegistrationConfig:
    """ANTs registration: rigid func -> anat, SyN anat -> template."""

    template: Optional[str] = None
    n_threads: int = 8
    interpolation: str = 'Linear'
    prefix: str = 'w'


@dataclass
class SmoothingConfig:
    fwhm: Sequence[float] = (4.0, 4.0, 4.0)
    prefix: str = 's'


@dataclass
class PreprocessConfig:
    """Configuration of the full preprocessing chain."""

    scaling: VoxelScalingConfig = field(default_factory=VoxelScalingConfig)
    slice_timing: SliceTimingConfig = field(default_factory=SliceTimingConfig)
    realign: RealignConfig = field(default_factory=RealignConfig)
    masking: ApplyMaskConfig = field(default_factory=ApplyMaskConfig)
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)

    def validate(self) -> None:
        if self.scaling.factor <= 0:
            raise ValidationError("Voxel scaling factor must be positive")
        st = self.slice_timing
        if st.tr <= 0 or st.n_slices < 1:
            raise ValidationError("Slice timing needs a positive TR and number of slices")
        order = st.resolved_order()
        if sorted(order) != list(range(1, st.n_slices + 1)):
            raise ValidationError("slice_order must be a permutation of 1..n_slices")
        if not 1 <= st.ref_slice <= st.n_slices:
            raise ValidationError("ref_slice must be between 1 and n_slices")
        if any(f < 0 for f in np.broadcast_to(np.asarray(self.smoothing.fwhm, dtype=float), (3,))):
            raise ValidationError("Smoothing FWHM must be non-negative")


# -----------------------------------------------------------------------------
# Steps

class VoxelScalingStep(ProcessingStep):
    """Copy the image and multiply its voxel size by ``factor``."""

    def __init__(self, config: VoxelScalingConfig) -> None:
        self.config = config

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        out_path = prefixed(in_path, self.config.prefix)
        shutil.copyfile(in_path, out_path)
        scale_voxel_size(out_path, self.config.factor)
        return out_path, meta


class SliceTimingStep(ProcessingStep):
    """Correct slice acquisition time differences with SPM."""

    def __init__(self, config: SliceTimingConfig) -> None:
        self.config = config

    def batch(self, in_path: str) -> str:
        cfg = self.config
        order = ' '.join(str(s) for s in cfg.resolved_order())
        ta = cfg.tr - cfg.tr / cfg.n_slices
        return (
            "spm('defaults','fmri'); spm_jobman('initcfg'); "
            f"matlabbatch{{1}}.spm.temporal.st.scans = {{{_scan_list(in_path)}}}; "
            f"matlabbatch{{1}}.spm.temporal.st.nslices = {cfg.n_slices}; "
            f"matlabbatch{{1}}.spm.temporal.st.tr = {cfg.tr:g}; "
            f"matlabbatch{{1}}.spm.temporal.st.ta = {ta:.10g}; "
            f"matlabbatch{{1}}.spm.temporal.st.so = [{order}]; "
            f"matlabbatch{{1}}.spm.temporal.st.refslice = {cfg.ref_slice}; "
            f"matlabbatch{{1}}.spm.temporal.st.prefix = {_matlab_string(cfg.prefix)}; "
            "spm_jobman('run', matlabbatch);"
        )

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        run_matlab(self.batch(in_path), name='SPM slice timing')
        return prefixed(in_path, self.config.prefix), meta


class RealignStep(ProcessingStep):
    """Estimate and reslice head motion with SPM.

    Adds ``motion_file`` (``rp_<stem>.txt``), ``mean_image`` and the
    :class:`~rodentfmri.motion.MotionSummary` to ``meta``.
    """

    def __init__(self, config: RealignConfig) -> None:
        self.config = config

    def batch(self, in_path: str) -> str:
        cfg = self.config
        root = "matlabbatch{1}.spm.spatial.realign.estwrite"
        return (
            "spm('defaults','fmri'); spm_jobman('initcfg'); "
            f"{root}.data = {{{_scan_list(in_path)}}}; "
            f"{root}.eoptions.quality = {cfg.quality:g}; "
            f"{root}.eoptions.sep = {cfg.separation:g}; "
            f"{root}.eoptions.fwhm = {cfg.fwhm:g}; "
            f"{root}.eoptions.rtm = {int(cfg.register_to_mean)}; "
            f"{root}.eoptions.interp = 2; "
            f"{root}.eoptions.wrap = [0 0 0]; "
            f"{root}.eoptions.weight = ''; "
            f"{root}.roptions.which = [2 1]; "
            f"{root}.roptions.interp = 4; "
            f"{root}.roptions.wrap = [0 0 0]; "
            f"{root}.roptions.mask = 1; "
            f"{root}.roptions.prefix = {_matlab_string(cfg.prefix)}; "
            "spm_jobman('run', matlabbatch);"
        )

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        run_matlab(self.batch(in_path), name='SPM realign')
        directory = os.path.dirname(os.fspath(in_path))
        motion_file = os.path.join(directory, f'rp_{image_stem(in_path)}.txt')
        meta['motion_file'] = motion_file
        meta['mean_image'] = prefixed(in_path, 'mean')
        if os.path.exists(motion_file):
            summary = summarize_motion(load_motion_parameters(motion_file))
            meta['motion_summary'] = summary
            logger.info('Maximum head motion %.3f (translation mm / rotation deg)', summary.max_motion)
        else:
            logger.warning('Realignment parameters %s were not written', motion_file)
        return prefixed(in_path, self.config.prefix), meta


class ApplyMaskStep(ProcessingStep):
    """Multiply an image by the mask in ``meta['mask']`` with ``fslmaths``."""

    def __init__(self, config: ApplyMaskConfig) -> None:
        self.config = config

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        mask = meta.get('mask')
        if not mask:
            raise ValidationError("ApplyMaskStep needs meta['mask']")
        if not os.path.exists(mask):
            raise FileNotFoundError(f"Mask does not exist: {mask}")
        directory = os.path.dirname(os.fspath(in_path))
        out_path = os.path.join(directory, f'{image_stem(in_path)}{self.config.suffix}.nii.gz')
        run_command(['fslmaths', in_path, '-mul', mask, out_path], name='fslmaths')
        return out_path, meta


class RegistrationStep(ProcessingStep):
    """Warp a functional run to the template with ANTs.

    ``meta`` must hold ``anat`` (masked anatomical image) and
    ``mean_func`` (masked mean functional image).  Transforms are
    written with the ``f2a_`` prefix next to the functional data and the
    ``a2t_`` prefix next to the anatomical image.
    """

    def __init__(self, config: RegistrationConfig) -> None:
        self.config = config

    def transform_prefixes(self, in_path: str, anat: str) -> Tuple[str, str]:
        return (
            os.path.join(os.path.dirname(os.fspath(in_path)), 'f2a_'),
            os.path.join(os.path.dirname(os.fspath(anat)), 'a2t_'),
        )

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        template = self.config.template
        if not template:
            raise ValidationError("RegistrationStep needs a template image")
        anat = meta.get('anat')
        mean_func = meta.get('mean_func')
        if not anat or not mean_func:
            raise ValidationError("RegistrationStep needs meta['anat'] and meta['mean_func']")
        f2a, a2t = self.transform_prefixes(in_path, anat)
        run_command(
            ['antsRegistrationSyN.sh', '-d', '3', '-f', anat, '-m', mean_func, '-t', 'r', '-o', f2a],
            name='antsRegistrationSyN (func to anat)',
        )
        run_command(
            ['antsRegistrationSyN.sh', '-d', '3', '-f', template, '-m', anat, '-o', a2t,
             '-n', str(self.config.n_threads)],
            name='antsRegistrationSyN (anat to template)',
        )
        out_path = os.path.join(
            os.path.dirname(os.fspath(in_path)), f'{self.config.prefix}{image_stem(in_path)}.nii'
        )
        transforms = [f'{a2t}1Warp.nii.gz', f'{a2t}0GenericAffine.mat', f'{f2a}0GenericAffine.mat']
        cmd = ['antsApplyTransforms', '-d', '3', '-e', '3', '-n', self.config.interpolation,
               '-i', in_path, '-o', out_path, '-r', template]
        for t in transforms:
            cmd += ['-t', t]
        run_command(cmd, name='antsApplyTransforms')
        meta['transforms'] = transforms
        return out_path, meta


class SmoothingStep(ProcessingStep):
    """Apply spatial Gaussian smoothing with an FWHM given in mm."""

    def __init__(self, config: SmoothingConfig) -> None:
        self.config = config

    def sigma(self, voxel_size: Sequence[float]) -> np.ndarray:
        fwhm = np.broadcast_to(np.asarray(self.config.fwhm, dtype=float), (3,))
        return fwhm / np.asarray(voxel_size, dtype=float)[:3] / FWHM_TO_SIGMA

    def run(self, in_path: str, meta: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        vol = load_volume(in_path)
        sigma = self.sigma(vol.voxel_size)
        data = vol.data if vol.data.ndim == 4 else vol.data[..., np.newaxis]
        smoothed = np.empty_like(data)
        for t in range(data.shape[-1]):
            smoothed[..., t] = gaussian_filter(data[..., t], sigma=sigma, mode='constant', cval=0.0)
        if vol.data.ndim == 3:
            smoothed = smoothed[..., 0]
        out_path = os.path.join(
            os.path.dirname(os.fspath(in_path)), f'{self.config.prefix}{image_stem(in_path)}.nii'
        )
        save_volume(smoothed, vol.affine, out_path, vol.header)
        return out_path, meta


# -----------------------------------------------------------------------------
# Pipeline

class PreprocessPipeline:
    """Chain the preprocessing steps for one subject."""

    def __init__(self, config: PreprocessConfig) -> None:
        config.validate()
        self.config = config
        self.scaling = VoxelScalingStep(config.scaling)
        self.slice_timing = SliceTimingStep(config.slice_timing)
        self.realign = RealignStep(config.realign)
        self.masking = ApplyMaskStep(config.masking)
        self.registration = RegistrationStep(config.registration)
        self.smoothing = SmoothingStep(config.smoothing)

    def scale_and_realign(self, func_path: str, anat_path: str) -> Dict[str, Any]:
        """Scale both images, then slice-time and realign the functional run.

        Returns a dict with ``anat`` (scaled anatomical), ``func``
        (realigned run), ``mean_func``, ``motion_file`` and, when the
        motion file was found, ``motion_summary``.
        """
        meta: Dict[str, Any] = {}
        anat, _ = self.scaling.run(anat_path, meta)
        func, _ = self.scaling.run(func_path, meta)
        func, meta = self.slice_timing.run(func, meta)
        func, meta = self.realign.run(func, meta)
        return {
            'anat': anat,
            'func': func,
            'mean_func': meta['mean_image'],
            'motion_file': meta['motion_file'],
            'motion_summary': meta.get('motion_summary'),
        }

    def mask_register_smooth(
        self,
        func_path: str,
        mean_func_path: str,
        anat_path: str,
        func_mask: str,
        anat_mask: str,
    ) -> Dict[str, str]:
        """Skull-strip with the drawn masks, warp to the template and smooth.

        Returns the paths of the warped (``func_normalized``) and the
        smoothed (``func_smoothed``) runs.
        """
        anat, _ = self.masking.run(anat_path, {'mask': anat_mask})
        mean_func, _ = self.masking.run(mean_func_path, {'mask': func_mask})
        func, _ = self.masking.run(func_path, {'mask': func_mask})
        warped, _ = self.registration.run(func, {'anat': anat, 'mean_func': mean_func})
        smoothed, _ = self.smoothing.run(warped, {})
        logger.info('Preprocessed %s -> %s', func_path, smoothed)
        return {'func_normalized': warped, 'func_smoothed': smoothed}


__all__ = [
    'prefixed',
    'image_stem',
    'ProcessingStep',
    'VoxelScalingConfig',
    'SliceTimingConfig',
    'RealignConfig',
    'ApplyMaskConfig',
    'RegistrationConfig',
    'SmoothingConfig',
    'PreprocessConfig',
    'VoxelScalingStep',
    'SliceTimingStep',
    'RealignStep',
    'ApplyMaskStep',
    'RegistrationStep',
    'SmoothingStep',
    'PreprocessPipeline',
]
