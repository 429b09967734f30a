"""
rodentfmri
==========

Preprocessing and resting-state metrics for rodent fMRI.

The package turns raw functional and anatomical rodent scans into
denoised, template-registered runs and derives voxel-wise and ROI-wise
measures from them.  Image registration, slice timing and realignment
are delegated to ANTs, FSL and SPM; everything downstream of the
registered run (detrending, nuisance regression, band-pass filtering,
scrubbing, ALFF/fALFF, ReHo, seed and ROI connectivity) is computed
natively with numpy and scipy.

Subpackages and modules
-----------------------

io
    NIfTI and text artefact reading/writing.
timeseries, filtering, motion, scrubbing, nuisance, denoising
    The temporal preprocessing core.
connectivity
    Pearson/Fisher z connectivity, ROI definitions, seed maps and
    significant edge listing.
metrics
    ALFF/fALFF and ReHo maps.
preprocessing, externaltools
    File based steps wrapping the external tools.
data_management, pipeline, cli
    Dataset layout, cohort orchestration and the command line.
"""

__version__ = '0.1.0'

from .exceptions import (
    DimensionMismatchError,
    ExternalToolError,
    RodentFMRIError,
    ROIDefinitionError,
    ScrubbingError,
    ValidationError,
)
from .io import Volume, load_mask, load_volume, save_volume
from .timeseries import RoiTimeseries, extract_roi_timeseries
from .filtering import detrend, ideal_filter
from .motion import MotionModel, framewise_displacement
from .scrubbing import ScrubbingMethod, scrub
from .nuisance import build_covariates, regress_covariates
from .denoising import DenoiseConfig, DenoiseResult, denoise, denoise_file
from .connectivity import (
    ConnectivityMatrix,
    SCAConfig,
    SCAResult,
    compute_roi_connectivity,
    fisher_z,
    run_sca,
    seed_correlation,
)
from .metrics import alff_falff, reho
from .pipeline import CohortReport, PipelineConfig, SubjectResult, run_cohort

__all__ = [
    '__version__',
    'RodentFMRIError',
    'ValidationError',
    'DimensionMismatchError',
    'ROIDefinitionError',
    'ScrubbingError',
    'ExternalToolError',
    'Volume',
    'load_volume',
    'load_mask',
    'save_volume',
    'RoiTimeseries',
    'extract_roi_timeseries',
    'detrend',
    'ideal_filter',
    'MotionModel',
    'framewise_displacement',
    'ScrubbingMethod',
    'scrub',
    'build_covariates',
    'regress_covariates',
    'DenoiseConfig',
    'DenoiseResult',
    'denoise',
    'denoise_file',
    'ConnectivityMatrix',
    'SCAConfig',
    'SCAResult',
    'compute_roi_connectivity',
    'fisher_z',
    'run_sca',
    'seed_correlation',
    'alff_falff',
    'reho',
    'CohortReport',
    'PipelineConfig',
    'SubjectResult',
    'run_cohort',
]
