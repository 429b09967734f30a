"""
rodentfmri.connectivity
=======================

Functional connectivity between seeds, ROIs and voxels.

Modules
-------

correlation
    Pearson correlation with a zero-variance guard, the Fisher r-to-z
    transform and the :class:`ConnectivityMatrix` dataclass.

roi
    ROI definitions (mask, series, sphere, file) and their resolution
    into masks or seed series.

seed
    Seed-based correlation maps (:func:`run_sca`, :func:`voxel_fc`).

roifc
    ROI x ROI matrices from an atlas or a set of seed masks.

edges
    Significant edge listing from group-level p/t matrices.
"""

from .correlation import ConnectivityMatrix, compute_roi_connectivity, fisher_z, pearson_columns
from .roi import (
    FilePath,
    MaskVolume,
    ROIDefinition,
    SeriesVector,
    SphereSpec,
    parse_roi_definition,
    resolve_roi,
    sphere_mask,
)
from .seed import SCAConfig, SCAResult, run_sca, seed_correlation, voxel_fc
from .roifc import roi_fc, roi_fc_from_masks, save_connectivity
from .edges import find_component_edges, find_gretna_edges, find_significant_edges

__all__ = [
    'ConnectivityMatrix',
    'compute_roi_connectivity',
    'fisher_z',
    'pearson_columns',
    'FilePath',
    'MaskVolume',
    'ROIDefinition',
    'SeriesVector',
    'SphereSpec',
    'parse_roi_definition',
    'resolve_roi',
    'sphere_mask',
    'SCAConfig',
    'SCAResult',
    'run_sca',
    'seed_correlation',
    'voxel_fc',
    'roi_fc',
    'roi_fc_from_masks',
    'save_connectivity',
    'find_component_edges',
    'find_gretna_edges',
    'find_significant_edges',
]
