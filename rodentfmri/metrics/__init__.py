"""
rodentfmri.metrics
==================

Voxel-wise resting-state metrics.

Modules
-------

alff
    ALFF and fALFF from the amplitude spectrum of each voxel.

reho
    Regional homogeneity (Kendall's W over local neighbourhoods).

maps
    Standardisation and smoothing shared by the metric maps.
"""

from .alff import AmplitudeMaps, alff_falff, alff_file
from .reho import ReHoMaps, kendall_w, neighbourhood_offsets, reho, reho_file
from .maps import FWHM_TO_SIGMA, smooth_map, standardize

__all__ = [
    'FWHM_TO_SIGMA',
    'AmplitudeMaps',
    'alff_falff',
    'alff_file',
    'ReHoMaps',
    'kendall_w',
    'neighbourhood_offsets',
    'reho',
    'reho_file',
    'smooth_map',
    'standardize',
]
