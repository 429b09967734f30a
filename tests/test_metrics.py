import os

import numpy as np
import pytest

from rodentfmri.exceptions import ValidationError
from rodentfmri.metrics import (
    FWHM_TO_SIGMA,
    alff_falff,
    alff_file,
    kendall_w,
    neighbourhood_offsets,
    reho,
    reho_file,
    smooth_map,
    standardize,
)


N_TIME = 64


def _alff_run():
    t = np.arange(N_TIME)
    data = np.zeros((3, 1, 1, N_TIME))
    data[0, 0, 0] = 10.0 + np.cos(2 * np.pi * 5 * t / N_TIME)
    data[1, 0, 0] = 10.0 + np.cos(2 * np.pi * 20 * t / N_TIME)
    data[2, 0, 0] = 10.0
    return data


def test_alff_of_in_band_and_out_of_band_sinusoids():
    # TR 2 s and 64 bins: the 0.01-0.08 Hz band covers bins 2..10
    maps = alff_falff(_alff_run(), np.ones((3, 1, 1)), tr=2.0)
    assert maps.alff[0, 0, 0] == pytest.approx(1.0 / 9.0)
    assert maps.falff[0, 0, 0] == pytest.approx(1.0)
    assert maps.alff[1, 0, 0] == pytest.approx(0.0, abs=1e-12)
    assert maps.falff[1, 0, 0] == pytest.approx(0.0, abs=1e-12)
    assert maps.falff[2, 0, 0] == 0.0
    assert maps.alff[2, 0, 0] == 0.0


def test_alff_standardised_maps():
    maps = alff_falff(_alff_run(), np.ones((3, 1, 1)), tr=2.0)
    values = maps.alff.ravel()
    np.testing.assert_allclose(maps.malff.ravel(), values / values.mean())
    np.testing.assert_allclose(maps.zalff.ravel(), (values - values.mean()) / values.std(ddof=1))
    assert set(maps.as_dict()) == {'ALFF', 'mALFF', 'zALFF', 'fALFF', 'mfALFF', 'zfALFF'}


def test_alff_outside_mask_is_zero():
    mask = np.array([1.0, 1.0, 0.0]).reshape(3, 1, 1)
    maps = alff_falff(_alff_run(), mask, tr=2.0)
    assert maps.alff[2, 0, 0] == 0.0
    assert maps.zalff[2, 0, 0] == 0.0


def test_alff_rejects_empty_band_and_3d_input():
    with pytest.raises(ValidationError):
        alff_falff(_alff_run(), np.ones((3, 1, 1)), tr=2.0, band=(0.0101, 0.0102))
    with pytest.raises(ValidationError):
        alff_falff(_alff_run()[..., 0], np.ones((3, 1, 1)), tr=2.0)


def test_alff_file_writes_six_maps(tmp_path, save_nifti):
    func = save_nifti('rest.nii', _alff_run(), tr=2.0)
    mask = save_nifti('mask.nii', np.ones((3, 1, 1)))
    written = alff_file(func, mask, tmp_path / 'ALFF')
    assert sorted(os.path.basename(p) for p in written.values()) == sorted(
        ['ALFF.nii', 'mALFF.nii', 'zALFF.nii', 'fALFF.nii', 'mfALFF.nii', 'zfALFF.nii']
    )


@pytest.mark.parametrize('size', [7, 19, 27])
def test_neighbourhood_sizes(size):
    offsets = neighbourhood_offsets(size)
    assert len(offsets) == size
    assert (0, 0, 0) in offsets


def test_invalid_cluster_size():
    with pytest.raises(ValidationError):
        neighbourhood_offsets(9)


def test_reho_identical_series_is_one(rng):
    series = rng.standard_normal(20)
    data = np.broadcast_to(series, (3, 3, 3, 20)).copy()
    w = kendall_w(data, np.ones((3, 3, 3)), 27)
    np.testing.assert_allclose(w, 1.0)


def test_reho_random_series_below_one(rng):
    data = rng.standard_normal((3, 3, 3, 30))
    mask = np.ones((3, 3, 3))
    mask[0, 0, 0] = 0
    w = kendall_w(data, mask, 7)
    assert w[0, 0, 0] == 0.0
    assert 0.0 < w[1, 1, 1] < 1.0


def test_reho_smoothed_maps(rng):
    data = rng.standard_normal((4, 4, 4, 25))
    maps = reho(data, np.ones((4, 4, 4)), cluster_size=19, smooth_fwhm=(2, 2, 2))
    assert set(maps.as_dict()) == {'ReHo', 'mReHo', 'zReHo', 'sReHo', 'smReHo', 'szReHo'}
    assert maps.smoothed['sReHo'].shape == (4, 4, 4)


def test_reho_file(tmp_path, save_nifti, rng):
    func = save_nifti('rest.nii', rng.standard_normal((3, 3, 3, 12)))
    mask = save_nifti('mask.nii', np.ones((3, 3, 3)))
    written = reho_file(func, mask, tmp_path / 'ReHo', cluster_size=7)
    assert set(written) == {'ReHo', 'mReHo', 'zReHo'}
    assert all(os.path.exists(p) for p in written.values())


def test_standardize_handles_zero_spread():
    values = np.full((2, 2, 1), 3.0)
    m_map, z_map = standardize(values, np.ones((2, 2, 1)))
    np.testing.assert_allclose(m_map, 1.0)
    assert np.all(z_map == 0)


def test_smooth_map_sigma_from_fwhm():
    values = np.zeros((9, 9, 9))
    values[4, 4, 4] = 1.0
    out = smooth_map(values, FWHM_TO_SIGMA, (1.0, 1.0, 1.0))
    # sigma of one voxel
    assert out.sum() == pytest.approx(1.0, abs=1e-3)
    assert out[4, 4, 4] == pytest.approx((2 * np.pi) ** -1.5, rel=1e-2)
    with pytest.raises(ValidationError):
        smooth_map(values, -1.0, (1.0, 1.0, 1.0))
