import numpy as np
import pytest

from rodentfmri.exceptions import ValidationError
from rodentfmri.filtering import (
    detrend,
    frequency_band_indices,
    ideal_filter,
    ideal_frequency_mask,
    iter_column_chunks,
    next_power_of_two,
)


def test_column_chunks_cover_all_columns_once():
    chunks = list(iter_column_chunks(25, 10))
    covered = np.concatenate([np.arange(25)[s] for s in chunks])
    assert np.array_equal(covered, np.arange(25))
    assert chunks[0] == slice(0, 3)
    assert chunks[-1].stop == 25


def test_column_chunks_fewer_columns_than_chunks():
    chunks = list(iter_column_chunks(3, 10))
    assert [(s.start, s.stop) for s in chunks] == [(0, 1), (1, 2), (2, 3)]


def test_next_power_of_two():
    assert next_power_of_two(300) == 512
    assert next_power_of_two(256) == 256
    assert next_power_of_two(1) == 1


def test_band_indices_follow_ceil_and_fix_rule():
    # lo = ceil(0.01 * 512 * 2 + 1) = 12, hi = fix(0.08 * 512 * 2 + 1) = 82 (1-based)
    assert frequency_band_indices(512, 2.0, (0.01, 0.08)) == (11, 82)


def test_band_high_zero_or_above_nyquist_means_up_to_nyquist():
    assert frequency_band_indices(64, 2.0, (0.01, 0))[1] == 33
    assert frequency_band_indices(64, 2.0, (0.01, 0.5))[1] == 33


def test_frequency_mask_is_mirrored():
    mask = ideal_frequency_mask(64, 1.0, (0.1, 0.2))
    for k in range(1, 64):
        assert mask[k] == mask[64 - k]
    assert not mask[0]


def test_ideal_filter_keeps_in_band_sinusoid():
    t = np.arange(256)
    inside = np.sin(2 * np.pi * 20 * t / 256)
    outside = np.sin(2 * np.pi * 100 * t / 256)
    matrix = np.column_stack([inside + outside, outside])
    filtered = ideal_filter(matrix, 1.0, (0.05, 0.15), n_chunks=2)
    np.testing.assert_allclose(filtered[:, 0], inside, atol=1e-10)
    np.testing.assert_allclose(filtered[:, 1], 0.0, atol=1e-10)


def test_ideal_filter_without_band_is_identity():
    matrix = np.arange(12, dtype=float).reshape(6, 2)
    out = ideal_filter(matrix, 2.0, None)
    assert np.array_equal(out, matrix)
    assert out is not matrix


def test_invalid_band_raises():
    with pytest.raises(ValidationError):
        ideal_filter(np.ones((10, 2)), 2.0, (0.08, 0.01))
    with pytest.raises(ValidationError):
        ideal_filter(np.ones((10, 2)), 0.0, (0.01, 0.08))


def test_detrend_removes_linear_trend():
    t = np.arange(50, dtype=float)
    matrix = np.column_stack([3 * t + 7, -t + 2])
    np.testing.assert_allclose(detrend(matrix, n_chunks=3), 0.0, atol=1e-9)
