import numpy as np
import pytest

from rodentfmri.exceptions import DimensionMismatchError, ScrubbingError, ValidationError
from rodentfmri.motion import (
    MotionModel,
    expand_motion,
    framewise_displacement,
    load_motion_parameters,
    max_motion,
    summarize_motion,
    temporal_mask,
)
from rodentfmri.scrubbing import ScrubbingTiming, scrub


def _motion(n=6):
    params = np.zeros((n, 6))
    params[2:, 0] = 1.0
    params[3:, 3] = 0.01
    return params


def test_framewise_displacement_power():
    fd = framewise_displacement(_motion())
    np.testing.assert_allclose(fd, [0.0, 0.0, 1.0, 0.5, 0.0, 0.0])


def test_constant_motion_file_has_zero_displacement(tmp_path):
    row = '  1.2000000e-01  -3.0000000e-02  4.5000000e-01  2.0000000e-03  -1.0000000e-03  5.0000000e-04'
    path = tmp_path / 'rp_asrest.txt'
    path.write_text('\n'.join([row] * 20) + '\n')
    fd = framewise_displacement(load_motion_parameters(path))
    assert fd.shape == (20,)
    assert np.all(fd == 0.0)
    assert temporal_mask(fd, 0.0).all()


def test_load_motion_parameters_spm_layout(tmp_path):
    path = tmp_path / 'rp_asrest.txt'
    lines = ['  %.7e  %.7e  %.7e  %.7e  %.7e  %.7e' % tuple(row) for row in _motion()]
    path.write_text('\n'.join(lines) + '\n')
    params = load_motion_parameters(path)
    assert params.shape == (6, 6)
    np.testing.assert_allclose(params, _motion())


def test_load_motion_parameters_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_motion_parameters(tmp_path / 'missing.txt')
    path = tmp_path / 'bad.txt'
    path.write_text('1 2 3\n4 5 6\n')
    with pytest.raises(DimensionMismatchError):
        load_motion_parameters(path)


@pytest.mark.parametrize('model, width', [(1, 6), (2, 12), (3, 12), (4, 24)])
def test_expand_motion_widths(model, width):
    expanded = expand_motion(_motion(), model)
    assert expanded.shape == (6, width)


def test_friston24_blocks():
    params = _motion()
    expanded = expand_motion(params, MotionModel.FRISTON24)
    assert np.all(expanded[0, 6:12] == 0)
    np.testing.assert_allclose(expanded[1:, 6:12], params[:-1])
    np.testing.assert_allclose(expanded[:, 12:18], params ** 2)


def test_motion_model_parse_rejects_unknown():
    with pytest.raises(ValidationError):
        MotionModel.parse(7)


def test_max_motion_converts_rotations_to_degrees():
    params = np.zeros((3, 6))
    params[1, 0] = 0.3
    params[2, 4] = -0.01
    assert max_motion(params) == pytest.approx(np.rad2deg(0.01))
    summary = summarize_motion(params, fd_threshold=0.2)
    assert summary.max_translation == pytest.approx(0.3)
    assert summary.n_frames_over_threshold == 2


def test_temporal_mask_flags_frames_over_threshold():
    keep = temporal_mask(np.array([0.0, 0.3, 0.1, 0.5]), 0.2)
    assert keep.tolist() == [True, False, True, False]


def test_scrub_all_true_mask_is_identity():
    matrix = np.arange(20, dtype=float).reshape(10, 2)
    out = scrub(matrix, np.ones(10, dtype=bool), 'spline')
    assert np.array_equal(out, matrix)


def test_scrub_cut_removes_flagged_rows():
    matrix = np.arange(20, dtype=float).reshape(10, 2)
    keep = np.ones(10, dtype=bool)
    keep[[2, 7]] = False
    out = scrub(matrix, keep, 'cut')
    assert out.shape == (8, 2)
    assert 4.0 not in out[:, 0]


@pytest.mark.parametrize('method', ['nearest', 'linear', 'spline', 'pchip'])
def test_scrub_interpolation_keeps_length(method):
    t = np.arange(12, dtype=float)
    matrix = np.column_stack([t, 2 * t])
    keep = np.ones(12, dtype=bool)
    keep[[0, 5, 11]] = False
    out = scrub(matrix, keep, method)
    assert out.shape == matrix.shape
    assert np.all(np.isfinite(out))
    np.testing.assert_allclose(out[keep], matrix[keep])


def test_scrub_linear_fills_gap_on_a_line():
    t = np.arange(10, dtype=float)
    keep = np.ones(10, dtype=bool)
    keep[4] = False
    out = scrub(t, keep, 'linear')
    assert out[4] == pytest.approx(4.0)


@pytest.mark.parametrize('method, first, last', [
    ('nearest', 1.0, 8.0),
    ('linear', 1.0, 8.0),
    ('spline', 0.0, 9.0),
])
def test_scrub_run_edges(method, first, last):
    t = np.arange(10, dtype=float)
    keep = np.ones(10, dtype=bool)
    keep[[0, 9]] = False
    out = scrub(t, keep, method)
    assert out[0] == pytest.approx(first)
    assert out[-1] == pytest.approx(last)


def test_scrub_errors():
    with pytest.raises(DimensionMismatchError):
        scrub(np.zeros((5, 2)), np.ones(4, dtype=bool))
    with pytest.raises(ScrubbingError):
        scrub(np.zeros((5, 2)), np.array([1, 0, 1, 1, 1], dtype=bool), 'cubic')
    with pytest.raises(ScrubbingError):
        scrub(np.zeros((5, 2)), np.array([1, 0, 0, 0, 0], dtype=bool), 'linear')
    with pytest.raises(ScrubbingError):
        ScrubbingTiming.parse('during')
    assert ScrubbingTiming.parse('AfterFiltering') is ScrubbingTiming.AFTER_FILTERING
