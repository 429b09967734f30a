import os

import numpy as np
import pandas as pd
import pytest

from rodentfmri.connectivity import (
    compute_roi_connectivity,
    find_component_edges,
    find_gretna_edges,
    find_significant_edges,
    fisher_z,
    pearson_columns,
    roi_fc,
    roi_fc_from_masks,
)
from rodentfmri.exceptions import DimensionMismatchError


def test_fisher_z_formula_and_saturation():
    assert fisher_z(0.5) == pytest.approx(np.arctanh(0.5))
    assert fisher_z(0.0) == 0.0
    with np.errstate(all='raise'):
        z = fisher_z(np.array([1.0, -1.0, 1.0 + 1e-15]))
    assert np.isposinf(z[0]) and np.isneginf(z[1]) and np.isposinf(z[2])


def test_pearson_columns_matches_corrcoef(rng):
    seeds = rng.standard_normal((40, 2))
    targets = rng.standard_normal((40, 5))
    fc = pearson_columns(seeds, targets)
    assert fc.shape == (2, 5)
    expected = np.corrcoef(np.column_stack([seeds, targets]).T)[:2, 2:]
    np.testing.assert_allclose(fc, expected, atol=1e-12)


def test_zero_variance_columns_correlate_zero(rng):
    seeds = rng.standard_normal((20, 1))
    targets = np.column_stack([rng.standard_normal(20), np.full(20, 3.0)])
    fc = pearson_columns(seeds, targets)
    assert fc[0, 1] == 0.0
    assert np.all(np.isfinite(fc))


def test_pearson_columns_row_mismatch(rng):
    with pytest.raises(DimensionMismatchError):
        pearson_columns(rng.standard_normal(10), rng.standard_normal((9, 2)))


def test_roi_connectivity_symmetric_zero_diagonal(rng):
    ts = rng.standard_normal((60, 4))
    ts[:, 3] = 1.0
    conn = compute_roi_connectivity(ts, ['a', 'b', 'c', 'd'])
    np.testing.assert_allclose(conn.matrix, conn.matrix.T)
    assert np.all(np.diag(conn.zmatrix) == 0.0)
    assert np.all(conn.matrix[3, :3] == 0.0)
    assert conn.matrix[0, 1] == pytest.approx(np.corrcoef(ts[:, 0], ts[:, 1])[0, 1])
    assert conn.zmatrix[0, 1] == pytest.approx(np.arctanh(conn.matrix[0, 1]))
    assert not np.isnan(conn.zmatrix).any()


def test_roi_connectivity_label_mismatch(rng):
    with pytest.raises(DimensionMismatchError):
        compute_roi_connectivity(rng.standard_normal((10, 3)), ['a', 'b'])


def test_roi_fc_writes_matrices(tmp_path, save_nifti, rng):
    data = rng.standard_normal((4, 4, 2, 30))
    atlas = np.zeros((4, 4, 2))
    atlas[:2] = 1
    atlas[2:, :2] = 2
    atlas[2:, 2:] = 3
    func = save_nifti('func.nii', data)
    atlas_path = save_nifti('atlas.nii', atlas)
    conn = roi_fc(func, atlas_path, tmp_path / 'out')
    assert conn.matrix.shape == (3, 3)
    assert conn.labels == ['1', '2', '3']
    loaded = np.loadtxt(tmp_path / 'out' / 'FCmat.txt')
    np.testing.assert_allclose(loaded, conn.matrix, rtol=1e-6, atol=1e-7)
    assert (tmp_path / 'out' / 'zFCmat.txt').exists()


def test_roi_fc_from_masks_concatenates_seeds(tmp_path, save_nifti, rng):
    data = rng.standard_normal((4, 4, 2, 30))
    first = np.zeros((4, 4, 2))
    first[0, 0, 0] = 1
    second = np.zeros((4, 4, 2))
    second[1, 1, 1] = 1
    second[3, 3, 1] = 2
    masks = [save_nifti('roi/a.nii', first), save_nifti('roi/b.nii', second)]
    conn = roi_fc_from_masks(save_nifti('func.nii', data), masks, tmp_path / 'fc', name='sub01')
    assert conn.labels == ['a', 'b_1', 'b_2']
    assert conn.matrix[0, 1] == pytest.approx(
        np.corrcoef(data[0, 0, 0], data[1, 1, 1])[0, 1], abs=1e-5
    )
    assert os.path.exists(tmp_path / 'fc' / 'FC_sub01.txt')
    assert os.path.exists(tmp_path / 'fc' / 'zFC_sub01.txt')


def _stats():
    p = np.array([[1.0, 0.01, 0.2],
                  [0.01, 1.0, 0.03],
                  [0.2, 0.03, 1.0]])
    t = np.array([[0.0, 3.1, 1.0],
                  [3.1, 0.0, -2.5],
                  [1.0, -2.5, 0.0]])
    return p, t


def test_find_significant_edges_upper_triangle_column_order():
    p, t = _stats()
    edges = find_significant_edges(p, 0.05, t)
    assert list(edges.columns) == ['row', 'col', 'p', 't']
    assert edges[['row', 'col']].values.tolist() == [[1, 2], [2, 3]]
    assert edges['t'].tolist() == [3.1, -2.5]


def test_find_significant_edges_matrix_threshold():
    p, t = _stats()
    thr = np.full((3, 3), 0.02)
    edges = find_significant_edges(p, thr, t)
    assert edges[['row', 'col']].values.tolist() == [[1, 2]]


def test_find_component_edges():
    p, _ = _stats()
    component = np.zeros((3, 3))
    component[0, 2] = component[2, 0] = 4.2
    edges = find_component_edges(component, p)
    assert edges.values.tolist() == [[1, 3, 0.2, 4.2]]


def test_find_gretna_edges_reads_result_folder(tmp_path):
    p, t = _stats()
    np.savetxt(tmp_path / 'Edge_PNet.txt', p)
    np.savetxt(tmp_path / 'Edge_PThrd.txt', [[0.05]])
    np.savetxt(tmp_path / 'Edge_TNet.txt', t)
    edges = find_gretna_edges(tmp_path)
    assert isinstance(edges, pd.DataFrame)
    assert len(edges) == 2
