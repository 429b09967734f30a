import os

import nibabel as nib
import numpy as np
import pandas as pd
import pytest
from scipy.io import loadmat

from rodentfmri.exceptions import DimensionMismatchError, ValidationError
from rodentfmri.io import (
    Volume,
    list_images,
    load_mask,
    load_matrix_txt,
    load_volume,
    save_matrix_mat,
    save_matrix_txt,
    save_volume,
    scale_voxel_size,
    write_order_key,
)


def test_load_volume_from_file_keeps_tr(save_nifti, rng):
    path = save_nifti('rest.nii', rng.standard_normal((3, 3, 2, 5)), affine=np.diag([0.2, 0.2, 0.4, 1.0]), tr=1.5)
    vol = load_volume(path)
    assert vol.spatial_shape == (3, 3, 2)
    assert vol.n_timepoints == 5
    assert vol.tr == pytest.approx(1.5)
    np.testing.assert_allclose(vol.voxel_size, [0.2, 0.2, 0.4], rtol=1e-6)


@pytest.mark.parametrize('unit, zoom', [('sec', 2.0), ('msec', 2000.0), ('usec', 2e6)])
def test_tr_converted_from_header_time_units(tmp_path, unit, zoom):
    img = nib.Nifti1Image(np.zeros((2, 2, 2, 4), dtype=np.float32), np.eye(4))
    img.header.set_zooms((1.0, 1.0, 1.0, zoom))
    img.header.set_xyzt_units('mm', unit)
    path = str(tmp_path / 'rest.nii')
    nib.save(img, path)
    assert load_volume(path).tr == pytest.approx(2.0)


def test_load_volume_stacks_3d_files(tmp_path, save_nifti):
    for t in range(3):
        save_nifti(f'vols/vol{t:03d}.nii', np.full((2, 2, 2), float(t)))
    (tmp_path / 'vols' / '._vol000.nii').write_bytes(b'')
    vol = load_volume(str(tmp_path / 'vols'))
    assert vol.data.shape == (2, 2, 2, 3)
    assert vol.data[0, 0, 0].tolist() == [0.0, 1.0, 2.0]


def test_load_volume_errors(tmp_path, save_nifti):
    with pytest.raises(FileNotFoundError):
        load_volume(str(tmp_path / 'missing.nii'))
    with pytest.raises(ValidationError):
        load_volume([])
    a = save_nifti('a.nii', np.zeros((2, 2, 2)))
    b = save_nifti('b.nii', np.zeros((3, 2, 2)))
    with pytest.raises(DimensionMismatchError):
        load_volume([a, b])


def test_list_images_requires_images(tmp_path):
    (tmp_path / 'readme.txt').write_text('no images')
    with pytest.raises(FileNotFoundError):
        list_images(str(tmp_path))


def test_array_volume_has_identity_affine():
    vol = load_volume(np.zeros((2, 2, 2, 4)))
    assert isinstance(vol, Volume)
    np.testing.assert_array_equal(vol.affine, np.eye(4))
    assert vol.tr is None


def test_load_mask_shape_check(save_nifti):
    path = save_nifti('mask.nii', np.ones((2, 2, 2)))
    assert load_mask(path, (2, 2, 2, 10)).shape == (2, 2, 2)
    with pytest.raises(DimensionMismatchError):
        load_mask(path, (3, 2, 2))


def test_save_volume_writes_float32(tmp_path):
    path = save_volume(np.ones((2, 2, 2)), np.eye(4), tmp_path / 'out' / 'map.nii')
    img = nib.load(path)
    assert img.get_data_dtype() == np.float32


def test_matrix_text_and_mat(tmp_path):
    matrix = np.array([[1.0, 2.5], [3.0, -4.0]])
    path = save_matrix_txt(matrix, tmp_path / 'FCmat.txt')
    np.testing.assert_allclose(load_matrix_txt(path), matrix)
    with open(path) as f:
        assert f.readline().startswith('1.0000000e+00')
    mat = save_matrix_mat(matrix, tmp_path / 'ROI.mat', 'SeedSeries')
    np.testing.assert_allclose(loadmat(mat)['SeedSeries'], matrix)
    with pytest.raises(FileNotFoundError):
        load_matrix_txt(tmp_path / 'missing.txt')


def test_order_key_columns(tmp_path):
    entries = [{'Order': 1, 'Label in Mask': '1', 'ROI Definition': 'atlas.nii'}]
    single = pd.read_csv(write_order_key(entries, tmp_path / 'key.tsv', False), sep='\t')
    assert list(single.columns) == ['Order', 'ROI Definition']
    multi = pd.read_csv(write_order_key(entries, tmp_path / 'key_multi.tsv', True), sep='\t')
    assert list(multi.columns) == ['Order', 'Label in Mask', 'ROI Definition']


def test_scale_voxel_size(save_nifti, tmp_path):
    path = save_nifti('T2.nii', np.zeros((2, 2, 2)), affine=np.diag([0.1, 0.1, 0.2, 1.0]))
    out = scale_voxel_size(path, 10.0, str(tmp_path / 'sT2.nii'))
    np.testing.assert_allclose(nib.load(out).affine[:3, :3], np.diag([1.0, 1.0, 2.0]), rtol=1e-6)
    assert os.path.exists(path)
    with pytest.raises(ValidationError):
        scale_voxel_size(path, 0)
