import os

import numpy as np
import pytest

from rodentfmri.cli import build_parser, main


def _write_motion(path):
    params = np.zeros((6, 6))
    params[2:, 0] = 1.0
    params[3:, 3] = 0.01
    np.savetxt(path, params)
    return str(path)


def test_fd_command_prints_summary(tmp_path, capsys):
    motion = _write_motion(tmp_path / 'rp_asrest.txt')
    out_file = tmp_path / 'fd.txt'
    code = main(['fd', motion, '--threshold', '0.7', '--output', str(out_file)])
    assert code == 0
    printed = capsys.readouterr().out
    assert 'max translation (mm): 1.0000' in printed
    assert 'frames over 0.7:' in printed
    np.testing.assert_allclose(np.loadtxt(out_file), [0.0, 0.0, 1.0, 0.5, 0.0, 0.0])


def test_missing_input_returns_error_code(tmp_path):
    assert main(['fd', str(tmp_path / 'missing.txt')]) == 2


def test_alff_command(tmp_path, save_nifti, rng, capsys):
    func = save_nifti('rest.nii', rng.standard_normal((3, 3, 2, 32)), tr=2.0)
    mask = save_nifti('mask.nii', np.ones((3, 3, 2)))
    assert main(['alff', func, mask, str(tmp_path / 'ALFF')]) == 0
    assert os.path.exists(tmp_path / 'ALFF' / 'zfALFF.nii')


def test_roifc_needs_atlas_or_masks(tmp_path):
    with pytest.raises(SystemExit):
        build_parser().parse_args(['roifc', 'func.nii', str(tmp_path)])


def test_denoise_arguments():
    args = build_parser().parse_args([
        'denoise', 'f.nii', 'm.nii', 'out', '--band', '0.01', '0.08', '--covmod', '1', '--no-add-mean',
    ])
    assert args.band == [0.01, 0.08]
    assert args.covmod == 1
    assert args.no_add_mean and not args.no_detrend


def test_run_with_malformed_config_returns_error_code(tmp_path):
    cfg = tmp_path / 'study.json'
    cfg.write_text('{"root": ')
    assert main(['run', str(cfg)]) == 2
    cfg.write_text('[1, 2]')
    assert main(['run', str(cfg)]) == 2


def test_run_with_directory_as_config_returns_error_code(tmp_path):
    assert main(['run', str(tmp_path)]) == 2


def test_run_with_unknown_subject_returns_error_code(tmp_path):
    (tmp_path / 'study' / 'sub01').mkdir(parents=True)
    cfg = tmp_path / 'study.json'
    cfg.write_text('{"root": "study", "subjects": ["sub09"], "stages": ["denoise"]}')
    assert main(['run', str(cfg)]) == 2
