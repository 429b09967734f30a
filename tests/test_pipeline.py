import json
import os

import numpy as np
import pandas as pd
import pytest

from rodentfmri.data_management import DatasetIndex, SubjectDir, list_seed_masks
from rodentfmri.exceptions import ValidationError
from rodentfmri.pipeline import DENOISE_VARIANTS, PipelineConfig, run_cohort


SHAPE = (4, 4, 3)
N_TIME = 40


@pytest.fixture
def study(tmp_path, save_nifti, rng):
    """Two preprocessed subjects; sub02 has no realignment parameters."""
    brain = np.ones(SHAPE)
    save_nifti('masks/brain.nii', brain)
    first = np.zeros(SHAPE)
    first[:2, :2, :] = 1
    second = np.zeros(SHAPE)
    second[2:, 2:, :] = 1
    save_nifti('rois/cortex.nii', first)
    save_nifti('rois/striatum.nii', second)
    for name in ('sub01', 'sub02'):
        data = 100.0 + rng.standard_normal(SHAPE + (N_TIME,))
        save_nifti(f'study/{name}/rest/wrasrest_inmask.nii', data, tr=2.0)
        save_nifti(f'study/{name}/rest/swrasrest_inmask.nii', data, tr=2.0)
        os.makedirs(tmp_path / 'study' / name / 'T2', exist_ok=True)
    np.savetxt(tmp_path / 'study' / 'sub01' / 'rest' / 'rp_asrest.txt', 1e-4 * rng.standard_normal((N_TIME, 6)))
    os.makedirs(tmp_path / 'study' / 'notes')
    return tmp_path


def _config(root):
    return PipelineConfig(
        root=str(root / 'study'),
        stages=['denoise', 'alff', 'reho', 'roifc', 'voxelfc'],
        brain_mask=str(root / 'masks' / 'brain.nii'),
        roi_dir=str(root / 'rois'),
        reho_fwhm=None,
    )


def test_cohort_continues_after_failed_subject(study):
    report = run_cohort(_config(study))
    assert report.succeeded == ['sub01']
    assert report.failed == ['sub02']
    failed = report.results[1]
    assert failed.failed_stage == 'denoise'
    assert failed.error.startswith('FileNotFoundError')

    ok = report.results[0]
    sub = study / 'study' / 'sub01'
    for variant in DENOISE_VARIANTS:
        assert os.path.exists(sub / variant.folder / variant.output)
    assert os.path.exists(ok.outputs['ALFF/fALFF'])
    assert os.path.exists(ok.outputs['ReHo/ReHo'])
    fc = np.loadtxt(sub / 'ROIwiseFC' / 'FC_sub01.txt')
    assert fc.shape == (2, 2)
    assert os.path.exists(sub / 'VoxelwiseFC' / 'cortex' / 'FCBrain.nii')
    assert os.path.exists(sub / 'VoxelwiseFC' / 'striatum' / 'zFCBrain.nii')
    assert 'max_motion' in ok.metrics


def test_cohort_report_table(study, tmp_path):
    config = _config(study)
    config.subjects = ['sub02']
    report = run_cohort(config, stages=['denoise'])
    path = report.save(str(tmp_path / 'report.tsv'))
    table = pd.read_csv(path, sep='\t')
    assert table['subject'].tolist() == ['sub02']
    assert not table['success'][0]
    assert table['failed_stage'][0] == 'denoise'


def test_unknown_stage_rejected(study):
    with pytest.raises(ValidationError):
        run_cohort(_config(study), stages=['normalise'])
    config = _config(study)
    config.stages = ['denoise', 'gica']
    with pytest.raises(ValidationError):
        config.validate()


def test_config_json_round_trip(tmp_path):
    config = PipelineConfig(root=str(tmp_path), band=(0.01, 0.1), slice_order=[1, 3, 2], n_slices=3, ref_slice=3)
    path = tmp_path / 'study.json'
    config.to_json(str(path))
    loaded = PipelineConfig.from_json(str(path))
    assert loaded == config


def test_config_relative_paths_and_unknown_keys(tmp_path):
    path = tmp_path / 'study.json'
    path.write_text(json.dumps({'root': 'data', 'brain_mask': 'masks/brain.nii', 'band': [0.01, 0.08]}))
    config = PipelineConfig.from_json(str(path))
    assert config.root == os.path.join(str(tmp_path), 'data')
    assert config.brain_mask == os.path.join(str(tmp_path), 'masks', 'brain.nii')
    assert config.band == (0.01, 0.08)
    path.write_text(json.dumps({'root': 'data', 'colour': 'red'}))
    with pytest.raises(ValidationError, match='colour'):
        PipelineConfig.from_json(str(path))


def test_config_builds_step_configs():
    config = PipelineConfig(template='/atlas/template.nii', fd_threshold=0.2)
    assert config.denoise_config(filtered=False).band is None
    assert config.denoise_config(filtered=True).band == (0.01, 0.08)
    assert config.denoise_config(True).fd_threshold == 0.2
    pre = config.preprocess_config()
    assert pre.registration.template == '/atlas/template.nii'
    assert pre.slice_timing.n_slices == 25


def test_dataset_index(study):
    index = DatasetIndex(str(study / 'study'))
    assert index.list_subjects() == ['sub01', 'sub02']
    assert len(index) == 2
    sub = index.get('sub01')
    assert isinstance(sub, SubjectDir)
    assert sub.has_raw_data()
    assert index.path_for('sub01', 'rest', 'rest.nii') == os.path.join(sub.path, 'rest', 'rest.nii')
    assert [s.name for s in index.select(['sub02'])] == ['sub02']
    with pytest.raises(KeyError):
        index.get('sub03')
    with pytest.raises(FileNotFoundError):
        DatasetIndex(str(study / 'missing'))


def test_list_seed_masks(study):
    masks = list_seed_masks(str(study / 'rois'))
    assert [os.path.basename(m) for m in masks] == ['cortex.nii', 'striatum.nii']
    with pytest.raises(FileNotFoundError):
        list_seed_masks(str(study / 'nothing'))


def test_unknown_subject_rejected_before_running(study):
    config = _config(study)
    config.subjects = ['sub01', 'sub03']
    with pytest.raises(ValidationError, match='sub03'):
        run_cohort(config)
    assert not os.path.exists(study / 'study' / 'sub01' / DENOISE_VARIANTS[0].folder)
