import sys
from pathlib import Path

import nibabel as nib
import numpy as np
import pytest

# Import rodentfmri from the checkout without installing it
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


@pytest.fixture
def save_nifti(tmp_path):
    """Return a helper writing ``data`` as a NIfTI file under ``tmp_path``."""

    def _save(name, data, affine=None, tr=None):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        img = nib.Nifti1Image(np.asarray(data, dtype=np.float32), np.eye(4) if affine is None else affine)
        if tr is not None and np.ndim(data) == 4:
            img.header.set_zooms(img.header.get_zooms()[:3] + (tr,))
        nib.save(img, str(path))
        return str(path)

    return _save


@pytest.fixture
def rng():
    return np.random.default_rng(0)
