"""
rodentfmri.data_management
==========================

Indexer for the per-subject folder layout the pipeline reads and
writes.  Every subject folder under the dataset root (``sub*`` by
default) holds the raw functional run in ``rest/`` and the anatomical
image in ``T2/``; derived images are written next to their input with a
processing prefix, and each later stage gets a folder of its own::

    <root>/sub01/rest/rest.nii              raw functional run
    <root>/sub01/rest/swrasrest_inmask.nii  preprocessed, smoothed
    <root>/sub01/rest/rp_asrest.txt         realignment parameters
    <root>/sub01/T2/T2.nii                  anatomical image
    <root>/sub01/FunImgARWSDC/cdswrasrest.nii
    <root>/sub01/ALFF/ALFF.nii

Example
-------
>>> from rodentfmri.data_management import DatasetIndex
>>> index = DatasetIndex('/path/to/study')
>>> for subject in index:
...     print(subject.name, subject.path_for('rest', 'rest.nii'))
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .io import list_images


logger = logging.getLogger(__name__)

REST_DIR = 'rest'
ANAT_DIR = 'T2'


@dataclass
class SubjectDir:
    """One subject folder of the dataset.

    Parameters
    ----------
    name : str
        Folder name (e.g. ``'sub01'``).
    path : str
        Absolute path of the folder.
    """

    name: str
    path: str

    def path_for(self, folder: str, filename: str = '') -> str:
        """Path of ``filename`` inside ``folder`` of this subject."""
        return os.path.join(self.path, folder, filename) if filename else os.path.join(self.path, folder)

    def ensure_dir(self, folder: str) -> str:
        out = self.path_for(folder)
        os.makedirs(out, exist_ok=True)
        return out

    @property
    def rest_dir(self) -> str:
        return self.path_for(REST_DIR)

    @property
    def anat_dir(self) -> str:
        return self.path_for(ANAT_DIR)

    def has_raw_data(self) -> bool:
        return os.path.isdir(self.rest_dir) and os.path.isdir(self.anat_dir)


class DatasetIndex:
    """Index the subject folders under a dataset root.

    Parameters
    ----------
    root : str
        Folder containing one sub-folder per subject.
    pattern : str
        Shell pattern selecting subject folders.
    """

    def __init__(self, root: str, pattern: str = 'sub*') -> None:
        self.root = os.path.abspath(root)
        if not os.path.isdir(self.root):
            raise FileNotFoundError(f"Dataset path does not exist: {self.root}")
        self.pattern = pattern
        self._subjects: Dict[str, SubjectDir] = {}
        self._parse_dataset()

    def _parse_dataset(self) -> None:
        for entry in sorted(os.listdir(self.root)):
            path = os.path.join(self.root, entry)
            if os.path.isdir(path) and fnmatch.fnmatch(entry, self.pattern):
                subject = SubjectDir(name=entry, path=path)
                if not subject.has_raw_data():
                    logger.debug('%s lacks %s/ or %s/', entry, REST_DIR, ANAT_DIR)
                self._subjects[entry] = subject
        logger.info('Found %d subject folders in %s', len(self._subjects), self.root)

    def __iter__(self) -> Iterator[SubjectDir]:
        return iter(self._subjects.values())

    def __len__(self) -> int:
        return len(self._subjects)

    def list_subjects(self) -> List[str]:
        """Return the subject folder names in sorted order."""
        return list(self._subjects)

    def get(self, subject: str) -> SubjectDir:
        if subject not in self._subjects:
            raise KeyError(f"Subject {subject} not found in dataset")
        return self._subjects[subject]

    def path_for(self, subject: str, folder: str, filename: str = '') -> str:
        """Shortcut for ``get(subject).path_for(folder, filename)``."""
        return self.get(subject).path_for(folder, filename)

    def select(self, subjects: Optional[List[str]] = None) -> List[SubjectDir]:
        """Subjects in ``subjects`` (all when ``None``), in index order."""
        if subjects is None:
            return list(self)
        return [self.get(s) for s in subjects]


def list_seed_masks(roi_dir: str) -> List[str]:
    """Seed mask images in ``roi_dir`` sorted by name."""
    if not os.path.isdir(roi_dir):
        raise FileNotFoundError(f"ROI folder does not exist: {roi_dir}")
    return list_images(roi_dir)


__all__ = [
    'REST_DIR',
    'ANAT_DIR',
    'SubjectDir',
    'DatasetIndex',
    'list_seed_masks',
]
