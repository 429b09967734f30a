"""
rodentfmri.connectivity.edges
=============================

Listing of significant edges from group-level network statistics.

The statistics are square matrices of p and t values (for example the
``Edge_PNet.txt``, ``Edge_PThrd.txt`` and ``Edge_TNet.txt`` files of a
GRETNA two-sample test, or a network-based statistic component).  Only
the strict upper triangle is inspected, and indices are 1-based and
ordered column by column.
"""

from __future__ import annotations

import logging
import os
from typing import Union

import numpy as np
import pandas as pd

from ..exceptions import DimensionMismatchError
from ..io import PathLike, load_matrix_txt


logger = logging.getLogger(__name__)

EDGE_COLUMNS = ['row', 'col', 'p', 't']


def _upper_edges(selected: np.ndarray):
    # column-major order of the strict upper triangle
    cols, rows = np.nonzero(np.triu(selected, 1).T)
    return rows, cols


def _check_square(matrix: np.ndarray, name: str) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionMismatchError(f"{name} must be a square matrix, got shape {matrix.shape}")
    return matrix


def find_significant_edges(
    p_net: np.ndarray,
    p_threshold: Union[float, np.ndarray],
    t_net: np.ndarray,
) -> pd.DataFrame:
    """Edges of the upper triangle with ``p <= p_threshold``.

    Returns
    -------
    pandas.DataFrame
        Columns ``row``, ``col`` (1-based), ``p`` and ``t``.
    """
    p_net = _check_square(p_net, 'p_net')
    t_net = _check_square(t_net, 't_net')
    if p_net.shape != t_net.shape:
        raise DimensionMismatchError("p and t matrices differ in shape")
    threshold = np.asarray(p_threshold, dtype=float)
    if threshold.size == 1:
        threshold = threshold.reshape(())
    rows, cols = _upper_edges(p_net <= threshold)
    logger.info('%d edges with p <= threshold', rows.size)
    return pd.DataFrame({
        'row': rows + 1,
        'col': cols + 1,
        'p': p_net[rows, cols],
        't': t_net[rows, cols],
    }, columns=EDGE_COLUMNS)


def find_component_edges(component: np.ndarray, p_net: np.ndarray) -> pd.DataFrame:
    """Edges of a network component; ``t`` is the component matrix value."""
    component = _check_square(component, 'component')
    p_net = _check_square(p_net, 'p_net')
    if component.shape != p_net.shape:
        raise DimensionMismatchError("Component and p matrices differ in shape")
    rows, cols = _upper_edges(component != 0)
    return pd.DataFrame({
        'row': rows + 1,
        'col': cols + 1,
        'p': p_net[rows, cols],
        't': component[rows, cols],
    }, columns=EDGE_COLUMNS)


def find_gretna_edges(result_dir: PathLike) -> pd.DataFrame:
    """Read ``Edge_PNet.txt``, ``Edge_PThrd.txt`` and ``Edge_TNet.txt`` from a result folder."""
    result_dir = os.fspath(result_dir)
    p_net = load_matrix_txt(os.path.join(result_dir, 'Edge_PNet.txt'))
    p_thr = load_matrix_txt(os.path.join(result_dir, 'Edge_PThrd.txt'))
    t_net = load_matrix_txt(os.path.join(result_dir, 'Edge_TNet.txt'))
    return find_significant_edges(p_net, p_thr, t_net)


__all__ = [
    'EDGE_COLUMNS',
    'find_significant_edges',
    'find_component_edges',
    'find_gretna_edges',
]
