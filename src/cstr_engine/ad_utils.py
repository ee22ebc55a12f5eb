# src/cstr_engine/ad_utils.py
"""Jacobian seeding, extraction and comparison helpers for AD vectors.

Band compression:
    A banded Jacobian with ``lower`` subdiagonals and ``upper`` superdiagonals
    needs only ``stride = lower + upper + 1`` AD directions. Column ``col`` is
    seeded in direction::

        dir_offset + diag_dir - lower + (col + lower) % stride

    so that no two columns touching the same row share a direction. After a
    residual evaluation, entry ``(eq, col)`` with ``col = eq - lower + d`` is
    read from direction ``dir_offset + diag_dir - lower + (eq + d) % stride``.

Dense seeding:
    Column ``j`` is seeded in direction ``dir_offset + j`` and entry
    ``(i, j)`` is read from the same direction of residual entry ``i``.

Comparisons return ``max_ij delta_ij`` with ``delta = |ana - ad| / |ad|`` when
``ad != 0`` and ``|ana - ad|`` otherwise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .errors import raise_contract_violation

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from .autodiff import ADVector, FloatArray
    from .matrix_ops import BandMatrix, DenseMatrix


def _require_dirs(vec: ADVector, needed: int) -> None:
    if needed > vec.n_dirs:
        raise_contract_violation(
            name="ADVector",
            expected=f"at least {needed} AD directions",
            got=vec.n_dirs,
        )


def _relative_delta(ana: float, ad: float) -> float:
    diff = abs(ana - ad)
    if ad != 0.0:
        return diff / abs(ad)
    return diff


def _band_direction(eq: int, d: int, dir_offset: int, diag_dir: int, lower: int, stride: int) -> int:
    return dir_offset + diag_dir - lower + (eq + d) % stride


# =============================================================================
# Band compressed Jacobians
# =============================================================================


def prepare_ad_vector_seeds_for_band_matrix(
    vec: ADVector,
    dir_offset: int,
    rows: int,
    lower: int,
    upper: int,
    diag_dir: int,
) -> None:
    """
    Seed AD directions for extracting a band matrix.

    Previously set values of the used directions are cleared first.

    Args:
        vec: AD vector pointing to the first row of the band matrix.
        dir_offset: Number of directions used for other purposes.
        rows: Number of rows (and columns) of the band matrix.
        lower: Lower bandwidth.
        upper: Upper bandwidth.
        diag_dir: Direction of the main diagonal.

    Raises:
        ContractViolationError: If vec is too short or has too few directions.
    """
    if diag_dir < lower:
        raise_contract_violation(
            name="diag_dir", expected=f"diag_dir >= lower bandwidth {lower}", got=diag_dir
        )
    stride = lower + upper + 1
    first = dir_offset + diag_dir - lower
    _require_dirs(vec, first + stride)
    if rows > len(vec):
        raise_contract_violation(name="ADVector", expected=f"at least {rows} entries", got=len(vec))
    grads = vec.grads
    grads[:rows, first : first + stride] = 0.0
    cols = np.arange(rows)
    grads[cols, first + (cols + lower) % stride] = 1.0


def extract_banded_jacobian_from_ad(
    vec: ADVector,
    dir_offset: int,
    diag_dir: int,
    mat: BandMatrix,
) -> None:
    """
    Extract a band matrix from band compressed AD directions.

    Args:
        vec: AD vector (residual) pointing to the first row of the band matrix.
        dir_offset: Number of directions used for other purposes.
        diag_dir: Direction of the main diagonal.
        mat: Band matrix to fill; bandwidths determine the compression.
    """
    lower = mat.lower_bandwidth
    stride = mat.stride
    n = mat.rows
    for eq in range(n):
        for d in range(stride):
            col = eq - lower + d
            if col < 0 or col >= n:
                continue
            direction = _band_direction(eq, d, dir_offset, diag_dir, lower, stride)
            mat.set_centered(eq, d - lower, vec.get_ad_value(eq, direction))


def extract_dense_jacobian_from_banded_ad(
    vec: ADVector,
    row: int,
    dir_offset: int,
    diag_dir: int,
    lower: int,
    upper: int,
    mat: DenseMatrix,
) -> None:
    """
    Extract a dense sub-block from band compressed AD directions.

    The dense block starts at global row and column ``row``; band entries
    outside the block are ignored.

    Args:
        vec: AD vector (residual) pointing to the first row of the band.
        row: Index of the first row (and column) of the dense block.
        dir_offset: Number of directions used for other purposes.
        diag_dir: Direction of the main diagonal.
        lower: Lower bandwidth of the compression.
        upper: Upper bandwidth of the compression.
        mat: Dense matrix to fill.
    """
    stride = lower + upper + 1
    mat.set_all(0.0)
    block = mat.array
    for i in range(mat.rows):
        eq = row + i
        for d in range(stride):
            local_col = i - lower + d
            if local_col < 0 or local_col >= mat.columns:
                continue
            direction = _band_direction(eq, d, dir_offset, diag_dir, lower, stride)
            block[i, local_col] = vec.get_ad_value(eq, direction)


def compare_banded_jacobian_with_ad(
    vec: ADVector,
    dir_offset: int,
    diag_dir: int,
    mat: BandMatrix,
) -> float:
    """
    Compare an analytic band matrix with band compressed AD directions.

    Returns:
        Maximum elementwise relative (or absolute, where AD is zero) difference.
    """
    lower = mat.lower_bandwidth
    stride = mat.stride
    n = mat.rows
    max_diff = 0.0
    for eq in range(n):
        for d in range(stride):
            col = eq - lower + d
            if col < 0 or col >= n:
                continue
            direction = _band_direction(eq, d, dir_offset, diag_dir, lower, stride)
            delta = _relative_delta(mat.centered(eq, d - lower), vec.get_ad_value(eq, direction))
            max_diff = max(max_diff, delta)
    return max_diff


def compare_dense_jacobian_with_banded_ad(
    vec: ADVector,
    row: int,
    dir_offset: int,
    diag_dir: int,
    lower: int,
    upper: int,
    mat: DenseMatrix,
) -> float:
    """
    Compare an analytic dense sub-block with band compressed AD directions.

    Returns:
        Maximum elementwise relative (or absolute, where AD is zero) difference.
    """
    stride = lower + upper + 1
    max_diff = 0.0
    for i in range(mat.rows):
        eq = row + i
        for d in range(stride):
            local_col = i - lower + d
            if local_col < 0 or local_col >= mat.columns:
                continue
            direction = _band_direction(eq, d, dir_offset, diag_dir, lower, stride)
            delta = _relative_delta(mat[i, local_col], vec.get_ad_value(eq, direction))
            max_diff = max(max_diff, delta)
    return max_diff


# =============================================================================
# Dense Jacobians
# =============================================================================


def prepare_ad_vector_seeds_for_dense_matrix(
    vec: ADVector,
    dir_offset: int,
    rows: int,
    cols: int,
) -> None:
    """
    Seed identity directions for extracting a dense matrix.

    Entry ``j`` of vec receives a unit seed in direction ``dir_offset + j``.

    Args:
        vec: AD vector pointing to the first seeded entry.
        dir_offset: Number of directions used for other purposes.
        rows: Number of entries to seed.
        cols: Number of directions reserved for the dense block.

    Raises:
        ContractViolationError: If vec is too short or has too few directions.
    """
    _require_dirs(vec, dir_offset + cols)
    if rows > len(vec):
        raise_contract_violation(name="ADVector", expected=f"at least {rows} entries", got=len(vec))
    grads = vec.grads
    grads[:rows, dir_offset : dir_offset + cols] = 0.0
    n = min(rows, cols)
    idx = np.arange(n)
    grads[idx, dir_offset + idx] = 1.0


def extract_dense_jacobian_from_ad(vec: ADVector, dir_offset: int, mat: DenseMatrix) -> None:
    """Fill mat with ``mat[i, j] = d vec[i] / d direction (dir_offset + j)``."""
    _require_dirs(vec, dir_offset + mat.columns)
    mat.set_all(0.0)
    mat.array[:, :] = vec.grads[: mat.rows, dir_offset : dir_offset + mat.columns]


def compare_dense_jacobian_with_ad(vec: ADVector, dir_offset: int, mat: DenseMatrix) -> float:
    """
    Compare an analytic dense matrix with dense seeded AD directions.

    Returns:
        Maximum elementwise relative (or absolute, where AD is zero) difference.
    """
    _require_dirs(vec, dir_offset + mat.columns)
    ad = vec.grads[: mat.rows, dir_offset : dir_offset + mat.columns]
    ana = mat.array
    diff = np.abs(ana - ad)
    nonzero = ad != 0.0
    delta = np.where(nonzero, diff / np.where(nonzero, np.abs(ad), 1.0), diff)
    if delta.size == 0:
        return 0.0
    return float(delta.max())


# =============================================================================
# Primal copy helpers
# =============================================================================


def copy_from_ad(vec: ADVector, dest: FloatArray, size: int) -> None:
    """Copy the primal values of the first size entries of vec into dest."""
    dest[:size] = vec.values[:size]


def copy_to_ad(src: ArrayLike, vec: ADVector, size: int) -> None:
    """Copy size values into the primal part of vec; derivative seeds are kept."""
    vec.values[:size] = np.asarray(src, dtype=np.float64)[:size]


def reset_ad(vec: ADVector, size: int) -> None:
    """Zero the primal values and all derivative directions of the first size entries."""
    vec.values[:size] = 0.0
    vec.grads[:size, :] = 0.0
