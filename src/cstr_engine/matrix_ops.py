# src/cstr_engine/matrix_ops.py
"""Matrix containers used to build, store and factorize unit Jacobians.

This module provides small, purpose-built matrix types:

- :class:`SparseMatrix`: coordinate-list (COO) builder with fixed capacity.
  Meant as a write-once intermediate format; convert it with
  :meth:`SparseMatrix.to_compressed` for repeated products.
- :class:`CompressedSparseMatrix`: CSR product format backed by SciPy.
- :class:`DenseMatrix`: dense Jacobian store with cached LU factorization.
- :class:`BandMatrix`: banded store addressed relative to the main diagonal,
  used as target of band-compressed AD extraction.

Design notes:
    * CPU-first: dense factorizations rely on SciPy LAPACK (lu_factor/lu_solve);
      CSR products rely on SciPy sparse.
    * Factorization results are cached on the matrix and invalidated by every
      mutating call, so repeated solves against an unchanged matrix reuse one
      factorization.
    * Solve failures are reported by boolean return values, never raised.
"""

from __future__ import annotations

import warnings
from typing import TypeAlias, cast

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.linalg import LinAlgError, LinAlgWarning, lu_factor, lu_solve
from scipy.sparse import coo_matrix, csr_matrix

from .errors import raise_contract_violation

FloatArray: TypeAlias = NDArray[np.float64]
IndexArray: TypeAlias = NDArray[np.int64]


# =============================================================================
# Error message constants
# =============================================================================

_NEGATIVE_CAPACITY_ERROR = "capacity must be non-negative; got {capacity}"
_SHAPE_ERROR = "shape must contain non-negative sizes; got {shape}"
_COPY_SHAPE_ERROR = "Cannot copy matrix of shape {src} into shape {dst}"
_BANDWIDTH_ERROR = "bandwidths must be non-negative; got lower={lower}, upper={upper}"
_CENTERED_OOB_ERROR = "Diagonal offset {diag} outside band [-{lower}, {upper}]"
_SQUARE_ERROR = "Matrix must be square to factorize; got shape {shape}"


# =============================================================================
# Sparse builder (COO)
# =============================================================================


class SparseMatrix:
    """Sparse matrix in coordinate list format with fixed capacity.

    Elements are accessed by :meth:`at` (lookup-or-insert) and
    :meth:`add_element` (always inserts). Contrary to :meth:`at`,
    :meth:`add_element` does not check whether the position already exists, so
    two calls with the same position create two slots that are summed by every
    product and by :meth:`to_compressed`.
    """

    def __init__(self, capacity: int = 0) -> None:
        """
        Initialize an empty SparseMatrix.

        Args:
            capacity: Maximum number of stored elements.
        """
        self._rows: IndexArray = np.zeros(0, dtype=np.int64)
        self._cols: IndexArray = np.zeros(0, dtype=np.int64)
        self._values: FloatArray = np.zeros(0, dtype=np.float64)
        self._cur_idx = 0
        self.resize(capacity)

    def clear(self) -> None:
        """Drop all elements; the capacity is kept."""
        self._cur_idx = 0

    def resize(self, capacity: int) -> None:
        """
        Reset the capacity. All previous content is lost.

        Args:
            capacity: Maximum number of stored elements.

        Raises:
            ValueError: If capacity is negative.
        """
        if capacity < 0:
            raise ValueError(_NEGATIVE_CAPACITY_ERROR.format(capacity=capacity))
        self._rows = np.zeros(capacity, dtype=np.int64)
        self._cols = np.zeros(capacity, dtype=np.int64)
        self._values = np.zeros(capacity, dtype=np.float64)
        self._cur_idx = 0

    @property
    def capacity(self) -> int:
        """Maximum number of elements that can be stored."""
        return int(self._rows.shape[0])

    @property
    def num_non_zero(self) -> int:
        """Number of (structurally) non-zero slots in use."""
        return self._cur_idx

    @property
    def rows(self) -> IndexArray:
        """Row indices of the populated slots."""
        return self._rows[: self._cur_idx]

    @property
    def cols(self) -> IndexArray:
        """Column indices of the populated slots."""
        return self._cols[: self._cur_idx]

    @property
    def values(self) -> FloatArray:
        """Values of the populated slots (live view)."""
        return self._values[: self._cur_idx]

    def _append(self, row: int, col: int, value: float) -> int:
        if self._cur_idx >= self.capacity:
            raise_contract_violation(
                name="SparseMatrix",
                expected=f"at most {self.capacity} elements",
                got=self._cur_idx + 1,
            )
        idx = self._cur_idx
        self._rows[idx] = row
        self._cols[idx] = col
        self._values[idx] = value
        self._cur_idx += 1
        return idx

    def add_element(self, row: int, col: int, value: float) -> None:
        """
        Append a new element without checking for an existing slot.

        Args:
            row: Row index.
            col: Column index.
            value: Element value.

        Raises:
            ContractViolationError: If the capacity is exhausted.
        """
        self._append(row, col, value)

    def _find(self, row: int, col: int) -> int | None:
        n = self._cur_idx
        hits = np.flatnonzero((self._rows[:n] == row) & (self._cols[:n] == col))
        if hits.size == 0:
            return None
        return int(hits[0])

    def at(self, row: int, col: int) -> int:
        """
        Return the slot index of (row, col), inserting a zero slot if absent.

        Args:
            row: Row index.
            col: Column index.

        Returns:
            Slot index into :attr:`values`.

        Raises:
            ContractViolationError: If a slot must be created but the capacity
                is exhausted.
        """
        idx = self._find(row, col)
        if idx is not None:
            return idx
        return self._append(row, col, 0.0)

    def __getitem__(self, pos: tuple[int, int]) -> float:
        idx = self._find(*pos)
        if idx is None:
            return 0.0
        return float(self._values[idx])

    def __setitem__(self, pos: tuple[int, int], value: float) -> None:
        self._values[self.at(*pos)] = value

    def add_to(self, row: int, col: int, value: float) -> None:
        """Add value to the element at (row, col) (lookup-or-insert)."""
        self._values[self.at(row, col)] += value

    def multiply_vector(
        self,
        x: ArrayLike,
        alpha: float,
        beta: float,
        out: FloatArray,
    ) -> None:
        """
        Compute ``out = alpha * A @ x + beta * out`` in place.

        Args:
            x: Vector to multiply with.
            alpha: Factor in front of ``A @ x``.
            beta: Factor in front of ``out``.
            out: Vector that is scaled and accumulated into.
        """
        x_arr = np.asarray(x, dtype=np.float64)
        if beta == 0.0:
            out.fill(0.0)
        else:
            out *= beta
        n = self._cur_idx
        np.add.at(out, self._rows[:n], alpha * self._values[:n] * x_arr[self._cols[:n]])

    def multiply_add(self, x: ArrayLike, out: FloatArray) -> None:
        """Compute ``out += A @ x`` in place."""
        x_arr = np.asarray(x, dtype=np.float64)
        n = self._cur_idx
        np.add.at(out, self._rows[:n], self._values[:n] * x_arr[self._cols[:n]])

    def multiply_subtract(self, x: ArrayLike, out: FloatArray) -> None:
        """Compute ``out -= A @ x`` in place."""
        x_arr = np.asarray(x, dtype=np.float64)
        n = self._cur_idx
        np.subtract.at(out, self._rows[:n], self._values[:n] * x_arr[self._cols[:n]])

    def to_compressed(self, shape: tuple[int, int] | None = None) -> CompressedSparseMatrix:
        """
        Convert to a compressed (CSR) matrix; duplicate slots are summed.

        Args:
            shape: Optional matrix shape. Defaults to the smallest shape that
                holds all populated slots.

        Returns:
            CompressedSparseMatrix with the same entries.
        """
        n = self._cur_idx
        if shape is None:
            n_rows = int(self._rows[:n].max()) + 1 if n else 0
            n_cols = int(self._cols[:n].max()) + 1 if n else 0
            shape = (n_rows, n_cols)
        coo = coo_matrix(
            (self._values[:n].copy(), (self._rows[:n].copy(), self._cols[:n].copy())),
            shape=shape,
        )
        return CompressedSparseMatrix(coo.tocsr())

    def __repr__(self) -> str:
        entries = ", ".join(
            f"({r}, {c}) = {v!r}"
            for r, c, v in zip(self.rows, self.cols, self.values, strict=True)
        )
        return f"SparseMatrix(capacity={self.capacity}, [{entries}])"


# =============================================================================
# Compressed product format (CSR)
# =============================================================================


class CompressedSparseMatrix:
    """Compressed sparse row matrix for repeated matrix-vector products."""

    def __init__(self, matrix: csr_matrix) -> None:
        """
        Initialize from a SciPy CSR matrix.

        Args:
            matrix: CSR matrix (duplicates are summed).
        """
        self._mat = cast("csr_matrix", matrix.tocsr())
        self._mat.sum_duplicates()

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix shape."""
        return cast("tuple[int, int]", self._mat.shape)

    @property
    def num_non_zero(self) -> int:
        """Number of stored entries."""
        return int(self._mat.nnz)

    def to_scipy(self) -> csr_matrix:
        """Return the underlying CSR matrix."""
        return self._mat

    def multiply_add(self, x: ArrayLike, out: FloatArray, alpha: float = 1.0) -> None:
        """Compute ``out += alpha * A @ x`` in place."""
        out += alpha * (self._mat @ np.asarray(x, dtype=np.float64))

    def multiply_subtract(self, x: ArrayLike, out: FloatArray) -> None:
        """Compute ``out -= A @ x`` in place."""
        out -= self._mat @ np.asarray(x, dtype=np.float64)


# =============================================================================
# Dense store with cached factorization
# =============================================================================


class DenseMatrix:
    """Dense matrix with an attached, cached LU factorization."""

    def __init__(self, rows: int = 0, cols: int = 0) -> None:
        """
        Initialize a zero matrix.

        Args:
            rows: Number of rows.
            cols: Number of columns.
        """
        self._data: FloatArray = np.zeros((0, 0), dtype=np.float64)
        self._lu: tuple[FloatArray, NDArray[np.int32]] | None = None
        self.resize(rows, cols)

    def resize(self, rows: int, cols: int) -> None:
        """
        Reallocate as a zero matrix of the given shape.

        Raises:
            ValueError: If a size is negative.
        """
        if rows < 0 or cols < 0:
            raise ValueError(_SHAPE_ERROR.format(shape=(rows, cols)))
        self._data = np.zeros((rows, cols), dtype=np.float64)
        self._lu = None

    @property
    def rows(self) -> int:
        """Number of rows."""
        return int(self._data.shape[0])

    @property
    def columns(self) -> int:
        """Number of columns."""
        return int(self._data.shape[1])

    @property
    def array(self) -> FloatArray:
        """Matrix entries (live view). Writing through it does not reset the
        cached factorization; use item assignment or the mutators instead."""
        return self._data

    @property
    def is_factorized(self) -> bool:
        """Whether a valid factorization of the current entries is cached."""
        return self._lu is not None

    def __getitem__(self, pos: tuple[int, int]) -> float:
        return float(self._data[pos])

    def __setitem__(self, pos: tuple[int, int], value: float) -> None:
        self._data[pos] = value
        self._lu = None

    def set_all(self, value: float) -> None:
        """Set every entry to value."""
        self._data.fill(value)
        self._lu = None

    def add_to(self, row: int, col: int, value: float) -> None:
        """Add value to the entry at (row, col)."""
        self._data[row, col] += value
        self._lu = None

    def copy_from(self, other: DenseMatrix) -> None:
        """
        Copy the entries of another matrix of identical shape.

        Raises:
            ValueError: If shapes differ.
        """
        if other._data.shape != self._data.shape:
            raise ValueError(
                _COPY_SHAPE_ERROR.format(src=other._data.shape, dst=self._data.shape)
            )
        np.copyto(self._data, other._data)
        self._lu = None

    def multiply_vector(
        self,
        x: ArrayLike,
        out: FloatArray,
        alpha: float = 1.0,
        beta: float = 0.0,
    ) -> None:
        """Compute ``out = alpha * A @ x + beta * out`` in place."""
        prod = self._data @ np.asarray(x, dtype=np.float64)
        if beta == 0.0:
            np.multiply(prod, alpha, out=out)
        else:
            out *= beta
            out += alpha * prod

    def factorize(self) -> bool:
        """
        Compute and cache the LU factorization of the current entries.

        Returns:
            True on success, False if the matrix is singular or not finite.

        Raises:
            ValueError: If the matrix is not square.
        """
        if self.rows != self.columns:
            raise ValueError(_SQUARE_ERROR.format(shape=self._data.shape))
        self._lu = None
        if self.rows == 0:
            self._lu = (self._data.copy(), np.zeros(0, dtype=np.int32))
            return True
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", LinAlgWarning)
                lu, piv = lu_factor(self._data, check_finite=True)
        except (LinAlgError, ValueError):
            return False
        if not np.all(np.isfinite(lu)) or np.any(np.diag(lu) == 0.0):
            return False
        self._lu = (lu, piv)
        return True

    def solve(self, rhs: FloatArray) -> bool:
        """
        Solve ``A x = rhs`` in place using the cached factorization.

        Args:
            rhs: Right-hand side, overwritten with the solution.

        Returns:
            True on success, False if no valid factorization is cached.
        """
        if self._lu is None:
            return False
        if self.rows == 0:
            return True
        sol = lu_solve(self._lu, rhs, check_finite=False)
        if not np.all(np.isfinite(sol)):
            return False
        rhs[:] = sol
        return True

    def __repr__(self) -> str:
        return f"DenseMatrix({self._data!r})"


# =============================================================================
# Band store
# =============================================================================


class BandMatrix:
    """Square banded matrix addressed by (row, diagonal offset)."""

    def __init__(self, rows: int, lower_bandwidth: int, upper_bandwidth: int) -> None:
        """
        Initialize a zero band matrix.

        Args:
            rows: Number of rows (and columns).
            lower_bandwidth: Number of subdiagonals.
            upper_bandwidth: Number of superdiagonals.

        Raises:
            ValueError: If a size is negative.
        """
        if lower_bandwidth < 0 or upper_bandwidth < 0:
            raise ValueError(
                _BANDWIDTH_ERROR.format(lower=lower_bandwidth, upper=upper_bandwidth)
            )
        if rows < 0:
            raise ValueError(_SHAPE_ERROR.format(shape=(rows, rows)))
        self._lower = int(lower_bandwidth)
        self._upper = int(upper_bandwidth)
        self._data: FloatArray = np.zeros(
            (int(rows), self._lower + self._upper + 1), dtype=np.float64
        )

    @property
    def rows(self) -> int:
        """Number of rows."""
        return int(self._data.shape[0])

    @property
    def lower_bandwidth(self) -> int:
        """Number of subdiagonals."""
        return self._lower

    @property
    def upper_bandwidth(self) -> int:
        """Number of superdiagonals."""
        return self._upper

    @property
    def stride(self) -> int:
        """Total band width (lower + upper + 1)."""
        return self._lower + self._upper + 1

    def _check_diag(self, diag: int) -> None:
        if not (-self._lower <= diag <= self._upper):
            raise IndexError(
                _CENTERED_OOB_ERROR.format(diag=diag, lower=self._lower, upper=self._upper)
            )

    def centered(self, row: int, diag: int) -> float:
        """Return the entry at (row, row + diag)."""
        self._check_diag(diag)
        return float(self._data[row, self._lower + diag])

    def set_centered(self, row: int, diag: int, value: float) -> None:
        """Set the entry at (row, row + diag)."""
        self._check_diag(diag)
        self._data[row, self._lower + diag] = value

    def __getitem__(self, pos: tuple[int, int]) -> float:
        row, col = pos
        diag = col - row
        if not (-self._lower <= diag <= self._upper):
            return 0.0
        return float(self._data[row, self._lower + diag])

    def __setitem__(self, pos: tuple[int, int], value: float) -> None:
        row, col = pos
        self.set_centered(row, col - row, value)

    def set_all(self, value: float) -> None:
        """Set every band entry to value."""
        self._data.fill(value)

    def to_dense(self) -> FloatArray:
        """Return a dense copy of the matrix."""
        n = self.rows
        dense = np.zeros((n, n), dtype=np.float64)
        for diag in range(-self._lower, self._upper + 1):
            r0 = max(0, -diag)
            r1 = min(n, n - diag)
            if r0 >= r1:
                continue
            r = np.arange(r0, r1)
            dense[r, r + diag] = self._data[r, self._lower + diag]
        return dense

    def multiply_vector(
        self,
        x: ArrayLike,
        out: FloatArray,
        alpha: float = 1.0,
        beta: float = 0.0,
    ) -> None:
        """Compute ``out = alpha * A @ x + beta * out`` in place."""
        x_arr = np.asarray(x, dtype=np.float64)
        n = self.rows
        prod = np.zeros(n, dtype=np.float64)
        for diag in range(-self._lower, self._upper + 1):
            r0 = max(0, -diag)
            r1 = min(n, n - diag)
            if r0 >= r1:
                continue
            prod[r0:r1] += self._data[r0:r1, self._lower + diag] * x_arr[r0 + diag : r1 + diag]
        if beta == 0.0:
            np.multiply(prod, alpha, out=out)
        else:
            out *= beta
            out += alpha * prod
