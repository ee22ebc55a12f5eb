# src/cstr_engine/autodiff.py
"""Forward-mode automatic differentiation primitives.

This module provides the two numeric building blocks used by the residual
engine when Jacobians or parameter sensitivities are computed by AD:

- :class:`Dual`: a scalar carrying a primal value and a vector of directional
  derivatives. Arithmetic propagates the derivatives (forward mode).
- :class:`ADVector`: a contiguous vector of dual values stored as two NumPy
  arrays (primal values and a ``(size, n_dirs)`` derivative block). Integer
  indexing yields :class:`Dual` copies, slicing yields views sharing storage,
  so sub-blocks can be handed to collaborators like offset pointers.

Design notes:
    * Evaluators are written once against plain arithmetic; passing float
      arrays yields values only, passing ADVector/Dual yields derivatives too.
    * ``Dual.__array_ufunc__`` is ``None`` so mixed expressions with NumPy
      scalars dispatch to the Dual operators instead of silently dropping
      derivatives.
    * Dual values of different derivative lengths combine by zero-padding; a
      direction that was never set is an exact zero.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias, cast

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import raise_contract_violation

if TYPE_CHECKING:
    from collections.abc import Iterator


FloatArray: TypeAlias = NDArray[np.float64]

_NEGATIVE_DIRECTION_ERROR = "AD direction must be non-negative; got {direction}"
_ADVECTOR_KEY_ERROR = "ADVector indices must be integers or slices; got {typ}"


def _as_scalar(other: object) -> float | None:
    """Return other as a float if it is a real scalar, else None."""
    if isinstance(other, (int, float, np.integer, np.floating)) and not isinstance(
        other, bool
    ):
        return float(other)
    return None


def _aligned(a: FloatArray, b: FloatArray) -> tuple[FloatArray, FloatArray]:
    """Zero-pad the shorter of two derivative arrays to the longer length."""
    na = a.shape[0]
    nb = b.shape[0]
    if na == nb:
        return a, b
    if na < nb:
        padded = np.zeros(nb, dtype=np.float64)
        padded[:na] = a
        return padded, b
    padded = np.zeros(na, dtype=np.float64)
    padded[:nb] = b
    return a, padded


class Dual:
    """Scalar with a primal value and directional derivatives."""

    __slots__ = ("_grad", "_value")
    __array_ufunc__ = None
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, value: float = 0.0, grad: ArrayLike | None = None) -> None:
        """
        Initialize a Dual.

        Args:
            value: Primal value.
            grad: Optional directional derivatives (copied). Defaults to no
                active directions.
        """
        self._value = float(value)
        if grad is None:
            self._grad: FloatArray = np.zeros(0, dtype=np.float64)
        else:
            self._grad = np.array(grad, dtype=np.float64).ravel()

    @classmethod
    def _wrap(cls, value: float, grad: FloatArray) -> Dual:
        out = cls.__new__(cls)
        out._value = value
        out._grad = grad
        return out

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def value(self) -> float:
        """Primal value."""
        return self._value

    @property
    def grad(self) -> FloatArray:
        """Directional derivatives (live array, do not resize)."""
        return self._grad

    @property
    def n_dirs(self) -> int:
        """Number of stored derivative directions."""
        return int(self._grad.shape[0])

    def set_value(self, value: float) -> None:
        """Set the primal value without touching the derivatives."""
        self._value = float(value)

    def get_ad_value(self, direction: int) -> float:
        """
        Return the derivative in a given direction.

        Args:
            direction: Direction index.

        Returns:
            Derivative value; 0.0 for directions that were never set.
        """
        if 0 <= direction < self._grad.shape[0]:
            return float(self._grad[direction])
        return 0.0

    def set_ad_value(self, direction: int, value: float) -> None:
        """
        Set the derivative in a given direction, growing storage if needed.

        Args:
            direction: Direction index.
            value: Derivative value (seed).

        Raises:
            ValueError: If direction is negative.
        """
        if direction < 0:
            raise ValueError(_NEGATIVE_DIRECTION_ERROR.format(direction=direction))
        if direction >= self._grad.shape[0]:
            grown = np.zeros(direction + 1, dtype=np.float64)
            grown[: self._grad.shape[0]] = self._grad
            self._grad = grown
        self._grad[direction] = float(value)

    def reset_ad_values(self, value: float = 0.0) -> None:
        """Set every stored derivative direction to value."""
        self._grad[:] = value

    def copy(self) -> Dual:
        """Return a deep copy."""
        return Dual._wrap(self._value, self._grad.copy())

    def __float__(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"Dual({self._value!r}, grad={self._grad.tolist()!r})"

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __pos__(self) -> Dual:
        return self.copy()

    def __neg__(self) -> Dual:
        return Dual._wrap(-self._value, -self._grad)

    def __abs__(self) -> Dual:
        if self._value < 0.0:
            return -self
        return self.copy()

    def __add__(self, other: object) -> Dual:
        if isinstance(other, Dual):
            ga, gb = _aligned(self._grad, other._grad)
            return Dual._wrap(self._value + other._value, ga + gb)
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        return Dual._wrap(self._value + s, self._grad.copy())

    __radd__ = __add__

    def __sub__(self, other: object) -> Dual:
        if isinstance(other, Dual):
            ga, gb = _aligned(self._grad, other._grad)
            return Dual._wrap(self._value - other._value, ga - gb)
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        return Dual._wrap(self._value - s, self._grad.copy())

    def __rsub__(self, other: object) -> Dual:
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        return Dual._wrap(s - self._value, -self._grad)

    def __mul__(self, other: object) -> Dual:
        if isinstance(other, Dual):
            ga, gb = _aligned(self._grad, other._grad)
            return Dual._wrap(
                self._value * other._value, ga * other._value + gb * self._value
            )
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        return Dual._wrap(self._value * s, self._grad * s)

    __rmul__ = __mul__

    def __truediv__(self, other: object) -> Dual:
        if isinstance(other, Dual):
            ga, gb = _aligned(self._grad, other._grad)
            denom = other._value
            return Dual._wrap(
                self._value / denom,
                (ga * denom - gb * self._value) / (denom * denom),
            )
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        return Dual._wrap(self._value / s, self._grad / s)

    def __rtruediv__(self, other: object) -> Dual:
        s = _as_scalar(other)
        if s is None:
            return NotImplemented
        value = s / self._value
        return Dual._wrap(value, -value / self._value * self._grad)

    def __pow__(self, exponent: object) -> Dual:
        p = _as_scalar(exponent)
        if p is None:
            return NotImplemented
        return Dual._wrap(
            self._value**p, p * self._value ** (p - 1.0) * self._grad
        )

    # ------------------------------------------------------------------
    # Comparisons (primal value only)
    # ------------------------------------------------------------------

    @staticmethod
    def _primal(other: object) -> float | None:
        if isinstance(other, Dual):
            return other._value
        return _as_scalar(other)

    def __eq__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value == rhs

    def __ne__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value != rhs

    def __lt__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value < rhs

    def __le__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value <= rhs

    def __gt__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value > rhs

    def __ge__(self, other: object) -> bool:
        rhs = self._primal(other)
        if rhs is None:
            return NotImplemented
        return self._value >= rhs


Scalar: TypeAlias = float | Dual


def primal(x: Scalar) -> float:
    """Return the primal value of a float or Dual."""
    return float(x)


def param_value(x: Scalar, *, active: bool) -> Scalar:
    """
    Return a parameter either as an active Dual or as its plain value.

    Args:
        x: Parameter value (float or Dual).
        active: Whether derivative directions must be propagated.

    Returns:
        A Dual copy if active, else the primal float.
    """
    if active:
        return x.copy() if isinstance(x, Dual) else Dual(float(x))
    return float(x)


class ADVector:
    """Contiguous vector of dual values with a fixed number of directions."""

    __slots__ = ("_grads", "_values")

    def __init__(self, size: int, n_dirs: int) -> None:
        """
        Initialize a zero ADVector.

        Args:
            size: Number of entries.
            n_dirs: Number of derivative directions per entry.
        """
        self._values: FloatArray = np.zeros(int(size), dtype=np.float64)
        self._grads: FloatArray = np.zeros((int(size), int(n_dirs)), dtype=np.float64)

    @classmethod
    def _view(cls, values: FloatArray, grads: FloatArray) -> ADVector:
        out = cls.__new__(cls)
        out._values = values
        out._grads = grads
        return out

    @classmethod
    def from_values(cls, values: ArrayLike, n_dirs: int) -> ADVector:
        """
        Build an ADVector from primal values with zero derivatives.

        Args:
            values: 1D primal values.
            n_dirs: Number of derivative directions per entry.

        Returns:
            New ADVector.
        """
        arr = np.asarray(values, dtype=np.float64).ravel()
        vec = cls(arr.shape[0], n_dirs)
        vec._values[:] = arr
        return vec

    # ------------------------------------------------------------------
    # Shape / raw storage
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return int(self._values.shape[0])

    @property
    def n_dirs(self) -> int:
        """Number of derivative directions per entry."""
        return int(self._grads.shape[1])

    @property
    def values(self) -> FloatArray:
        """Primal values (live view)."""
        return self._values

    @property
    def grads(self) -> FloatArray:
        """Derivative block of shape (size, n_dirs) (live view)."""
        return self._grads

    # ------------------------------------------------------------------
    # Element access
    # ------------------------------------------------------------------

    def __getitem__(self, key: int | slice) -> Any:
        if isinstance(key, slice):
            return ADVector._view(self._values[key], self._grads[key])
        if isinstance(key, (int, np.integer)):
            return Dual._wrap(float(self._values[key]), self._grads[key].copy())
        raise TypeError(_ADVECTOR_KEY_ERROR.format(typ=type(key)))

    def __setitem__(self, key: int, value: Scalar) -> None:
        if not isinstance(key, (int, np.integer)):
            raise TypeError(_ADVECTOR_KEY_ERROR.format(typ=type(key)))
        if isinstance(value, Dual):
            n = value.n_dirs
            if n > self.n_dirs and np.any(value.grad[self.n_dirs :] != 0.0):
                raise_contract_violation(
                    name="Dual assigned to ADVector",
                    expected=f"at most {self.n_dirs} active directions",
                    got=n,
                )
            n = min(n, self.n_dirs)
            self._values[key] = value.value
            self._grads[key, :] = 0.0
            self._grads[key, :n] = value.grad[:n]
            return
        self._values[key] = float(value)
        self._grads[key, :] = 0.0

    def __iter__(self) -> Iterator[Dual]:
        for i in range(len(self)):
            yield cast("Dual", self[i])

    def set_value(self, index: int, value: float) -> None:
        """Set the primal value of one entry without touching its derivatives."""
        self._values[index] = float(value)

    def get_ad_value(self, index: int, direction: int) -> float:
        """Return the derivative of one entry in a given direction."""
        return float(self._grads[index, direction])

    def set_ad_value(self, index: int, direction: int, value: float) -> None:
        """Set the derivative of one entry in a given direction."""
        self._grads[index, direction] = float(value)

    def __repr__(self) -> str:
        return f"ADVector(size={len(self)}, n_dirs={self.n_dirs})"
