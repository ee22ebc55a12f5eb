# tests/test_autodiff.py
"""Unit tests for cstr_engine.autodiff.

This module verifies:
- Dual arithmetic propagates derivatives (sum, product, quotient, power).
- mixing Dual with NumPy scalars keeps derivatives.
- derivative arrays of different lengths combine by zero-padding.
- ADVector element access (copies), slicing (views) and assignment semantics.
"""

from __future__ import annotations

import numpy as np
import pytest

from cstr_engine.autodiff import ADVector, Dual, param_value, primal
from cstr_engine.errors import ContractViolationError

# -------------------------------------------------------------------
# Dual
# -------------------------------------------------------------------


def test_dual_product_rule() -> None:
    """d(x*y) = y dx + x dy."""
    x = Dual(3.0, [1.0, 0.0])
    y = Dual(2.0, [0.0, 1.0])
    z = x * y
    assert z.value == pytest.approx(6.0)
    np.testing.assert_allclose(z.grad, [2.0, 3.0])


def test_dual_quotient_and_reverse_ops() -> None:
    """Quotient rule and reflected operators with plain floats."""
    x = Dual(2.0, [1.0])
    z = 1.0 / x
    assert z.value == pytest.approx(0.5)
    assert z.get_ad_value(0) == pytest.approx(-0.25)

    w = 5.0 - x
    assert w.value == pytest.approx(3.0)
    assert w.get_ad_value(0) == pytest.approx(-1.0)

    q = x / Dual(4.0, [0.0, 1.0])
    assert q.value == pytest.approx(0.5)
    np.testing.assert_allclose(q.grad, [0.25, -2.0 / 16.0])


def test_dual_power() -> None:
    """d(x^3) = 3 x^2 dx."""
    x = Dual(2.0, [1.0])
    z = x**3
    assert z.value == pytest.approx(8.0)
    assert z.get_ad_value(0) == pytest.approx(12.0)


def test_dual_numpy_scalar_dispatch() -> None:
    """np.float64 on the left must not drop derivatives."""
    x = Dual(2.0, [1.0])
    z = np.float64(3.0) * x
    assert isinstance(z, Dual)
    assert z.get_ad_value(0) == pytest.approx(3.0)

    s = np.float64(1.0) + x
    assert isinstance(s, Dual)
    assert s.value == pytest.approx(3.0)


def test_dual_zero_padding() -> None:
    """Unset directions behave as exact zeros."""
    a = Dual(1.0, [1.0])
    b = Dual(1.0, [0.0, 0.0, 2.0])
    c = a + b
    np.testing.assert_allclose(c.grad, [1.0, 0.0, 2.0])
    assert a.get_ad_value(5) == 0.0


def test_dual_set_value_keeps_seeds() -> None:
    """set_value changes only the primal; set_ad_value grows storage."""
    x = Dual(1.0)
    x.set_ad_value(2, 1.0)
    x.set_value(7.0)
    assert x.value == 7.0
    np.testing.assert_allclose(x.grad, [0.0, 0.0, 1.0])
    x.reset_ad_values()
    assert not np.any(x.grad)

    with pytest.raises(ValueError, match="non-negative"):
        x.set_ad_value(-1, 1.0)


def test_dual_comparisons_use_primal() -> None:
    """Comparisons only look at the primal value."""
    assert Dual(1.0, [5.0]) == 1.0
    assert Dual(1.0) < Dual(2.0, [-1.0])
    assert Dual(0.0) == 0.0
    assert primal(Dual(3.5)) == 3.5


def test_param_value_active_flag() -> None:
    """param_value returns a Dual copy when active, else a float."""
    p = Dual(2.0, [0.0, 1.0])
    active = param_value(p, active=True)
    assert isinstance(active, Dual)
    assert active is not p
    assert param_value(p, active=False) == 2.0
    assert isinstance(param_value(p, active=False), float)
    assert isinstance(param_value(1.0, active=True), Dual)


# -------------------------------------------------------------------
# ADVector
# -------------------------------------------------------------------


def test_advector_getitem_returns_copy() -> None:
    """Integer indexing yields independent Dual copies."""
    vec = ADVector.from_values([1.0, 2.0], n_dirs=2)
    vec.set_ad_value(1, 0, 1.0)
    d = vec[1]
    assert d.value == 2.0
    np.testing.assert_allclose(d.grad, [1.0, 0.0])
    d.set_ad_value(1, 5.0)
    assert vec.get_ad_value(1, 1) == 0.0


def test_advector_slice_is_view() -> None:
    """Slices share storage with the parent vector."""
    vec = ADVector(5, n_dirs=2)
    tail = vec[2:]
    assert len(tail) == 3
    tail[0] = Dual(4.0, [0.0, 1.0])
    assert vec.values[2] == 4.0
    assert vec.get_ad_value(2, 1) == 1.0


def test_advector_setitem_semantics() -> None:
    """Plain numbers clear derivatives; set_value keeps them."""
    vec = ADVector(2, n_dirs=2)
    vec.set_ad_value(0, 0, 1.0)
    vec.set_value(0, 3.0)
    assert vec.get_ad_value(0, 0) == 1.0

    vec[0] = 2.0
    assert vec.values[0] == 2.0
    assert vec.get_ad_value(0, 0) == 0.0


def test_advector_rejects_foreign_directions() -> None:
    """Assigning a Dual with extra non-zero directions violates the contract."""
    vec = ADVector(1, n_dirs=1)
    vec[0] = Dual(1.0, [1.0, 0.0, 0.0])
    with pytest.raises(ContractViolationError):
        vec[0] = Dual(1.0, [0.0, 0.0, 1.0])


def test_advector_rejects_bad_keys() -> None:
    """Only integers and slices are valid keys."""
    vec = ADVector(2, n_dirs=1)
    with pytest.raises(TypeError, match="integers or slices"):
        _ = vec["a"]  # type: ignore[index]
