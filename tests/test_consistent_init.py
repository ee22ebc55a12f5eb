# tests/test_consistent_init.py
"""Consistent initialization tests for StirredTankModel."""

from __future__ import annotations

import numpy as np
import pytest


def _consistent_y_dot(model, y: np.ndarray, tf: float) -> np.ndarray:
    y_dot = np.zeros_like(y)
    model.residual(0.0, 0, tf, y, None, y_dot)
    model.consistent_initial_time_derivative(0.0, 0, tf, y, y_dot)
    return y_dot


def test_empty_tank_takes_inlet_concentration(make_tank) -> None:
    """At V=0 the liquid balance is algebraic: c = c_in * F_in / (dV/dt + F_out)."""
    model = make_tank({"NCOMP": 1}, flow_in=1.0, flow_out=0.0)
    y = np.array([2.0, 0.0, 0.0])
    model.consistent_initial_state(0.0, 0, 1.0, y)
    np.testing.assert_allclose(y, [2.0, 2.0, 0.0])

    y_dot = _consistent_y_dot(model, y, 1.0)
    assert y_dot[2] == pytest.approx(1.0)
    assert y_dot[1] == pytest.approx(0.0)
    assert y_dot[0] == 0.0

    res = np.zeros(3)
    model.residual(0.0, 0, 1.0, y, y_dot, res)
    np.testing.assert_allclose(res[1:], 0.0, atol=1e-14)


def test_empty_tank_with_outflow(make_tank) -> None:
    """Outflow and filter shrink dV/dt but the ratio still uses F_in."""
    model = make_tank({"NCOMP": 2, "FLOWRATE_FILTER": 0.5}, flow_in=2.0, flow_out=0.5)
    y = np.array([1.0, 3.0, 0.0, 0.0, 0.0])
    model.lean_consistent_initial_state(0.0, 0, 1.0, y)
    # dV/dt = 2 - 0.5 - 0.5 = 1
    np.testing.assert_allclose(y[2:4], np.array([1.0, 3.0]) * 2.0 / 1.5)


def test_balanced_filter_leaves_state_unchanged(make_tank) -> None:
    """F_in == F_filter with no outflow gives a zero denominator; the state is kept."""
    model = make_tank({"NCOMP": 1, "FLOWRATE_FILTER": 1.0}, flow_in=1.0, flow_out=0.0)
    y = np.array([2.0, 0.7, 0.0])
    model.consistent_initial_state(0.0, 0, 1.0, y)
    np.testing.assert_allclose(y, [2.0, 0.7, 0.0])

    y_dot = _consistent_y_dot(model, y, 1.0)
    assert y_dot[2] == 0.0
    assert y_dot[1] == 0.0


def test_filled_tank_is_left_alone(make_tank, linear_binding_params, linear_state) -> None:
    """With V > 0 no algebraic equation is solved."""
    model = make_tank(linear_binding_params, flow_in=0.8, flow_out=0.5)
    y, _ = linear_state
    before = y.copy()
    model.consistent_initial_state(0.0, 0, 2.0, y)
    np.testing.assert_array_equal(y, before)


@pytest.mark.parametrize("tf", [1.0, 2.5])
def test_time_derivative_zeroes_residual(make_tank, linear_binding_params, linear_state, tf: float) -> None:
    """Consistent y_dot makes every non-inlet residual vanish."""
    model = make_tank(linear_binding_params, flow_in=0.8, flow_out=0.5)
    y, _ = linear_state
    y_dot = _consistent_y_dot(model, y, tf)

    assert y_dot[5] == pytest.approx(0.8 - 0.5 - 0.1)
    # kinetic linear binding: dq/dt = (ka*c - kd*q) / tf
    assert y_dot[4] == pytest.approx((1.5 * y[2] - 0.4 * y[4]) / tf)

    res = np.zeros_like(y)
    model.residual(0.0, 0, tf, y, y_dot, res)
    np.testing.assert_allclose(res[2:], 0.0, atol=1e-12)


def test_lean_time_derivative_matches_full(make_tank, linear_binding_params, linear_state) -> None:
    """The lean variant produces the same derivative."""
    model = make_tank(linear_binding_params, flow_in=0.8, flow_out=0.5)
    y, _ = linear_state
    full = _consistent_y_dot(model, y, 1.0)

    lean = np.zeros_like(y)
    model.residual(0.0, 0, 1.0, y, None, lean)
    model.lean_consistent_initial_time_derivative(0.0, 0, 1.0, y, lean)
    np.testing.assert_allclose(lean, full)


@pytest.mark.parametrize(
    ("params", "flow_out", "state"),
    [
        ({"NCOMP": 2}, 0.5, [3.0, 4.0, 1.0, 2.0, 5.0]),
        ({"NCOMP": 1, "FLOWRATE_FILTER": 1.0}, 0.0, [2.0, 0.7, 0.0]),
    ],
    ids=["filled", "empty-balanced"],
)
def test_inlet_derivative_is_zero(make_tank, params, flow_out: float, state) -> None:
    """The inlet residual left in y_dot on entry is replaced by a zero derivative."""
    model = make_tank(params, flow_in=1.0, flow_out=flow_out)
    y = np.array(state)
    n_comp = params["NCOMP"]
    y_dot = _consistent_y_dot(model, y, 1.0)
    np.testing.assert_array_equal(y_dot[:n_comp], 0.0)
