# tests/test_sensitivity.py
"""Forward sensitivity tests for StirredTankModel.

This module verifies:
- parameter derivatives dF/dp carried by the AD residual;
- the combined sensitivity residual against central differences;
- consistent initial sensitivities;
- the time derivative Jacobian product.
"""

from __future__ import annotations

import numpy as np
import pytest

from cstr_engine import ADVector, ParameterId

FILTER = ParameterId("FLOWRATE_FILTER", 0)
POROSITY = ParameterId("POROSITY", 0)
TF = 2.0


@pytest.fixture
def tank(make_tank, linear_binding_params):
    return make_tank(linear_binding_params, flow_in=0.8, flow_out=0.5)


def _residual(model, y, y_dot) -> np.ndarray:
    res = np.zeros_like(y)
    model.residual(0.0, 0, TF, y, y_dot, res)
    return res


def test_filter_sensitivity(tank, linear_state) -> None:
    """Only the volume row depends on the filter flow rate."""
    y, y_dot = linear_state
    assert tank.set_sensitive_parameter(FILTER, 0, 1.0)
    ad_res = ADVector(tank.num_dofs, 1)
    res = np.zeros_like(y)
    tank.residual(0.0, 0, TF, y, y_dot, res, ad_res=ad_res, param_sensitivity=True)

    np.testing.assert_allclose(ad_res.grads[:, 0], [0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(res, _residual(tank, y, y_dot))


def test_porosity_sensitivity_matches_finite_difference(tank, linear_state) -> None:
    """dF/d(porosity) enters through 1/porosity - 1."""
    y, y_dot = linear_state
    assert tank.set_sensitive_parameter(POROSITY, 0, 1.0)
    ad_res = ADVector(tank.num_dofs, 1)
    tank.residual_sens_fwd_ad_only(0.0, 0, TF, y, y_dot, ad_res)

    h = 1e-6
    tank.set_sensitive_parameter_value(POROSITY, 0.6 + h)
    plus = _residual(tank, y, y_dot)
    tank.set_sensitive_parameter_value(POROSITY, 0.6 - h)
    minus = _residual(tank, y, y_dot)
    fd = (plus - minus) / (2.0 * h)

    np.testing.assert_allclose(ad_res.grads[:, 0], fd, rtol=1e-6, atol=1e-8)
    assert ad_res.grads[2, 0] != 0.0


def test_unseeded_parameters_have_no_derivative(tank, linear_state) -> None:
    """Clearing sensitivities removes all seeds."""
    y, y_dot = linear_state
    tank.set_sensitive_parameter(FILTER, 0, 1.0)
    tank.clear_sens_params()
    ad_res = ADVector(tank.num_dofs, 1)
    tank.residual_sens_fwd_ad_only(0.0, 0, TF, y, y_dot, ad_res)
    assert not np.any(ad_res.grads)


def test_combine_matches_central_difference(tank, linear_state) -> None:
    """(dF/dy) s + (dF/dy_dot) s_dot + dF/dp equals a directional derivative."""
    y, y_dot = linear_state
    rng = np.random.default_rng(7)
    s = rng.normal(size=y.shape)
    s_dot = rng.normal(size=y.shape)

    tank.set_sensitive_parameter(FILTER, 0, 1.0)
    ad_res = ADVector(tank.num_dofs, 1)
    assert tank.residual_sens_fwd_with_jacobian(0.0, 0, TF, y, y_dot, ad_res) == 0

    out = np.full_like(y, np.nan)
    assert tank.residual_sens_fwd_combine(0.0, 0, TF, y, y_dot, [s], [s_dot], [out], ad_res) == 0

    h = 1e-4
    tank.set_sensitive_parameter_value(FILTER, 0.1 + h)
    plus = _residual(tank, y + h * s, y_dot + h * s_dot)
    tank.set_sensitive_parameter_value(FILTER, 0.1 - h)
    minus = _residual(tank, y - h * s, y_dot - h * s_dot)
    fd = (plus - minus) / (2.0 * h)

    np.testing.assert_allclose(out, fd, rtol=1e-7, atol=1e-9)


def test_consistent_initial_sensitivity(tank, linear_state) -> None:
    """Consistent s_dot makes the pure sensitivity residual vanish."""
    y, y_dot = linear_state
    rng = np.random.default_rng(11)
    s = rng.normal(size=y.shape)
    s_dot = np.zeros_like(y)

    tank.set_sensitive_parameter(ParameterId("LIN_KD", 0, 0, 0), 0, 1.0)
    ad_res = ADVector(tank.num_dofs, 1)
    tank.residual_sens_fwd_with_jacobian(0.0, 0, TF, y, y_dot, ad_res)

    status = tank.consistent_initial_sensitivity(0.0, 0, TF, y, y_dot, [s], [s_dot], ad_res)
    assert status == 0

    out = np.zeros_like(y)
    tank.residual_sens_fwd_combine(0.0, 0, TF, y, y_dot, [s], [s_dot], [out], ad_res)
    np.testing.assert_allclose(out[2:], 0.0, atol=1e-12)

    lean = np.zeros_like(y)
    assert tank.lean_consistent_initial_sensitivity(0.0, 0, TF, y, y_dot, [s], [lean], ad_res) == 0
    np.testing.assert_allclose(lean[2:], s_dot[2:])


def test_consistent_initial_sensitivity_fails_on_singular_mass(make_tank) -> None:
    """An empty tank without binding has a singular dF/dy_dot."""
    model = make_tank({"NCOMP": 1})
    y = np.zeros(3)
    ad_res = ADVector(3, 1)
    model.residual_sens_fwd_with_jacobian(0.0, 0, 1.0, y, None, ad_res)
    s_dot = np.zeros(3)
    assert model.consistent_initial_sensitivity(0.0, 0, 1.0, y, None, [np.ones(3)], [s_dot], ad_res) == 1


def test_multiply_with_derivative_jacobian(tank, linear_state) -> None:
    """dF/dy_dot products match differences in y_dot; the inlet rows are zero."""
    y, y_dot = linear_state
    direction = np.array([0.3, -0.2, 1.0, 0.5, -0.4, 0.7])
    ret = np.full_like(y, np.nan)
    tank.multiply_with_derivative_jacobian(0.0, 0, TF, y, y_dot, direction, ret)

    expected = _residual(tank, y, y_dot + direction) - _residual(tank, y, y_dot)
    np.testing.assert_allclose(ret, expected, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(ret[:2], 0.0)
