# tests/test_jacobian_modes.py
"""Jacobian strategy tests for StirredTankModel.

This module verifies:
- the AD Jacobian equals the analytic Jacobian on a generic state;
- VERIFY mode logs and stores a negligible discrepancy;
- parameter directions and Jacobian directions coexist in one AD vector;
- missing AD vectors are contract violations.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from cstr_engine import ContractViolationError, JacobianMode, ParameterId


def _analytic_jacobian(make_tank, params, y, y_dot, *, tf: float) -> np.ndarray:
    model = make_tank(params, flow_in=0.8, flow_out=0.5)
    res = np.zeros_like(y)
    model.residual(0.0, 0, tf, y, y_dot, res, update_jacobian=True)
    return model.jacobian.array.copy()


def test_analytic_jacobian_entries(make_tank, linear_binding_params, linear_state) -> None:
    """Closed-form entries of the concentration, bound and volume rows."""
    y, y_dot = linear_state
    jac = _analytic_jacobian(make_tank, linear_binding_params, y, y_dot, tf=2.0)
    inv_beta = 1.0 / 0.6 - 1.0
    v_dot = y_dot[5]

    # pure DOFs: [c0, c1, q0, V]
    assert jac[0, 0] == pytest.approx(2.0 * v_dot + 0.5)
    assert jac[0, 2] == pytest.approx(2.0 * v_dot * inv_beta)
    assert jac[0, 3] == pytest.approx(2.0 * (y_dot[2] + inv_beta * y_dot[4]))
    assert jac[1, 1] == pytest.approx(2.0 * v_dot + 0.5)
    assert jac[1, 2] == 0.0
    assert jac[1, 3] == pytest.approx(2.0 * y_dot[3])
    np.testing.assert_allclose(jac[2], [-1.5, 0.0, 0.4, 0.0])
    np.testing.assert_allclose(jac[3], 0.0)


def test_ad_jacobian_matches_analytic(
    make_tank, make_ad_vectors, linear_binding_params, linear_state
) -> None:
    """Dense AD seeding reproduces the analytic Jacobian and the residual."""
    y, y_dot = linear_state
    expected = _analytic_jacobian(make_tank, linear_binding_params, y, y_dot, tf=2.0)

    params = dict(linear_binding_params, JACOBIAN_MODE="ad")
    model = make_tank(params, flow_in=0.8, flow_out=0.5)
    assert model.jacobian_mode is JacobianMode.AD
    assert model.required_ad_dirs == 4
    ad_res, ad_y = make_ad_vectors(model)

    res = np.zeros_like(y)
    model.residual(0.0, 0, 2.0, y, y_dot, res, ad_res=ad_res, ad_y=ad_y, update_jacobian=True)
    np.testing.assert_allclose(model.jacobian.array, expected, rtol=1e-12, atol=1e-14)

    ref = np.zeros_like(y)
    model.residual(0.0, 0, 2.0, y, y_dot, ref)
    np.testing.assert_allclose(res, ref, rtol=1e-12)


def test_verify_mode_reports_discrepancy(
    make_tank, make_ad_vectors, linear_binding_params, linear_state, caplog: pytest.LogCaptureFixture
) -> None:
    """VERIFY uses the AD Jacobian and logs the max difference to the analytic one."""
    y, y_dot = linear_state
    params = dict(linear_binding_params, JACOBIAN_MODE="verify")
    model = make_tank(params, flow_in=0.8, flow_out=0.5)
    assert model.last_jacobian_discrepancy is None
    ad_res, ad_y = make_ad_vectors(model)

    with caplog.at_level(logging.DEBUG, logger="cstr_engine.stirred_tank"):
        model.residual_with_jacobian(0.0, 0, 2.0, y, y_dot, np.zeros_like(y), ad_res, ad_y)

    assert model.last_jacobian_discrepancy is not None
    assert model.last_jacobian_discrepancy < 1e-12
    assert "AD vs analytic Jacobian" in caplog.text


def test_ad_jacobian_with_parameter_directions(
    make_tank, make_ad_vectors, linear_binding_params, linear_state
) -> None:
    """Parameter derivatives live below the Jacobian directions."""
    y, y_dot = linear_state
    expected = _analytic_jacobian(make_tank, linear_binding_params, y, y_dot, tf=2.0)

    params = dict(linear_binding_params, JACOBIAN_MODE="ad")
    model = make_tank(params, flow_in=0.8, flow_out=0.5)
    assert model.set_sensitive_parameter(ParameterId("LIN_KA", 0, 0, 0), 0, 1.0)
    ad_res, ad_y = make_ad_vectors(model, n_param_dirs=1)
    assert ad_res.n_dirs == 5

    model.residual_sens_fwd_with_jacobian(0.0, 0, 2.0, y, y_dot, ad_res, ad_y, 1)

    np.testing.assert_allclose(model.jacobian.array, expected, rtol=1e-12, atol=1e-14)
    # d res_q0 / d ka = -c0
    assert ad_res.get_ad_value(4, 0) == pytest.approx(-y[2])
    assert ad_res.get_ad_value(2, 0) == 0.0


def test_missing_ad_vectors_are_rejected(make_tank, linear_state, linear_binding_params) -> None:
    """AD Jacobians need both ad_res and ad_y."""
    y, y_dot = linear_state
    model = make_tank(dict(linear_binding_params, JACOBIAN_MODE="ad"))
    with pytest.raises(ContractViolationError, match="ad_res"):
        model.residual(0.0, 0, 1.0, y, y_dot, np.zeros_like(y), update_jacobian=True)


def test_residual_only_ignores_jacobian_mode(make_tank, linear_binding_params, linear_state) -> None:
    """Plain residual evaluation never needs AD vectors."""
    y, y_dot = linear_state
    model = make_tank(dict(linear_binding_params, JACOBIAN_MODE="verify"))
    res = np.zeros_like(y)
    assert model.residual(0.0, 0, 1.0, y, y_dot, res) == 0
    np.testing.assert_allclose(res[:2], y[:2])
