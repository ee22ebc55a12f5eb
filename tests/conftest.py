"""Global pytest configuration and shared fixtures for cstr_engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import numpy as np
import pytest

from cstr_engine import ADVector, StirredTankModel

# -----------------------------------------------------------------------------
# Markers
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line("markers", "slow: long-running integration scenarios")


# -----------------------------------------------------------------------------
# Configurations
# -----------------------------------------------------------------------------


@pytest.fixture
def linear_binding_params() -> dict[str, Any]:
    """Two components, component 0 binds with a kinetic linear isotherm."""
    return {
        "NCOMP": 2,
        "NBOUND": [1, 0],
        "POROSITY": 0.6,
        "FLOWRATE_FILTER": 0.1,
        "ADSORPTION_MODEL": "LINEAR",
        "adsorption": {"LIN_KA": [1.5, 0.0], "LIN_KD": [0.4, 0.0]},
    }


@pytest.fixture
def make_tank() -> Callable[..., StirredTankModel]:
    """
    Factory for configured tanks.

    Usage:
        def test_x(make_tank):
            model = make_tank({"NCOMP": 2}, flow_in=1.0, flow_out=1.0)
    """

    def _make(
        params: dict[str, Any],
        *,
        flow_in: float = 0.0,
        flow_out: float = 0.0,
        sec_idx: int = 0,
    ) -> StirredTankModel:
        model = StirredTankModel(unit_op_idx=0)
        model.configure(params)
        model.set_flow_rates(flow_in, flow_out)
        model.notify_discontinuous_section_transition(0.0, sec_idx)
        return model

    return _make


@pytest.fixture
def linear_state() -> tuple[np.ndarray, np.ndarray]:
    """Generic non-trivial state and derivative for the linear binding tank."""
    # [c_in0, c_in1, c0, c1, q0, V]
    y = np.array([1.2, 0.7, 0.9, 0.3, 0.5, 4.0])
    y_dot = np.array([0.0, 0.0, 0.05, -0.02, 0.1, 0.3])
    return y, y_dot


@pytest.fixture
def make_ad_vectors() -> Callable[..., tuple[ADVector, ADVector]]:
    """Factory allocating and seeding (ad_res, ad_y) for a model.

    Parameter directions occupy [0, n_param_dirs); Jacobian directions follow.
    """

    def _make(model: StirredTankModel, n_param_dirs: int = 0) -> tuple[ADVector, ADVector]:
        n_dirs = max(n_param_dirs + model.required_ad_dirs, 1)
        ad_res = ADVector(model.num_dofs, n_dirs)
        ad_y = ADVector(model.num_dofs, n_dirs)
        model.prepare_ad_vectors(ad_res, ad_y, n_param_dirs)
        return ad_res, ad_y

    return _make
