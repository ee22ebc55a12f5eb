# src/cstr_engine/binding.py
"""Binding models coupling liquid and bound phase in the tank.

A binding model owns the residual equations of the bound-state block ``q`` and
their Jacobian entries. The stirred tank engine hands it views of its state
vectors so the same code runs on float arrays and on ADVector slices:

- ``y`` / ``y_dot``: view starting at the liquid concentrations, i.e.
  ``[c (n_comp) | q (stride_bound)]``
- ``res``: view of the bound-state residual block (``stride_bound`` entries)

Jacobian entries are written into the engine's dense store with absolute
indices: liquid concentration ``i`` is column ``offset + i``, bound state ``k``
is row/column ``offset + n_comp + k``.

Registered models:
    - ``"NONE"``: :class:`NoBinding`
    - ``"LINEAR"``: :class:`LinearBinding`
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from .autodiff import param_value
from .config import LinearBindingConfig, parse_config
from .errors import raise_invalid_configuration, raise_unknown_binding_model
from .parameters import ParameterId, ParameterRegistry

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .matrix_ops import DenseMatrix


class BindingModel(ABC):
    """Interface of a binding model used by the stirred tank unit."""

    name: ClassVar[str]

    def __init__(self) -> None:
        self.parameters = ParameterRegistry()
        self._n_comp = 0
        self._n_bound: tuple[int, ...] = ()
        self._bound_offset: tuple[int, ...] = ()

    @property
    def n_comp(self) -> int:
        return self._n_comp

    @property
    def stride_bound(self) -> int:
        if not self._n_bound:
            return 0
        return self._bound_offset[-1] + self._n_bound[-1]

    def configure_model_discretization(
        self,
        n_comp: int,
        n_bound: Sequence[int],
        bound_offset: Sequence[int],
    ) -> None:
        """Store component and bound-state counts of the hosting unit."""
        self._n_comp = int(n_comp)
        self._n_bound = tuple(int(n) for n in n_bound)
        self._bound_offset = tuple(int(o) for o in bound_offset)

    @abstractmethod
    def configure(self, params: Mapping[str, Any], unit_op_idx: int) -> bool:
        """Read parameters and register them; return True on success."""

    def reconfigure(self, params: Mapping[str, Any], unit_op_idx: int) -> bool:
        """Re-read parameter values. Defaults to :meth:`configure`."""
        return self.configure(params, unit_op_idx)

    def has_algebraic_equations(self) -> bool:
        return False

    def consistent_initialization_workspace_size(self) -> int:
        return 0

    @abstractmethod
    def residual(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        time_factor: float,
        y: Any,
        y_dot: Any | None,
        res: Any,
        *,
        active_params: bool = False,
    ) -> None:
        """Evaluate the bound-state residual into res."""

    @abstractmethod
    def analytic_jacobian(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        y: Any,
        jac: DenseMatrix,
        offset: int,
    ) -> None:
        """Write ``d res_q / d (c, q)`` into jac."""

    @abstractmethod
    def jacobian_add_discretized(self, alpha: float, jac: DenseMatrix, offset: int) -> None:
        """Add ``alpha * d res_q / d q_dot`` (without time factor) to jac."""

    def consistent_initial_state(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        y: Any,
        error_tol: float,
        workspace: Any,
    ) -> None:
        """Make algebraic bound states consistent. Kinetic models do nothing."""

    def consistent_initial_time_derivative(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        time_factor: float,
        y_dot: Any,
    ) -> None:
        """Convert the bound-state block of ``F(t, y, 0)`` in y_dot into ``q_dot``."""


class NoBinding(BindingModel):
    """Placeholder model for units without bound states."""

    name: ClassVar[str] = "NONE"

    def configure_model_discretization(
        self,
        n_comp: int,
        n_bound: Sequence[int],
        bound_offset: Sequence[int],
    ) -> None:
        if any(n > 0 for n in n_bound):
            raise_invalid_configuration(
                detail=f"binding model NONE does not support bound states; NBOUND={list(n_bound)}"
            )
        super().configure_model_discretization(n_comp, n_bound, bound_offset)

    def configure(self, params: Mapping[str, Any], unit_op_idx: int) -> bool:
        self.parameters.clear()
        return True

    def residual(self, t, z, r, sec_idx, time_factor, y, y_dot, res, *, active_params=False):
        return None

    def analytic_jacobian(self, t, z, r, sec_idx, y, jac, offset):
        return None

    def jacobian_add_discretized(self, alpha, jac, offset):
        return None


class LinearBinding(BindingModel):
    """Kinetic linear isotherm.

    For each component with a bound state::

        res_q = tf * dq/dt - (ka * c - kd * q)

    Parameters ``LIN_KA`` and ``LIN_KD`` are registered per component with bound
    phase 0.
    """

    name: ClassVar[str] = "LINEAR"

    def __init__(self) -> None:
        super().__init__()
        self._ka_idx: list[int] = []
        self._kd_idx: list[int] = []

    def configure_model_discretization(
        self,
        n_comp: int,
        n_bound: Sequence[int],
        bound_offset: Sequence[int],
    ) -> None:
        if any(n > 1 for n in n_bound):
            raise_invalid_configuration(
                detail=f"binding model LINEAR supports at most one bound state per component; "
                f"NBOUND={list(n_bound)}"
            )
        super().configure_model_discretization(n_comp, n_bound, bound_offset)

    def configure(self, params: Mapping[str, Any], unit_op_idx: int) -> bool:
        cfg = parse_config(LinearBindingConfig, params)
        if len(cfg.ka) != self._n_comp or len(cfg.kd) != self._n_comp:
            raise_invalid_configuration(
                detail=f"LIN_KA and LIN_KD must have {self._n_comp} entries; "
                f"got {len(cfg.ka)} and {len(cfg.kd)}"
            )

        # register() overwrites in place, so reconfigure keeps AD seeds
        self._ka_idx = [
            self.parameters.register(ParameterId("LIN_KA", unit_op_idx, comp, 0), ka)
            for comp, ka in enumerate(cfg.ka)
        ]
        self._kd_idx = [
            self.parameters.register(ParameterId("LIN_KD", unit_op_idx, comp, 0), kd)
            for comp, kd in enumerate(cfg.kd)
        ]
        return True

    def _bound_comps(self):
        for comp in range(self._n_comp):
            if self._n_bound[comp] > 0:
                yield comp, self._bound_offset[comp]

    def residual(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        time_factor: float,
        y: Any,
        y_dot: Any | None,
        res: Any,
        *,
        active_params: bool = False,
    ) -> None:
        n_comp = self._n_comp
        for comp, k in self._bound_comps():
            ka = param_value(self.parameters.value(self._ka_idx[comp]), active=active_params)
            kd = param_value(self.parameters.value(self._kd_idx[comp]), active=active_params)
            val = -(ka * y[comp] - kd * y[n_comp + k])
            if y_dot is not None:
                val = val + time_factor * y_dot[n_comp + k]
            res[k] = val

    def analytic_jacobian(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        y: Any,
        jac: DenseMatrix,
        offset: int,
    ) -> None:
        q0 = offset + self._n_comp
        for comp, k in self._bound_comps():
            jac[q0 + k, offset + comp] = -self.parameters.value(self._ka_idx[comp]).value
            jac[q0 + k, q0 + k] = self.parameters.value(self._kd_idx[comp]).value

    def jacobian_add_discretized(self, alpha: float, jac: DenseMatrix, offset: int) -> None:
        q0 = offset + self._n_comp
        for _, k in self._bound_comps():
            jac.add_to(q0 + k, q0 + k, alpha)

    def consistent_initial_time_derivative(
        self,
        t: float,
        z: float,
        r: float,
        sec_idx: int,
        time_factor: float,
        y_dot: Any,
    ) -> None:
        for _, k in self._bound_comps():
            y_dot[k] = -y_dot[k] / time_factor


_BINDING_MODELS: dict[str, type[BindingModel]] = {
    NoBinding.name: NoBinding,
    LinearBinding.name: LinearBinding,
}


def available_binding_models() -> list[str]:
    """Return the identifiers of all registered binding models."""
    return sorted(_BINDING_MODELS)


def create_binding_model(name: str) -> BindingModel:
    """
    Create a binding model by identifier.

    Args:
        name: Model identifier (case-insensitive), e.g. ``"LINEAR"``.

    Returns:
        New, unconfigured binding model.

    Raises:
        UnknownBindingModelError: If name is not registered.
    """
    cls = _BINDING_MODELS.get(name.upper())
    if cls is None:
        raise_unknown_binding_model(name, known=list(_BINDING_MODELS))
    return cls()
