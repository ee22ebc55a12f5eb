# src/cstr_engine/stirred_tank.py
"""Residual and Jacobian engine of a continuous stirred tank (CSTR).

State vector layout (see :class:`~cstr_engine.layout.StateLayout`)::

    [ c_in (n_comp) | c (n_comp) | q (stride_bound) | V (1) ]

Residual equations:

- inlet: ``res = c_in``
- liquid concentration ``i``::

      tf * [ V * (dc_i/dt + invBeta * sum_j dq_ij/dt)
           + dV/dt * (c_i + invBeta * sum_j q_ij) ]
      - F_in * c_in_i + F_out * c_i

  with ``invBeta = 1 / porosity - 1``
- bound states: residual of the binding model
- volume: ``res = dV/dt - F_in + F_out + F_filter``

The Jacobian stores cover the "pure" DOFs only (all but the inlet block). The
inlet block is eliminated by back substitution in :meth:`StirredTankModel.linear_solve`
and handled explicitly in the Jacobian-vector products.

Jacobian strategies:
    - ``ANALYTIC``: closed-form assembly.
    - ``AD``: dense forward-mode AD seeding of the pure DOFs.
    - ``VERIFY``: AD Jacobian is used; the analytic one is assembled as well
      and the maximum discrepancy is logged and stored.

Status codes:
    Evaluation routines return ``0`` on success. :meth:`StirredTankModel.linear_solve`
    and :meth:`StirredTankModel.consistent_initial_sensitivity` return ``1`` if
    a factorization or solve fails; they never raise on numerical failure.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import numpy as np

from .ad_utils import (
    compare_dense_jacobian_with_ad,
    copy_from_ad,
    copy_to_ad,
    extract_dense_jacobian_from_ad,
    prepare_ad_vector_seeds_for_dense_matrix,
    reset_ad,
)
from .autodiff import ADVector, Scalar, param_value, primal
from .binding import BindingModel, create_binding_model
from .config import (
    InitialConditionConfig,
    JacobianMode,
    StirredTankConfig,
    UnitParametersConfig,
    parse_config,
)
from .errors import (
    ConfigurationError,
    NotConfiguredError,
    raise_contract_violation,
    raise_invalid_configuration,
)
from .layout import StateLayout
from .matrix_ops import DenseMatrix
from .parameters import UNIT_OP_INDEP, ParameterId, ParameterRegistry

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import ArrayLike

    from .autodiff import FloatArray

logger = logging.getLogger(__name__)

_NOT_CONFIGURED_MSG: Final[str] = "StirredTankModel must be configured before use."
_ALREADY_CONFIGURED_MSG: Final[str] = (
    "StirredTankModel is already configured; structural settings are frozen. "
    "Use reconfigure() to change parameter values."
)


def _values(vec: Any) -> FloatArray:
    """Return the primal values of a float array or ADVector."""
    if isinstance(vec, ADVector):
        return vec.values
    return np.asarray(vec, dtype=np.float64)


class StirredTankModel:
    """Continuous stirred tank with optional binding to a bound phase.

    Typical usage:

        model = StirredTankModel(unit_op_idx=0)
        model.configure({"NCOMP": 2, "POROSITY": 1.0})
        model.set_flow_rates(1.0, 1.0)
        model.notify_discontinuous_section_transition(0.0, 0)
        model.residual(t, 0, 1.0, y, y_dot, res, update_jacobian=True)
        status = model.linear_solve(t, 1.0, alpha, tol, rhs, weight, y, y_dot, res)
    """

    def __init__(self, unit_op_idx: int = 0) -> None:
        """
        Initialize an unconfigured stirred tank.

        Args:
            unit_op_idx: Index of this unit operation in the flowsheet. Used to
                filter parameter identities.
        """
        self._unit_op_idx = int(unit_op_idx)
        self._layout: StateLayout | None = None
        self._binding: BindingModel | None = None
        self.parameters = ParameterRegistry()

        self._mode = JacobianMode.ANALYTIC
        self._flow_rate_in: Scalar = 0.0
        self._flow_rate_out: Scalar = 0.0
        self._filter_idx: list[int] = []
        self._cur_filter_idx: int | None = None
        self._porosity_idx = 0

        self._jac = DenseMatrix()
        self._jac_fact = DenseMatrix()
        self._jac_dot = DenseMatrix()
        self._factorize_jacobian = True
        self._cons_init_workspace: FloatArray = np.zeros(0, dtype=np.float64)
        self._res_scratch: FloatArray = np.zeros(0, dtype=np.float64)

        self.last_jacobian_discrepancy: float | None = None

    # =========================================================================
    # Structure
    # =========================================================================

    @property
    def unit_operation_id(self) -> int:
        return self._unit_op_idx

    @property
    def is_configured(self) -> bool:
        return self._layout is not None

    @property
    def layout(self) -> StateLayout:
        """State layout; raises NotConfiguredError before configure()."""
        if self._layout is None:
            raise NotConfiguredError(_NOT_CONFIGURED_MSG)
        return self._layout

    @property
    def binding_model(self) -> BindingModel:
        if self._binding is None:
            raise NotConfiguredError(_NOT_CONFIGURED_MSG)
        return self._binding

    @property
    def num_dofs(self) -> int:
        return self.layout.num_dofs

    @property
    def num_pure_dofs(self) -> int:
        return self.layout.num_pure_dofs

    @property
    def jacobian_mode(self) -> JacobianMode:
        return self._mode

    @property
    def uses_ad(self) -> bool:
        """Whether AD vectors are required for Jacobian evaluation."""
        return self._mode is not JacobianMode.ANALYTIC

    @property
    def required_ad_dirs(self) -> int:
        """Number of AD directions needed for the dense Jacobian (0 if analytic)."""
        if not self.uses_ad:
            return 0
        return self.num_pure_dofs

    @property
    def jacobian(self) -> DenseMatrix:
        """Last assembled state Jacobian ``dF/dy`` of the pure DOFs."""
        return self._jac

    # =========================================================================
    # Configuration
    # =========================================================================

    def configure(self, params: Mapping[str, Any]) -> bool:
        """
        Configure structure and parameters from a parameter mapping.

        Args:
            params: Unit parameter scope (``NCOMP``, ``NBOUND``, ...).

        Returns:
            True if the binding model accepted its configuration.

        Raises:
            ConfigurationError: On invalid or repeated configuration.
            UnknownBindingModelError: If ``ADSORPTION_MODEL`` is not registered.
        """
        if self._layout is not None:
            raise ConfigurationError(_ALREADY_CONFIGURED_MSG)

        cfg = parse_config(StirredTankConfig, params)
        layout = StateLayout.from_counts(cfg.n_comp, cfg.n_bound)

        binding = create_binding_model(cfg.adsorption_model)
        binding.configure_model_discretization(layout.n_comp, layout.n_bound, layout.bound_offset)
        ok = binding.configure(cfg.adsorption or {}, self._unit_op_idx)

        n_pure = layout.num_pure_dofs
        self._jac.resize(n_pure, n_pure)
        self._jac_fact.resize(n_pure, n_pure)
        self._jac_dot.resize(n_pure, n_pure)
        self._res_scratch = np.zeros(layout.num_dofs, dtype=np.float64)
        size = 0
        if binding.has_algebraic_equations():
            size = binding.consistent_initialization_workspace_size()
        self._cons_init_workspace = np.zeros(size, dtype=np.float64)

        self._mode = cfg.resolved_jacobian_mode()
        self._read_parameters(cfg)
        self._layout = layout
        self._binding = binding
        self._factorize_jacobian = True
        return ok

    def reconfigure(self, params: Mapping[str, Any]) -> bool:
        """
        Re-read parameter values (flow-rate filter, porosity, binding scope).

        Returns:
            True if the binding model accepted its configuration.

        Raises:
            NotConfiguredError: If called before configure().
            ConfigurationError: On invalid values.
        """
        binding = self.binding_model
        cfg = parse_config(UnitParametersConfig, params)
        self._read_parameters(cfg)
        self._factorize_jacobian = True
        if cfg.adsorption is not None:
            return binding.reconfigure(cfg.adsorption, self._unit_op_idx)
        return True

    def _read_parameters(self, cfg: UnitParametersConfig) -> None:
        self._filter_idx = []
        if cfg.flowrate_filter is not None:
            self._filter_idx = self.parameters.register_section_dependent(
                "FLOWRATE_FILTER", cfg.flowrate_filter, self._unit_op_idx
            )
        self._cur_filter_idx = None
        self._porosity_idx = self.parameters.register(
            ParameterId("POROSITY", self._unit_op_idx), cfg.porosity
        )

    def use_analytic_jacobian(self, analytic: bool) -> None:
        """Switch between analytic and AD Jacobian; ignored in VERIFY mode."""
        if self._mode is JacobianMode.VERIFY:
            return
        self._mode = JacobianMode.ANALYTIC if analytic else JacobianMode.AD

    def set_flow_rates(self, flow_in: Scalar, flow_out: Scalar) -> None:
        """Set inlet and outlet volumetric flow rates (floats or Dual values)."""
        self._flow_rate_in = flow_in
        self._flow_rate_out = flow_out
        self._factorize_jacobian = True

    def notify_discontinuous_section_transition(
        self,
        t: float,
        sec_idx: int,
        ad_res: ADVector | None = None,
        ad_y: ADVector | None = None,
        ad_dir_offset: int = 0,
    ) -> None:
        """Select the flow-rate filter of the new section."""
        n = len(self._filter_idx)
        if n > 1:
            if not 0 <= sec_idx < n:
                raise_contract_violation(
                    name="sec_idx",
                    expected=f"a section index below {n} (one per FLOWRATE_FILTER value)",
                    got=sec_idx,
                )
            self._cur_filter_idx = self._filter_idx[sec_idx]
        elif n == 1:
            self._cur_filter_idx = self._filter_idx[0]
        self._factorize_jacobian = True

    def prepare_ad_vectors(self, ad_res: ADVector, ad_y: ADVector | None, ad_dir_offset: int) -> None:
        """Seed ``ad_y`` for dense Jacobian extraction of the pure DOFs."""
        if ad_y is None or not self.uses_ad:
            return
        layout = self.layout
        ad_y.grads[: layout.n_comp, ad_dir_offset : ad_dir_offset + layout.num_pure_dofs] = 0.0
        prepare_ad_vector_seeds_for_dense_matrix(
            ad_y[layout.n_comp :], ad_dir_offset, self._jac.rows, self._jac.columns
        )

    # =========================================================================
    # Parameters
    # =========================================================================

    def _addresses_unit(self, pid: ParameterId) -> bool:
        return pid.unit_operation in (UNIT_OP_INDEP, self._unit_op_idx)

    def _lookup(self, pid: ParameterId) -> tuple[ParameterRegistry, ParameterId] | None:
        if not self._addresses_unit(pid):
            return None
        key = pid.with_unit(self._unit_op_idx)
        if key in self.parameters:
            return self.parameters, key
        if self._binding is not None and key in self._binding.parameters:
            return self._binding.parameters, key
        return None

    def get_all_parameter_values(self) -> dict[ParameterId, float]:
        data = self.parameters.all_values()
        if self._binding is not None:
            data.update(self._binding.parameters.all_values())
        return data

    def has_parameter(self, pid: ParameterId) -> bool:
        return self._lookup(pid) is not None

    def get_parameter(self, pid: ParameterId) -> float | None:
        found = self._lookup(pid)
        if found is None:
            return None
        registry, key = found
        param = registry.get(key)
        return None if param is None else param.value

    def set_parameter(self, pid: ParameterId, value: float) -> bool:
        """Set a parameter value; returns False if unknown to this unit."""
        found = self._lookup(pid)
        if found is None:
            return False
        registry, key = found
        self._factorize_jacobian = True
        return registry.set_value(key, value)

    def set_sensitive_parameter(self, pid: ParameterId, direction: int, ad_value: float) -> bool:
        """Mark a parameter sensitive and seed its AD direction."""
        found = self._lookup(pid)
        if found is None:
            return False
        registry, key = found
        return registry.set_sensitive(key, direction, ad_value)

    def set_sensitive_parameter_value(self, pid: ParameterId, value: float) -> None:
        found = self._lookup(pid)
        if found is None:
            return
        registry, key = found
        if registry.set_sensitive_value(key, value):
            self._factorize_jacobian = True

    def clear_sens_params(self) -> None:
        self.parameters.clear_sensitivities()
        if self._binding is not None:
            self._binding.parameters.clear_sensitivities()

    def _filter(self, *, active: bool) -> Scalar:
        if self._cur_filter_idx is None:
            return 0.0
        return param_value(self.parameters.value(self._cur_filter_idx), active=active)

    def _inv_beta(self, *, active: bool) -> Scalar:
        porosity = param_value(self.parameters.value(self._porosity_idx), active=active)
        return 1.0 / porosity - 1.0

    # =========================================================================
    # Residual
    # =========================================================================

    def residual(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        res: FloatArray | None,
        *,
        ad_res: ADVector | None = None,
        ad_y: ADVector | None = None,
        ad_dir_offset: int = 0,
        update_jacobian: bool = False,
        param_sensitivity: bool = False,
    ) -> int:
        """
        Evaluate the residual ``F(t, y, y_dot)``.

        Args:
            t: Time.
            sec_idx: Index of the current section.
            tf: Time factor of the time derivative terms.
            y: State vector.
            y_dot: Time derivative of the state, or None (treated as zero).
            res: Output residual (may be None only if ad_res is used).
            ad_res: AD residual vector; required for AD Jacobians and for
                parameter sensitivities.
            ad_y: AD state vector seeded by :meth:`prepare_ad_vectors`;
                required for AD Jacobians.
            ad_dir_offset: Number of AD directions used by parameter
                sensitivities (Jacobian directions start after them).
            update_jacobian: Whether to assemble ``dF/dy`` as well.
            param_sensitivity: Whether ``ad_res`` must carry ``dF/dp``.

        Returns:
            0 on success.
        """
        layout = self.layout
        n_dofs = layout.num_dofs
        y_arr = np.asarray(y, dtype=np.float64)
        y_dot_arr = None if y_dot is None else np.asarray(y_dot, dtype=np.float64)

        if not update_jacobian:
            if param_sensitivity:
                self._require_ad(ad_res, "ad_res")
                self._residual_impl(t, sec_idx, tf, y_arr, y_dot_arr, ad_res, want_jac=False, active_params=True)
                if res is not None:
                    copy_from_ad(ad_res, res, n_dofs)
                return 0
            self._residual_impl(t, sec_idx, tf, y_arr, y_dot_arr, res, want_jac=False, active_params=False)
            return 0

        self._factorize_jacobian = True

        if self._mode is JacobianMode.ANALYTIC:
            if param_sensitivity:
                self._require_ad(ad_res, "ad_res")
                self._residual_impl(t, sec_idx, tf, y_arr, y_dot_arr, ad_res, want_jac=True, active_params=True)
                if res is not None:
                    copy_from_ad(ad_res, res, n_dofs)
                return 0
            self._residual_impl(t, sec_idx, tf, y_arr, y_dot_arr, res, want_jac=True, active_params=False)
            return 0

        self._require_ad(ad_res, "ad_res")
        self._require_ad(ad_y, "ad_y")
        copy_to_ad(y_arr, ad_y, n_dofs)
        reset_ad(ad_res, n_dofs)
        self._residual_impl(
            t, sec_idx, tf, ad_y, y_dot_arr, ad_res, want_jac=False, active_params=param_sensitivity
        )
        if res is not None:
            copy_from_ad(ad_res, res, n_dofs)

        pure_res = ad_res[layout.n_comp :]
        extract_dense_jacobian_from_ad(pure_res, ad_dir_offset, self._jac)

        if self._mode is JacobianMode.VERIFY:
            # _jac_fact is scratch here, the dirty flag forces a refactorization
            self._assemble_analytic_jacobian(t, sec_idx, tf, y_arr, y_dot_arr, self._jac_fact)
            diff = compare_dense_jacobian_with_ad(pure_res, ad_dir_offset, self._jac_fact)
            self.last_jacobian_discrepancy = diff
            logger.debug("AD vs analytic Jacobian max diff %g (unit %d)", diff, self._unit_op_idx)
        return 0

    @staticmethod
    def _require_ad(vec: ADVector | None, name: str) -> None:
        if vec is None:
            raise_contract_violation(name=name, expected="an ADVector", got=None)

    def _residual_impl(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: Any,
        y_dot: Any | None,
        res: Any,
        *,
        want_jac: bool,
        active_params: bool,
    ) -> None:
        """Evaluate the residual for float arrays or ADVector operands.

        With ``active_params`` the flow rates, porosity and filter enter as Dual
        values, so ``res`` must be an ADVector. ``want_jac`` assembles the
        analytic Jacobian into ``_jac`` from the primal values.
        """
        layout = self.layout
        binding = self.binding_model
        n_comp = layout.n_comp

        flow_in = param_value(self._flow_rate_in, active=active_params)
        flow_out = param_value(self._flow_rate_out, active=active_params)
        flow_filter = self._filter(active=active_params)
        inv_beta = self._inv_beta(active=active_params)

        v = y[layout.volume]
        v_dot = 0.0 if y_dot is None else y_dot[layout.volume]

        # Inlet
        for i in range(n_comp):
            res[i] = y[i]

        # Liquid concentrations
        q0 = layout.bound.start
        for i in range(n_comp):
            c_i = y[n_comp + i]
            val = -flow_in * y[i] + flow_out * c_i
            if y_dot is not None:
                q_sum = 0.0
                q_dot_sum = 0.0
                start = q0 + layout.bound_offset[i]
                for j in range(layout.n_bound[i]):
                    q_sum = q_sum + y[start + j]
                    q_dot_sum = q_dot_sum + y_dot[start + j]
                val = val + tf * (
                    v * (y_dot[n_comp + i] + inv_beta * q_dot_sum)
                    + v_dot * (c_i + inv_beta * q_sum)
                )
            res[n_comp + i] = val

        # Bound states
        binding.residual(
            t,
            0.0,
            0.0,
            sec_idx,
            tf,
            y[n_comp:],
            None if y_dot is None else y_dot[n_comp:],
            res[layout.bound],
            active_params=active_params,
        )

        # Volume
        res[layout.volume] = v_dot - flow_in + flow_out + flow_filter

        if want_jac:
            self._assemble_analytic_jacobian(
                t,
                sec_idx,
                tf,
                _values(y),
                None if y_dot is None else _values(y_dot),
                self._jac,
            )

    def _assemble_analytic_jacobian(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: FloatArray,
        y_dot: FloatArray | None,
        jac: DenseMatrix,
    ) -> None:
        layout = self.layout
        n_comp = layout.n_comp
        flow_out = primal(self._flow_rate_out)
        inv_beta = primal(self._inv_beta(active=False))
        v_dot = 0.0 if y_dot is None else float(y_dot[layout.volume])
        q_dot = None if y_dot is None else y_dot[layout.bound]
        vol = layout.pure_volume

        jac.set_all(0.0)
        for i in range(n_comp):
            jac[i, i] = tf * v_dot + flow_out
            bsl = layout.bound_slice(i)
            for j in range(layout.n_bound[i]):
                jac[i, n_comp + bsl.start + j] = tf * v_dot * inv_beta
            if q_dot is not None:
                jac[i, vol] = tf * (y_dot[n_comp + i] + inv_beta * float(np.sum(q_dot[bsl])))

        self.binding_model.analytic_jacobian(t, 0.0, 0.0, sec_idx, y[n_comp:], jac, 0)
        # volume row: dF_V/dy = 0

    def _add_time_derivative_jacobian(
        self,
        tf: float,
        y: FloatArray,
        mat: DenseMatrix,
        alpha: float = 1.0,
    ) -> None:
        """Add ``alpha * dF/d(y_dot)`` of the pure DOFs to mat."""
        layout = self.layout
        n_comp = layout.n_comp
        inv_beta = primal(self._inv_beta(active=False))
        v = float(y[layout.volume])
        q = y[layout.bound]
        vol = layout.pure_volume

        for i in range(n_comp):
            mat.add_to(i, i, alpha * tf * v)
            bsl = layout.bound_slice(i)
            for j in range(layout.n_bound[i]):
                mat.add_to(i, n_comp + bsl.start + j, alpha * tf * v * inv_beta)
            mat.add_to(i, vol, alpha * tf * (float(y[n_comp + i]) + inv_beta * float(np.sum(q[bsl]))))

        self.binding_model.jacobian_add_discretized(alpha * tf, mat, 0)
        mat.add_to(vol, vol, alpha)

    # =========================================================================
    # Residual / sensitivity convenience entry points
    # =========================================================================

    def residual_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        res: FloatArray,
        ad_res: ADVector | None = None,
        ad_y: ADVector | None = None,
        ad_dir_offset: int = 0,
    ) -> int:
        """Evaluate the residual and update the Jacobian."""
        return self.residual(
            t,
            sec_idx,
            tf,
            y,
            y_dot,
            res,
            ad_res=ad_res,
            ad_y=ad_y,
            ad_dir_offset=ad_dir_offset,
            update_jacobian=True,
        )

    def residual_sens_fwd_ad_only(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        ad_res: ADVector,
    ) -> int:
        """Evaluate the residual with active parameters into ``ad_res`` only."""
        self._require_ad(ad_res, "ad_res")
        self._residual_impl(
            t,
            sec_idx,
            tf,
            np.asarray(y, dtype=np.float64),
            None if y_dot is None else np.asarray(y_dot, dtype=np.float64),
            ad_res,
            want_jac=False,
            active_params=True,
        )
        return 0

    def residual_sens_fwd_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        ad_res: ADVector,
        ad_y: ADVector | None = None,
        ad_dir_offset: int = 0,
    ) -> int:
        """Evaluate ``dF/dp`` into ``ad_res`` and update the Jacobian."""
        return self.residual(
            t,
            sec_idx,
            tf,
            y,
            y_dot,
            self._res_scratch,
            ad_res=ad_res,
            ad_y=ad_y,
            ad_dir_offset=ad_dir_offset,
            update_jacobian=True,
            param_sensitivity=True,
        )

    def residual_sens_fwd_combine(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        y_s: Sequence[FloatArray],
        y_s_dot: Sequence[FloatArray],
        res_s: Sequence[FloatArray],
        ad_res: ADVector,
    ) -> int:
        """
        Combine sensitivity residuals ``(dF/dy) s + (dF/dy_dot) s_dot + dF/dp``.

        ``dF/dy`` is the Jacobian of the last update; ``dF/dp`` of parameter
        ``p`` is read from AD direction ``p`` of ``ad_res``.

        Returns:
            0 on success.
        """
        layout = self.layout
        n_dofs = layout.num_dofs
        y_arr = np.asarray(y, dtype=np.float64)

        self._jac_dot.set_all(0.0)
        self._add_time_derivative_jacobian(tf, y_arr, self._jac_dot)

        tmp = np.zeros(n_dofs, dtype=np.float64)
        for param, (s, s_dot, out) in enumerate(zip(y_s, y_s_dot, res_s, strict=True)):
            self.multiply_with_jacobian(t, sec_idx, tf, y, y_dot, s, 1.0, 0.0, out)
            self._multiply_time_derivative(s_dot, tmp)
            out += tmp
            if param < ad_res.n_dirs:
                out += ad_res.grads[:n_dofs, param]
        return 0

    def consistent_initial_sensitivity(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        y_s: Sequence[FloatArray],
        y_s_dot: Sequence[FloatArray],
        ad_res: ADVector,
    ) -> int:
        """
        Compute consistent sensitivity derivatives of the pure DOFs.

        Solves ``(dF/dy_dot) s_dot = -(dF/dy) s - dF/dp`` for every parameter.
        ``dF/dy_dot`` is assembled into a scratch store and factorized once.

        Returns:
            0 on success, 1 if the factorization or a solve failed.
        """
        layout = self.layout
        n_comp = layout.n_comp
        n_dofs = layout.num_dofs
        y_arr = np.asarray(y, dtype=np.float64)

        self._jac_dot.set_all(0.0)
        self._add_time_derivative_jacobian(tf, y_arr, self._jac_dot)
        if not self._jac_dot.factorize():
            return 1

        for param, (s, s_dot) in enumerate(zip(y_s, y_s_dot, strict=True)):
            self.multiply_with_jacobian(t, sec_idx, tf, y, y_dot, s, -1.0, 0.0, s_dot)
            if param < ad_res.n_dirs:
                s_dot[n_comp:n_dofs] -= ad_res.grads[n_comp:n_dofs, param]
            if not self._jac_dot.solve(s_dot[n_comp:n_dofs]):
                return 1
        return 0

    def lean_consistent_initial_sensitivity(self, *args: Any, **kwargs: Any) -> int:
        return self.consistent_initial_sensitivity(*args, **kwargs)

    # =========================================================================
    # Jacobian-vector products
    # =========================================================================

    def multiply_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        y_s: ArrayLike,
        alpha: float,
        beta: float,
        ret: FloatArray,
    ) -> None:
        """
        Compute ``ret = alpha * (dF/dy) y_s + beta * ret``.

        Uses the Jacobian of the last update; the inlet block is the identity
        and couples into the liquid rows with ``-F_in``.
        """
        layout = self.layout
        n_comp = layout.n_comp
        s = np.asarray(y_s, dtype=np.float64)
        flow_in = primal(self._flow_rate_in)

        if beta == 0.0:
            ret[:n_comp] = alpha * s[:n_comp]
        else:
            ret[:n_comp] = alpha * s[:n_comp] + beta * ret[:n_comp]
        self._jac.multiply_vector(s[n_comp:], ret[n_comp:], alpha, beta)
        ret[n_comp : 2 * n_comp] -= alpha * flow_in * s[:n_comp]

    def multiply_with_derivative_jacobian(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        s_dot: ArrayLike,
        ret: FloatArray,
    ) -> None:
        """Compute ``ret = (dF/dy_dot) s_dot``; inlet rows are zero."""
        self._jac_dot.set_all(0.0)
        self._add_time_derivative_jacobian(tf, np.asarray(y, dtype=np.float64), self._jac_dot)
        self._multiply_time_derivative(s_dot, ret)

    def _multiply_time_derivative(self, s_dot: ArrayLike, ret: FloatArray) -> None:
        n_comp = self.layout.n_comp
        s = np.asarray(s_dot, dtype=np.float64)
        ret[:n_comp] = 0.0
        self._jac_dot.multiply_vector(s[n_comp:], ret[n_comp:])

    # =========================================================================
    # Linear solve
    # =========================================================================

    def linear_solve(
        self,
        t: float,
        tf: float,
        alpha: float,
        tol: float,
        rhs: FloatArray,
        weight: ArrayLike | None,
        y: ArrayLike,
        y_dot: ArrayLike | None,
        res: ArrayLike | None,
    ) -> int:
        """
        Solve ``(dF/dy + alpha * dF/dy_dot) x = rhs`` in place.

        The inlet block is eliminated by back substitution. The iteration
        matrix is refactorized only if the Jacobian changed since the last
        factorization.

        Args:
            t: Time.
            tf: Time factor.
            alpha: Coefficient of ``dF/dy_dot`` (from the BDF formula).
            tol: Error tolerance (unused; direct solve).
            rhs: Right-hand side, overwritten with the solution.
            weight: Error weights (unused; direct solve).
            y: State vector at which the Jacobian was evaluated.
            y_dot: Time derivative of the state.
            res: Residual at (y, y_dot) (unused).

        Returns:
            0 on success, 1 on failure.
        """
        layout = self.layout
        n_comp = layout.n_comp
        flow_in = primal(self._flow_rate_in)

        rhs[n_comp : 2 * n_comp] += flow_in * rhs[:n_comp]

        if self._factorize_jacobian:
            self._jac_fact.copy_from(self._jac)
            self._add_time_derivative_jacobian(tf, np.asarray(y, dtype=np.float64), self._jac_fact, alpha)
            if not self._jac_fact.factorize():
                return 1
            self._factorize_jacobian = False

        pure = rhs[n_comp : layout.num_dofs]
        if not self._jac_fact.solve(pure):
            return 1
        return 0

    # =========================================================================
    # Initial conditions and consistent initialization
    # =========================================================================

    def apply_initial_condition(
        self,
        y: FloatArray,
        y_dot: FloatArray,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Write the initial state into y and y_dot.

        Without params both vectors are zeroed. Otherwise ``INIT_STATE`` is
        used if present (optionally followed by the time derivative), else
        ``INIT_C`` with optional ``INIT_Q`` and ``INIT_VOLUME``.

        Raises:
            ConfigurationError: If values are missing or too short.
        """
        layout = self.layout
        n_dofs = layout.num_dofs
        if params is None:
            y[:n_dofs] = 0.0
            y_dot[:n_dofs] = 0.0
            return

        cfg = parse_config(InitialConditionConfig, params)
        if cfg.init_state is not None:
            init = np.asarray(cfg.init_state, dtype=np.float64)
            if init.shape[0] < n_dofs:
                raise_invalid_configuration(
                    detail=f"INIT_STATE needs at least {n_dofs} values; got {init.shape[0]}"
                )
            y[:n_dofs] = init[:n_dofs]
            if init.shape[0] >= 2 * n_dofs:
                y_dot[:n_dofs] = init[n_dofs : 2 * n_dofs]
            return

        init_c = cfg.init_c or []
        if len(init_c) < layout.n_comp:
            raise_invalid_configuration(
                detail="INIT_C does not contain enough values for all components"
            )
        y[layout.conc] = init_c[: layout.n_comp]

        if cfg.init_q is not None:
            if len(cfg.init_q) < layout.stride_bound:
                raise_invalid_configuration(
                    detail=f"INIT_Q needs {layout.stride_bound} values; got {len(cfg.init_q)}"
                )
            y[layout.bound] = cfg.init_q[: layout.stride_bound]
        else:
            y[layout.bound] = 0.0

        y[layout.volume] = 0.0 if cfg.init_volume is None else cfg.init_volume

    def consistent_initial_state(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: FloatArray,
        ad_res: ADVector | None = None,
        ad_y: ADVector | None = None,
        ad_dir_offset: int = 0,
        error_tol: float = 1e-12,
    ) -> None:
        """
        Make the state consistent.

        For an empty tank (``V == 0``) the liquid balance is algebraic and
        ``c = c_in * F_in / (dV/dt + F_out)``. A zero denominator implies
        ``F_in = F_filter = F_out = 0`` for a valid configuration; the state is
        left unchanged then. Binding models with algebraic equations are made
        consistent afterwards.
        """
        layout = self.layout
        n_comp = layout.n_comp
        if y[layout.volume] == 0.0:
            flow_in = primal(self._flow_rate_in)
            flow_out = primal(self._flow_rate_out)
            v_dot = flow_in - flow_out - primal(self._filter(active=False))
            denom = v_dot + flow_out
            if denom != 0.0:
                y[layout.conc] = y[:n_comp] * (flow_in / denom)

        binding = self.binding_model
        if binding.has_algebraic_equations():
            binding.consistent_initial_state(
                t, 0.0, 0.0, sec_idx, y[n_comp:], error_tol, self._cons_init_workspace
            )

    def lean_consistent_initial_state(self, *args: Any, **kwargs: Any) -> None:
        self.consistent_initial_state(*args, **kwargs)

    def consistent_initial_time_derivative(
        self,
        t: float,
        sec_idx: int,
        tf: float,
        y: ArrayLike,
        y_dot: FloatArray,
    ) -> None:
        """
        Compute consistent time derivatives.

        On entry ``y_dot`` holds the residual ``F(t, y, 0)``; on exit it holds
        the time derivative of the state.
        """
        layout = self.layout
        n_comp = layout.n_comp
        y_arr = np.asarray(y, dtype=np.float64)
        v = float(y_arr[layout.volume])

        flow_in = primal(self._flow_rate_in)
        flow_out = primal(self._flow_rate_out)
        v_dot = flow_in - flow_out - primal(self._filter(active=False))
        y_dot[layout.volume] = v_dot

        self.binding_model.consistent_initial_time_derivative(
            t, 0.0, 0.0, sec_idx, tf, y_dot[layout.bound]
        )

        # inlet is constant within a section
        y_dot[:n_comp] = 0.0

        c_dot = y_dot[layout.conc]
        if v == 0.0:
            # c = c_in F_in / (V' + F_out) with V'' = 0 and constant c_in
            c_dot[:] = 0.0
            return

        inv_beta = primal(self._inv_beta(active=False))
        q = y_arr[layout.bound]
        q_dot = y_dot[layout.bound]
        c = y_arr[layout.conc]
        for i in range(n_comp):
            bsl = layout.bound_slice(i)
            q_sum = float(np.sum(q[bsl]))
            q_dot_sum = float(np.sum(q_dot[bsl]))
            c_dot[i] = (-c_dot[i] / tf - v_dot * (c[i] + inv_beta * q_sum)) / v - inv_beta * q_dot_sum

    def lean_consistent_initial_time_derivative(self, *args: Any, **kwargs: Any) -> None:
        self.consistent_initial_time_derivative(*args, **kwargs)

