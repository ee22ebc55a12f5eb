# src/cstr_engine/config.py
"""Configuration models for the stirred tank unit and its binding models.

This module defines the pydantic-facing configuration objects parsed from a
parameter mapping (upper-case keys, as found in CADET style model files) and
translates validation failures into :class:`~cstr_engine.errors.ConfigurationError`.

Notes:
    - Unknown keys are allowed and ignored (`extra="allow"`), so a full unit
      scope can be passed without pre-filtering.
    - Fields may be populated by alias (``NCOMP``) or by name (``n_comp``).
    - Structural fields (``NCOMP``, ``NBOUND``, ``ADSORPTION_MODEL``) are only
      read by ``configure``; ``reconfigure`` re-reads the numeric parameters.
"""

from __future__ import annotations

import warnings
from enum import Enum
from typing import TYPE_CHECKING, Any, Final, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import raise_invalid_configuration

if TYPE_CHECKING:
    from collections.abc import Mapping

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_MODE_CONFLICT_MSG: Final[str] = (
    "JACOBIAN_MODE={mode!r} overrides USE_ANALYTIC_JACOBIAN={flag!r}; "
    "using JACOBIAN_MODE."
)


class JacobianMode(str, Enum):
    """Strategy used to build the state Jacobian."""

    ANALYTIC = "analytic"
    AD = "ad"
    VERIFY = "verify"


class UnitParametersConfig(BaseModel):
    """Numeric parameters of a stirred tank that may change on reconfigure."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    flowrate_filter: float | list[float] | None = Field(
        default=None,
        alias="FLOWRATE_FILTER",
        description="Filter flow rate, scalar or one value per section",
    )
    porosity: float = Field(default=1.0, alias="POROSITY", gt=0.0, le=1.0)
    adsorption: dict[str, Any] | None = Field(
        default=None,
        description="Parameter scope of the binding model",
    )


class StirredTankConfig(UnitParametersConfig):
    """Configuration schema of a stirred tank unit operation."""

    n_comp: int = Field(alias="NCOMP", ge=1, description="Number of components")
    n_bound: list[int] | None = Field(
        default=None,
        alias="NBOUND",
        description="Bound states per component; defaults to none",
    )
    use_analytic_jacobian: bool = Field(default=True, alias="USE_ANALYTIC_JACOBIAN")
    jacobian_mode: JacobianMode | None = Field(default=None, alias="JACOBIAN_MODE")

    adsorption_model: str = Field(default="NONE", alias="ADSORPTION_MODEL")

    @model_validator(mode="after")
    def _check_counts(self) -> StirredTankConfig:
        if self.n_bound is not None:
            if len(self.n_bound) != self.n_comp:
                msg = f"NBOUND must have NCOMP={self.n_comp} entries; got {len(self.n_bound)}"
                raise ValueError(msg)
            if any(n < 0 for n in self.n_bound):
                msg = f"NBOUND entries must be >= 0; got {self.n_bound}"
                raise ValueError(msg)
        return self

    def resolved_jacobian_mode(self) -> JacobianMode:
        """Return the effective Jacobian mode.

        ``JACOBIAN_MODE`` wins over ``USE_ANALYTIC_JACOBIAN``; a contradicting
        pair emits a RuntimeWarning.

        Returns:
            Effective JacobianMode.
        """
        legacy = JacobianMode.ANALYTIC if self.use_analytic_jacobian else JacobianMode.AD
        if self.jacobian_mode is None:
            return legacy
        explicit_flag = "use_analytic_jacobian" in self.model_fields_set
        if (
            explicit_flag
            and self.jacobian_mode is not JacobianMode.VERIFY
            and self.jacobian_mode is not legacy
        ):
            warnings.warn(
                _MODE_CONFLICT_MSG.format(
                    mode=self.jacobian_mode.value, flag=self.use_analytic_jacobian
                ),
                RuntimeWarning,
                stacklevel=2,
            )
        return self.jacobian_mode


class InitialConditionConfig(BaseModel):
    """Initial state of a stirred tank unit.

    Either ``INIT_STATE`` (full state, optionally followed by its time
    derivative) or ``INIT_C`` with optional ``INIT_Q`` and ``INIT_VOLUME``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    init_state: list[float] | None = Field(default=None, alias="INIT_STATE")
    init_c: list[float] | None = Field(default=None, alias="INIT_C")
    init_q: list[float] | None = Field(default=None, alias="INIT_Q")
    init_volume: float | None = Field(default=None, alias="INIT_VOLUME", ge=0.0)

    @model_validator(mode="after")
    def _check_source(self) -> InitialConditionConfig:
        if self.init_state is None and self.init_c is None:
            msg = "either INIT_STATE or INIT_C is required"
            raise ValueError(msg)
        return self


class LinearBindingConfig(BaseModel):
    """Parameters of the kinetic linear binding model."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ka: list[float] = Field(alias="LIN_KA", description="Adsorption rates per component")
    kd: list[float] = Field(alias="LIN_KD", description="Desorption rates per component")


def parse_config(model: type[_ModelT], params: Mapping[str, Any]) -> _ModelT:
    """Validate a parameter mapping into a pydantic model.

    Args:
        model: Target model class.
        params: Raw parameter mapping.

    Returns:
        Validated model instance.

    Raises:
        ConfigurationError: If validation fails.
    """
    try:
        return model.model_validate(dict(params))
    except ValidationError as exc:
        missing = [
            str(err["loc"][0]) for err in exc.errors() if err["type"] == "missing" and err["loc"]
        ]
        raise_invalid_configuration(missing=missing or None, detail=str(exc))
