# src/cstr_engine/parameters.py
"""Parameter identities and the per-model parameter registry.

Parameters are stored as :class:`~cstr_engine.autodiff.Dual` values so a
sensitive parameter can carry an AD seed. The registry maps a
:class:`ParameterId` to an index into that table; the sensitive set is a set of
indices.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .autodiff import Dual

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger(__name__)

UNIT_OP_INDEP = -1
COMP_INDEP = -1
BOUND_PHASE_INDEP = -1
REACTION_INDEP = -1
SECTION_INDEP = -1


@dataclass(frozen=True, slots=True)
class ParameterId:
    """Identity of a model parameter.

    Negative indices denote independence of the respective dimension.
    """

    name: str
    unit_operation: int = UNIT_OP_INDEP
    component: int = COMP_INDEP
    bound_phase: int = BOUND_PHASE_INDEP
    reaction: int = REACTION_INDEP
    section: int = SECTION_INDEP

    def matches_unit(self, unit_op_idx: int) -> bool:
        """Whether this id addresses the given unit operation."""
        return self.unit_operation in (UNIT_OP_INDEP, unit_op_idx)

    def with_unit(self, unit_op_idx: int) -> ParameterId:
        """Return a copy bound to a concrete unit operation."""
        return ParameterId(
            self.name,
            unit_op_idx,
            self.component,
            self.bound_phase,
            self.reaction,
            self.section,
        )


class ParameterRegistry:
    """Table of Dual parameter values addressed by ParameterId."""

    def __init__(self) -> None:
        self._index: dict[ParameterId, int] = {}
        self._values: list[Dual] = []
        self._sensitive: set[int] = set()

    def clear(self) -> None:
        """Drop all parameters and the sensitive set."""
        self._index.clear()
        self._values.clear()
        self._sensitive.clear()

    def __contains__(self, pid: object) -> bool:
        return pid in self._index

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[ParameterId]:
        return iter(self._index)

    def register(self, pid: ParameterId, value: float) -> int:
        """
        Register a parameter or overwrite the value of an existing one.

        Overwriting keeps the slot and its AD seeds.

        Returns:
            Index of the parameter in the table.
        """
        idx = self._index.get(pid)
        if idx is not None:
            self._values[idx].set_value(value)
            return idx
        idx = len(self._values)
        self._values.append(Dual(value))
        self._index[pid] = idx
        return idx

    def register_section_dependent(
        self,
        name: str,
        values: float | Sequence[float],
        unit_op_idx: int,
        *,
        component: int = COMP_INDEP,
        bound_phase: int = BOUND_PHASE_INDEP,
    ) -> list[int]:
        """
        Register a scalar (section independent) or per-section parameter.

        Returns:
            Table indices, one per section (a single one for scalars).
        """
        if isinstance(values, (int, float)):
            pid = ParameterId(name, unit_op_idx, component, bound_phase)
            return [self.register(pid, float(values))]
        return [
            self.register(
                ParameterId(name, unit_op_idx, component, bound_phase, REACTION_INDEP, sec),
                float(v),
            )
            for sec, v in enumerate(values)
        ]

    def get(self, pid: ParameterId) -> Dual | None:
        """Return the stored Dual (live) for pid, or None."""
        idx = self._index.get(pid)
        if idx is None:
            return None
        return self._values[idx]

    def value(self, idx: int) -> Dual:
        """Return the stored Dual (live) at a table index."""
        return self._values[idx]

    def set_value(self, pid: ParameterId, value: float) -> bool:
        """Set the primal value of a parameter; False if unknown."""
        param = self.get(pid)
        if param is None:
            return False
        param.set_value(value)
        return True

    def set_sensitive(self, pid: ParameterId, direction: int, ad_value: float) -> bool:
        """
        Mark a parameter sensitive and seed its AD direction.

        Returns:
            False if the parameter is unknown.
        """
        idx = self._index.get(pid)
        if idx is None:
            return False
        self._sensitive.add(idx)
        self._values[idx].set_ad_value(direction, ad_value)
        logger.debug("Sensitive parameter %s seeded in AD direction %d", pid, direction)
        return True

    def set_sensitive_value(self, pid: ParameterId, value: float) -> bool:
        """Set the value of a sensitive parameter; False if unknown or not sensitive."""
        idx = self._index.get(pid)
        if idx is None or idx not in self._sensitive:
            return False
        self._values[idx].set_value(value)
        return True

    def is_sensitive(self, pid: ParameterId) -> bool:
        idx = self._index.get(pid)
        return idx is not None and idx in self._sensitive

    def clear_sensitivities(self) -> None:
        """Reset all AD seeds and empty the sensitive set."""
        for idx in self._sensitive:
            self._values[idx].reset_ad_values(0.0)
        self._sensitive.clear()

    def all_values(self) -> dict[ParameterId, float]:
        """Return the primal value of every registered parameter."""
        return {pid: self._values[idx].value for pid, idx in self._index.items()}
