# src/cstr_engine/layout.py
"""State vector layout of the stirred tank unit.

The state vector is laid out as::

    [ c_in (n_comp) | c (n_comp) | q (stride_bound) | V (1) ]

Component ``i`` owns ``n_bound[i]`` contiguous bound states starting at
``bound_offset[i]`` within the ``q`` block.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import raise_invalid_configuration

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True, slots=True)
class StateLayout:
    """Immutable component / bound-state counts and derived DOF indices."""

    n_comp: int
    n_bound: tuple[int, ...]
    bound_offset: tuple[int, ...]
    stride_bound: int

    @classmethod
    def from_counts(cls, n_comp: int, n_bound: Sequence[int] | None = None) -> StateLayout:
        """
        Build a layout from component and bound-state counts.

        Args:
            n_comp: Number of components (>= 1).
            n_bound: Bound states per component. Defaults to none.

        Returns:
            StateLayout.

        Raises:
            ConfigurationError: If counts are inconsistent or negative.
        """
        if n_comp < 1:
            raise_invalid_configuration(detail=f"NCOMP must be >= 1; got {n_comp}")
        counts = tuple(int(n) for n in n_bound) if n_bound is not None else (0,) * n_comp
        if len(counts) != n_comp:
            raise_invalid_configuration(
                detail=f"NBOUND must have {n_comp} entries; got {len(counts)}"
            )
        if any(n < 0 for n in counts):
            raise_invalid_configuration(detail=f"NBOUND entries must be >= 0; got {list(counts)}")

        offsets = [0] * n_comp
        for i in range(1, n_comp):
            offsets[i] = offsets[i - 1] + counts[i - 1]
        stride = offsets[-1] + counts[-1]
        return cls(
            n_comp=int(n_comp),
            n_bound=counts,
            bound_offset=tuple(offsets),
            stride_bound=stride,
        )

    @property
    def num_dofs(self) -> int:
        """Total number of DOFs including the inlet block."""
        return 2 * self.n_comp + self.stride_bound + 1

    @property
    def num_pure_dofs(self) -> int:
        """Number of DOFs excluding the inlet block."""
        return self.n_comp + self.stride_bound + 1

    @property
    def inlet(self) -> slice:
        return slice(0, self.n_comp)

    @property
    def conc(self) -> slice:
        return slice(self.n_comp, 2 * self.n_comp)

    @property
    def bound(self) -> slice:
        return slice(2 * self.n_comp, 2 * self.n_comp + self.stride_bound)

    @property
    def volume(self) -> int:
        """Index of the volume DOF in the full state vector."""
        return 2 * self.n_comp + self.stride_bound

    @property
    def pure_volume(self) -> int:
        """Index of the volume DOF within the pure block."""
        return self.n_comp + self.stride_bound

    def bound_slice(self, comp: int) -> slice:
        """Slice of the bound states of one component within the ``q`` block."""
        start = self.bound_offset[comp]
        return slice(start, start + self.n_bound[comp])
