"""Spray program model -- trajectories, passes and the root configuration.

A :class:`Configuration` owns an ordered list of :class:`SprayPass`, each
owning an ordered list of :class:`Trajectory`.  Order inside a pass is the
execution order on the robot.

``Trajectory.points`` is derived data.  It is rebuilt by
:mod:`spray_control.program.reconstruct` after every edit and may be left
empty by persistence layers, which then call
:func:`~spray_control.program.reconstruct.regenerate_configuration`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from spray_control.geometry.engine import DEFAULT_RESOLUTION_DEG
from spray_control.geometry.primitives import (
    Point3D,
    Polygon,
    Primitive,
    primitive_kind,
)

# ---------------------------------------------------------------------------
# Trajectory
# ---------------------------------------------------------------------------


@dataclass
class Trajectory:
    """One spray-path unit: geometry, direction, timing and nozzle state.

    Parameters
    ----------
    primitive : Primitive
        Defining geometry.
    is_reversed : bool
        Traverse the primitive end-to-start.
    runtime : float
        Traversal duration in seconds.  Kept at or above the minimum
        runtime by :func:`~spray_control.program.reconstruct.set_runtime`.
    upper_gas_on, upper_liquid_on, lower_gas_on, lower_liquid_on : bool
        Nozzle valves.  Liquid on implies gas on for the same nozzle; the
        constructor forces gas on when liquid is requested.
    polygon_z : float or None
        Uniform Z for polygon points.  Defaults to the polygon elevation;
        ignored for other primitives.
    points : list[Point3D]
        Discretised path (derived).
    source_index : int or None
        Index of the CAD entity this trajectory was captured from, if
        known.  Re-established by geometric matching after a reload.
    name : str
        Free-form label shown by user interfaces.
    resolution_deg : float
        Angular step used whenever the points are regenerated.
    """

    primitive: Primitive
    is_reversed: bool = False
    runtime: float = 0.0
    upper_gas_on: bool = False
    upper_liquid_on: bool = False
    lower_gas_on: bool = False
    lower_liquid_on: bool = False
    polygon_z: float | None = None
    points: list[Point3D] = field(default_factory=list)
    source_index: int | None = None
    name: str = ""
    resolution_deg: float = DEFAULT_RESOLUTION_DEG

    def __post_init__(self) -> None:
        primitive_kind(self.primitive)
        if self.runtime < 0:
            raise ValueError(f"runtime must be >= 0, got {self.runtime}")
        if self.resolution_deg <= 0:
            raise ValueError(f"resolution_deg must be > 0, got {self.resolution_deg}")
        if isinstance(self.primitive, Polygon) and self.polygon_z is None:
            self.polygon_z = self.primitive.elevation
        if self.upper_liquid_on:
            self.upper_gas_on = True
        if self.lower_liquid_on:
            self.lower_gas_on = True

    @property
    def kind(self) -> str:
        """``"Line"``, ``"Arc"``, ``"Circle"`` or ``"Polygon"``."""
        return primitive_kind(self.primitive)

    @property
    def is_closed(self) -> bool:
        """True for closed polygons (their closing segment counts)."""
        return isinstance(self.primitive, Polygon) and self.primitive.closed

    def __str__(self) -> str:
        label = self.name or self.kind
        direction = " (reversed)" if self.is_reversed else ""
        return f"{label}{direction}, {len(self.points)} pts, {self.runtime:.2f} s"


# ---------------------------------------------------------------------------
# Pass and configuration
# ---------------------------------------------------------------------------


@dataclass
class SprayPass:
    """Named, ordered group of trajectories sent as one robot program segment."""

    name: str
    trajectories: list[Trajectory] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.trajectories)

    def move_trajectory(self, index: int, offset: int) -> int:
        """Move the trajectory at *index* by *offset* places.

        The target is clamped to the pass bounds.  Returns the new index.

        Raises
        ------
        IndexError
            If *index* is out of range.
        """
        if not 0 <= index < len(self.trajectories):
            raise IndexError(
                f"Trajectory index {index} out of range for pass "
                f"'{self.name}' ({len(self.trajectories)} trajectories)"
            )
        target = max(0, min(len(self.trajectories) - 1, index + offset))
        item = self.trajectories.pop(index)
        self.trajectories.insert(target, item)
        return target


@dataclass
class Configuration:
    """Root aggregate: ordered spray passes plus the pass being edited."""

    passes: list[SprayPass] = field(default_factory=list)
    current_pass_index: int = 0

    @property
    def current_pass(self) -> SprayPass:
        """Pass selected by ``current_pass_index``.

        Raises
        ------
        IndexError
            If the index does not point at an existing pass.
        """
        if not 0 <= self.current_pass_index < len(self.passes):
            raise IndexError(
                f"current_pass_index {self.current_pass_index} out of range "
                f"({len(self.passes)} passes)"
            )
        return self.passes[self.current_pass_index]

    def add_pass(self, name: str | None = None) -> SprayPass:
        """Append a new empty pass and make it current."""
        spray_pass = SprayPass(name or f"Pass {len(self.passes) + 1}")
        self.passes.append(spray_pass)
        self.current_pass_index = len(self.passes) - 1
        return spray_pass

    def remove_pass(self, index: int) -> SprayPass:
        """Remove and return the pass at *index*, keeping the current index valid."""
        if not 0 <= index < len(self.passes):
            raise IndexError(f"Pass index {index} out of range ({len(self.passes)} passes)")
        removed = self.passes.pop(index)
        if self.current_pass_index > index or self.current_pass_index >= len(self.passes):
            self.current_pass_index = max(0, self.current_pass_index - 1)
        return removed

    def rename_pass(self, index: int, name: str) -> None:
        if not name.strip():
            raise ValueError("Pass name must not be empty")
        self.passes[index].name = name.strip()

    def trajectories(self) -> Iterator[Trajectory]:
        """All trajectories in execution order (pass by pass)."""
        for spray_pass in self.passes:
            yield from spray_pass.trajectories
