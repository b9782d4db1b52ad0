"""Primitive vocabulary -- the shapes a spray trajectory can follow.

Every primitive is an immutable, slotted dataclass.  Coordinates are
**millimetres** in the drawing frame.  A primitive only stores its
defining parameters; the discretised point path is always derived from
it (see :mod:`spray_control.geometry.engine`).

Variants
--------
``Line``
    Two endpoints.
``Arc``
    Three points on the arc: start, any point on the arc, end.
``Circle``
    Three points on the circumference (120 degrees apart when derived
    from a CAD circle).
``Polygon``
    Ordered vertices of an open or closed polyline at a fixed elevation.
    ``bulges[i]`` describes the segment from vertex ``i`` to ``i + 1``
    (the closing segment for the last vertex of a closed polygon).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Union

import numpy as np

# ---------------------------------------------------------------------------
# Point
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Point3D:
    """Immutable 3D point in millimetres."""

    x: float
    y: float
    z: float = 0.0

    def __post_init__(self) -> None:
        for name in ("x", "y", "z"):
            value = float(getattr(self, name))
            if not math.isfinite(value):
                raise ValueError(f"Point3D.{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

    @classmethod
    def from_array(cls, values: Iterable[float]) -> Point3D:
        """Create from any 3-element sequence (list, tuple, ndarray)."""
        x, y, z = (float(v) for v in values)
        return cls(x, y, z)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    def with_z(self, z: float) -> Point3D:
        return Point3D(self.x, self.y, float(z))

    def distance_to(self, other: Point3D) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2
            + (self.y - other.y) ** 2
            + (self.z - other.z) ** 2
        )

    def is_close(self, other: Point3D, tol: float = 1e-6) -> bool:
        """Per-axis comparison within *tol*."""
        return (
            abs(self.x - other.x) <= tol
            and abs(self.y - other.y) <= tol
            and abs(self.z - other.z) <= tol
        )


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Line:
    """Straight segment from *start* to *end*."""

    start: Point3D
    end: Point3D


@dataclass(frozen=True, slots=True)
class Arc:
    """Circular arc through three points.

    Parameters
    ----------
    p1 : Point3D
        Start of the arc.
    p2 : Point3D
        Any point strictly between start and end on the arc.
    p3 : Point3D
        End of the arc.
    """

    p1: Point3D
    p2: Point3D
    p3: Point3D


@dataclass(frozen=True, slots=True)
class Circle:
    """Full circle through three points on its circumference."""

    p1: Point3D
    p2: Point3D
    p3: Point3D


@dataclass(frozen=True, slots=True)
class Polygon:
    """Open or closed polyline with optional bulge arcs.

    Parameters
    ----------
    vertices : tuple[Point3D, ...]
        At least two vertices.  Their Z is informational; the path uses
        *elevation* (or the trajectory's polygon Z override).
    closed : bool
        Whether a closing segment runs from the last vertex to the first.
    elevation : float
        Z height of the polyline plane in millimetres.
    bulges : tuple[float, ...]
        One bulge per vertex (``tan(theta / 4)`` of the arc to the next
        vertex).  Empty means all segments are straight.
    """

    vertices: tuple[Point3D, ...]
    closed: bool = False
    elevation: float = 0.0
    bulges: tuple[float, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "vertices", tuple(self.vertices))
        bulges = tuple(float(b) for b in self.bulges)
        if not bulges:
            bulges = (0.0,) * len(self.vertices)
        object.__setattr__(self, "bulges", bulges)

        if len(self.vertices) < 2:
            raise ValueError(
                f"Polygon needs at least 2 vertices, got {len(self.vertices)}"
            )
        if len(self.bulges) != len(self.vertices):
            raise ValueError(
                f"Polygon has {len(self.vertices)} vertices but "
                f"{len(self.bulges)} bulges"
            )

    @property
    def has_arcs(self) -> bool:
        return any(b != 0.0 for b in self.bulges)


Primitive = Union[Line, Arc, Circle, Polygon]
"""Closed set of primitive kinds every dispatcher must handle."""


def primitive_kind(primitive: Primitive) -> str:
    """Return the display name of a primitive's kind.

    Raises
    ------
    TypeError
        If *primitive* is not one of the four primitive classes.
    """
    if isinstance(primitive, (Line, Arc, Circle, Polygon)):
        return type(primitive).__name__
    raise TypeError(f"Unsupported primitive type: {type(primitive).__name__}")
