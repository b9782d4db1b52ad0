"""Geometric equivalence between primitives.

Trajectories remember where they came from by index into the list of
imported drawing entities.  After the drawing is reloaded those indices
are stale, so they are re-established by comparing geometry within a
tolerance instead of by object identity.
"""

from __future__ import annotations

import logging
from typing import Sequence

from spray_control.geometry.cad_import import CadEntity
from spray_control.geometry.engine import (
    DegenerateGeometry,
    calculate_arc_parameters_from_three_points,
    calculate_circle_center_radius_from_three_points,
)
from spray_control.geometry.primitives import (
    Arc,
    Circle,
    Line,
    Point3D,
    Polygon,
    Primitive,
)
from spray_control.program.model import Configuration

logger = logging.getLogger(__name__)

MATCH_TOLERANCE = 1e-3


def _same_point(a: Point3D, b: Point3D, tol: float) -> bool:
    return a.is_close(b, tol)


def _same_endpoints(
    a1: Point3D, a2: Point3D, b1: Point3D, b2: Point3D, tol: float
) -> bool:
    """Unordered endpoint pair comparison."""
    return (_same_point(a1, b1, tol) and _same_point(a2, b2, tol)) or (
        _same_point(a1, b2, tol) and _same_point(a2, b1, tol)
    )


def _same_circle(a: Primitive, b: Primitive, tol: float) -> bool | None:
    """Compare circumcircles; ``None`` if either is degenerate."""
    try:
        ca = calculate_circle_center_radius_from_three_points(a.p1, a.p2, a.p3)
        cb = calculate_circle_center_radius_from_three_points(b.p1, b.p2, b.p3)
    except DegenerateGeometry:
        return None
    return _same_point(ca.center, cb.center, tol) and abs(ca.radius - cb.radius) <= tol


def primitives_equivalent(a: Primitive, b: Primitive, tol: float = MATCH_TOLERANCE) -> bool:
    """True when *a* and *b* describe the same geometry within *tol* (mm).

    Lines match in either direction.  Arcs match on circle and unordered
    endpoints.  Circles match on center and radius.  Polygons match on
    closed flag, vertex count, vertices (XY) and bulges.
    """
    if type(a) is not type(b):
        return False

    if isinstance(a, Line):
        return _same_endpoints(a.start, a.end, b.start, b.end, tol)

    if isinstance(a, Arc):
        if not _same_endpoints(a.p1, a.p3, b.p1, b.p3, tol):
            return False
        same = _same_circle(a, b, tol)
        if same is None:
            return _same_point(a.p2, b.p2, tol)
        return same

    if isinstance(a, Circle):
        same = _same_circle(a, b, tol)
        if same is None:
            return all(_same_point(p, q, tol) for p, q in
                       zip((a.p1, a.p2, a.p3), (b.p1, b.p2, b.p3)))
        return same

    if isinstance(a, Polygon):
        if a.closed != b.closed or len(a.vertices) != len(b.vertices):
            return False
        for va, vb, ba, bb in zip(a.vertices, b.vertices, a.bulges, b.bulges):
            if abs(va.x - vb.x) > tol or abs(va.y - vb.y) > tol or abs(ba - bb) > tol:
                return False
        return True

    raise TypeError(f"Unsupported primitive type: {type(a).__name__}")


def reconcile(
    configuration: Configuration,
    entities: Sequence[CadEntity],
    tol: float = MATCH_TOLERANCE,
) -> int:
    """Point every trajectory's ``source_index`` at its drawing entity.

    Each trajectory gets the first equivalent entity; several trajectories
    (e.g. in different passes) may share one entity.  Unmatched
    trajectories get ``None``.

    Returns
    -------
    int
        Number of unmatched trajectories.
    """
    unmatched = 0
    for trajectory in configuration.trajectories():
        trajectory.source_index = next(
            (
                i for i, entity in enumerate(entities)
                if primitives_equivalent(trajectory.primitive, entity.primitive, tol)
            ),
            None,
        )
        if trajectory.source_index is None:
            unmatched += 1
    if unmatched:
        logger.warning("%d trajectories have no matching drawing entity", unmatched)
    return unmatched
