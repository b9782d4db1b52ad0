"""Geometry engine -- primitive parameters to discretised point paths.

Pure functions only: nothing here keeps state between calls, so the same
three points always yield the same center, radius and normal.

Local plane frame
-----------------
Arcs and circles are walked in a 2D frame lying in their plane.  The
frame's X axis comes from the normal alone (arbitrary-axis rule): when
the normal is within 1/64 of world Z the X axis is ``Y x N``, otherwise
``Z x N``.  The Y axis is ``N x X``.  Angles are measured in degrees in
that frame and normalised to ``[0, 360)``.

Units
-----
Coordinates are millimetres.  Lengths returned by
:func:`calculate_trajectory_length` are **metres**; runtimes are seconds
at a fixed 2 m/s reference speed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np

from spray_control.geometry.primitives import Point3D

if TYPE_CHECKING:
    from spray_control.program.model import Trajectory

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION_DEG = 15.0
REFERENCE_SPEED_M_S = 2.0

COINCIDENCE_TOL = 1e-6
COLLINEAR_TOL = 1e-9
ZERO_LENGTH_M = 1e-9
STRAIGHT_BULGE = 1e-3
MIN_BULGE_CHORD = 1e-3

# Angle slack when deciding whether another step fits before the end
_ANGLE_EPS_DEG = 1e-9
_ARBITRARY_AXIS_LIMIT = 1.0 / 64.0


class DegenerateGeometry(ValueError):
    """Three points do not define a unique circle (collinear or coincident)."""

    pass


# ---------------------------------------------------------------------------
# Parameter containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CircleParameters:
    """Circumcircle of three points.

    Parameters
    ----------
    center : Point3D
        Point equidistant from the three input points.
    radius : float
        Circle radius in mm.
    normal : Point3D
        Unit normal of the circle plane (right-hand rule p1 -> p2 -> p3).
    """

    center: Point3D
    radius: float
    normal: Point3D


@dataclass(frozen=True, slots=True)
class ArcParameters:
    """Arc through three points, walked counter-clockwise about *normal*.

    ``start_angle`` and ``end_angle`` are in degrees, ``[0, 360)``, in
    the local plane frame of *normal*.  ``is_clockwise`` reports the
    direction as seen from +Z (normal pointing down).
    """

    center: Point3D
    radius: float
    start_angle: float
    end_angle: float
    normal: Point3D
    is_clockwise: bool

    @property
    def sweep_deg(self) -> float:
        """Angular extent from start to end, in ``(0, 360]``."""
        sweep = (self.end_angle - self.start_angle) % 360.0
        if sweep <= _ANGLE_EPS_DEG:
            sweep = 360.0
        return sweep


@dataclass(frozen=True, slots=True)
class BulgeArc:
    """Arc segment described by a polyline bulge, in the XY plane.

    ``sweep_deg`` is signed: positive sweeps counter-clockwise.
    """

    center_x: float
    center_y: float
    radius: float
    start_angle_deg: float
    sweep_deg: float

    @property
    def included_angle_deg(self) -> float:
        return abs(self.sweep_deg)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _coincident(a: Point3D, b: Point3D) -> bool:
    return a.is_close(b, COINCIDENCE_TOL)


def _local_frame(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Reproducible in-plane (X, Y) axes for a unit *normal*."""
    if (
        abs(normal[0]) < _ARBITRARY_AXIS_LIMIT
        and abs(normal[1]) < _ARBITRARY_AXIS_LIMIT
    ):
        reference = np.array([0.0, 1.0, 0.0])
    else:
        reference = np.array([0.0, 0.0, 1.0])
    x_axis = np.cross(reference, normal)
    x_axis /= np.linalg.norm(x_axis)
    y_axis = np.cross(normal, x_axis)
    return x_axis, y_axis


def _angle_in_frame(
    point: np.ndarray,
    center: np.ndarray,
    x_axis: np.ndarray,
    y_axis: np.ndarray,
) -> float:
    offset = point - center
    angle = math.degrees(math.atan2(offset @ y_axis, offset @ x_axis)) % 360.0
    # -1e-15 % 360 rounds up to 360.0
    return 0.0 if angle >= 360.0 else angle


def _point_on_circle(
    center: np.ndarray,
    radius: float,
    x_axis: np.ndarray,
    y_axis: np.ndarray,
    angle_deg: float,
) -> Point3D:
    a = math.radians(angle_deg)
    return Point3D.from_array(
        center + radius * (math.cos(a) * x_axis + math.sin(a) * y_axis)
    )


def _step_offsets(extent_deg: float, resolution_deg: float) -> list[float]:
    """Offsets ``0, r, 2r, ...`` strictly below *extent_deg*."""
    if resolution_deg <= 0:
        raise ValueError(f"resolution_deg must be > 0, got {resolution_deg}")
    offsets = []
    k = 0
    while k * resolution_deg < extent_deg - _ANGLE_EPS_DEG:
        offsets.append(k * resolution_deg)
        k += 1
    return offsets


def _circumcircle(
    p1: Point3D, p2: Point3D, p3: Point3D
) -> tuple[np.ndarray, float, np.ndarray]:
    """Return ``(center, radius, unit_normal)`` of the circle through 3 points.

    Raises
    ------
    DegenerateGeometry
        If two points coincide within 1e-6 per axis or all three are
        collinear.
    """
    if _coincident(p1, p2) or _coincident(p2, p3) or _coincident(p1, p3):
        raise DegenerateGeometry(
            f"Coincident points: {p1}, {p2}, {p3}"
        )

    a = p1.as_array()
    u = p2.as_array() - a
    v = p3.as_array() - a
    n = np.cross(u, v)
    n_norm = float(np.linalg.norm(n))
    if n_norm <= COLLINEAR_TOL * float(np.linalg.norm(u) * np.linalg.norm(v)):
        raise DegenerateGeometry(f"Collinear points: {p1}, {p2}, {p3}")

    center = a + np.cross((u @ u) * v - (v @ v) * u, n) / (2.0 * n_norm**2)
    radius = float(np.linalg.norm(a - center))
    return center, radius, n / n_norm


# ---------------------------------------------------------------------------
# Three-point parameters
# ---------------------------------------------------------------------------


def calculate_circle_center_radius_from_three_points(
    p1: Point3D, p2: Point3D, p3: Point3D
) -> CircleParameters:
    """Circumcircle of three points on a circle.

    Raises
    ------
    DegenerateGeometry
        Collinear or coincident input.
    """
    center, radius, normal = _circumcircle(p1, p2, p3)
    return CircleParameters(
        center=Point3D.from_array(center),
        radius=radius,
        normal=Point3D.from_array(normal),
    )


def calculate_arc_parameters_from_three_points(
    p1: Point3D, p2: Point3D, p3: Point3D
) -> ArcParameters:
    """Center, radius, angles and plane of the arc p1 -> p2 -> p3.

    The normal follows the right-hand rule from p1 to p2 to p3, so the
    arc always runs counter-clockwise about it from ``start_angle`` (at
    p1) to ``end_angle`` (at p3), passing through p2.

    Raises
    ------
    DegenerateGeometry
        Collinear or coincident input.
    """
    center, radius, normal = _circumcircle(p1, p2, p3)
    x_axis, y_axis = _local_frame(normal)
    return ArcParameters(
        center=Point3D.from_array(center),
        radius=radius,
        start_angle=_angle_in_frame(p1.as_array(), center, x_axis, y_axis),
        end_angle=_angle_in_frame(p3.as_array(), center, x_axis, y_axis),
        normal=Point3D.from_array(normal),
        is_clockwise=bool(normal[2] < 0.0),
    )


# ---------------------------------------------------------------------------
# Discretisation
# ---------------------------------------------------------------------------


def discretize_arc(
    params: ArcParameters,
    reverse: bool = False,
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> list[Point3D]:
    """Walk an arc in fixed angular steps, ending exactly on its end angle.

    With *reverse* the walk starts at the end angle and steps back to the
    start angle, so step boundaries are anchored at the other end rather
    than mirrored from the forward walk.
    """
    center = params.center.as_array()
    x_axis, y_axis = _local_frame(params.normal.as_array())
    sweep = params.sweep_deg

    if reverse:
        origin, direction = params.start_angle + sweep, -1.0
    else:
        origin, direction = params.start_angle, 1.0

    angles = [origin + direction * d for d in _step_offsets(sweep, resolution_deg)]
    angles.append(origin + direction * sweep)
    return [
        _point_on_circle(center, params.radius, x_axis, y_axis, a) for a in angles
    ]


def discretize_circle(
    params: CircleParameters,
    reverse: bool = False,
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> list[Point3D]:
    """Walk a full circle from local angle 0 and close it.

    The last point repeats the first unless the walk already landed on it
    (1e-6 per axis).  *reverse* walks clockwise about the normal.
    """
    center = params.center.as_array()
    x_axis, y_axis = _local_frame(params.normal.as_array())
    direction = -1.0 if reverse else 1.0

    points = [
        _point_on_circle(center, params.radius, x_axis, y_axis, direction * d)
        for d in _step_offsets(360.0, resolution_deg)
    ]
    if points and not points[-1].is_close(points[0], COINCIDENCE_TOL):
        points.append(points[0])
    return points


def bulge_to_arc(start: Point3D, end: Point3D, bulge: float) -> BulgeArc | None:
    """Arc described by *bulge* between two polyline vertices (XY only).

    Returns ``None`` for a straight segment: ``|bulge| < 1e-3`` or a chord
    shorter than 1e-3 mm.

    Notes
    -----
    Included angle ``theta = 4 * atan(|bulge|)``, radius
    ``R = chord * (1 + bulge**2) / (4 * |bulge|)``.  The center lies at
    ``R - sagitta`` from the chord midpoint, on the left of the chord for
    positive (counter-clockwise) bulge.
    """
    if abs(bulge) < STRAIGHT_BULGE:
        return None

    dx = end.x - start.x
    dy = end.y - start.y
    chord = math.hypot(dx, dy)
    if chord < MIN_BULGE_CHORD:
        logger.debug("Bulge chord %.2e mm too short, using straight segment", chord)
        return None

    b = abs(bulge)
    sign = 1.0 if bulge > 0 else -1.0
    theta = 4.0 * math.atan(b)
    radius = chord * (1.0 + b * b) / (4.0 * b)
    offset = radius - b * chord / 2.0

    mid_x = (start.x + end.x) / 2.0
    mid_y = (start.y + end.y) / 2.0
    center_x = mid_x + sign * offset * (-dy / chord)
    center_y = mid_y + sign * offset * (dx / chord)

    return BulgeArc(
        center_x=center_x,
        center_y=center_y,
        radius=radius,
        start_angle_deg=math.degrees(
            math.atan2(start.y - center_y, start.x - center_x)
        ),
        sweep_deg=sign * math.degrees(theta),
    )


def discretize_bulge_segment(
    start: Point3D,
    end: Point3D,
    bulge: float,
    z: float,
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> list[Point3D]:
    """Points from *start* to *end* (both included) at height *z*."""
    arc = bulge_to_arc(start, end, bulge)
    if arc is None:
        return [start.with_z(z), end.with_z(z)]

    direction = 1.0 if arc.sweep_deg > 0 else -1.0
    points = [start.with_z(z)]
    for d in _step_offsets(arc.included_angle_deg, resolution_deg)[1:]:
        a = math.radians(arc.start_angle_deg + direction * d)
        points.append(
            Point3D(
                arc.center_x + arc.radius * math.cos(a),
                arc.center_y + arc.radius * math.sin(a),
                z,
            )
        )
    points.append(end.with_z(z))
    return points


def expand_bulge_polyline(
    vertices: Sequence[Point3D],
    bulges: Sequence[float],
    closed: bool,
    z: float,
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> list[Point3D]:
    """Flatten a bulge polyline into points at height *z*.

    A closed polyline does not repeat its first vertex at the end; the
    closing segment is implied by the closed flag.
    """
    n = len(vertices)
    if n == 0:
        return []
    segment_count = n if closed else n - 1

    points: list[Point3D] = []
    for i in range(segment_count):
        segment = discretize_bulge_segment(
            vertices[i], vertices[(i + 1) % n], bulges[i], z, resolution_deg
        )
        points.extend(segment[:-1])
    if not closed:
        points.append(vertices[-1].with_z(z))
    return points


def rotate_to_nearest_origin(
    vertices: Sequence[Point3D], bulges: Sequence[float]
) -> tuple[list[Point3D], list[float]]:
    """Rotate so the vertex nearest the origin (XY) comes first.

    Bulges travel with the vertex that starts their segment.  Ties keep
    the earliest vertex.
    """
    if not vertices:
        return [], []
    distances = [v.x * v.x + v.y * v.y for v in vertices]
    k = distances.index(min(distances))
    return (
        list(vertices[k:]) + list(vertices[:k]),
        list(bulges[k:]) + list(bulges[:k]),
    )


# ---------------------------------------------------------------------------
# Length and runtime
# ---------------------------------------------------------------------------


def path_length_mm(points: Sequence[Point3D], closed: bool = False) -> float:
    """Polyline length in mm, with the closing segment when *closed* and
    there are more than two points."""
    if len(points) < 2:
        return 0.0
    total = sum(a.distance_to(b) for a, b in zip(points, points[1:]))
    if closed and len(points) > 2:
        total += points[-1].distance_to(points[0])
    return total


def calculate_trajectory_length(trajectory: Trajectory | None) -> float:
    """Length of a trajectory's discretised path in **metres**.

    Returns 0 for ``None`` or fewer than two points.
    """
    if trajectory is None:
        return 0.0
    return path_length_mm(trajectory.points, trajectory.is_closed) / 1000.0


def calculate_min_runtime(trajectory: Trajectory | None) -> float:
    """Shortest allowed runtime in seconds at the reference speed."""
    length = calculate_trajectory_length(trajectory)
    if length <= ZERO_LENGTH_M:
        return 0.0
    return length / REFERENCE_SPEED_M_S
