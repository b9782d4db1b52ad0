"""Primitive reconstructor -- rebuild trajectory points after every edit.

:func:`regenerate_points` is a pure function of
``(primitive, is_reversed, polygon_z)``.  The edit operations below change
one input (direction, height, runtime, nozzles) and regenerate the whole
point list; nothing is patched incrementally.

Reversal semantics
------------------
Line
    Endpoints swapped.
Arc
    Walked from p3 back to p1 through p2, in the same plane.
Circle
    Walked clockwise about its normal; p1/p3 swapped when encoded.
Polygon
    Point order reversed.

Degenerate arcs and circles never drop a trajectory: the raw defining
points are emitted instead and a warning is logged.
"""

from __future__ import annotations

import dataclasses
import logging
import math

from spray_control.geometry.engine import (
    DEFAULT_RESOLUTION_DEG,
    DegenerateGeometry,
    calculate_arc_parameters_from_three_points,
    calculate_circle_center_radius_from_three_points,
    calculate_min_runtime,
    discretize_arc,
    discretize_circle,
    expand_bulge_polyline,
)
from spray_control.geometry.primitives import (
    Arc,
    Circle,
    Line,
    Point3D,
    Polygon,
    Primitive,
)
from spray_control.program.model import Configuration, Trajectory

logger = logging.getLogger(__name__)

# Runtime comparisons tolerate float noise from the length sum
_RUNTIME_SLACK_S = 1e-9


class InputValidationError(ValueError):
    """A user edit was rejected; the trajectory keeps its last valid state."""

    pass


# ---------------------------------------------------------------------------
# Point regeneration
# ---------------------------------------------------------------------------


def regenerate_points(
    primitive: Primitive,
    is_reversed: bool = False,
    polygon_z: float | None = None,
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> list[Point3D]:
    """Discretised path for a primitive in traversal order.

    Parameters
    ----------
    primitive : Primitive
        Geometry to discretise.
    is_reversed : bool
        Traverse end-to-start.
    polygon_z : float, optional
        Z applied to every polygon point; defaults to the polygon
        elevation.
    resolution_deg : float
        Angular step for arcs, circles and bulge segments.

    Raises
    ------
    TypeError
        If *primitive* is not a known primitive kind.
    """
    if isinstance(primitive, Line):
        if is_reversed:
            return [primitive.end, primitive.start]
        return [primitive.start, primitive.end]

    if isinstance(primitive, Arc):
        try:
            params = calculate_arc_parameters_from_three_points(
                primitive.p1, primitive.p2, primitive.p3
            )
        except DegenerateGeometry as exc:
            logger.warning("Arc fallback to raw points: %s", exc)
            raw = [primitive.p1, primitive.p2, primitive.p3]
            return raw[::-1] if is_reversed else raw
        return discretize_arc(params, is_reversed, resolution_deg)

    if isinstance(primitive, Circle):
        try:
            params = calculate_circle_center_radius_from_three_points(
                primitive.p1, primitive.p2, primitive.p3
            )
        except DegenerateGeometry as exc:
            logger.warning("Circle fallback to raw points: %s", exc)
            if is_reversed:
                return [primitive.p3, primitive.p2, primitive.p1, primitive.p3]
            return [primitive.p1, primitive.p2, primitive.p3, primitive.p1]
        return discretize_circle(params, is_reversed, resolution_deg)

    if isinstance(primitive, Polygon):
        z = primitive.elevation if polygon_z is None else polygon_z
        points = expand_bulge_polyline(
            primitive.vertices,
            primitive.bulges,
            primitive.closed,
            z,
            resolution_deg,
        )
        return points[::-1] if is_reversed else points

    raise TypeError(f"Unsupported primitive type: {type(primitive).__name__}")


def trajectory_points(trajectory: Trajectory) -> list[Point3D]:
    """Fresh discretisation of *trajectory* at its own resolution.

    Does not touch ``trajectory.points``.
    """
    return regenerate_points(
        trajectory.primitive,
        trajectory.is_reversed,
        trajectory.polygon_z,
        trajectory.resolution_deg,
    )


def refresh_points(
    trajectory: Trajectory,
    resolution_deg: float | None = None,
) -> Trajectory:
    """Replace ``trajectory.points`` with a fresh discretisation.

    A given *resolution_deg* becomes the trajectory's resolution for all
    later edits; ``None`` keeps the current one.
    """
    if resolution_deg is not None:
        if resolution_deg <= 0:
            raise ValueError(f"resolution_deg must be > 0, got {resolution_deg}")
        trajectory.resolution_deg = resolution_deg
    trajectory.points = trajectory_points(trajectory)
    return trajectory


def create_trajectory(
    primitive: Primitive,
    *,
    source_index: int | None = None,
    name: str = "",
    resolution_deg: float = DEFAULT_RESOLUTION_DEG,
) -> Trajectory:
    """New trajectory with points generated and runtime set to its minimum."""
    trajectory = Trajectory(
        primitive,
        source_index=source_index,
        name=name,
        resolution_deg=resolution_deg,
    )
    refresh_points(trajectory)
    trajectory.runtime = calculate_min_runtime(trajectory)
    return trajectory


def regenerate_configuration(
    configuration: Configuration,
    resolution_deg: float | None = None,
) -> int:
    """Rebuild points of every trajectory (e.g. after loading without points).

    With *resolution_deg* every trajectory is switched to that step;
    otherwise each keeps its own.  Returns the number of trajectories
    processed.
    """
    count = 0
    for trajectory in configuration.trajectories():
        refresh_points(trajectory, resolution_deg)
        count += 1
    logger.debug("Regenerated points for %d trajectories", count)
    return count


def effective_primitive(trajectory: Trajectory) -> Primitive:
    """The primitive as traversed, with reversal (and polygon Z) applied."""
    primitive = trajectory.primitive
    reverse = trajectory.is_reversed

    if isinstance(primitive, Line):
        return Line(primitive.end, primitive.start) if reverse else primitive
    if isinstance(primitive, (Arc, Circle)):
        if not reverse:
            return primitive
        return type(primitive)(primitive.p3, primitive.p2, primitive.p1)
    if isinstance(primitive, Polygon):
        z = primitive.elevation if trajectory.polygon_z is None else trajectory.polygon_z
        if not reverse:
            return dataclasses.replace(primitive, elevation=z)
        n = len(primitive.vertices)
        if primitive.closed:
            # Reversed segment j runs over original segment (n - 2 - j) mod n
            bulges = [-primitive.bulges[(n - 2 - j) % n] for j in range(n)]
        else:
            bulges = [-primitive.bulges[n - 2 - j] for j in range(n - 1)] + [0.0]
        return Polygon(
            vertices=tuple(reversed(primitive.vertices)),
            closed=primitive.closed,
            elevation=z,
            bulges=tuple(bulges),
        )
    raise TypeError(f"Unsupported primitive type: {type(primitive).__name__}")


# ---------------------------------------------------------------------------
# Edit operations
# ---------------------------------------------------------------------------


def _parse_number(value: float | int | str, field_name: str) -> float:
    if isinstance(value, str):
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            raise InputValidationError(
                f"{field_name}: '{value}' is not a number"
            ) from None
    else:
        number = float(value)
    if not math.isfinite(number):
        raise InputValidationError(f"{field_name} must be finite, got {value}")
    return number


def set_reversed(trajectory: Trajectory, is_reversed: bool) -> Trajectory:
    if trajectory.is_reversed != is_reversed:
        trajectory.is_reversed = is_reversed
        refresh_points(trajectory)
        logger.info("%s direction %s", trajectory.kind,
                    "reversed" if is_reversed else "restored")
    return trajectory


def toggle_reversed(trajectory: Trajectory) -> Trajectory:
    return set_reversed(trajectory, not trajectory.is_reversed)


def set_height(trajectory: Trajectory, z: float | str) -> Trajectory:
    """Apply a uniform Z to the trajectory and regenerate its points.

    Line: both endpoints.  Arc/Circle: all three defining points.
    Polygon: the polygon Z override.  A runtime that falls below the new
    minimum runtime is raised to it.

    Raises
    ------
    InputValidationError
        If *z* is not a finite number.  The trajectory is unchanged.
    """
    z = _parse_number(z, "Z")
    primitive = trajectory.primitive

    if isinstance(primitive, Line):
        trajectory.primitive = Line(primitive.start.with_z(z), primitive.end.with_z(z))
    elif isinstance(primitive, (Arc, Circle)):
        trajectory.primitive = type(primitive)(
            primitive.p1.with_z(z), primitive.p2.with_z(z), primitive.p3.with_z(z)
        )
    elif isinstance(primitive, Polygon):
        trajectory.polygon_z = z
    else:
        raise TypeError(f"Unsupported primitive type: {type(primitive).__name__}")

    refresh_points(trajectory)
    logger.info("%s height set to %.3f mm", trajectory.kind, z)
    _raise_to_min_runtime(trajectory)
    return trajectory


def _raise_to_min_runtime(trajectory: Trajectory) -> None:
    # Flattening a tilted arc or circle can lengthen its path
    minimum = calculate_min_runtime(trajectory)
    if trajectory.runtime < minimum - _RUNTIME_SLACK_S:
        logger.warning(
            "%s runtime %.3f s raised to the new minimum %.3f s",
            trajectory.kind, trajectory.runtime, minimum,
        )
        trajectory.runtime = minimum


def set_runtime(trajectory: Trajectory, runtime: float | str) -> Trajectory:
    """Set the traversal time in seconds.

    Raises
    ------
    InputValidationError
        If *runtime* is not a number or is below the minimum runtime
        (length at 2 m/s).  The previous runtime is kept.
    """
    value = _parse_number(runtime, "Runtime")
    if not trajectory.points:
        refresh_points(trajectory)
    minimum = calculate_min_runtime(trajectory)
    if value < minimum - _RUNTIME_SLACK_S:
        raise InputValidationError(
            f"Runtime {value:.3f} s is below the minimum {minimum:.3f} s "
            f"for this {trajectory.kind.lower()}"
        )
    trajectory.runtime = value
    return trajectory


def set_nozzle(
    trajectory: Trajectory,
    *,
    upper_gas: bool | None = None,
    upper_liquid: bool | None = None,
    lower_gas: bool | None = None,
    lower_liquid: bool | None = None,
) -> Trajectory:
    """Change nozzle valves, keeping liquid-implies-gas per nozzle.

    Turning liquid on turns that nozzle's gas on; turning gas off turns
    its liquid off.  Arguments left as ``None`` are unchanged.
    """
    if upper_gas is not None:
        trajectory.upper_gas_on = upper_gas
        if not upper_gas:
            trajectory.upper_liquid_on = False
    if upper_liquid is not None:
        trajectory.upper_liquid_on = upper_liquid
        if upper_liquid:
            trajectory.upper_gas_on = True
    if lower_gas is not None:
        trajectory.lower_gas_on = lower_gas
        if not lower_gas:
            trajectory.lower_liquid_on = False
    if lower_liquid is not None:
        trajectory.lower_liquid_on = lower_liquid
        if lower_liquid:
            trajectory.lower_gas_on = True
    return trajectory
