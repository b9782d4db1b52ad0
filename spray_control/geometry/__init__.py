"""
Geometry module.

Defines the primitive vocabulary (lines, 3-point arcs, 3-point circles and
bulge polylines) and the pure functions that turn primitives into ordered
3D point sequences.

All coordinates are in millimetres, drawing-relative.
"""

from spray_control.geometry.primitives import (
    Arc,
    Circle,
    Line,
    Point3D,
    Polygon,
    Primitive,
)
from spray_control.geometry.engine import (
    ArcParameters,
    CircleParameters,
    DegenerateGeometry,
    calculate_arc_parameters_from_three_points,
    calculate_circle_center_radius_from_three_points,
    calculate_min_runtime,
    calculate_trajectory_length,
)

__all__ = [
    "Arc",
    "Circle",
    "Line",
    "Point3D",
    "Polygon",
    "Primitive",
    "ArcParameters",
    "CircleParameters",
    "DegenerateGeometry",
    "calculate_arc_parameters_from_three_points",
    "calculate_circle_center_radius_from_three_points",
    "calculate_min_runtime",
    "calculate_trajectory_length",
]
