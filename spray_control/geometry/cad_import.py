"""CAD import -- DXF entities to normalised primitives.

The constructor functions turn raw CAD parameters (endpoints, center and
angles, polyline vertices with bulges) into :mod:`primitives` values with
deterministic ordering, so the same drawing always yields the same
trajectories:

- Lines start at the endpoint nearest the origin.
- Arcs store start, mid-angle and end points.
- Circles store three points 120 degrees apart in their own plane.
- Closed polylines start at the vertex nearest the origin.

:func:`load_dxf` reads LINE, ARC, CIRCLE and LWPOLYLINE entities from a
DXF modelspace with ezdxf, exploding block references (INSERT).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import ezdxf
from ezdxf.math import Vec3

from spray_control.geometry.engine import rotate_to_nearest_origin
from spray_control.geometry.primitives import (
    Arc,
    Circle,
    Line,
    Point3D,
    Polygon,
    Primitive,
)

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("LINE", "ARC", "CIRCLE", "LWPOLYLINE")

# Circle capture angles in the circle's local frame, 120 degrees apart
CIRCLE_CAPTURE_ANGLES_DEG = (-135.0, -15.0, 105.0)

# |normal.z| above this counts as a horizontal circle
_VERTICAL_NORMAL_LIMIT = 0.999


class CadImportError(Exception):
    """DXF file could not be read."""

    pass


@dataclass(frozen=True, slots=True)
class CadEntity:
    """One importable drawing entity.

    Parameters
    ----------
    handle : str or None
        DXF handle (``None`` for entities exploded from blocks).
    layer : str
        DXF layer name.
    primitive : Primitive
        Normalised geometry.
    """

    handle: str | None
    layer: str
    primitive: Primitive


# ---------------------------------------------------------------------------
# Normalising constructors
# ---------------------------------------------------------------------------


def line_from_endpoints(a: Point3D, b: Point3D) -> Line:
    """Line whose start is the endpoint nearer the origin (ties keep *a*)."""
    da = a.x * a.x + a.y * a.y + a.z * a.z
    db = b.x * b.x + b.y * b.y + b.z * b.z
    return Line(b, a) if db < da else Line(a, b)


def arc_from_center(
    center: Point3D,
    radius: float,
    start_angle_deg: float,
    end_angle_deg: float,
) -> Arc:
    """Counter-clockwise arc in the plane ``z = center.z``.

    The middle point sits at the mid angle; an end angle smaller than the
    start angle wraps through 360.
    """
    if radius <= 0:
        raise ValueError(f"Arc radius must be > 0, got {radius}")
    end = end_angle_deg
    if end < start_angle_deg:
        end += 360.0
    mid = (start_angle_deg + end) / 2.0

    def at(angle_deg: float) -> Point3D:
        a = math.radians(angle_deg)
        return Point3D(
            center.x + radius * math.cos(a),
            center.y + radius * math.sin(a),
            center.z,
        )

    return Arc(at(start_angle_deg), at(mid), at(end))


def circle_from_center(
    center: Point3D,
    radius: float,
    normal: Point3D = Point3D(0.0, 0.0, 1.0),
) -> Circle:
    """Circle captured as three points 120 degrees apart.

    The capture frame's X axis is world X for a horizontal circle,
    otherwise ``Z x normal``.
    """
    if radius <= 0:
        raise ValueError(f"Circle radius must be > 0, got {radius}")
    n = Vec3(normal.x, normal.y, normal.z).normalize()
    if abs(n.z) > _VERTICAL_NORMAL_LIMIT:
        x_axis = Vec3(1.0, 0.0, 0.0)
    else:
        x_axis = Vec3(0.0, 0.0, 1.0).cross(n).normalize()
    y_axis = n.cross(x_axis).normalize()
    c = Vec3(center.x, center.y, center.z)

    points = []
    for angle in CIRCLE_CAPTURE_ANGLES_DEG:
        a = math.radians(angle)
        p = c + x_axis * (radius * math.cos(a)) + y_axis * (radius * math.sin(a))
        points.append(Point3D(p.x, p.y, p.z))
    return Circle(*points)


def polygon_from_polyline(
    vertices: Sequence[tuple[float, float]],
    bulges: Sequence[float] | None = None,
    closed: bool = False,
    elevation: float = 0.0,
) -> Polygon:
    """Polygon from 2D polyline vertices.

    Closed polylines are rotated so the vertex nearest the origin (XY)
    comes first; open polylines keep their drawing order.
    """
    points = [Point3D(float(x), float(y), elevation) for x, y in vertices]
    bulge_list = list(bulges) if bulges is not None else [0.0] * len(points)
    if closed:
        points, bulge_list = rotate_to_nearest_origin(points, bulge_list)
    return Polygon(
        vertices=tuple(points),
        closed=closed,
        elevation=elevation,
        bulges=tuple(bulge_list),
    )


# ---------------------------------------------------------------------------
# DXF reading
# ---------------------------------------------------------------------------


def _point(v: Vec3) -> Point3D:
    return Point3D(float(v.x), float(v.y), float(v.z))


def _has_default_extrusion(entity) -> bool:
    return Vec3(entity.dxf.extrusion).isclose(Vec3(0.0, 0.0, 1.0))


def _entity_to_primitive(entity) -> Primitive | None:
    kind = entity.dxftype()

    if kind == "LINE":
        return line_from_endpoints(_point(entity.dxf.start), _point(entity.dxf.end))

    if kind == "CIRCLE":
        ocs = entity.ocs()
        center = _point(ocs.to_wcs(entity.dxf.center))
        normal = _point(Vec3(entity.dxf.extrusion))
        return circle_from_center(center, float(entity.dxf.radius), normal)

    if kind == "ARC":
        arc = arc_from_center(
            _point(Vec3(entity.dxf.center)),
            float(entity.dxf.radius),
            float(entity.dxf.start_angle),
            float(entity.dxf.end_angle),
        )
        if _has_default_extrusion(entity):
            return arc
        ocs = entity.ocs()
        return Arc(*(
            _point(ocs.to_wcs(Vec3(p.x, p.y, p.z))) for p in (arc.p1, arc.p2, arc.p3)
        ))

    if kind == "LWPOLYLINE":
        if not _has_default_extrusion(entity):
            logger.warning(
                "LWPOLYLINE %s has a tilted extrusion; using its OCS coordinates",
                entity.dxf.handle,
            )
        xyb = list(entity.get_points("xyb"))
        if len(xyb) < 2:
            logger.warning("Skipping LWPOLYLINE %s with %d vertex", entity.dxf.handle, len(xyb))
            return None
        return polygon_from_polyline(
            [(x, y) for x, y, _ in xyb],
            [b for _, _, b in xyb],
            closed=bool(entity.closed),
            elevation=float(entity.dxf.elevation),
        )

    return None


def _flatten(entities: Iterable) -> Iterator:
    """Yield entities, exploding block references recursively."""
    for entity in entities:
        if entity.dxftype() == "INSERT":
            yield from _flatten(entity.virtual_entities())
        else:
            yield entity


def read_entities(entities: Iterable, layers: Iterable[str] | None = None) -> list[CadEntity]:
    """Convert ezdxf entities (e.g. a modelspace) into :class:`CadEntity` records."""
    wanted = set(layers) if layers is not None else None
    result: list[CadEntity] = []
    skipped: dict[str, int] = {}

    for entity in _flatten(entities):
        layer = entity.dxf.get("layer", "0")
        if wanted is not None and layer not in wanted:
            continue
        kind = entity.dxftype()
        if kind not in SUPPORTED_TYPES:
            skipped[kind] = skipped.get(kind, 0) + 1
            continue
        try:
            primitive = _entity_to_primitive(entity)
        except ValueError as exc:
            logger.warning("Skipping %s %s: %s", kind, entity.dxf.get("handle"), exc)
            continue
        if primitive is not None:
            result.append(CadEntity(entity.dxf.get("handle"), layer, primitive))

    for kind, count in sorted(skipped.items()):
        logger.info("Ignored %d unsupported %s entities", count, kind)
    return result


def load_dxf(path: str | Path, layers: Iterable[str] | None = None) -> list[CadEntity]:
    """Read supported modelspace entities of a DXF file in drawing order.

    Parameters
    ----------
    path : str | Path
        DXF file.
    layers : iterable of str, optional
        Only keep entities on these layers.

    Raises
    ------
    CadImportError
        If the file is missing or is not a valid DXF document.
    """
    path = Path(path)
    try:
        doc = ezdxf.readfile(str(path))
    except IOError as exc:
        raise CadImportError(f"Cannot open DXF file {path}: {exc}") from exc
    except ezdxf.DXFStructureError as exc:
        raise CadImportError(f"Invalid DXF file {path}: {exc}") from exc

    entities = read_entities(doc.modelspace(), layers)
    logger.info("Loaded %d primitives from %s", len(entities), path.name)
    return entities
