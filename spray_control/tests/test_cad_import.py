"""Tests for DXF import and geometric matching.

Drawings are built with ezdxf in memory and, where the file path matters,
saved to ``tmp_path``.
"""

from __future__ import annotations

import math

import ezdxf
import pytest

from spray_control.geometry.cad_import import (
    CadEntity,
    CadImportError,
    arc_from_center,
    circle_from_center,
    line_from_endpoints,
    load_dxf,
    polygon_from_polyline,
    read_entities,
)
from spray_control.geometry.matching import primitives_equivalent, reconcile
from spray_control.geometry.primitives import Arc, Circle, Line, Point3D, Polygon
from spray_control.program.model import Configuration, SprayPass
from spray_control.program.reconstruct import create_trajectory

P = Point3D


def _close(a: Point3D, b: tuple[float, float, float], tol: float = 1e-9) -> bool:
    return a.is_close(P(*b), tol)


# ---------------------------------------------------------------------------
# Normalising constructors
# ---------------------------------------------------------------------------


class TestConstructors:
    def test_line_starts_near_origin(self) -> None:
        line = line_from_endpoints(P(50, 50, 0), P(1, 1, 0))
        assert line.start == P(1, 1, 0)
        assert line.end == P(50, 50, 0)

    def test_line_tie_keeps_order(self) -> None:
        line = line_from_endpoints(P(10, 0, 0), P(0, 10, 0))
        assert line.start == P(10, 0, 0)

    def test_arc_mid_point(self) -> None:
        arc = arc_from_center(P(0, 0, 3), 10.0, 0.0, 90.0)
        assert _close(arc.p1, (10, 0, 3))
        s = 10 * math.sqrt(0.5)
        assert _close(arc.p2, (s, s, 3))
        assert _close(arc.p3, (0, 10, 3))

    def test_arc_wraps_through_zero(self) -> None:
        arc = arc_from_center(P(0, 0, 0), 10.0, 270.0, 90.0)
        assert _close(arc.p1, (0, -10, 0))
        assert _close(arc.p2, (10, 0, 0))
        assert _close(arc.p3, (0, 10, 0))

    def test_arc_rejects_zero_radius(self) -> None:
        with pytest.raises(ValueError):
            arc_from_center(P(0, 0, 0), 0.0, 0.0, 90.0)

    def test_horizontal_circle_capture_angles(self) -> None:
        circle = circle_from_center(P(10, 10, 2), 5.0)
        for point, angle in zip((circle.p1, circle.p2, circle.p3), (-135, -15, 105)):
            a = math.radians(angle)
            assert _close(point, (10 + 5 * math.cos(a), 10 + 5 * math.sin(a), 2))

    def test_vertical_circle_stays_in_plane(self) -> None:
        circle = circle_from_center(P(7, 0, 0), 4.0, P(1, 0, 0))
        for point in (circle.p1, circle.p2, circle.p3):
            assert point.x == pytest.approx(7.0)
            assert point.distance_to(P(7, 0, 0)) == pytest.approx(4.0)

    def test_closed_polyline_rotates(self) -> None:
        polygon = polygon_from_polyline(
            [(10, 10), (20, 10), (1, 1), (5, 0)],
            [0.0, 0.5, 0.0, 0.0],
            closed=True,
            elevation=2.0,
        )
        assert [(v.x, v.y) for v in polygon.vertices] == [(1, 1), (5, 0), (10, 10), (20, 10)]
        assert polygon.bulges == (0.0, 0.0, 0.0, 0.5)
        assert {v.z for v in polygon.vertices} == {2.0}

    def test_open_polyline_keeps_order(self) -> None:
        polygon = polygon_from_polyline([(10, 10), (1, 1)])
        assert polygon.vertices[0] == P(10, 10, 0)
        assert polygon.bulges == (0.0, 0.0)


# ---------------------------------------------------------------------------
# DXF reading
# ---------------------------------------------------------------------------


@pytest.fixture
def drawing():
    doc = ezdxf.new()
    msp = doc.modelspace()
    msp.add_line((50, 50, 0), (1, 1, 0), dxfattribs={"layer": "SPRAY"})
    msp.add_circle((10, 10), radius=5)
    msp.add_arc((0, 0), radius=10, start_angle=0, end_angle=90, dxfattribs={"layer": "SPRAY"})
    msp.add_lwpolyline(
        [(10, 10, 0), (20, 10, 0.5), (1, 1, 0), (5, 0, 0)],
        format="xyb",
        close=True,
    )
    msp.add_text("label")
    return doc


class TestReadEntities:
    def test_supported_entities_in_drawing_order(self, drawing) -> None:
        entities = read_entities(drawing.modelspace())
        assert [type(e.primitive) for e in entities] == [Line, Circle, Arc, Polygon]
        assert all(isinstance(e, CadEntity) for e in entities)

    def test_geometry_is_normalised(self, drawing) -> None:
        line, circle, arc, polygon = (e.primitive for e in read_entities(drawing.modelspace()))
        assert line.start == P(1, 1, 0)
        assert _close(arc.p3, (0, 10, 0))
        assert circle.p1.distance_to(P(10, 10, 0)) == pytest.approx(5.0)
        assert polygon.closed
        assert polygon.vertices[0] == P(1, 1, 0)
        assert polygon.bulges == (0.0, 0.0, 0.0, 0.5)

    def test_layer_filter(self, drawing) -> None:
        entities = read_entities(drawing.modelspace(), layers=["SPRAY"])
        assert [type(e.primitive) for e in entities] == [Line, Arc]
        assert {e.layer for e in entities} == {"SPRAY"}

    def test_block_reference_exploded(self) -> None:
        doc = ezdxf.new()
        block = doc.blocks.new(name="NOZZLE_TEST")
        block.add_line((0, 0), (10, 0))
        doc.modelspace().add_blockref("NOZZLE_TEST", (100, 0))
        entities = read_entities(doc.modelspace())
        assert len(entities) == 1
        line = entities[0].primitive
        assert _close(line.start, (100, 0, 0))
        assert _close(line.end, (110, 0, 0))


class TestLoadDxf:
    def test_round_trip_through_file(self, drawing, tmp_path) -> None:
        path = tmp_path / "panel.dxf"
        drawing.saveas(path)
        entities = load_dxf(path)
        assert len(entities) == 4
        assert entities[0].handle is not None

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(CadImportError):
            load_dxf(tmp_path / "missing.dxf")


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestPrimitivesEquivalent:
    def test_line_either_direction(self) -> None:
        a = Line(P(0, 0, 0), P(10, 0, 0))
        assert primitives_equivalent(a, Line(P(10, 0, 0), P(0, 0, 0.0005)))
        assert not primitives_equivalent(a, Line(P(0, 0, 0), P(10, 0.01, 0)))

    def test_different_kinds(self) -> None:
        circle = Circle(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))
        arc = Arc(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))
        assert not primitives_equivalent(circle, arc)

    def test_arc_other_side_differs(self) -> None:
        upper = Arc(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))
        bulging = Arc(P(10, 0, 0), P(0, 20, 0), P(-10, 0, 0))
        assert not primitives_equivalent(upper, bulging)

    def test_arc_matches_reversed(self) -> None:
        a = Arc(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))
        s = 10 * math.sqrt(0.5)
        b = Arc(P(-10, 0, 0), P(s, s, 0), P(10, 0, 0))
        assert primitives_equivalent(a, b)

    def test_circle_by_center_and_radius(self) -> None:
        a = Circle(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))
        assert primitives_equivalent(a, circle_from_center(P(0, 0, 0), 10.0))
        assert not primitives_equivalent(a, circle_from_center(P(0, 0, 0), 10.1))

    def test_polygon_bulges_compared(self) -> None:
        a = polygon_from_polyline([(0, 0), (10, 0), (10, 10)], [0.0, 0.2, 0.0])
        b = polygon_from_polyline([(0, 0), (10, 0), (10, 10)], [0.0, 0.3, 0.0])
        assert primitives_equivalent(a, a)
        assert not primitives_equivalent(a, b)


def test_reconcile_sets_source_index() -> None:
    entities = [
        CadEntity("1A", "0", Line(P(0, 0, 0), P(10, 0, 0))),
        CadEntity("1B", "0", circle_from_center(P(0, 0, 0), 5.0)),
    ]
    matched_line = create_trajectory(Line(P(10, 0, 0), P(0, 0, 0)), source_index=7)
    matched_circle = create_trajectory(Circle(P(5, 0, 0), P(0, 5, 0), P(-5, 0, 0)))
    stray = create_trajectory(Line(P(0, 0, 0), P(0, 50, 0)), source_index=1)
    config = Configuration([SprayPass("A", [matched_line, stray]), SprayPass("B", [matched_circle])])

    assert reconcile(config, entities) == 1
    assert matched_line.source_index == 0
    assert matched_circle.source_index == 1
    assert stray.source_index is None


def test_build_configuration_from_drawing(drawing, tmp_path) -> None:
    from spray_control.scripts.send_dxf import build_configuration

    path = tmp_path / "panel.dxf"
    drawing.saveas(path)
    configuration = build_configuration(
        str(path), layers=["SPRAY"], runtime_scale=2.0, upper_liquid=True
    )
    trajectories = configuration.current_pass.trajectories
    assert [t.kind for t in trajectories] == ["Line", "Arc"]
    assert [t.source_index for t in trajectories] == [0, 1]
    line = trajectories[0]
    assert line.runtime == pytest.approx(2 * math.dist((1, 1), (50, 50)) / 1000 / 2)
    assert line.upper_gas_on and line.upper_liquid_on
