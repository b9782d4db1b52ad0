"""Tests for the spray program model and the primitive reconstructor.

Covers:
    - Point regeneration per primitive kind, with and without reversal
    - Degenerate arc / circle fallbacks
    - Height, runtime and nozzle edits (including rejected input)
    - Pass management on the configuration
"""

from __future__ import annotations

import logging
import math

import pytest

from spray_control.geometry.primitives import Arc, Circle, Line, Point3D, Polygon
from spray_control.program.model import Configuration, SprayPass, Trajectory
from spray_control.program.reconstruct import (
    InputValidationError,
    create_trajectory,
    effective_primitive,
    regenerate_configuration,
    regenerate_points,
    set_height,
    set_nozzle,
    set_reversed,
    set_runtime,
    toggle_reversed,
)

P = Point3D


@pytest.fixture
def line() -> Line:
    return Line(P(0, 0, 0), P(100, 0, 0))


@pytest.fixture
def arc() -> Arc:
    return Arc(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))


@pytest.fixture
def circle() -> Circle:
    return Circle(P(10, 0, 0), P(0, 10, 0), P(-10, 0, 0))


@pytest.fixture
def polygon() -> Polygon:
    return Polygon(
        vertices=(P(0, 0), P(50, 0), P(50, 50), P(0, 50)),
        closed=True,
        elevation=4.0,
        bulges=(0.0, 0.5, 0.0, 0.0),
    )


# ---------------------------------------------------------------------------
# Regeneration
# ---------------------------------------------------------------------------


class TestRegeneratePoints:
    def test_line(self, line: Line) -> None:
        assert regenerate_points(line) == [line.start, line.end]
        assert regenerate_points(line, is_reversed=True) == [line.end, line.start]

    def test_arc_forward_and_reversed(self, arc: Arc) -> None:
        forward = regenerate_points(arc)
        backward = regenerate_points(arc, is_reversed=True)
        assert len(forward) == 13
        assert forward[0].is_close(arc.p1) and forward[-1].is_close(arc.p3)
        assert backward[0].is_close(arc.p3) and backward[-1].is_close(arc.p1)

    def test_circle_closes(self, circle: Circle) -> None:
        points = regenerate_points(circle)
        assert len(points) == 25
        assert points[0] == points[-1]

    def test_polygon_uses_elevation_or_override(self, polygon: Polygon) -> None:
        assert {p.z for p in regenerate_points(polygon)} == {4.0}
        assert {p.z for p in regenerate_points(polygon, polygon_z=12.5)} == {12.5}

    def test_polygon_reversed_is_list_reversal(self, polygon: Polygon) -> None:
        forward = regenerate_points(polygon)
        assert regenerate_points(polygon, is_reversed=True) == forward[::-1]

    def test_polygon_bulge_adds_arc_points(self, polygon: Polygon) -> None:
        # bulge 0.5 on (50,0)->(50,50): 4*atan(0.5) ~ 106 deg, 7 interior points
        points = regenerate_points(polygon)
        assert len(points) == 4 + 7

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(TypeError):
            regenerate_points("not a primitive")  # type: ignore[arg-type]

    @pytest.mark.parametrize("fixture_name", ["line", "arc", "circle", "polygon"])
    def test_double_reversal_restores_points(
        self, fixture_name: str, request: pytest.FixtureRequest
    ) -> None:
        t = create_trajectory(request.getfixturevalue(fixture_name))
        original = list(t.points)
        toggle_reversed(t)
        toggle_reversed(t)
        assert t.points == original
        assert t.is_reversed is False


class TestDegenerateFallback:
    def test_collinear_arc_emits_raw_points(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        arc = Arc(P(0, 0, 0), P(5, 0, 0), P(10, 0, 0))
        with caplog.at_level(logging.WARNING):
            points = regenerate_points(arc)
        assert points == [arc.p1, arc.p2, arc.p3]
        assert "Arc fallback" in caplog.text
        assert regenerate_points(arc, is_reversed=True) == [arc.p3, arc.p2, arc.p1]

    def test_coincident_circle_emits_closed_raw_points(self) -> None:
        circle = Circle(P(1, 1, 0), P(1, 1, 0), P(2, 2, 0))
        assert regenerate_points(circle) == [circle.p1, circle.p2, circle.p3, circle.p1]

    def test_fallback_trajectory_still_created(self) -> None:
        t = create_trajectory(Arc(P(0, 0, 0), P(5, 0, 0), P(10, 0, 0)))
        assert len(t.points) == 3
        assert t.runtime == pytest.approx(0.005)


class TestEffectivePrimitive:
    def test_line_swapped(self, line: Line) -> None:
        t = create_trajectory(line)
        set_reversed(t, True)
        assert effective_primitive(t) == Line(line.end, line.start)

    def test_arc_and_circle_swap_ends(self, arc: Arc, circle: Circle) -> None:
        for primitive in (arc, circle):
            t = create_trajectory(primitive)
            set_reversed(t, True)
            reversed_primitive = effective_primitive(t)
            assert reversed_primitive.p1 == primitive.p3
            assert reversed_primitive.p2 == primitive.p2
            assert reversed_primitive.p3 == primitive.p1

    def test_open_polygon_bulges_follow_segments(self) -> None:
        polygon = Polygon(vertices=(P(0, 0), P(10, 0), P(10, 10)), bulges=(0.5, 0.0, 0.0))
        t = create_trajectory(polygon)
        set_reversed(t, True)
        reversed_polygon = effective_primitive(t)
        assert reversed_polygon.vertices == (P(10, 10), P(10, 0), P(0, 0))
        assert reversed_polygon.bulges == (0.0, -0.5, 0.0)

    def test_closed_polygon_bulges_follow_segments(self, polygon: Polygon) -> None:
        t = create_trajectory(polygon)
        set_reversed(t, True)
        reversed_polygon = effective_primitive(t)
        # (50,0)->(50,50) becomes (50,50)->(50,0), now segment 1
        assert reversed_polygon.vertices[1:3] == (P(50, 50), P(50, 0))
        assert reversed_polygon.bulges == (-0.0, -0.5, -0.0, -0.0)
        assert reversed_polygon.elevation == 4.0


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------


class TestSetHeight:
    def test_line_sets_both_ends(self, line: Line) -> None:
        t = create_trajectory(line)
        set_height(t, 25.0)
        assert t.primitive.start.z == 25.0 and t.primitive.end.z == 25.0
        assert [p.z for p in t.points] == [25.0, 25.0]

    def test_arc_sets_all_three_points(self, arc: Arc) -> None:
        t = create_trajectory(arc)
        set_height(t, "7.5")
        assert {t.primitive.p1.z, t.primitive.p2.z, t.primitive.p3.z} == {7.5}
        assert all(p.z == pytest.approx(7.5) for p in t.points)

    def test_polygon_sets_override(self, polygon: Polygon) -> None:
        t = create_trajectory(polygon)
        set_height(t, -3)
        assert t.polygon_z == -3.0
        assert t.primitive.elevation == 4.0
        assert {p.z for p in t.points} == {-3.0}

    @pytest.mark.parametrize("bad", ["", "abc", "1.2.3", "nan", float("inf")])
    def test_rejects_bad_input(self, line: Line, bad) -> None:
        t = create_trajectory(line)
        before = (t.primitive, list(t.points))
        with pytest.raises(InputValidationError):
            set_height(t, bad)
        assert (t.primitive, t.points) == before


class TestSetRuntime:
    def test_create_defaults_to_minimum(self, line: Line) -> None:
        t = create_trajectory(line)
        assert t.runtime == pytest.approx(0.05)

    def test_accepts_value_above_minimum(self, line: Line) -> None:
        t = create_trajectory(line)
        set_runtime(t, " 2.5 ")
        assert t.runtime == 2.5

    def test_accepts_exact_minimum(self, line: Line) -> None:
        t = create_trajectory(line)
        set_runtime(t, 0.05)
        assert t.runtime == pytest.approx(0.05)

    def test_below_minimum_keeps_last_value(self, line: Line) -> None:
        t = create_trajectory(line)
        set_runtime(t, 3.0)
        with pytest.raises(InputValidationError, match="below the minimum"):
            set_runtime(t, 0.01)
        assert t.runtime == 3.0

    def test_non_numeric_rejected(self, line: Line) -> None:
        t = create_trajectory(line)
        with pytest.raises(InputValidationError, match="not a number"):
            set_runtime(t, "fast")


class TestNozzles:
    def test_constructor_forces_gas_with_liquid(self, line: Line) -> None:
        t = Trajectory(line, upper_liquid_on=True, lower_liquid_on=True)
        assert t.upper_gas_on and t.lower_gas_on

    def test_liquid_on_turns_gas_on(self, line: Line) -> None:
        t = create_trajectory(line)
        set_nozzle(t, lower_liquid=True)
        assert t.lower_gas_on and t.lower_liquid_on
        assert not t.upper_gas_on and not t.upper_liquid_on

    def test_gas_off_turns_liquid_off(self, line: Line) -> None:
        t = create_trajectory(line)
        set_nozzle(t, upper_liquid=True)
        set_nozzle(t, upper_gas=False)
        assert not t.upper_gas_on and not t.upper_liquid_on

    def test_liquid_off_keeps_gas(self, line: Line) -> None:
        t = create_trajectory(line)
        set_nozzle(t, upper_liquid=True)
        set_nozzle(t, upper_liquid=False)
        assert t.upper_gas_on and not t.upper_liquid_on


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class TestTrajectory:
    def test_polygon_z_defaults_to_elevation(self, polygon: Polygon) -> None:
        assert Trajectory(polygon).polygon_z == 4.0

    def test_kind_and_closed(self, polygon: Polygon, line: Line) -> None:
        assert Trajectory(polygon).kind == "Polygon"
        assert Trajectory(polygon).is_closed
        assert not Trajectory(line).is_closed

    def test_rejects_unknown_primitive(self) -> None:
        with pytest.raises(TypeError):
            Trajectory(P(0, 0, 0))  # type: ignore[arg-type]

    def test_rejects_negative_runtime(self, line: Line) -> None:
        with pytest.raises(ValueError):
            Trajectory(line, runtime=-1.0)


class TestConfiguration:
    def test_add_pass_names_and_selects(self) -> None:
        config = Configuration()
        config.add_pass()
        second = config.add_pass("Edges")
        assert [p.name for p in config.passes] == ["Pass 1", "Edges"]
        assert config.current_pass is second

    def test_remove_pass_keeps_index_valid(self) -> None:
        config = Configuration()
        for _ in range(3):
            config.add_pass()
        assert config.current_pass_index == 2
        config.remove_pass(2)
        assert config.current_pass_index == 1
        config.remove_pass(0)
        assert config.current_pass_index == 0
        assert config.current_pass.name == "Pass 2"

    def test_current_pass_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            Configuration().current_pass

    def test_rename_pass(self) -> None:
        config = Configuration()
        config.add_pass()
        config.rename_pass(0, "  Top coat ")
        assert config.passes[0].name == "Top coat"
        with pytest.raises(ValueError):
            config.rename_pass(0, "   ")

    def test_move_trajectory_clamps(self, line: Line, arc: Arc, circle: Circle) -> None:
        spray_pass = SprayPass("P", [create_trajectory(p) for p in (line, arc, circle)])
        assert spray_pass.move_trajectory(0, 1) == 1
        assert [t.kind for t in spray_pass.trajectories] == ["Arc", "Line", "Circle"]
        assert spray_pass.move_trajectory(1, 10) == 2
        assert [t.kind for t in spray_pass.trajectories] == ["Arc", "Circle", "Line"]
        with pytest.raises(IndexError):
            spray_pass.move_trajectory(5, -1)

    def test_regenerate_configuration(self, line: Line, polygon: Polygon) -> None:
        config = Configuration([SprayPass("A", [Trajectory(line)]), SprayPass("B", [Trajectory(polygon)])])
        assert all(not t.points for t in config.trajectories())
        assert regenerate_configuration(config) == 2
        assert all(t.points for t in config.trajectories())

    def test_trajectory_order(self, line: Line, arc: Arc, circle: Circle) -> None:
        config = Configuration([
            SprayPass("A", [Trajectory(line), Trajectory(arc)]),
            SprayPass("B", [Trajectory(circle)]),
        ])
        assert [t.kind for t in config.trajectories()] == ["Line", "Arc", "Circle"]


def test_arc_runtime_matches_discretised_length(arc: Arc) -> None:
    t = create_trajectory(arc)
    chord = 2 * 10 * math.sin(math.radians(7.5))
    assert t.runtime == pytest.approx(12 * chord / 1000 / 2)


# ---------------------------------------------------------------------------
# Resolution carried by the trajectory
# ---------------------------------------------------------------------------


class TestResolution:
    def test_double_reversal_at_fine_resolution(self, arc: Arc) -> None:
        t = create_trajectory(arc, resolution_deg=5.0)
        before = list(t.points)
        assert len(before) == 37
        toggle_reversed(t)
        assert len(t.points) == 37
        toggle_reversed(t)
        assert t.points == before

    def test_height_edit_keeps_resolution(self, circle: Circle) -> None:
        t = create_trajectory(circle, resolution_deg=5.0)
        set_height(t, 3.0)
        assert len(t.points) == 73
        assert t.resolution_deg == 5.0

    def test_regenerate_configuration_keeps_own_resolution(self, arc: Arc, line: Line) -> None:
        fine = create_trajectory(arc, resolution_deg=5.0)
        fine.points = []
        config = Configuration([SprayPass("A", [fine, create_trajectory(line)])])
        regenerate_configuration(config)
        assert len(fine.points) == 37

    def test_regenerate_configuration_override(self, arc: Arc) -> None:
        t = create_trajectory(arc, resolution_deg=5.0)
        regenerate_configuration(Configuration([SprayPass("A", [t])]), 30.0)
        assert t.resolution_deg == 30.0
        assert len(t.points) == 7

    def test_rejects_non_positive_resolution(self, line: Line) -> None:
        with pytest.raises(ValueError):
            Trajectory(line, resolution_deg=0.0)


class TestHeightRuntime:
    def test_runtime_raised_when_below_new_minimum(
        self, line: Line, caplog: pytest.LogCaptureFixture
    ) -> None:
        t = create_trajectory(line)
        t.runtime = 0.01
        with caplog.at_level(logging.WARNING):
            set_height(t, 5.0)
        assert t.runtime == pytest.approx(0.05)
        assert "raised to the new minimum" in caplog.text

    def test_runtime_above_minimum_untouched(self, arc: Arc) -> None:
        t = create_trajectory(arc)
        set_runtime(t, 4.0)
        set_height(t, 5.0)
        assert t.runtime == 4.0

    def test_set_runtime_on_trajectory_without_points(self, line: Line) -> None:
        t = Trajectory(line)
        with pytest.raises(InputValidationError):
            set_runtime(t, 0.01)
        assert len(t.points) == 2
