import math

import pytest

from sketchsolver import (
    Axis,
    Cardinality,
    Classification,
    Constraint,
    IslandStatus,
    NumericNonConvergence,
    Sketch,
    SolveOptions,
    Solver,
    StructuralError,
    get_solve_defaults,
    set_solve_defaults,
    solve,
)


def _triangle(with_axis: bool = False):
    sketch = Sketch()
    p0 = sketch.add_point(0.0, 0.0)
    p1 = sketch.add_point(2.8, 0.3)
    p2 = sketch.add_point(0.2, 3.7)
    l01 = sketch.add_line(p0, p1)
    sketch.add_line(p1, p2)
    sketch.add_line(p2, p0)
    sketch.add_constraint(Constraint.fixed(p0, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(p0, p1, amt=3.0))
    sketch.add_constraint(Constraint.length(p1, p2, amt=5.0))
    sketch.add_constraint(Constraint.length(p0, p2, amt=4.0))
    if with_axis:
        sketch.add_constraint(Constraint.along_axis(l01, Axis.LEFT_RIGHT))
    return sketch, p0, p1, p2


def test_cardinal_lengths_place_points_exactly():
    sketch = Sketch()
    origin = sketch.add_point(0.0, 0.0)
    ends = [sketch.add_point(0.5, 0.5) for _ in range(4)]
    sketch.add_constraint(Constraint.fixed(origin, 0.0, 0.0))
    cards = [
        Cardinality(Axis.LEFT_RIGHT),
        Cardinality(Axis.TOP_BOTTOM),
        Cardinality(Axis.LEFT_RIGHT, True),
        Cardinality(Axis.TOP_BOTTOM, True),
    ]
    for end, card in zip(ends, cards):
        sketch.add_constraint(Constraint.length(origin, end, amt=6.0, cardinality=card))

    result = solve(sketch)

    assert result.success
    expected = [(6.0, 0.0), (0.0, -6.0), (-6.0, 0.0), (0.0, 6.0)]
    for end, (ex, ey) in zip(ends, expected):
        x, y = result.point(end)
        assert x == pytest.approx(ex, abs=1e-9)
        assert y == pytest.approx(ey, abs=1e-9)
    assert result.point(origin) == (0.0, 0.0)
    assert all(island.classification is Classification.FULLY_CONSTRAINED for island in result.islands)


def test_triangle_without_orientation_is_under_constrained():
    sketch, p0, p1, p2 = _triangle()

    result = solve(sketch)

    assert result.success
    assert len(result.islands) == 1
    island = result.islands[0]
    assert island.status is IslandStatus.SINGULAR
    assert island.classification is Classification.UNDER_CONSTRAINED
    assert island.dof == 1
    assert island.rank == 3
    assert math.dist(result.point(p0), result.point(p1)) == pytest.approx(3.0)
    assert math.dist(result.point(p1), result.point(p2)) == pytest.approx(5.0)
    assert math.dist(result.point(p0), result.point(p2)) == pytest.approx(4.0)


def test_triangle_with_horizontal_base_is_fully_constrained():
    sketch, p0, p1, p2 = _triangle(with_axis=True)

    result = solve(sketch)

    island = result.islands[0]
    assert island.status is IslandStatus.CONVERGED
    assert island.classification is Classification.FULLY_CONSTRAINED
    assert island.dof == 0
    assert result.point(p1) == pytest.approx((3.0, 0.0), abs=1e-9)
    assert result.point(p2) == pytest.approx((0.0, 4.0), abs=1e-9)


def test_angle_and_length_fix_line_direction():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(1.5, 0.6)
    line = sketch.add_line(a, b)
    sketch.add_constraint(Constraint.fixed(a, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(line, amt=2.0))
    sketch.add_constraint(Constraint.angle(line, degrees=30.0))

    result = solve(sketch)

    assert result.islands[0].classification is Classification.FULLY_CONSTRAINED
    assert result.point(b) == pytest.approx((math.sqrt(3.0), 1.0), abs=1e-9)


def test_radius_equal_cycle_reports_later_constraint_as_redundant():
    sketch = Sketch()
    circles = [sketch.add_circle(sketch.add_point(3.0 * i, 0.0), 1.0 + i) for i in range(3)]
    sketch.add_constraint(Constraint.radius_equal(circles[0], circles[1]))
    sketch.add_constraint(Constraint.radius_equal(circles[1], circles[2]))
    third = sketch.add_constraint(Constraint.radius_equal(circles[0], circles[2]))

    result = solve(sketch)

    assert result.success
    assert result.redundant_constraints == [third]
    island = result.island_of((circles[0], "r"))
    assert island.status is IslandStatus.SINGULAR
    assert island.rank == 2
    radii = [result.updated_variables[(c, "r")] for c in circles]
    assert radii == pytest.approx([radii[0]] * 3)


def test_radius_equal_chain_propagates_single_radius():
    sketch = Sketch()
    circles = [sketch.add_circle(sketch.add_point(4.0 * i, 0.0), 1.0) for i in range(5)]
    sketch.add_constraint(Constraint.radius(circles[0], 1.52))
    for a, b in zip(circles[:3], circles[1:4]):
        sketch.add_constraint(Constraint.radius_equal(a, b))
    sketch.add_constraint(Constraint.radius(circles[4], 2.15))

    result = solve(sketch)

    assert result.success
    radii = [result.updated_variables[(c, "r")] for c in circles]
    assert radii == pytest.approx([1.52, 1.52, 1.52, 1.52, 2.15])
    assert result.island_of((circles[0], "r")).classification is Classification.FULLY_CONSTRAINED
    assert result.island_of((circles[0], "r")) is not result.island_of((circles[4], "r"))


def test_radius_equal_multiplier_scales_radius():
    sketch = Sketch()
    small = sketch.add_circle(sketch.add_point(0.0, 0.0), 1.0)
    large = sketch.add_circle(sketch.add_point(5.0, 0.0), 1.0)
    sketch.add_constraint(Constraint.radius(small, 2.0))
    sketch.add_constraint(Constraint.radius_equal(large, small, 1.5))

    result = solve(sketch)

    assert result.updated_variables[(small, "r")] == pytest.approx(2.0)
    assert result.updated_variables[(large, "r")] == pytest.approx(3.0)


def test_duplicate_length_is_redundant():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(4.0, 1.0)
    sketch.add_constraint(Constraint.fixed(a, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(a, b, amt=5.0))
    second = sketch.add_constraint(Constraint.length(a, b, amt=5.0))

    result = solve(sketch)

    assert result.success
    assert result.redundant_constraints == [second]
    assert math.hypot(*result.point(b)) == pytest.approx(5.0)


def test_impossible_triangle_is_over_constrained():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(1.0, 0.2)
    c = sketch.add_point(2.0, 0.1)
    sketch.add_constraint(Constraint.fixed(a, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(a, b, amt=1.0))
    sketch.add_constraint(Constraint.length(b, c, amt=1.0))
    sketch.add_constraint(Constraint.length(a, c, amt=5.0))

    result = solve(sketch)

    assert not result.success
    island = result.islands[0]
    assert island.status is IslandStatus.UNCONVERGED
    assert island.classification is Classification.OVER_CONSTRAINED
    assert island.conflicting
    with pytest.raises(NumericNonConvergence) as exc:
        result.raise_for_status()
    assert exc.value.islands == [island]


def test_conflicting_fixed_constraints_blame_both():
    sketch = Sketch()
    p = sketch.add_point(0.0, 0.0)
    first = sketch.add_constraint(Constraint.fixed(p, 0.0, 0.0))
    second = sketch.add_constraint(Constraint.fixed(p, 1.0, 1.0))

    result = solve(sketch)

    assert result.per_island_status == [IslandStatus.UNCONVERGED]
    assert result.conflicting_constraints == [second, first]
    assert result.point(p) == (0.0, 0.0)


def test_symmetric_about_line_mirrors_point():
    sketch = Sketch()
    top = sketch.add_point(0.0, 5.0)
    bottom = sketch.add_point(0.0, -5.0)
    axis = sketch.add_line(bottom, top)
    p1 = sketch.add_point(2.0, 1.0)
    p2 = sketch.add_point(-1.5, 0.7)
    sketch.add_constraint(Constraint.fixed(top, 0.0, 5.0))
    sketch.add_constraint(Constraint.fixed(bottom, 0.0, -5.0))
    sketch.add_constraint(Constraint.fixed(p1, 2.0, 1.0))
    sketch.add_constraint(Constraint.symmetric(p1, p2, axis))

    result = solve(sketch)

    assert result.point(p2) == pytest.approx((-2.0, 1.0), abs=1e-9)


def test_lerp_places_point_along_line():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(4.0, 2.0)
    line = sketch.add_line(a, b)
    p = sketch.add_point(1.0, 1.0)
    sketch.add_constraint(Constraint.fixed(a, 0.0, 0.0))
    sketch.add_constraint(Constraint.fixed(b, 4.0, 2.0))
    sketch.add_constraint(Constraint.lerp(p, line, 0.5))

    result = solve(sketch)

    assert result.point(p) == pytest.approx((2.0, 1.0), abs=1e-9)


def test_structural_error_skips_only_its_island():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(2.0, 0.5)
    sketch.add_constraint(Constraint.length(a, b, amt=3.0))
    p = sketch.add_point(7.0, 7.0)
    gone = sketch.add_point(8.0, 8.0)
    sketch.delete_feature(gone)
    bad = sketch.add_constraint(Constraint.coincident(p, gone))

    result = solve(sketch)

    assert not result.success
    assert [err.constraint for err in result.structural_errors] == [bad]
    skipped = result.island_of((p, "x"))
    assert skipped.status is IslandStatus.SKIPPED
    assert skipped.errors == result.structural_errors
    assert bad in skipped.constraints
    assert (p, "x") not in result.updated_variables
    assert result.island_of((a, "x")).status is IslandStatus.SINGULAR
    assert math.dist(result.point(a), result.point(b)) == pytest.approx(3.0)
    with pytest.raises(StructuralError):
        result.raise_for_status()


def test_invalid_constraint_on_fixed_point_skips_its_island_only():
    sketch = Sketch()
    p0 = sketch.add_point(0.0, 0.0)
    p1 = sketch.add_point(3.0, 0.0)
    sketch.add_constraint(Constraint.fixed(p0, 0.0, 0.0))
    bad = sketch.add_constraint(Constraint.length(p0, p1, amt=-5.0))
    q = sketch.add_point(10.0, 0.0)
    r = sketch.add_point(11.0, 1.0)
    sketch.add_constraint(Constraint.length(q, r, amt=2.0))

    result = solve(sketch)

    skipped = result.island_of((p1, "x"))
    assert skipped.status is IslandStatus.SKIPPED
    assert bad in skipped.constraints
    assert "negative amount" in str(skipped.errors[0])
    assert result.island_of((q, "x")).status is IslandStatus.SINGULAR
    assert result.island_of((q, "x")).max_residual < 1e-9
    assert math.dist(result.point(q), result.point(r)) == pytest.approx(2.0)
    assert result.point(p0) == (0.0, 0.0)


def test_invalid_constraint_on_lone_fixed_point_skips_a_pinned_island():
    sketch = Sketch()
    p0 = sketch.add_point(1.0, 2.0)
    sketch.add_constraint(Constraint.fixed(p0, 1.0, 2.0))
    bad = sketch.add_constraint(Constraint.radius(p0, 1.0))
    q = sketch.add_point(4.0, 4.0)

    result = solve(sketch)

    assert [island.status for island in result.islands] == [IslandStatus.SKIPPED, IslandStatus.SINGULAR]
    assert result.islands[0].free_variables == 0
    assert result.islands[0].variables == [(p0, "x"), (p0, "y")]
    assert result.islands[0].constraints == [bad]
    assert result.point(q) == (4.0, 4.0)


def test_error_without_live_features_becomes_its_own_island():
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    gone = [sketch.add_point(1.0, 1.0), sketch.add_point(2.0, 2.0)]
    for handle in gone:
        sketch.delete_feature(handle)
    sketch.add_constraint(Constraint.coincident(*gone))

    result = solve(sketch)

    assert [island.status for island in result.islands] == [IslandStatus.SINGULAR, IslandStatus.SKIPPED]
    assert result.islands[1].variables == []
    assert result.point(a) == (0.0, 0.0)


def test_parallel_islands_match_sequential_solve():
    def build():
        sketch = Sketch()
        handles = []
        for i in range(5):
            origin = sketch.add_point(10.0 * i, 0.0)
            end = sketch.add_point(10.0 * i + 1.0, 0.7)
            sketch.add_constraint(Constraint.fixed(origin, 10.0 * i, 0.0))
            sketch.add_constraint(Constraint.length(origin, end, amt=2.0 + i))
            sketch.add_constraint(Constraint.angle(sketch.add_line(origin, end), degrees=15.0 * i))
            handles.append(end)
        return sketch, handles

    sketch, ends = build()
    sequential = solve(sketch, options=SolveOptions(workers=1))
    sketch, ends = build()
    threaded = solve(sketch, options=SolveOptions(workers=4))

    assert sequential.per_island_status == threaded.per_island_status
    for end in ends:
        assert threaded.point(end) == pytest.approx(sequential.point(end), abs=1e-12)


def test_resolving_converged_sketch_takes_no_iterations():
    sketch, p0, p1, p2 = _triangle(with_axis=True)
    solver = Solver()

    first = solver.solve(sketch)
    second = solver.solve(sketch)

    assert first.islands[0].iterations > 0
    assert second.islands[0].iterations == 0
    assert second.islands[0].warm_started
    assert second.point(p2) == pytest.approx(first.point(p2))


def test_cache_overrides_snapshot_until_invalidated():
    sketch = Sketch()
    p = sketch.add_point(1.0, 1.0)
    solver = Solver()
    solver.solve(sketch)

    sketch.apply({(p, "x"): 5.0, (p, "y"): 5.0})
    cached = solver.solve(sketch)
    solver.invalidate([p])
    fresh = solver.solve(sketch)

    assert cached.point(p) == (1.0, 1.0)
    assert fresh.point(p) == (5.0, 5.0)


def test_cache_drops_deleted_features():
    sketch = Sketch()
    p = sketch.add_point(1.0, 1.0)
    q = sketch.add_point(2.0, 2.0)
    solver = Solver()
    solver.solve(sketch)

    sketch.delete_feature(q)
    solver.solve(sketch)

    assert set(solver.cache) == {(p, "x"), (p, "y")}


def test_solve_defaults_round_trip():
    original = get_solve_defaults()
    try:
        set_solve_defaults(SolveOptions(max_iterations=7))
        assert get_solve_defaults().max_iterations == 7
        assert Solver().options.max_iterations == 7
        get_solve_defaults().max_iterations = 99
        assert get_solve_defaults().max_iterations == 7
    finally:
        set_solve_defaults(original)


def test_solve_defaults_accept_checked_overrides():
    options = get_solve_defaults(max_iterations=3, tolerance=1e-6)

    assert options.max_iterations == 3
    assert options.tolerance == 1e-6
    assert get_solve_defaults().max_iterations == SolveOptions().max_iterations


@pytest.mark.parametrize(
    "overrides, message_part",
    [
        ({"tolerance": 0.0}, "tolerance must be positive"),
        ({"max_iterations": -1}, "max_iterations must not be negative"),
        ({"min_damping": 1.0}, "min_damping <= initial_damping"),
        ({"damping_up": 0.5}, "damping_up must exceed 1"),
        ({"damping_down": 1.0}, "damping_down must lie in (0, 1)"),
        ({"drag_weight": 0.0}, "drag_weight must be positive"),
        ({"workers": 0}, "workers must be at least 1"),
    ],
)
def test_invalid_options_are_rejected(overrides, message_part):
    with pytest.raises(ValueError) as exc:
        get_solve_defaults(**overrides)
    assert message_part in str(exc.value)

    with pytest.raises(ValueError):
        set_solve_defaults(SolveOptions(**overrides))
    with pytest.raises(ValueError):
        solve(Sketch(), options=SolveOptions(**overrides))
    assert get_solve_defaults() == SolveOptions()
