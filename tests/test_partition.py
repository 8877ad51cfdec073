from sketchsolver import Axis, Constraint, Sketch
from sketchsolver.solver import VariablePool, compile_sketch, island_index, partition


def _islands(sketch, links=None):
    pool = VariablePool.from_sketch(sketch)
    specs = compile_sketch(sketch, pool)
    return pool, partition(pool, specs, links=links)


def test_unconnected_components_form_separate_islands():
    sketch = Sketch()
    a = sketch.add_point(0, 0)
    b = sketch.add_point(1, 0)
    c = sketch.add_point(5, 5)
    d = sketch.add_point(6, 5)
    sketch.add_constraint(Constraint.length(a, b, amt=2))
    sketch.add_constraint(Constraint.length(c, d, amt=3))

    pool, islands = _islands(sketch)

    assert len(islands) == 2
    assert islands[0].variables == [(a, "x"), (a, "y"), (b, "x"), (b, "y")]
    assert islands[1].variables == [(c, "x"), (c, "y"), (d, "x"), (d, "y")]
    assert [len(island.specs) for island in islands] == [1, 1]


def test_fixed_point_does_not_join_islands():
    sketch = Sketch()
    origin = sketch.add_point(0, 0)
    a = sketch.add_point(1, 0)
    b = sketch.add_point(0, 1)
    sketch.add_constraint(Constraint.fixed(origin, 0, 0))
    sketch.add_constraint(Constraint.length(origin, a, amt=2))
    sketch.add_constraint(Constraint.length(origin, b, amt=2))

    pool, islands = _islands(sketch)

    assert len(islands) == 2
    mapping = island_index(islands)
    assert (origin, "x") not in mapping
    assert mapping[(a, "x")] != mapping[(b, "x")]


def test_point_components_share_an_island():
    sketch = Sketch()
    a = sketch.add_point(0, 0)
    b = sketch.add_point(3, 1)
    line = sketch.add_line(a, b)
    sketch.add_constraint(Constraint.along_axis(line, Axis.TOP_BOTTOM))

    pool, islands = _islands(sketch)

    assert len(islands) == 1
    assert sorted(islands[0].variables) == sorted([(a, "x"), (a, "y"), (b, "x"), (b, "y")])
    assert islands[0].specs[0].variables == ((a, "x"), (b, "x"))


def test_blocks_without_free_variables_form_a_pinned_island():
    sketch = Sketch()
    p = sketch.add_point(0, 0)
    sketch.add_constraint(Constraint.fixed(p, 0, 0))
    second = sketch.add_constraint(Constraint.fixed(p, 1, 1))

    pool, islands = _islands(sketch)

    assert len(islands) == 1
    assert islands[0].is_pinned
    assert islands[0].pinned == [(p, "x"), (p, "y")]
    assert [spec.constraint for spec in islands[0].specs] == [second]


def test_links_merge_islands():
    sketch = Sketch()
    a = sketch.add_point(0, 0)
    b = sketch.add_point(5, 5)
    circle = sketch.add_circle(b, 1.0)

    pool, islands = _islands(sketch, links=[[(a, "x"), (circle, "r")]])

    assert len(islands) == 2
    mapping = island_index(islands)
    assert mapping[(a, "y")] == mapping[(circle, "r")]
    assert mapping[(b, "x")] != mapping[(a, "x")]


def test_island_order_is_deterministic():
    def build():
        sketch = Sketch()
        pts = [sketch.add_point(i, i * i) for i in range(6)]
        sketch.add_constraint(Constraint.length(pts[4], pts[5], amt=1))
        sketch.add_constraint(Constraint.length(pts[0], pts[3], amt=1))
        sketch.add_constraint(Constraint.length(pts[1], pts[2], amt=1))
        return _islands(sketch)[1]

    first = [island.variables for island in build()]
    second = [island.variables for island in build()]

    assert first == second
    assert [vars_[0][0].index for vars_ in first] == [0, 1, 4]
