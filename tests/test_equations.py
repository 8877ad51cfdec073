import math

import numpy as np
import pytest

from sketchsolver import Axis, Cardinality, Constraint, ConstraintKind, Sketch
from sketchsolver.solver import VariablePool, compile_sketch


def _kitchen_sink():
    """One sketch touching every constraint kind at a generic configuration."""

    sketch = Sketch()
    p0 = sketch.add_point(0.3, 0.1)
    p1 = sketch.add_point(2.1, 0.7)
    p2 = sketch.add_point(0.5, 1.9)
    p3 = sketch.add_point(2.6, 2.2)
    p4 = sketch.add_point(1.2, -0.8)
    p5 = sketch.add_point(3.0, 1.1)
    l0 = sketch.add_line(p0, p1)
    l1 = sketch.add_line(p2, p3)
    c0 = sketch.add_circle(p4, 1.3)
    c1 = sketch.add_circle(p5, 0.7)
    a0 = sketch.add_arc(p5, p4, p3)

    constraints = [
        Constraint.fixed(p0, 0.3, 0.1),
        Constraint.fixed(p0, 1.0, -1.0),
        Constraint.length(l0, amt=2.0),
        Constraint.length(p2, p3, amt=1.5, cardinality=Cardinality(Axis.LEFT_RIGHT)),
        Constraint.length(l1, amt=3.0, cardinality=Cardinality(Axis.TOP_BOTTOM, True)),
        Constraint.length(p0, p2, amt=0.0),
        Constraint.radius(c0, 1.0),
        Constraint.radius(a0, 2.0),
        Constraint.radius_equal(c0, a0, 1.5),
        Constraint.radius_equal(c0, c1),
        Constraint.parallel(l0, l1),
        Constraint.perpendicular(l0, l1),
        Constraint.angle(l0, l1, degrees=30.0),
        Constraint.angle(l0, degrees=45.0),
        Constraint.coincident(p2, p3),
        Constraint.coincident(p2, l0),
        Constraint.coincident(p2, c0),
        Constraint.coincident(p1, a0),
        Constraint.coincident(p0, l0),
        Constraint.symmetric(p1, p2, l1),
        Constraint.symmetric(p1, p2, p0),
        Constraint.along_axis(l0, Axis.LEFT_RIGHT),
        Constraint.along_axis(l1, Axis.TOP_BOTTOM),
        Constraint.lerp(p4, l0, 0.25),
        Constraint.equal_length(l0, l1, 2.0),
    ]
    for constraint in constraints:
        sketch.add_constraint(constraint)
    pool = VariablePool.from_sketch(sketch)
    specs = compile_sketch(sketch, pool)
    return sketch, pool, specs


def _local(pool, spec):
    return np.array([pool.value(var) for var in spec.variables])


def _numeric_jacobian(spec, v, h=1e-6):
    cols = []
    for j in range(v.size):
        step = np.zeros_like(v)
        step[j] = h
        cols.append((spec.func(v + step) - spec.func(v - step)) / (2 * h))
    return np.stack(cols, axis=1)


def test_every_constraint_kind_compiles():
    sketch, pool, specs = _kitchen_sink()

    kinds = {spec.kind for spec in specs}

    assert kinds == {kind.value for kind in ConstraintKind} | {"arc"}


def test_closed_form_jacobians_match_central_differences():
    sketch, pool, specs = _kitchen_sink()

    for spec in specs:
        v = _local(pool, spec)
        analytic = spec.jac(v)
        numeric = _numeric_jacobian(spec, v)
        assert analytic.shape == (spec.size, len(spec.variables)), spec.key
        np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-6, err_msg=spec.key)


def test_repeated_variables_are_merged_into_one_column():
    sketch, pool, specs = _kitchen_sink()

    incident = [s for s in specs if s.kind == "coincident" and s.size == 1 and len(s.variables) == 4]

    assert len(incident) == 1
    spec = incident[0]
    assert len(set(spec.variables)) == 4
    v = _local(pool, spec)
    assert spec.func(v)[0] == pytest.approx(0.0)
    np.testing.assert_allclose(spec.jac(v), np.zeros((1, 4)), atol=1e-12)


def test_cardinal_length_targets():
    sketch = Sketch()
    origin = sketch.add_point(0, 0)
    ends = [sketch.add_point(0, 0) for _ in range(4)]
    cards = [
        Cardinality(Axis.LEFT_RIGHT),
        Cardinality(Axis.TOP_BOTTOM),
        Cardinality(Axis.LEFT_RIGHT, True),
        Cardinality(Axis.TOP_BOTTOM, True),
    ]
    for end, card in zip(ends, cards):
        sketch.add_constraint(Constraint.length(origin, end, amt=6.0, cardinality=card))
    pool = VariablePool.from_sketch(sketch)

    specs = compile_sketch(sketch, pool)

    zeros = np.zeros(4)
    offsets = [tuple(-spec.func(zeros)) for spec in specs]
    assert offsets == [(6.0, 0.0), (0.0, -6.0), (-6.0, 0.0), (0.0, 6.0)]


def test_angle_residual_vanishes_at_requested_angle():
    sketch = Sketch()
    a = sketch.add_point(0, 0)
    b = sketch.add_point(math.cos(math.radians(30)) * 2, math.sin(math.radians(30)) * 2)
    c = sketch.add_point(1, 1)
    d = sketch.add_point(1 + math.cos(math.radians(75)), 1 + math.sin(math.radians(75)))
    l0 = sketch.add_line(a, b)
    l1 = sketch.add_line(c, d)
    sketch.add_constraint(Constraint.angle(l0, degrees=30))
    sketch.add_constraint(Constraint.angle(l0, l1, degrees=45))
    pool = VariablePool.from_sketch(sketch)

    specs = compile_sketch(sketch, pool)

    for spec in specs:
        assert spec.func(_local(pool, spec))[0] == pytest.approx(0.0, abs=1e-12)


def test_non_cardinal_length_is_smooth_at_zero_length():
    sketch = Sketch()
    a = sketch.add_point(1, 1)
    b = sketch.add_point(1, 1)
    sketch.add_constraint(Constraint.length(a, b, amt=2.0))
    pool = VariablePool.from_sketch(sketch)
    spec = compile_sketch(sketch, pool)[0]

    v = _local(pool, spec)

    assert spec.func(v)[0] == pytest.approx(-1.0)
    assert np.all(np.isfinite(spec.jac(v)))
