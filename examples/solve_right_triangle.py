"""Example: a 3-4-5 triangle pinned at the origin with a horizontal base."""

from sketchsolver import Axis, Constraint, Sketch, solve


def main() -> None:
    sketch = Sketch()
    a = sketch.add_point(0.0, 0.0)
    b = sketch.add_point(2.5, 0.4)
    c = sketch.add_point(0.3, 3.5)
    base = sketch.add_line(a, b)
    hypotenuse = sketch.add_line(b, c)
    side = sketch.add_line(c, a)

    sketch.add_constraint(Constraint.fixed(a, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(base, amt=3.0))
    sketch.add_constraint(Constraint.length(hypotenuse, amt=5.0))
    sketch.add_constraint(Constraint.length(side, amt=4.0))
    sketch.add_constraint(Constraint.along_axis(base, Axis.LEFT_RIGHT))

    result = solve(sketch)

    print("Success:", result.success)
    for island in result.islands:
        print(
            f"Island {island.index}: {island.status.value}, "
            f"{island.classification.value}, dof={island.dof}, iterations={island.iterations}"
        )
    for name, handle in (("A", a), ("B", b), ("C", c)):
        x, y = result.point(handle)
        print(f"{name}: ({x:.6f}, {y:.6f})")


if __name__ == "__main__":
    main()
