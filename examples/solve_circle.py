"""Example: a chain of equal circles with one redundant equality."""

from sketchsolver import Constraint, Sketch, solve


def main() -> None:
    sketch = Sketch()
    circles = []
    for i in range(3):
        center = sketch.add_point(4.0 * i, 0.0)
        circles.append(sketch.add_circle(center, 1.0 + 0.5 * i))

    sketch.add_constraint(Constraint.radius(circles[0], 1.25))
    sketch.add_constraint(Constraint.radius_equal(circles[1], circles[0], 2.0))
    sketch.add_constraint(Constraint.radius_equal(circles[2], circles[1]))
    # closes the loop; implied by the two above
    sketch.add_constraint(Constraint.radius_equal(circles[2], circles[0], 2.0))

    result = solve(sketch)

    print("Success:", result.success)
    print("Redundant:", ", ".join(str(h) for h in result.redundant_constraints) or "-")
    for handle in circles:
        print(f"{handle}: r={result.updated_variables[(handle, 'r')]:.6f}")


if __name__ == "__main__":
    main()
