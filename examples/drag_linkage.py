"""Example: drag the tip of a two-bar linkage through a few cursor positions."""

import logging

from sketchsolver import Constraint, Drag, Sketch, Solver

logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

CURSOR = [(6.0, 1.0), (5.0, 4.0), (2.0, 6.0), (-3.0, 5.0)]


def main() -> None:
    sketch = Sketch()
    pivot = sketch.add_point(0.0, 0.0)
    elbow = sketch.add_point(3.0, 0.5)
    tip = sketch.add_point(6.0, 0.0)
    sketch.add_constraint(Constraint.fixed(pivot, 0.0, 0.0))
    sketch.add_constraint(Constraint.length(sketch.add_line(pivot, elbow), amt=3.0))
    sketch.add_constraint(Constraint.length(sketch.add_line(elbow, tip), amt=3.0))

    solver = Solver()
    for target in CURSOR:
        result = solver.solve(sketch, drag=Drag(tip, target))
        ex, ey = result.point(elbow)
        tx, ty = result.point(tip)
        print(f"cursor {target}: elbow=({ex:.3f}, {ey:.3f}) tip=({tx:.3f}, {ty:.3f})")

    # commit the last frame back into the sketch
    sketch.apply(result.updated_variables)
    print("Committed tip:", sketch.point_position(tip))


if __name__ == "__main__":
    main()
