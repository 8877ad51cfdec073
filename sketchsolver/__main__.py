import argparse
import json
import logging
import sys
from typing import Optional, Sequence, Tuple

from sketchsolver import (
    Drag,
    FeatureKind,
    Handle,
    IslandStatus,
    SketchError,
    SketchFormatError,
    load_sketch,
    result_to_dict,
)
from sketchsolver.solver import get_solve_defaults, solve

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _parse_target(value: Optional[str]) -> Optional[Tuple[float, float]]:
    if not value:
        return None
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"expected X,Y, got {value!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected X,Y, got {value!r}") from exc


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Solve a 2D constraint sketch")
    parser.add_argument("path", help="Path to the sketch JSON file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        help="Iteration cap per island",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        help="Residual tolerance for convergence",
    )
    parser.add_argument(
        "--drag",
        type=int,
        metavar="IDX",
        help="Index of the feature to drag",
    )
    parser.add_argument(
        "--to",
        type=_parse_target,
        metavar="X,Y",
        help="Drag target, required with --drag",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Solve islands on a thread pool of this size (default: 1)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a machine-readable report",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when an island is conflicting or skipped",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    if (args.drag is None) != (args.to is None):
        parser.error("--drag and --to must be given together")

    overrides = {"workers": args.workers}
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations
    if args.tolerance is not None:
        overrides["tolerance"] = args.tolerance
    try:
        options = get_solve_defaults(**overrides)
    except ValueError as exc:
        parser.error(str(exc))

    logger.info("Loading sketch from %s", args.path)
    try:
        sketch = load_sketch(args.path)
    except (OSError, SketchFormatError) as exc:
        logger.error("Cannot load %s: %s", args.path, exc)
        raise SystemExit(1)

    drag = None
    if args.drag is not None:
        drag = Drag(Handle(args.drag), args.to)

    try:
        result = solve(sketch, drag, options)
    except SketchError as exc:
        logger.error("Cannot drag feature %s: %s", args.drag, exc)
        raise SystemExit(1)

    if args.json:
        print(json.dumps(result_to_dict(result), indent=2))
    else:
        print(f"Success: {result.success}")
        print("Islands:")
        for island in result.islands:
            label = island.classification.value if island.classification else "-"
            print(
                f"  [{island.index}] {island.status.value} ({label}) "
                f"dof={island.dof} rank={island.rank} iterations={island.iterations} "
                f"max_residual={island.max_residual:.3e}"
            )
            if island.redundant:
                print(f"    redundant: {', '.join(str(h) for h in island.redundant)}")
            if island.conflicting:
                print(f"    conflicting: {', '.join(str(h) for h in island.conflicting)}")
            for err in island.errors:
                print(f"    error: {err}")
        print("Points:")
        for handle, feature in sketch.features():
            if feature.kind is not FeatureKind.POINT:
                continue
            key_x, key_y = (handle, "x"), (handle, "y")
            if key_x in result.updated_variables:
                x, y = result.updated_variables[key_x], result.updated_variables[key_y]
                print(f"  {handle}: ({x:.6f}, {y:.6f})")

    if args.strict:
        failed = [
            island
            for island in result.islands
            if island.status in (IslandStatus.UNCONVERGED, IslandStatus.SKIPPED)
        ]
        if failed:
            logger.error("%d island(s) conflicting or skipped", len(failed))
            raise SystemExit(1)


if __name__ == "__main__":
    main(sys.argv[1:])
