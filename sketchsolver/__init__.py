from .sketch import (
    Axis,
    Cardinality,
    Constraint,
    ConstraintKind,
    Feature,
    FeatureKind,
    GearInfo,
    Group,
    GroupType,
    Handle,
    RefOffset,
    Sketch,
    SketchError,
)
from .validate import StructuralError, validate_sketch
from .solver import (
    Classification,
    Drag,
    IslandReport,
    IslandStatus,
    NumericNonConvergence,
    SolveOptions,
    SolveResult,
    Solver,
    get_solve_defaults,
    set_solve_defaults,
    solve,
)
from .serialization import SketchFormatError, load_sketch, result_to_dict, sketch_from_dict

__all__ = [
    'Axis',
    'Cardinality',
    'Classification',
    'Constraint',
    'ConstraintKind',
    'Drag',
    'Feature',
    'FeatureKind',
    'GearInfo',
    'Group',
    'GroupType',
    'Handle',
    'IslandReport',
    'IslandStatus',
    'NumericNonConvergence',
    'RefOffset',
    'Sketch',
    'SketchError',
    'SketchFormatError',
    'SolveOptions',
    'SolveResult',
    'Solver',
    'StructuralError',
    'get_solve_defaults',
    'load_sketch',
    'result_to_dict',
    'set_solve_defaults',
    'sketch_from_dict',
    'solve',
    'validate_sketch',
]
