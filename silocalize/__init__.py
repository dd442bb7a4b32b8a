"""
Acoustic source localization from hydrophone time-of-arrival (TOA)
by spherical interpolation (SI), plus propagation speed calibration.
"""

from silocalize.contracts import (
    CalibrationResult,
    DetectionEvent,
    Exclusion,
    LocalizationEstimate,
    LocalizationTable,
    RangeDifferences,
    Receiver,
    ReceiverArray,
    SolverConfig,
)
from silocalize.errors import (
    ConvergenceError,
    InsufficientDataError,
    LocalizationError,
    NoValidSolutionError,
    SingularSystemError,
)
from silocalize.ranges import range_differences
from silocalize.residual import error, range_residuals
from silocalize.solver import (
    FourReceiverSolver,
    GeneralSolver,
    PlanarSolver,
    localize,
    select_solver,
)
from silocalize.calibration import estimate_speed, findc

__all__ = [
    "CalibrationResult",
    "ConvergenceError",
    "DetectionEvent",
    "Exclusion",
    "FourReceiverSolver",
    "GeneralSolver",
    "InsufficientDataError",
    "LocalizationError",
    "LocalizationEstimate",
    "LocalizationTable",
    "NoValidSolutionError",
    "PlanarSolver",
    "RangeDifferences",
    "Receiver",
    "ReceiverArray",
    "SingularSystemError",
    "SolverConfig",
    "error",
    "estimate_speed",
    "findc",
    "localize",
    "range_differences",
    "range_residuals",
    "select_solver",
]

__version__ = "0.1.0"
