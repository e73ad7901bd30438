"""
whamgrid — Weighted Histogram Analysis Method for umbrella sampling
===================================================================

Reconstructs the unbiased probability distribution and free-energy surface
on a regular, optionally periodic, multidimensional grid from a set of
harmonically biased simulation windows.  Supports decorrelation of the
timeseries by statistical inefficiency and Bayesian bootstrap error
estimation over windows.

Energies are in kJ/mol, temperatures in Kelvin.
"""

__version__ = "1.0.0"

from .coordinate_space import CoordinateSpace
from .window import Sample, Window
from .decorrelation import decorrelate, decorrelate_windows, statistical_inefficiency
from .histogram import Histogram, build_histogram, build_histograms
from .wham_solver import SolverState, SolverStatus, WhamResult, WhamSolver
from .wham_errors import BootstrapEngine, BootstrapErrors, bootstrap_errors
from .result import BinRecord, ResultSurface
from .config import WhamConfig
from .analysis import run_time_slices, run_wham
from .exceptions import (
    ConfigurationError,
    DegenerateInputError,
    EmptyBinError,
    EmptyBinWarning,
    InputFormatError,
    OutOfRangeWarning,
    WhamConvergenceWarning,
    WhamError,
)

__all__ = [
    "CoordinateSpace",
    "Sample",
    "Window",
    "decorrelate",
    "decorrelate_windows",
    "statistical_inefficiency",
    "Histogram",
    "build_histogram",
    "build_histograms",
    "SolverState",
    "SolverStatus",
    "WhamResult",
    "WhamSolver",
    "BootstrapEngine",
    "BootstrapErrors",
    "bootstrap_errors",
    "BinRecord",
    "ResultSurface",
    "WhamConfig",
    "run_wham",
    "run_time_slices",
    "ConfigurationError",
    "DegenerateInputError",
    "EmptyBinError",
    "EmptyBinWarning",
    "InputFormatError",
    "OutOfRangeWarning",
    "WhamConvergenceWarning",
    "WhamError",
]
