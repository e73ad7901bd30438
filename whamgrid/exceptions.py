"""
Exceptions and warning categories raised by whamgrid.

Fatal conditions (bad configuration, nothing to solve) are exceptions.
Conditions that still leave a useful, approximate surface (non-convergence,
tolerated empty bins, samples outside the histogram range) are warnings and
are additionally recorded on the returned ``ResultSurface``.
"""


class WhamError(Exception):
    """Base class for all whamgrid errors."""


class ConfigurationError(WhamError, ValueError):
    """Invalid configuration, detected before any computation starts."""


class EmptyBinError(WhamError, RuntimeError):
    """A histogram bin has no samples and empty bins are not tolerated."""


class DegenerateInputError(WhamError, RuntimeError):
    """No occupied bins are left, so there is nothing to solve."""


class InputFormatError(WhamError, ValueError):
    """A metadata or timeseries file could not be parsed."""


class WhamConvergenceWarning(RuntimeWarning):
    """The self-consistent iteration stopped at the iteration limit."""


class EmptyBinWarning(RuntimeWarning):
    """Bins with zero total count were excluded from the solve."""


class OutOfRangeWarning(RuntimeWarning):
    """Samples outside the histogram range were discarded."""
