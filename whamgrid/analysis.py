"""
End-to-end WHAM analysis of a set of umbrella windows.

``run_wham`` chains the stages: time filtering, optional decorrelation,
histogramming, the empty-bin policy, the baseline solve and the optional
bootstrap.  ``run_time_slices`` repeats the analysis on growing time
windows to check the surface for convergence in simulation time.
"""

from __future__ import annotations

import dataclasses
import math
import warnings
import numpy as np
from typing import List, Sequence, Tuple

from .config import WhamConfig
from .decorrelation import decorrelate_windows
from .exceptions import (
    ConfigurationError,
    DegenerateInputError,
    OutOfRangeWarning,
    WhamConvergenceWarning,
)
from .histogram import apply_empty_bin_policy, build_histograms
from .result import ResultSurface
from .wham_errors import BootstrapEngine
from .wham_solver import WhamSolver
from .window import Window


def _warn(messages: List[str], message: str, category) -> None:
    messages.append(message)
    warnings.warn(message, category, stacklevel=3)


def run_wham(windows: Sequence[Window], config: WhamConfig) -> ResultSurface:
    """Estimate the free-energy surface of *windows*.

    Parameters
    ----------
    windows : sequence of Window
        Parsed umbrella windows with raw, time-stamped samples.
    config : WhamConfig
        Analysis settings.

    Returns
    -------
    ResultSurface

    Raises
    ------
    ConfigurationError
        If a window does not match the dimensionality of the grid.
    DegenerateInputError
        If no sample falls inside the histogram range.
    EmptyBinError
        If some bins are empty and ``config.ignore_empty`` is False.
    """
    space = config.space()
    messages: List[str] = []
    for w in windows:
        if w.ndim != space.ndim:
            raise ConfigurationError(
                f"Window {w.name!r} has {w.ndim} dimensions, the histogram grid has "
                f"{space.ndim}."
            )
    if len(windows) == 0:
        raise DegenerateInputError("No windows were supplied.")

    # 1. time filter
    windows = [w.time_filtered(config.start, config.end) for w in windows]

    # 2. decorrelation
    if config.verbose and config.uncorr:
        print("Decorrelating timeseries.")
    windows = decorrelate_windows(
        windows, enabled=config.uncorr, n_workers=config.n_workers, verbose=config.verbose,
    )

    # 3. histograms; windows without in-range samples are dropped
    histograms = build_histograms(windows, space, n_workers=config.n_workers)
    kept_windows, kept_hists = [], []
    for w, h in zip(windows, histograms):
        if config.verbose:
            print(
                f"{w.name or 'window'}, {h.n_points} data points added "
                f"({h.n_out_of_range} out of range)."
            )
        if h.n_points == 0:
            _warn(
                messages,
                f"No data points inside histogram boundaries: {w.name or 'window'}; "
                f"window skipped.",
                OutOfRangeWarning,
            )
            continue
        kept_windows.append(w)
        kept_hists.append(h)

    # 4. empty bins
    occupied, message = apply_empty_bin_policy(kept_hists, config.ignore_empty)
    if message is not None:
        messages.append(message)

    if config.verbose:
        total = sum(h.n_points for h in kept_hists)
        print(f"{len(kept_windows)} windows, {total} datapoints")

    # 5. baseline solve
    solver = WhamSolver(
        space, kept_windows, kept_hists, config.temperature,
        tol=config.tolerance, max_iter=config.max_iter, occupied=occupied,
        verbose=config.verbose, report_every=config.report_every,
    )
    baseline = solver.solve()

    # 6. bootstrap
    errors = None
    if config.n_bootstrap > 0:
        engine = BootstrapEngine(
            solver, baseline, config.n_bootstrap, seed=config.seed,
            n_workers=config.n_workers, verbose=config.verbose,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", WhamConvergenceWarning)
            errors = engine.run()
        if errors.n_unconverged > 0:
            _warn(
                messages,
                f"{errors.n_unconverged}/{errors.n_bootstrap} bootstrap replicates "
                f"failed to converge.",
                WhamConvergenceWarning,
            )

    return ResultSurface.from_results(baseline, config.temperature, errors, messages)


def time_slices(
    windows: Sequence[Window],
    dt: float,
    start: float = 0.0,
    end: float = 1e20,
) -> List[Tuple[float, float]]:
    """Cumulative time slices ``(t0, t0 + dt), (t0, t0 + 2 dt), ...``.

    ``t0`` is the earliest sample time at or after *start*; the slices grow
    until they cover the latest sample time at or before *end*.
    """
    if not (np.isfinite(dt) and dt > 0):
        raise ConfigurationError(f"Slice width must be positive, got {dt}.")
    times = [w.times[(w.times >= start) & (w.times <= end)] for w in windows]
    times = [t for t in times if len(t)]
    if not times:
        raise DegenerateInputError("No samples inside the requested time range.")
    t0 = float(min(t.min() for t in times))
    t1 = float(max(t.max() for t in times))
    n = max(1, int(math.ceil((t1 - t0) / dt)))
    return [(t0, t0 + k * dt) for k in range(1, n + 1)]


def run_time_slices(
    windows: Sequence[Window],
    config: WhamConfig,
    dt: float,
) -> List[Tuple[Tuple[float, float], ResultSurface]]:
    """Run :func:`run_wham` once per cumulative time slice."""
    out = []
    for start, end in time_slices(windows, dt, config.start, config.end):
        if config.verbose:
            print(f"Time slice {start} - {end}")
        cfg = dataclasses.replace(config, start=start, end=end)
        out.append(((start, end), run_wham(windows, cfg)))
    return out
