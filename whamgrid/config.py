from __future__ import annotations

import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from .coordinate_space import CoordinateSpace
from .exceptions import ConfigurationError
from .wham_solver import thermal_energy

FloatSeq = Union[float, Sequence[float]]
IntSeq = Union[int, Sequence[int]]


@dataclass
class WhamConfig:
    """Settings of one WHAM analysis.

    Parameters
    ----------
    hist_min, hist_max : float or sequence of float
        Histogram bounds per dimension.
    num_bins : int or sequence of int
        Bins per dimension.
    temperature : float
        Temperature in Kelvin.
    cyclic : bool
        Periodic reaction coordinates (applies to every dimension).
    tolerance : float
        Convergence threshold on ``max_i |dF_i|`` in kJ/mol.
    max_iter : int
        Iteration budget of every solve.
    uncorr : bool
        Decorrelate the timeseries before histogramming.
    n_bootstrap : int
        Number of bootstrap replicates; 0 disables error analysis.
    seed : int, optional
        Bootstrap seed.
    start, end : float
        Only samples with ``start <= time <= end`` are used.
    ignore_empty : bool
        Tolerate histogram bins without samples instead of failing.
    n_workers : int
        Size of the worker pool.
    verbose : bool
        Print progress.
    report_every : int
        Iteration interval of verbose solver progress.
    """

    hist_min: FloatSeq
    hist_max: FloatSeq
    num_bins: IntSeq
    temperature: float
    cyclic: bool = False
    tolerance: float = 1e-6
    max_iter: int = 100_000
    uncorr: bool = False
    n_bootstrap: int = 0
    seed: Optional[int] = None
    start: float = 0.0
    end: float = 1e20
    ignore_empty: bool = False
    n_workers: int = 1
    verbose: bool = False
    report_every: int = 100

    def __post_init__(self):
        # builds and validates the grid
        self._space = CoordinateSpace(self.hist_min, self.hist_max, self.num_bins, self.cyclic)

        if not (np.isfinite(self.temperature) and self.temperature > 0):
            raise ConfigurationError(f"Temperature must be positive, got {self.temperature}.")
        if not (np.isfinite(self.tolerance) and self.tolerance > 0):
            raise ConfigurationError(f"Tolerance must be positive, got {self.tolerance}.")
        if int(self.max_iter) < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {self.max_iter}.")
        if int(self.n_bootstrap) < 0:
            raise ConfigurationError(f"n_bootstrap must be >= 0, got {self.n_bootstrap}.")
        if self.start > self.end:
            raise ConfigurationError(f"start ({self.start}) is larger than end ({self.end}).")
        if int(self.n_workers) < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {self.n_workers}.")
        self.max_iter = int(self.max_iter)
        self.n_bootstrap = int(self.n_bootstrap)
        self.n_workers = int(self.n_workers)

    @property
    def ndim(self) -> int:
        return self._space.ndim

    @property
    def kT(self) -> float:
        return thermal_energy(self.temperature)

    def space(self) -> CoordinateSpace:
        """The histogram grid described by this configuration."""
        return self._space

    def __str__(self) -> str:
        return (
            f"hist_min={self._space.hist_min.tolist()}, hist_max={self._space.hist_max.tolist()}, "
            f"bins={list(self._space.shape)}, verbose={self.verbose}, "
            f"tolerance={self.tolerance}, iterations={self.max_iter}, "
            f"temperature={self.temperature}, cyclic={self.cyclic}, "
            f"uncorr={self.uncorr}, bootstrap={self.n_bootstrap}, seed={self.seed}"
        )
