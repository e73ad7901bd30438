from __future__ import annotations

import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

from .coordinate_space import CoordinateSpace
from .wham_errors import BootstrapErrors
from .wham_solver import WhamResult


class BinRecord(NamedTuple):
    """One bin of a :class:`ResultSurface`.

    For bins without data *has_data* is False and every value is ``nan``.
    """

    bin: Tuple[int, ...]
    coordinate: np.ndarray
    free_energy: float
    free_energy_error: float
    probability: float
    probability_error: float
    has_data: bool


@dataclass
class ResultSurface:
    """Free-energy surface handed to output code.

    Spatial arrays are flat over the grid (length M, C order).  Unoccupied
    bins carry ``np.nan`` in every value and error array.

    Attributes
    ----------
    space : CoordinateSpace
    coordinates : np.ndarray
        Bin-centre coordinates, shape (M, D).
    free_energy : np.ndarray
        Baseline free energy (kJ/mol), minimum over occupied bins exactly 0.
    free_energy_error : np.ndarray
        Bootstrap standard error of the free energy; 0 without bootstrap.
    probability : np.ndarray
        Baseline probability, summing to 1 over occupied bins.
    probability_error : np.ndarray
        Bootstrap standard error of the probability; 0 without bootstrap.
    free_energy_mean, probability_mean : np.ndarray
        Bootstrap means (equal to the baseline without bootstrap).
    occupied : np.ndarray
        Bool mask of bins with data.
    window_free_energies : np.ndarray
        Window offsets F_i (kJ/mol), shape (K,).
    window_free_energy_error : np.ndarray
        Bootstrap standard deviation of F_i; 0 without bootstrap.
    converged : bool
    n_iterations : int
    convergence_history : np.ndarray
    temperature : float
    kT : float
    n_bootstrap : int
    warnings : list of str
        Non-fatal conditions encountered while producing the surface.
    """

    space: CoordinateSpace
    coordinates: np.ndarray
    free_energy: np.ndarray
    free_energy_error: np.ndarray
    probability: np.ndarray
    probability_error: np.ndarray
    free_energy_mean: np.ndarray
    probability_mean: np.ndarray
    occupied: np.ndarray
    window_free_energies: np.ndarray
    window_free_energy_error: np.ndarray
    converged: bool
    n_iterations: int
    convergence_history: np.ndarray
    temperature: float
    kT: float
    n_bootstrap: int = 0
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        baseline: WhamResult,
        temperature: float,
        errors: Optional[BootstrapErrors] = None,
        messages: Sequence[str] = (),
    ) -> "ResultSurface":
        """Combine a baseline solve and optional bootstrap statistics."""
        occupied = baseline.occupied.copy()
        nan_or_zero = np.where(occupied, 0.0, np.nan)
        K = len(baseline.window_free_energies)
        if errors is None:
            fe_err = nan_or_zero.copy()
            p_err = nan_or_zero.copy()
            fe_mean = baseline.free_energy.copy()
            p_mean = baseline.probability.copy()
            fk_err = np.zeros(K)
            n_boot = 0
        else:
            fe_err = np.where(occupied, errors.free_energy_sem, np.nan)
            p_err = np.where(occupied, errors.probability_sem, np.nan)
            fe_mean = np.where(occupied, errors.free_energy_mean, np.nan)
            p_mean = np.where(occupied, errors.probability_mean, np.nan)
            fk_err = errors.window_free_energy_std.copy()
            n_boot = errors.n_bootstrap

        return cls(
            space=baseline.space,
            coordinates=baseline.space.grid_coordinates(),
            free_energy=baseline.free_energy.copy(),
            free_energy_error=fe_err,
            probability=baseline.probability.copy(),
            probability_error=p_err,
            free_energy_mean=fe_mean,
            probability_mean=p_mean,
            occupied=occupied,
            window_free_energies=baseline.window_free_energies.copy(),
            window_free_energy_error=fk_err,
            converged=baseline.converged,
            n_iterations=baseline.n_iterations,
            convergence_history=baseline.convergence_history.copy(),
            temperature=float(temperature),
            kT=baseline.kT,
            n_bootstrap=n_boot,
            warnings=list(baseline.warnings) + [m for m in messages if m not in baseline.warnings],
        )

    # ---- access ----------------------------------------------------------

    def __len__(self) -> int:
        return len(self.free_energy)

    @property
    def n_occupied(self) -> int:
        return int(self.occupied.sum())

    def records(self) -> Iterator[BinRecord]:
        """Iterate over all bins in flat order."""
        for j in range(len(self)):
            yield BinRecord(
                bin=self.space.bin_tuple(j),
                coordinate=self.coordinates[j],
                free_energy=float(self.free_energy[j]),
                free_energy_error=float(self.free_energy_error[j]),
                probability=float(self.probability[j]),
                probability_error=float(self.probability_error[j]),
                has_data=bool(self.occupied[j]),
            )

    def on_grid(self, values: np.ndarray) -> np.ndarray:
        """Reshape a flat per-bin array to the grid shape."""
        return np.asarray(values).reshape(self.space.shape)

    # ---- serialization ---------------------------------------------------

    _ARRAYS = (
        "coordinates", "free_energy", "free_energy_error", "probability",
        "probability_error", "free_energy_mean", "probability_mean", "occupied",
        "window_free_energies", "window_free_energy_error", "convergence_history",
    )

    def save(self, path: Union[str, Path]) -> None:
        """Save the surface to a single ``.npz`` file."""
        path = Path(path)
        data = {name: getattr(self, name) for name in self._ARRAYS}
        data["hist_min"] = self.space.hist_min
        data["hist_max"] = self.space.hist_max
        data["num_bins"] = np.array(self.space.shape)
        data["cyclic"] = np.array(self.space.cyclic)
        data["converged"] = np.array(self.converged)
        data["n_iterations"] = np.array(self.n_iterations)
        data["temperature"] = np.array(self.temperature)
        data["kT"] = np.array(self.kT)
        data["n_bootstrap"] = np.array(self.n_bootstrap)
        data["warnings"] = np.array(self.warnings, dtype=str)
        np.savez_compressed(str(path), **data)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ResultSurface":
        """Load a ``ResultSurface`` from a ``.npz`` file."""
        path = Path(path)
        if not path.suffix:
            path = path.with_suffix(".npz")
        with np.load(str(path), allow_pickle=False) as f:
            space = CoordinateSpace(
                f["hist_min"], f["hist_max"], f["num_bins"], cyclic=bool(f["cyclic"]),
            )
            arrays = {name: f[name] for name in cls._ARRAYS}
            return cls(
                space=space,
                converged=bool(f["converged"]),
                n_iterations=int(f["n_iterations"]),
                temperature=float(f["temperature"]),
                kT=float(f["kT"]),
                n_bootstrap=int(f["n_bootstrap"]),
                warnings=[str(w) for w in f["warnings"]],
                **arrays,
            )

    def __repr__(self) -> str:
        status = "converged" if self.converged else "NOT converged"
        return (
            f"ResultSurface(grid_shape={self.space.shape}, occupied={self.n_occupied}, "
            f"{status}, n_bootstrap={self.n_bootstrap})"
        )
