from __future__ import annotations

import numpy as np
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, NamedTuple, Optional, Sequence

from .coordinate_space import CoordinateSpace
from .exceptions import ConfigurationError


class Sample(NamedTuple):
    """One observation of the reaction coordinates at a given time."""

    time: float
    coordinate: np.ndarray


@dataclass(eq=False)
class Window:
    """One umbrella-sampling simulation.

    Attributes
    ----------
    center : np.ndarray
        Bias centre x0, shape (D,).
    force_constants : np.ndarray
        Harmonic force constant per dimension, shape (D,).  The bias is
        ``U(x) = 0.5 * sum_d k_d * dist_d(x_d, x0_d)**2``.
    coords : np.ndarray
        Time-ordered samples, shape (n, D).
    times : np.ndarray
        Time stamp of every sample, shape (n,).  Defaults to ``0..n-1``.
    name : str
        Label used in diagnostics (typically the timeseries file name).
    statistical_inefficiency : float
        Inefficiency g applied when the samples were decorrelated (1.0 if
        they never were).
    decorrelated : bool
        Whether the samples already went through decorrelation.
    """

    center: np.ndarray
    force_constants: np.ndarray
    coords: np.ndarray
    times: Optional[np.ndarray] = None
    name: str = ""
    statistical_inefficiency: float = 1.0
    decorrelated: bool = False

    def __post_init__(self):
        self.center = np.atleast_1d(np.asarray(self.center, dtype=np.float64))
        self.force_constants = np.atleast_1d(
            np.asarray(self.force_constants, dtype=np.float64)
        )
        coords = np.asarray(self.coords, dtype=np.float64)
        if coords.ndim == 1:
            coords = coords.reshape(-1, 1)
        if coords.ndim != 2:
            raise ConfigurationError(
                f"Window {self.name!r}: samples must have shape (n, D), got {coords.shape}."
            )
        self.coords = coords

        D = len(self.center)
        if len(self.force_constants) != D:
            raise ConfigurationError(
                f"Window {self.name!r}: {D} bias centre components but "
                f"{len(self.force_constants)} force constants."
            )
        if coords.shape[1] != D and len(coords) > 0:
            raise ConfigurationError(
                f"Window {self.name!r}: samples have {coords.shape[1]} dimensions, "
                f"bias has {D}."
            )
        if coords.shape[1] != D:
            self.coords = coords.reshape(0, D)
        if not (np.all(np.isfinite(self.center)) and np.all(np.isfinite(self.force_constants))):
            raise ConfigurationError(f"Window {self.name!r}: bias parameters must be finite.")
        if np.any(self.force_constants < 0):
            raise ConfigurationError(
                f"Window {self.name!r}: force constants must be non-negative."
            )

        if self.times is None:
            self.times = np.arange(len(self.coords), dtype=np.float64)
        else:
            self.times = np.asarray(self.times, dtype=np.float64).ravel()
            if len(self.times) != len(self.coords):
                raise ConfigurationError(
                    f"Window {self.name!r}: {len(self.times)} time stamps for "
                    f"{len(self.coords)} samples."
                )

    @classmethod
    def from_samples(
        cls,
        center: Sequence[float],
        force_constants: Sequence[float],
        samples: Iterable[Sample],
        name: str = "",
    ) -> "Window":
        """Build a window from an iterable of :class:`Sample`."""
        samples = list(samples)
        D = len(np.atleast_1d(center))
        if samples:
            coords = np.stack([np.atleast_1d(s.coordinate) for s in samples])
            times = np.array([s.time for s in samples], dtype=np.float64)
        else:
            coords = np.empty((0, D))
            times = np.empty(0)
        return cls(center, force_constants, coords, times=times, name=name)

    # ---- sample access ---------------------------------------------------

    @property
    def ndim(self) -> int:
        return len(self.center)

    @property
    def n_samples(self) -> int:
        return len(self.coords)

    @property
    def n_eff(self) -> int:
        """Effective (post-decorrelation) number of samples."""
        return len(self.coords)

    def samples(self) -> Iterator[Sample]:
        for t, x in zip(self.times, self.coords):
            yield Sample(float(t), x)

    def time_filtered(self, start: float = 0.0, end: float = 1e20) -> "Window":
        """Copy of the window keeping samples with ``start <= time <= end``."""
        keep = (self.times >= start) & (self.times <= end)
        return replace(self, coords=self.coords[keep], times=self.times[keep])

    def subsampled(self, stride: int, g: float) -> "Window":
        """Copy keeping every *stride*-th sample, first sample included."""
        return replace(
            self,
            coords=self.coords[::stride].copy(),
            times=self.times[::stride].copy(),
            statistical_inefficiency=float(g),
            decorrelated=True,
        )

    # ---- bias ------------------------------------------------------------

    def bias_energy(self, space: CoordinateSpace, x) -> np.ndarray:
        """Harmonic bias energy at *x*.

        *x* is one point of shape (D,), giving a float, or M points of shape
        (M, D), giving an array of shape (M,).  In a one-dimensional space a
        1-D array of length M is read as M points, as in
        :meth:`CoordinateSpace.flat_indices`.  Uses the periodic distance of
        *space* when it is cyclic.
        """
        x = np.asarray(x, dtype=np.float64)
        if x.ndim == 1 and self.ndim == 1 and len(x) != 1:
            x = x.reshape(-1, 1)
        single = x.ndim <= 1
        x = np.atleast_2d(x)
        if x.shape[1] != self.ndim or space.ndim != self.ndim:
            raise ConfigurationError(
                f"Window {self.name!r} has {self.ndim} dimensions, coordinates have "
                f"{x.shape[1]} and the space has {space.ndim}."
            )
        energy = np.zeros(len(x), dtype=np.float64)
        for d in range(self.ndim):
            dist = space.distance(d, x[:, d], self.center[d])
            energy += 0.5 * self.force_constants[d] * dist ** 2
        return float(energy[0]) if single else energy

    def bias_on_grid(self, space: CoordinateSpace) -> np.ndarray:
        """Bias energy at every bin centre, flat order, shape (M,)."""
        return self.bias_energy(space, space.grid_coordinates())

    def __repr__(self) -> str:
        return (
            f"Window(name={self.name!r}, center={self.center.tolist()}, "
            f"k={self.force_constants.tolist()}, n_samples={self.n_samples}, "
            f"g={self.statistical_inefficiency:.3f})"
        )
