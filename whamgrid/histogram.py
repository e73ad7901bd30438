from __future__ import annotations

import warnings
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .coordinate_space import CoordinateSpace
from .exceptions import DegenerateInputError, EmptyBinError, EmptyBinWarning
from .parallel import parallel_map
from .window import Window


@dataclass(eq=False)
class Histogram:
    """Per-window sample counts on the grid of a :class:`CoordinateSpace`.

    Attributes
    ----------
    counts : np.ndarray
        Counts per bin, shape = grid shape.  Read-only.
    n_points : int
        Number of samples that fell inside the grid (sum of *counts*).
    n_out_of_range : int
        Number of samples that were discarded for lying outside the grid.
    name : str
        Name of the originating window.
    """

    counts: np.ndarray
    n_points: int
    n_out_of_range: int = 0
    name: str = ""

    @property
    def flat(self) -> np.ndarray:
        return self.counts.ravel()

    def __repr__(self) -> str:
        return (
            f"Histogram(name={self.name!r}, shape={self.counts.shape}, "
            f"n_points={self.n_points}, n_out_of_range={self.n_out_of_range})"
        )


def build_histogram(window: Window, space: CoordinateSpace) -> Histogram:
    """Bin the samples of one window."""
    flat, inside = space.flat_indices(window.coords)
    counts = np.bincount(flat[inside], minlength=space.n_bins).astype(np.float64)
    counts = counts.reshape(space.shape)
    counts.setflags(write=False)
    n_in = int(inside.sum())
    return Histogram(
        counts=counts,
        n_points=n_in,
        n_out_of_range=int(len(flat) - n_in),
        name=window.name,
    )


def build_histograms(
    windows: Sequence[Window],
    space: CoordinateSpace,
    n_workers: int = 1,
) -> List[Histogram]:
    """Bin every window independently (in parallel for ``n_workers > 1``)."""
    return parallel_map(lambda w: build_histogram(w, space), windows, n_workers)


def total_counts(histograms: Sequence[Histogram]) -> np.ndarray:
    """Counts summed over all windows, flat order, shape (M,)."""
    return np.sum([h.flat for h in histograms], axis=0)


def apply_empty_bin_policy(
    histograms: Sequence[Histogram],
    ignore_empty: bool,
) -> Tuple[np.ndarray, Optional[str]]:
    """Determine the occupied bins and enforce the empty-bin policy.

    Parameters
    ----------
    histograms : sequence of Histogram
        One histogram per window, all on the same grid.
    ignore_empty : bool
        If True, bins without any sample are excluded from the solve and
        reported as having no data; otherwise they are a fatal error.

    Returns
    -------
    occupied : (M,) bool
        Mask of bins with a nonzero total count.
    message : str or None
        The warning issued for tolerated empty bins, if any.

    Raises
    ------
    DegenerateInputError
        If no bin holds a sample at all.
    EmptyBinError
        If some bins are empty and *ignore_empty* is False.
    """
    if len(histograms) == 0:
        raise DegenerateInputError("No windows with data points inside the histogram range.")
    occupied = total_counts(histograms) > 0
    n_occupied = int(occupied.sum())
    if n_occupied == 0:
        raise DegenerateInputError("No data points in histogram boundaries.")

    n_empty = int(occupied.size - n_occupied)
    if n_empty == 0:
        return occupied, None
    if not ignore_empty:
        shape = histograms[0].counts.shape
        first = tuple(int(i) for i in np.unravel_index(int(np.argmin(occupied)), shape))
        raise EmptyBinError(
            f"{n_empty} of {occupied.size} histogram bins are empty (first empty bin: "
            f"{first}). Adjust the histogram range or enable ignore_empty."
        )
    message = f"{n_empty} of {occupied.size} histogram bins are empty and have no free energy."
    warnings.warn(message, EmptyBinWarning, stacklevel=2)
    return occupied, message
