from __future__ import annotations

import numpy as np
from typing import Optional, Sequence, Set, Tuple, Union

from .exceptions import ConfigurationError

BinIndex = Tuple[int, ...]


def _as_vector(values, name: str, dtype) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(values, dtype=dtype))
    if arr.ndim != 1:
        raise ConfigurationError(f"'{name}' must be a scalar or a 1-D sequence.")
    return arr


class CoordinateSpace:
    """Regular D-dimensional histogram grid over the reaction coordinates.

    Each dimension *d* is split into ``num_bins[d]`` equally wide bins on the
    half-open interval ``[hist_min[d], hist_max[d])``.  If *cyclic* is set,
    every dimension is periodic with period ``hist_max[d] - hist_min[d]``:
    the first and last bin are neighbours and distances wrap around.

    Bins are addressed either by a D-tuple of integer indices or by the flat
    index obtained from that tuple in C order (last dimension fastest).
    Instances are immutable.

    Parameters
    ----------
    hist_min, hist_max : float or sequence of float
        Lower and upper bound per dimension.
    num_bins : int or sequence of int
        Number of bins per dimension.
    cyclic : bool
        Treat all dimensions as periodic.
    """

    def __init__(
        self,
        hist_min: Union[float, Sequence[float]],
        hist_max: Union[float, Sequence[float]],
        num_bins: Union[int, Sequence[int]],
        cyclic: bool = False,
    ):
        lo = _as_vector(hist_min, "hist_min", np.float64)
        hi = _as_vector(hist_max, "hist_max", np.float64)
        raw_bins = np.atleast_1d(np.asarray(num_bins))
        if raw_bins.ndim != 1:
            raise ConfigurationError("'num_bins' must be an int or a 1-D sequence.")
        if not (len(lo) == len(hi) == len(raw_bins)):
            raise ConfigurationError(
                f"Input dimensions do not match (min: {len(lo)}, max: {len(hi)}, "
                f"bins: {len(raw_bins)})."
            )
        if len(lo) == 0:
            raise ConfigurationError("At least one dimension is required.")
        if not np.issubdtype(raw_bins.dtype, np.integer):
            if not np.all(np.equal(np.mod(raw_bins, 1), 0)):
                raise ConfigurationError(f"Bin counts must be integers, got {raw_bins.tolist()}.")
        bins = raw_bins.astype(np.int64)
        if np.any(bins < 1):
            raise ConfigurationError(f"Bin counts must be >= 1, got {bins.tolist()}.")
        if not (np.all(np.isfinite(lo)) and np.all(np.isfinite(hi))):
            raise ConfigurationError("Histogram bounds must be finite.")
        bad = np.nonzero(lo >= hi)[0]
        if len(bad) > 0:
            d = int(bad[0])
            raise ConfigurationError(
                f"hist_min must be smaller than hist_max in every dimension "
                f"(dimension {d}: min={lo[d]}, max={hi[d]})."
            )

        self._min = lo
        self._max = hi
        self._shape: BinIndex = tuple(int(b) for b in bins)
        self._cyclic = bool(cyclic)
        self._period = hi - lo
        self._widths = self._period / bins
        self._bin_edges = [np.linspace(lo[d], hi[d], self._shape[d] + 1) for d in range(len(lo))]
        self._bin_centers = [(e[:-1] + e[1:]) / 2.0 for e in self._bin_edges]
        for arr in (self._min, self._max, self._period, self._widths,
                    *self._bin_edges, *self._bin_centers):
            arr.setflags(write=False)

    # ---- grid properties -------------------------------------------------

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def shape(self) -> BinIndex:
        return self._shape

    @property
    def n_bins(self) -> int:
        """Total number of bins (product over dimensions)."""
        return int(np.prod(self._shape))

    @property
    def cyclic(self) -> bool:
        return self._cyclic

    @property
    def hist_min(self) -> np.ndarray:
        return self._min

    @property
    def hist_max(self) -> np.ndarray:
        return self._max

    @property
    def period(self) -> np.ndarray:
        return self._period

    @property
    def bin_widths(self) -> np.ndarray:
        return self._widths

    @property
    def bin_edges(self) -> list:
        return list(self._bin_edges)

    @property
    def bin_centers(self) -> list:
        return list(self._bin_centers)

    # ---- index mapping ---------------------------------------------------

    def flat_index(self, bin_index: BinIndex) -> int:
        """Flat (C-order) index of a bin tuple."""
        return int(np.ravel_multi_index(tuple(int(i) for i in bin_index), self._shape))

    def bin_tuple(self, flat: int) -> BinIndex:
        """Inverse of :meth:`flat_index`."""
        return tuple(int(i) for i in np.unravel_index(int(flat), self._shape))

    def bin_of(self, coordinate: Sequence[float]) -> Optional[BinIndex]:
        """Bin tuple containing *coordinate*, or ``None`` if it lies outside.

        Points outside ``[min, max)`` in any dimension are rejected rather
        than clamped into a boundary bin.
        """
        x = np.asarray(coordinate, dtype=np.float64).reshape(1, -1)
        if x.shape[1] != self.ndim:
            raise ValueError(
                f"Coordinate has {x.shape[1]} components, space has {self.ndim} dimensions."
            )
        flat, inside = self.flat_indices(x)
        if not inside[0]:
            return None
        return self.bin_tuple(flat[0])

    def flat_indices(self, coords: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorised bin lookup for an ``(n, D)`` array of coordinates.

        Returns
        -------
        flat : (n,) int64
            Flat bin index per point; ``-1`` for points outside the grid.
        inside : (n,) bool
            Mask of points inside ``[min, max)`` in every dimension.
        """
        coords = np.asarray(coords, dtype=np.float64)
        if coords.ndim == 1:
            coords = coords.reshape(-1, 1)
        if coords.shape[1] != self.ndim:
            raise ValueError(
                f"Coordinates have {coords.shape[1]} columns, space has {self.ndim} dimensions."
            )
        with np.errstate(invalid="ignore"):
            inside = np.all((coords >= self._min) & (coords < self._max), axis=1)
            idx = np.floor((coords - self._min) / self._widths)
        flat = np.full(len(coords), -1, dtype=np.int64)
        if inside.any():
            idx_in = idx[inside].astype(np.int64)
            # (x - min) / width can round up to num_bins just below max
            idx_in = np.minimum(idx_in, np.asarray(self._shape, dtype=np.int64) - 1)
            flat[inside] = np.ravel_multi_index(tuple(idx_in.T), self._shape)
        return flat, inside

    def center_of(self, bin_index: BinIndex) -> np.ndarray:
        """Coordinate of the centre of a bin."""
        return np.array(
            [self._bin_centers[d][int(i)] for d, i in enumerate(bin_index)],
            dtype=np.float64,
        )

    def grid_coordinates(self) -> np.ndarray:
        """Bin-centre coordinates of all bins in flat order, shape ``(M, D)``."""
        mesh = np.meshgrid(*self._bin_centers, indexing="ij")
        return np.stack([m.ravel() for m in mesh], axis=1)

    # ---- geometry --------------------------------------------------------

    def distance(self, dim: int, a, b):
        """Absolute distance between *a* and *b* along dimension *dim*.

        In a cyclic space the shorter way around the period is taken, so the
        result never exceeds half a period.  Works element-wise on arrays.
        """
        diff = np.abs(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64))
        if self._cyclic:
            period = self._period[dim]
            diff = np.mod(diff, period)
            diff = np.minimum(diff, period - diff)
        if np.ndim(diff) == 0:
            return float(diff)
        return diff

    def neighbors_of(self, bin_index: BinIndex) -> Set[BinIndex]:
        """Bins adjacent to *bin_index* along each dimension.

        At the grid boundary the neighbour wraps to the opposite end only in
        a cyclic space.  A bin is never its own neighbour.
        """
        bin_index = tuple(int(i) for i in bin_index)
        if len(bin_index) != self.ndim:
            raise ValueError(
                f"Bin index has {len(bin_index)} components, space has {self.ndim} dimensions."
            )
        out: Set[BinIndex] = set()
        for d, n in enumerate(self._shape):
            for step in (-1, 1):
                j = bin_index[d] + step
                if j < 0 or j >= n:
                    if not self._cyclic:
                        continue
                    j %= n
                nb = bin_index[:d] + (j,) + bin_index[d + 1:]
                if nb != bin_index:
                    out.add(nb)
        return out

    # ---- misc ------------------------------------------------------------

    def __eq__(self, other) -> bool:
        if not isinstance(other, CoordinateSpace):
            return NotImplemented
        return (
            self._shape == other._shape
            and self._cyclic == other._cyclic
            and np.array_equal(self._min, other._min)
            and np.array_equal(self._max, other._max)
        )

    def __hash__(self) -> int:
        return hash((self._shape, self._cyclic, tuple(self._min), tuple(self._max)))

    def __repr__(self) -> str:
        return (
            f"CoordinateSpace(hist_min={self._min.tolist()}, hist_max={self._max.tolist()}, "
            f"num_bins={list(self._shape)}, cyclic={self._cyclic})"
        )
