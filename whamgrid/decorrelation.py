"""
Statistical inefficiency and subsampling of correlated time series.

The statistical inefficiency g of a time series is the factor by which the
number of samples overstates the number of independent ones: N/g samples
spaced g apart are approximately uncorrelated.  It is estimated from the
normalised autocorrelation function

    C_t = sum_{n < N-t} dx_n dx_{n+t} / ((N - t) sigma^2)

as ``g = 1 + 2 * sum_t C_t (1 - t/N)``, where the sum runs over t = 1, 2, ...
and stops at (excluding) the first lag with ``C_t <= 0``.  g is floored at 1.

For a multidimensional window, every coordinate is analysed separately and
the slowest one decides: ``g = 1 + 2 * max_d tau_d`` with the autocorrelation
time ``tau_d = (g_d - 1) / 2``.  The window is then thinned to every
``ceil(g)``-th sample, always keeping the first one.

References
----------
* Chodera et al., J. Chem. Theory Comput. 3, 26 (2007).
"""

from __future__ import annotations

import math
import numpy as np
from typing import List, Sequence

from .parallel import parallel_map
from .window import Window


def autocorrelation(timeseries: np.ndarray) -> np.ndarray:
    """Normalised autocorrelation ``C_t`` for lags ``t = 1 .. N-1``.

    Computed with a zero-padded FFT.  A constant series has no fluctuations
    and yields all zeros.
    """
    x = np.asarray(timeseries, dtype=np.float64).ravel()
    n = len(x)
    if n < 2:
        return np.empty(0, dtype=np.float64)
    dx = x - x.mean()
    var = np.mean(dx ** 2)
    if var <= 0.0:
        return np.zeros(n - 1, dtype=np.float64)

    nfft = 1 << int(math.ceil(math.log2(2 * n)))
    spectrum = np.fft.rfft(dx, nfft)
    acov = np.fft.irfft(spectrum * np.conj(spectrum), nfft)[:n]
    lags = np.arange(1, n)
    return acov[1:n] / ((n - lags) * var)


def statistical_inefficiency(timeseries: np.ndarray) -> float:
    """Statistical inefficiency g >= 1 of a one-dimensional series."""
    x = np.asarray(timeseries, dtype=np.float64).ravel()
    n = len(x)
    C = autocorrelation(x)
    if len(C) == 0:
        return 1.0
    nonpositive = np.nonzero(C <= 0.0)[0]
    stop = int(nonpositive[0]) if len(nonpositive) else len(C)
    t = np.arange(1, stop + 1)
    g = 1.0 + 2.0 * float(np.sum(C[:stop] * (1.0 - t / n)))
    return max(1.0, g)


def autocorrelation_time(g: float) -> float:
    """Autocorrelation time tau corresponding to an inefficiency g."""
    return (g - 1.0) / 2.0


def window_inefficiency(window: Window) -> float:
    """Inefficiency of a window: the slowest of its coordinates."""
    if window.n_samples < 2:
        return 1.0
    taus = [
        autocorrelation_time(statistical_inefficiency(window.coords[:, d]))
        for d in range(window.ndim)
    ]
    return max(1.0, 1.0 + 2.0 * max(taus))


def decorrelate(window: Window, verbose: bool = False) -> Window:
    """Return a copy of *window* thinned to approximately independent samples."""
    g = window_inefficiency(window)
    stride = max(1, int(math.ceil(g)))
    out = window.subsampled(stride, g)
    if verbose:
        print(
            f"  {window.name or 'window'}: g = {g:.3f}, "
            f"{window.n_samples} -> {out.n_eff} samples"
        )
    return out


def decorrelate_windows(
    windows: Sequence[Window],
    enabled: bool = True,
    n_workers: int = 1,
    verbose: bool = False,
) -> List[Window]:
    """Decorrelate every window independently.

    With *enabled* false this is a no-op and every window keeps g = 1.
    Windows that were already decorrelated are passed through unchanged.
    """
    if not enabled:
        return list(windows)

    def _one(w: Window) -> Window:
        if w.decorrelated:
            return w
        return decorrelate(w, verbose=verbose)

    return parallel_map(_one, windows, n_workers)
