"""
Bootstrap error estimation for WHAM probabilities and free energies.

Errors are estimated with a Bayesian bootstrap over windows: every replicate
draws one positive weight per window from a flat Dirichlet distribution
(the gaps between K-1 sorted uniform numbers on [0, 1], so the weights sum
to 1) and re-solves WHAM with each window's counts and sample size scaled by
its weight.  The spread of the replicate surfaces estimates the sampling
error of the baseline surface.

Replicate *r* draws from its own generator, seeded by the *r*-th child of
``numpy.random.SeedSequence(seed)``, so a given seed reproduces the same
replicates regardless of how they are scheduled over workers.  Per-bin
statistics are accumulated as sums and sums of squares (relative to the
baseline value), which merge associatively.

References
----------
* Rubin, Ann. Statist. 9, 130 (1981): the Bayesian bootstrap.
* Hub, de Groot & van der Spoel, J. Chem. Theory Comput. 6, 3713 (2010):
  bootstrapping umbrella histograms.
"""

from __future__ import annotations

import warnings
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .exceptions import ConfigurationError, WhamConvergenceWarning
from .parallel import parallel_map
from .wham_solver import WhamResult, WhamSolver


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass
class BootstrapErrors:
    """Per-bin bootstrap statistics.

    Spatial arrays are flat over the full grid.  Bins that are unoccupied in
    the baseline solve hold ``np.nan``.  Bins with fewer than two
    contributing replicates report the baseline value and zero spread.

    Attributes
    ----------
    n_bootstrap : int
        Number of replicates R.
    entropy : int
        Entropy of the root ``SeedSequence`` (the seed, if one was given).
    probability_mean, probability_std, probability_sem : np.ndarray
        Mean, sample standard deviation and standard error of the mean
        (``std / sqrt(n)``) of P_j over replicates.
    free_energy_mean, free_energy_std, free_energy_sem : np.ndarray
        Same for the free energy G_j (min-shifted per replicate).
    n_samples : np.ndarray
        Number of replicates in which each bin was occupied.
    window_free_energy_mean, window_free_energy_std : np.ndarray
        Mean and standard deviation of the window offsets F_i, shape (K,).
    n_unconverged : int
        Replicates that stopped at the iteration limit.
    """

    n_bootstrap: int
    entropy: int
    probability_mean: np.ndarray
    probability_std: np.ndarray
    probability_sem: np.ndarray
    free_energy_mean: np.ndarray
    free_energy_std: np.ndarray
    free_energy_sem: np.ndarray
    n_samples: np.ndarray
    window_free_energy_mean: np.ndarray
    window_free_energy_std: np.ndarray
    n_unconverged: int = 0


# ---------------------------------------------------------------------------
# Weights and accumulation
# ---------------------------------------------------------------------------

def draw_window_weights(n_windows: int, rng: np.random.Generator) -> np.ndarray:
    """Flat-Dirichlet window weights: gaps between sorted uniforms.

    Returns *n_windows* positive weights summing to 1.  A single window
    always gets weight 1.
    """
    if n_windows < 1:
        raise ConfigurationError("At least one window is required to draw weights.")
    cuts = np.sort(rng.random(n_windows - 1))
    edges = np.concatenate(([0.0], cuts, [1.0]))
    return np.diff(edges)


class _Moments:
    """Shifted count / sum / sum-of-squares of an array-valued quantity."""

    def __init__(self, reference: np.ndarray):
        self.reference = np.asarray(reference, dtype=np.float64)
        self.n = np.zeros(self.reference.shape, dtype=np.int64)
        self.s1 = np.zeros(self.reference.shape, dtype=np.float64)
        self.s2 = np.zeros(self.reference.shape, dtype=np.float64)

    def add(self, values: np.ndarray, mask: np.ndarray) -> None:
        d = np.where(mask, values - self.reference, 0.0)
        self.n += mask
        self.s1 += d
        self.s2 += d * d

    def merge(self, other: "_Moments") -> None:
        self.n += other.n
        self.s1 += other.s1
        self.s2 += other.s2

    def finalize(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (mean, std, sem); bins with n < 2 get the reference and 0."""
        n = self.n.astype(np.float64)
        mean = self.reference.copy()
        std = np.zeros_like(mean)
        many = self.n >= 2
        with np.errstate(invalid="ignore", divide="ignore"):
            mean_d = np.where(many, self.s1 / n, 0.0)
            var = np.where(many, (self.s2 - n * mean_d ** 2) / (n - 1.0), 0.0)
        mean[many] += mean_d[many]
        std[many] = np.sqrt(np.maximum(var[many], 0.0))
        sem = np.zeros_like(mean)
        sem[many] = std[many] / np.sqrt(n[many])
        nan = ~np.isfinite(self.reference)
        for arr in (mean, std, sem):
            arr[nan] = np.nan
        return mean, std, sem


class BootstrapAccumulator:
    """Commutative reduction of bootstrap replicates onto a baseline.

    Only bins occupied in the baseline are accumulated.  Adding replicates
    or merging accumulators in any order gives the same statistics up to
    floating-point rounding.
    """

    def __init__(self, baseline: WhamResult):
        self._baseline_occupied = baseline.occupied.copy()
        self._prob = _Moments(baseline.probability)
        self._fe = _Moments(baseline.free_energy)
        self._fk = _Moments(baseline.window_free_energies)
        self.n_replicates = 0
        self.n_unconverged = 0

    def add(self, result: WhamResult) -> None:
        mask = self._baseline_occupied & result.occupied
        self._prob.add(result.probability, mask)
        self._fe.add(result.free_energy, mask)
        self._fk.add(result.window_free_energies, np.ones(result.window_free_energies.shape, bool))
        self.n_replicates += 1
        if not result.converged:
            self.n_unconverged += 1

    def merge(self, other: "BootstrapAccumulator") -> "BootstrapAccumulator":
        self._prob.merge(other._prob)
        self._fe.merge(other._fe)
        self._fk.merge(other._fk)
        self.n_replicates += other.n_replicates
        self.n_unconverged += other.n_unconverged
        return self

    def finalize(self, entropy: int = 0) -> BootstrapErrors:
        p_mean, p_std, p_sem = self._prob.finalize()
        g_mean, g_std, g_sem = self._fe.finalize()
        f_mean, f_std, _ = self._fk.finalize()
        return BootstrapErrors(
            n_bootstrap=self.n_replicates,
            entropy=entropy,
            probability_mean=p_mean,
            probability_std=p_std,
            probability_sem=p_sem,
            free_energy_mean=g_mean,
            free_energy_std=g_std,
            free_energy_sem=g_sem,
            n_samples=self._prob.n.copy(),
            window_free_energy_mean=f_mean,
            window_free_energy_std=f_std,
            n_unconverged=self.n_unconverged,
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BootstrapEngine:
    """Run independent re-weighted WHAM solves and aggregate them.

    Parameters
    ----------
    solver : WhamSolver
        Solver holding the windows and histograms; reused read-only.
    baseline : WhamResult
        Unweighted solution from ``solver.solve()``.
    n_bootstrap : int
        Number of replicates R (0 disables error analysis).
    seed : int, optional
        Root seed.  ``None`` draws fresh entropy, which is reported back in
        :attr:`BootstrapErrors.entropy`.
    n_workers : int
        Worker pool size for running replicates concurrently.
    verbose : bool
        Print one progress line per replicate.
    """

    def __init__(
        self,
        solver: WhamSolver,
        baseline: WhamResult,
        n_bootstrap: int,
        seed: Optional[int] = None,
        n_workers: int = 1,
        verbose: bool = False,
    ):
        if int(n_bootstrap) < 0:
            raise ConfigurationError(f"n_bootstrap must be >= 0, got {n_bootstrap}.")
        self._solver = solver
        self._baseline = baseline
        self._n_bootstrap = int(n_bootstrap)
        self._seed_seq = np.random.SeedSequence(seed)
        self._children = self._seed_seq.spawn(self._n_bootstrap)
        self._n_workers = max(1, int(n_workers))
        self._verbose = verbose

    @property
    def n_bootstrap(self) -> int:
        return self._n_bootstrap

    @property
    def entropy(self) -> int:
        return int(self._seed_seq.entropy)

    def replicate_weights(self, index: int) -> np.ndarray:
        """Window weights of replicate *index* (deterministic per seed)."""
        rng = np.random.default_rng(self._children[index])
        return draw_window_weights(self._solver.n_windows, rng)

    def run_replicate(self, index: int) -> WhamResult:
        """Solve replicate *index* from a fresh state."""
        if self._verbose:
            print(f"Bootstrap replicate {index + 1}/{self._n_bootstrap}")
        return self._solver.solve(weights=self.replicate_weights(index), warn=False)

    def _run_chunk(self, indices: Sequence[int]) -> BootstrapAccumulator:
        acc = BootstrapAccumulator(self._baseline)
        for r in indices:
            acc.add(self.run_replicate(r))
        return acc

    def run(self) -> Optional[BootstrapErrors]:
        """Run all replicates; ``None`` when ``n_bootstrap == 0``."""
        R = self._n_bootstrap
        if R == 0:
            return None

        n_chunks = min(self._n_workers, R)
        chunks: List[np.ndarray] = np.array_split(np.arange(R), n_chunks)
        partials = parallel_map(self._run_chunk, chunks, self._n_workers)

        total = partials[0]
        for acc in partials[1:]:
            total.merge(acc)

        if total.n_unconverged > 0:
            warnings.warn(
                f"{total.n_unconverged}/{R} bootstrap replicates failed to converge.",
                WhamConvergenceWarning,
                stacklevel=2,
            )
        return total.finalize(entropy=self.entropy)


def bootstrap_errors(
    solver: WhamSolver,
    baseline: WhamResult,
    n_bootstrap: int = 200,
    seed: Optional[int] = None,
    n_workers: int = 1,
    verbose: bool = False,
) -> Optional[BootstrapErrors]:
    """Estimate per-bin errors by Bayesian bootstrap over windows.

    Convenience wrapper around :class:`BootstrapEngine`.
    """
    engine = BootstrapEngine(
        solver, baseline, n_bootstrap, seed=seed, n_workers=n_workers, verbose=verbose,
    )
    return engine.run()
