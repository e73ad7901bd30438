from __future__ import annotations

import enum
import warnings
import numpy as np
from dataclasses import dataclass, field
from scipy.special import logsumexp
from typing import List, Optional, Sequence, Tuple

from .coordinate_space import CoordinateSpace
from .exceptions import ConfigurationError, DegenerateInputError, WhamConvergenceWarning
from .histogram import Histogram
from .window import Window

K_B = 0.0083144621  # kJ/(mol K)


def thermal_energy(temperature: float) -> float:
    """kT in kJ/mol for a temperature in Kelvin."""
    return K_B * temperature


# ---------------------------------------------------------------------------
# State and result containers
# ---------------------------------------------------------------------------

class SolverStatus(enum.Enum):
    UNINITIALIZED = "uninitialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit_reached"


@dataclass
class SolverState:
    """Mutable state of one self-consistent solve.

    Owned by a single call of :meth:`WhamSolver.solve`; never shared between
    solves, so bootstrap replicates cannot see each other's iterates.

    Attributes
    ----------
    f : np.ndarray
        Dimensionless window offsets ``F_i / kT``, shape (K,).
    log_prob : np.ndarray
        Normalised ``ln P_j`` over the active bins, shape (M_active,).
    iteration : int
        Number of completed iterations.
    delta : float
        Last ``max_i |F_i_new - F_i|`` in energy units.
    status : SolverStatus
    """

    f: np.ndarray
    log_prob: np.ndarray
    iteration: int = 0
    delta: float = float("inf")
    status: SolverStatus = SolverStatus.UNINITIALIZED


@dataclass
class WhamResult:
    """Outcome of one WHAM solve.

    Spatial arrays are flat over the full grid (length M, C order).  Bins
    that were not part of the solve hold ``np.nan`` and are ``False`` in
    *occupied*.

    Attributes
    ----------
    space : CoordinateSpace
    kT : float
        Thermal energy in kJ/mol.
    window_free_energies : np.ndarray
        Converged offsets F_i in kJ/mol, shape (K,).
    probability : np.ndarray
        Unbiased probability per bin, summing to 1 over occupied bins.
    free_energy : np.ndarray
        ``-kT ln P`` shifted so that its minimum over occupied bins is 0.
    occupied : np.ndarray
        Bool mask of bins included in the solve.
    converged : bool
    status : SolverStatus
    n_iterations : int
    convergence_history : np.ndarray
        ``max_i |dF_i|`` per iteration.
    warnings : list of str
    """

    space: CoordinateSpace
    kT: float
    window_free_energies: np.ndarray
    probability: np.ndarray
    free_energy: np.ndarray
    occupied: np.ndarray
    converged: bool
    status: SolverStatus
    n_iterations: int
    convergence_history: np.ndarray
    warnings: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Iteration engine
# ---------------------------------------------------------------------------

def _wham_step(
    f: np.ndarray,
    log_wN: np.ndarray,
    log_C: np.ndarray,
    beta_bias: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """One evaluation of both WHAM equations in the log domain.

    ``ln P_j = ln C_j - LSE_i(ln(w_i N_i) + f_i - bU_ij)``, renormalised to
    ``LSE_j ln P_j = 0``, followed by ``f_i = -LSE_j(ln P_j - bU_ij)``.
    logsumexp subtracts the largest argument before exponentiating, so
    biases of many kT cannot overflow.
    """
    log_denom = logsumexp(log_wN[:, None] + f[:, None] - beta_bias, axis=0)
    log_p = log_C - log_denom
    log_p -= logsumexp(log_p)
    f_new = -logsumexp(log_p[None, :] - beta_bias, axis=1)
    return log_p, f_new


def _iterate(
    state: SolverState,
    log_wN: np.ndarray,
    log_C: np.ndarray,
    beta_bias: np.ndarray,
    kT: float,
    tol: float,
    max_iter: int,
    verbose: bool = False,
    report_every: int = 100,
) -> np.ndarray:
    """Run the fixed-point iteration on *state* until convergence or max_iter.

    Returns the convergence history.
    """
    history = np.empty(max_iter, dtype=np.float64)
    state.status = SolverStatus.ITERATING

    for it in range(max_iter):
        log_p, f_new = _wham_step(state.f, log_wN, log_C, beta_bias)
        delta = kT * float(np.max(np.abs(f_new - state.f)))
        history[it] = delta
        state.f = f_new
        state.log_prob = log_p
        state.iteration = it + 1
        state.delta = delta

        if verbose and report_every > 0 and state.iteration % report_every == 0:
            print(f"Iteration {state.iteration}: dF={delta:.3e}")

        if delta < tol:
            state.status = SolverStatus.CONVERGED
            break
    else:
        state.status = SolverStatus.ITERATION_LIMIT

    # probabilities consistent with the final offsets
    log_denom = logsumexp(log_wN[:, None] + state.f[:, None] - beta_bias, axis=0)
    log_p = log_C - log_denom
    state.log_prob = log_p - logsumexp(log_p)
    return history[: state.iteration]


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

class WhamSolver:
    """Weighted Histogram Analysis Method solver for harmonic umbrella windows.

    Solves the self-consistent WHAM equations

    .. math::

        P_j = \\frac{\\sum_i w_i h_{ij}}
                    {\\sum_i w_i N_i \\exp(-(U_i(x_j) - F_i)/kT)},
        \\qquad
        F_i = -kT \\ln \\sum_j P_j \\exp(-U_i(x_j)/kT)

    over the occupied bins of a :class:`CoordinateSpace`.  The solver holds
    only the read-only inputs; every :meth:`solve` starts from ``F_i = 0``
    with its own :class:`SolverState`.

    Parameters
    ----------
    space : CoordinateSpace
        Histogram grid.
    windows : sequence of Window
        Bias parameters of every window.
    histograms : sequence of Histogram
        Histogram of every window on *space*, same order as *windows*.
    temperature : float
        Temperature in Kelvin.
    tol : float
        Convergence tolerance on ``max_i |dF_i|`` in kJ/mol.
    max_iter : int
        Maximum number of self-consistency iterations.
    occupied : np.ndarray, optional
        Flat bool mask of bins to include.  Defaults to all bins with a
        nonzero total count.
    verbose : bool
        Print progress every *report_every* iterations.
    report_every : int
        Progress interval for *verbose*.
    """

    def __init__(
        self,
        space: CoordinateSpace,
        windows: Sequence[Window],
        histograms: Sequence[Histogram],
        temperature: float,
        tol: float = 1e-6,
        max_iter: int = 100_000,
        occupied: Optional[np.ndarray] = None,
        verbose: bool = False,
        report_every: int = 100,
    ):
        if not (np.isfinite(temperature) and temperature > 0):
            raise ConfigurationError(f"Temperature must be positive, got {temperature}.")
        if not (np.isfinite(tol) and tol > 0):
            raise ConfigurationError(f"Tolerance must be positive, got {tol}.")
        if int(max_iter) < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {max_iter}.")
        if len(windows) != len(histograms):
            raise ConfigurationError(
                f"{len(windows)} windows but {len(histograms)} histograms."
            )
        if len(windows) == 0:
            raise DegenerateInputError("No windows have been added.")
        for w, h in zip(windows, histograms):
            if w.ndim != space.ndim:
                raise ConfigurationError(
                    f"Window {w.name!r} has {w.ndim} dimensions, the histogram grid has "
                    f"{space.ndim}."
                )
            if h.counts.shape != space.shape:
                raise ConfigurationError(
                    f"Histogram shape {h.counts.shape} != grid shape {space.shape}."
                )

        self._space = space
        self._temperature = float(temperature)
        self._kT = thermal_energy(temperature)
        self._tol = float(tol)
        self._max_iter = int(max_iter)
        self._verbose = verbose
        self._report_every = int(report_every)

        self._hist_matrix = np.stack([h.flat for h in histograms], axis=0)   # (K, M)
        self._n_points = np.array([h.n_points for h in histograms], dtype=np.float64)
        self._bias_matrix = np.stack([w.bias_on_grid(space) for w in windows], axis=0)

        if occupied is None:
            occupied = self._hist_matrix.sum(axis=0) > 0
        occupied = np.asarray(occupied, dtype=bool).ravel()
        if occupied.shape != (space.n_bins,):
            raise ConfigurationError(
                f"Occupied mask has {occupied.size} entries, grid has {space.n_bins} bins."
            )
        if not occupied.any():
            raise DegenerateInputError("All bins are empty across all windows.")
        self._occupied = occupied

    # ---- properties ------------------------------------------------------

    @property
    def space(self) -> CoordinateSpace:
        return self._space

    @property
    def n_windows(self) -> int:
        return self._hist_matrix.shape[0]

    @property
    def kT(self) -> float:
        return self._kT

    @property
    def temperature(self) -> float:
        return self._temperature

    @property
    def tol(self) -> float:
        return self._tol

    @property
    def max_iter(self) -> int:
        return self._max_iter

    @property
    def occupied(self) -> np.ndarray:
        return self._occupied.copy()

    @property
    def bias_matrix(self) -> np.ndarray:
        """Bias energies ``U_i(x_j)`` in kJ/mol, shape (K, M)."""
        return self._bias_matrix.copy()

    # ---- core WHAM -------------------------------------------------------

    def _check_weights(self, weights: Optional[np.ndarray]) -> np.ndarray:
        K = self.n_windows
        if weights is None:
            return np.ones(K, dtype=np.float64)
        weights = np.asarray(weights, dtype=np.float64).ravel()
        if weights.shape != (K,):
            raise ConfigurationError(f"Expected {K} window weights, got {weights.size}.")
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise ConfigurationError("Window weights must be finite and non-negative.")
        if weights.sum() <= 0:
            raise ConfigurationError("At least one window weight must be positive.")
        return weights

    def solve(
        self,
        weights: Optional[np.ndarray] = None,
        max_iter: Optional[int] = None,
        warn: bool = True,
    ) -> WhamResult:
        """Run the WHAM self-consistency iteration.

        Parameters
        ----------
        weights : np.ndarray, optional
            Non-negative weight per window scaling both its counts and its
            sample size.  Defaults to 1 for every window.
        max_iter : int, optional
            Override the iteration budget for this solve.
        warn : bool
            Emit a :class:`WhamConvergenceWarning` when the iteration limit is
            reached.  The message is recorded on the result either way.

        Returns
        -------
        WhamResult
        """
        weights = self._check_weights(weights)
        max_iter = self._max_iter if max_iter is None else int(max_iter)
        K = self.n_windows
        M_full = self._space.n_bins
        kT = self._kT

        # 1. Weighted counts; bins with no weighted count drop out
        weighted = weights @ self._hist_matrix                     # (M,)
        active = self._occupied & (weighted > 0)
        if not active.any():
            raise DegenerateInputError("No occupied bins carry a nonzero weight.")

        with np.errstate(divide="ignore"):
            log_C = np.log(weighted[active])
            log_wN = np.log(weights * self._n_points)
        beta_bias = self._bias_matrix[:, active] / kT

        # 2. Iterate from F = 0
        state = SolverState(
            f=np.zeros(K, dtype=np.float64),
            log_prob=np.full(int(active.sum()), np.nan),
        )
        history = _iterate(
            state, log_wN, log_C, beta_bias, kT,
            self._tol, max_iter, self._verbose, self._report_every,
        )

        messages: List[str] = []
        converged = state.status is SolverStatus.CONVERGED
        if not converged:
            msg = (
                f"WHAM did not converge within {max_iter} iterations "
                f"(final dF = {state.delta:.2e}, tol = {self._tol:.2e})."
            )
            messages.append(msg)
            if warn:
                warnings.warn(msg, WhamConvergenceWarning, stacklevel=2)

        # 3. Expand back to full grid; free energy with minimum at 0
        prob = np.exp(state.log_prob)
        prob /= prob.sum()
        prob_full = np.full(M_full, np.nan, dtype=np.float64)
        prob_full[active] = prob

        fe_full = np.full(M_full, np.nan, dtype=np.float64)
        fe_full[active] = kT * (state.log_prob.max() - state.log_prob)

        return WhamResult(
            space=self._space,
            kT=kT,
            window_free_energies=kT * state.f,
            probability=prob_full,
            free_energy=fe_full,
            occupied=active,
            converged=converged,
            status=state.status,
            n_iterations=state.iteration,
            convergence_history=history,
            warnings=messages,
        )

    def __repr__(self) -> str:
        return (
            f"WhamSolver(n_windows={self.n_windows}, grid_shape={self._space.shape}, "
            f"T={self._temperature}, tol={self._tol}, max_iter={self._max_iter})"
        )
