import numpy as np
import pytest

from whamgrid import (
    ConfigurationError,
    CoordinateSpace,
    DegenerateInputError,
    SolverStatus,
    WhamConvergenceWarning,
    WhamSolver,
    Window,
    build_histograms,
)
from whamgrid.wham_solver import K_B, thermal_energy

from conftest import KT, T, harmonic_window


def naive_wham(hist, n_points, bias, kT, tol, max_iter):
    """Textbook linear-domain WHAM, usable only when exp(-U/kT) stays finite."""
    C = hist.sum(axis=0)
    boltz = np.exp(-bias / kT)
    F = np.zeros(len(hist))
    for _ in range(max_iter):
        denom = np.sum(n_points[:, None] * np.exp(F[:, None] / kT) * boltz, axis=0)
        P = C / denom
        P /= P.sum()
        F_new = -kT * np.log(np.sum(P[None, :] * boltz, axis=1))
        delta = np.max(np.abs(F_new - F))
        F = F_new
        if delta < tol:
            break
    denom = np.sum(n_points[:, None] * np.exp(F[:, None] / kT) * boltz, axis=0)
    P = C / denom
    return F, P / P.sum()


def test_thermal_energy():
    assert thermal_energy(300.0) == pytest.approx(300.0 * K_B)
    assert thermal_energy(300.0) == pytest.approx(2.4943, abs=1e-4)


def test_probability_normalised_and_minimum_exactly_zero(two_windows, two_window_space,
                                                         two_window_histograms):
    solver = WhamSolver(two_window_space, two_windows, two_window_histograms, T)
    result = solver.solve()
    assert result.converged
    assert result.status is SolverStatus.CONVERGED
    assert abs(np.nansum(result.probability) - 1.0) < 1e-9
    assert np.nanmin(result.free_energy) == 0.0
    assert np.all(result.free_energy[result.occupied] >= 0.0)
    assert result.n_iterations == len(result.convergence_history)
    assert result.convergence_history[-1] < solver.tol


def test_two_windows_are_symmetric(two_windows, two_window_space, two_window_histograms):
    result = WhamSolver(two_window_space, two_windows, two_window_histograms, T).solve()
    P = result.probability
    assert result.occupied.all()
    # continuous, flat surface
    assert np.max(np.abs(np.diff(result.free_energy))) < 0.5
    assert np.max(result.free_energy) < 1.0
    # mirror symmetry about 0
    M = len(P)
    assert abs(P[: M // 2].sum() - P[M // 2:].sum()) < 0.02
    np.testing.assert_allclose(P, P[::-1], rtol=0.3)
    F = result.window_free_energies
    assert abs(F[0] - F[1]) < 0.2


def test_single_window_recovers_harmonic_potential(rng):
    k = 10.0
    window = harmonic_window(0.0, k, 200_000, rng, true_k=k)
    space = CoordinateSpace(-0.7, 0.7, 14)
    hists = build_histograms([window], space)
    result = WhamSolver(space, [window], hists, T).solve()
    assert result.occupied.all()
    x = space.grid_coordinates()[:, 0]
    expected = 0.5 * k * x ** 2
    expected -= expected.min()
    np.testing.assert_allclose(result.free_energy, expected, atol=0.2)


def test_deterministic(chain_windows):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    solver = WhamSolver(space, chain_windows, hists, T)
    a = solver.solve()
    b = solver.solve()
    np.testing.assert_array_equal(a.probability, b.probability)
    np.testing.assert_array_equal(a.free_energy, b.free_energy)
    np.testing.assert_array_equal(a.window_free_energies, b.window_free_energies)
    assert a.n_iterations == b.n_iterations


def test_convergence_history_decreases(chain_windows):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    result = WhamSolver(space, chain_windows, hists, T, tol=1e-9).solve()
    h = result.convergence_history
    assert len(h) > 10
    assert h[-1] < h[0]
    half = len(h) // 2
    assert h[half:].mean() < h[:half].mean()
    increases = np.count_nonzero(np.diff(h) > 0)
    assert increases <= 0.1 * len(h)


def test_matches_linear_domain_iteration(chain_windows):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    solver = WhamSolver(space, chain_windows, hists, T, tol=1e-10)
    result = solver.solve()
    assert result.occupied.all()

    hist = np.stack([h.flat for h in hists])
    n_points = np.array([h.n_points for h in hists], dtype=float)
    F, P = naive_wham(hist, n_points, solver.bias_matrix, KT, 1e-10, 100_000)
    np.testing.assert_allclose(result.probability, P, rtol=1e-6)
    np.testing.assert_allclose(
        result.window_free_energies - result.window_free_energies[0],
        F - F[0],
        atol=1e-6,
    )


def test_extreme_bias_stays_finite(rng):
    space = CoordinateSpace(-2.0, 2.0, 20)
    # bias of ~2000 kT everywhere on the grid: exp(-U/kT) underflows to 0
    k_far, center_far = 1e-2, 1000.0
    tilt = k_far * center_far / KT
    u = rng.random(20_000)
    x_far = np.log(u * (np.exp(4.0 * tilt) - 1.0) + 1.0) / tilt - 2.0
    far = Window([center_far], [k_far], x_far, name="far")
    near = harmonic_window(0.0, 5.0, 20_000, rng, name="near")
    windows = [near, far]
    hists = build_histograms(windows, space)
    solver = WhamSolver(space, windows, hists, T, occupied=None)
    with np.errstate(all="ignore"):
        assert not np.any(np.exp(-solver.bias_matrix[1] / KT) > 0)
    result = solver.solve()
    occ = result.occupied
    assert result.converged
    assert np.all(np.isfinite(result.window_free_energies))
    assert np.all(np.isfinite(result.probability[occ]))
    assert np.all(np.isfinite(result.free_energy[occ]))
    assert abs(np.sum(result.probability[occ]) - 1.0) < 1e-9


def test_iteration_limit_warns_but_returns_surface(chain_windows):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    solver = WhamSolver(space, chain_windows, hists, T, max_iter=1)
    with pytest.warns(WhamConvergenceWarning):
        result = solver.solve()
    assert not result.converged
    assert result.status is SolverStatus.ITERATION_LIMIT
    assert result.n_iterations == 1
    assert len(result.warnings) == 1
    assert abs(np.nansum(result.probability) - 1.0) < 1e-9
    assert np.nanmin(result.free_energy) == 0.0


def test_max_iter_override_without_warning(chain_windows, recwarn):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    result = WhamSolver(space, chain_windows, hists, T).solve(max_iter=2, warn=False)
    assert not result.converged
    assert result.warnings
    assert not [w for w in recwarn if issubclass(w.category, WhamConvergenceWarning)]


def test_unoccupied_bins_are_nan(rng):
    space = CoordinateSpace(-3.0, 3.0, 30)
    windows = [harmonic_window(-0.5, 50.0, 5_000, rng), harmonic_window(0.5, 50.0, 5_000, rng)]
    hists = build_histograms(windows, space)
    result = WhamSolver(space, windows, hists, T).solve()
    assert not result.occupied.all()
    assert np.all(np.isnan(result.probability[~result.occupied]))
    assert np.all(np.isnan(result.free_energy[~result.occupied]))
    assert abs(result.probability[result.occupied].sum() - 1.0) < 1e-9


def test_uniform_weights_do_not_change_result(chain_windows):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    solver = WhamSolver(space, chain_windows, hists, T, tol=1e-10)
    a = solver.solve()
    b = solver.solve(weights=np.full(len(chain_windows), 0.2))
    np.testing.assert_allclose(a.probability, b.probability, rtol=1e-8)
    np.testing.assert_allclose(a.free_energy, b.free_energy, atol=1e-8)


def test_zero_weight_removes_window(rng):
    space = CoordinateSpace(-2.0, 2.0, 40)
    windows = [harmonic_window(-1.0, 50.0, 5_000, rng), harmonic_window(1.0, 50.0, 5_000, rng)]
    solver = WhamSolver(space, windows, build_histograms(windows, space), T)
    result = solver.solve(weights=[1.0, 0.0])
    # bins right of 0 are only sampled by the second window
    x = space.grid_coordinates()[:, 0]
    assert not result.occupied[x > 0.3].any()
    assert result.occupied.sum() < solver.occupied.sum()
    assert abs(np.nansum(result.probability) - 1.0) < 1e-9


@pytest.mark.parametrize(
    "weights",
    [[1.0, 1.0], [1.0, -1.0, 1.0, 1.0, 1.0], [0.0] * 5, [1.0, np.nan, 1.0, 1.0, 1.0]],
)
def test_invalid_weights(chain_windows, weights):
    space = CoordinateSpace(-2.5, 2.5, 50)
    hists = build_histograms(chain_windows, space)
    solver = WhamSolver(space, chain_windows, hists, T)
    with pytest.raises(ConfigurationError):
        solver.solve(weights=weights)


def test_invalid_solver_setup(two_windows, two_window_space, two_window_histograms):
    with pytest.raises(ConfigurationError):
        WhamSolver(two_window_space, two_windows, two_window_histograms, -1.0)
    with pytest.raises(ConfigurationError):
        WhamSolver(two_window_space, two_windows, two_window_histograms, T, tol=0.0)
    with pytest.raises(ConfigurationError):
        WhamSolver(two_window_space, two_windows, two_window_histograms[:1], T)
    with pytest.raises(ConfigurationError):
        WhamSolver(CoordinateSpace(-2.0, 2.0, 10), two_windows, two_window_histograms, T)
    with pytest.raises(DegenerateInputError):
        WhamSolver(two_window_space, [], [], T)
    with pytest.raises(DegenerateInputError):
        WhamSolver(
            two_window_space, two_windows, two_window_histograms, T,
            occupied=np.zeros(two_window_space.n_bins, bool),
        )
