import numpy as np
import pytest

from whamgrid import (
    ConfigurationError,
    DegenerateInputError,
    EmptyBinError,
    EmptyBinWarning,
    OutOfRangeWarning,
    ResultSurface,
    Window,
    WhamConfig,
    run_time_slices,
    run_wham,
)
from whamgrid.analysis import time_slices

from conftest import KT, T, ar1_series


def config(**kwargs):
    kwargs.setdefault("hist_min", -2.0)
    kwargs.setdefault("hist_max", 2.0)
    kwargs.setdefault("num_bins", 40)
    kwargs.setdefault("temperature", T)
    return WhamConfig(**kwargs)


def test_config_validation():
    with pytest.raises(ConfigurationError, match="dimensions do not match"):
        WhamConfig([0.0, 0.0], [1.0], [10, 10], T)
    with pytest.raises(ConfigurationError):
        config(temperature=0.0)
    with pytest.raises(ConfigurationError):
        config(tolerance=-1.0)
    with pytest.raises(ConfigurationError):
        config(n_bootstrap=-5)
    with pytest.raises(ConfigurationError):
        config(start=10.0, end=1.0)
    cfg = config()
    assert cfg.ndim == 1
    assert cfg.kT == pytest.approx(KT)
    assert cfg.space().shape == (40,)


def test_run_wham_without_bootstrap(two_windows):
    surface = run_wham(two_windows, config())
    assert isinstance(surface, ResultSurface)
    assert surface.converged
    assert surface.n_bootstrap == 0
    assert surface.n_occupied == 40
    assert np.min(surface.free_energy) == 0.0
    assert abs(surface.probability.sum() - 1.0) < 1e-9
    np.testing.assert_array_equal(surface.free_energy_error, 0.0)
    np.testing.assert_array_equal(surface.probability_error, 0.0)
    assert surface.warnings == []
    assert surface.coordinates.shape == (40, 1)


def test_run_wham_with_bootstrap(two_windows):
    cfg = config(n_bootstrap=20, seed=4)
    surface = run_wham(two_windows, cfg)
    assert surface.n_bootstrap == 20
    assert np.all(np.isfinite(surface.probability_error))
    assert np.all(surface.probability_error > 0)
    again = run_wham(two_windows, cfg)
    np.testing.assert_array_equal(surface.probability_error, again.probability_error)
    np.testing.assert_array_equal(surface.free_energy, again.free_energy)


def test_run_wham_with_workers_matches_sequential(two_windows):
    seq = run_wham(two_windows, config(n_bootstrap=6, seed=2))
    par = run_wham(two_windows, config(n_bootstrap=6, seed=2, n_workers=3))
    np.testing.assert_array_equal(seq.free_energy, par.free_energy)
    np.testing.assert_allclose(seq.probability_error, par.probability_error, rtol=1e-8)


def test_window_without_in_range_samples_is_skipped(two_windows, rng):
    outside = Window([10.0], [10.0], rng.normal(10.0, 0.3, 1_000), name="outside")
    with pytest.warns(OutOfRangeWarning, match="outside"):
        surface = run_wham(two_windows + [outside], config())
    assert len(surface.window_free_energies) == 2
    assert any("No data points" in m for m in surface.warnings)


def test_empty_bins(two_windows):
    with pytest.raises(EmptyBinError):
        run_wham(two_windows, config(hist_min=-5.0, hist_max=5.0, num_bins=50))
    with pytest.warns(EmptyBinWarning):
        surface = run_wham(
            two_windows, config(hist_min=-5.0, hist_max=5.0, num_bins=50, ignore_empty=True),
        )
    empty = ~surface.occupied
    assert empty.any()
    assert np.all(np.isnan(surface.free_energy[empty]))
    assert np.all(np.isnan(surface.free_energy_error[empty]))
    assert np.nanmin(surface.free_energy) == 0.0
    assert surface.warnings


def test_no_data_in_range(two_windows):
    with pytest.raises(DegenerateInputError):
        with pytest.warns(OutOfRangeWarning):
            run_wham(two_windows, config(hist_min=20.0, hist_max=30.0))
    with pytest.raises(DegenerateInputError):
        run_wham([], config())


def test_dimension_mismatch(two_windows):
    with pytest.raises(ConfigurationError):
        run_wham(two_windows, WhamConfig([-2.0, -2.0], [2.0, 2.0], [10, 10], T))


def test_time_filter_uses_subset(two_windows):
    full = run_wham(two_windows, config())
    half = run_wham(two_windows, config(start=0.0, end=24_999.0))
    assert not np.array_equal(full.probability, half.probability)
    np.testing.assert_allclose(full.probability, half.probability, atol=0.01)


def test_uncorrelated_run(rng):
    kT_over_k = KT / 10.0
    windows = [
        Window([c], [10.0], c + np.sqrt(kT_over_k) * ar1_series(20_000, 0.9, rng), name=str(c))
        for c in (-1.0, 1.0)
    ]
    raw = run_wham(windows, config(ignore_empty=True))
    thinned = run_wham(windows, config(uncorr=True, ignore_empty=True))
    assert thinned.converged
    assert abs(np.nansum(thinned.probability) - 1.0) < 1e-9
    assert not np.array_equal(raw.probability, thinned.probability)


def test_two_dimensional_run(rng):
    sigma = np.sqrt(KT / 10.0)
    windows = []
    for cx in (-1.0, 1.0):
        for cy in (-1.0, 1.0):
            coords = rng.normal([cx, cy], sigma, size=(100_000, 2))
            windows.append(Window([cx, cy], [10.0, 10.0], coords))
    cfg = WhamConfig([-2.0, -2.0], [2.0, 2.0], [10, 10], T)
    surface = run_wham(windows, cfg)
    assert surface.converged
    assert surface.on_grid(surface.free_energy).shape == (10, 10)
    G = surface.on_grid(surface.free_energy)
    # flat underlying surface, symmetric under both mirror operations
    assert np.max(G) < 1.0
    np.testing.assert_allclose(G, G[::-1, :], atol=0.5)
    np.testing.assert_allclose(G, G[:, ::-1], atol=0.5)


def test_cyclic_run(rng):
    centers = np.linspace(-np.pi, np.pi, 8, endpoint=False)
    windows = []
    for c in centers:
        x = rng.normal(c, np.sqrt(KT / 20.0), 5_000)
        x = (x + np.pi) % (2 * np.pi) - np.pi
        windows.append(Window([c], [20.0], x))
    cfg = WhamConfig(-np.pi, np.pi, 36, T, cyclic=True)
    surface = run_wham(windows, cfg)
    assert surface.converged
    assert surface.n_occupied == 36
    assert np.max(surface.free_energy) < 1.0


def test_time_slices():
    w = Window([0.0], [1.0], np.zeros(100), times=np.arange(100.0))
    assert time_slices([w], 25.0) == [(0.0, 25.0), (0.0, 50.0), (0.0, 75.0), (0.0, 100.0)]
    assert time_slices([w], 25.0, start=50.0) == [(50.0, 75.0), (50.0, 100.0)]
    with pytest.raises(ConfigurationError):
        time_slices([w], 0.0)
    with pytest.raises(DegenerateInputError):
        time_slices([w], 10.0, start=500.0)


def test_run_time_slices(two_windows):
    slices = run_time_slices(two_windows, config(), 25_000.0)
    assert [s for s, _ in slices] == [(0.0, 25_000.0), (0.0, 50_000.0)]
    for _, surface in slices:
        assert surface.converged
