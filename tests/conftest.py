import numpy as np
import pytest

from whamgrid import CoordinateSpace, Window, build_histograms
from whamgrid.wham_solver import thermal_energy

T = 300.0
KT = thermal_energy(T)


def harmonic_window(center, k, n, rng, true_k=0.0, name=""):
    """Samples of a 1-D umbrella window on top of A(x) = 0.5 * true_k * x**2.

    The biased distribution is Gaussian with stiffness k + true_k.
    """
    stiffness = k + true_k
    mean = k * center / stiffness
    sigma = np.sqrt(KT / stiffness)
    coords = rng.normal(mean, sigma, size=(n, 1))
    return Window([center], [k], coords, name=name)


def ar1_series(n, rho, rng):
    """AR(1) process x_t = rho x_{t-1} + noise with unit stationary variance."""
    noise = rng.normal(0.0, np.sqrt(1.0 - rho ** 2), size=n)
    x = np.empty(n)
    x[0] = rng.normal()
    for t in range(1, n):
        x[t] = rho * x[t - 1] + noise[t]
    return x


@pytest.fixture
def rng():
    return np.random.default_rng(20240601)


@pytest.fixture
def two_windows(rng):
    """Two overlapping windows at -1 and +1 on a flat unbiased surface."""
    return [
        harmonic_window(-1.0, 10.0, 50_000, rng, name="left"),
        harmonic_window(1.0, 10.0, 50_000, rng, name="right"),
    ]


@pytest.fixture
def two_window_space():
    return CoordinateSpace(-2.0, 2.0, 40)


@pytest.fixture
def two_window_histograms(two_windows, two_window_space):
    return build_histograms(two_windows, two_window_space)


@pytest.fixture
def chain_windows(rng):
    """Five windows along [-2, 2] on a flat unbiased surface."""
    centers = np.linspace(-2.0, 2.0, 5)
    return [harmonic_window(c, 20.0, 5_000, rng, name=f"w{i}") for i, c in enumerate(centers)]
