"""
Reading umbrella-sampling input and writing free-energy surfaces.

Metadata file, one window per line::

    /path/to/timeseries_file  x0_1 ... x0_D  k_1 ... k_D

The path is relative to the directory of the metadata file.  Lines starting
with ``#`` and blank lines are ignored.

Timeseries file, one sample per line::

    time  x_1 ... x_D

Lines starting with ``#`` or ``@`` (GROMACS ``.xvg`` headers) are ignored;
additional trailing columns are ignored.
"""

from __future__ import annotations

import math
import warnings
import numpy as np
from pathlib import Path
from typing import List, NamedTuple, Tuple, Union

from .exceptions import InputFormatError
from .result import ResultSurface
from .window import Window

PathLike = Union[str, Path]


class MetadataEntry(NamedTuple):
    path: Path
    center: np.ndarray
    force_constants: np.ndarray


def parse_float(token: str) -> float:
    """Parse a float, accepting ``pi`` and ``-pi``."""
    t = token.strip().lower()
    if t in ("pi", "+pi"):
        return math.pi
    if t == "-pi":
        return -math.pi
    return float(t)


def parse_list(text: str, cast=parse_float) -> list:
    """Parse a comma separated list (``"-pi,0.5"``)."""
    try:
        return [cast(tok) for tok in text.split(",") if tok.strip()]
    except ValueError as exc:
        raise InputFormatError(f"Could not parse list {text!r}: {exc}") from exc


def read_metadata(path: PathLike, ndim: int) -> List[MetadataEntry]:
    """Parse a metadata file describing *ndim*-dimensional windows."""
    path = Path(path)
    try:
        lines = path.read_text().splitlines()
    except OSError as exc:
        raise InputFormatError(f"Failed to read metadata from {path}. {exc}") from exc

    entries = []
    for lineno, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        tokens = stripped.split()
        if len(tokens) < 1 + 2 * ndim:
            raise InputFormatError(
                f"{path}: line {lineno} has {len(tokens)} columns, expected a path, "
                f"{ndim} bias positions and {ndim} force constants."
            )
        try:
            center = np.array([float(t) for t in tokens[1:1 + ndim]])
        except ValueError:
            raise InputFormatError(f"{path}: Failed to read bias position in line {lineno}.") from None
        try:
            fc = np.array([float(t) for t in tokens[1 + ndim:1 + 2 * ndim]])
        except ValueError:
            raise InputFormatError(f"{path}: Failed to read bias fc in line {lineno}.") from None
        entries.append(MetadataEntry(path.parent / tokens[0], center, fc))
    return entries


def read_timeseries(path: PathLike, ndim: int) -> Tuple[np.ndarray, np.ndarray]:
    """Read ``(times, coords)`` from a timeseries file.

    Returns
    -------
    times : (n,) float64
    coords : (n, ndim) float64
    """
    path = Path(path)
    try:
        with warnings.catch_warnings():
            # an empty file is a window without samples, handled downstream
            warnings.simplefilter("ignore", UserWarning)
            data = np.loadtxt(
                str(path), comments=("#", "@"), usecols=range(ndim + 1), ndmin=2,
            )
    except OSError as exc:
        raise InputFormatError(f"Failed to read sample data from {path}. {exc}") from exc
    except (ValueError, IndexError) as exc:
        raise InputFormatError(f"{path}: Failed to read datapoint. {exc}") from exc
    if data.size == 0:
        return np.empty(0), np.empty((0, ndim))
    return data[:, 0].copy(), data[:, 1:].copy()


def read_windows(metadata_file: PathLike, ndim: int, verbose: bool = False) -> List[Window]:
    """Read all windows listed in a metadata file."""
    windows = []
    for entry in read_metadata(metadata_file, ndim):
        times, coords = read_timeseries(entry.path, ndim)
        windows.append(
            Window(entry.center, entry.force_constants, coords, times=times, name=str(entry.path))
        )
        if verbose:
            print(f"{entry.path}, {len(times)} samples read.")
    return windows


def _fmt(value: float) -> str:
    return f"{value:.6f}"


def write_results(path: PathLike, surface: ResultSurface) -> None:
    """Write a surface as tab separated text, one bin per line.

    Bins without data are written with ``nan`` values.
    """
    D = surface.space.ndim
    header = [f"x_{d + 1}" for d in range(D)] + ["Free Energy", "+/-", "Probability", "+/-"]
    lines = ["#" + "\t".join(header)]
    for rec in surface.records():
        cols = [_fmt(x) for x in rec.coordinate]
        cols += [
            _fmt(rec.free_energy), _fmt(rec.free_energy_error),
            _fmt(rec.probability), _fmt(rec.probability_error),
        ]
        lines.append("\t".join(cols))
    Path(path).write_text("\n".join(lines) + "\n")


def read_results(path: PathLike) -> np.ndarray:
    """Load a file written by :func:`write_results` as an ``(M, D + 4)`` array."""
    return np.loadtxt(str(path), comments="#", ndmin=2)
