"""Command line front end: ``whamgrid -f metadata.dat --min ... --max ... -b ... -T ...``."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .analysis import run_time_slices, run_wham
from .config import WhamConfig
from .exceptions import WhamError
from .io import parse_list, read_windows, write_results

DESCRIPTION = """\
Weighted histogram analysis method (WHAM) for umbrella sampling in one or
more dimensions at constant temperature.

Metadata file format:
    /path/to/timeseries_file1  x_1 ... x_N  fc_1 ... fc_N
The path is relative to the metadata file, followed by the bias position in
N dimensions and the force constant in each dimension.

Timeseries file format:
    time  x_1 ... x_N
"""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="whamgrid",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-f", "--file", dest="metadata", required=True,
                   help="Path to the metadata file.")
    p.add_argument("--min", dest="hist_min", required=True,
                   help='Histogram minima, comma separated. Accepts "pi".')
    p.add_argument("--max", dest="hist_max", required=True,
                   help='Histogram maxima, comma separated. Accepts "pi".')
    p.add_argument("-b", "--bins", required=True,
                   help="Number of histogram bins, comma separated.")
    p.add_argument("-T", "--temperature", type=float, required=True,
                   help="WHAM temperature in Kelvin.")
    p.add_argument("-t", "--tolerance", type=float, default=1e-6,
                   help="Stop when max |F_new - F_old| < tolerance (default 1e-6).")
    p.add_argument("-i", "--iterations", type=int, default=100_000,
                   help="Maximum number of WHAM iterations (default 100000).")
    p.add_argument("-c", "--cyclic", action="store_true",
                   help="Periodic reaction coordinates.")
    p.add_argument("-o", "--output", default="wham.out",
                   help="Free energy output file (default wham.out).")
    p.add_argument("--bt", dest="bootstrap", type=int, default=0,
                   help="Number of Bayesian bootstrap runs for error analysis (default 0).")
    p.add_argument("--seed", type=int, default=None,
                   help="Random seed for bootstrapping.")
    p.add_argument("--start", type=float, default=0.0,
                   help="Skip samples with a time smaller than this value.")
    p.add_argument("--end", type=float, default=1e20,
                   help="Skip samples with a time larger than this value.")
    p.add_argument("-g", "--uncorr", action="store_true",
                   help="Remove correlated samples based on the statistical inefficiency.")
    p.add_argument("--convdt", type=float, default=None,
                   help="Run WHAM on cumulative time slices of this width and write one "
                        "output file per slice.")
    p.add_argument("--ignore_empty", action="store_true",
                   help="Do not fail if histogram bins are empty.")
    p.add_argument("-j", "--workers", type=int, default=1,
                   help="Number of worker threads (default 1).")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose output.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def config_from_args(args: argparse.Namespace) -> WhamConfig:
    return WhamConfig(
        hist_min=parse_list(args.hist_min),
        hist_max=parse_list(args.hist_max),
        num_bins=parse_list(args.bins, int),
        temperature=args.temperature,
        cyclic=args.cyclic,
        tolerance=args.tolerance,
        max_iter=args.iterations,
        uncorr=args.uncorr,
        n_bootstrap=args.bootstrap,
        seed=args.seed,
        start=args.start,
        end=args.end,
        ignore_empty=args.ignore_empty,
        n_workers=args.workers,
        verbose=args.verbose,
    )


def _slice_output(output: str, start: float, end: float) -> Path:
    path = Path(output)
    return path.with_name(f"{path.stem}_{start:g}-{end:g}{path.suffix}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = config_from_args(args)
        if cfg.verbose:
            print(f"Supplied WHAM options: {cfg}")
            print("Reading input files.")
        windows = read_windows(args.metadata, cfg.ndim, verbose=cfg.verbose)

        if args.convdt is not None:
            for (start, end), surface in run_time_slices(windows, cfg, args.convdt):
                out = _slice_output(args.output, start, end)
                write_results(out, surface)
                print(f"Slice {start:g}-{end:g}: written to {out}")
        else:
            surface = run_wham(windows, cfg)
            write_results(args.output, surface)
            if cfg.verbose:
                print(f"Finished. Free energy written to {args.output}")
    except WhamError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
