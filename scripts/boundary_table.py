#!/usr/bin/env python3
"""Developer script: tabulate double exercise boundaries and prices.

Usage
-----
    python scripts/boundary_table.py
    python scripts/boundary_table.py --rate -0.005 --dividend -0.01 --vol 0.08 \
        --maturities 1 5 10 15 --output boundaries.csv
    python scripts/boundary_table.py --spots 60 65 80 100 --output prices.json

Output
------
    One row per maturity: T, upper, lower, crossing, passes, converged,
    and (with --spots) the American price at each spot.  Written as CSV or
    JSON when --output is given, printed otherwise.
"""

from __future__ import annotations
import argparse
import csv
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from dbamerican.core import ContractParameters, CALL, PUT
from dbamerican.errors import DoubleBoundaryError
from dbamerican.pricing import compute_boundaries, price_sweep
from dbamerican.settings import SolverSettings


def _row(params: ContractParameters, spots: list[float], settings: SolverSettings) -> dict:
    """Boundaries (and optional prices) for one maturity."""
    res = compute_boundaries(params, settings=settings)
    row = {
        "T": params.maturity,
        "regime": res.regime.value,
        "upper": res.upper.at_valuation if res.upper is not None else None,
        "lower": res.lower.at_valuation if res.lower is not None else None,
        "crossing": res.crossing_time,
        "passes": res.iterations,
        "converged": res.converged,
    }
    for spot, r in zip(spots, price_sweep(params, spots, settings=settings)):
        row[f"px@{spot:g}"] = r.price
    return row


def main():
    parser = argparse.ArgumentParser(
        description="Tabulate double exercise boundaries under negative rates."
    )
    parser.add_argument("--strike", type=float, default=100.0)
    parser.add_argument("--rate", type=float, default=-0.005)
    parser.add_argument("--dividend", type=float, default=-0.01)
    parser.add_argument("--vol", type=float, default=0.08)
    parser.add_argument("--kind", choices=[CALL, PUT], default=PUT)
    parser.add_argument("--maturities", type=float, nargs="+", default=[1.0, 5.0, 10.0, 15.0])
    parser.add_argument("--spots", type=float, nargs="*", default=[])
    parser.add_argument("--points", type=int, default=50, help="Collocation points")
    parser.add_argument("--output", help="Output path (.csv or .json)")
    parser.add_argument("--verbose", action="store_true", help="Show solver debug log")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(name)s %(levelname)s %(message)s")

    settings = SolverSettings(collocation_points=args.points)
    results = []
    for T in args.maturities:
        try:
            params = ContractParameters(
                spot=args.strike, strike=args.strike, maturity=T, rate=args.rate,
                dividend=args.dividend, volatility=args.vol, kind=args.kind,
            )
            results.append(_row(params, args.spots, settings))
        except DoubleBoundaryError as e:
            print(f"  T={T}: ERROR: {e}")
            results.append({"T": T, "upper": None, "lower": None, "error": str(e)})

    if not args.output:
        for r in results:
            print("  ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                            for k, v in r.items()))
        return

    output_path = Path(args.output)
    if output_path.suffix == ".json":
        with open(output_path, "w") as f:
            json.dump(results, f, indent=2, default=str)
    else:
        fieldnames = []
        for r in results:
            for k in r:
                if k not in fieldnames:
                    fieldnames.append(k)
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(results)

    print(f"Results written to {args.output}")


if __name__ == "__main__":
    main()
