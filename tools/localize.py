"""
Usage:
  python tools/localize.py --receivers receivers.csv --detections detections.csv --c 1500
  python tools/localize.py --receivers "A:0,0,-1 B:10,0,-2 C:0,10,-1 D:10,10,-3 E:5,5,-6" \
      --detections detections.csv --c 1450 --findc --out estimates.csv

Receivers: CSV with id,x,y,z (or the inline "ID:x,y,z ..." form).
Detections: CSV with an id column plus one arrival-time column per receiver id
(seconds; empty / NA = missing).
Writes id,x,y,z,error,eq to --out (default: stdout).
"""

import argparse
import logging
import os
import sys

from silocalize.calibration import estimate_speed
from silocalize.contracts import SolverConfig
from silocalize.errors import ConvergenceError, LocalizationError
from silocalize.solver import localize
from silocalize.tables import parse_receivers, read_detections, read_receivers, write_estimates


def load_receivers(arg: str):
    if os.path.exists(arg):
        return read_receivers(arg)
    return parse_receivers(arg)


def main() -> None:
    ap = argparse.ArgumentParser(description="Localize acoustic sources from hydrophone TOA tables (spherical interpolation)")
    ap.add_argument("--receivers", required=True, help="CSV path or inline 'A:0,0,0 B:10,0,-2 ...'")
    ap.add_argument("--detections", required=True, help="CSV with id + one TOA column per receiver")
    ap.add_argument("--c", type=float, default=1500.0, help="propagation speed m/s (initial guess with --findc)")
    ap.add_argument("--findc", action="store_true", help="calibrate the speed before localizing")
    ap.add_argument("--tol", type=float, default=1e-3, help="speed tolerance for --findc, m/s")
    ap.add_argument("--max_iter", type=int, default=500)
    ap.add_argument("--planar", action="store_true", help="coplanar array: return both mirror solutions")
    ap.add_argument("--workers", type=int, default=None, help="thread pool size over events")
    ap.add_argument("--out", default=None, help="output CSV (default: stdout)")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    receivers = load_receivers(args.receivers)
    dets = read_detections(args.detections, receivers)
    cfg = SolverConfig(allow_planar=args.planar, workers=args.workers)
    c = args.c

    if args.findc:
        try:
            cal = estimate_speed(receivers, dets, c, tolerance=args.tol, max_iterations=args.max_iter,
                                 config=SolverConfig(allow_planar=True, workers=args.workers))
        except ConvergenceError as e:
            print(f"[!] {e}", file=sys.stderr)
            cal = e.result
        except LocalizationError as e:
            print(f"[!] speed calibration failed: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"[OK] c = {cal.speed:.3f} m/s  mean error = {cal.error:.4g} m  events = {cal.n_events}",
              file=sys.stderr)
        c = cal.speed

    table = localize(dets, receivers, c, config=cfg)
    if args.out:
        write_estimates(args.out, table)
    else:
        write_estimates(sys.stdout, table)
    print(f"[OK] {len(dets)} events -> {len(table)} estimates, {len(table.excluded)} excluded", file=sys.stderr)


if __name__ == "__main__":
    main()
