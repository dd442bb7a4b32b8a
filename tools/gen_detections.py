"""
Usage:
  python tools/gen_detections.py --receivers "A:0,0,-1 B:10,0,-2 C:0,10,-1 D:10,10,-3 E:5,5,-6" \
      --sources "5,5,-2 3,7,-4" --c 1500 --noise_us 20 --out detections.csv

Writes a detection table (id + one TOA column per receiver, seconds) for
known sources. Useful for checking localization and --findc end to end.
"""

import argparse
import sys

from silocalize.simulate import synthesize_table
from silocalize.tables import parse_receivers, write_detections


def parse_sources(s: str):
    # format: "x,y,z x,y,z ..."
    return [tuple(float(v) for v in token.split(",")) for token in s.strip().split()]


def main() -> None:
    ap = argparse.ArgumentParser(description="Generate a synthetic hydrophone TOA table")
    ap.add_argument("--receivers", required=True, help="e.g. 'A:0,0,-1 B:10,0,-2 ...'")
    ap.add_argument("--sources", required=True, help="e.g. '5,5,-2 3,7,-4'")
    ap.add_argument("--c", type=float, default=1500.0, help="true propagation speed m/s (default 1500)")
    ap.add_argument("--noise_us", type=float, default=0.0, help="TOA jitter std, microseconds")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--out", default=None, help="output CSV (default: stdout)")
    args = ap.parse_args()

    receivers = parse_receivers(args.receivers)
    sources = parse_sources(args.sources)
    dets = synthesize_table(receivers, sources, args.c, noise_s=args.noise_us * 1e-6, seed=args.seed)

    write_detections(args.out or sys.stdout, dets, receivers)
    if args.out:
        print(f"[OK] Saved {len(dets)} events for {len(receivers)} receivers at c={args.c:.1f} m/s -> {args.out}")


if __name__ == "__main__":
    main()
