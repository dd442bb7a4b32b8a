"""
Usage:
  python tools/run_pipeline.py --source "5,5,-2 3,7,-4 12,4,-8" --c_true 1500 --c_guess 1450

Runs the tools end to end: gen_detections -> localize --findc,
and prints the recovered speed and positions as JSON.
"""

import argparse
import csv
import json
import os
import subprocess
import sys
from typing import List, Tuple


THIS_DIR = os.path.dirname(__file__)
PROJ_ROOT = os.path.abspath(os.path.join(THIS_DIR, ".."))


def run(cmd: list[str]) -> Tuple[int, str, str]:
    env = os.environ.copy()
    env.setdefault("PYTHONIOENCODING", "utf-8")
    # silocalize из корня проекта доступен и без установки пакета
    existing_pp = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (PROJ_ROOT + (os.pathsep + existing_pp if existing_pp else ""))
    proc = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace",
                          env=env, cwd=PROJ_ROOT)
    return proc.returncode, proc.stdout or "", proc.stderr or ""


def check(code: int, out: str, err: str) -> None:
    if code != 0:
        print(err or out, file=sys.stderr)
        sys.exit(code)


def run_gen(receivers: str, sources: str, c: float, noise_us: float, seed: int, out_csv: str) -> None:
    cmd = [
        sys.executable, os.path.join(THIS_DIR, "gen_detections.py"),
        "--receivers", receivers,
        "--sources", sources,
        "--c", str(c),
        "--noise_us", str(noise_us),
        "--seed", str(seed),
        "--out", out_csv,
    ]
    code, out, err = run(cmd)
    check(code, out, err)
    print(out.strip())


def run_localize(receivers: str, det_csv: str, c_guess: float, out_csv: str) -> str:
    cmd = [
        sys.executable, os.path.join(THIS_DIR, "localize.py"),
        "--receivers", receivers,
        "--detections", det_csv,
        "--c", str(c_guess),
        "--findc",
        "--out", out_csv,
    ]
    code, out, err = run(cmd)
    check(code, out, err)
    return err


def parse_speed(log: str) -> float:
    for line in log.splitlines():
        if line.startswith("[OK] c = "):
            return float(line.split()[3])
    print("[!] Could not parse calibrated speed from localize output", file=sys.stderr)
    sys.exit(2)


def read_rows(path: str) -> List[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def main() -> None:
    ap = argparse.ArgumentParser(description="Run the pipeline: synthetic TOA -> speed calibration -> localization")
    ap.add_argument("--receivers", default="H1:0,0,-1 H2:20,0,-3 H3:0,20,-2 H4:20,20,-6 H5:10,10,-12 H6:10,0,-8",
                    help="Hydrophone geometry, e.g. 'H1:0,0,-1 H2:20,0,-3 ...'")
    ap.add_argument("--source", default="8,12,-5 15,5,-3 4,4,-9", help="True source positions 'x,y,z x,y,z ...'")
    ap.add_argument("--c_true", type=float, default=1500.0)
    ap.add_argument("--c_guess", type=float, default=1450.0)
    ap.add_argument("--noise_us", type=float, default=0.0)
    ap.add_argument("--seed", type=int, default=0)
    ap.add_argument("--work", default=os.path.join(THIS_DIR, "_work"), help="Working directory for outputs")
    args = ap.parse_args()

    os.makedirs(args.work, exist_ok=True)
    det_csv = os.path.join(args.work, "detections.csv")
    est_csv = os.path.join(args.work, "estimates.csv")

    print("[1/2] Generating detections...")
    run_gen(args.receivers, args.source, args.c_true, args.noise_us, args.seed, det_csv)

    print("[2/2] Calibrating speed and localizing...")
    log = run_localize(args.receivers, det_csv, args.c_guess, est_csv)

    final = {
        "c_true": args.c_true,
        "c_guess": args.c_guess,
        "c_est": parse_speed(log),
        "estimates": read_rows(est_csv),
        "artifacts": {"detections": det_csv, "estimates": est_csv},
    }
    print(json.dumps(final, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
