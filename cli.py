import sys, json, logging
from silocalize.contracts import DetectionEvent, Receiver, ReceiverArray, SolverConfig
from silocalize.errors import ConvergenceError, LocalizationError
from silocalize.solver import localize
from silocalize.calibration import estimate_speed

def run(data: dict) -> dict:
    # ожидаем формат:
    # {
    #   "receivers": {"H1":[0,0,-1], "H2":[10,0,-2], ...},   # метры
    #   "detections": [{"id": 1, "toa": {"H1": 0.0102, "H2": null, ...}}, ...],  # секунды, null = пропуск
    #   "c": 1500.0,                                          # м/с (для findc: начальное приближение)
    #   "cfg": {"allow_planar": false, "workers": 4},
    #   "findc": false
    # }
    receivers = ReceiverArray(tuple(Receiver(id=k, xyz=tuple(v)) for k, v in data["receivers"].items()))
    cfg = SolverConfig(**data.get("cfg", {}))
    dets = [DetectionEvent.from_mapping(d["id"], d["toa"], receivers) for d in data["detections"]]
    c = float(data.get("c", 1500.0))

    out = {}
    if data.get("findc"):
        try:
            cal = estimate_speed(receivers, dets, c, config=cfg if "cfg" in data else None)
        except ConvergenceError as e:
            cal = e.result
        out["calibration"] = cal.__dict__
        c = cal.speed

    table = localize(dets, receivers, c, config=cfg)
    out["c"] = c
    out["estimates"] = table.rows()
    out["excluded"] = [{"id": x.id, "error": x.kind, "message": str(x.reason)} for x in table.excluded]
    return out

def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    data = json.load(sys.stdin)
    try:
        out = run(data)
    except (LocalizationError, ValueError, KeyError) as e:
        print(f"[!] {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(out, ensure_ascii=False, indent=2))

if __name__ == "__main__":
    main()
