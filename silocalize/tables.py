"""
CSV-таблицы: приёмники (id,x,y,z), детекции (id + колонка на каждый
приёмник, пусто/NA/nan = пропуск) и результаты (id,x,y,z,error,eq).
"""
import csv
import math
import os
from contextlib import nullcontext
from typing import Iterable, List, TextIO, Union

from .contracts import TABLE_FIELDS, DetectionEvent, LocalizationEstimate, Receiver, ReceiverArray

MISSING = {"", "na", "nan", "null", "none"}

PathOrFile = Union[str, os.PathLike, TextIO]


def _open(src: PathOrFile, mode: str = "r"):
    if isinstance(src, (str, os.PathLike)):
        return open(src, mode, newline="", encoding="utf-8")
    return nullcontext(src)  # чужой файловый объект не закрываем


def parse_receivers(s: str) -> ReceiverArray:
    # format: "A:0,0,0 B:10,0,-2 C:0,10,-1 D:10,10,-3"
    out: List[Receiver] = []
    for token in s.strip().split():
        rid, coords = token.split(":", 1)
        xyz = [float(v) for v in coords.split(",")]
        if len(xyz) != 3:
            raise ValueError(f"receiver {rid!r}: expected x,y,z, got {coords!r}")
        out.append(Receiver(id=rid, xyz=tuple(xyz)))
    return ReceiverArray(tuple(out))


def read_receivers(src: PathOrFile) -> ReceiverArray:
    with _open(src) as f:
        rows = list(csv.DictReader(f))
    try:
        return ReceiverArray(tuple(
            Receiver(id=r["id"].strip(), xyz=(float(r["x"]), float(r["y"]), float(r["z"])))
            for r in rows))
    except KeyError as e:
        raise ValueError(f"receiver table is missing column {e}") from None


def _time(cell: str) -> float:
    cell = (cell or "").strip()
    return math.nan if cell.lower() in MISSING else float(cell)


def read_detections(src: PathOrFile, receivers: ReceiverArray) -> List[DetectionEvent]:
    with _open(src) as f:
        reader = csv.DictReader(f)
        cols = reader.fieldnames or []
        if "id" not in cols:
            raise ValueError("detection table has no 'id' column")
        absent = [rid for rid in receivers.ids if rid not in cols]
        if absent:
            raise ValueError(f"detection table has no columns for receivers {absent}")
        return [DetectionEvent(id=row["id"], toa=tuple(_time(row[rid]) for rid in receivers.ids))
                for row in reader]


def write_detections(dst: PathOrFile, detections: Iterable[DetectionEvent], receivers: ReceiverArray) -> None:
    with _open(dst, "w") as f:
        w = csv.writer(f)
        w.writerow(["id", *receivers.ids])
        for det in detections:
            w.writerow([det.id, *("NA" if math.isnan(t) else repr(t) for t in det.toa)])


def write_estimates(dst: PathOrFile, estimates: Iterable[LocalizationEstimate]) -> None:
    with _open(dst, "w") as f:
        w = csv.DictWriter(f, fieldnames=list(TABLE_FIELDS))
        w.writeheader()
        for e in estimates:
            w.writerow(e.row())

