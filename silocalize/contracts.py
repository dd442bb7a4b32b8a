import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import LocalizationError

EventId = Union[str, int]

BRANCHES = ("single", "+", "-")
TABLE_FIELDS = ("id", "x", "y", "z", "error", "eq")


@dataclass(frozen=True)
class Receiver:
    id: str
    xyz: Tuple[float, float, float]  # метры

    def __post_init__(self):
        if len(self.xyz) != 3:
            raise ValueError(f"receiver {self.id!r}: expected (x, y, z), got {self.xyz!r}")
        object.__setattr__(self, "xyz", tuple(float(v) for v in self.xyz))
        if not all(math.isfinite(v) for v in self.xyz):
            raise ValueError(f"receiver {self.id!r}: non-finite coordinate {self.xyz!r}")


@dataclass(frozen=True)
class ReceiverArray:
    """
    Упорядоченный набор гидрофонов. Порядок важен: опорным считается
    первый в этом порядке с известным временем прихода.
    """
    receivers: Tuple[Receiver, ...]

    def __post_init__(self):
        object.__setattr__(self, "receivers", tuple(self.receivers))
        if len(self.receivers) < 4:
            raise ValueError(f"need at least 4 receivers, got {len(self.receivers)}")
        ids = [r.id for r in self.receivers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate receiver ids: {ids}")
        pos = self.positions
        for i in range(len(pos)):
            for j in range(i + 1, len(pos)):
                if np.allclose(pos[i], pos[j], rtol=0.0, atol=1e-12):
                    raise ValueError(f"receivers {ids[i]!r} and {ids[j]!r} coincide")

    @classmethod
    def from_positions(cls, positions, ids: Optional[Sequence[str]] = None) -> "ReceiverArray":
        positions = np.asarray(positions, dtype=np.float64)
        if positions.ndim != 2 or positions.shape[1] != 3:
            raise ValueError(f"expected an N x 3 array of positions, got shape {positions.shape}")
        if ids is None:
            ids = [f"H{i + 1}" for i in range(len(positions))]
        return cls(tuple(Receiver(id=str(k), xyz=tuple(p)) for k, p in zip(ids, positions)))

    def __len__(self) -> int:
        return len(self.receivers)

    def __iter__(self) -> Iterator[Receiver]:
        return iter(self.receivers)

    @property
    def ids(self) -> List[str]:
        return [r.id for r in self.receivers]

    @property
    def positions(self) -> np.ndarray:
        """Координаты всех приёмников, массив N x 3 (копия)."""
        return np.array([r.xyz for r in self.receivers], dtype=np.float64)

    def index(self, receiver_id: str) -> int:
        for i, r in enumerate(self.receivers):
            if r.id == receiver_id:
                return i
        raise KeyError(receiver_id)

    def plane(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Главные оси облака приёмников (SVD): возвращает (сингулярные числа, оси 3x3).
        Последняя ось: нормаль к плоскости наилучшего приближения.
        """
        pos = self.positions
        centered = pos - pos.mean(axis=0)
        _, s, vt = np.linalg.svd(centered)
        return s, vt

    def is_coplanar(self, tol: float = 1e-6) -> bool:
        # относительный порог: размер массива может быть и 10 м, и 10 км
        s, _ = self.plane()
        return bool(s[-1] <= tol * max(s[0], 1e-300))


@dataclass(frozen=True)
class DetectionEvent:
    # одно время прихода (секунды) на каждый приёмник, в порядке массива;
    # пропуск = NaN, не ноль
    id: EventId
    toa: Tuple[float, ...]

    def __post_init__(self):
        object.__setattr__(self, "toa", tuple(float("nan") if v is None else float(v) for v in self.toa))
        if any(math.isinf(v) for v in self.toa):
            raise ValueError(f"event {self.id!r}: infinite arrival time")

    @classmethod
    def from_mapping(cls, id: EventId, times: Mapping[str, Optional[float]],
                     receivers: ReceiverArray) -> "DetectionEvent":
        unknown = set(times) - set(receivers.ids)
        if unknown:
            raise ValueError(f"event {id!r}: unknown receivers {sorted(unknown)}")
        return cls(id=id, toa=tuple(times.get(rid, float("nan")) for rid in receivers.ids))

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(np.asarray(self.toa, dtype=np.float64))

    def check(self, receivers: ReceiverArray) -> None:
        if len(self.toa) != len(receivers):
            raise ValueError(
                f"event {self.id!r}: {len(self.toa)} arrival times for {len(receivers)} receivers")


DetectionTable = Sequence[DetectionEvent]


@dataclass(frozen=True)
class RangeDifferences:
    ref: int                 # индекс опорного приёмника
    others: Tuple[int, ...]  # индексы остальных приёмников с известным временем
    d: np.ndarray            # (t_i - t_ref) * c, метры, в порядке others
    speed: float


@dataclass(frozen=True)
class LocalizationEstimate:
    id: EventId
    x: float
    y: float
    z: float
    error: float  # RMS невязки разностей дальностей, метры
    eq: str       # "single" | "+" | "-"

    def __post_init__(self):
        if self.eq not in BRANCHES:
            raise ValueError(f"unknown branch tag {self.eq!r}")
        if not self.error >= 0.0:
            raise ValueError(f"error must be a non-negative number, got {self.error!r}")

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def row(self) -> Dict[str, object]:
        return {k: getattr(self, k) for k in TABLE_FIELDS}


@dataclass(frozen=True)
class Exclusion:
    id: EventId
    reason: LocalizationError

    @property
    def kind(self) -> str:
        return type(self.reason).__name__


@dataclass
class LocalizationTable:
    """
    Результат localize(): оценки в порядке событий (1-2 строки на событие)
    плюс список событий, которые не удалось локализовать, с причиной.
    """
    estimates: List[LocalizationEstimate] = field(default_factory=list)
    excluded: List[Exclusion] = field(default_factory=list)

    def __iter__(self) -> Iterator[LocalizationEstimate]:
        return iter(self.estimates)

    def __len__(self) -> int:
        return len(self.estimates)

    def __getitem__(self, i):
        return self.estimates[i]

    def rows(self) -> List[Dict[str, object]]:
        return [e.row() for e in self.estimates]

    def for_event(self, id: EventId) -> List[LocalizationEstimate]:
        return [e for e in self.estimates if e.id == id]

    def best(self) -> List[LocalizationEstimate]:
        """По одной оценке на событие: ветка с наименьшей ошибкой."""
        out: Dict[EventId, LocalizationEstimate] = {}
        for e in self.estimates:
            if e.id not in out or e.error < out[e.id].error:
                out[e.id] = e
        return list(out.values())


@dataclass(frozen=True)
class CalibrationResult:
    speed: float       # м/с
    error: float       # средняя ошибка при этой скорости, метры
    converged: bool = True
    iterations: int = 0
    n_events: int = 0  # сколько событий вошло в среднее


@dataclass
class SolverConfig:
    rcond: float = 1e-10             # порог s_min/s_max для вырожденной системы
    discriminant_tol: float = 1e-9   # |disc| <= tol*scale => кратный корень
    coplanar_tol: float = 1e-6
    allow_planar: bool = False       # плоский массив: две зеркальные ветки вместо отказа
    workers: Optional[int] = None    # >1 => пул потоков по событиям
    search_span: float = 0.25        # границы поиска скорости: c0*(1 +- span)
    scan_points: int = 41
