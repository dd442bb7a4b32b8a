"""
Метрика невязки оценки: насколько разности дальностей, которые даёт
найденная позиция, расходятся с измеренными (c * разность времён).

Единицы: метры, RMS по всем приёмникам с известным временем, кроме
опорного. Одна и та же метрика для общего, 4-приёмникового и плоского
решателей и для калибровки скорости.
"""
from typing import Union

import numpy as np

from .contracts import DetectionEvent, LocalizationEstimate, RangeDifferences, ReceiverArray
from .ranges import range_differences

PositionLike = Union[LocalizationEstimate, np.ndarray, tuple, list]


def _as_position(p: PositionLike) -> np.ndarray:
    if isinstance(p, LocalizationEstimate):
        return p.position
    pos = np.asarray(p, dtype=np.float64).reshape(-1)
    if pos.shape != (3,):
        raise ValueError(f"expected a 3D position, got {p!r}")
    return pos


def implied_residuals(position: np.ndarray, positions: np.ndarray, rd: RangeDifferences) -> np.ndarray:
    # (|s - r_i| - |s - r_ref|) - d_i
    dist = np.linalg.norm(positions - position, axis=1)
    return (dist[list(rd.others)] - dist[rd.ref]) - rd.d


def rms(residuals: np.ndarray) -> float:
    return float(np.sqrt(np.mean(np.square(residuals))))


def range_residuals(estimate: PositionLike, detection: DetectionEvent, receivers: ReceiverArray,
                    speed: float) -> np.ndarray:
    """Невязки по каждому приёмнику (метры); NaN у опорного и у пропусков."""
    rd = range_differences(receivers, detection, speed, min_differences=1)
    out = np.full(len(receivers), np.nan)
    out[list(rd.others)] = implied_residuals(_as_position(estimate), receivers.positions, rd)
    return out


def error(estimate: PositionLike, detection: DetectionEvent, receivers: ReceiverArray,
          speed: float) -> float:
    rd = range_differences(receivers, detection, speed, min_differences=1)
    return rms(implied_residuals(_as_position(estimate), receivers.positions, rd))
