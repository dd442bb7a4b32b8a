"""
Синтетические детекции: точные (или зашумлённые) времена прихода от
известных источников. Нужны для тестов, демонстраций и оценки
чувствительности к шуму.
"""
from typing import Iterable, Optional, Sequence

import numpy as np

from .contracts import DetectionEvent, EventId, ReceiverArray
from .ranges import check_speed


def arrival_times(receivers: ReceiverArray, source, speed: float, emission_time: float = 0.0) -> np.ndarray:
    source = np.asarray(source, dtype=np.float64).reshape(3)
    dist = np.linalg.norm(receivers.positions - source, axis=1)
    return emission_time + dist / check_speed(speed)


def synthesize_detection(receivers: ReceiverArray, source, speed: float, id: EventId = 0,
                         emission_time: float = 0.0, noise_s: float = 0.0,
                         rng: Optional[np.random.Generator] = None,
                         missing: Iterable[str] = ()) -> DetectionEvent:
    """
    noise_s: СКО гауссова джиттера времён (секунды);
    missing: id приёмников, у которых время «потеряно» (NaN).
    """
    t = arrival_times(receivers, source, speed, emission_time)
    if noise_s > 0:
        rng = rng if rng is not None else np.random.default_rng()
        t = t + rng.normal(0.0, noise_s, size=t.shape)
    for rid in missing:
        t[receivers.index(rid)] = np.nan
    return DetectionEvent(id=id, toa=tuple(t))


def synthesize_table(receivers: ReceiverArray, sources: Sequence, speed: float, noise_s: float = 0.0,
                     seed: Optional[int] = None, emission_times: Optional[Sequence[float]] = None):
    rng = np.random.default_rng(seed)
    out = []
    for i, src in enumerate(sources):
        t0 = 0.0 if emission_times is None else float(emission_times[i])
        out.append(synthesize_detection(receivers, src, speed, id=i, emission_time=t0,
                                        noise_s=noise_s, rng=rng))
    return out


def jitter_receivers(receivers: ReceiverArray, sigma: float,
                     rng: Optional[np.random.Generator] = None) -> ReceiverArray:
    """Ошибка «съёмки» позиций гидрофонов: гауссов сдвиг каждой координаты."""
    rng = rng if rng is not None else np.random.default_rng()
    pos = receivers.positions + rng.normal(0.0, sigma, size=(len(receivers), 3))
    return ReceiverArray.from_positions(pos, ids=receivers.ids)
