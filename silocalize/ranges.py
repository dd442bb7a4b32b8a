import logging
import math

import numpy as np

from .contracts import DetectionEvent, RangeDifferences, ReceiverArray
from .errors import InsufficientDataError

logger = logging.getLogger(__name__)


def check_speed(speed: float) -> float:
    speed = float(speed)
    if not math.isfinite(speed) or speed <= 0.0:
        raise ValueError(f"propagation speed must be a positive finite number, got {speed!r}")
    return speed


def range_differences(receivers: ReceiverArray, detection: DetectionEvent, speed: float,
                      min_differences: int = 3) -> RangeDifferences:
    """
    Разности дальностей относительно опорного приёмника.
    Опорный приёмник: первый по порядку массива с известным временем прихода;
    для остальных известных: d_i = (t_i - t_ref) * c (метры).
    Пропуски (NaN) в систему не попадают, нулём не подменяются.
    """
    speed = check_speed(speed)
    detection.check(receivers)

    toa = np.asarray(detection.toa, dtype=np.float64)
    valid = np.flatnonzero(~np.isnan(toa))
    if valid.size == 0:
        raise InsufficientDataError(f"event {detection.id!r}: no arrival times")

    ref = int(valid[0])
    others = tuple(int(i) for i in valid[1:])
    if len(others) < min_differences:
        raise InsufficientDataError(
            f"event {detection.id!r}: {len(others)} range differences, need {min_differences}")

    d = (toa[list(others)] - toa[ref]) * speed
    logger.debug("event %r: ref=%s, %d differences", detection.id, receivers.ids[ref], len(others))
    return RangeDifferences(ref=ref, others=others, d=d, speed=speed)
