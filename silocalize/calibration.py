import logging
import math
from typing import Optional, Tuple

import numpy as np
from scipy.optimize import minimize_scalar

from .contracts import CalibrationResult, DetectionTable, ReceiverArray, SolverConfig
from .errors import ConvergenceError, NoValidSolutionError
from .ranges import check_speed
from .solver import parallel_map, select_solver, try_solve

logger = logging.getLogger(__name__)

_MAX_WIDENINGS = 8


class SpeedObjective:
    """
    Средняя (по событиям) ошибка как функция скорости звука.
    Для каждого события берётся ветка с наименьшей ошибкой; события,
    где решатель падает, в среднее не входят. Если не вошло ни одно, возвращаем inf.
    """

    def __init__(self, receivers: ReceiverArray, detections: DetectionTable, config: SolverConfig):
        self.detections = list(detections)
        for det in self.detections:
            det.check(receivers)
        self.config = config
        self.solver = select_solver(receivers, config)
        self.calls = 0

    def evaluate(self, speed: float) -> Tuple[float, int]:
        self.calls += 1
        outcomes = parallel_map(lambda det: try_solve(self.solver, det, speed),
                                self.detections, self.config.workers)
        errors = [min(e.error for e in estimates) for estimates, exc in outcomes if exc is None]
        skipped = len(self.detections) - len(errors)
        if skipped:
            logger.debug("c=%.4f: %d of %d events skipped", speed, skipped, len(self.detections))
        if not errors:
            return math.inf, 0
        return float(np.mean(errors)), len(errors)

    def __call__(self, speed: float) -> float:
        return self.evaluate(speed)[0]


def estimate_speed(receivers: ReceiverArray, detections: DetectionTable, initial_speed: float,
                   tolerance: float = 1e-3, max_iterations: int = 500,
                   bounds: Optional[Tuple[float, float]] = None,
                   config: Optional[SolverConfig] = None) -> CalibrationResult:
    """
    Подбор скорости распространения по минимуму средней ошибки.

    Сначала грубый равномерный перебор по `bounds` (по умолчанию
    initial_speed * (1 -+ search_span)), затем ограниченный метод Брента
    (scipy minimize_scalar, method="bounded") между соседями лучшей точки.
    tolerance: абсолютная точность по скорости (м/с).

    Для плоского массива по умолчанию включается allow_planar: зеркальные
    решения дают одинаковую ошибку, скорость при этом определяется.
    """
    initial_speed = check_speed(initial_speed)
    if tolerance <= 0 or max_iterations < 1:
        raise ValueError("tolerance must be > 0 and max_iterations >= 1")
    config = config or SolverConfig(allow_planar=True)
    default_bounds = bounds is None
    if default_bounds:
        bounds = (initial_speed * (1.0 - config.search_span), initial_speed * (1.0 + config.search_span))
    lo, hi = (check_speed(b) for b in bounds)
    if not lo < hi:
        raise ValueError(f"invalid speed bounds {bounds!r}")

    objective = SpeedObjective(receivers, detections, config)
    n_points = max(config.scan_points, 3)

    # если минимум на краю интервала по умолчанию, сдвигаем окно к нему
    for widening in range(_MAX_WIDENINGS + 1):
        grid = np.linspace(lo, hi, n_points)
        values = np.array([objective(c) for c in grid])
        if not np.isfinite(values).any():
            raise NoValidSolutionError(
                f"no detection could be localized for speeds in [{lo:.3f}, {hi:.3f}]")
        i = int(np.argmin(values))
        if 0 < i < n_points - 1:
            break
        if not default_bounds or widening == _MAX_WIDENINGS:
            speed, err = float(grid[i]), float(values[i])
            _, n_events = objective.evaluate(speed)
            result = CalibrationResult(speed=speed, error=err, converged=False,
                                       iterations=0, n_events=n_events)
            side = "lower" if i == 0 else "upper"
            logger.warning("speed calibration: minimum at the %s search bound c=%.4f", side, speed)
            raise ConvergenceError(
                f"speed calibration hit the {side} search bound c={speed:.4f} "
                f"(searched [{lo:.3f}, {hi:.3f}]); widen the bounds or improve the initial guess",
                result=result)
        edge = float(grid[i])
        lo, hi = edge * (1.0 - config.search_span), edge * (1.0 + config.search_span)
        logger.debug("speed scan: minimum at the bound c=%.3f, moving window to [%.3f, %.3f]",
                     edge, lo, hi)

    a, b = grid[i - 1], grid[i + 1]
    logger.debug("speed scan: best c=%.3f (mean error %.4g), refining in [%.3f, %.3f]",
                 grid[i], values[i], a, b)

    res = minimize_scalar(objective, bounds=(a, b), method="bounded",
                          options={"xatol": tolerance, "maxiter": max_iterations})
    speed, err = float(res.x), float(res.fun)
    if values[i] < err:
        # Брент не опускается ниже точки сетки на краю интервала
        speed, err = float(grid[i]), float(values[i])
    _, n_events = objective.evaluate(speed)
    if n_events == 0:
        raise NoValidSolutionError(f"no detection could be localized at c={speed:.3f}")

    result = CalibrationResult(speed=speed, error=err, converged=bool(res.success),
                               iterations=int(res.nit), n_events=n_events)
    if not res.success:
        logger.warning("speed calibration stopped after %d iterations: %s", res.nit, res.message)
        raise ConvergenceError(
            f"speed calibration did not converge in {max_iterations} iterations "
            f"(best c={speed:.4f}, error={err:.4g})", result=result)

    logger.info("calibrated speed c=%.4f m/s, mean error %.4g m over %d events (%d evaluations)",
                speed, err, n_events, objective.calls)
    return result


def findc(receivers: ReceiverArray, detections: DetectionTable, initial_speed: float,
          **kwargs) -> CalibrationResult:
    return estimate_speed(receivers, detections, initial_speed, **kwargs)

