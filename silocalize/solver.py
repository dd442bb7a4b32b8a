import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

import numpy as np

from .contracts import (
    DetectionEvent,
    DetectionTable,
    Exclusion,
    LocalizationEstimate,
    LocalizationTable,
    RangeDifferences,
    ReceiverArray,
    SolverConfig,
)
from .errors import LocalizationError, NoValidSolutionError, SingularSystemError
from .ranges import check_speed, range_differences
from .residual import implied_residuals, rms

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


def _offsets(positions: np.ndarray, rd: RangeDifferences) -> Tuple[np.ndarray, np.ndarray]:
    """
    Переносим начало координат в опорный приёмник: p_i = r_i - r_ref.
    Тогда из |s - r_i| = R + d_i и |s| = R получаем линейное
        2 p_i . s + 2 d_i R = |p_i|^2 - d_i^2
    (квадратичный член |s|^2 сокращается).
    """
    p = positions[list(rd.others)] - positions[rd.ref]
    k = np.sum(p * p, axis=1) - rd.d ** 2
    return p, k


def _rank_deficient(m: np.ndarray, rcond: float) -> bool:
    s = np.linalg.svd(m, compute_uv=False)
    return bool(s[0] == 0.0 or s[-1] <= rcond * s[0])


def _check_rank(m: np.ndarray, rcond: float, what: str) -> None:
    if _rank_deficient(m, rcond):
        s = np.linalg.svd(m, compute_uv=False)
        raise SingularSystemError(
            f"{what}: rank-deficient system (singular values {np.array2string(s, precision=3)}); "
            "receivers coplanar or collinear?")


class _Solver:
    name = ""
    min_differences = 3

    def __init__(self, receivers: ReceiverArray, config: SolverConfig):
        self.receivers = receivers
        self.config = config
        self.positions = receivers.positions

    def _estimate(self, detection: DetectionEvent, rd: RangeDifferences, position: np.ndarray,
                  eq: str) -> LocalizationEstimate:
        err = rms(implied_residuals(position, self.positions, rd))
        x, y, z = (float(v) for v in position)
        return LocalizationEstimate(id=detection.id, x=x, y=y, z=z, error=err, eq=eq)

    def solve(self, detection: DetectionEvent, speed: float) -> List[LocalizationEstimate]:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(n={len(self.receivers)})"


class GeneralSolver(_Solver):
    """
    SI для N >= 5: переопределённая система A [x, y, z, R_ref]^T = b,
    решение по МНК (lstsq). Одна оценка на событие, eq = "single".

    Вырожденной считается только геометрия (rank p < 3). Если столбец d
    линейно зависит от p (например, источник равноудалён от всех
    приёмников, d = 0), R_ref из линейной системы не определяется:
    решения лежат на прямой s = u - R v, а R берётся из |s| = R.
    """
    name = "general"
    min_differences = 4

    def solve(self, detection, speed):
        rd = range_differences(self.receivers, detection, speed, self.min_differences)
        p, k = _offsets(self.positions, rd)
        _check_rank(p, self.config.rcond, f"event {detection.id!r}")
        a = np.hstack([2.0 * p, 2.0 * rd.d[:, None]])
        if _rank_deficient(a, self.config.rcond):
            return [self._solve_on_line(detection, rd, p, k)]

        theta, *_ = np.linalg.lstsq(a, k, rcond=None)
        position = theta[:3] + self.positions[rd.ref]
        logger.debug("event %r: R_ref=%.4f, linear residual=%.3e",
                     detection.id, theta[3], float(np.linalg.norm(a @ theta - k)))
        return [self._estimate(detection, rd, position, "single")]

    def _solve_on_line(self, detection, rd, p, k):
        u, *_ = np.linalg.lstsq(p, 0.5 * k, rcond=None)
        v, *_ = np.linalg.lstsq(p, rd.d, rcond=None)
        roots = _range_roots(detection, u, v, self.config.discriminant_tol)
        origin = self.positions[rd.ref]
        candidates = [self._estimate(detection, rd, origin + u - r * v, "single") for r, _ in roots]
        logger.debug("event %r: range column degenerate, %d candidate(s) on s = u - R v",
                     detection.id, len(candidates))
        return min(candidates, key=lambda e: e.error)


def _range_roots(detection: DetectionEvent, u: np.ndarray, v: np.ndarray,
                 tol: float) -> List[Tuple[float, str]]:
    # |u - R v| = R  =>  (v.v - 1) R^2 - 2 (u.v) R + u.u = 0, только R >= 0
    try:
        roots = _quadratic_roots(float(v @ v) - 1.0, -2.0 * float(u @ v), float(u @ u), tol)
    except NoValidSolutionError as e:
        raise NoValidSolutionError(f"event {detection.id!r}: {e}") from None
    roots = [(r, eq) for r, eq in roots if r >= 0.0]
    if not roots:
        raise NoValidSolutionError(f"event {detection.id!r}: both roots give a negative range")
    return roots


def _quadratic_roots(alpha: float, beta: float, gamma: float, tol: float) -> List[Tuple[float, str]]:
    """
    Корни alpha R^2 + beta R + gamma = 0 с метками ветвей:
    больший корень -> "+", меньший -> "-"; кратный или единственный -> "+".
    Комплексные корни -> NoValidSolutionError.
    """
    if abs(alpha) <= tol * (abs(alpha) + 1.0):
        # |v| = 1: уравнение вырождается в линейное
        if beta == 0.0:
            raise NoValidSolutionError("degenerate quadratic: no root for the reference range")
        return [(-gamma / beta, "+")]

    disc = beta * beta - 4.0 * alpha * gamma
    scale = beta * beta + abs(4.0 * alpha * gamma)
    if disc < -tol * scale:
        raise NoValidSolutionError(f"negative discriminant ({disc:.3e}): no real reference range")
    if disc <= tol * scale:
        return [(-beta / (2.0 * alpha), "+")]

    # устойчивая форма, без вычитания близких чисел
    q = -0.5 * (beta + math.copysign(math.sqrt(disc), beta))
    r1, r2 = q / alpha, gamma / q
    return [(max(r1, r2), "+"), (min(r1, r2), "-")]


class FourReceiverSolver(_Solver):
    """
    Ровно 4 приёмника: 3 уравнения на 4 неизвестных. Выражаем
    s = u - R v, подставляем в |s| = R и решаем квадратное уравнение
    по R_ref. Обе физически допустимые ветки возвращаются всегда.
    """
    name = "four"
    min_differences = 3

    def solve(self, detection, speed):
        rd = range_differences(self.receivers, detection, speed, self.min_differences)
        p, k = _offsets(self.positions, rd)
        _check_rank(p, self.config.rcond, f"event {detection.id!r}")

        u = np.linalg.solve(p, 0.5 * k)
        v = np.linalg.solve(p, rd.d)
        roots = _range_roots(detection, u, v, self.config.discriminant_tol)

        origin = self.positions[rd.ref]
        return [self._estimate(detection, rd, origin + u - r * v, eq) for r, eq in roots]


class PlanarSolver(_Solver):
    """
    Все приёмники в одной плоскости. Смещение источника вдоль нормали
    из линейной системы не определяется: решаем в плоскости (a, b, R_ref),
    затем h = sqrt(R^2 - a^2 - b^2) и возвращаем два зеркальных
    решения: "+" по нормали, "-" против неё.
    """
    name = "planar"
    min_differences = 3

    def __init__(self, receivers, config):
        super().__init__(receivers, config)
        _, axes = receivers.plane()
        normal = axes[2]
        # ориентация нормали детерминирована: наибольшая по модулю компонента > 0
        if normal[np.argmax(np.abs(normal))] < 0:
            normal = -normal
        self.basis = axes[:2]
        self.normal = normal

    def solve(self, detection, speed):
        rd = range_differences(self.receivers, detection, speed, self.min_differences)
        p = self.positions[list(rd.others)] - self.positions[rd.ref]
        q = p @ self.basis.T
        k = np.sum(q * q, axis=1) - rd.d ** 2
        a = np.hstack([2.0 * q, 2.0 * rd.d[:, None]])
        _check_rank(a, self.config.rcond, f"event {detection.id!r}")

        theta, *_ = np.linalg.lstsq(a, k, rcond=None)
        r_ref = float(theta[2])
        if r_ref < 0.0:
            raise NoValidSolutionError(
                f"event {detection.id!r}: negative reference range ({r_ref:.4g} m)")
        h2 = r_ref ** 2 - float(theta[:2] @ theta[:2])
        foot = self.positions[rd.ref] + theta[:2] @ self.basis
        if h2 <= self.config.discriminant_tol * r_ref ** 2:
            return [self._estimate(detection, rd, foot, "+")]
        h = math.sqrt(h2)
        return [self._estimate(detection, rd, foot + h * self.normal, "+"),
                self._estimate(detection, rd, foot - h * self.normal, "-")]


def select_solver(receivers: ReceiverArray, config: Optional[SolverConfig] = None) -> _Solver:
    """Выбор стратегии один раз на вызов, по размеру и геометрии массива."""
    config = config or SolverConfig()
    if config.allow_planar and receivers.is_coplanar(config.coplanar_tol):
        return PlanarSolver(receivers, config)
    if len(receivers) == 4:
        return FourReceiverSolver(receivers, config)
    return GeneralSolver(receivers, config)


def parallel_map(fn: Callable[[T], U], items: Iterable[T], workers: Optional[int] = None) -> List[U]:
    # порядок результатов = порядок входа, независимо от workers
    if workers and workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(fn, items))
    return [fn(it) for it in items]


def try_solve(solver: _Solver, detection: DetectionEvent,
              speed: float) -> Tuple[List[LocalizationEstimate], Optional[LocalizationError]]:
    try:
        return solver.solve(detection, speed), None
    except LocalizationError as e:
        return [], e


def localize(detections: DetectionTable, receivers: ReceiverArray, speed: float,
             config: Optional[SolverConfig] = None) -> LocalizationTable:
    """
    Локализация всех событий таблицы. Ошибка отдельного события
    (InsufficientDataError, SingularSystemError, NoValidSolutionError)
    не прерывает пакет: событие попадает в table.excluded.
    """
    config = config or SolverConfig()
    speed = check_speed(speed)
    detections = list(detections)
    for det in detections:
        det.check(receivers)

    solver = select_solver(receivers, config)
    logger.debug("localize: %d events, %r, c=%.3f", len(detections), solver, speed)
    outcomes = parallel_map(lambda det: try_solve(solver, det, speed), detections, config.workers)

    table = LocalizationTable()
    for det, (estimates, exc) in zip(detections, outcomes):
        if exc is not None:
            logger.warning("event %r excluded: %s: %s", det.id, type(exc).__name__, exc)
            table.excluded.append(Exclusion(id=det.id, reason=exc))
        else:
            table.estimates.extend(estimates)
    return table
