import numpy as np
import pytest

from silocalize.calibration import SpeedObjective, estimate_speed, findc
from silocalize.contracts import SolverConfig
from silocalize.errors import ConvergenceError, NoValidSolutionError
from silocalize.simulate import synthesize_detection, synthesize_table

from conftest import C_WATER


def test_recovers_speed_on_flat_array(flat5):
    det = synthesize_detection(flat5, (5, 5, 2), C_WATER)
    result = estimate_speed(flat5, [det], 1600.0)

    assert result.converged
    assert abs(result.speed - C_WATER) < 1.0
    assert result.error < 1e-3
    assert result.n_events == 1


def test_recovers_speed_on_3d_array(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER, emission_times=[0.0, 3.0, 7.5])
    result = findc(array6, dets, 1400.0)
    assert result.speed == pytest.approx(C_WATER, abs=1.0)
    assert result.n_events == 3


def test_noisy_speed_is_close(array6):
    rng = np.random.default_rng(5)
    src = rng.uniform([2, 2, -10], [18, 18, -2], size=(30, 3))
    dets = synthesize_table(array6, src, C_WATER, noise_s=2e-6, seed=1)
    result = estimate_speed(array6, dets, 1550.0)
    assert result.speed == pytest.approx(C_WATER, abs=15.0)


def test_failing_events_are_skipped(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER)
    dets.append(synthesize_detection(array6, sources[0], C_WATER, id="sparse", missing=["H1", "H2", "H3"]))

    objective = SpeedObjective(array6, dets, SolverConfig())
    value, n_events = objective.evaluate(C_WATER)
    assert n_events == 3
    assert value < 1e-6

    result = estimate_speed(array6, dets, 1600.0)
    assert result.speed == pytest.approx(C_WATER, abs=1.0)
    assert result.n_events == 3


def test_no_usable_events(array6, sources):
    det = synthesize_detection(array6, sources[0], C_WATER, missing=["H1", "H2", "H3"])
    with pytest.raises(NoValidSolutionError):
        estimate_speed(array6, [det], 1500.0)


def test_flat_array_needs_planar_mode(flat5):
    det = synthesize_detection(flat5, (5, 5, 2), C_WATER)
    with pytest.raises(NoValidSolutionError):
        estimate_speed(flat5, [det], 1600.0, config=SolverConfig(allow_planar=False))


def test_iteration_cap(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER)
    with pytest.raises(ConvergenceError) as info:
        estimate_speed(array6, dets, 1600.0, tolerance=1e-9, max_iterations=1)

    result = info.value.result
    assert result is not None
    assert not result.converged
    assert np.isfinite(result.speed) and result.error >= 0


def test_far_initial_guess_moves_search_window(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER)
    result = estimate_speed(array6, dets, 1100.0)

    assert result.converged
    assert result.speed == pytest.approx(C_WATER, abs=1.0)
    assert result.n_events == 3


def test_minimum_on_explicit_bound_is_not_converged(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER)
    with pytest.raises(ConvergenceError, match="upper search bound") as info:
        estimate_speed(array6, dets, 1200.0, bounds=(1000.0, 1300.0))

    result = info.value.result
    assert not result.converged
    assert result.speed == pytest.approx(1300.0)
    assert result.n_events == 3


def test_deterministic(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER, noise_s=1e-6, seed=2)
    assert estimate_speed(array6, dets, 1450.0) == estimate_speed(array6, dets, 1450.0)


def test_threads_do_not_change_result(array6, sources):
    dets = synthesize_table(array6, sources, C_WATER, noise_s=1e-6, seed=4)
    serial = estimate_speed(array6, dets, 1450.0)
    pooled = estimate_speed(array6, dets, 1450.0, config=SolverConfig(allow_planar=True, workers=3))
    assert serial == pooled


@pytest.mark.parametrize("kwargs", [
    {"tolerance": 0.0},
    {"max_iterations": 0},
    {"bounds": (1600.0, 1400.0)},
])
def test_bad_arguments(array6, sources, kwargs):
    dets = synthesize_table(array6, sources, C_WATER)
    with pytest.raises(ValueError):
        estimate_speed(array6, dets, 1500.0, **kwargs)
