import numpy as np
import pytest

from cuensemble.batchsolving.time_grid import (
    ADAPTIVE_EVERYSTEP_MESSAGE,
    TimeGrid,
    fixed_grid_length,
    plan_length,
)


@pytest.mark.parametrize(
    "t0, tf, dt, expected",
    [
        (0.0, 1.0, 0.1, 11),
        (0.0, 1.0, 0.3, 5),
        (0.0, 1.0, 1.0, 2),
        (0.0, 1.0, 2.0, 2),
        (1.0, 2.0, 0.25, 5),
        (0.0, 10.0, 0.01, 1001),
    ],
)
def test_fixed_grid_length(t0, tf, dt, expected):
    assert fixed_grid_length(t0, tf, dt) == expected


def test_everystep_fixed_grid():
    grid = TimeGrid.build((0.0, 1.0), 0.1)
    assert grid.n_saves == 11
    assert grid.n_stops == 10
    assert grid.save_start
    np.testing.assert_allclose(grid.save_times, np.linspace(0.0, 1.0, 11))
    assert grid.stops[-1] == 1.0


def test_short_final_step_lands_on_tf():
    grid = TimeGrid.build((0.0, 1.0), 0.3)
    np.testing.assert_allclose(grid.stops, [0.3, 0.6, 0.9, 1.0])
    assert grid.n_saves == 5


def test_start_and_end_only():
    grid = TimeGrid.build((0.0, 1.0), 0.1, save_everystep=False)
    assert grid.n_saves == 2
    assert grid.n_stops == 10
    np.testing.assert_allclose(grid.save_times, [0.0, 1.0])


def test_saveat_points():
    saveat = [0.0, 0.25, 0.5, 1.0]
    grid = TimeGrid.build((0.0, 1.0), 0.1, saveat=saveat)
    assert grid.n_saves == len(saveat)
    np.testing.assert_allclose(grid.save_times, saveat)


def test_saveat_without_start():
    grid = TimeGrid.build((0.0, 1.0), 0.1, saveat=[0.5, 1.0])
    assert not grid.save_start
    np.testing.assert_allclose(grid.save_times, [0.5, 1.0])


def test_saveat_off_grid_is_added_to_stops():
    grid = TimeGrid.build((0.0, 1.0), 0.1, saveat=[0.05, 1.0])
    assert np.any(np.isclose(grid.stops, 0.05))
    np.testing.assert_allclose(grid.save_times, [0.05, 1.0])


def test_scalar_saveat_is_an_interval():
    grid = TimeGrid.build((0.0, 1.0), 0.01, saveat=0.25)
    np.testing.assert_allclose(
        grid.save_times, [0.0, 0.25, 0.5, 0.75, 1.0]
    )


def test_tstops_on_grid_add_nothing():
    grid = TimeGrid.build((0.0, 1.0), 0.1, tstops=[0.5])
    assert grid.n_saves == 11


def test_tstops_off_grid_add_entries():
    grid = TimeGrid.build((0.0, 1.0), 0.1, tstops=[0.55, 0.75])
    assert grid.n_saves == 13
    assert np.any(np.isclose(grid.save_times, 0.55))


def test_adaptive_plan_holds_only_special_points():
    grid = TimeGrid.build(
        (0.0, 2.0), 0.1, saveat=[0.0, 1.0, 2.0], adaptive=True,
        save_everystep=False,
    )
    np.testing.assert_allclose(grid.stops, [1.0, 2.0])
    assert grid.n_saves == 3


def test_adaptive_without_saveat_saves_ends():
    grid = TimeGrid.build(
        (0.0, 2.0), 0.1, adaptive=True, save_everystep=False,
        tstops=[0.5],
    )
    np.testing.assert_allclose(grid.stops, [0.5, 2.0])
    np.testing.assert_allclose(grid.save_times, [0.0, 2.0])


def test_adaptive_everystep_raises():
    with pytest.raises(ValueError) as excinfo:
        TimeGrid.build((0.0, 1.0), 0.1, adaptive=True)
    assert str(excinfo.value) == ADAPTIVE_EVERYSTEP_MESSAGE


@pytest.mark.parametrize("dt", [0.0, -0.1])
def test_non_positive_dt_raises(dt):
    with pytest.raises(ValueError, match="dt must be positive"):
        TimeGrid.build((0.0, 1.0), dt)


def test_points_outside_tspan_raise():
    with pytest.raises(ValueError, match="saveat"):
        TimeGrid.build((0.0, 1.0), 0.1, saveat=[0.5, 1.5])
    with pytest.raises(ValueError, match="tstops"):
        TimeGrid.build((0.0, 1.0), 0.1, tstops=[-0.5])


def test_close_tstops_are_merged():
    grid = TimeGrid.build(
        (0.0, 1.0), 0.1, tstops=[0.55, 0.55 + 1e-17, 0.25]
    )
    assert grid.n_stops == 12
    assert grid.n_saves == 13


@pytest.mark.parametrize(
    "saveat",
    [[0.0, 0.5, 0.5, 1.0], [1.0, 0.0], [0.5, 0.5 + 1e-17, 1.0]],
)
def test_saveat_must_increase(saveat):
    with pytest.raises(ValueError, match="strictly increasing"):
        TimeGrid.build((0.0, 1.0), 0.1, saveat=saveat)


def test_stop_dtype_follows_precision():
    grid = TimeGrid.build((0.0, 1.0), 0.1, precision=np.float32)
    assert grid.stops.dtype == np.float32
    assert grid.save_mask.dtype == np.int32


def test_plan_length_matches_grid():
    assert plan_length((0.0, 1.0), 0.1) == 11
    assert plan_length((0.0, 1.0), 0.1, save_everystep=False) == 2
    assert plan_length((0.0, 1.0), 0.1, saveat=[0.2, 0.4, 0.6]) == 3
