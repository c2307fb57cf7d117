"""Host-side planning of where kernels step to and what they save.

Every kernel walks the same plan: a sorted array of *stops* in
``(t0, tf]`` that the integrator must land on exactly, a mask marking which
stops are saved, and a flag saying whether ``t0`` itself is saved. Fixed-step
plans put the whole ``t0 + k * dt`` grid into the stops, so each stop costs
one step; adaptive plans only hold saveat points, tstops and ``tf``.
"""

from typing import Optional

import attrs
import numpy as np

ADAPTIVE_EVERYSTEP_MESSAGE = (
    "Don't use adaptive version with saveat == nothing and "
    "save_everystep = true"
)


def _time_tolerance(t0: float, tf: float, precision) -> float:
    scale = max(abs(t0), abs(tf), 1.0)
    return 64.0 * float(np.finfo(precision).eps) * scale


def _distance_to_nearest(values: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Return the distance from each of ``values`` to sorted ``points``."""
    if points.size == 0:
        return np.full(values.shape, np.inf)
    idx = np.searchsorted(points, values)
    left = points[np.clip(idx - 1, 0, points.size - 1)]
    right = points[np.clip(idx, 0, points.size - 1)]
    return np.minimum(np.abs(values - left), np.abs(values - right))


def _merge_close(points: np.ndarray, tol: float) -> np.ndarray:
    """Sort ``points`` and drop any within ``tol`` of its predecessor."""
    points = np.sort(points)
    if points.size < 2:
        return points
    keep = np.concatenate(([True], np.diff(points) > tol))
    return points[keep]


def _as_time_points(name, values, t0, tf, tol) -> np.ndarray:
    points = np.atleast_1d(np.asarray(values, dtype=np.float64)).reshape(-1)
    outside = (points < t0 - tol) | (points > tf + tol)
    if np.any(outside):
        raise ValueError(
            f"{name} values {points[outside].tolist()} lie outside tspan "
            f"({t0}, {tf})."
        )
    return _merge_close(np.clip(points, t0, tf), tol)


def _as_save_points(saveat, t0, tf, tol) -> np.ndarray:
    """Return ``saveat`` as an array with one output slot per entry.

    Raises
    ------
    ValueError
        If the entries are not strictly increasing, since reordering or
        merging them would change the output length.
    """
    points = np.atleast_1d(np.asarray(saveat, dtype=np.float64)).reshape(-1)
    steps = np.diff(points)
    if np.any(steps <= tol):
        bad = int(np.flatnonzero(steps <= tol)[0])
        raise ValueError(
            "saveat must be strictly increasing, got "
            f"{points[bad]} followed by {points[bad + 1]}."
        )
    return _as_time_points("saveat", points, t0, tf, tol)


def fixed_grid_length(t0: float, tf: float, dt: float) -> int:
    """Return the number of points in the fixed grid from ``t0`` to ``tf``.

    The grid is ``t0, t0 + dt, ...`` with a final, possibly shorter, step
    landing on ``tf``.
    """
    ratio = (tf - t0) / dt
    n_intervals = int(np.ceil(ratio - 1e-9 * max(1.0, ratio)))
    return max(n_intervals, 1) + 1


@attrs.define(frozen=True, eq=False)
class TimeGrid:
    """Stops, save mask and output length for one batch solve.

    Attributes
    ----------
    t0, tf
        Integration interval.
    stops
        Sorted times in ``(t0, tf]`` the integrator lands on exactly.
    save_mask
        ``int32`` flag per stop; non-zero stops are written to the output.
    save_start
        Whether ``t0`` is written as the first output entry.
    """

    t0: float = attrs.field()
    tf: float = attrs.field()
    stops: np.ndarray = attrs.field()
    save_mask: np.ndarray = attrs.field()
    save_start: bool = attrs.field()

    @property
    def n_saves(self) -> int:
        """Return the number of output entries per trajectory."""
        return int(self.save_start) + int(np.count_nonzero(self.save_mask))

    @property
    def n_stops(self) -> int:
        return int(self.stops.shape[0])

    @property
    def save_times(self) -> np.ndarray:
        """Return the times written to the output, in order."""
        saved = self.stops[self.save_mask != 0]
        if self.save_start:
            saved = np.concatenate(
                (np.asarray([self.t0], dtype=self.stops.dtype), saved)
            )
        return saved

    @classmethod
    def build(
        cls,
        tspan,
        dt: float,
        saveat=None,
        save_everystep: bool = True,
        tstops=None,
        adaptive: bool = False,
        precision=np.float64,
    ) -> "TimeGrid":
        """Plan a solve over ``tspan``.

        Parameters
        ----------
        tspan
            ``(t0, tf)``.
        dt
            Fixed step, or the initial step for adaptive plans.
        saveat
            Sequence of save times, or a scalar interval giving
            ``t0, t0 + saveat, ..., tf``. ``None`` saves according to
            ``save_everystep``.
        save_everystep
            With ``saveat=None``, save every stop (``True``) or only the
            start and end (``False``).
        tstops
            Times the integrator must land on exactly.
        adaptive
            Plan for adaptive stepping (no fixed grid in the stops).
        precision
            Dtype of the stop array.

        Raises
        ------
        ValueError
            On a non-positive ``dt``, save or stop times outside ``tspan``,
            or an adaptive plan that asks to save every step.
        """
        t0, tf = float(tspan[0]), float(tspan[1])
        dt = float(dt)
        if not dt > 0.0:
            raise ValueError(f"dt must be positive, got {dt}.")
        if adaptive and saveat is None and save_everystep:
            raise ValueError(ADAPTIVE_EVERYSTEP_MESSAGE)
        tol = _time_tolerance(t0, tf, precision)

        if saveat is not None and np.ndim(saveat) == 0:
            interval = float(saveat)
            if not interval > 0.0:
                raise ValueError(
                    f"A scalar saveat must be positive, got {interval}."
                )
            n_points = fixed_grid_length(t0, tf, interval)
            saveat = np.minimum(t0 + interval * np.arange(n_points), tf)

        save_points = np.empty(0)
        if saveat is not None:
            save_points = _as_save_points(saveat, t0, tf, tol)
        stop_points = np.empty(0)
        if tstops is not None:
            stop_points = _as_time_points("tstops", tstops, t0, tf, tol)

        special = np.concatenate((save_points, stop_points, [tf]))
        special = _merge_close(special[special > t0 + tol], tol)
        if not adaptive:
            n_points = fixed_grid_length(t0, tf, dt)
            grid = t0 + dt * np.arange(1, n_points)
            grid = grid[grid < tf - tol]
            grid = grid[_distance_to_nearest(grid, special) > tol]
            stops = np.sort(np.concatenate((grid, special)))
        else:
            stops = special

        if saveat is None:
            if save_everystep:
                save_mask = np.ones(stops.shape, dtype=np.int32)
            else:
                save_mask = np.zeros(stops.shape, dtype=np.int32)
                save_mask[-1] = 1
            save_start = True
        else:
            save_mask = (
                _distance_to_nearest(stops, save_points) <= tol
            ).astype(np.int32)
            save_start = bool(
                save_points.size and abs(save_points[0] - t0) <= tol
            )

        return cls(
            t0=t0,
            tf=tf,
            stops=np.ascontiguousarray(stops, dtype=precision),
            save_mask=np.ascontiguousarray(save_mask, dtype=np.int32),
            save_start=save_start,
        )


def plan_length(
    tspan,
    dt: float,
    saveat=None,
    save_everystep: bool = True,
    tstops=None,
    adaptive: bool = False,
    precision=np.float64,
) -> int:
    """Return the output length a solve with these settings produces."""
    return TimeGrid.build(
        tspan,
        dt,
        saveat=saveat,
        save_everystep=save_everystep,
        tstops=tstops,
        adaptive=adaptive,
        precision=precision,
    ).n_saves
